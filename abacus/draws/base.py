"""Base classes and interfaces for draw algorithms."""

import random
from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass, field

from abacus.errors import InvalidConfiguration, InvalidTeamCount
from abacus.standings import PositionHistory, TeamStandings
from abacus.standings.history import empty_history
from abacus.tournaments.models import Round, Team, Tournament

# (proposition, opposition), each side ordered opening first
TeamsOfRoom = tuple[list[Team], list[Team]]


@dataclass
class DrawInput:
    """Everything an algorithm needs to pair one round."""

    tournament: Tournament
    round: Round
    metrics: list[str]
    teams: list[Team]
    rng: random.Random
    standings: TeamStandings | None = None
    history: dict[str, PositionHistory] = field(default_factory=dict)
    encounters: Counter = field(default_factory=Counter)
    team_conflicts: set[frozenset] = field(default_factory=set)

    @property
    def teams_per_side(self) -> int:
        return self.tournament.teams_per_side

    @property
    def teams_per_debate(self) -> int:
        return self.tournament.teams_per_side * 2

    def history_of(self, team_id: str) -> PositionHistory:
        if team_id not in self.history:
            self.history[team_id] = empty_history(self.teams_per_side)
        return self.history[team_id]

    def times_met(self, a: str, b: str) -> int:
        return self.encounters[frozenset((a, b))]


def check_draw_input(draw_input: DrawInput) -> None:
    """Fail fast on inputs no algorithm can pair."""
    if draw_input.tournament.teams_per_side not in (1, 2):
        raise InvalidConfiguration(
            f"teams_per_side must be 1 or 2, got {draw_input.tournament.teams_per_side}"
        )
    n = len(draw_input.teams)
    if n == 0 or n % draw_input.teams_per_debate != 0:
        raise InvalidTeamCount(
            f"{n} active teams cannot be split into debates of {draw_input.teams_per_debate}"
        )


class DrawAlgorithm(ABC):
    """Abstract base class for draw algorithms."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Algorithm name, as stored in the tournament configuration."""
        pass

    @property
    def description(self) -> str:
        return ""

    @abstractmethod
    def make_draw(self, draw_input: DrawInput) -> list[TeamsOfRoom]:
        """Pair the input teams into debates."""
        pass
