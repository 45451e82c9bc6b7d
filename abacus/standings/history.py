"""Team position and encounter history."""

from collections import Counter
from dataclasses import dataclass

from abacus.store import StoreGateway, Transaction
from abacus.tournaments.models import Round


@dataclass(frozen=True, order=True)
class Slot:
    """A seat in a debate: ``side`` 0 is proposition, ``seq`` 0 is opening."""

    side: int
    seq: int


def slots_for(teams_per_side: int) -> list[Slot]:
    """All slots of a debate, proposition first and opening before closing."""
    return [Slot(side, seq) for side in (0, 1) for seq in range(teams_per_side)]


@dataclass
class OneOnOne:
    aff: int = 0
    neg: int = 0

    def count(self, slot: Slot) -> int:
        return self.aff if slot.side == 0 else self.neg

    def record(self, slot: Slot) -> None:
        if slot.side == 0:
            self.aff += 1
        else:
            self.neg += 1

    def as_list(self) -> list[int]:
        return [self.aff, self.neg]


@dataclass
class BritishParliamentary:
    og: int = 0
    oo: int = 0
    cg: int = 0
    co: int = 0

    _NAMES = {Slot(0, 0): "og", Slot(1, 0): "oo", Slot(0, 1): "cg", Slot(1, 1): "co"}

    def count(self, slot: Slot) -> int:
        return getattr(self, self._NAMES[slot])

    def record(self, slot: Slot) -> None:
        name = self._NAMES[slot]
        setattr(self, name, getattr(self, name) + 1)

    def as_list(self) -> list[int]:
        return [self.og, self.oo, self.cg, self.co]


PositionHistory = OneOnOne | BritishParliamentary


def empty_history(teams_per_side: int) -> PositionHistory:
    if teams_per_side == 1:
        return OneOnOne()
    return BritishParliamentary()


@dataclass
class TeamHistory:
    """Positions held and opponents met by every team before a round."""

    positions: dict[str, PositionHistory]
    encounters: Counter

    def positions_of(self, team_id: str) -> PositionHistory:
        return self.positions[team_id]

    def times_met(self, a: str, b: str) -> int:
        return self.encounters[frozenset((a, b))]

    @classmethod
    def fetch(
        cls,
        store: StoreGateway,
        txn: Transaction,
        round: Round,
        teams_per_side: int,
        team_ids: list[str],
    ) -> "TeamHistory":
        positions = {team_id: empty_history(teams_per_side) for team_id in team_ids}
        encounters: Counter = Counter()
        teams_in_debate: dict[str, list[str]] = {}

        for row in store.prior_team_positions(txn, round):
            team_id = row["team_id"]
            teams_in_debate.setdefault(row["debate_id"], []).append(team_id)
            if team_id not in positions:
                positions[team_id] = empty_history(teams_per_side)
            positions[team_id].record(Slot(row["side"], row["seq"]))

        for team_ids_of_debate in teams_in_debate.values():
            for i, a in enumerate(team_ids_of_debate):
                for b in team_ids_of_debate[i + 1 :]:
                    encounters[frozenset((a, b))] += 1

        return cls(positions=positions, encounters=encounters)
