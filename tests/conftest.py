"""Pytest configuration and shared fixtures.

Provides a temporary SQLite store, a controllable clock, an event bus and
helpers that seed a tournament with teams, speakers, judges and a round.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest

from abacus.clock import new_id
from abacus.events import EventBus
from abacus.store import StoreGateway
from abacus.tournaments.models import (
    Judge,
    Motion,
    Round,
    RoundKind,
    Speaker,
    Team,
    Tournament,
)


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


def drain(subscription) -> list:
    """Every event queued on ``subscription`` so far."""
    events = []
    while not subscription.queue.empty():
        events.append(subscription.queue.get_nowait())
    return events


def seed_tournament(
    store: StoreGateway,
    clock: FakeClock,
    team_count: int = 8,
    judge_count: int = 0,
    teams_per_side: int = 1,
    **config,
) -> SimpleNamespace:
    """Create a tournament with ``team_count`` teams, their speakers, judges and round 1."""
    tournament = Tournament(
        id=new_id(),
        name="Test Open",
        slug=f"test-open-{new_id()}",
        created_at=clock.now(),
        teams_per_side=teams_per_side,
        **config,
    )
    teams: list[Team] = []
    speakers: dict[str, list[Speaker]] = {}
    judges: list[Judge] = []
    with store.transaction() as txn:
        store.create_tournament(txn, tournament)
        for number in range(1, team_count + 1):
            team = Team(id=new_id(), tournament_id=tournament.id, name=f"T{number}", number=number)
            store.create_team(txn, team)
            teams.append(team)
            speakers[team.id] = []
            for position in range(1, tournament.substantive_speakers + 1):
                speaker = Speaker(
                    id=new_id(),
                    tournament_id=tournament.id,
                    team_id=team.id,
                    participant_id=new_id(),
                    name=f"T{number} speaker {position}",
                    email="",
                    private_url=new_id(),
                )
                store.create_speaker(txn, speaker)
                speakers[team.id].append(speaker)
        for number in range(1, judge_count + 1):
            judge = Judge(
                id=new_id(),
                tournament_id=tournament.id,
                participant_id=new_id(),
                name=f"J{number}",
                email="",
                rating=float(10 - number),
                private_url=new_id(),
            )
            store.create_judge(txn, judge)
            judges.append(judge)
    round = add_round(store, tournament, 1)
    return SimpleNamespace(
        tournament=tournament,
        teams=teams,
        by_name={team.name: team for team in teams},
        speakers=speakers,
        judges=judges,
        round=round,
        motion=add_motion(store, round),
    )


def add_round(store: StoreGateway, tournament: Tournament, seq: int, kind: RoundKind = RoundKind.PRELIMINARY) -> Round:
    round = Round(id=new_id(), tournament_id=tournament.id, seq=seq, name=f"Round {seq}", kind=kind)
    with store.transaction() as txn:
        store.create_round(txn, round)
    return round


def add_motion(store: StoreGateway, round: Round) -> Motion:
    motion = Motion(
        id=new_id(),
        tournament_id=round.tournament_id,
        round_id=round.id,
        motion="This House would abolish homework",
    )
    with store.transaction() as txn:
        store.create_motion(txn, motion)
    return motion


def speaker_scores(seeded: SimpleNamespace, team_id: str, values: list[str]) -> list[dict]:
    """Score payload for ``team_id``'s speakers in speaking order."""
    return [
        {"team_id": team_id, "speaker_id": speaker.id, "position": position, "score": Decimal(value)}
        for position, (speaker, value) in enumerate(zip(seeded.speakers[team_id], values), start=1)
    ]


# =============================================================================
# SHARED FIXTURES - Available to all test modules
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(tmp_path) -> StoreGateway:
    """A fresh store backed by a temporary database file."""
    return StoreGateway(str(tmp_path / "abacus-test.db"))


@pytest.fixture
def events() -> EventBus:
    return EventBus(capacity=100)


# =============================================================================
# PYTEST CONFIGURATION HOOKS
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
