"""Tests for draw generation under the per-round draw ticket."""

import threading
from types import SimpleNamespace

import pytest

from conftest import seed_tournament
from abacus.draws import DrawEngine, DrawOutcome, DrawRegistry, RandomDraw
from abacus.errors import (
    AlreadyInProgress,
    InternalError,
    InvalidConfiguration,
    InvalidState,
    InvalidTeamCount,
    TicketExpired,
)
from abacus.tournaments.models import DrawStatus


@pytest.fixture
def gated():
    """A registry holding a ``gated`` algorithm that blocks until released."""
    started = threading.Event()
    gate = threading.Event()

    class GatedDraw(RandomDraw):
        @property
        def name(self) -> str:
            return "gated"

        def make_draw(self, draw_input):
            started.set()
            gate.wait(timeout=10)
            return super().make_draw(draw_input)

    registry = DrawRegistry()
    registry.register(GatedDraw)
    return SimpleNamespace(registry=registry, started=started, gate=gate)


@pytest.fixture
def seeded(store, clock):
    return seed_tournament(store, clock, team_count=8, judge_count=4)


@pytest.fixture
def engine(store, clock, gated):
    return DrawEngine(store, clock=clock, ticket_timeout_seconds=600, registry=gated.registry)


def run_in_thread(fn, *args, **kwargs) -> tuple[threading.Thread, dict]:
    result: dict = {}

    def target():
        try:
            result["value"] = fn(*args, **kwargs)
        except Exception as e:
            result["value"] = e

    thread = threading.Thread(target=target)
    thread.start()
    return thread, result


def round_state(store, round_id):
    with store.transaction(write=False) as txn:
        round = store.get_round(txn, round_id)
        draw = store.get_draw(txn, round_id)
        debates = txn.query_one(
            "SELECT COUNT(*) AS n FROM debates d JOIN draws dr ON dr.id = d.draw_id WHERE dr.round_id = ?",
            (round_id,),
        )["n"]
        live = store.live_ticket(txn, round_id)
    return SimpleNamespace(status=round.draw_status, draw=draw, debates=debates, live=live)


def test_generated_draw_is_committed_with_panels(store, engine, seeded) -> None:
    outcome = engine.do_draw(seeded.round.id, algorithm="random", seed=0x42)

    assert outcome.debate_count == 4
    state = round_state(store, seeded.round.id)
    assert state.status == DrawStatus.DRAFTED
    assert state.draw.id == outcome.draw_id
    assert state.live is None
    with store.transaction(write=False) as txn:
        draw = store.get_draw_repr(txn, seeded.round.id)
    assert sorted(draw.team_ids()) == sorted(team.id for team in seeded.teams)
    for debate in draw.debates:
        assert debate.chair() is not None


def test_same_seed_gives_same_draw(store, engine, seeded) -> None:
    engine.do_draw(seeded.round.id, algorithm="random", seed=0x42)
    with store.transaction(write=False) as txn:
        first = [d.sides() for d in store.get_draw_repr(txn, seeded.round.id).debates]
        store_round = store.get_round(txn, seeded.round.id)
    assert store_round.draw_status == DrawStatus.DRAFTED

    with store.transaction() as txn:
        store.set_draw_status(txn, seeded.round.id, DrawStatus.NONE)
    engine.do_draw(seeded.round.id, algorithm="random", seed=0x42)
    with store.transaction(write=False) as txn:
        second = [d.sides() for d in store.get_draw_repr(txn, seeded.round.id).debates]

    assert first == second


def test_concurrent_generation_yields_one_draw(store, engine, gated, seeded) -> None:
    """While one attempt holds the ticket a second one is turned away."""
    thread, result = run_in_thread(engine.do_draw, seeded.round.id, "gated", 1)
    assert gated.started.wait(timeout=10)

    with pytest.raises(AlreadyInProgress):
        engine.do_draw(seeded.round.id, "gated", 2)

    gated.gate.set()
    thread.join(timeout=10)
    assert isinstance(result["value"], DrawOutcome)
    state = round_state(store, seeded.round.id)
    assert state.status == DrawStatus.DRAFTED
    assert state.debates == 4
    with store.transaction(write=False) as txn:
        draws = txn.query_one("SELECT COUNT(*) AS n FROM draws WHERE round_id = ?", (seeded.round.id,))["n"]
    assert draws == 1


def test_cancel_before_commit_discards_the_attempt(store, engine, gated, seeded) -> None:
    thread, result = run_in_thread(engine.do_draw, seeded.round.id, "gated", 1)
    assert gated.started.wait(timeout=10)

    cancelled = engine.cancel(seeded.round.id)
    assert cancelled.draw_status == DrawStatus.NONE

    gated.gate.set()
    thread.join(timeout=10)
    assert isinstance(result["value"], TicketExpired)
    state = round_state(store, seeded.round.id)
    assert state.status == DrawStatus.NONE
    assert state.draw is None
    assert state.debates == 0

    outcome = engine.do_draw(seeded.round.id, "random", 3)
    assert outcome.debate_count == 4
    assert round_state(store, seeded.round.id).status == DrawStatus.DRAFTED


def test_forced_generation_supersedes_the_live_attempt(store, engine, gated, seeded) -> None:
    thread, result = run_in_thread(engine.do_draw, seeded.round.id, "gated", 1)
    assert gated.started.wait(timeout=10)

    winner = engine.do_draw(seeded.round.id, "random", 2, force=True)

    gated.gate.set()
    thread.join(timeout=10)
    assert isinstance(result["value"], TicketExpired)
    state = round_state(store, seeded.round.id)
    assert state.status == DrawStatus.DRAFTED
    assert state.draw.id == winner.draw_id


def test_timed_out_ticket_cannot_commit(store, engine, gated, clock, seeded) -> None:
    thread, result = run_in_thread(engine.do_draw, seeded.round.id, "gated", 1)
    assert gated.started.wait(timeout=10)

    clock.advance(601)
    gated.gate.set()
    thread.join(timeout=10)

    assert isinstance(result["value"], TicketExpired)
    state = round_state(store, seeded.round.id)
    assert state.status == DrawStatus.NONE
    assert state.draw is None
    assert state.live is None


def test_timed_out_ticket_does_not_block_a_new_attempt(store, engine, clock, seeded) -> None:
    with store.transaction() as txn:
        store.insert_ticket(txn, seeded.round.id, "crashed worker", clock.now(), clock.now())
        store.set_draw_status(txn, seeded.round.id, DrawStatus.GENERATING)
    clock.advance(1)

    outcome = engine.do_draw(seeded.round.id, "random", 5)

    assert outcome.debate_count == 4
    assert round_state(store, seeded.round.id).status == DrawStatus.DRAFTED


def test_failed_generation_returns_round_to_none(store, clock) -> None:
    seeded = seed_tournament(store, clock, team_count=7)
    engine = DrawEngine(store, clock=clock)

    with pytest.raises(InvalidTeamCount):
        engine.do_draw(seeded.round.id, "random", 1)

    state = round_state(store, seeded.round.id)
    assert state.status == DrawStatus.NONE
    assert state.live is None
    with store.transaction(write=False) as txn:
        row = txn.query_one("SELECT error FROM round_tickets WHERE round_id = ?", (seeded.round.id,))
    assert row["error"]


def test_rejected_commit_returns_round_to_none(store, clock, seeded) -> None:
    class RepeatingDraw(RandomDraw):
        """Seats the first debate twice."""

        @property
        def name(self) -> str:
            return "repeating"

        def make_draw(self, draw_input):
            rooms = super().make_draw(draw_input)
            return rooms[:-1] + rooms[:1]

    registry = DrawRegistry()
    registry.register(RepeatingDraw)
    engine = DrawEngine(store, clock=clock, registry=registry)

    with pytest.raises(InternalError):
        engine.do_draw(seeded.round.id, "repeating", 1)

    state = round_state(store, seeded.round.id)
    assert state.status == DrawStatus.NONE
    assert state.live is None
    assert state.debates == 0
    assert engine.do_draw(seeded.round.id, "random", 1).debate_count == 4


def test_unknown_algorithm_leaves_round_untouched(store, engine, seeded) -> None:
    with pytest.raises(InvalidConfiguration):
        engine.do_draw(seeded.round.id, "swiss", 1)

    state = round_state(store, seeded.round.id)
    assert state.status == DrawStatus.NONE
    assert state.live is None


def test_drafted_round_cannot_be_generated_again(store, engine, seeded) -> None:
    engine.do_draw(seeded.round.id, "random", 1)

    with pytest.raises(InvalidState):
        engine.do_draw(seeded.round.id, "random", 2)
    with pytest.raises(InvalidState):
        engine.cancel(seeded.round.id)
