"""Round lifecycle controller.

A round moves through ``none -> generating -> drafted -> released ->
in_progress -> completed``; a failed or cancelled generation returns it from
``generating`` to ``none``. Every other transition is rejected with
:class:`InvalidState` before anything is written.

Store work is blocking and runs on worker threads; change events are
published from the event loop once the transaction committed.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from abacus.ballots import BallotIngest
from abacus.clock import Clock, SystemClock, new_id
from abacus.config import SystemConfig
from abacus.draws import DrawEngine, DrawOutcome, DrawRegistry, JudgeConflicts, allocate_panels, panel_size
from abacus.errors import InternalError, InvalidState
from abacus.events import DrawUpdated, EventBus, ResultsUpdated
from abacus.rooms import RoomAllocator
from abacus.standings import SpeakerStandings, StandingsCache, TeamStandings
from abacus.store import StoreGateway, Transaction
from abacus.tournaments.models import (
    Ballot,
    BallotSubmission,
    DrawStatus,
    JudgeRole,
    Motion,
    Round,
    RoundKind,
    Tournament,
)
from abacus.tournaments.repr import DrawRepr

logger = logging.getLogger(__name__)


def check_released_draw(tournament: Tournament, draw: DrawRepr, conflicts: JudgeConflicts) -> None:
    """Verify the invariants every released draw must hold."""
    if not draw.debates:
        raise InvalidState(f"Round {draw.round.name} has no debates")

    team_ids = draw.team_ids()
    expected = tournament.teams_per_debate * len(draw.debates)
    if len(team_ids) != expected:
        raise InternalError(f"Draw holds {len(team_ids)} teams, expected {expected}")
    if len(set(team_ids)) != len(team_ids):
        raise InternalError("A team appears in more than one debate")

    seqs = list(range(tournament.teams_per_side))
    for debate in draw.debates:
        for side in (0, 1):
            side_seqs = sorted(t.seq for t in debate.teams if t.side == side)
            if side_seqs != seqs:
                raise InternalError(f"Debate {debate.debate.number} has unbalanced sides")
        chairs = debate.judge_ids(JudgeRole.CHAIR)
        if len(chairs) != 1:
            raise InvalidState(f"Debate {debate.debate.number} needs exactly one chair")
        panel: list[str] = []
        for judge_id in debate.judge_ids():
            if not conflicts.can_judge(judge_id, debate.team_ids(), panel):
                raise InvalidState(f"Judge {judge_id} is conflicted in debate {debate.debate.number}")
            panel.append(judge_id)

    rooms = draw.assigned_room_ids()
    if len(set(rooms)) != len(rooms):
        raise InternalError("A room is assigned to more than one debate")


class RoundLifecycleController:
    def __init__(
        self,
        store: StoreGateway,
        events: EventBus,
        clock: Clock | None = None,
        config: SystemConfig | None = None,
        registry: DrawRegistry | None = None,
    ):
        self.store = store
        self.events = events
        self.clock = clock or SystemClock()
        self.config = config or SystemConfig()
        self.standings_cache = StandingsCache()
        self.draws = DrawEngine(
            store,
            clock=self.clock,
            ticket_timeout_seconds=self.config.draw_ticket_timeout_seconds,
            registry=registry,
            standings_cache=self.standings_cache,
        )
        self.rooms = RoomAllocator(store)
        self.ballots = BallotIngest(store, clock=self.clock)
        self.jobs: dict[str, asyncio.Task] = {}

    async def _write(self, fn: Callable[..., Any], *args: Any) -> Any:
        def run():
            with self.store.transaction() as txn:
                return fn(txn, *args)

        return await asyncio.to_thread(run)

    async def _read(self, fn: Callable[..., Any], *args: Any) -> Any:
        def run():
            with self.store.transaction(write=False) as txn:
                return fn(txn, *args)

        return await asyncio.to_thread(run)

    def _transition(self, txn: Transaction, round_id: str, expected: DrawStatus, target: DrawStatus) -> Round:
        round = self.store.get_round(txn, round_id)
        if round.draw_status != expected:
            raise InvalidState(
                f"Round {round.name} is {round.draw_status.name.lower()}, "
                f"expected {expected.name.lower()}"
            )
        self.store.set_draw_status(txn, round.id, target, expected=expected)
        return round.model_copy(update={"draw_status": target})

    # ========== Rounds ==========

    async def create_round(
        self, tournament_id: str, name: str, kind: RoundKind = RoundKind.PRELIMINARY
    ) -> Round:
        def write(txn: Transaction) -> Round:
            self.store.get_tournament(txn, tournament_id)
            existing = self.store.list_rounds(txn, tournament_id)
            round = Round(
                id=new_id(),
                tournament_id=tournament_id,
                seq=max((r.seq for r in existing), default=0) + 1,
                name=name,
                kind=kind,
            )
            self.store.create_round(txn, round)
            return round

        round = await self._write(write)
        logger.info(f"Created round {round.name} (seq {round.seq})")
        return round

    async def create_motion(self, round_id: str, motion: str, infoslide: str | None = None) -> Motion:
        def write(txn: Transaction) -> Motion:
            round = self.store.get_round(txn, round_id)
            created = Motion(
                id=new_id(),
                tournament_id=round.tournament_id,
                round_id=round.id,
                motion=motion,
                infoslide=infoslide,
            )
            self.store.create_motion(txn, created)
            return created

        return await self._write(write)

    async def get_round(self, round_id: str) -> Round:
        return await self._read(self.store.get_round, round_id)

    async def list_rounds(self, tournament_id: str) -> list[Round]:
        return await self._read(self.store.list_rounds, tournament_id)

    async def get_draw(self, round_id: str) -> DrawRepr:
        return await self._read(self.store.get_draw_repr, round_id)

    # ========== Draws ==========

    async def generate_draw(
        self,
        round_id: str,
        algorithm: str | None = None,
        seed: int | None = None,
        force: bool = False,
        owner: str = "system",
    ) -> DrawOutcome:
        """Generate, commit and room the draft draw of a round."""
        outcome = await asyncio.to_thread(self.draws.do_draw, round_id, algorithm, seed, force, owner)

        def allocate(txn: Transaction) -> Round:
            round = self.store.get_round(txn, round_id)
            if round.draw_status == DrawStatus.DRAFTED and self.store.list_rooms(txn, round.tournament_id):
                self.rooms.allocate(txn, round_id)
            return round

        round = await self._write(allocate)
        self.events.publish(DrawUpdated(tournament_id=round.tournament_id, round_id=round_id))
        return outcome

    def start_draw_job(self, round_id: str, **kwargs: Any) -> asyncio.Task:
        """Run :meth:`generate_draw` as a background task that may outlive the request."""
        task = asyncio.create_task(self.generate_draw(round_id, **kwargs))
        self.jobs[round_id] = task

        def done(t: asyncio.Task) -> None:
            if self.jobs.get(round_id) is t:
                del self.jobs[round_id]
            if not t.cancelled() and t.exception() is not None:
                logger.warning(f"Draw job for round {round_id} failed: {t.exception()}")

        task.add_done_callback(done)
        return task

    async def cancel_draw(self, round_id: str) -> Round:
        round = await asyncio.to_thread(self.draws.cancel, round_id)
        self.events.publish(DrawUpdated(tournament_id=round.tournament_id, round_id=round_id))
        return round

    async def allocate_judges(self, round_id: str) -> DrawRepr:
        """Reseat the panels of a drafted draw."""

        def write(txn: Transaction) -> DrawRepr:
            round = self.store.get_round(txn, round_id)
            if round.draw_status != DrawStatus.DRAFTED:
                raise InvalidState(f"Round {round.name} has no drafted draw")
            tournament = self.store.get_tournament(txn, round.tournament_id)
            draw = self.store.get_draw_repr(txn, round_id)
            panels = allocate_panels(
                [(d.id, d.team_ids()) for d in draw.debates],
                self.store.available_judges(txn, round),
                JudgeConflicts.from_conflicts(self.store.list_conflicts(txn, tournament.id)),
                panel_size(tournament.judges_per_panel, tournament.ballot_setup_for(round.kind)),
            )
            for debate_id, panel in panels.items():
                self.store.set_debate_judges(txn, debate_id, panel)
            return self.store.get_draw_repr(txn, round_id)

        draw = await self._write(write)
        self.events.publish(DrawUpdated(tournament_id=draw.round.tournament_id, round_id=round_id))
        return draw

    async def allocate_rooms(self, round_id: str) -> dict[str, str | None]:
        def write(txn: Transaction) -> tuple[str, dict[str, str | None]]:
            round = self.store.get_round(txn, round_id)
            return round.tournament_id, self.rooms.allocate(txn, round_id)

        tournament_id, assignment = await self._write(write)
        self.events.publish(DrawUpdated(tournament_id=tournament_id, round_id=round_id))
        return assignment

    async def release_draw(self, round_id: str) -> Round:
        def write(txn: Transaction) -> Round:
            round = self.store.get_round(txn, round_id)
            if round.draw_status != DrawStatus.DRAFTED:
                raise InvalidState(f"Round {round.name} has no drafted draw to release")
            tournament = self.store.get_tournament(txn, round.tournament_id)
            check_released_draw(
                tournament,
                self.store.get_draw_repr(txn, round_id),
                JudgeConflicts.from_conflicts(self.store.list_conflicts(txn, tournament.id)),
            )
            released = self._transition(txn, round_id, DrawStatus.DRAFTED, DrawStatus.RELEASED)
            now = self.clock.now()
            self.store.mark_round_released(txn, round_id, now)
            return released.model_copy(update={"released_at": now})

        round = await self._write(write)
        logger.info(f"Released draw for round {round.name}")
        self.events.publish(DrawUpdated(tournament_id=round.tournament_id, round_id=round_id))
        return round

    async def start_round(self, round_id: str) -> Round:
        round = await self._write(self._transition, round_id, DrawStatus.RELEASED, DrawStatus.IN_PROGRESS)
        logger.info(f"Round {round.name} started")
        self.events.publish(DrawUpdated(tournament_id=round.tournament_id, round_id=round_id))
        return round

    async def move_room(self, room_id: str, to_debate_id: str | None, round_ids: list[str]) -> list[str]:
        def write(txn: Transaction) -> tuple[str, list[str]]:
            room = self.store.get_room(txn, room_id)
            return room.tournament_id, self.rooms.move_room(txn, room_id, to_debate_id, round_ids)

        tournament_id, affected = await self._write(write)
        for round_id in affected:
            self.events.publish(DrawUpdated(tournament_id=tournament_id, round_id=round_id))
        return affected

    # ========== Results ==========

    async def submit_ballot(self, submission: BallotSubmission) -> Ballot:
        return await self._write(self.ballots.submit, submission)

    async def get_ballot(self, ballot_id: str) -> Ballot:
        return await self._read(self.store.get_ballot, ballot_id)

    async def confirm_ballot(self, ballot_id: str) -> Round:
        round = await self._write(self.ballots.confirm, ballot_id)
        self.standings_cache.invalidate(round.tournament_id)
        self.events.publish(ResultsUpdated(tournament_id=round.tournament_id, round_id=round.id))
        return round

    async def complete_round(self, round_id: str) -> Round:
        round = await self._write(self.ballots.complete_round, round_id)
        self.standings_cache.invalidate(round.tournament_id)
        await self.recompute_standings(round.tournament_id)
        self.events.publish(ResultsUpdated(tournament_id=round.tournament_id, round_id=round.id))
        return round

    async def recompute_standings(self, tournament_id: str) -> tuple[TeamStandings, SpeakerStandings]:
        """Recompute standings and persist ranks and metric values for display."""

        def write(txn: Transaction) -> tuple[TeamStandings, SpeakerStandings]:
            tournament = self.store.get_tournament(txn, tournament_id)
            teams, speakers = self.standings_cache.load(self.store, txn, tournament)
            self.store.save_team_standings(
                txn,
                tournament_id,
                teams.ranks(),
                {
                    team_id: {name: str(value) for name, value in teams.display_values(team_id).items()}
                    for team_id in teams.ordered_ids()
                },
            )
            self.store.save_speaker_standings(txn, tournament_id, speakers.ranks())
            return teams, speakers

        return await self._write(write)

    async def team_standings(self, tournament_id: str) -> TeamStandings:
        def read(txn: Transaction) -> TeamStandings:
            tournament = self.store.get_tournament(txn, tournament_id)
            return self.standings_cache.load(self.store, txn, tournament)[0]

        return await self._read(read)

    async def speaker_standings(self, tournament_id: str) -> SpeakerStandings:
        def read(txn: Transaction) -> SpeakerStandings:
            tournament = self.store.get_tournament(txn, tournament_id)
            return self.standings_cache.load(self.store, txn, tournament)[1]

        return await self._read(read)
