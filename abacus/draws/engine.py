"""Draw generation under the per-round draw ticket.

Generation runs in three steps. A short write transaction acquires the
round's ticket and snapshots the inputs. The algorithm then runs outside any
transaction. A second write transaction commits the result, but only if the
ticket is still the live one: a cancelled, superseded or timed-out ticket
makes the attempt discard its work with :class:`TicketExpired`.
"""

import logging
import random
from dataclasses import dataclass
from datetime import timedelta

from abacus.clock import Clock, SystemClock
from abacus.errors import AlreadyInProgress, InvalidState, TicketExpired
from abacus.standings import StandingsCache, TeamHistory, TeamStandings
from abacus.store import StoreGateway, Transaction
from abacus.tournaments.models import (
    ConflictKind,
    DrawStatus,
    DrawTicket,
    JudgeRole,
    Round,
    Tournament,
)

from .base import DrawInput, TeamsOfRoom
from .panels import JudgeConflicts, allocate_panels, panel_size
from .registry import DrawRegistry, draw_registry

logger = logging.getLogger(__name__)


@dataclass
class DrawAttempt:
    """State carried from ticket acquisition to commit."""

    ticket: DrawTicket
    tournament: Tournament
    round: Round
    algorithm: str
    draw_input: DrawInput
    judges: list
    judge_conflicts: JudgeConflicts


@dataclass
class DrawOutcome:
    draw_id: str
    round_id: str
    algorithm: str
    seed: int
    debate_count: int


class DrawEngine:
    """Runs draw algorithms against the store under the ticket protocol."""

    def __init__(
        self,
        store: StoreGateway,
        clock: Clock | None = None,
        ticket_timeout_seconds: int = 600,
        registry: DrawRegistry | None = None,
        standings_cache: StandingsCache | None = None,
    ):
        self.store = store
        self.clock = clock or SystemClock()
        self.ticket_timeout = timedelta(seconds=ticket_timeout_seconds)
        self.registry = registry or draw_registry
        self.standings_cache = standings_cache

    def default_algorithm(self, txn: Transaction, tournament: Tournament) -> str:
        """Random until a preliminary round has completed, then the configured one."""
        if self.store.count_completed_preliminary_rounds(txn, tournament.id) == 0:
            return "random"
        return tournament.draw_algorithm

    def do_draw(
        self,
        round_id: str,
        algorithm: str | None = None,
        seed: int | None = None,
        force: bool = False,
        owner: str = "system",
    ) -> DrawOutcome:
        """Generate and commit the draw of a round.

        Blocking: call from a worker thread, never from the event loop.
        """
        if seed is None:
            seed = random.SystemRandom().getrandbits(64)

        attempt = self.acquire(round_id, algorithm, seed, force, owner)
        try:
            rooms = self.registry.get_algorithm(attempt.algorithm).make_draw(attempt.draw_input)
            panels = self.make_panels(attempt, rooms)
        except Exception as e:
            logger.error(f"Draw generation for round {attempt.round.name} failed: {e}")
            self.fail(attempt.ticket, e)
            raise

        try:
            draw_id = self.commit(attempt, rooms, panels)
        except TicketExpired:
            raise
        except Exception as e:
            logger.error(f"Committing the draw of round {attempt.round.name} failed: {e}")
            self.fail(attempt.ticket, e)
            raise
        return DrawOutcome(
            draw_id=draw_id,
            round_id=round_id,
            algorithm=attempt.algorithm,
            seed=seed,
            debate_count=len(rooms),
        )

    def acquire(
        self, round_id: str, algorithm: str | None, seed: int, force: bool, owner: str
    ) -> DrawAttempt:
        """Mint a ticket for the round and snapshot the draw inputs."""
        now = self.clock.now()
        with self.store.transaction() as txn:
            round = self.store.get_round(txn, round_id)
            tournament = self.store.get_tournament(txn, round.tournament_id)

            if round.draw_status == DrawStatus.GENERATING:
                live = self.store.live_ticket(txn, round.id)
                if live is not None and live.deadline <= now:
                    logger.warning(f"Draw ticket {live.id} for round {round.name} timed out")
                    self.store.cancel_live_tickets(txn, round.id)
                    live = None
                if live is not None and not force:
                    raise AlreadyInProgress(f"A draw for round {round.name} is already being generated")
                if live is not None:
                    logger.info(f"Superseding draw ticket {live.seq} for round {round.name}")
                    self.store.release_ticket(txn, live.id, error="superseded")
            elif round.draw_status != DrawStatus.NONE:
                raise InvalidState(
                    f"Cannot generate a draw for round {round.name} in state {round.draw_status.name.lower()}"
                )

            ticket = self.store.insert_ticket(
                txn, round.id, owner, acquired_at=now, deadline=now + self.ticket_timeout
            )
            self.store.set_draw_status(txn, round.id, DrawStatus.GENERATING)

            algorithm = algorithm or self.default_algorithm(txn, tournament)
            self.registry.get_algorithm(algorithm)
            draw_input = self.build_input(txn, tournament, round, seed)
            judges = self.store.available_judges(txn, round)
            conflicts = self.store.list_conflicts(txn, tournament.id)

        logger.info(
            f"Acquired draw ticket {ticket.seq} for round {round.name} "
            f"(algorithm={algorithm}, seed={seed})"
        )
        return DrawAttempt(
            ticket=ticket,
            tournament=tournament,
            round=round,
            algorithm=algorithm,
            draw_input=draw_input,
            judges=judges,
            judge_conflicts=JudgeConflicts.from_conflicts(conflicts),
        )

    def build_input(self, txn: Transaction, tournament: Tournament, round: Round, seed: int) -> DrawInput:
        teams = self.store.active_teams(txn, round)
        if self.standings_cache is not None:
            standings, _ = self.standings_cache.load(self.store, txn, tournament)
        else:
            standings = TeamStandings.compute(self.store, txn, tournament)
        history = TeamHistory.fetch(
            self.store, txn, round, tournament.teams_per_side, [team.id for team in teams]
        )
        team_conflicts = {
            frozenset((c.a_id, c.b_id))
            for c in self.store.list_conflicts(txn, tournament.id)
            if c.kind == ConflictKind.TEAM_TEAM
        }
        return DrawInput(
            tournament=tournament,
            round=round,
            metrics=list(tournament.team_standings_metrics),
            teams=teams,
            rng=random.Random(seed),
            standings=standings,
            history=history.positions,
            encounters=history.encounters,
            team_conflicts=team_conflicts,
        )

    def make_panels(self, attempt: DrawAttempt, rooms: list[TeamsOfRoom]) -> list[list[tuple[str, JudgeRole]]]:
        size = panel_size(
            attempt.tournament.judges_per_panel,
            attempt.tournament.ballot_setup_for(attempt.round.kind),
        )
        debates = [(str(number), [t.id for t in prop + opp]) for number, (prop, opp) in enumerate(rooms)]
        panels = allocate_panels(debates, attempt.judges, attempt.judge_conflicts, size)
        return [panels[str(number)] for number in range(len(rooms))]

    def _expiry(self, txn: Transaction, ticket: DrawTicket) -> str | None:
        """Why ``ticket`` may no longer commit, or None if it still may."""
        current = self.store.get_ticket(txn, ticket.id)
        latest = self.store.latest_ticket(txn, ticket.round_id)
        if latest is None or latest.seq != current.seq:
            return "superseded"
        if current.cancelled:
            return "cancelled"
        if current.released:
            return "released"
        if current.deadline <= self.clock.now():
            return "timed out"
        return None

    def commit(
        self,
        attempt: DrawAttempt,
        rooms: list[TeamsOfRoom],
        panels: list[list[tuple[str, JudgeRole]]],
    ) -> str:
        """Atomically replace the round's draw, provided the ticket is still live."""
        with self.store.transaction() as txn:
            reason = self._expiry(txn, attempt.ticket)
            if reason == "timed out":
                self.store.cancel_live_tickets(txn, attempt.round.id)
                self.store.set_draw_status(
                    txn, attempt.round.id, DrawStatus.NONE, expected=DrawStatus.GENERATING
                )
            elif reason is None:
                draw_id = self.store.write_draw(
                    txn,
                    attempt.tournament,
                    attempt.round,
                    [([t.id for t in prop], [t.id for t in opp]) for prop, opp in rooms],
                    created_at=self.clock.now(),
                )
                debates = self.store.get_draw_repr(txn, attempt.round.id).debates
                for debate, panel in zip(debates, panels):
                    self.store.set_debate_judges(txn, debate.id, panel)
                self.store.set_draw_status(
                    txn, attempt.round.id, DrawStatus.DRAFTED, expected=DrawStatus.GENERATING
                )
                self.store.release_ticket(txn, attempt.ticket.id)

        if reason is not None:
            logger.warning(f"Draw ticket {attempt.ticket.seq} for round {attempt.round.name} {reason}")
            raise TicketExpired(f"Draw ticket for round {attempt.round.name} {reason}")

        logger.info(f"Committed draw {draw_id} for round {attempt.round.name} ({len(rooms)} debates)")
        return draw_id

    def fail(self, ticket: DrawTicket, error: Exception) -> None:
        """Return the round to ``none`` if ``ticket`` is still the live one."""
        with self.store.transaction() as txn:
            if self._expiry(txn, ticket) is not None:
                return
            self.store.release_ticket(txn, ticket.id, error=str(error) or type(error).__name__)
            self.store.set_draw_status(txn, ticket.round_id, DrawStatus.NONE, expected=DrawStatus.GENERATING)

    def cancel(self, round_id: str) -> Round:
        """Invalidate the live ticket so any in-flight attempt discards its work."""
        with self.store.transaction() as txn:
            round = self.store.get_round(txn, round_id)
            if round.draw_status != DrawStatus.GENERATING:
                raise InvalidState(f"Round {round.name} has no draw being generated")
            cancelled = self.store.cancel_live_tickets(txn, round.id)
            self.store.set_draw_status(txn, round.id, DrawStatus.NONE, expected=DrawStatus.GENERATING)
        logger.info(f"Cancelled {cancelled} draw ticket(s) for round {round.name}")
        return round.model_copy(update={"draw_status": DrawStatus.NONE})
