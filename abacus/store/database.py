"""SQLite store gateway for the round engine.

Every read and write goes through a :class:`Transaction` obtained from
:meth:`StoreGateway.transaction`. A transaction wraps exactly one connection;
it commits when the ``with`` block exits normally and rolls back on any
exception, including invariant violations detected by the gateway itself.
"""

import json
import logging
import sqlite3
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any

from abacus.clock import new_id
from abacus.errors import InternalError, InvalidInput, InvalidState, NotFound
from abacus.tournaments.models import (
    Ballot,
    BallotSetup,
    BallotTeamResult,
    Conflict,
    ConflictKind,
    Debate,
    Draw,
    DrawStatus,
    DrawTicket,
    Institution,
    Judge,
    JudgeOfDebate,
    JudgeRole,
    Member,
    MemberRole,
    Motion,
    Room,
    RoomCategory,
    RoomPreference,
    Round,
    RoundKind,
    Speaker,
    SpeakerResult,
    SpeakerScore,
    Team,
    TeamOfDebate,
    TeamResult,
    Tournament,
)
from abacus.tournaments.repr import DebateRepr, DrawRepr

from .schema import SchemaManager

logger = logging.getLogger(__name__)


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _dec(value: Decimal | None) -> str | None:
    return str(value) if value is not None else None


def _parse_dec(value: Any) -> Decimal | None:
    return Decimal(str(value)) if value is not None else None


class Transaction:
    """A handle on one open database transaction."""

    def __init__(self, conn: sqlite3.Connection, write: bool):
        self.conn = conn
        self.write = write

    def execute(self, query: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        if not self.write and not query.lstrip().upper().startswith("SELECT"):
            raise InternalError("Attempted a write inside a read-only transaction")
        return self.conn.execute(query, params)

    def query(self, query: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        return self.conn.execute(query, params).fetchall()

    def query_one(self, query: str, params: Sequence[Any] = ()) -> sqlite3.Row | None:
        return self.conn.execute(query, params).fetchone()


class StoreGateway:
    """Typed, transactional access to the persistent store."""

    def __init__(self, db_path: str = "abacus.db"):
        self.db_path = Path(db_path)
        self.schema_manager = SchemaManager()
        self._init_database()

    def _init_database(self) -> None:
        if not self.schema_manager.validate_schema_files():
            raise RuntimeError("Database schema validation failed - missing schema files")

        with self.transaction() as txn:
            self.schema_manager.initialize_database_schema(txn.conn.cursor())
        logger.info(f"Database initialized at {self.db_path}")

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Get a database connection with proper error handling."""
        conn = None
        try:
            conn = sqlite3.connect(self.db_path, timeout=30, isolation_level=None)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            yield conn
        finally:
            if conn:
                conn.close()

    @contextmanager
    def transaction(self, write: bool = True) -> Iterator[Transaction]:
        """Open a transaction; commit on success, roll back on any failure.

        Write transactions take the database write lock up front
        (``BEGIN IMMEDIATE``) so concurrent writers serialise instead of
        failing half-way through.
        """
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE" if write else "BEGIN")
            try:
                yield Transaction(conn, write)
            except sqlite3.IntegrityError as e:
                conn.rollback()
                logger.warning(f"Integrity error, transaction rolled back: {e}")
                raise InvalidInput(f"Constraint violated: {e}") from e
            except sqlite3.Error as e:
                conn.rollback()
                logger.error(f"Database error: {e}")
                raise InternalError("Unexpected database error") from e
            except BaseException:
                conn.rollback()
                raise
            else:
                conn.commit()

    # ========== Tournaments ==========

    def create_tournament(self, txn: Transaction, tournament: Tournament) -> str:
        txn.execute(
            """
            INSERT INTO tournaments (
                id, name, slug, created_at, teams_per_side, substantive_speakers,
                reply_speakers, reply_must_speak, max_substantive_speech_index_for_reply,
                pool_ballot_setup, elim_ballot_setup, elim_ballots_require_speaks,
                institution_penalty, history_penalty, position_penalty, judges_per_panel,
                draw_algorithm, min_speaker_score, max_speaker_score, min_reply_score,
                max_reply_score, team_standings_metrics, speaker_standings_metrics,
                exclude_from_speaker_standings_after
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                tournament.id,
                tournament.name,
                tournament.slug,
                _ts(tournament.created_at),
                tournament.teams_per_side,
                tournament.substantive_speakers,
                tournament.reply_speakers,
                tournament.reply_must_speak,
                tournament.max_substantive_speech_index_for_reply,
                tournament.pool_ballot_setup.value,
                tournament.elim_ballot_setup.value,
                tournament.elim_ballots_require_speaks,
                tournament.institution_penalty,
                tournament.history_penalty,
                tournament.position_penalty,
                tournament.judges_per_panel,
                tournament.draw_algorithm,
                _dec(tournament.min_speaker_score),
                _dec(tournament.max_speaker_score),
                _dec(tournament.min_reply_score),
                _dec(tournament.max_reply_score),
                json.dumps(tournament.team_standings_metrics),
                json.dumps(tournament.speaker_standings_metrics),
                tournament.exclude_from_speaker_standings_after,
            ),
        )
        logger.info(f"Created tournament {tournament.id}: {tournament.name}")
        return tournament.id

    def get_tournament(self, txn: Transaction, tournament_id: str) -> Tournament:
        row = txn.query_one("SELECT * FROM tournaments WHERE id = ?", (tournament_id,))
        if not row:
            raise NotFound(f"Tournament {tournament_id} not found")
        return self._tournament_from_row(row)

    def _tournament_from_row(self, row: sqlite3.Row) -> Tournament:
        return Tournament(
            id=row["id"],
            name=row["name"],
            slug=row["slug"],
            created_at=_parse_ts(row["created_at"]),
            teams_per_side=row["teams_per_side"],
            substantive_speakers=row["substantive_speakers"],
            reply_speakers=bool(row["reply_speakers"]),
            reply_must_speak=bool(row["reply_must_speak"]),
            max_substantive_speech_index_for_reply=row["max_substantive_speech_index_for_reply"],
            pool_ballot_setup=BallotSetup(row["pool_ballot_setup"]),
            elim_ballot_setup=BallotSetup(row["elim_ballot_setup"]),
            elim_ballots_require_speaks=bool(row["elim_ballots_require_speaks"]),
            institution_penalty=row["institution_penalty"],
            history_penalty=row["history_penalty"],
            position_penalty=row["position_penalty"],
            judges_per_panel=row["judges_per_panel"],
            draw_algorithm=row["draw_algorithm"],
            min_speaker_score=_parse_dec(row["min_speaker_score"]),
            max_speaker_score=_parse_dec(row["max_speaker_score"]),
            min_reply_score=_parse_dec(row["min_reply_score"]),
            max_reply_score=_parse_dec(row["max_reply_score"]),
            team_standings_metrics=json.loads(row["team_standings_metrics"]),
            speaker_standings_metrics=json.loads(row["speaker_standings_metrics"]),
            exclude_from_speaker_standings_after=row["exclude_from_speaker_standings_after"],
            results_stamp=row["results_stamp"],
        )

    def update_standings_metrics(
        self,
        txn: Transaction,
        tournament_id: str,
        team_metrics: list[str] | None = None,
        speaker_metrics: list[str] | None = None,
    ) -> None:
        """Change the metric stacks. Only legal while no round is under way."""
        busy = txn.query_one(
            "SELECT COUNT(*) AS n FROM rounds WHERE tournament_id = ? AND draw_status IN ('G', 'D', 'R', 'I')",
            (tournament_id,),
        )
        if busy["n"]:
            raise InvalidState("Configuration can only be changed between rounds")
        if team_metrics is not None:
            txn.execute(
                "UPDATE tournaments SET team_standings_metrics = ? WHERE id = ?",
                (json.dumps(team_metrics), tournament_id),
            )
        if speaker_metrics is not None:
            txn.execute(
                "UPDATE tournaments SET speaker_standings_metrics = ? WHERE id = ?",
                (json.dumps(speaker_metrics), tournament_id),
            )

    def bump_results_stamp(self, txn: Transaction, tournament_id: str) -> int:
        txn.execute(
            "UPDATE tournaments SET results_stamp = results_stamp + 1 WHERE id = ?",
            (tournament_id,),
        )
        return self.get_results_stamp(txn, tournament_id)

    def get_results_stamp(self, txn: Transaction, tournament_id: str) -> int:
        row = txn.query_one("SELECT results_stamp FROM tournaments WHERE id = ?", (tournament_id,))
        if not row:
            raise NotFound(f"Tournament {tournament_id} not found")
        return row["results_stamp"]

    # ========== Members ==========

    def add_member(self, txn: Transaction, tournament_id: str, user_id: str, role: MemberRole) -> Member:
        member = Member(id=new_id(), tournament_id=tournament_id, user_id=user_id, role=role)
        txn.execute(
            "INSERT INTO tournament_members (id, tournament_id, user_id, role) VALUES (?, ?, ?, ?)",
            (member.id, tournament_id, user_id, role.value),
        )
        return member

    def get_member(self, txn: Transaction, tournament_id: str, user_id: str) -> Member | None:
        row = txn.query_one(
            "SELECT * FROM tournament_members WHERE tournament_id = ? AND user_id = ?",
            (tournament_id, user_id),
        )
        if not row:
            return None
        return Member(
            id=row["id"],
            tournament_id=row["tournament_id"],
            user_id=row["user_id"],
            role=MemberRole(row["role"]),
        )

    # ========== Participants ==========

    def create_institution(self, txn: Transaction, institution: Institution) -> None:
        txn.execute(
            "INSERT INTO institutions (id, tournament_id, name, code) VALUES (?, ?, ?, ?)",
            (institution.id, institution.tournament_id, institution.name, institution.code),
        )

    def list_institutions(self, txn: Transaction, tournament_id: str) -> list[Institution]:
        rows = txn.query(
            "SELECT * FROM institutions WHERE tournament_id = ? ORDER BY name", (tournament_id,)
        )
        return [Institution(**dict(row)) for row in rows]

    def create_team(self, txn: Transaction, team: Team) -> None:
        txn.execute(
            "INSERT INTO teams (id, tournament_id, name, institution_id, number) VALUES (?, ?, ?, ?, ?)",
            (team.id, team.tournament_id, team.name, team.institution_id, team.number),
        )

    def update_team(self, txn: Transaction, team: Team) -> None:
        """Rename or re-institution a team. Frozen once a released draw uses it."""
        referenced = txn.query_one(
            """
            SELECT COUNT(*) AS n FROM teams_of_debate td
            JOIN debates d ON d.id = td.debate_id
            JOIN draws dr ON dr.id = d.draw_id
            WHERE td.team_id = ? AND dr.released_at IS NOT NULL
            """,
            (team.id,),
        )
        if referenced["n"]:
            raise InvalidState(f"Team {team.name} already appears in a released draw")
        cursor = txn.execute(
            "UPDATE teams SET name = ?, institution_id = ?, number = ? WHERE id = ?",
            (team.name, team.institution_id, team.number, team.id),
        )
        if cursor.rowcount == 0:
            raise NotFound(f"Team {team.id} not found")

    def get_team(self, txn: Transaction, team_id: str) -> Team:
        row = txn.query_one("SELECT * FROM teams WHERE id = ?", (team_id,))
        if not row:
            raise NotFound(f"Team {team_id} not found")
        return Team(**dict(row))

    def list_teams(self, txn: Transaction, tournament_id: str) -> list[Team]:
        rows = txn.query(
            "SELECT * FROM teams WHERE tournament_id = ? ORDER BY number, id", (tournament_id,)
        )
        return [Team(**dict(row)) for row in rows]

    def create_speaker(self, txn: Transaction, speaker: Speaker) -> None:
        txn.execute(
            """
            INSERT INTO speakers (id, tournament_id, team_id, participant_id, name, email, private_url)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                speaker.id,
                speaker.tournament_id,
                speaker.team_id,
                speaker.participant_id,
                speaker.name,
                speaker.email,
                speaker.private_url,
            ),
        )

    def list_speakers(self, txn: Transaction, tournament_id: str) -> list[Speaker]:
        rows = txn.query(
            "SELECT * FROM speakers WHERE tournament_id = ? ORDER BY id", (tournament_id,)
        )
        return [Speaker(**dict(row)) for row in rows]

    def create_judge(self, txn: Transaction, judge: Judge) -> None:
        txn.execute(
            """
            INSERT INTO judges (id, tournament_id, participant_id, institution_id, name, email, rating, private_url)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                judge.id,
                judge.tournament_id,
                judge.participant_id,
                judge.institution_id,
                judge.name,
                judge.email,
                judge.rating,
                judge.private_url,
            ),
        )

    def list_judges(self, txn: Transaction, tournament_id: str) -> list[Judge]:
        rows = txn.query(
            "SELECT * FROM judges WHERE tournament_id = ? ORDER BY id", (tournament_id,)
        )
        return [Judge(**dict(row)) for row in rows]

    def participant_kind(self, txn: Transaction, tournament_id: str, participant_id: str) -> str | None:
        """Whether the id names a ``team`` or a ``judge`` of the tournament, else None."""
        for kind, table in (("team", "teams"), ("judge", "judges")):
            row = txn.query_one(
                f"SELECT 1 FROM {table} WHERE id = ? AND tournament_id = ?", (participant_id, tournament_id)
            )
            if row:
                return kind
        return None

    def add_conflict(self, txn: Transaction, conflict: Conflict) -> None:
        a_id, b_id = conflict.a_id, conflict.b_id
        # Conflicts are symmetric, stored in canonical order so duplicates collide
        if b_id < a_id:
            a_id, b_id = b_id, a_id
        txn.execute(
            "INSERT INTO conflicts (id, tournament_id, kind, a_id, b_id) VALUES (?, ?, ?, ?, ?)",
            (conflict.id, conflict.tournament_id, conflict.kind.value, a_id, b_id),
        )

    def list_conflicts(self, txn: Transaction, tournament_id: str) -> list[Conflict]:
        rows = txn.query("SELECT * FROM conflicts WHERE tournament_id = ?", (tournament_id,))
        return [
            Conflict(
                id=row["id"],
                tournament_id=row["tournament_id"],
                kind=ConflictKind(row["kind"]),
                a_id=row["a_id"],
                b_id=row["b_id"],
            )
            for row in rows
        ]

    # ========== Rooms ==========

    def create_room(self, txn: Transaction, room: Room) -> None:
        txn.execute(
            "INSERT INTO rooms (id, tournament_id, name, url, priority) VALUES (?, ?, ?, ?, ?)",
            (room.id, room.tournament_id, room.name, room.url, room.priority),
        )

    def get_room(self, txn: Transaction, room_id: str) -> Room:
        row = txn.query_one("SELECT * FROM rooms WHERE id = ?", (room_id,))
        if not row:
            raise NotFound(f"Room {room_id} not found")
        return Room(**dict(row))

    def list_rooms(self, txn: Transaction, tournament_id: str) -> list[Room]:
        rows = txn.query(
            "SELECT * FROM rooms WHERE tournament_id = ? ORDER BY priority, id", (tournament_id,)
        )
        return [Room(**dict(row)) for row in rows]

    def create_room_category(self, txn: Transaction, category: RoomCategory) -> None:
        txn.execute(
            "INSERT INTO room_categories (id, tournament_id, name) VALUES (?, ?, ?)",
            (category.id, category.tournament_id, category.name),
        )
        for room_id in category.room_ids:
            self.add_room_to_category(txn, category.id, room_id)

    def add_room_to_category(self, txn: Transaction, category_id: str, room_id: str) -> None:
        txn.execute(
            "INSERT OR IGNORE INTO room_category_members (category_id, room_id) VALUES (?, ?)",
            (category_id, room_id),
        )

    def list_room_categories(self, txn: Transaction, tournament_id: str) -> list[RoomCategory]:
        rows = txn.query(
            "SELECT * FROM room_categories WHERE tournament_id = ? ORDER BY id", (tournament_id,)
        )
        members = txn.query(
            """
            SELECT m.category_id, m.room_id FROM room_category_members m
            JOIN room_categories c ON c.id = m.category_id
            WHERE c.tournament_id = ? ORDER BY m.room_id
            """,
            (tournament_id,),
        )
        rooms_of: dict[str, list[str]] = {}
        for member in members:
            rooms_of.setdefault(member["category_id"], []).append(member["room_id"])
        return [
            RoomCategory(
                id=row["id"],
                tournament_id=row["tournament_id"],
                name=row["name"],
                room_ids=rooms_of.get(row["id"], []),
            )
            for row in rows
        ]

    def set_room_preference(self, txn: Transaction, tournament_id: str, preference: RoomPreference) -> None:
        if not -2 <= preference.score <= 2:
            raise InvalidInput("Room preferences must lie between -2 and 2", field="score")
        txn.execute(
            """
            INSERT INTO room_preferences (id, tournament_id, participant_id, category_id, score)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (participant_id, category_id) DO UPDATE SET score = excluded.score
            """,
            (new_id(), tournament_id, preference.participant_id, preference.category_id, preference.score),
        )

    def list_room_preferences(self, txn: Transaction, tournament_id: str) -> list[RoomPreference]:
        rows = txn.query(
            "SELECT participant_id, category_id, score FROM room_preferences WHERE tournament_id = ?",
            (tournament_id,),
        )
        return [RoomPreference(**dict(row)) for row in rows]

    # ========== Rounds ==========

    def create_round(self, txn: Transaction, round: Round) -> None:
        txn.execute(
            """
            INSERT INTO rounds (id, tournament_id, seq, name, kind, draw_status, completed)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                round.id,
                round.tournament_id,
                round.seq,
                round.name,
                round.kind.value,
                round.draw_status.value,
                round.completed,
            ),
        )

    def _round_from_row(self, row: sqlite3.Row) -> Round:
        return Round(
            id=row["id"],
            tournament_id=row["tournament_id"],
            seq=row["seq"],
            name=row["name"],
            kind=RoundKind(row["kind"]),
            draw_status=DrawStatus(row["draw_status"]),
            completed=bool(row["completed"]),
            released_at=_parse_ts(row["released_at"]),
        )

    def get_round(self, txn: Transaction, round_id: str) -> Round:
        row = txn.query_one("SELECT * FROM rounds WHERE id = ?", (round_id,))
        if not row:
            raise NotFound(f"Round {round_id} not found")
        return self._round_from_row(row)

    def list_rounds(self, txn: Transaction, tournament_id: str) -> list[Round]:
        rows = txn.query(
            "SELECT * FROM rounds WHERE tournament_id = ? ORDER BY seq", (tournament_id,)
        )
        return [self._round_from_row(row) for row in rows]

    def set_draw_status(
        self,
        txn: Transaction,
        round_id: str,
        status: DrawStatus,
        expected: DrawStatus | None = None,
    ) -> bool:
        """Set a round's draw status, optionally only if it currently is ``expected``."""
        if expected is None:
            cursor = txn.execute(
                "UPDATE rounds SET draw_status = ? WHERE id = ?", (status.value, round_id)
            )
        else:
            cursor = txn.execute(
                "UPDATE rounds SET draw_status = ? WHERE id = ? AND draw_status = ?",
                (status.value, round_id, expected.value),
            )
        return cursor.rowcount > 0

    def mark_round_released(self, txn: Transaction, round_id: str, at: datetime) -> None:
        txn.execute("UPDATE rounds SET released_at = ? WHERE id = ?", (_ts(at), round_id))
        txn.execute("UPDATE draws SET released_at = ? WHERE round_id = ?", (_ts(at), round_id))

    def mark_round_completed(self, txn: Transaction, round_id: str) -> None:
        txn.execute("UPDATE rounds SET completed = 1 WHERE id = ?", (round_id,))

    def count_completed_preliminary_rounds(self, txn: Transaction, tournament_id: str) -> int:
        row = txn.query_one(
            "SELECT COUNT(*) AS n FROM rounds WHERE tournament_id = ? AND kind = 'P' AND completed = 1",
            (tournament_id,),
        )
        return row["n"]

    # ========== Motions ==========

    def create_motion(self, txn: Transaction, motion: Motion) -> None:
        txn.execute(
            "INSERT INTO motions (id, tournament_id, round_id, infoslide, motion) VALUES (?, ?, ?, ?, ?)",
            (motion.id, motion.tournament_id, motion.round_id, motion.infoslide, motion.motion),
        )

    def get_motion(self, txn: Transaction, motion_id: str) -> Motion:
        row = txn.query_one("SELECT * FROM motions WHERE id = ?", (motion_id,))
        if not row:
            raise NotFound(f"Motion {motion_id} not found")
        return Motion(**dict(row))

    # ========== Availability ==========

    def set_team_availability(self, txn: Transaction, round_id: str, team_id: str, available: bool) -> None:
        txn.execute(
            """
            INSERT INTO team_availability (round_id, team_id, available) VALUES (?, ?, ?)
            ON CONFLICT (round_id, team_id) DO UPDATE SET available = excluded.available
            """,
            (round_id, team_id, available),
        )

    def set_judge_availability(self, txn: Transaction, round_id: str, judge_id: str, available: bool) -> None:
        txn.execute(
            """
            INSERT INTO judge_availability (round_id, judge_id, available) VALUES (?, ?, ?)
            ON CONFLICT (round_id, judge_id) DO UPDATE SET available = excluded.available
            """,
            (round_id, judge_id, available),
        )

    def active_teams(self, txn: Transaction, round: Round) -> list[Team]:
        """Teams not withdrawn from ``round``."""
        rows = txn.query(
            """
            SELECT t.* FROM teams t
            LEFT JOIN team_availability a ON a.team_id = t.id AND a.round_id = ?
            WHERE t.tournament_id = ? AND COALESCE(a.available, 1) = 1
            ORDER BY t.number, t.id
            """,
            (round.id, round.tournament_id),
        )
        return [Team(**dict(row)) for row in rows]

    def available_judges(self, txn: Transaction, round: Round) -> list[Judge]:
        rows = txn.query(
            """
            SELECT j.* FROM judges j
            LEFT JOIN judge_availability a ON a.judge_id = j.id AND a.round_id = ?
            WHERE j.tournament_id = ? AND COALESCE(a.available, 1) = 1
            ORDER BY j.id
            """,
            (round.id, round.tournament_id),
        )
        return [Judge(**dict(row)) for row in rows]

    # ========== Draw tickets ==========

    def _ticket_from_row(self, row: sqlite3.Row) -> DrawTicket:
        return DrawTicket(
            id=row["id"],
            round_id=row["round_id"],
            seq=row["seq"],
            owner=row["owner"],
            acquired_at=_parse_ts(row["acquired_at"]),
            deadline=_parse_ts(row["deadline"]),
            released=bool(row["released"]),
            cancelled=bool(row["cancelled"]),
            error=row["error"],
        )

    def live_ticket(self, txn: Transaction, round_id: str) -> DrawTicket | None:
        """The newest unreleased, uncancelled ticket of a round, if any."""
        row = txn.query_one(
            """
            SELECT * FROM round_tickets
            WHERE round_id = ? AND released = 0 AND cancelled = 0
            ORDER BY seq DESC LIMIT 1
            """,
            (round_id,),
        )
        return self._ticket_from_row(row) if row else None

    def latest_ticket(self, txn: Transaction, round_id: str) -> DrawTicket | None:
        """The most recently minted ticket of a round, whatever its state."""
        row = txn.query_one(
            "SELECT * FROM round_tickets WHERE round_id = ? ORDER BY seq DESC LIMIT 1", (round_id,)
        )
        return self._ticket_from_row(row) if row else None

    def insert_ticket(
        self, txn: Transaction, round_id: str, owner: str, acquired_at: datetime, deadline: datetime
    ) -> DrawTicket:
        row = txn.query_one(
            "SELECT COALESCE(MAX(seq), -1) AS seq FROM round_tickets WHERE round_id = ?", (round_id,)
        )
        ticket = DrawTicket(
            id=new_id(),
            round_id=round_id,
            seq=row["seq"] + 1,
            owner=owner,
            acquired_at=acquired_at,
            deadline=deadline,
        )
        txn.execute(
            """
            INSERT INTO round_tickets (id, round_id, seq, owner, acquired_at, deadline)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (ticket.id, round_id, ticket.seq, owner, _ts(acquired_at), _ts(deadline)),
        )
        return ticket

    def get_ticket(self, txn: Transaction, ticket_id: str) -> DrawTicket:
        row = txn.query_one("SELECT * FROM round_tickets WHERE id = ?", (ticket_id,))
        if not row:
            raise NotFound(f"Draw ticket {ticket_id} not found")
        return self._ticket_from_row(row)

    def release_ticket(self, txn: Transaction, ticket_id: str, error: str | None = None) -> None:
        txn.execute(
            "UPDATE round_tickets SET released = 1, error = ? WHERE id = ?", (error, ticket_id)
        )

    def cancel_live_tickets(self, txn: Transaction, round_id: str) -> int:
        cursor = txn.execute(
            "UPDATE round_tickets SET cancelled = 1 WHERE round_id = ? AND released = 0 AND cancelled = 0",
            (round_id,),
        )
        return cursor.rowcount

    # ========== Draws ==========

    def delete_draw_for_round(self, txn: Transaction, round_id: str) -> None:
        txn.execute("DELETE FROM draws WHERE round_id = ?", (round_id,))

    def write_draw(
        self,
        txn: Transaction,
        tournament: Tournament,
        round: Round,
        rooms: list[tuple[list[str], list[str]]],
        created_at: datetime,
    ) -> str:
        """Replace the draw of ``round`` with ``rooms`` of (prop, opp) team ids."""
        seen: set[str] = set()
        for prop, opp in rooms:
            if len(prop) != tournament.teams_per_side or len(opp) != tournament.teams_per_side:
                raise InternalError(
                    f"Debate sides must each hold {tournament.teams_per_side} teams"
                )
            for team_id in prop + opp:
                if team_id in seen:
                    raise InternalError(f"Team {team_id} drawn into more than one debate")
                seen.add(team_id)

        self.delete_draw_for_round(txn, round.id)
        draw_id = new_id()
        txn.execute(
            "INSERT INTO draws (id, tournament_id, round_id, created_at) VALUES (?, ?, ?, ?)",
            (draw_id, tournament.id, round.id, _ts(created_at)),
        )
        for number, (prop, opp) in enumerate(rooms):
            debate_id = new_id()
            txn.execute(
                "INSERT INTO debates (id, tournament_id, draw_id, room_id, number) VALUES (?, ?, ?, NULL, ?)",
                (debate_id, tournament.id, draw_id, number),
            )
            for side, teams in enumerate((prop, opp)):
                for seq, team_id in enumerate(teams):
                    txn.execute(
                        "INSERT INTO teams_of_debate (debate_id, team_id, side, seq) VALUES (?, ?, ?, ?)",
                        (debate_id, team_id, side, seq),
                    )
        return draw_id

    def get_draw(self, txn: Transaction, round_id: str) -> Draw | None:
        row = txn.query_one("SELECT * FROM draws WHERE round_id = ?", (round_id,))
        if not row:
            return None
        return Draw(
            id=row["id"],
            tournament_id=row["tournament_id"],
            round_id=row["round_id"],
            created_at=_parse_ts(row["created_at"]),
            released_at=_parse_ts(row["released_at"]),
        )

    def get_draw_repr(self, txn: Transaction, round_id: str) -> DrawRepr:
        round = self.get_round(txn, round_id)
        draw = self.get_draw(txn, round_id)
        if draw is None:
            raise NotFound(f"Round {round.name} has no draw")

        debates = [
            Debate(**dict(row))
            for row in txn.query("SELECT * FROM debates WHERE draw_id = ? ORDER BY number", (draw.id,))
        ]
        team_rows = txn.query(
            """
            SELECT td.* FROM teams_of_debate td JOIN debates d ON d.id = td.debate_id
            WHERE d.draw_id = ? ORDER BY td.side, td.seq
            """,
            (draw.id,),
        )
        judge_rows = txn.query(
            """
            SELECT jd.* FROM judges_of_debate jd JOIN debates d ON d.id = jd.debate_id
            WHERE d.draw_id = ? ORDER BY jd.role, jd.judge_id
            """,
            (draw.id,),
        )
        reprs = {debate.id: DebateRepr(debate=debate) for debate in debates}
        for row in team_rows:
            reprs[row["debate_id"]].teams.append(TeamOfDebate(**dict(row)))
        for row in judge_rows:
            reprs[row["debate_id"]].judges.append(
                JudgeOfDebate(debate_id=row["debate_id"], judge_id=row["judge_id"], role=JudgeRole(row["role"]))
            )

        return DrawRepr(
            draw=draw,
            round=round,
            debates=[reprs[debate.id] for debate in debates],
            teams={t.id: t for t in self.list_teams(txn, round.tournament_id)},
            judges={j.id: j for j in self.list_judges(txn, round.tournament_id)},
            rooms={r.id: r for r in self.list_rooms(txn, round.tournament_id)},
        )

    def set_debate_judges(
        self, txn: Transaction, debate_id: str, panel: list[tuple[str, JudgeRole]]
    ) -> None:
        txn.execute("DELETE FROM judges_of_debate WHERE debate_id = ?", (debate_id,))
        for judge_id, role in panel:
            txn.execute(
                "INSERT INTO judges_of_debate (debate_id, judge_id, role) VALUES (?, ?, ?)",
                (debate_id, judge_id, role.value),
            )

    def set_debate_room(self, txn: Transaction, debate_id: str, room_id: str | None) -> None:
        """Assign a room; a room may be used by at most one debate per round."""
        if room_id is not None:
            clash = txn.query_one(
                """
                SELECT other.id FROM debates d
                JOIN debates other ON other.draw_id = d.draw_id AND other.id != d.id
                WHERE d.id = ? AND other.room_id = ?
                """,
                (debate_id, room_id),
            )
            if clash:
                raise InvalidInput(f"Room {room_id} is already used in this round", field="room_id")
        cursor = txn.execute("UPDATE debates SET room_id = ? WHERE id = ?", (room_id, debate_id))
        if cursor.rowcount == 0:
            raise NotFound(f"Debate {debate_id} not found")

    def get_debate(self, txn: Transaction, debate_id: str) -> Debate:
        row = txn.query_one("SELECT * FROM debates WHERE id = ?", (debate_id,))
        if not row:
            raise NotFound(f"Debate {debate_id} not found")
        return Debate(**dict(row))

    def round_of_debate(self, txn: Transaction, debate_id: str) -> Round:
        row = txn.query_one(
            """
            SELECT r.* FROM rounds r JOIN draws dr ON dr.round_id = r.id
            JOIN debates d ON d.draw_id = dr.id WHERE d.id = ?
            """,
            (debate_id,),
        )
        if not row:
            raise NotFound(f"Debate {debate_id} not found")
        return self._round_from_row(row)

    def debates_holding_room(self, txn: Transaction, room_id: str, round_ids: list[str]) -> list[tuple[str, str]]:
        """(debate_id, round_id) pairs among ``round_ids`` currently using ``room_id``."""
        if not round_ids:
            return []
        placeholders = ", ".join("?" for _ in round_ids)
        rows = txn.query(
            f"""
            SELECT d.id AS debate_id, dr.round_id FROM debates d
            JOIN draws dr ON dr.id = d.draw_id
            WHERE d.room_id = ? AND dr.round_id IN ({placeholders})
            """,
            (room_id, *round_ids),
        )
        return [(row["debate_id"], row["round_id"]) for row in rows]

    def prior_team_positions(self, txn: Transaction, round: Round) -> list[sqlite3.Row]:
        """Slots held by teams in released draws of rounds before ``round``."""
        return txn.query(
            """
            SELECT td.team_id, td.side, td.seq, td.debate_id FROM teams_of_debate td
            JOIN debates d ON d.id = td.debate_id
            JOIN draws dr ON dr.id = d.draw_id
            JOIN rounds r ON r.id = dr.round_id
            WHERE r.tournament_id = ? AND r.seq < ? AND dr.released_at IS NOT NULL
            ORDER BY td.debate_id, td.side, td.seq
            """,
            (round.tournament_id, round.seq),
        )

    # ========== Ballots ==========

    def insert_ballot(self, txn: Transaction, ballot: Ballot) -> Ballot:
        row = txn.query_one(
            "SELECT COALESCE(MAX(version), -1) AS v FROM ballots WHERE debate_id = ? AND judge_id = ?",
            (ballot.debate_id, ballot.judge_id),
        )
        ballot = ballot.model_copy(update={"version": row["v"] + 1})
        txn.execute(
            """
            INSERT INTO ballots (id, tournament_id, debate_id, judge_id, motion_id, submitted_at, version, confirmed)
            VALUES (?, ?, ?, ?, ?, ?, ?, 0)
            """,
            (
                ballot.id,
                ballot.tournament_id,
                ballot.debate_id,
                ballot.judge_id,
                ballot.motion_id,
                _ts(ballot.submitted_at),
                ballot.version,
            ),
        )
        for result in ballot.team_results:
            txn.execute(
                "INSERT INTO ballot_team_results (ballot_id, team_id, points, advancing) VALUES (?, ?, ?, ?)",
                (ballot.id, result.team_id, result.points, result.advancing),
            )
        for score in ballot.scores:
            txn.execute(
                """
                INSERT INTO ballot_speaker_scores (ballot_id, team_id, speaker_id, position, score)
                VALUES (?, ?, ?, ?, ?)
                """,
                (ballot.id, score.team_id, score.speaker_id, score.position, _dec(score.score)),
            )
        return ballot

    def _ballot_from_row(self, txn: Transaction, row: sqlite3.Row) -> Ballot:
        team_rows = txn.query(
            "SELECT * FROM ballot_team_results WHERE ballot_id = ? ORDER BY team_id", (row["id"],)
        )
        score_rows = txn.query(
            "SELECT * FROM ballot_speaker_scores WHERE ballot_id = ? ORDER BY team_id, position",
            (row["id"],),
        )
        return Ballot(
            id=row["id"],
            tournament_id=row["tournament_id"],
            debate_id=row["debate_id"],
            judge_id=row["judge_id"],
            motion_id=row["motion_id"],
            submitted_at=_parse_ts(row["submitted_at"]),
            version=row["version"],
            confirmed=bool(row["confirmed"]),
            team_results=[
                BallotTeamResult(team_id=r["team_id"], points=r["points"], advancing=bool(r["advancing"]))
                for r in team_rows
            ],
            scores=[
                SpeakerScore(
                    team_id=r["team_id"],
                    speaker_id=r["speaker_id"],
                    position=r["position"],
                    score=_parse_dec(r["score"]),
                )
                for r in score_rows
            ],
        )

    def get_ballot(self, txn: Transaction, ballot_id: str) -> Ballot:
        row = txn.query_one("SELECT * FROM ballots WHERE id = ?", (ballot_id,))
        if not row:
            raise NotFound(f"Ballot {ballot_id} not found")
        return self._ballot_from_row(txn, row)

    def latest_ballots(self, txn: Transaction, debate_id: str, confirmed_only: bool = False) -> list[Ballot]:
        """The newest ballot version of each judge of a debate."""
        rows = txn.query(
            f"""
            SELECT b.* FROM ballots b
            WHERE b.debate_id = ? {"AND b.confirmed = 1" if confirmed_only else ""}
              AND b.version = (
                SELECT MAX(version) FROM ballots o
                WHERE o.debate_id = b.debate_id AND o.judge_id = b.judge_id
                {"AND o.confirmed = 1" if confirmed_only else ""}
              )
            ORDER BY b.judge_id
            """,
            (debate_id,),
        )
        return [self._ballot_from_row(txn, row) for row in rows]

    def set_ballot_confirmed(self, txn: Transaction, ballot_id: str) -> None:
        txn.execute("UPDATE ballots SET confirmed = 1 WHERE id = ?", (ballot_id,))

    def debates_without_results(self, txn: Transaction, round_id: str) -> list[str]:
        rows = txn.query(
            """
            SELECT d.id FROM debates d JOIN draws dr ON dr.id = d.draw_id
            WHERE dr.round_id = ? AND NOT EXISTS (
                SELECT 1 FROM agg_team_results_of_debate a WHERE a.debate_id = d.id
            )
            ORDER BY d.number
            """,
            (round_id,),
        )
        return [row["id"] for row in rows]

    # ========== Aggregated results ==========

    def replace_debate_results(
        self,
        txn: Transaction,
        debate_id: str,
        team_results: list[TeamResult],
        speaker_results: list[SpeakerResult],
    ) -> None:
        txn.execute("DELETE FROM agg_team_results_of_debate WHERE debate_id = ?", (debate_id,))
        txn.execute("DELETE FROM agg_speaker_results_of_debate WHERE debate_id = ?", (debate_id,))
        for result in team_results:
            txn.execute(
                "INSERT INTO agg_team_results_of_debate (debate_id, team_id, points) VALUES (?, ?, ?)",
                (debate_id, result.team_id, result.points),
            )
        for result in speaker_results:
            txn.execute(
                """
                INSERT INTO agg_speaker_results_of_debate (debate_id, team_id, speaker_id, position, score)
                VALUES (?, ?, ?, ?, ?)
                """,
                (debate_id, result.team_id, result.speaker_id, result.position, _dec(result.score)),
            )

    def completed_team_results(self, txn: Transaction, tournament_id: str) -> list[TeamResult]:
        """Aggregated team results of completed preliminary rounds."""
        rows = txn.query(
            """
            SELECT a.debate_id, a.team_id, a.points FROM agg_team_results_of_debate a
            JOIN debates d ON d.id = a.debate_id
            JOIN draws dr ON dr.id = d.draw_id
            JOIN rounds r ON r.id = dr.round_id
            WHERE r.tournament_id = ? AND r.kind = 'P' AND r.completed = 1
            ORDER BY a.debate_id, a.team_id
            """,
            (tournament_id,),
        )
        return [TeamResult(**dict(row)) for row in rows]

    def completed_speaker_results(self, txn: Transaction, tournament_id: str) -> list[SpeakerResult]:
        """Aggregated speaker results of completed preliminary rounds."""
        rows = txn.query(
            """
            SELECT a.debate_id, a.team_id, a.speaker_id, a.position, a.score
            FROM agg_speaker_results_of_debate a
            JOIN debates d ON d.id = a.debate_id
            JOIN draws dr ON dr.id = d.draw_id
            JOIN rounds r ON r.id = dr.round_id
            WHERE r.tournament_id = ? AND r.kind = 'P' AND r.completed = 1
            ORDER BY a.debate_id, a.team_id, a.position
            """,
            (tournament_id,),
        )
        return [
            SpeakerResult(
                debate_id=row["debate_id"],
                team_id=row["team_id"],
                speaker_id=row["speaker_id"],
                position=row["position"],
                score=Decimal(row["score"]),
            )
            for row in rows
        ]

    def completed_ballot_team_points(self, txn: Transaction, tournament_id: str) -> list[tuple[str, int]]:
        """(team_id, points) for every latest confirmed ballot of completed preliminary rounds."""
        rows = txn.query(
            """
            SELECT btr.team_id, btr.points FROM ballot_team_results btr
            JOIN ballots b ON b.id = btr.ballot_id
            JOIN debates d ON d.id = b.debate_id
            JOIN draws dr ON dr.id = d.draw_id
            JOIN rounds r ON r.id = dr.round_id
            WHERE r.tournament_id = ? AND r.kind = 'P' AND r.completed = 1 AND b.confirmed = 1
              AND b.version = (
                SELECT MAX(version) FROM ballots o
                WHERE o.debate_id = b.debate_id AND o.judge_id = b.judge_id AND o.confirmed = 1
              )
            """,
            (tournament_id,),
        )
        return [(row["team_id"], row["points"]) for row in rows]

    # ========== Persisted standings ==========

    def save_team_standings(
        self,
        txn: Transaction,
        tournament_id: str,
        ranks: dict[str, int],
        metric_values: dict[str, dict[str, str]],
    ) -> None:
        txn.execute("DELETE FROM team_standings WHERE tournament_id = ?", (tournament_id,))
        txn.execute("DELETE FROM team_metrics WHERE tournament_id = ?", (tournament_id,))
        for team_id, rank in ranks.items():
            txn.execute(
                "INSERT INTO team_standings (tournament_id, team_id, rank) VALUES (?, ?, ?)",
                (tournament_id, team_id, rank),
            )
            for metric, value in metric_values.get(team_id, {}).items():
                txn.execute(
                    """
                    INSERT INTO team_metrics (tournament_id, team_id, metric_kind, metric_value)
                    VALUES (?, ?, ?, ?)
                    """,
                    (tournament_id, team_id, metric, value),
                )

    def save_speaker_standings(self, txn: Transaction, tournament_id: str, ranks: dict[str, int]) -> None:
        txn.execute("DELETE FROM speaker_standings WHERE tournament_id = ?", (tournament_id,))
        for speaker_id, rank in ranks.items():
            txn.execute(
                "INSERT INTO speaker_standings (tournament_id, speaker_id, rank) VALUES (?, ?, ?)",
                (tournament_id, speaker_id, rank),
            )

    def saved_team_ranks(self, txn: Transaction, tournament_id: str) -> dict[str, int]:
        rows = txn.query(
            "SELECT team_id, rank FROM team_standings WHERE tournament_id = ? ORDER BY rank, team_id",
            (tournament_id,),
        )
        return {row["team_id"]: row["rank"] for row in rows}


__all__ = ["StoreGateway", "Transaction"]
