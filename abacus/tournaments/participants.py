"""Tournament setup: participants, rooms, conflicts and availability.

Every write runs in its own store transaction on a worker thread and the
matching change event is published once the transaction has committed.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from abacus.clock import Clock, SystemClock, new_id, new_private_url
from abacus.config import TournamentDefaults
from abacus.errors import InvalidInput
from abacus.events import AvailabilityUpdate, EventBus, ParticipantsUpdate
from abacus.standings import validate_metric_names
from abacus.store import StoreGateway, Transaction
from abacus.tournaments.models import (
    Conflict,
    ConflictKind,
    Institution,
    Judge,
    MemberRole,
    Room,
    RoomCategory,
    RoomPreference,
    Speaker,
    Team,
    Tournament,
    TournamentCreateRequest,
)

logger = logging.getLogger(__name__)

CONFLICT_PARTIES = {
    ConflictKind.TEAM_TEAM: ["team", "team"],
    ConflictKind.JUDGE_TEAM: ["judge", "team"],
    ConflictKind.JUDGE_JUDGE: ["judge", "judge"],
}


class ParticipantRegistry:
    def __init__(
        self,
        store: StoreGateway,
        events: EventBus,
        clock: Clock | None = None,
        defaults: TournamentDefaults | None = None,
    ):
        self.store = store
        self.events = events
        self.clock = clock or SystemClock()
        self.defaults = defaults

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

    # ========== Tournaments ==========

    async def create_tournament(self, request: TournamentCreateRequest, owner_user_id: str) -> Tournament:
        """Create a tournament with ``owner_user_id`` as its superuser.

        Settings the request leaves out come from the configured tournament defaults.
        """
        values = self.defaults.model_dump() if self.defaults is not None else {}
        values.update(request.model_dump(exclude_unset=True))
        request = TournamentCreateRequest(**values)
        validate_metric_names(request.team_standings_metrics, request.speaker_standings_metrics)
        tournament = Tournament(id=new_id(), created_at=self.clock.now(), **request.model_dump())

        def write(txn: Transaction) -> None:
            self.store.create_tournament(txn, tournament)
            self.store.add_member(txn, tournament.id, owner_user_id, MemberRole.SUPERUSER)

        await self._write(write)
        return tournament

    async def get_tournament(self, tournament_id: str) -> Tournament:
        return await self._read(self.store.get_tournament, tournament_id)

    async def add_member(self, tournament_id: str, user_id: str, role: MemberRole):
        return await self._write(self.store.add_member, tournament_id, user_id, role)

    async def get_member(self, tournament_id: str, user_id: str):
        return await self._read(self.store.get_member, tournament_id, user_id)

    async def update_standings_metrics(
        self, tournament_id: str, team_metrics: list[str] | None = None, speaker_metrics: list[str] | None = None
    ) -> None:
        validate_metric_names(team_metrics or [], speaker_metrics or [])
        await self._write(self.store.update_standings_metrics, tournament_id, team_metrics, speaker_metrics)

    # ========== Participants ==========

    async def create_institution(self, tournament_id: str, name: str, code: str) -> Institution:
        institution = Institution(id=new_id(), tournament_id=tournament_id, name=name, code=code)
        await self._write(self.store.create_institution, institution)
        self.events.publish(ParticipantsUpdate(tournament_id=tournament_id))
        return institution

    async def create_team(
        self, tournament_id: str, name: str, institution_id: str | None = None, number: int | None = None
    ) -> Team:
        def write(txn: Transaction) -> Team:
            team_number = number
            if team_number is None:
                team_number = len(self.store.list_teams(txn, tournament_id)) + 1
            team = Team(
                id=new_id(),
                tournament_id=tournament_id,
                name=name,
                institution_id=institution_id,
                number=team_number,
            )
            self.store.create_team(txn, team)
            return team

        team = await self._write(write)
        self.events.publish(ParticipantsUpdate(tournament_id=tournament_id))
        return team

    async def update_team(self, team: Team) -> Team:
        await self._write(self.store.update_team, team)
        self.events.publish(ParticipantsUpdate(tournament_id=team.tournament_id))
        return team

    async def create_speaker(self, tournament_id: str, team_id: str, name: str, email: str = "") -> Speaker:
        speaker = Speaker(
            id=new_id(),
            tournament_id=tournament_id,
            team_id=team_id,
            participant_id=new_id(),
            name=name,
            email=email,
            private_url=new_private_url(),
        )
        await self._write(self.store.create_speaker, speaker)
        self.events.publish(ParticipantsUpdate(tournament_id=tournament_id))
        return speaker

    async def create_judge(
        self,
        tournament_id: str,
        name: str,
        email: str = "",
        rating: float = 0.0,
        institution_id: str | None = None,
    ) -> Judge:
        judge = Judge(
            id=new_id(),
            tournament_id=tournament_id,
            participant_id=new_id(),
            institution_id=institution_id,
            name=name,
            email=email,
            rating=rating,
            private_url=new_private_url(),
        )
        await self._write(self.store.create_judge, judge)
        self.events.publish(ParticipantsUpdate(tournament_id=tournament_id))
        return judge

    async def add_conflict(self, tournament_id: str, kind: ConflictKind, a_id: str, b_id: str) -> Conflict:
        conflict = Conflict(id=new_id(), tournament_id=tournament_id, kind=kind, a_id=a_id, b_id=b_id)

        def write(txn: Transaction) -> None:
            parties = sorted(
                self.store.participant_kind(txn, tournament_id, pid) or "unknown participant" for pid in (a_id, b_id)
            )
            if parties != CONFLICT_PARTIES[kind]:
                raise InvalidInput(
                    f"A {kind.value} conflict cannot join a {parties[0]} and a {parties[1]}", field="kind"
                )
            self.store.add_conflict(txn, conflict)

        await self._write(write)
        self.events.publish(ParticipantsUpdate(tournament_id=tournament_id))
        return conflict

    # ========== Rooms ==========

    async def create_room(self, tournament_id: str, name: str, priority: int = 0, url: str = "") -> Room:
        room = Room(id=new_id(), tournament_id=tournament_id, name=name, url=url, priority=priority)
        await self._write(self.store.create_room, room)
        return room

    async def create_room_category(
        self, tournament_id: str, name: str, room_ids: list[str] | None = None
    ) -> RoomCategory:
        category = RoomCategory(
            id=new_id(), tournament_id=tournament_id, name=name, room_ids=list(room_ids or [])
        )
        await self._write(self.store.create_room_category, category)
        return category

    async def set_room_preference(
        self, tournament_id: str, participant_id: str, category_id: str, score: int
    ) -> RoomPreference:
        preference = RoomPreference(participant_id=participant_id, category_id=category_id, score=score)
        await self._write(self.store.set_room_preference, tournament_id, preference)
        return preference

    # ========== Availability ==========

    async def set_team_availability(self, round_id: str, team_id: str, available: bool) -> None:
        def write(txn: Transaction) -> str:
            round = self.store.get_round(txn, round_id)
            self.store.set_team_availability(txn, round_id, team_id, available)
            return round.tournament_id

        tournament_id = await self._write(write)
        self.events.publish(AvailabilityUpdate(tournament_id=tournament_id, round_id=round_id))

    async def set_judge_availability(self, round_id: str, judge_id: str, available: bool) -> None:
        def write(txn: Transaction) -> str:
            round = self.store.get_round(txn, round_id)
            self.store.set_judge_availability(txn, round_id, judge_id, available)
            return round.tournament_id

        tournament_id = await self._write(write)
        self.events.publish(AvailabilityUpdate(tournament_id=tournament_id, round_id=round_id))
