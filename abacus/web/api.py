"""HTTP endpoint handlers over the round engine operations."""

import logging
from typing import Any

from fastapi import HTTPException
from pydantic import ValidationError

from abacus.errors import AbacusError
from abacus.rounds import RoundLifecycleController
from abacus.standings import Standings
from abacus.tournaments.models import (
    BallotSubmission,
    Round,
    Tournament,
    TournamentCreateRequest,
)
from abacus.tournaments.participants import ParticipantRegistry
from abacus.tournaments.permissions import Permission, require_permission

from . import schemas

logger = logging.getLogger(__name__)


def to_http_exception(e: Exception, action: str) -> HTTPException:
    """Map an engine error onto the HTTP status it stands for."""
    if isinstance(e, HTTPException):
        return e
    if isinstance(e, AbacusError) and e.status_code < 500:
        return HTTPException(status_code=e.status_code, detail=str(e))
    if isinstance(e, (ValueError, ValidationError)):
        return HTTPException(status_code=400, detail=str(e))
    logger.error(f"Failed to {action}: {e}", exc_info=True)
    return HTTPException(status_code=500, detail="Internal server error")


def round_summary(round: Round) -> dict[str, Any]:
    return {
        "id": round.id,
        "tournament_id": round.tournament_id,
        "seq": round.seq,
        "name": round.name,
        "kind": round.kind.value,
        "draw_status": round.draw_status.name.lower(),
        "completed": round.completed,
        "released_at": round.released_at.isoformat() if round.released_at else None,
    }


def tournament_summary(tournament: Tournament) -> dict[str, Any]:
    data = tournament.model_dump(mode="json")
    data["teams_per_debate"] = tournament.teams_per_debate
    return data


def standings_summary(standings: Standings) -> dict[str, Any]:
    return {
        "metrics": standings.metrics,
        "standings": [
            {"rank": rank, "id": entity_id, "metrics": standings.display_values(entity_id)}
            for rank, ids in standings.rank_groups()
            for entity_id in ids
        ],
    }


class RoundEngineAPI:
    """FastAPI endpoint handlers for tournament setup, draws and results."""

    def __init__(self, participants: ParticipantRegistry, rounds: RoundLifecycleController):
        self.participants = participants
        self.rounds = rounds

    async def _require(self, tournament_id: str, user_id: str | None, permission: Permission) -> None:
        member = None
        if user_id is not None:
            member = await self.participants.get_member(tournament_id, user_id)
        require_permission(member, permission)

    async def _require_for_round(self, round_id: str, user_id: str | None, permission: Permission) -> Round:
        round = await self.rounds.get_round(round_id)
        await self._require(round.tournament_id, user_id, permission)
        return round

    # ========== Tournaments ==========

    async def create_tournament(self, request: TournamentCreateRequest, user_id: str | None) -> dict[str, Any]:
        try:
            if user_id is None:
                raise HTTPException(status_code=403, detail="A user is required to create a tournament")
            tournament = await self.participants.create_tournament(request, user_id)
            return {
                "tournament_id": tournament.id,
                "message": f"Tournament '{tournament.name}' created successfully",
            }
        except Exception as e:
            raise to_http_exception(e, "create tournament")

    async def get_tournament(self, tournament_id: str) -> dict[str, Any]:
        try:
            tournament = await self.participants.get_tournament(tournament_id)
            rounds = await self.rounds.list_rounds(tournament_id)
            summary = tournament_summary(tournament)
            summary["rounds"] = [round_summary(r) for r in rounds]
            return summary
        except Exception as e:
            raise to_http_exception(e, f"get tournament {tournament_id}")

    async def update_standings_metrics(
        self, tournament_id: str, request: schemas.StandingsMetricsRequest, user_id: str | None
    ) -> dict[str, Any]:
        try:
            await self._require(tournament_id, user_id, Permission.MANAGE_RESULTS)
            await self.participants.update_standings_metrics(
                tournament_id, request.team_standings_metrics, request.speaker_standings_metrics
            )
            return {"tournament_id": tournament_id, "message": "Standings metrics updated"}
        except Exception as e:
            raise to_http_exception(e, f"update metrics of tournament {tournament_id}")

    # ========== Participants ==========

    async def create_participant(
        self, tournament_id: str, kind: str, request: Any, user_id: str | None
    ) -> dict[str, Any]:
        """Create an institution, team, speaker, judge, conflict, room or room category."""
        try:
            await self._require(tournament_id, user_id, Permission.MANAGE_PARTICIPANTS)
            registry = self.participants
            if kind == "institution":
                created = await registry.create_institution(tournament_id, request.name, request.code)
            elif kind == "team":
                created = await registry.create_team(
                    tournament_id, request.name, request.institution_id, request.number
                )
            elif kind == "speaker":
                created = await registry.create_speaker(tournament_id, request.team_id, request.name, request.email)
            elif kind == "judge":
                created = await registry.create_judge(
                    tournament_id, request.name, request.email, request.rating, request.institution_id
                )
            elif kind == "conflict":
                created = await registry.add_conflict(tournament_id, request.kind, request.a_id, request.b_id)
            elif kind == "room":
                created = await registry.create_room(tournament_id, request.name, request.priority, request.url)
            elif kind == "room_category":
                created = await registry.create_room_category(tournament_id, request.name, request.room_ids)
            elif kind == "room_preference":
                created = await registry.set_room_preference(
                    tournament_id, request.participant_id, request.category_id, request.score
                )
            else:
                raise HTTPException(status_code=404, detail=f"Unknown participant kind: {kind}")
            return created.model_dump(mode="json")
        except Exception as e:
            raise to_http_exception(e, f"create {kind}")

    async def set_availability(
        self, round_id: str, kind: str, participant_id: str, available: bool, user_id: str | None
    ) -> dict[str, Any]:
        try:
            await self._require_for_round(round_id, user_id, Permission.MANAGE_PARTICIPANTS)
            if kind == "teams":
                await self.participants.set_team_availability(round_id, participant_id, available)
            elif kind == "judges":
                await self.participants.set_judge_availability(round_id, participant_id, available)
            else:
                raise HTTPException(status_code=404, detail=f"Unknown availability kind: {kind}")
            return {"round_id": round_id, "id": participant_id, "available": available}
        except Exception as e:
            raise to_http_exception(e, f"set availability in round {round_id}")

    # ========== Rounds and draws ==========

    async def create_round(
        self, tournament_id: str, request: schemas.RoundCreateRequest, user_id: str | None
    ) -> dict[str, Any]:
        try:
            await self._require(tournament_id, user_id, Permission.MANAGE_DRAWS)
            round = await self.rounds.create_round(tournament_id, request.name, request.kind)
            return round_summary(round)
        except Exception as e:
            raise to_http_exception(e, f"create round in tournament {tournament_id}")

    async def create_motion(
        self, round_id: str, request: schemas.MotionCreateRequest, user_id: str | None
    ) -> dict[str, Any]:
        try:
            await self._require_for_round(round_id, user_id, Permission.MANAGE_DRAWS)
            motion = await self.rounds.create_motion(round_id, request.motion, request.infoslide)
            return motion.model_dump(mode="json")
        except Exception as e:
            raise to_http_exception(e, f"create motion for round {round_id}")

    async def get_round(self, round_id: str) -> dict[str, Any]:
        try:
            return round_summary(await self.rounds.get_round(round_id))
        except Exception as e:
            raise to_http_exception(e, f"get round {round_id}")

    async def get_draw(self, round_id: str, user_id: str | None) -> dict[str, Any]:
        """The draw of a round. Unreleased drafts are only shown to members."""
        try:
            round = await self.rounds.get_round(round_id)
            if round.released_at is None:
                await self._require(round.tournament_id, user_id, Permission.VIEW_DRAFT)
            draw = await self.rounds.get_draw(round_id)
            return draw.summary()
        except Exception as e:
            raise to_http_exception(e, f"get draw of round {round_id}")

    async def generate_draw(
        self, round_id: str, request: schemas.GenerateDrawRequest, user_id: str | None
    ) -> dict[str, Any]:
        try:
            await self._require_for_round(round_id, user_id, Permission.MANAGE_DRAWS)
            kwargs = {
                "algorithm": request.algorithm,
                "seed": request.seed,
                "force": request.force,
                "owner": user_id or "system",
            }
            if request.background:
                self.rounds.start_draw_job(round_id, **kwargs)
                return {"round_id": round_id, "message": "Draw generation started"}

            outcome = await self.rounds.generate_draw(round_id, **kwargs)
            return {
                "round_id": round_id,
                "draw_id": outcome.draw_id,
                "algorithm": outcome.algorithm,
                "seed": outcome.seed,
                "debate_count": outcome.debate_count,
            }
        except Exception as e:
            raise to_http_exception(e, f"generate draw for round {round_id}")

    async def round_action(self, round_id: str, action: str, user_id: str | None) -> dict[str, Any]:
        """Cancel, allocate judges or rooms, release, start or complete a round."""
        try:
            permission = Permission.MANAGE_RESULTS if action == "complete" else Permission.MANAGE_DRAWS
            await self._require_for_round(round_id, user_id, permission)
            if action == "cancel":
                await self.rounds.cancel_draw(round_id)
            elif action == "judges":
                await self.rounds.allocate_judges(round_id)
            elif action == "rooms":
                await self.rounds.allocate_rooms(round_id)
            elif action == "release":
                await self.rounds.release_draw(round_id)
            elif action == "start":
                await self.rounds.start_round(round_id)
            elif action == "complete":
                await self.rounds.complete_round(round_id)
            else:
                raise HTTPException(status_code=404, detail=f"Unknown round action: {action}")
            return round_summary(await self.rounds.get_round(round_id))
        except Exception as e:
            raise to_http_exception(e, f"{action} round {round_id}")

    async def move_room(self, request: schemas.MoveRoomRequest, user_id: str | None) -> dict[str, Any]:
        try:
            for round_id in request.round_ids:
                await self._require_for_round(round_id, user_id, Permission.MANAGE_DRAWS)
            affected = await self.rounds.move_room(request.room_id, request.to_debate_id, request.round_ids)
            return {"room_id": request.room_id, "affected_rounds": affected}
        except Exception as e:
            raise to_http_exception(e, f"move room {request.room_id}")

    # ========== Results ==========

    async def submit_ballot(self, submission: BallotSubmission) -> dict[str, Any]:
        try:
            ballot = await self.rounds.submit_ballot(submission)
            return {"ballot_id": ballot.id, "version": ballot.version}
        except Exception as e:
            raise to_http_exception(e, f"submit ballot for debate {submission.debate_id}")

    async def confirm_ballot(self, ballot_id: str, user_id: str | None) -> dict[str, Any]:
        try:
            ballot = await self.rounds.get_ballot(ballot_id)
            await self._require(ballot.tournament_id, user_id, Permission.MANAGE_RESULTS)
            round = await self.rounds.confirm_ballot(ballot_id)
            return {"ballot_id": ballot_id, "round_id": round.id, "confirmed": True}
        except Exception as e:
            raise to_http_exception(e, f"confirm ballot {ballot_id}")

    async def standings(self, tournament_id: str, kind: str) -> dict[str, Any]:
        try:
            if kind == "teams":
                return standings_summary(await self.rounds.team_standings(tournament_id))
            if kind == "speakers":
                return standings_summary(await self.rounds.speaker_standings(tournament_id))
            raise HTTPException(status_code=404, detail=f"Unknown standings kind: {kind}")
        except Exception as e:
            raise to_http_exception(e, f"get {kind} standings of tournament {tournament_id}")

    async def recompute_standings(self, tournament_id: str, user_id: str | None) -> dict[str, Any]:
        try:
            await self._require(tournament_id, user_id, Permission.MANAGE_RESULTS)
            teams, speakers = await self.rounds.recompute_standings(tournament_id)
            return {"teams": standings_summary(teams), "speakers": standings_summary(speakers)}
        except Exception as e:
            raise to_http_exception(e, f"recompute standings of tournament {tournament_id}")
