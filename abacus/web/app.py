"""FastAPI application exposing the round engine."""

import logging
import os

from fastapi import APIRouter, Depends, FastAPI, Header, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from abacus import __version__
from abacus.clock import Clock
from abacus.config import AppConfig
from abacus.events import EventBus
from abacus.rounds import RoundLifecycleController
from abacus.store import StoreGateway
from abacus.tournaments.models import BallotSubmission, TournamentCreateRequest
from abacus.tournaments.participants import ParticipantRegistry

from . import schemas
from .api import RoundEngineAPI

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")
ws_router = APIRouter()


def get_api(request: Request) -> RoundEngineAPI:
    return request.app.state.api


# Authentication is handled upstream; the acting user arrives in a header.
def get_user_id(x_user_id: str | None = Header(default=None)) -> str | None:
    return x_user_id


# ========== Tournaments ==========


@router.post("/tournaments")
async def create_tournament(
    request: TournamentCreateRequest,
    user_id: str | None = Depends(get_user_id),
    api: RoundEngineAPI = Depends(get_api),
):
    """Create a new tournament; the acting user becomes its superuser."""
    return await api.create_tournament(request, user_id)


@router.get("/tournaments/{tournament_id}")
async def get_tournament(tournament_id: str, api: RoundEngineAPI = Depends(get_api)):
    return await api.get_tournament(tournament_id)


@router.put("/tournaments/{tournament_id}/metrics")
async def update_standings_metrics(
    tournament_id: str,
    request: schemas.StandingsMetricsRequest,
    user_id: str | None = Depends(get_user_id),
    api: RoundEngineAPI = Depends(get_api),
):
    return await api.update_standings_metrics(tournament_id, request, user_id)


@router.post("/tournaments/{tournament_id}/institutions")
async def create_institution(
    tournament_id: str,
    request: schemas.InstitutionCreateRequest,
    user_id: str | None = Depends(get_user_id),
    api: RoundEngineAPI = Depends(get_api),
):
    return await api.create_participant(tournament_id, "institution", request, user_id)


@router.post("/tournaments/{tournament_id}/teams")
async def create_team(
    tournament_id: str,
    request: schemas.TeamCreateRequest,
    user_id: str | None = Depends(get_user_id),
    api: RoundEngineAPI = Depends(get_api),
):
    return await api.create_participant(tournament_id, "team", request, user_id)


@router.post("/tournaments/{tournament_id}/speakers")
async def create_speaker(
    tournament_id: str,
    request: schemas.SpeakerCreateRequest,
    user_id: str | None = Depends(get_user_id),
    api: RoundEngineAPI = Depends(get_api),
):
    return await api.create_participant(tournament_id, "speaker", request, user_id)


@router.post("/tournaments/{tournament_id}/judges")
async def create_judge(
    tournament_id: str,
    request: schemas.JudgeCreateRequest,
    user_id: str | None = Depends(get_user_id),
    api: RoundEngineAPI = Depends(get_api),
):
    return await api.create_participant(tournament_id, "judge", request, user_id)


@router.post("/tournaments/{tournament_id}/conflicts")
async def create_conflict(
    tournament_id: str,
    request: schemas.ConflictCreateRequest,
    user_id: str | None = Depends(get_user_id),
    api: RoundEngineAPI = Depends(get_api),
):
    return await api.create_participant(tournament_id, "conflict", request, user_id)


@router.post("/tournaments/{tournament_id}/rooms")
async def create_room(
    tournament_id: str,
    request: schemas.RoomCreateRequest,
    user_id: str | None = Depends(get_user_id),
    api: RoundEngineAPI = Depends(get_api),
):
    return await api.create_participant(tournament_id, "room", request, user_id)


@router.post("/tournaments/{tournament_id}/room-categories")
async def create_room_category(
    tournament_id: str,
    request: schemas.RoomCategoryCreateRequest,
    user_id: str | None = Depends(get_user_id),
    api: RoundEngineAPI = Depends(get_api),
):
    return await api.create_participant(tournament_id, "room_category", request, user_id)


@router.put("/tournaments/{tournament_id}/room-preferences")
async def set_room_preference(
    tournament_id: str,
    request: schemas.RoomPreferenceRequest,
    user_id: str | None = Depends(get_user_id),
    api: RoundEngineAPI = Depends(get_api),
):
    return await api.create_participant(tournament_id, "room_preference", request, user_id)


@router.get("/tournaments/{tournament_id}/standings/{kind}")
async def get_standings(tournament_id: str, kind: str, api: RoundEngineAPI = Depends(get_api)):
    """Team (``teams``) or speaker (``speakers``) standings."""
    return await api.standings(tournament_id, kind)


@router.post("/tournaments/{tournament_id}/standings/recompute")
async def recompute_standings(
    tournament_id: str, user_id: str | None = Depends(get_user_id), api: RoundEngineAPI = Depends(get_api)
):
    return await api.recompute_standings(tournament_id, user_id)


# ========== Rounds ==========


@router.post("/tournaments/{tournament_id}/rounds")
async def create_round(
    tournament_id: str,
    request: schemas.RoundCreateRequest,
    user_id: str | None = Depends(get_user_id),
    api: RoundEngineAPI = Depends(get_api),
):
    return await api.create_round(tournament_id, request, user_id)


@router.get("/rounds/{round_id}")
async def get_round(round_id: str, api: RoundEngineAPI = Depends(get_api)):
    return await api.get_round(round_id)


@router.post("/rounds/{round_id}/motions")
async def create_motion(
    round_id: str,
    request: schemas.MotionCreateRequest,
    user_id: str | None = Depends(get_user_id),
    api: RoundEngineAPI = Depends(get_api),
):
    return await api.create_motion(round_id, request, user_id)


@router.put("/rounds/{round_id}/availability/{kind}/{participant_id}")
async def set_availability(
    round_id: str,
    kind: str,
    participant_id: str,
    request: schemas.AvailabilityRequest,
    user_id: str | None = Depends(get_user_id),
    api: RoundEngineAPI = Depends(get_api),
):
    return await api.set_availability(round_id, kind, participant_id, request.available, user_id)


@router.get("/rounds/{round_id}/draw")
async def get_draw(
    round_id: str,
    user_id: str | None = Depends(get_user_id),
    api: RoundEngineAPI = Depends(get_api),
):
    return await api.get_draw(round_id, user_id)


@router.post("/rounds/{round_id}/draw")
async def generate_draw(
    round_id: str,
    request: schemas.GenerateDrawRequest,
    user_id: str | None = Depends(get_user_id),
    api: RoundEngineAPI = Depends(get_api),
):
    """Generate the round's draft draw."""
    return await api.generate_draw(round_id, request, user_id)


@router.post("/rounds/{round_id}/draw/cancel")
async def cancel_draw(
    round_id: str,
    user_id: str | None = Depends(get_user_id),
    api: RoundEngineAPI = Depends(get_api),
):
    return await api.round_action(round_id, "cancel", user_id)


@router.post("/rounds/{round_id}/draw/judges")
async def allocate_judges(
    round_id: str,
    user_id: str | None = Depends(get_user_id),
    api: RoundEngineAPI = Depends(get_api),
):
    return await api.round_action(round_id, "judges", user_id)


@router.post("/rounds/{round_id}/draw/rooms")
async def allocate_rooms(
    round_id: str,
    user_id: str | None = Depends(get_user_id),
    api: RoundEngineAPI = Depends(get_api),
):
    return await api.round_action(round_id, "rooms", user_id)


@router.post("/rounds/{round_id}/draw/release")
async def release_draw(
    round_id: str,
    user_id: str | None = Depends(get_user_id),
    api: RoundEngineAPI = Depends(get_api),
):
    return await api.round_action(round_id, "release", user_id)


@router.post("/rounds/{round_id}/start")
async def start_round(
    round_id: str,
    user_id: str | None = Depends(get_user_id),
    api: RoundEngineAPI = Depends(get_api),
):
    return await api.round_action(round_id, "start", user_id)


@router.post("/rounds/{round_id}/complete")
async def complete_round(
    round_id: str,
    user_id: str | None = Depends(get_user_id),
    api: RoundEngineAPI = Depends(get_api),
):
    return await api.round_action(round_id, "complete", user_id)


@router.post("/rooms/move")
async def move_room(
    request: schemas.MoveRoomRequest,
    user_id: str | None = Depends(get_user_id),
    api: RoundEngineAPI = Depends(get_api),
):
    return await api.move_room(request, user_id)


# ========== Ballots ==========


@router.post("/ballots")
async def submit_ballot(submission: BallotSubmission, api: RoundEngineAPI = Depends(get_api)):
    return await api.submit_ballot(submission)


@router.post("/ballots/{ballot_id}/confirm")
async def confirm_ballot(
    ballot_id: str,
    user_id: str | None = Depends(get_user_id),
    api: RoundEngineAPI = Depends(get_api),
):
    return await api.confirm_ballot(ballot_id, user_id)


@router.get("/health")
async def health(request: Request):
    return {"status": "ok", "version": __version__, "events_published": request.app.state.events.published}


# ========== Change notifications ==========


@ws_router.websocket("/ws/tournaments/{tournament_id}")
async def tournament_events(websocket: WebSocket, tournament_id: str):
    """Stream change events of one tournament."""
    events: EventBus = websocket.app.state.events
    # subscribe before the handshake completes so no change slips through
    subscription = events.subscribe(tournament_id)
    try:
        await websocket.accept()
        while True:
            event = await subscription.get()
            await websocket.send_json(event.model_dump(mode="json"))
    except WebSocketDisconnect:
        logger.debug(f"Event subscriber for tournament {tournament_id} disconnected")
    finally:
        subscription.close()


def get_allowed_origins() -> list[str] | None:
    """Get CORS origins from environment or use development defaults."""
    env_origins = os.environ.get("ALLOWED_ORIGINS")
    if env_origins:
        return [origin.strip() for origin in env_origins.split(",")]
    return None


def create_app(config: AppConfig | None = None, clock: Clock | None = None) -> FastAPI:
    """Build the application and its services from ``config``."""
    config = config or AppConfig()
    store = StoreGateway(config.system.database_path)
    events = EventBus(config.system.broadcast_capacity)
    participants = ParticipantRegistry(store, events, clock=clock, defaults=config.tournament_defaults)
    rounds = RoundLifecycleController(store, events, clock=clock, config=config.system)

    app = FastAPI(
        title="Abacus",
        description="Round engine for British and Asian Parliamentary debating tournaments",
        version=__version__,
    )
    app.state.config = config
    app.state.store = store
    app.state.events = events
    app.state.rounds = rounds
    app.state.api = RoundEngineAPI(participants, rounds)

    allowed_origins = get_allowed_origins()
    if allowed_origins:
        logger.info(f"Setting CORS allowed origins: {allowed_origins}")
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allowed_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    else:
        app.add_middleware(
            CORSMiddleware,
            allow_origin_regex=r"https?://(localhost|127\.0\.0\.1)(:\d+)?",
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.include_router(router)
    app.include_router(ws_router)
    return app
