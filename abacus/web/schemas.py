"""Request bodies accepted by the HTTP surface."""

from pydantic import BaseModel, Field

from abacus.tournaments.models import ConflictKind, RoundKind


class InstitutionCreateRequest(BaseModel):
    name: str
    code: str


class TeamCreateRequest(BaseModel):
    name: str
    institution_id: str | None = None
    number: int | None = None


class SpeakerCreateRequest(BaseModel):
    team_id: str
    name: str
    email: str = ""


class JudgeCreateRequest(BaseModel):
    name: str
    email: str = ""
    rating: float = 0.0
    institution_id: str | None = None


class ConflictCreateRequest(BaseModel):
    kind: ConflictKind
    a_id: str
    b_id: str


class RoomCreateRequest(BaseModel):
    name: str
    priority: int = Field(default=0, ge=0, description="Lower numbers are used first")
    url: str = ""


class RoomCategoryCreateRequest(BaseModel):
    name: str
    room_ids: list[str] = Field(default_factory=list)


class RoomPreferenceRequest(BaseModel):
    participant_id: str
    category_id: str
    score: int = Field(..., ge=-2, le=2)


class RoundCreateRequest(BaseModel):
    name: str
    kind: RoundKind = RoundKind.PRELIMINARY


class MotionCreateRequest(BaseModel):
    motion: str
    infoslide: str | None = None


class AvailabilityRequest(BaseModel):
    available: bool


class GenerateDrawRequest(BaseModel):
    algorithm: str | None = Field(default=None, description="random or power_paired")
    seed: int | None = Field(default=None, description="Seed for reproducible draws")
    force: bool = Field(default=False, description="Supersede an attempt in progress")
    background: bool = Field(default=False, description="Return immediately and generate in the background")


class MoveRoomRequest(BaseModel):
    room_id: str
    to_debate_id: str | None = None
    round_ids: list[str]


class StandingsMetricsRequest(BaseModel):
    team_standings_metrics: list[str] | None = None
    speaker_standings_metrics: list[str] | None = None
