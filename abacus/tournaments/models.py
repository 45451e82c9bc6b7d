"""Tournament data models."""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field


class RoundKind(Enum):
    """Round kind, string-encoded as in the ``rounds.kind`` column."""

    PRELIMINARY = "P"
    ELIMINATION = "E"


class DrawStatus(Enum):
    """Round draw status, string-encoded as in ``rounds.draw_status``."""

    NONE = "N"
    GENERATING = "G"
    DRAFTED = "D"
    RELEASED = "R"
    IN_PROGRESS = "I"
    COMPLETED = "C"


class JudgeRole(Enum):
    """Role of a judge on a panel."""

    CHAIR = "C"
    PANELLIST = "P"
    TRAINEE = "T"


class BallotSetup(Enum):
    """Whether a panel submits one consensus ballot or one ballot per judge."""

    CONSENSUS = "consensus"
    INDIVIDUAL = "individual"


class ConflictKind(Enum):
    TEAM_TEAM = "team_team"
    JUDGE_TEAM = "judge_team"
    JUDGE_JUDGE = "judge_judge"


class MemberRole(Enum):
    SUPERUSER = "superuser"
    TAB_DIRECTOR = "tab_director"
    VIEWER = "viewer"


class TournamentCreateRequest(BaseModel):
    """Request to create a new tournament."""

    name: str = Field(..., description="Tournament name")
    slug: str = Field(..., description="URL slug, unique across tournaments")
    teams_per_side: int = Field(default=2, description="1 for Australs/WSDC, 2 for BP")
    substantive_speakers: int = Field(default=2, description="Speakers per team")
    reply_speakers: bool = False
    reply_must_speak: bool = True
    max_substantive_speech_index_for_reply: int | None = None
    pool_ballot_setup: BallotSetup = BallotSetup.CONSENSUS
    elim_ballot_setup: BallotSetup = BallotSetup.CONSENSUS
    elim_ballots_require_speaks: bool = False
    institution_penalty: int | None = None
    history_penalty: int | None = None
    position_penalty: int = 1
    judges_per_panel: int = 1
    draw_algorithm: str = "power_paired"
    min_speaker_score: Decimal = Decimal("50")
    max_speaker_score: Decimal = Decimal("100")
    min_reply_score: Decimal | None = None
    max_reply_score: Decimal | None = None
    team_standings_metrics: list[str] = Field(default=["points", "tss"])
    speaker_standings_metrics: list[str] = Field(default=["total", "average"])
    exclude_from_speaker_standings_after: int | None = None


class Tournament(TournamentCreateRequest):
    """Complete tournament configuration."""

    id: str
    created_at: datetime | None = None
    results_stamp: int = 0

    @property
    def teams_per_debate(self) -> int:
        return self.teams_per_side * 2

    def ballot_setup_for(self, kind: RoundKind) -> BallotSetup:
        if kind == RoundKind.ELIMINATION:
            return self.elim_ballot_setup
        return self.pool_ballot_setup


class Round(BaseModel):
    id: str
    tournament_id: str
    seq: int
    name: str
    kind: RoundKind
    draw_status: DrawStatus = DrawStatus.NONE
    completed: bool = False
    released_at: datetime | None = None


class Institution(BaseModel):
    id: str
    tournament_id: str
    name: str
    code: str


class Team(BaseModel):
    id: str
    tournament_id: str
    name: str
    institution_id: str | None = None
    number: int


class Speaker(BaseModel):
    id: str
    tournament_id: str
    team_id: str
    participant_id: str
    name: str
    email: str
    private_url: str


class Judge(BaseModel):
    id: str
    tournament_id: str
    participant_id: str
    institution_id: str | None = None
    name: str
    email: str
    rating: float = 0.0
    private_url: str


class Conflict(BaseModel):
    """A symmetric conflict between two participants."""

    id: str
    tournament_id: str
    kind: ConflictKind
    a_id: str
    b_id: str


class Room(BaseModel):
    id: str
    tournament_id: str
    name: str
    url: str = ""
    priority: int = 0


class RoomCategory(BaseModel):
    id: str
    tournament_id: str
    name: str
    room_ids: list[str] = Field(default_factory=list)


class RoomPreference(BaseModel):
    """A speaker's or judge's preference (-2..+2) for a room category."""

    participant_id: str
    category_id: str
    score: int


class Motion(BaseModel):
    id: str
    tournament_id: str
    round_id: str
    motion: str
    infoslide: str | None = None


class Member(BaseModel):
    id: str
    tournament_id: str
    user_id: str
    role: MemberRole


class Draw(BaseModel):
    id: str
    tournament_id: str
    round_id: str
    created_at: datetime
    released_at: datetime | None = None


class Debate(BaseModel):
    id: str
    tournament_id: str
    draw_id: str
    room_id: str | None = None
    number: int


class TeamOfDebate(BaseModel):
    debate_id: str
    team_id: str
    side: int  # 0 = proposition, 1 = opposition
    seq: int  # 0 = opening, 1 = closing


class JudgeOfDebate(BaseModel):
    debate_id: str
    judge_id: str
    role: JudgeRole


class DrawTicket(BaseModel):
    """Exclusive token gating draw generation for one round."""

    id: str
    round_id: str
    seq: int
    owner: str
    acquired_at: datetime
    deadline: datetime
    released: bool = False
    cancelled: bool = False
    error: str | None = None


class SpeakerScore(BaseModel):
    team_id: str
    speaker_id: str
    position: int  # 1-based; substantive_speakers + 1 is the reply speech
    score: Decimal | None = None


class BallotSubmission(BaseModel):
    """A judge's ballot as submitted by a client."""

    debate_id: str
    judge_id: str
    motion_id: str
    scores: list[SpeakerScore] = Field(default_factory=list)
    # Only used in elimination rounds: team_id -> advances
    advancing: dict[str, bool] = Field(default_factory=dict)


class BallotTeamResult(BaseModel):
    team_id: str
    points: int
    advancing: bool


class Ballot(BaseModel):
    id: str
    tournament_id: str
    debate_id: str
    judge_id: str
    motion_id: str
    submitted_at: datetime
    version: int
    confirmed: bool = False
    team_results: list[BallotTeamResult] = Field(default_factory=list)
    scores: list[SpeakerScore] = Field(default_factory=list)

    def team_order(self) -> list[str]:
        """Teams ordered from most to fewest points."""
        ordered = sorted(self.team_results, key=lambda r: (-r.points, r.team_id))
        return [r.team_id for r in ordered]


class TeamResult(BaseModel):
    debate_id: str
    team_id: str
    points: int


class SpeakerResult(BaseModel):
    debate_id: str
    team_id: str
    speaker_id: str
    position: int
    score: Decimal
