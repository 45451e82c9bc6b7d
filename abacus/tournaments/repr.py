"""Bundles of a draw with everything needed to render and reason about it."""

from pydantic import BaseModel, Field

from .models import (
    Debate,
    Draw,
    Judge,
    JudgeOfDebate,
    JudgeRole,
    Room,
    Round,
    Team,
    TeamOfDebate,
)


class DebateRepr(BaseModel):
    """One debate with its team slots and panel."""

    debate: Debate
    teams: list[TeamOfDebate] = Field(default_factory=list)
    judges: list[JudgeOfDebate] = Field(default_factory=list)

    @property
    def id(self) -> str:
        return self.debate.id

    def side(self, side: int) -> list[str]:
        """Team ids on ``side``, ordered opening first."""
        return [t.team_id for t in sorted(self.teams, key=lambda t: t.seq) if t.side == side]

    def sides(self) -> tuple[list[str], list[str]]:
        return self.side(0), self.side(1)

    def team_ids(self) -> list[str]:
        prop, opp = self.sides()
        return prop + opp

    def judge_ids(self, role: JudgeRole | None = None) -> list[str]:
        return [j.judge_id for j in self.judges if role is None or j.role == role]

    def chair(self) -> str | None:
        chairs = self.judge_ids(JudgeRole.CHAIR)
        return chairs[0] if chairs else None


class DrawRepr(BaseModel):
    """Complete draw of a round."""

    draw: Draw
    round: Round
    debates: list[DebateRepr] = Field(default_factory=list)
    teams: dict[str, Team] = Field(default_factory=dict)
    judges: dict[str, Judge] = Field(default_factory=dict)
    rooms: dict[str, Room] = Field(default_factory=dict)

    def team_ids(self) -> list[str]:
        return [team_id for debate in self.debates for team_id in debate.team_ids()]

    def debate(self, debate_id: str) -> DebateRepr | None:
        for debate in self.debates:
            if debate.id == debate_id:
                return debate
        return None

    def debate_of_team(self, team_id: str) -> DebateRepr | None:
        for debate in self.debates:
            if team_id in debate.team_ids():
                return debate
        return None

    def assigned_room_ids(self) -> list[str]:
        return [d.debate.room_id for d in self.debates if d.debate.room_id is not None]

    def summary(self) -> dict:
        """Plain-dict view used by the web layer."""
        return {
            "draw_id": self.draw.id,
            "round_id": self.round.id,
            "round_name": self.round.name,
            "draw_status": self.round.draw_status.name.lower(),
            "released_at": self.draw.released_at.isoformat() if self.draw.released_at else None,
            "debates": [
                {
                    "id": d.id,
                    "number": d.debate.number,
                    "room": self.rooms[d.debate.room_id].name if d.debate.room_id in self.rooms else None,
                    "room_id": d.debate.room_id,
                    "proposition": [self.teams[t].name for t in d.side(0) if t in self.teams],
                    "opposition": [self.teams[t].name for t in d.side(1) if t in self.teams],
                    "judges": [
                        {
                            "id": j.judge_id,
                            "name": self.judges[j.judge_id].name if j.judge_id in self.judges else None,
                            "role": j.role.name.lower(),
                        }
                        for j in d.judges
                    ],
                }
                for d in self.debates
            ],
        }
