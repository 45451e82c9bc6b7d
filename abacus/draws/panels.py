"""Judge panel allocation."""

import logging
from dataclasses import dataclass, field

from abacus.errors import InvalidConfiguration
from abacus.tournaments.models import BallotSetup, Conflict, ConflictKind, Judge, JudgeRole

logger = logging.getLogger(__name__)

MAX_BACKTRACK_STEPS = 100_000


@dataclass
class JudgeConflicts:
    judge_team: set[frozenset] = field(default_factory=set)
    judge_judge: set[frozenset] = field(default_factory=set)

    @classmethod
    def from_conflicts(cls, conflicts: list[Conflict]) -> "JudgeConflicts":
        result = cls()
        for conflict in conflicts:
            if conflict.kind == ConflictKind.JUDGE_TEAM:
                result.judge_team.add(frozenset((conflict.a_id, conflict.b_id)))
            elif conflict.kind == ConflictKind.JUDGE_JUDGE:
                result.judge_judge.add(frozenset((conflict.a_id, conflict.b_id)))
        return result

    def can_judge(self, judge_id: str, team_ids: list[str], panel: list[str]) -> bool:
        if any(frozenset((judge_id, team_id)) in self.judge_team for team_id in team_ids):
            return False
        return not any(frozenset((judge_id, other)) in self.judge_judge for other in panel)


def panel_size(judges_per_panel: int, ballot_setup: BallotSetup) -> int:
    """Panels submitting individual ballots need an odd number of voting judges."""
    if ballot_setup == BallotSetup.INDIVIDUAL and judges_per_panel % 2 == 0:
        return judges_per_panel - 1
    return judges_per_panel


def allocate_panels(
    debates: list[tuple[str, list[str]]],
    judges: list[Judge],
    conflicts: JudgeConflicts,
    judges_per_panel: int,
) -> dict[str, list[tuple[str, JudgeRole]]]:
    """Seat judges on the given ``(debate_id, team_ids)`` debates.

    Chairs are chosen by descending rating with backtracking so that every
    debate gets an unconflicted chair. Voting panellists are then dealt out
    round-robin up to ``judges_per_panel`` and any judges left over join as
    trainees. A conflicted judge is never seated.
    """
    if not judges:
        logger.warning("No judges available, debates left without panels")
        return {debate_id: [] for debate_id, _ in debates}
    if len(judges) < len(debates):
        raise InvalidConfiguration(
            f"{len(judges)} judges cannot chair {len(debates)} debates"
        )

    ranked = sorted(judges, key=lambda j: (-j.rating, j.id))
    chairs = _choose_chairs(debates, ranked, conflicts)
    panels: dict[str, list[str]] = {debate_id: [chairs[debate_id]] for debate_id, _ in debates}
    remaining = [j for j in ranked if j.id not in set(chairs.values())]

    # panellists, one per debate per pass, best judges first
    while remaining:
        seated_any = False
        for debate_id, team_ids in debates:
            if len(panels[debate_id]) >= judges_per_panel:
                continue
            judge = _first_eligible(remaining, team_ids, panels[debate_id], conflicts)
            if judge is not None:
                panels[debate_id].append(judge.id)
                remaining.remove(judge)
                seated_any = True
        if not seated_any:
            break

    result = {
        debate_id: [(judge_id, JudgeRole.CHAIR if i == 0 else JudgeRole.PANELLIST) for i, judge_id in enumerate(panels[debate_id])]
        for debate_id, _ in debates
    }

    # surplus judges join as trainees
    while remaining:
        seated_any = False
        for debate_id, team_ids in debates:
            judge = _first_eligible(remaining, team_ids, panels[debate_id], conflicts)
            if judge is not None:
                panels[debate_id].append(judge.id)
                result[debate_id].append((judge.id, JudgeRole.TRAINEE))
                remaining.remove(judge)
                seated_any = True
        if not seated_any:
            break

    if remaining:
        logger.warning(f"{len(remaining)} judge(s) could not be seated without a conflict")
    return result


def _first_eligible(
    candidates: list[Judge], team_ids: list[str], panel: list[str], conflicts: JudgeConflicts
) -> Judge | None:
    for judge in candidates:
        if conflicts.can_judge(judge.id, team_ids, panel):
            return judge
    return None


def _choose_chairs(
    debates: list[tuple[str, list[str]]], ranked: list[Judge], conflicts: JudgeConflicts
) -> dict[str, str]:
    chosen: dict[str, str] = {}
    used: set[str] = set()
    steps = 0

    def place(index: int) -> bool:
        nonlocal steps
        if index == len(debates):
            return True
        debate_id, team_ids = debates[index]
        for judge in ranked:
            steps += 1
            if steps > MAX_BACKTRACK_STEPS:
                return False
            if judge.id in used or not conflicts.can_judge(judge.id, team_ids, []):
                continue
            chosen[debate_id] = judge.id
            used.add(judge.id)
            if place(index + 1):
                return True
            used.discard(judge.id)
            del chosen[debate_id]
        return False

    if not place(0):
        raise InvalidConfiguration("No conflict-free chair allocation exists")
    return chosen
