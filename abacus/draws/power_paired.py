"""Power-paired draw with position balancing.

Teams are bracketed by their standings tuple, brackets are folded into
debate-sized groups, groups swap same-bracket teams to avoid clashes, and
each group is finally seated so that every team moves towards equal
occupancy of the debate's slots.
"""

import logging
from itertools import permutations

from abacus.errors import InternalError
from abacus.standings import slots_for
from abacus.tournaments.models import Team

from .base import DrawAlgorithm, DrawInput, TeamsOfRoom, check_draw_input

logger = logging.getLogger(__name__)

TEAM_CONFLICT_PENALTY = 1000
MAX_SWAP_PASSES = 3


class PowerPairedDraw(DrawAlgorithm):
    @property
    def name(self) -> str:
        return "power_paired"

    @property
    def description(self) -> str:
        return "Pair teams with equal standings, balancing positions"

    def make_draw(self, draw_input: DrawInput) -> list[TeamsOfRoom]:
        check_draw_input(draw_input)
        groups = self.fold(draw_input, self.brackets(draw_input))
        groups = self.reduce_clashes(draw_input, groups)
        return [self.assign_slots(draw_input, group) for group in groups]

    def brackets(self, draw_input: DrawInput) -> list[list[Team]]:
        """Active teams grouped by identical standings tuple, best first.

        Within a bracket teams are ordered by the seeded random source.
        """
        by_id = {team.id: team for team in draw_input.teams}
        brackets: list[list[Team]] = []
        seen: set[str] = set()
        if draw_input.standings is not None:
            for ids in draw_input.standings.brackets():
                bracket = [by_id[team_id] for team_id in ids if team_id in by_id]
                seen.update(team.id for team in bracket)
                if bracket:
                    brackets.append(bracket)

        unranked = [team for team in draw_input.teams if team.id not in seen]
        if unranked:
            brackets.append(unranked)

        for bracket in brackets:
            bracket.sort(key=lambda t: t.id)
            draw_input.rng.shuffle(bracket)
        return brackets

    def fold(self, draw_input: DrawInput, brackets: list[list[Team]]) -> list[list[Team]]:
        """Cut brackets into debate groups, carrying trailing teams downwards."""
        size = draw_input.teams_per_debate
        groups: list[list[Team]] = []
        carried: list[Team] = []
        for index, bracket in enumerate(brackets):
            pool = carried + bracket
            full = len(pool) - len(pool) % size
            for start in range(0, full, size):
                groups.append(pool[start : start + size])
            carried = pool[full:]
            if carried:
                logger.info(
                    f"Round {draw_input.round.name}: {len(carried)} team(s) from bracket {index} "
                    f"paired with the next bracket"
                )
        if carried:
            raise InternalError("Folding left teams unpaired")
        return groups

    def group_penalty(self, draw_input: DrawInput, group: list[Team]) -> int:
        """Institution, history and team-conflict penalties of one debate."""
        institution_penalty = draw_input.tournament.institution_penalty or 0
        history_penalty = draw_input.tournament.history_penalty or 0
        penalty = 0
        for i, a in enumerate(group):
            for b in group[i + 1 :]:
                if a.institution_id is not None and a.institution_id == b.institution_id:
                    penalty += institution_penalty
                penalty += history_penalty * draw_input.times_met(a.id, b.id)
                if frozenset((a.id, b.id)) in draw_input.team_conflicts:
                    penalty += TEAM_CONFLICT_PENALTY
        return penalty

    def _same_bracket(self, draw_input: DrawInput, a: Team, b: Team) -> bool:
        standings = draw_input.standings
        if standings is None:
            return True
        a_ranked = a.id in standings.values
        b_ranked = b.id in standings.values
        if not a_ranked or not b_ranked:
            return a_ranked == b_ranked
        return standings.tuple_of(a.id) == standings.tuple_of(b.id)

    def reduce_clashes(self, draw_input: DrawInput, groups: list[list[Team]]) -> list[list[Team]]:
        """Greedily swap same-bracket teams between groups while that lowers the penalty."""
        groups = [list(group) for group in groups]
        for _ in range(MAX_SWAP_PASSES):
            improved = False
            for i in range(len(groups)):
                for j in range(i + 1, len(groups)):
                    improved |= self._improve_pair(draw_input, groups, i, j)
            if not improved:
                break
        return groups

    def _improve_pair(self, draw_input: DrawInput, groups: list[list[Team]], i: int, j: int) -> bool:
        improved = False
        current = self.group_penalty(draw_input, groups[i]) + self.group_penalty(draw_input, groups[j])
        if current == 0:
            return False
        for a_index in range(len(groups[i])):
            for b_index in range(len(groups[j])):
                a, b = groups[i][a_index], groups[j][b_index]
                if not self._same_bracket(draw_input, a, b):
                    continue
                groups[i][a_index], groups[j][b_index] = b, a
                swapped = self.group_penalty(draw_input, groups[i]) + self.group_penalty(draw_input, groups[j])
                if swapped < current:
                    logger.debug(f"Swapped {a.name} and {b.name}, penalty {current} -> {swapped}")
                    current = swapped
                    improved = True
                else:
                    groups[i][a_index], groups[j][b_index] = a, b
        return improved

    def slot_cost(self, draw_input: DrawInput, seating: tuple[Team, ...]) -> int:
        """Position-balance penalty of seating teams in slot order."""
        penalty = draw_input.tournament.position_penalty
        cost = 0
        for team, slot in zip(seating, slots_for(draw_input.teams_per_side)):
            history = draw_input.history_of(team.id)
            cost += penalty * (history.count(slot) - min(history.as_list()))
        return cost

    def assign_slots(self, draw_input: DrawInput, group: list[Team]) -> TeamsOfRoom:
        """Try every seating of the group; ties go to the seeded random source."""
        ordered = sorted(group, key=lambda t: t.id)
        best_cost = None
        best: list[tuple[Team, ...]] = []
        for seating in permutations(ordered):
            cost = self.slot_cost(draw_input, seating)
            if best_cost is None or cost < best_cost:
                best_cost, best = cost, [seating]
            elif cost == best_cost:
                best.append(seating)

        seating = list(draw_input.rng.choice(best))
        tps = draw_input.teams_per_side
        return seating[:tps], seating[tps:]
