"""Random draw: a uniform shuffle sliced into debates."""

from .base import DrawAlgorithm, DrawInput, TeamsOfRoom, check_draw_input


class RandomDraw(DrawAlgorithm):
    """Used for the first round, or whenever explicitly requested."""

    @property
    def name(self) -> str:
        return "random"

    @property
    def description(self) -> str:
        return "Shuffle the teams and pair them in shuffle order"

    def make_draw(self, draw_input: DrawInput) -> list[TeamsOfRoom]:
        check_draw_input(draw_input)

        # sort first so the outcome depends only on the seed
        teams = sorted(draw_input.teams, key=lambda t: t.id)
        draw_input.rng.shuffle(teams)

        tps = draw_input.teams_per_side
        size = draw_input.teams_per_debate
        rooms = []
        for start in range(0, len(teams), size):
            group = teams[start : start + size]
            rooms.append((group[:tps], group[tps:]))
        return rooms
