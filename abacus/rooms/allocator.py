"""Room allocation for drafted draws, and ad-hoc room moves."""

import logging
from collections import defaultdict

from abacus.errors import InvalidInput, InvalidState
from abacus.store import StoreGateway, Transaction
from abacus.tournaments.models import DrawStatus, Room, RoomCategory, RoomPreference
from abacus.tournaments.repr import DebateRepr

logger = logging.getLogger(__name__)


def preference_scores(
    categories: list[RoomCategory], preferences: list[RoomPreference]
) -> dict[str, dict[str, int]]:
    """participant_id -> room_id -> summed preference over the room's categories."""
    rooms_of = {category.id: category.room_ids for category in categories}
    scores: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
    for preference in preferences:
        for room_id in rooms_of.get(preference.category_id, []):
            scores[preference.participant_id][room_id] += preference.score
    return scores


def choose_rooms(
    debates: list[DebateRepr],
    rooms: list[Room],
    participants: dict[str, list[str]],
    scores: dict[str, dict[str, int]],
) -> dict[str, str | None]:
    """Assign rooms to debates.

    The ``len(debates)`` rooms with the lowest priority numbers form the pool.
    Debates are taken in number order and each gets the remaining pool room
    its participants prefer most; ties go to priority, then room id. Negative
    preferences lower a room's score but never rule it out.
    """
    pool = sorted(rooms, key=lambda r: (r.priority, r.id))[: len(debates)]
    if len(pool) < len(debates):
        logger.warning(f"Only {len(pool)} rooms for {len(debates)} debates")

    assignment: dict[str, str | None] = {}
    for debate in sorted(debates, key=lambda d: d.debate.number):
        if not pool:
            assignment[debate.id] = None
            continue

        def score(room: Room) -> int:
            return sum(scores.get(p, {}).get(room.id, 0) for p in participants.get(debate.id, []))

        best = min(pool, key=lambda r: (-score(r), r.priority, r.id))
        assignment[debate.id] = best.id
        pool.remove(best)
    return assignment


class RoomAllocator:
    def __init__(self, store: StoreGateway):
        self.store = store

    def allocate(self, txn: Transaction, round_id: str) -> dict[str, str | None]:
        """Fill ``room_id`` for every debate of a round's draw."""
        round = self.store.get_round(txn, round_id)
        if round.draw_status not in (DrawStatus.DRAFTED, DrawStatus.RELEASED):
            raise InvalidState("Rooms can only be allocated for a drafted or released draw")

        draw = self.store.get_draw_repr(txn, round_id)
        tournament_id = round.tournament_id
        speakers_of_team: dict[str, list[str]] = defaultdict(list)
        for speaker in self.store.list_speakers(txn, tournament_id):
            speakers_of_team[speaker.team_id].append(speaker.id)

        participants = {
            debate.id: [s for t in debate.team_ids() for s in speakers_of_team[t]] + debate.judge_ids()
            for debate in draw.debates
        }
        scores = preference_scores(
            self.store.list_room_categories(txn, tournament_id),
            self.store.list_room_preferences(txn, tournament_id),
        )
        assignment = choose_rooms(
            draw.debates, self.store.list_rooms(txn, tournament_id), participants, scores
        )

        for debate in draw.debates:
            self.store.set_debate_room(txn, debate.id, None)
        for debate_id, room_id in assignment.items():
            self.store.set_debate_room(txn, debate_id, room_id)
        logger.info(f"Allocated rooms for {len(assignment)} debates in round {round.name}")
        return assignment

    def move_room(
        self, txn: Transaction, room_id: str, to_debate_id: str | None, round_ids: list[str]
    ) -> list[str]:
        """Take ``room_id`` away from any debate of ``round_ids`` and give it to ``to_debate_id``.

        Returns the ids of the rounds whose draws changed.
        """
        room = self.store.get_room(txn, room_id)
        rounds = {round_id: self.store.get_round(txn, round_id) for round_id in round_ids}
        for round in rounds.values():
            if round.tournament_id != room.tournament_id:
                raise InvalidInput(f"Room {room.name} is not in the tournament of round {round.name}", field="room_id")
            if round.draw_status == DrawStatus.COMPLETED:
                raise InvalidState(f"Round {round.name} is completed")

        target_round = None
        if to_debate_id is not None:
            target_round = self.store.round_of_debate(txn, to_debate_id)
            if target_round.id not in rounds:
                raise InvalidInput(
                    "Target debate is not in any of the given rounds", field="to_debate_id"
                )

        affected: list[str] = []
        for debate_id, round_id in self.store.debates_holding_room(txn, room_id, list(rounds)):
            self.store.set_debate_room(txn, debate_id, None)
            if round_id not in affected:
                affected.append(round_id)

        if to_debate_id is not None:
            self.store.set_debate_room(txn, to_debate_id, room_id)
            if target_round.id not in affected:
                affected.append(target_round.id)
        return affected
