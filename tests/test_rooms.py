"""Tests for room choice and preference scoring."""

from abacus.rooms.allocator import choose_rooms, preference_scores
from abacus.tournaments.models import Debate, Room, RoomCategory, RoomPreference
from abacus.tournaments.repr import DebateRepr


def debate(number: int) -> DebateRepr:
    return DebateRepr(debate=Debate(id=f"d{number}", tournament_id="t", draw_id="draw", number=number))


def rooms(*priorities: int) -> list[Room]:
    return [
        Room(id=f"r{i}", tournament_id="t", name=f"Room {i}", priority=priority)
        for i, priority in enumerate(priorities)
    ]


def test_lowest_priority_numbers_form_the_pool() -> None:
    assignment = choose_rooms([debate(1), debate(2)], rooms(5, 0, 3), {}, {})

    assert assignment == {"d1": "r1", "d2": "r2"}


def test_rooms_outside_the_pool_are_never_chosen() -> None:
    scores = {"p1": {"r2": 100}}
    assignment = choose_rooms([debate(1)], rooms(0, 1, 2), {"d1": ["p1"]}, scores)

    assert assignment == {"d1": "r0"}


def test_preferred_pool_room_wins() -> None:
    scores = {"p1": {"r1": 2}}
    assignment = choose_rooms([debate(1), debate(2)], rooms(0, 1), {"d1": ["p1"]}, scores)

    assert assignment == {"d1": "r1", "d2": "r0"}


def test_debates_pick_in_number_order() -> None:
    scores = {"p1": {"r1": 1}, "p2": {"r1": 5}}
    assignment = choose_rooms(
        [debate(2), debate(1)], rooms(0, 1), {"d1": ["p1"], "d2": ["p2"]}, scores
    )

    assert assignment == {"d1": "r1", "d2": "r0"}


def test_negative_preference_pushes_a_debate_elsewhere() -> None:
    scores = {"p1": {"r0": -3}}
    assignment = choose_rooms([debate(1), debate(2)], rooms(0, 1), {"d1": ["p1"]}, scores)

    assert assignment == {"d1": "r1", "d2": "r0"}


def test_debates_without_a_room_get_none() -> None:
    assignment = choose_rooms([debate(1), debate(2)], rooms(0), {}, {})

    assert assignment == {"d1": "r0", "d2": None}


def test_preferences_sum_over_categories() -> None:
    categories = [
        RoomCategory(id="quiet", tournament_id="t", name="Quiet", room_ids=["r0", "r1"]),
        RoomCategory(id="ground", tournament_id="t", name="Ground floor", room_ids=["r1"]),
    ]
    preferences = [
        RoomPreference(participant_id="p1", category_id="quiet", score=2),
        RoomPreference(participant_id="p1", category_id="ground", score=3),
        RoomPreference(participant_id="p2", category_id="missing", score=9),
    ]

    scores = preference_scores(categories, preferences)

    assert scores["p1"] == {"r0": 2, "r1": 5}
    assert "p2" not in scores
