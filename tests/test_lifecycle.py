"""End-to-end tests of the round lifecycle controller."""

import asyncio

import pytest

from conftest import add_motion, add_round, drain, seed_tournament, speaker_scores
from abacus.errors import InvalidInput, InvalidState
from abacus.events import DrawUpdated, ResultsUpdated
from abacus.rounds import RoundLifecycleController
from abacus.tournaments.models import BallotSubmission, DrawStatus, JudgeRole


@pytest.fixture
def seeded(store, clock):
    return seed_tournament(store, clock, team_count=4, judge_count=2)


@pytest.fixture
def controller(store, events, clock):
    return RoundLifecycleController(store, events, clock=clock)


def ballots_for_round(seeded, draw, motion, winners_scores=("75", "76"), losers_scores=("70", "71")):
    """One chair ballot per debate in which the proposition wins."""
    submissions = []
    for debate in draw.debates:
        prop, opp = debate.sides()
        submissions.append(
            BallotSubmission(
                debate_id=debate.id,
                judge_id=debate.chair(),
                motion_id=motion.id,
                scores=speaker_scores(seeded, prop[0], list(winners_scores))
                + speaker_scores(seeded, opp[0], list(losers_scores)),
            )
        )
    return submissions


async def play_round(controller, seeded, round, motion, seed=0x42):
    """Generate, release, start, judge and complete ``round``."""
    await controller.generate_draw(round.id, seed=seed)
    await controller.release_draw(round.id)
    await controller.start_round(round.id)
    draw = await controller.get_draw(round.id)
    for submission in ballots_for_round(seeded, draw, motion):
        ballot = await controller.submit_ballot(submission)
        await controller.confirm_ballot(ballot.id)
    await controller.complete_round(round.id)
    return draw


def test_full_round_produces_standings(controller, events, seeded) -> None:
    subscription = events.subscribe(seeded.tournament.id)

    draw = asyncio.run(play_round(controller, seeded, seeded.round, seeded.motion))

    teams = asyncio.run(controller.team_standings(seeded.tournament.id))
    winners = {debate.sides()[0][0] for debate in draw.debates}
    losers = {debate.sides()[1][0] for debate in draw.debates}
    assert {teams.rank_of(team_id) for team_id in winners} == {1}
    assert {teams.rank_of(team_id) for team_id in losers} == {3}

    round = asyncio.run(controller.get_round(seeded.round.id))
    assert round.draw_status == DrawStatus.COMPLETED
    assert round.completed

    received = drain(subscription)
    assert DrawUpdated(tournament_id=seeded.tournament.id, round_id=seeded.round.id) in received
    assert ResultsUpdated(tournament_id=seeded.tournament.id, round_id=seeded.round.id) in received


def test_first_round_is_random_then_power_paired(controller, store, seeded) -> None:
    asyncio.run(play_round(controller, seeded, seeded.round, seeded.motion))
    second = add_round(store, seeded.tournament, 2)

    outcome = asyncio.run(controller.generate_draw(second.id, seed=1))

    assert outcome.algorithm == "power_paired"
    first_draw = asyncio.run(controller.get_draw(seeded.round.id))
    winners = {debate.sides()[0][0] for debate in first_draw.debates}
    second_draw = asyncio.run(controller.get_draw(second.id))
    assert any(set(debate.team_ids()) == winners for debate in second_draw.debates)


def test_recompute_persists_ranks(controller, store, seeded) -> None:
    asyncio.run(play_round(controller, seeded, seeded.round, seeded.motion))

    with store.transaction(write=False) as txn:
        ranks = store.saved_team_ranks(txn, seeded.tournament.id)
    assert sorted(ranks.values()) == [1, 1, 3, 3]


def test_illegal_transitions_change_nothing(controller, store, seeded) -> None:
    round_id = seeded.round.id

    for action in (
        controller.release_draw,
        controller.start_round,
        controller.cancel_draw,
        controller.complete_round,
        controller.allocate_judges,
    ):
        with pytest.raises(InvalidState):
            asyncio.run(action(round_id))
        assert asyncio.run(controller.get_round(round_id)).draw_status == DrawStatus.NONE

    asyncio.run(controller.generate_draw(round_id, seed=1))
    with pytest.raises(InvalidState):
        asyncio.run(controller.start_round(round_id))
    with pytest.raises(InvalidState):
        asyncio.run(controller.generate_draw(round_id, seed=2))
    assert asyncio.run(controller.get_round(round_id)).draw_status == DrawStatus.DRAFTED


def test_release_requires_a_chair_in_every_debate(store, events, clock) -> None:
    seeded = seed_tournament(store, clock, team_count=4, judge_count=0)
    controller = RoundLifecycleController(store, events, clock=clock)
    asyncio.run(controller.generate_draw(seeded.round.id, seed=1))

    with pytest.raises(InvalidState):
        asyncio.run(controller.release_draw(seeded.round.id))
    assert asyncio.run(controller.get_round(seeded.round.id)).draw_status == DrawStatus.DRAFTED


def test_released_draw_is_timestamped(controller, clock, seeded) -> None:
    asyncio.run(controller.generate_draw(seeded.round.id, seed=1))
    released = asyncio.run(controller.release_draw(seeded.round.id))

    assert released.released_at == clock.now()
    draw = asyncio.run(controller.get_draw(seeded.round.id))
    assert draw.draw.released_at == clock.now()


def test_reallocated_judges_respect_new_conflicts(controller, store, seeded) -> None:
    from abacus.clock import new_id
    from abacus.tournaments.models import Conflict, ConflictKind

    asyncio.run(controller.generate_draw(seeded.round.id, seed=1))
    draw = asyncio.run(controller.get_draw(seeded.round.id))
    first = draw.debates[0]
    chair = first.chair()
    with store.transaction() as txn:
        store.add_conflict(
            txn,
            Conflict(
                id=new_id(),
                tournament_id=seeded.tournament.id,
                kind=ConflictKind.JUDGE_TEAM,
                a_id=chair,
                b_id=first.team_ids()[0],
            ),
        )

    reallocated = asyncio.run(controller.allocate_judges(seeded.round.id))

    assert reallocated.debate(first.id).chair() != chair
    asyncio.run(controller.release_draw(seeded.round.id))


# =============================================================================
# Ballots
# =============================================================================


@pytest.fixture
def in_progress(controller, seeded):
    async def start():
        await controller.generate_draw(seeded.round.id, seed=0x42)
        await controller.release_draw(seeded.round.id)
        await controller.start_round(seeded.round.id)
        return await controller.get_draw(seeded.round.id)

    return asyncio.run(start())


def test_ballots_are_only_accepted_in_progress(controller, seeded) -> None:
    asyncio.run(controller.generate_draw(seeded.round.id, seed=1))
    asyncio.run(controller.release_draw(seeded.round.id))
    draw = asyncio.run(controller.get_draw(seeded.round.id))

    with pytest.raises(InvalidState):
        asyncio.run(controller.submit_ballot(ballots_for_round(seeded, draw, seeded.motion)[0]))


def test_resubmission_creates_a_new_version(controller, seeded, in_progress) -> None:
    submission = ballots_for_round(seeded, in_progress, seeded.motion)[0]

    first = asyncio.run(controller.submit_ballot(submission))
    second = asyncio.run(controller.submit_ballot(submission))

    assert (first.version, second.version) == (0, 1)


def test_out_of_range_score_is_rejected(controller, seeded, in_progress) -> None:
    submission = ballots_for_round(seeded, in_progress, seeded.motion, winners_scores=("75", "101"))[0]

    with pytest.raises(InvalidInput):
        asyncio.run(controller.submit_ballot(submission))


def test_only_panel_judges_may_submit(controller, seeded, in_progress) -> None:
    submission = ballots_for_round(seeded, in_progress, seeded.motion)[0]
    other_chair = in_progress.debates[1].chair()

    with pytest.raises(InvalidInput):
        asyncio.run(controller.submit_ballot(submission.model_copy(update={"judge_id": other_chair})))


def test_motion_must_belong_to_the_round(controller, store, seeded, in_progress) -> None:
    other_round = add_round(store, seeded.tournament, 2)
    other_motion = add_motion(store, other_round)
    submission = ballots_for_round(seeded, in_progress, other_motion)[0]

    with pytest.raises(InvalidInput):
        asyncio.run(controller.submit_ballot(submission))


def test_round_cannot_complete_with_missing_results(controller, seeded, in_progress) -> None:
    submission = ballots_for_round(seeded, in_progress, seeded.motion)[0]
    ballot = asyncio.run(controller.submit_ballot(submission))
    asyncio.run(controller.confirm_ballot(ballot.id))

    with pytest.raises(InvalidState):
        asyncio.run(controller.complete_round(seeded.round.id))
    assert asyncio.run(controller.get_round(seeded.round.id)).draw_status == DrawStatus.IN_PROGRESS


def test_confirmation_bumps_the_results_stamp(controller, store, seeded, in_progress) -> None:
    ballot = asyncio.run(controller.submit_ballot(ballots_for_round(seeded, in_progress, seeded.motion)[0]))

    with store.transaction(write=False) as txn:
        before = store.get_results_stamp(txn, seeded.tournament.id)
    asyncio.run(controller.confirm_ballot(ballot.id))
    with store.transaction(write=False) as txn:
        after = store.get_results_stamp(txn, seeded.tournament.id)

    assert after == before + 1


def test_individual_ballots_are_averaged(store, events, clock) -> None:
    seeded = seed_tournament(
        store, clock, team_count=2, judge_count=3, judges_per_panel=3, pool_ballot_setup="individual"
    )
    controller = RoundLifecycleController(store, events, clock=clock)

    async def run():
        await controller.generate_draw(seeded.round.id, seed=1)
        await controller.release_draw(seeded.round.id)
        await controller.start_round(seeded.round.id)
        draw = await controller.get_draw(seeded.round.id)
        debate = draw.debates[0]
        prop, opp = debate.sides()
        voting = [j.judge_id for j in debate.judges if j.role in (JudgeRole.CHAIR, JudgeRole.PANELLIST)]
        # two judges favour the opposition, one the proposition
        sheets = [(("75", "75"), ("70", "70")), (("70", "70"), ("72", "72")), (("70", "70"), ("71", "71"))]
        for judge_id, (prop_scores, opp_scores) in zip(voting, sheets):
            ballot = await controller.submit_ballot(
                BallotSubmission(
                    debate_id=debate.id,
                    judge_id=judge_id,
                    motion_id=seeded.motion.id,
                    scores=speaker_scores(seeded, prop[0], list(prop_scores))
                    + speaker_scores(seeded, opp[0], list(opp_scores)),
                )
            )
            await controller.confirm_ballot(ballot.id)
        await controller.complete_round(seeded.round.id)
        return prop[0], opp[0], len(voting)

    prop_id, opp_id, voting = asyncio.run(run())
    assert voting == 3

    with store.transaction(write=False) as txn:
        results = {r.team_id: r.points for r in store.completed_team_results(txn, seeded.tournament.id)}
        speaks = store.completed_speaker_results(txn, seeded.tournament.id)
    assert results == {opp_id: 1, prop_id: 0}
    first_prop_speech = next(s for s in speaks if s.team_id == prop_id and s.position == 1)
    assert str(first_prop_speech.score) == "71.6667"


def test_consensus_ballots_must_agree(store, events, clock) -> None:
    seeded = seed_tournament(store, clock, team_count=2, judge_count=2, judges_per_panel=2)
    controller = RoundLifecycleController(store, events, clock=clock)

    async def run():
        await controller.generate_draw(seeded.round.id, seed=1)
        await controller.release_draw(seeded.round.id)
        await controller.start_round(seeded.round.id)
        draw = await controller.get_draw(seeded.round.id)
        debate = draw.debates[0]
        prop, opp = debate.sides()
        chair = debate.chair()
        panellist = debate.judge_ids(JudgeRole.PANELLIST)[0]
        agree = await controller.submit_ballot(
            BallotSubmission(
                debate_id=debate.id,
                judge_id=chair,
                motion_id=seeded.motion.id,
                scores=speaker_scores(seeded, prop[0], ["75", "75"]) + speaker_scores(seeded, opp[0], ["70", "70"]),
            )
        )
        disagree = await controller.submit_ballot(
            BallotSubmission(
                debate_id=debate.id,
                judge_id=panellist,
                motion_id=seeded.motion.id,
                scores=speaker_scores(seeded, prop[0], ["70", "70"]) + speaker_scores(seeded, opp[0], ["75", "75"]),
            )
        )
        await controller.confirm_ballot(agree.id)
        await controller.confirm_ballot(disagree.id)

    with pytest.raises(InvalidState):
        asyncio.run(run())


# =============================================================================
# Rooms
# =============================================================================


def add_rooms(store, seeded, count):
    from abacus.clock import new_id
    from abacus.tournaments.models import Room

    rooms = []
    with store.transaction() as txn:
        for priority in range(count):
            room = Room(id=new_id(), tournament_id=seeded.tournament.id, name=f"Room {priority}", priority=priority)
            store.create_room(txn, room)
            rooms.append(room)
    return rooms


def test_generated_draw_is_roomed_by_priority(controller, store, seeded) -> None:
    rooms = add_rooms(store, seeded, 3)

    asyncio.run(controller.generate_draw(seeded.round.id, seed=1))

    draw = asyncio.run(controller.get_draw(seeded.round.id))
    assert sorted(draw.assigned_room_ids()) == sorted([rooms[0].id, rooms[1].id])


def test_move_room_between_debates(controller, store, events, seeded) -> None:
    rooms = add_rooms(store, seeded, 2)
    asyncio.run(controller.generate_draw(seeded.round.id, seed=1))
    draw = asyncio.run(controller.get_draw(seeded.round.id))
    holder = next(d for d in draw.debates if d.debate.room_id == rooms[0].id)
    target = next(d for d in draw.debates if d.id != holder.id)
    subscription = events.subscribe()

    affected = asyncio.run(controller.move_room(rooms[0].id, target.id, [seeded.round.id]))

    assert affected == [seeded.round.id]
    moved = asyncio.run(controller.get_draw(seeded.round.id))
    assert moved.debate(target.id).debate.room_id == rooms[0].id
    assert moved.debate(holder.id).debate.room_id is None
    assert drain(subscription) == [DrawUpdated(tournament_id=seeded.tournament.id, round_id=seeded.round.id)]


def test_move_room_target_must_be_in_given_rounds(controller, store, seeded) -> None:
    rooms = add_rooms(store, seeded, 2)
    other = add_round(store, seeded.tournament, 2)
    asyncio.run(controller.generate_draw(seeded.round.id, seed=1))
    draw = asyncio.run(controller.get_draw(seeded.round.id))

    with pytest.raises(InvalidInput):
        asyncio.run(controller.move_room(rooms[0].id, draw.debates[0].id, [other.id]))


def test_move_room_keeps_rooms_within_their_tournament(controller, store, clock, seeded) -> None:
    elsewhere = add_rooms(store, seed_tournament(store, clock, team_count=2), 1)[0]
    asyncio.run(controller.generate_draw(seeded.round.id, seed=1))
    draw = asyncio.run(controller.get_draw(seeded.round.id))

    with pytest.raises(InvalidInput):
        asyncio.run(controller.move_room(elsewhere.id, draw.debates[0].id, [seeded.round.id]))
    assert asyncio.run(controller.get_draw(seeded.round.id)).debate(draw.debates[0].id).debate.room_id != elsewhere.id


def test_move_room_rejects_completed_rounds(controller, store, seeded) -> None:
    rooms = add_rooms(store, seeded, 2)
    asyncio.run(play_round(controller, seeded, seeded.round, seeded.motion))

    with pytest.raises(InvalidState):
        asyncio.run(controller.move_room(rooms[0].id, None, [seeded.round.id]))
