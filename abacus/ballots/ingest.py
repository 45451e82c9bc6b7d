"""Ballot submission, confirmation and aggregation into debate results."""

import logging
from collections import defaultdict
from decimal import Decimal

from abacus.clock import Clock, SystemClock, new_id
from abacus.errors import InvalidInput, InvalidState
from abacus.store import StoreGateway, Transaction
from abacus.tournaments.models import (
    Ballot,
    BallotSetup,
    BallotSubmission,
    BallotTeamResult,
    DrawStatus,
    JudgeRole,
    Round,
    RoundKind,
    SpeakerResult,
    SpeakerScore,
    TeamResult,
    Tournament,
)
from abacus.tournaments.repr import DebateRepr

logger = logging.getLogger(__name__)

SCORE_QUANTUM = Decimal("0.0001")


def team_totals(scores: list[SpeakerScore]) -> dict[str, Decimal]:
    totals: dict[str, Decimal] = defaultdict(Decimal)
    for score in scores:
        if score.score is not None:
            totals[score.team_id] += score.score
    return totals


def points_from_totals(totals: dict[str, Decimal], team_count: int) -> dict[str, int]:
    """Highest total gets ``team_count - 1`` points, the lowest gets 0."""
    ordered = sorted(totals.items(), key=lambda item: (-item[1], item[0]))
    for (_, a), (_, b) in zip(ordered, ordered[1:]):
        if a == b:
            raise InvalidInput("Two teams have the same total speaker score", field="scores")
    return {team_id: team_count - 1 - idx for idx, (team_id, _) in enumerate(ordered)}


class BallotValidator:
    """Checks a submission against the debate and tournament configuration."""

    def __init__(self, tournament: Tournament, round: Round, debate: DebateRepr, team_of_speaker: dict[str, str]):
        self.tournament = tournament
        self.round = round
        self.debate = debate
        self.team_of_speaker = team_of_speaker

    @property
    def is_elimination(self) -> bool:
        return self.round.kind == RoundKind.ELIMINATION

    @property
    def speaks_required(self) -> bool:
        return not self.is_elimination or self.tournament.elim_ballots_require_speaks

    def validate(self, submission: BallotSubmission) -> list[BallotTeamResult]:
        teams = set(self.debate.team_ids())
        submitted = {score.team_id for score in submission.scores}
        if self.speaks_required and submitted != teams:
            raise InvalidInput("Ballot must score exactly the debate's teams", field="scores")
        if not submitted <= teams:
            raise InvalidInput("Ballot scores a team not in this debate", field="scores")

        for team_id in submitted:
            self._validate_team_scores(team_id, [s for s in submission.scores if s.team_id == team_id])

        if self.is_elimination:
            return self._elimination_results(submission, teams)
        points = points_from_totals(team_totals(submission.scores), len(teams))
        return [
            BallotTeamResult(team_id=team_id, points=points[team_id], advancing=points[team_id] >= len(teams) // 2)
            for team_id in sorted(teams)
        ]

    def _validate_team_scores(self, team_id: str, scores: list[SpeakerScore]) -> None:
        substantive = self.tournament.substantive_speakers
        reply_position = substantive + 1
        positions = sorted(score.position for score in scores)

        expected = list(range(1, substantive + 1))
        if self.tournament.reply_speakers and self.tournament.reply_must_speak:
            expected.append(reply_position)
        if positions != expected and not (
            self.tournament.reply_speakers and positions == expected + [reply_position]
        ):
            raise InvalidInput(f"Unexpected speaker positions {positions}", field="scores")

        substantive_speakers = {}
        for score in scores:
            if self.team_of_speaker.get(score.speaker_id) != team_id:
                raise InvalidInput(f"Speaker {score.speaker_id} is not on team {team_id}", field="scores")
            if score.position <= substantive:
                substantive_speakers[score.speaker_id] = score.position
            self._validate_bounds(score, reply=score.position == reply_position)

        for score in scores:
            if score.position != reply_position:
                continue
            if score.speaker_id not in substantive_speakers:
                raise InvalidInput("The reply speaker must give a substantive speech", field="scores")
            limit = self.tournament.max_substantive_speech_index_for_reply
            if limit is not None and substantive_speakers[score.speaker_id] > limit:
                raise InvalidInput(
                    f"Only speakers {limit} or earlier may give the reply", field="scores"
                )

    def _validate_bounds(self, score: SpeakerScore, reply: bool) -> None:
        if score.score is None:
            if self.speaks_required:
                raise InvalidInput("Every speech must be scored", field="scores")
            return
        low, high = self.tournament.min_speaker_score, self.tournament.max_speaker_score
        if reply:
            low = self.tournament.min_reply_score if self.tournament.min_reply_score is not None else low
            high = self.tournament.max_reply_score if self.tournament.max_reply_score is not None else high
        if not low <= score.score <= high:
            raise InvalidInput(f"Score {score.score} outside [{low}, {high}]", field="scores")

    def _elimination_results(self, submission: BallotSubmission, teams: set[str]) -> list[BallotTeamResult]:
        if set(submission.advancing) != teams:
            raise InvalidInput("Every team needs an advancement decision", field="advancing")
        advancing = [team_id for team_id, advances in submission.advancing.items() if advances]
        if len(advancing) != len(teams) // 2:
            raise InvalidInput(
                f"Exactly {len(teams) // 2} of {len(teams)} teams must advance", field="advancing"
            )
        return [
            BallotTeamResult(team_id=team_id, points=int(submission.advancing[team_id]), advancing=submission.advancing[team_id])
            for team_id in sorted(teams)
        ]


class BallotIngest:
    def __init__(self, store: StoreGateway, clock: Clock | None = None):
        self.store = store
        self.clock = clock or SystemClock()

    def _round_in_progress(self, txn: Transaction, debate_id: str) -> Round:
        round = self.store.round_of_debate(txn, debate_id)
        if round.draw_status != DrawStatus.IN_PROGRESS:
            raise InvalidState(f"Round {round.name} is not in progress")
        return round

    def submit(self, txn: Transaction, submission: BallotSubmission) -> Ballot:
        round = self._round_in_progress(txn, submission.debate_id)
        tournament = self.store.get_tournament(txn, round.tournament_id)
        debate = self.store.get_draw_repr(txn, round.id).debate(submission.debate_id)

        voting = debate.judge_ids(JudgeRole.CHAIR) + debate.judge_ids(JudgeRole.PANELLIST)
        if submission.judge_id not in voting:
            raise InvalidInput("Judge is not on this debate's panel", field="judge_id")
        motion = self.store.get_motion(txn, submission.motion_id)
        if motion.round_id != round.id:
            raise InvalidInput("Motion does not belong to this round", field="motion_id")

        team_of_speaker = {s.id: s.team_id for s in self.store.list_speakers(txn, tournament.id)}
        team_results = BallotValidator(tournament, round, debate, team_of_speaker).validate(submission)

        ballot = self.store.insert_ballot(
            txn,
            Ballot(
                id=new_id(),
                tournament_id=tournament.id,
                debate_id=submission.debate_id,
                judge_id=submission.judge_id,
                motion_id=submission.motion_id,
                submitted_at=self.clock.now(),
                version=0,
                team_results=team_results,
                scores=submission.scores,
            ),
        )
        logger.info(f"Ballot v{ballot.version} from judge {ballot.judge_id} for debate {ballot.debate_id}")
        return ballot

    def confirm(self, txn: Transaction, ballot_id: str) -> Round:
        """Confirm a ballot and re-aggregate its debate's results."""
        ballot = self.store.get_ballot(txn, ballot_id)
        round = self._round_in_progress(txn, ballot.debate_id)
        tournament = self.store.get_tournament(txn, round.tournament_id)

        self.store.set_ballot_confirmed(txn, ballot.id)
        self.aggregate(txn, tournament, round, ballot.debate_id)
        self.store.bump_results_stamp(txn, tournament.id)
        return round

    def aggregate(self, txn: Transaction, tournament: Tournament, round: Round, debate_id: str) -> None:
        ballots = self.store.latest_ballots(txn, debate_id, confirmed_only=True)
        if not ballots:
            return
        debate = self.store.get_draw_repr(txn, round.id).debate(debate_id)

        if tournament.ballot_setup_for(round.kind) == BallotSetup.CONSENSUS:
            team_results, speaker_results = self._consensus(ballots, debate)
        else:
            team_results, speaker_results = self._individual(ballots, round)
        self.store.replace_debate_results(txn, debate_id, team_results, speaker_results)

    def _consensus(self, ballots: list[Ballot], debate: DebateRepr):
        orders = {tuple(ballot.team_order()) for ballot in ballots}
        if len(orders) > 1:
            raise InvalidState("Confirmed ballots for this debate disagree on the result")
        chair = debate.chair()
        canonical = next((b for b in ballots if b.judge_id == chair), ballots[0])
        team_results = [
            TeamResult(debate_id=canonical.debate_id, team_id=r.team_id, points=r.points)
            for r in canonical.team_results
        ]
        speaker_results = [
            SpeakerResult(
                debate_id=canonical.debate_id,
                team_id=s.team_id,
                speaker_id=s.speaker_id,
                position=s.position,
                score=s.score,
            )
            for s in canonical.scores
            if s.score is not None
        ]
        return team_results, speaker_results

    def _individual(self, ballots: list[Ballot], round: Round):
        """Average the speaks and rank teams by points summed over all ballots."""
        debate_id = ballots[0].debate_id
        summed: dict[str, int] = defaultdict(int)
        for ballot in ballots:
            for result in ballot.team_results:
                summed[result.team_id] += result.points

        per_speech: dict[tuple[str, int], list[Decimal]] = defaultdict(list)
        speaker_of: dict[tuple[str, int], str] = {}
        for ballot in ballots:
            for score in ballot.scores:
                if score.score is None:
                    continue
                per_speech[(score.team_id, score.position)].append(score.score)
                speaker_of.setdefault((score.team_id, score.position), score.speaker_id)

        speaker_results = [
            SpeakerResult(
                debate_id=debate_id,
                team_id=team_id,
                speaker_id=speaker_of[(team_id, position)],
                position=position,
                score=(sum(scores, Decimal(0)) / len(scores)).quantize(SCORE_QUANTUM),
            )
            for (team_id, position), scores in sorted(per_speech.items())
        ]
        speaks: dict[str, Decimal] = defaultdict(Decimal)
        for result in speaker_results:
            speaks[result.team_id] += result.score

        ordered = sorted(summed, key=lambda t: (-summed[t], -speaks[t], t))
        team_count = len(ordered)
        if round.kind == RoundKind.ELIMINATION:
            points = {t: int(i < team_count // 2) for i, t in enumerate(ordered)}
        else:
            points = {t: team_count - 1 - i for i, t in enumerate(ordered)}
        team_results = [
            TeamResult(debate_id=debate_id, team_id=team_id, points=points[team_id])
            for team_id in sorted(points)
        ]
        return team_results, speaker_results

    def complete_round(self, txn: Transaction, round_id: str) -> Round:
        round = self.store.get_round(txn, round_id)
        if round.draw_status != DrawStatus.IN_PROGRESS:
            raise InvalidState(f"Round {round.name} is not in progress")
        missing = self.store.debates_without_results(txn, round.id)
        if missing:
            raise InvalidState(f"{len(missing)} debate(s) in round {round.name} have no confirmed ballot")

        self.store.mark_round_completed(txn, round.id)
        self.store.set_draw_status(txn, round.id, DrawStatus.COMPLETED, expected=DrawStatus.IN_PROGRESS)
        self.store.bump_results_stamp(txn, round.tournament_id)
        logger.info(f"Round {round.name} completed")
        return round.model_copy(update={"draw_status": DrawStatus.COMPLETED, "completed": True})
