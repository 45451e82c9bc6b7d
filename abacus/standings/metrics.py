"""Team and speaker metrics, and the registry resolving configured names.

A metric reduces the aggregated results of completed preliminary rounds to
one value per team (or speaker). Every team metric yields a value for every
team of the tournament so that standings tuples all have the same arity.
"""

import logging
import re
from collections import defaultdict
from collections.abc import Callable
from decimal import Decimal
from functools import cached_property

from abacus.errors import InvalidConfiguration
from abacus.store import StoreGateway, Transaction
from abacus.tournaments.models import Tournament

from .values import TSS, Average, DsWins, MetricValue, NTimesResult, Points

logger = logging.getLogger(__name__)

TeamMetric = Callable[["MetricContext"], dict[str, MetricValue]]
SpeakerMetric = Callable[["MetricContext"], dict[str, MetricValue]]


class MetricContext:
    """Result history of one tournament, loaded lazily and at most once."""

    def __init__(self, store: StoreGateway, txn: Transaction, tournament: Tournament):
        self.store = store
        self.txn = txn
        self.tournament = tournament

    @cached_property
    def team_ids(self) -> list[str]:
        return [team.id for team in self.store.list_teams(self.txn, self.tournament.id)]

    @cached_property
    def speakers(self) -> dict[str, str]:
        """speaker_id -> team_id"""
        return {s.id: s.team_id for s in self.store.list_speakers(self.txn, self.tournament.id)}

    @cached_property
    def team_results(self):
        return self.store.completed_team_results(self.txn, self.tournament.id)

    @cached_property
    def speaker_results(self):
        return self.store.completed_speaker_results(self.txn, self.tournament.id)

    @cached_property
    def completed_rounds(self) -> int:
        return self.store.count_completed_preliminary_rounds(self.txn, self.tournament.id)

    @cached_property
    def teams_of_debate(self) -> dict[str, list[str]]:
        debates: dict[str, list[str]] = defaultdict(list)
        for result in self.team_results:
            debates[result.debate_id].append(result.team_id)
        return debates

    @cached_property
    def substantive_results(self):
        limit = self.tournament.substantive_speakers
        return [r for r in self.speaker_results if r.position <= limit]

    @cached_property
    def total_points(self) -> dict[str, int]:
        totals = {team_id: 0 for team_id in self.team_ids}
        for result in self.team_results:
            totals[result.team_id] = totals.get(result.team_id, 0) + result.points
        return totals

    @cached_property
    def total_speaks(self) -> dict[str, Decimal]:
        totals = {team_id: Decimal(0) for team_id in self.team_ids}
        for result in self.speaker_results:
            totals[result.team_id] = totals.get(result.team_id, Decimal(0)) + result.score
        return totals

    def opponents(self, team_id: str) -> list[str]:
        """Every other team met, once per encounter."""
        met = []
        for teams in self.teams_of_debate.values():
            if team_id in teams:
                met.extend(t for t in teams if t != team_id)
        return met


# ========== Team metrics ==========


def points(ctx: MetricContext) -> dict[str, MetricValue]:
    return {team_id: Points(total) for team_id, total in ctx.total_points.items()}


def n_times_result(p: int) -> TeamMetric:
    def compute(ctx: MetricContext) -> dict[str, MetricValue]:
        counts = {team_id: 0 for team_id in ctx.team_ids}
        for result in ctx.team_results:
            if result.points == p:
                counts[result.team_id] = counts.get(result.team_id, 0) + 1
        return {team_id: NTimesResult(points=p, count=n) for team_id, n in counts.items()}

    return compute


def tss(ctx: MetricContext) -> dict[str, MetricValue]:
    return {team_id: TSS(total) for team_id, total in ctx.total_speaks.items()}


def atss(ctx: MetricContext) -> dict[str, MetricValue]:
    debated = {team_id: 0 for team_id in ctx.team_ids}
    for result in ctx.team_results:
        debated[result.team_id] = debated.get(result.team_id, 0) + 1
    return {
        team_id: Average.of(total, debated.get(team_id, 0))
        for team_id, total in ctx.total_speaks.items()
    }


def ds_wins(ctx: MetricContext) -> dict[str, MetricValue]:
    totals = ctx.total_points
    return {
        team_id: DsWins(sum(totals.get(other, 0) for other in ctx.opponents(team_id)))
        for team_id in ctx.team_ids
    }


def ds_speaks(ctx: MetricContext) -> dict[str, MetricValue]:
    totals = ctx.total_speaks
    return {
        team_id: TSS(sum((totals.get(other, Decimal(0)) for other in ctx.opponents(team_id)), Decimal(0)))
        for team_id in ctx.team_ids
    }


def ballots(ctx: MetricContext) -> dict[str, MetricValue]:
    counts = {team_id: 0 for team_id in ctx.team_ids}
    for team_id, team_points in ctx.store.completed_ballot_team_points(ctx.txn, ctx.tournament.id):
        counts[team_id] = counts.get(team_id, 0) + team_points
    return {team_id: Points(n) for team_id, n in counts.items()}


# ========== Speaker metrics ==========


def _eligible_scores(ctx: MetricContext) -> dict[str, list[Decimal]]:
    scores: dict[str, list[Decimal]] = {speaker_id: [] for speaker_id in ctx.speakers}
    for result in ctx.substantive_results:
        scores.setdefault(result.speaker_id, []).append(result.score)

    limit = ctx.tournament.exclude_from_speaker_standings_after
    if limit is None:
        return scores

    eligible = {}
    for speaker_id, speaker_scores in scores.items():
        missed = ctx.completed_rounds - len(speaker_scores)
        if missed > limit:
            logger.debug(f"Speaker {speaker_id} missed {missed} rounds, omitted from standings")
            continue
        eligible[speaker_id] = speaker_scores
    return eligible


def speaker_total(ctx: MetricContext) -> dict[str, MetricValue]:
    return {s: TSS(sum(scores, Decimal(0))) for s, scores in _eligible_scores(ctx).items()}


def speaker_average(ctx: MetricContext) -> dict[str, MetricValue]:
    return {
        s: Average.of(sum(scores, Decimal(0)), len(scores))
        for s, scores in _eligible_scores(ctx).items()
    }


def _trimmed(scores: list[Decimal]) -> list[Decimal]:
    """Scores lying within one population standard deviation of the mean."""
    if len(scores) < 2:
        return scores
    mean = sum(scores, Decimal(0)) / len(scores)
    variance = sum(((s - mean) ** 2 for s in scores), Decimal(0)) / len(scores)
    spread = variance.sqrt()
    return [s for s in scores if abs(s - mean) <= spread]


def speaker_trimmed_average(ctx: MetricContext) -> dict[str, MetricValue]:
    values = {}
    for speaker_id, scores in _eligible_scores(ctx).items():
        kept = _trimmed(scores)
        values[speaker_id] = Average.of(sum(kept, Decimal(0)), len(kept))
    return values


def speaker_speeches(ctx: MetricContext) -> dict[str, MetricValue]:
    return {s: Points(len(scores)) for s, scores in _eligible_scores(ctx).items()}


# ========== Registry ==========

TEAM_METRICS: dict[str, TeamMetric] = {
    "points": points,
    "tss": tss,
    "atss": atss,
    "ds_wins": ds_wins,
    "ds_speaks": ds_speaks,
    "ballots": ballots,
}

SPEAKER_METRICS: dict[str, SpeakerMetric] = {
    "total": speaker_total,
    "average": speaker_average,
    "trimmed_average": speaker_trimmed_average,
    "speeches": speaker_speeches,
}

_N_TIMES = re.compile(r"^n_times_result\((\d+)\)$")


def resolve_team_metric(name: str) -> TeamMetric:
    """Look up a team metric by its configured name, e.g. ``n_times_result(3)``."""
    if name in TEAM_METRICS:
        return TEAM_METRICS[name]
    match = _N_TIMES.match(name)
    if match:
        return n_times_result(int(match.group(1)))
    raise InvalidConfiguration(f"Unknown team metric: {name}")


def resolve_speaker_metric(name: str) -> SpeakerMetric:
    if name in SPEAKER_METRICS:
        return SPEAKER_METRICS[name]
    raise InvalidConfiguration(f"Unknown speaker metric: {name}")


def validate_metric_names(team_metrics: list[str], speaker_metrics: list[str]) -> None:
    for name in team_metrics:
        resolve_team_metric(name)
    for name in speaker_metrics:
        resolve_speaker_metric(name)
