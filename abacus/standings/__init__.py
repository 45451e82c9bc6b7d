"""Team and speaker standings."""

from .compute import SpeakerStandings, Standings, StandingsCache, TeamStandings
from .history import BritishParliamentary, OneOnOne, PositionHistory, Slot, TeamHistory, slots_for
from .metrics import resolve_speaker_metric, resolve_team_metric, validate_metric_names
from .values import TSS, Average, DsWins, MetricCategoryError, MetricValue, NTimesResult, Points

__all__ = [
    "Average",
    "BritishParliamentary",
    "DsWins",
    "MetricCategoryError",
    "MetricValue",
    "NTimesResult",
    "OneOnOne",
    "Points",
    "PositionHistory",
    "Slot",
    "SpeakerStandings",
    "Standings",
    "StandingsCache",
    "TSS",
    "TeamHistory",
    "TeamStandings",
    "resolve_speaker_metric",
    "resolve_team_metric",
    "slots_for",
    "validate_metric_names",
]
