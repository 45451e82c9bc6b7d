"""Standings: ranking teams and speakers by their configured metric tuples."""

import json
import logging
import threading
from itertools import groupby

from abacus.store import StoreGateway, Transaction
from abacus.tournaments.models import Tournament

from .metrics import MetricContext, resolve_speaker_metric, resolve_team_metric
from .values import MetricValue

logger = logging.getLogger(__name__)


class Standings:
    """Entities ranked by lexicographic comparison of metric tuples.

    Larger tuples rank higher. Entities with identical tuples share a rank and
    ranks stay sparse: three teams tied for first are followed by rank 4.
    Within a tie, entities are ordered by id.
    """

    def __init__(self, metrics: list[str], values: dict[str, tuple[MetricValue, ...]]):
        self.metrics = list(metrics)
        self.values = values

        # sort is stable, so ties keep the ascending id order
        ordered = sorted(sorted(values), key=lambda entity_id: values[entity_id], reverse=True)
        self._groups: list[tuple[int, list[str]]] = []
        self._ranks: dict[str, int] = {}
        position = 1
        for _, group in groupby(ordered, key=lambda entity_id: values[entity_id]):
            ids = list(group)
            self._groups.append((position, ids))
            for entity_id in ids:
                self._ranks[entity_id] = position
            position += len(ids)

    def rank_groups(self) -> list[tuple[int, list[str]]]:
        return [(rank, list(ids)) for rank, ids in self._groups]

    def tuple_of(self, entity_id: str) -> tuple[MetricValue, ...]:
        return self.values[entity_id]

    def rank_of(self, entity_id: str) -> int:
        return self._ranks[entity_id]

    def ranks(self) -> dict[str, int]:
        return dict(self._ranks)

    def ordered_ids(self) -> list[str]:
        return [entity_id for _, ids in self._groups for entity_id in ids]

    def brackets(self) -> list[list[str]]:
        """Groups of entities sharing a tuple, best first."""
        return [list(ids) for _, ids in self._groups]

    def display_values(self, entity_id: str) -> dict[str, object]:
        return {
            name: value.to_json() for name, value in zip(self.metrics, self.values[entity_id])
        }

    def to_json(self) -> str:
        """Deterministic serialisation; identical inputs give identical bytes."""
        rows = [
            {"rank": rank, "id": entity_id, "metrics": self.display_values(entity_id)}
            for rank, ids in self._groups
            for entity_id in ids
        ]
        return json.dumps({"metrics": self.metrics, "standings": rows}, sort_keys=True)

    def __len__(self) -> int:
        return len(self.values)


class TeamStandings(Standings):
    @classmethod
    def compute(cls, store: StoreGateway, txn: Transaction, tournament: Tournament) -> "TeamStandings":
        resolved = [resolve_team_metric(name) for name in tournament.team_standings_metrics]
        ctx = MetricContext(store, txn, tournament)
        columns = [metric(ctx) for metric in resolved]
        values = {
            team_id: tuple(column[team_id] for column in columns) for team_id in ctx.team_ids
        }
        return cls(tournament.team_standings_metrics, values)


class SpeakerStandings(Standings):
    @classmethod
    def compute(cls, store: StoreGateway, txn: Transaction, tournament: Tournament) -> "SpeakerStandings":
        resolved = [resolve_speaker_metric(name) for name in tournament.speaker_standings_metrics]
        ctx = MetricContext(store, txn, tournament)
        columns = [metric(ctx) for metric in resolved]
        # every speaker metric omits the same excluded speakers
        speaker_ids = set(columns[0]) if columns else set(ctx.speakers)
        values = {
            speaker_id: tuple(column[speaker_id] for column in columns) for speaker_id in speaker_ids
        }
        return cls(tournament.speaker_standings_metrics, values)


class StandingsCache:
    """Per-tournament standings memoised until the results stamp moves."""

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[int, TeamStandings, SpeakerStandings]] = {}

    def get(self, tournament_id: str, stamp: int) -> tuple[TeamStandings, SpeakerStandings] | None:
        with self._lock:
            entry = self._entries.get(tournament_id)
        if entry is None or entry[0] != stamp:
            return None
        return entry[1], entry[2]

    def put(self, tournament_id: str, stamp: int, teams: TeamStandings, speakers: SpeakerStandings) -> None:
        with self._lock:
            self._entries[tournament_id] = (stamp, teams, speakers)

    def invalidate(self, tournament_id: str) -> None:
        with self._lock:
            self._entries.pop(tournament_id, None)

    def load(
        self, store: StoreGateway, txn: Transaction, tournament: Tournament
    ) -> tuple[TeamStandings, SpeakerStandings]:
        """Return cached standings, recomputing if the stamp changed."""
        stamp = store.get_results_stamp(txn, tournament.id)
        cached = self.get(tournament.id, stamp)
        if cached is not None:
            return cached
        logger.debug(f"Recomputing standings for tournament {tournament.id} at stamp {stamp}")
        teams = TeamStandings.compute(store, txn, tournament)
        speakers = SpeakerStandings.compute(store, txn, tournament)
        self.put(tournament.id, stamp, teams, speakers)
        return teams, speakers
