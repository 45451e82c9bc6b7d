"""Metric values: a small tagged union with a total order per variant."""

from dataclasses import dataclass
from decimal import ROUND_HALF_EVEN, Decimal
from typing import Any

AVERAGE_QUANTUM = Decimal("0.000001")


class MetricCategoryError(TypeError):
    """Two metric values of different kinds were compared."""


@dataclass(frozen=True, eq=False)
class MetricValue:
    """Base class for every metric value.

    Values of the same variant are totally ordered; comparing values of
    different variants is a category error.
    """

    kind = "metric"

    def sort_key(self) -> Any:
        raise NotImplementedError

    def to_json(self) -> Any:
        raise NotImplementedError

    def _check(self, other: object) -> bool:
        if not isinstance(other, MetricValue):
            return False
        if type(other) is not type(self):
            raise MetricCategoryError(
                f"Cannot compare {self.kind} metric with {other.kind} metric"
            )
        return True

    def __eq__(self, other: object) -> bool:
        if not self._check(other):
            return NotImplemented
        return self.sort_key() == other.sort_key()

    def __hash__(self) -> int:
        return hash((self.kind, self.sort_key()))

    def __lt__(self, other: "MetricValue") -> bool:
        if not self._check(other):
            return NotImplemented
        return self.sort_key() < other.sort_key()

    def __le__(self, other: "MetricValue") -> bool:
        if not self._check(other):
            return NotImplemented
        return self.sort_key() <= other.sort_key()

    def __gt__(self, other: "MetricValue") -> bool:
        if not self._check(other):
            return NotImplemented
        return self.sort_key() > other.sort_key()

    def __ge__(self, other: "MetricValue") -> bool:
        if not self._check(other):
            return NotImplemented
        return self.sort_key() >= other.sort_key()


@dataclass(frozen=True, eq=False)
class Points(MetricValue):
    value: int
    kind = "points"

    def __post_init__(self):
        if not isinstance(self.value, int) or isinstance(self.value, bool):
            raise TypeError(f"Points must be an integer, got {self.value!r}")

    def sort_key(self) -> int:
        return self.value

    def to_json(self) -> int:
        return self.value


@dataclass(frozen=True, eq=False)
class NTimesResult(MetricValue):
    """How many times a team scored exactly ``points`` in a debate."""

    points: int
    count: int
    kind = "n_times_result"

    def sort_key(self) -> int:
        return self.count

    def to_json(self) -> int:
        return self.count

    def _check(self, other: object) -> bool:
        if not super()._check(other):
            return False
        if other.points != self.points:
            raise MetricCategoryError(
                f"Cannot compare counts of {self.points}-point results with {other.points}-point results"
            )
        return True


@dataclass(frozen=True, eq=False)
class TSS(MetricValue):
    """Total speaker score, fixed-point."""

    value: Decimal
    kind = "tss"

    def __post_init__(self):
        if not isinstance(self.value, Decimal):
            raise TypeError(f"TSS must be a Decimal, got {self.value!r}")

    def sort_key(self) -> Decimal:
        return self.value

    def to_json(self) -> str:
        return str(self.value)


@dataclass(frozen=True, eq=False)
class DsWins(MetricValue):
    """Draw strength by wins."""

    value: int
    kind = "ds_wins"

    def sort_key(self) -> int:
        return self.value

    def to_json(self) -> int:
        return self.value


@dataclass(frozen=True, eq=False)
class Average(MetricValue):
    value: Decimal
    kind = "average"

    def __post_init__(self):
        if not isinstance(self.value, Decimal):
            raise TypeError(f"Average must be a Decimal, got {self.value!r}")
        object.__setattr__(self, "value", self.value.quantize(AVERAGE_QUANTUM, rounding=ROUND_HALF_EVEN))

    @classmethod
    def of(cls, total: Decimal, count: int) -> "Average":
        """Mean of ``count`` values summing to ``total``; zero when ``count`` is zero."""
        if count == 0:
            return cls(Decimal(0))
        return cls(Decimal(total) / Decimal(count))

    def sort_key(self) -> Decimal:
        return self.value

    def to_json(self) -> str:
        return str(self.value)
