"""Thread-safe counter and histogram series keyed by label values."""
from __future__ import annotations

from abc import ABC, abstractmethod
from bisect import bisect_left
from contextlib import contextmanager
from dataclasses import dataclass
from threading import Lock
from time import perf_counter
from typing import Dict, Iterator, List, Mapping, Tuple

from .definitions import MetricDefinition, MetricKind

LabelKey = Tuple[str, ...]
Sample = Tuple[str, Dict[str, str], float]


class Series(ABC):
    """Live values of one metric definition."""

    kind: MetricKind

    def __init__(self, definition: MetricDefinition) -> None:
        self.definition = definition
        self._lock = Lock()

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def label_names(self) -> Tuple[str, ...]:
        return self.definition.label_names

    def _key(self, labels: Mapping[str, str] | None) -> LabelKey:
        given = dict(labels or {})
        if set(given) != set(self.label_names):
            raise ValueError(
                f"Metric '{self.name}' expects labels {self.label_names}, got {tuple(sorted(given))}"
            )
        return tuple(str(given[name]) for name in self.label_names)

    def _labels(self, key: LabelKey) -> Dict[str, str]:
        return dict(zip(self.label_names, key))

    @abstractmethod
    def samples(self) -> Iterator[Sample]:
        """Yield ``(sample name, labels, value)`` for every tracked label set."""


class Counter(Series):
    kind = MetricKind.COUNTER

    def __init__(self, definition: MetricDefinition) -> None:
        super().__init__(definition)
        self._values: Dict[LabelKey, float] = {}

    def inc(self, amount: float = 1.0, *, labels: Mapping[str, str] | None = None) -> None:
        if amount < 0:
            raise ValueError(f"Counter '{self.name}' cannot decrease")
        key = self._key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + amount

    def value(self, *, labels: Mapping[str, str] | None = None) -> float:
        key = self._key(labels)
        with self._lock:
            return self._values.get(key, 0.0)

    def samples(self) -> Iterator[Sample]:
        with self._lock:
            values = sorted(self._values.items())
        for key, value in values:
            yield self.name, self._labels(key), value


@dataclass
class _Buckets:
    counts: List[int]
    total: float = 0.0
    count: int = 0


class Histogram(Series):
    """Cumulative bucket histogram rendered the Prometheus way."""

    kind = MetricKind.HISTOGRAM

    def __init__(self, definition: MetricDefinition) -> None:
        super().__init__(definition)
        if not definition.buckets or list(definition.buckets) != sorted(set(definition.buckets)):
            raise ValueError(f"Histogram '{definition.name}' needs strictly increasing buckets")
        self._bounds = definition.buckets
        self._values: Dict[LabelKey, _Buckets] = {}

    def observe(self, value: float, *, labels: Mapping[str, str] | None = None) -> None:
        key = self._key(labels)
        with self._lock:
            state = self._values.setdefault(key, _Buckets(counts=[0] * len(self._bounds)))
            index = bisect_left(self._bounds, value)
            if index < len(self._bounds):
                state.counts[index] += 1
            state.total += value
            state.count += 1

    def count(self, *, labels: Mapping[str, str] | None = None) -> int:
        key = self._key(labels)
        with self._lock:
            state = self._values.get(key)
            return 0 if state is None else state.count

    @contextmanager
    def time(self, *, labels: Mapping[str, str] | None = None) -> Iterator[None]:
        """Observe the wall time of the enclosed block, even when it raises."""

        start = perf_counter()
        try:
            yield
        finally:
            self.observe(perf_counter() - start, labels=labels)

    def samples(self) -> Iterator[Sample]:
        with self._lock:
            states = sorted(
                (key, list(state.counts), state.total, state.count) for key, state in self._values.items()
            )
        for key, counts, total, count in states:
            labels = self._labels(key)
            cumulative = 0
            for bound, bucket in zip(self._bounds, counts):
                cumulative += bucket
                yield f"{self.name}_bucket", {**labels, "le": repr(float(bound))}, float(cumulative)
            yield f"{self.name}_bucket", {**labels, "le": "+Inf"}, float(count)
            yield f"{self.name}_sum", labels, total
            yield f"{self.name}_count", labels, float(count)
