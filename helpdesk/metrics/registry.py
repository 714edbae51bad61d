"""Registry holding the live series for a set of metric definitions."""
from __future__ import annotations

from threading import Lock
from typing import Dict, Iterable, Tuple

from .definitions import MetricDefinition, MetricKind
from .primitives import Counter, Histogram, Series

_SERIES_TYPES = {
    MetricKind.COUNTER: Counter,
    MetricKind.HISTOGRAM: Histogram,
}


class MetricsRegistry:
    def __init__(self, definitions: Iterable[MetricDefinition] = ()) -> None:
        self._series: Dict[str, Series] = {}
        self._lock = Lock()
        for definition in definitions:
            self.register(definition)

    def register(self, definition: MetricDefinition) -> Series:
        """Create the series for ``definition``; re-registering the same definition is a no-op."""

        with self._lock:
            existing = self._series.get(definition.name)
            if existing is not None:
                if existing.definition != definition:
                    raise ValueError(f"Metric '{definition.name}' is already registered differently")
                return existing
            series = _SERIES_TYPES[definition.kind](definition)
            self._series[definition.name] = series
            return series

    def counter(self, name: str) -> Counter:
        series = self._lookup(name)
        if not isinstance(series, Counter):
            raise TypeError(f"Metric '{name}' is a {series.kind.value}, not a counter")
        return series

    def histogram(self, name: str) -> Histogram:
        series = self._lookup(name)
        if not isinstance(series, Histogram):
            raise TypeError(f"Metric '{name}' is a {series.kind.value}, not a histogram")
        return series

    def series(self) -> Tuple[Series, ...]:
        with self._lock:
            return tuple(self._series[name] for name in sorted(self._series))

    def _lookup(self, name: str) -> Series:
        with self._lock:
            try:
                return self._series[name]
            except KeyError:
                raise KeyError(f"Metric '{name}' is not registered") from None
