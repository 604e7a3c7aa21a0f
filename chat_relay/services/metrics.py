"""Request metrics sink owned by the application lifecycle."""

from dataclasses import dataclass
from typing import Dict, Protocol


class MetricsSink(Protocol):
    """Counter and observation interface injected into handlers."""

    def increment(self, name: str, value: int = 1) -> None: ...

    def observe(self, name: str, value: float) -> None: ...


@dataclass
class SeriesSummary:
    """Running count, total and maximum of one observation series."""

    count: int = 0
    total: float = 0.0
    maximum: float = 0.0

    def add(self, value: float) -> None:
        self.maximum = value if self.count == 0 else max(self.maximum, value)
        self.count += 1
        self.total += value

    @property
    def avg(self) -> float:
        return self.total / self.count if self.count else 0.0


class InMemoryMetrics:
    """Counters and latency summaries held by one process.

    Observations are folded into a fixed-size summary, so memory does not
    grow with the number of requests served.
    """

    def __init__(self) -> None:
        self._counters: Dict[str, int] = {}
        self._series: Dict[str, SeriesSummary] = {}

    def increment(self, name: str, value: int = 1) -> None:
        self._counters[name] = self._counters.get(name, 0) + value

    def observe(self, name: str, value: float) -> None:
        self._series.setdefault(name, SeriesSummary()).add(value)

    def count(self, name: str) -> int:
        return self._counters.get(name, 0)

    def series(self, name: str) -> SeriesSummary:
        return self._series.get(name, SeriesSummary())

    def snapshot(self) -> dict:
        """Export counters plus count/avg/max for each observation series."""
        summary: dict = dict(self._counters)
        for name, series in self._series.items():
            summary[f"{name}_count"] = series.count
            summary[f"{name}_avg"] = round(series.avg, 2)
            summary[f"{name}_max"] = round(series.maximum, 2)
        return summary

    def reset(self) -> None:
        self._counters.clear()
        self._series.clear()
