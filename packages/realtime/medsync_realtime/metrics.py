"""
Metrics collection and Prometheus-compatible exposition.

Counts realtime traffic (received, dispatched, dropped events, callback
failures, scheduled reconnects) and tracks the connection status gauge.
Traffic counters carry a ``topic`` label so a single noisy topic is visible
in the export.
"""

from __future__ import annotations

import time
from collections import defaultdict
from typing import Any

PREFIX = "realtime_"

Labels = tuple[tuple[str, str], ...]
SeriesKey = tuple[str, Labels]


def _key(name: str, labels: dict[str, Any]) -> SeriesKey:
    return f"{PREFIX}{name}", tuple(sorted((k, str(v)) for k, v in labels.items()))


def _series(key: SeriesKey) -> str:
    name, labels = key
    if not labels:
        return name
    rendered = ",".join(f'{k}="{v}"' for k, v in labels)
    return f"{name}{{{rendered}}}"


class MetricsCollector:
    """
    Labelled counters and gauges for the realtime core.

    ``get`` without labels sums every series of a metric, so callers that only
    care about totals never need to know which labels were used.
    """

    def __init__(self) -> None:
        self._counters: dict[SeriesKey, int] = defaultdict(int)
        self._gauges: dict[SeriesKey, float] = {}
        self._start_time = time.time()

    def inc(self, name: str, value: int = 1, **labels: Any) -> None:
        self._counters[_key(name, labels)] += value

    def set_gauge(self, name: str, value: float, **labels: Any) -> None:
        self._gauges[_key(name, labels)] = value

    def get(self, name: str, **labels: Any) -> int | float:
        key = _key(name, labels)
        if key in self._gauges:
            return self._gauges[key]
        if labels:
            return self._counters.get(key, 0)
        return sum(v for (series, _), v in self._counters.items() if series == key[0])

    def to_prometheus(self) -> str:
        """Export all metrics in Prometheus text format, one TYPE line per metric."""
        lines = []
        for kind, values in (("counter", self._counters), ("gauge", self._gauges)):
            declared: set[str] = set()
            for key in sorted(values):
                if key[0] not in declared:
                    declared.add(key[0])
                    lines.append(f"# TYPE {key[0]} {kind}")
                lines.append(f"{_series(key)} {values[key]}")
        uptime = time.time() - self._start_time
        lines.append(f"# TYPE {PREFIX}uptime_seconds gauge")
        lines.append(f"{PREFIX}uptime_seconds {uptime:.1f}")
        return "\n".join(lines) + "\n"

    def to_dict(self) -> dict[str, Any]:
        return {
            "counters": {_series(k): v for k, v in self._counters.items()},
            "gauges": {_series(k): v for k, v in self._gauges.items()},
            "uptime_seconds": time.time() - self._start_time,
        }
