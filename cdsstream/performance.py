"""Thread-safe collection of timing metrics."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace

logger = logging.getLogger(__name__)

_INT64_MAX = 2**63 - 1


@dataclass
class Metrics:
    """Aggregated timings for one named measurement, in microseconds."""

    count: int = 0
    total_time: int = 0
    min_time: int = _INT64_MAX
    max_time: int = 0
    avg_time: float = 0.0


class PerformanceMonitor:
    """Records named durations and keeps running aggregates."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._metrics: dict[str, Metrics] = {}

    def record_metric(self, name: str, microseconds: int) -> None:
        """Add one measurement of ``microseconds`` to the metric ``name``."""
        with self._lock:
            metric = self._metrics.setdefault(name, Metrics())
            metric.count += 1
            metric.total_time += microseconds
            metric.min_time = min(metric.min_time, microseconds)
            metric.max_time = max(metric.max_time, microseconds)
            metric.avg_time = metric.total_time / metric.count

    def get_metrics(self, name: str) -> Metrics:
        """Return a snapshot of ``name``, or empty metrics if it was never recorded."""
        with self._lock:
            metric = self._metrics.get(name)
            return replace(metric) if metric is not None else Metrics()

    def get_all_metrics(self) -> dict[str, Metrics]:
        """Return a snapshot of every recorded metric."""
        with self._lock:
            return {name: replace(metric) for name, metric in self._metrics.items()}

    def reset(self) -> None:
        """Forget every recorded metric."""
        with self._lock:
            self._metrics.clear()
        logger.info("Performance metrics reset")