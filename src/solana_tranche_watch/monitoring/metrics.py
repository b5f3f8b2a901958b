"""Thread-safe in-process metrics registry."""

from __future__ import annotations

import math
import re
import threading
import time
from collections import defaultdict, deque
from contextlib import contextmanager
from pathlib import Path
from statistics import mean
from typing import Deque, Dict, Iterable, Iterator, MutableMapping

from ..utils.fs import atomic_write_text

METRIC_NAMESPACE = "tranche_watch"
_METRIC_SANITIZE_RE = re.compile(r"[^a-zA-Z0-9_:]")


def _prometheus_name(name: str, namespace: str) -> str:
    """``orchestrator.run.duration_seconds`` -> ``tranche_watch_orchestrator_run_duration_seconds``."""
    sanitized = _METRIC_SANITIZE_RE.sub("_", name)
    if namespace:
        return f"{namespace}_{sanitized}"
    return sanitized if sanitized[:1].isalpha() else f"_{sanitized}"


class MetricsRegistry:
    """Counters, gauges and bounded histograms kept in memory."""

    def __init__(self, *, max_hist_samples: int = 1024) -> None:
        self._lock = threading.RLock()
        self._counters: MutableMapping[str, float] = defaultdict(float)
        self._gauges: MutableMapping[str, float] = {}
        self._histograms: MutableMapping[str, Deque[float]] = defaultdict(
            lambda: deque(maxlen=max_hist_samples)
        )

    def increment(self, name: str, amount: float = 1.0) -> None:
        with self._lock:
            self._counters[name] += amount

    def get(self, name: str) -> float:
        with self._lock:
            return self._counters.get(name, 0.0)

    def gauge(self, name: str, value: float) -> None:
        with self._lock:
            self._gauges[name] = float(value)

    def get_gauge(self, name: str) -> float:
        with self._lock:
            return self._gauges.get(name, 0.0)

    def observe(self, name: str, value: float) -> None:
        with self._lock:
            self._histograms[name].append(float(value))

    def snapshot(self) -> Dict[str, object]:
        with self._lock:
            counters = dict(self._counters)
            gauges = dict(self._gauges)
            histograms = {key: self._histogram_stats(values) for key, values in self._histograms.items()}
        return {
            "counters": counters,
            "gauges": gauges,
            "histograms": histograms,
        }

    def export_prometheus(self, *, namespace: str = METRIC_NAMESPACE) -> str:
        """Render the registry in the Prometheus text exposition format."""
        snap = self.snapshot()
        lines = []
        for kind, key in (("counter", "counters"), ("gauge", "gauges")):
            for name, value in sorted(snap[key].items()):
                metric = _prometheus_name(name, namespace)
                lines.append(f"# TYPE {metric} {kind}")
                lines.append(f"{metric} {value}")
        for name, stats in sorted(snap["histograms"].items()):
            if not stats:
                continue
            metric = _prometheus_name(name, namespace)
            lines.append(f"# TYPE {metric} summary")
            for label, quantile in (("p50", "0.5"), ("p90", "0.9"), ("p99", "0.99")):
                lines.append(f'{metric}{{quantile="{quantile}"}} {stats[label]}')
            lines.append(f"{metric}_sum {stats['sum']}")
            lines.append(f"{metric}_count {stats['count']}")
        return "\n".join(lines) + "\n"

    def write_textfile(self, path: Path, *, namespace: str = METRIC_NAMESPACE) -> None:
        """Replace ``path`` with the current export, for node_exporter's textfile collector."""
        atomic_write_text(Path(path), self.export_prometheus(namespace=namespace))

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()

    def _histogram_stats(self, values: Iterable[float]) -> Dict[str, float]:
        data = sorted(values)
        if not data:
            return {}
        return {
            "count": float(len(data)),
            "sum": float(sum(data)),
            "avg": mean(data),
            "p50": self._percentile(data, 0.5),
            "p90": self._percentile(data, 0.9),
            "p99": self._percentile(data, 0.99),
        }

    def _percentile(self, data: list[float], percentile: float) -> float:
        if not data:
            return 0.0
        index = max(int(math.ceil(percentile * len(data))) - 1, 0)
        return float(data[min(index, len(data) - 1)])


METRICS = MetricsRegistry()


@contextmanager
def performance_monitor(operation_name: str) -> Iterator[None]:
    """Time a block and record it as ``<operation>.duration_seconds``."""
    start_time = time.monotonic()
    try:
        yield
    finally:
        METRICS.observe(f"{operation_name}.duration_seconds", time.monotonic() - start_time)
        METRICS.increment(f"{operation_name}.calls_total")


__all__ = ["METRICS", "MetricsRegistry", "performance_monitor"]
