"""
In-memory execution metrics.

Counters and histograms kept per process:
- run_started_total / run_completed_total{status}
- run_duration_seconds{status}
- node_execution_total{type,status}
- loop_iterations_total{mode}
"""
from collections import defaultdict
from typing import Any
import logging

logger = logging.getLogger("flowengine.metrics")


class MetricsCollector:
    """Simple in-memory metrics collector."""

    def __init__(self):
        self.counters: dict[str, int] = defaultdict(int)
        self.histograms: dict[str, list[float]] = defaultdict(list)

    def increment_counter(self, name: str, value: int = 1, labels: dict[str, str] | None = None):
        self.counters[self._build_key(name, labels)] += value

    def observe_histogram(self, name: str, value: float, labels: dict[str, str] | None = None):
        self.histograms[self._build_key(name, labels)].append(value)

    def get_counter(self, name: str, labels: dict[str, str] | None = None) -> int:
        return self.counters.get(self._build_key(name, labels), 0)

    def get_histogram_stats(self, name: str, labels: dict[str, str] | None = None) -> dict[str, Any]:
        """Return count/sum/min/max/avg for one histogram key."""
        values = self.histograms.get(self._build_key(name, labels), [])
        if not values:
            return {"count": 0, "sum": 0, "min": 0, "max": 0, "avg": 0}
        total = sum(values)
        return {
            "count": len(values),
            "sum": total,
            "min": min(values),
            "max": max(values),
            "avg": total / len(values),
        }

    def get_all_metrics(self) -> dict[str, Any]:
        return {
            "counters": dict(self.counters),
            "histograms": {k: self.get_histogram_stats(k) for k in self.histograms},
        }

    def reset(self):
        self.counters.clear()
        self.histograms.clear()

    @staticmethod
    def _build_key(name: str, labels: dict[str, str] | None) -> str:
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"


# Global metrics collector instance
metrics = MetricsCollector()


def record_run_started():
    metrics.increment_counter("run_started_total")


def record_run_completed(duration_seconds: float, status: str):
    """
    Record a run reaching a terminal status.

    Args:
        duration_seconds: Wall time from start to terminal status
        status: completed, error or stopped
    """
    metrics.increment_counter("run_completed_total", labels={"status": status})
    metrics.observe_histogram("run_duration_seconds", duration_seconds, labels={"status": status})


def record_node_execution(node_type: str, status: str):
    """Record one node outcome (completed, error, bypassed, skipped)."""
    metrics.increment_counter("node_execution_total", labels={"type": node_type, "status": status})


def record_loop_iteration(mode: str):
    metrics.increment_counter("loop_iterations_total", labels={"mode": mode})


def get_metrics_summary() -> dict:
    """Get a summary of all metrics."""
    return metrics.get_all_metrics()
