"""Tests for the in-memory metrics collector and run-level recorders."""

from __future__ import annotations

import pytest

from flowengine.runtime.state import RunStatus
from flowengine.utils.metrics import (
    MetricsCollector,
    get_metrics_summary,
    metrics,
    record_loop_iteration,
    record_node_execution,
    record_run_completed,
    record_run_started,
)


class TestMetricsCollector:
    def test_counter_with_labels(self):
        mc = MetricsCollector()
        mc.increment_counter("runs", labels={"status": "completed"})
        mc.increment_counter("runs", labels={"status": "error"})
        mc.increment_counter("runs", labels={"status": "completed"}, value=2)
        assert mc.get_counter("runs", labels={"status": "completed"}) == 3
        assert mc.get_counter("runs", labels={"status": "error"}) == 1
        assert mc.get_counter("runs") == 0

    def test_histogram_stats(self):
        mc = MetricsCollector()
        for value in (0.5, 1.5, 4.0):
            mc.observe_histogram("duration", value)
        stats = mc.get_histogram_stats("duration")
        assert stats["count"] == 3
        assert stats["sum"] == 6.0
        assert stats["min"] == 0.5
        assert stats["max"] == 4.0
        assert stats["avg"] == pytest.approx(2.0)

    def test_empty_histogram(self):
        assert MetricsCollector().get_histogram_stats("missing")["count"] == 0

    def test_label_order_does_not_matter(self):
        assert MetricsCollector._build_key("n", {"b": "2", "a": "1"}) == "n{a=1,b=2}"

    def test_reset(self):
        mc = MetricsCollector()
        mc.increment_counter("x")
        mc.observe_histogram("y", 1.0)
        mc.reset()
        assert mc.get_all_metrics() == {"counters": {}, "histograms": {}}


class TestRecorders:
    def setup_method(self):
        metrics.reset()

    def test_run_lifecycle(self):
        record_run_started()
        record_run_completed(0.25, "completed")
        assert metrics.get_counter("run_started_total") == 1
        assert metrics.get_counter("run_completed_total", labels={"status": "completed"}) == 1
        assert metrics.get_histogram_stats("run_duration_seconds", labels={"status": "completed"})["sum"] == 0.25

    def test_node_and_loop_counters(self):
        record_node_execution("log", "completed")
        record_node_execution("log", "error")
        record_loop_iteration("forEach")
        assert metrics.get_counter("node_execution_total", labels={"type": "log", "status": "error"}) == 1
        assert metrics.get_counter("loop_iterations_total", labels={"mode": "forEach"}) == 1

    def test_summary_shape(self):
        record_run_started()
        summary = get_metrics_summary()
        assert "run_started_total" in summary["counters"]
        assert summary["histograms"] == {}

    @pytest.mark.asyncio
    async def test_interpreter_records_run(self, make_interpreter, linear_doc):
        linear_doc["nodes"][2]["data"]["bypass"] = True
        assert await make_interpreter(linear_doc).execute() == RunStatus.COMPLETED

        assert metrics.get_counter("run_started_total") == 1
        assert metrics.get_counter("run_completed_total", labels={"status": "completed"}) == 1
        assert metrics.get_counter("node_execution_total", labels={"type": "action", "status": "completed"}) == 2
        assert metrics.get_counter("node_execution_total", labels={"type": "action", "status": "bypassed"}) == 1
