"""Tests for request performance tracking."""

import logging

from appgen.metrics import PerformanceTracker, RequestMetrics


class TestPerformanceTracker:
    def test_checkpoints_are_relative_to_start(self, clock):
        tracker = PerformanceTracker(clock=clock)

        clock.advance(0.25)
        tracker.checkpoint("ai_request_sent")
        clock.advance(1.5)
        tracker.checkpoint("ai_response_received")

        assert tracker.checkpoints == {"ai_request_sent": 250, "ai_response_received": 1750}
        assert tracker.elapsed_ms() == 1750

    def test_log_lists_checkpoints(self, clock, caplog):
        tracker = PerformanceTracker(clock=clock)
        clock.advance(0.1)
        tracker.checkpoint("validation_complete")

        with caplog.at_level(logging.DEBUG, logger="appgen.metrics"):
            tracker.log("Perf")

        assert "[Perf] Total: 100ms" in caplog.text
        assert "validation_complete: 100ms" in caplog.text


class TestRequestMetrics:
    def test_log_summary(self, caplog):
        metrics = RequestMetrics(request_id="req-1", success=True, attempts=2, files_generated=3)

        with caplog.at_level(logging.INFO, logger="appgen.metrics"):
            metrics.log()

        assert "[Metrics] request=req-1 success=True attempts=2 files=3" in caplog.text
