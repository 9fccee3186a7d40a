"""
Tests for RequestPacer and ActivityLog.
"""

import asyncio

import pytest

from src.ems.activity_log import ActivityLog
from src.ems.rate_limit import RequestPacer

from .conftest import SleepRecorder


class TestRequestPacer:
    """Tests for latency-aware pacing."""

    def test_subtracts_elapsed_time(self):
        pacer = RequestPacer(interval=5.0, minimum_interval=1.0)
        assert pacer.delay_after(100.0, now=101.5) == pytest.approx(3.5)

    def test_floor_applies_to_slow_requests(self):
        pacer = RequestPacer(interval=60.0, minimum_interval=1.0)
        assert pacer.delay_after(0.0, now=65.0) == 1.0

    def test_full_interval_for_instant_request(self):
        pacer = RequestPacer(interval=2.0, minimum_interval=1.0)
        assert pacer.delay_after(10.0, now=10.0) == 2.0

    def test_rejects_negative_intervals(self):
        with pytest.raises(ValueError):
            RequestPacer(interval=-1.0, minimum_interval=0.0)

    def test_wait_sleeps_computed_delay(self):
        sleeps = SleepRecorder()
        pacer = RequestPacer(
            interval=5.0, minimum_interval=1.0, clock=lambda: 12.0, sleep=sleeps
        )

        delay = asyncio.run(pacer.wait(10.0))

        assert delay == 3.0
        assert sleeps.calls == [3.0]
        state = pacer.get_state()
        assert state.total_waits == 1
        assert state.total_wait_seconds == 3.0


class TestActivityLog:
    """Tests for the in-memory activity feed."""

    def test_newest_first(self):
        activity = ActivityLog()
        activity.log("first")
        activity.log("second", "success")

        entries = activity.recent()
        assert [e.message for e in entries] == ["second", "first"]
        assert entries[0].severity == "success"

    def test_bounded(self):
        activity = ActivityLog(max_entries=3)
        for i in range(5):
            activity.log(f"entry {i}")

        assert len(activity) == 3
        assert [e.message for e in activity.recent()] == ["entry 4", "entry 3", "entry 2"]

    def test_recent_limit_and_clear(self):
        activity = ActivityLog()
        for i in range(5):
            activity.log(f"entry {i}")

        assert len(activity.recent(2)) == 2
        activity.clear()
        assert len(activity) == 0

    def test_entries_have_unique_ids(self):
        activity = ActivityLog()
        a = activity.log("a")
        b = activity.log("b")
        assert a.id != b.id

    def test_errors_are_logged(self, caplog):
        activity = ActivityLog()
        with caplog.at_level("ERROR", logger="src.ems.activity_log"):
            activity.log("2025-03-01 failed: boom", "error")

        assert "2025-03-01 failed: boom" in caplog.text
