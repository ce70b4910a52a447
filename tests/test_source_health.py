"""
Tests for source health tracking and availability transitions.

Verifies available -> unavailable after three consecutive failures, reset on
success, cool-down re-probing and JSON persistence.
"""

import json
import threading
from datetime import datetime, timedelta, timezone

from hybrid_health.sources.health import (
    CONSECUTIVE_FAILURES_UNAVAILABLE,
    DEFAULT_REPROBE_AFTER,
    HealthTracker,
    SourceStatus,
    load_health_tracker,
    save_health_tracker,
)


T0 = datetime(2026, 1, 10, 12, 0, tzinfo=timezone.utc)


class TestHealthThresholds:
    """Tests for health threshold configuration."""

    def test_unavailable_threshold_is_3(self):
        """Sources become unavailable after 3 consecutive failures."""
        assert CONSECUTIVE_FAILURES_UNAVAILABLE == 3

    def test_default_reprobe_is_10_minutes(self):
        assert DEFAULT_REPROBE_AFTER == timedelta(minutes=10)


class TestSourceStatusTransitions:
    """Tests for availability transitions on a single source."""

    def test_initial_status_is_available(self):
        """New source should start available."""
        status = SourceStatus(source_id="test")
        assert status.available is True
        assert status.consecutive_failures == 0

    def test_two_failures_stay_available(self):
        status = SourceStatus(source_id="test")
        status.record_failure("timeout", T0)
        status.record_failure("timeout", T0)
        assert status.available is True
        assert status.consecutive_failures == 2

    def test_three_failures_mark_unavailable(self):
        """Third consecutive failure should flip availability."""
        status = SourceStatus(source_id="test")
        for _ in range(3):
            status.record_failure("timeout", T0)
        assert status.available is False
        assert status.last_error == "timeout"
        assert status.total_failures == 3

    def test_success_resets(self):
        """Any success should restore availability and clear the counter."""
        status = SourceStatus(source_id="test")
        for _ in range(5):
            status.record_failure("HTTP 503", T0)
        status.record_success(integrity_verified=True, timestamp=T0)

        assert status.available is True
        assert status.consecutive_failures == 0
        assert status.last_error is None
        assert status.integrity_verified is True
        assert status.last_success_at == T0.isoformat()

    def test_success_breaks_failure_streak(self):
        """Failures separated by a success never accumulate to three."""
        status = SourceStatus(source_id="test")
        status.record_failure("x", T0)
        status.record_failure("x", T0)
        status.record_success(timestamp=T0)
        status.record_failure("x", T0)
        status.record_failure("x", T0)
        assert status.available is True

    def test_last_checked_tracks_latest_event(self):
        status = SourceStatus(source_id="test")
        status.record_success(timestamp=T0)
        later = T0 + timedelta(minutes=1)
        status.record_failure("x", later)
        assert status.last_checked_at == later.isoformat()
        assert status.last_success_at == T0.isoformat()


class TestHealthTracker:
    """Tests for HealthTracker."""

    def test_unknown_source_is_available(self):
        tracker = HealthTracker()
        assert tracker.is_available("never_seen") is True

    def test_is_available_follows_rule(self):
        tracker = HealthTracker()
        for _ in range(3):
            tracker.record_failure("src_a", "boom", T0)
        assert tracker.is_available("src_a") is False
        tracker.record_success("src_a", timestamp=T0)
        assert tracker.is_available("src_a") is True

    def test_status_returns_copy(self):
        """Mutating the returned status must not touch the tracker."""
        tracker = HealthTracker()
        tracker.record_failure("src_a", "boom", T0)
        snapshot = tracker.status("src_a")
        snapshot.consecutive_failures = 99
        assert tracker.status("src_a").consecutive_failures == 1

    def test_unavailable_ids_excludes_cooled_down(self):
        """Unavailable sources are skipped until the cool-down elapses."""
        tracker = HealthTracker(reprobe_after=timedelta(minutes=10))
        for _ in range(3):
            tracker.record_failure("src_a", "boom", T0)

        assert tracker.unavailable_ids(T0 + timedelta(minutes=5)) == {"src_a"}
        assert tracker.unavailable_ids(T0 + timedelta(minutes=11)) == set()
        # Still unavailable by the pure rule until a success arrives
        assert tracker.is_available("src_a") is False

    def test_summary_counts(self):
        tracker = HealthTracker()
        tracker.record_success("ok_src", timestamp=T0)
        for _ in range(3):
            tracker.record_failure("bad_src", "boom", T0)

        summary = tracker.get_summary()
        assert summary["total_sources"] == 2
        assert summary["available"] == 1
        assert summary["unavailable_sources"] == ["bad_src"]
        assert summary["overall_status"] == "DEGRADED"

    def test_summary_ok_when_all_available(self):
        tracker = HealthTracker()
        tracker.record_success("a", timestamp=T0)
        assert tracker.get_summary()["overall_status"] == "OK"

    def test_concurrent_failures_are_all_counted(self):
        tracker = HealthTracker()

        def fail():
            for _ in range(50):
                tracker.record_failure("src_a", "boom")

        threads = [threading.Thread(target=fail) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert tracker.status("src_a").total_failures == 200


class TestHealthTrackerSerialization:
    """Tests for to_dict/from_dict and disk persistence."""

    def test_to_dict_and_from_dict(self):
        tracker = HealthTracker(reprobe_after=timedelta(minutes=3))
        tracker.record_success("a", integrity_verified=True, timestamp=T0)
        for _ in range(3):
            tracker.record_failure("b", "HTTP 500", T0)

        restored = HealthTracker.from_dict(tracker.to_dict())

        assert restored.reprobe_after == timedelta(minutes=3)
        assert restored.is_available("a") is True
        assert restored.status("a").integrity_verified is True
        assert restored.is_available("b") is False
        assert restored.status("b").last_error == "HTTP 500"

    def test_save_and_load(self, tmp_path):
        path = tmp_path / "_meta" / "sources_health.json"
        tracker = HealthTracker()
        tracker.record_failure("a", "boom", T0)
        save_health_tracker(tracker, str(path))

        data = json.loads(path.read_text())
        assert data["last_updated_at"] is not None
        assert data["sources"]["a"]["consecutive_failures"] == 1

        loaded = load_health_tracker(str(path))
        assert loaded.status("a").consecutive_failures == 1

    def test_load_missing_file_gives_empty_tracker(self, tmp_path):
        tracker = load_health_tracker(str(tmp_path / "missing.json"))
        assert tracker.sources == {}

    def test_load_corrupt_file_gives_empty_tracker(self, tmp_path):
        path = tmp_path / "health.json"
        path.write_text("{not json")
        tracker = load_health_tracker(str(path))
        assert tracker.sources == {}

    def test_load_overrides_reprobe(self, tmp_path):
        path = tmp_path / "health.json"
        save_health_tracker(HealthTracker(), str(path))
        tracker = load_health_tracker(str(path), reprobe_after=timedelta(minutes=1))
        assert tracker.reprobe_after == timedelta(minutes=1)
