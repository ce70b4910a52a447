"""Tests for the offline snapshot cache."""

import json
from datetime import datetime, timedelta, timezone

import pytest

from hybrid_health.cache.offline import OfflineCache
from hybrid_health.errors import CacheError


@pytest.fixture(params=["memory", "disk"])
def cache(request, tmp_path):
    if request.param == "memory":
        return OfflineCache()
    return OfflineCache(str(tmp_path / "offline_cache"))


class TestOfflineCache:
    """Put/get semantics shared by the in-memory and file-backed stores."""

    def test_missing_category(self, cache):
        assert cache.get("lgbtq-health") is None

    def test_put_then_get(self, cache):
        cache.put("lgbtq-health", [{"value": 1}], {"source_id": "A", "confidence_score": 0.9})
        snapshot = cache.get("lgbtq-health")
        assert snapshot.payload == [{"value": 1}]
        assert snapshot.metadata["source_id"] == "A"

    def test_last_write_wins(self, cache):
        cache.put("lgbtq-health", [{"value": 1}])
        cache.put("lgbtq-health", [{"value": 2}])
        assert cache.get("lgbtq-health").payload == [{"value": 2}]

    def test_expired_hidden_unless_ignore_age(self, cache):
        old = datetime.now(timezone.utc) - timedelta(days=45)
        cache.put("lgbtq-health", [{"value": 1}], stored_at=old)
        assert cache.get("lgbtq-health") is None
        assert cache.get("lgbtq-health", ignore_age=True).payload == [{"value": 1}]

    def test_snapshot_isolated_from_callers(self, cache):
        payload = [{"value": 1}]
        cache.put("lgbtq-health", payload)
        payload.clear()

        snapshot = cache.get("lgbtq-health")
        snapshot.payload[0]["value"] = 99
        assert cache.get("lgbtq-health").payload == [{"value": 1}]

    def test_clear(self, cache):
        cache.put("a", 1)
        cache.put("b", 2)
        cache.clear("a")
        assert cache.get("a") is None
        assert cache.get("b").payload == 2
        cache.clear()
        assert cache.get("b") is None


class TestFileBackedCache:
    """Details of the on-disk format."""

    def test_file_per_category(self, tmp_path):
        cache = OfflineCache(str(tmp_path))
        cache.put("lgbtq/health", {"v": 1})
        path = tmp_path / "lgbtq_health.json"
        assert path.exists()
        data = json.loads(path.read_text())
        assert data["category"] == "lgbtq/health"
        assert not list(tmp_path.glob("*.tmp"))

    def test_survives_new_instance(self, tmp_path):
        OfflineCache(str(tmp_path)).put("mental-health", [{"v": 3}])
        assert OfflineCache(str(tmp_path)).get("mental-health").payload == [{"v": 3}]

    def test_corrupt_file_reads_as_missing(self, tmp_path):
        (tmp_path / "mental-health.json").write_text("{broken")
        assert OfflineCache(str(tmp_path)).get("mental-health") is None

    def test_unserializable_payload(self, tmp_path):
        with pytest.raises(CacheError):
            OfflineCache(str(tmp_path)).put("x", {"bad": object()})
