"""Unit tests for the LRU response cache."""

import json

import pytest

from api_healer.core.exceptions import ConfigurationError, FileIOError
from api_healer.core.models import HealingConfiguration
from api_healer.services.response_cache import ResponseCache


class TestLRUBehavior:
    """Test eviction and recency."""

    def test_single_slot_evicts_previous_entry(self, fake_clock):
        """With max_size=1 the second insert evicts the first."""
        cache = ResponseCache(max_size=1, clock=fake_clock)

        cache.set("a", 1)
        cache.set("b", 2)

        assert cache.get("a") is None
        assert cache.get("b") == 2
        assert cache.evictions == 1

    def test_get_refreshes_recency(self, fake_clock):
        """Reading an entry protects it from the next eviction."""
        cache = ResponseCache(max_size=2, clock=fake_clock)
        cache.set("a", 1)
        cache.set("b", 2)

        cache.get("a")
        cache.set("c", 3)

        assert cache.has("a") is True
        assert cache.has("b") is False
        assert [item.key for item in cache.get_all()] == ["c", "a"]

    def test_size_never_exceeds_max(self, fake_clock):
        cache = ResponseCache(max_size=3, clock=fake_clock)
        for index in range(10):
            cache.set(f"key-{index}", index)

        assert cache.size == 3
        assert cache.evictions == 7

    def test_overwrite_keeps_single_entry(self, fake_clock):
        cache = ResponseCache(max_size=2, clock=fake_clock)
        cache.set("a", 1)
        cache.set("a", 2)

        assert cache.size == 1
        assert cache.get("a") == 2

    def test_has_does_not_touch_order(self, fake_clock):
        """has() is a pure lookup."""
        cache = ResponseCache(max_size=2, clock=fake_clock)
        cache.set("a", 1)
        cache.set("b", 2)

        assert cache.has("a") is True
        cache.set("c", 3)

        assert cache.has("a") is False
        assert cache.hits == 0

    def test_item_metadata_and_delete(self, fake_clock):
        """get_item returns a copy of the entry metadata."""
        cache = ResponseCache(default_ttl=60.0, clock=fake_clock)
        cache.set("a", "value")
        fake_clock.advance(5.0)
        cache.get("a")

        item = cache.get_item("a")
        item.access_count = 99

        assert item.created_at == 1000.0
        assert item.expires_at == 1060.0
        assert cache.get_item("a").access_count == 1
        assert cache.get_item("a").last_accessed_at == 1005.0
        assert cache.get_item("missing") is None

        assert cache.delete("a") is True
        assert cache.delete("a") is False
        assert cache.size == 0


class TestExpiry:
    """Test TTL handling with a manual clock."""

    def test_entry_expires_after_ttl(self, fake_clock):
        cache = ResponseCache(default_ttl=10.0, clock=fake_clock)
        cache.set("a", 1)

        fake_clock.advance(10.0)
        assert cache.get("a") == 1

        fake_clock.advance(0.5)
        assert cache.get("a") is None
        assert cache.expired_count == 1
        assert cache.size == 0

    def test_per_entry_ttl(self, fake_clock):
        cache = ResponseCache(default_ttl=100.0, clock=fake_clock)
        cache.set("short", 1, ttl=1.0)
        cache.set("long", 2)

        fake_clock.advance(5.0)

        assert cache.cleanup() == 1
        assert cache.has("long") is True

    def test_stats(self, fake_clock):
        """Hit rate counts hits over all lookups."""
        cache = ResponseCache(clock=fake_clock)
        cache.set("a", {"text": "ok"})
        cache.get("a")
        cache.get("a")
        cache.get("missing")

        stats = cache.get_cache_stats()

        assert stats["entries"] == 1
        assert stats["hits"] == 2
        assert stats["misses"] == 1
        assert stats["hit_rate"] == pytest.approx(2 / 3)
        assert stats["total_size"] == len(json.dumps({"text": "ok"}))
        assert stats["effectiveness"] == pytest.approx((2 / 3 * 0.7 + 0.3) * 100)

    def test_clear_resets_counters(self, fake_clock):
        cache = ResponseCache(clock=fake_clock)
        cache.set("a", 1)
        cache.get("a")

        cache.clear()

        assert cache.size == 0
        assert cache.hits == 0


class TestSnapshots:
    """Test export and import of cache snapshots."""

    def test_round_trip_skips_expired_entries(self, fake_clock, tmp_path):
        """Entries already expired at import time are not restored."""
        cache = ResponseCache(default_ttl=60.0, clock=fake_clock)
        cache.set("stale", "old", ttl=5.0)
        cache.set("fresh", "new")
        snapshot_path = tmp_path / "cache" / "snapshot.json"

        snapshot = cache.export_cache(str(snapshot_path))

        assert snapshot_path.exists()
        assert snapshot["version"] == "1.0"
        assert [item["key"] for item in snapshot["items"]] == ["stale", "fresh"]

        fake_clock.advance(30.0)
        restored = ResponseCache(default_ttl=60.0, clock=fake_clock)

        assert restored.import_cache(str(snapshot_path)) == 1
        assert restored.get("fresh") == "new"
        assert restored.has("stale") is False

    def test_import_preserves_recency_order(self, fake_clock):
        cache = ResponseCache(clock=fake_clock)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")

        restored = ResponseCache(clock=fake_clock)
        restored.import_cache(cache.export_cache())

        assert [item.key for item in restored.get_all()] == ["a", "b"]

    def test_import_unreadable_file(self, tmp_path):
        broken = tmp_path / "broken.json"
        broken.write_text("{not json", encoding="utf-8")

        with pytest.raises(FileIOError):
            ResponseCache().import_cache(str(broken))

    def test_persist_to_disk_on_write(self, fake_clock, tmp_path):
        """A configured snapshot path is rewritten after each mutation."""
        snapshot_path = tmp_path / "cache.json"
        config = HealingConfiguration(cache_persistence_path=str(snapshot_path))
        cache = ResponseCache.from_config(config, clock=fake_clock)

        cache.set("a", 1)

        saved = json.loads(snapshot_path.read_text(encoding="utf-8"))
        assert [item["key"] for item in saved["items"]] == ["a"]


class TestConfigurationAndKeys:
    """Test construction checks and key generation."""

    @pytest.mark.parametrize("kwargs", [
        {"max_size": 0},
        {"default_ttl": -1},
        {"eviction_policy": "fifo"},
    ])
    def test_invalid_configuration(self, kwargs):
        with pytest.raises(ConfigurationError):
            ResponseCache(**kwargs)

    def test_cache_key_is_deterministic(self):
        first = ResponseCache.generate_cache_key("field_missing", "diffhash", "codehash")
        second = ResponseCache.generate_cache_key("field_missing", "diffhash", "codehash")
        other = ResponseCache.generate_cache_key("field_missing", "diffhash", "otherhash")

        assert first == second
        assert first != other
        assert len(first) == 16

    def test_cache_key_from_context(self):
        """Dict diffs hash independently of key order."""
        first = ResponseCache.generate_cache_key_from_context("field_missing", {"a": 1, "b": 2}, "code")
        second = ResponseCache.generate_cache_key_from_context("field_missing", {"b": 2, "a": 1}, "code")

        assert first == second
