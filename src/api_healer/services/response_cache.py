"""
Response cache for AI regeneration results.

An LRU cache built from a doubly linked list and a dict keyed by content
hash. Expired entries are evicted lazily on access; the whole cache can be
exported to and imported from a JSON snapshot for reuse across runs.
"""

import json
import logging
import time
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from ..core.exceptions import ConfigurationError, FileIOError
from ..core.healing_utils import hash_text
from ..core.models import CachedItem

logger = logging.getLogger(__name__)


SNAPSHOT_VERSION = "1.0"
RECENCY_WINDOW = 3600.0  # seconds


class _CacheNode:
    __slots__ = ("item", "prev", "next")

    def __init__(self, item: Optional[CachedItem]):
        self.item = item
        self.prev: Optional["_CacheNode"] = None
        self.next: Optional["_CacheNode"] = None


class ResponseCache:
    """
    LRU cache with TTL expiry.

    The most recently used entry sits right after the head sentinel and the
    eviction candidate right before the tail sentinel.
    """

    def __init__(
        self,
        default_ttl: float = 86400.0,
        max_size: int = 1000,
        eviction_policy: str = "lru",
        persist_to_disk: bool = False,
        disk_path: Optional[str] = None,
        clock: Callable[[], float] = time.time
    ):
        if max_size < 1:
            raise ConfigurationError(f"Cache max_size must be at least 1, got {max_size}")
        if default_ttl < 0:
            raise ConfigurationError(f"Cache default_ttl must not be negative, got {default_ttl}")
        if eviction_policy != "lru":
            raise ConfigurationError(f"Unsupported cache eviction policy: {eviction_policy}")

        self.default_ttl = default_ttl
        self.max_size = max_size
        self.eviction_policy = eviction_policy
        self.persist_to_disk = persist_to_disk
        self.disk_path = disk_path
        self._clock = clock

        self._nodes: Dict[str, _CacheNode] = {}
        self._head = _CacheNode(None)
        self._tail = _CacheNode(None)
        self._head.next = self._tail
        self._tail.prev = self._head

        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self.expired_count = 0

    @classmethod
    def from_config(cls, config, clock: Callable[[], float] = time.time) -> "ResponseCache":
        """Build a cache from a HealingConfiguration."""
        return cls(
            default_ttl=config.cache_default_ttl,
            max_size=config.cache_max_size,
            eviction_policy=config.cache_eviction_policy,
            persist_to_disk=bool(config.cache_persistence_path),
            disk_path=config.cache_persistence_path,
            clock=clock
        )

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None on a miss or expiry."""
        node = self._nodes.get(key)
        if node is None:
            self.misses += 1
            return None

        now = self._clock()
        if node.item.is_expired(now):
            self._remove_node(node)
            del self._nodes[key]
            self.expired_count += 1
            self.misses += 1
            logger.debug(f"Cache entry expired: {key}")
            return None

        node.item.last_accessed_at = now
        node.item.access_count += 1
        self._move_to_front(node)
        self.hits += 1
        return node.item.value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Insert or replace an entry, evicting the least recently used one when full."""
        now = self._clock()
        ttl = self.default_ttl if ttl is None else ttl
        size = self._estimate_size(value)

        node = self._nodes.get(key)
        if node is not None:
            item = node.item
            item.value = value
            item.ttl = ttl
            item.expires_at = now + ttl
            item.last_accessed_at = now
            item.size = size
            self._move_to_front(node)
        else:
            node = _CacheNode(CachedItem(
                key=key,
                value=value,
                created_at=now,
                last_accessed_at=now,
                access_count=0,
                ttl=ttl,
                expires_at=now + ttl,
                size=size
            ))
            self._nodes[key] = node
            self._add_to_front(node)

            if len(self._nodes) > self.max_size:
                self._evict_lru()

        self._persist()

    def has(self, key: str) -> bool:
        """True if the key is present and not expired. Does not touch LRU order."""
        node = self._nodes.get(key)
        return node is not None and not node.item.is_expired(self._clock())

    def delete(self, key: str) -> bool:
        node = self._nodes.pop(key, None)
        if node is None:
            return False
        self._remove_node(node)
        self._persist()
        return True

    def clear(self) -> None:
        """Remove every entry and reset the counters."""
        self._nodes.clear()
        self._head.next = self._tail
        self._tail.prev = self._head
        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self.expired_count = 0
        self._persist()

    def cleanup(self) -> int:
        """Remove expired entries. Returns the number removed."""
        now = self._clock()
        expired = [key for key, node in self._nodes.items() if node.item.is_expired(now)]
        for key in expired:
            self._remove_node(self._nodes.pop(key))
        self.expired_count += len(expired)
        if expired:
            logger.info(f"🧹 Removed {len(expired)} expired cache entries")
            self._persist()
        return len(expired)

    def get_item(self, key: str) -> Optional[CachedItem]:
        """Copy of the entry metadata for ``key``, or None."""
        node = self._nodes.get(key)
        if node is None:
            return None
        return replace(node.item)

    def get_all(self) -> List[CachedItem]:
        """Non-expired entries, most recently used first."""
        now = self._clock()
        items = []
        node = self._head.next
        while node is not self._tail:
            if not node.item.is_expired(now):
                items.append(node.item)
            node = node.next
        return items

    @property
    def size(self) -> int:
        return len(self._nodes)

    def get_cache_stats(self) -> Dict[str, Any]:
        """Usage statistics for the cache."""
        now = self._clock()
        items = [node.item for node in self._nodes.values()]
        lookups = self.hits + self.misses
        hit_rate = self.hits / lookups if lookups else 0.0
        total_size = sum(item.size for item in items)

        recent = sum(1 for item in items if now - item.last_accessed_at < RECENCY_WINDOW)
        recency = recent / len(items) if items else 0.0

        return {
            "entries": len(items),
            "max_size": self.max_size,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": hit_rate,
            "total_size": total_size,
            "average_size": total_size / len(items) if items else 0.0,
            "oldest_entry_age": max((now - item.created_at for item in items), default=0.0),
            "evictions": self.evictions,
            "expired_count": self.expired_count,
            "effectiveness": (hit_rate * 0.7 + recency * 0.3) * 100
        }

    def export_cache(self, path: Optional[str] = None) -> Dict[str, Any]:
        """
        Export the cache to a snapshot dictionary, optionally writing it to ``path``.

        Raises:
            FileIOError: If the snapshot cannot be written
        """
        snapshot = {
            "version": SNAPSHOT_VERSION,
            "timestamp": datetime.fromtimestamp(self._clock()).isoformat(),
            "config": {
                "default_ttl": self.default_ttl,
                "max_size": self.max_size,
                "eviction_policy": self.eviction_policy
            },
            "items": [item.to_dict() for item in reversed(self.get_all())],
            "stats": {
                "hits": self.hits,
                "misses": self.misses,
                "evictions": self.evictions
            }
        }

        if path:
            try:
                target = Path(path)
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(json.dumps(snapshot, indent=2, default=str), encoding="utf-8")
            except OSError as e:
                raise FileIOError(f"Failed to export cache snapshot: {e}", path) from e
            logger.info(f"💾 Exported {len(snapshot['items'])} cache entries to {path}")

        return snapshot

    def import_cache(self, source) -> int:
        """
        Replace the cache contents with a snapshot, skipping expired entries.

        Args:
            source: Snapshot dictionary or path to a snapshot file

        Returns:
            Number of entries imported

        Raises:
            FileIOError: If the snapshot file cannot be read or parsed
        """
        if isinstance(source, dict):
            snapshot = source
        else:
            try:
                snapshot = json.loads(Path(source).read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                raise FileIOError(f"Failed to import cache snapshot: {e}", str(source)) from e

        self._nodes.clear()
        self._head.next = self._tail
        self._tail.prev = self._head

        now = self._clock()
        imported = 0
        # Snapshot items are stored least recently used first
        for data in snapshot.get("items", []):
            item = CachedItem.from_dict(data)
            if item.is_expired(now):
                continue
            node = _CacheNode(item)
            self._nodes[item.key] = node
            self._add_to_front(node)
            imported += 1
            if len(self._nodes) > self.max_size:
                self._evict_lru()

        stats = snapshot.get("stats", {})
        self.hits = stats.get("hits", 0)
        self.misses = stats.get("misses", 0)
        self.evictions = stats.get("evictions", 0)

        logger.info(f"📥 Imported {imported} cache entries")
        return imported

    @staticmethod
    def generate_cache_key(
        failure_kind: str,
        spec_diff_hash: str,
        test_code_hash: str,
        extra: Optional[str] = None
    ) -> str:
        """Content hash key from the failure kind, diff hash and source hash."""
        parts = [failure_kind, spec_diff_hash, test_code_hash]
        if extra:
            parts.append(extra)
        return hash_text("|".join(parts), 16)

    @classmethod
    def generate_cache_key_from_context(cls, failure_kind: str, spec_diff: Any, test_code: str) -> str:
        diff_text = spec_diff if isinstance(spec_diff, str) else json.dumps(spec_diff, sort_keys=True, default=str)
        return cls.generate_cache_key(
            failure_kind,
            hash_text(diff_text, 16),
            hash_text(test_code[:500], 16)
        )

    def _evict_lru(self) -> None:
        node = self._tail.prev
        if node is self._head:
            return
        self._remove_node(node)
        del self._nodes[node.item.key]
        self.evictions += 1
        logger.debug(f"Evicted least recently used cache entry: {node.item.key}")

    def _add_to_front(self, node: _CacheNode) -> None:
        node.prev = self._head
        node.next = self._head.next
        self._head.next.prev = node
        self._head.next = node

    @staticmethod
    def _remove_node(node: _CacheNode) -> None:
        node.prev.next = node.next
        node.next.prev = node.prev
        node.prev = node.next = None

    def _move_to_front(self, node: _CacheNode) -> None:
        self._remove_node(node)
        self._add_to_front(node)

    @staticmethod
    def _estimate_size(value: Any) -> int:
        return len(json.dumps(value, default=str).encode("utf-8"))

    def _persist(self) -> None:
        if not (self.persist_to_disk and self.disk_path):
            return
        try:
            self.export_cache(self.disk_path)
        except FileIOError as e:
            logger.warning(f"⚠️  Cache snapshot not persisted: {e}")
