"""TTL cache layered over key-value storage."""

import json
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from ..core.clock import SystemClock, from_millis, to_millis
from ..core.errors import StorageFullError
from ..core.interfaces import Clock, KeyValueStorage
from ..core.types import CacheEntry

logger = structlog.get_logger(__name__)

CACHE_PREFIX = "cache_"

_MISSING = object()


class TTLCache:
    """Key-value cache with per-entry time to live.

    Entries are stored as ``cache_<key>`` -> ``{"data", "timestamp", "ttl"}``
    with timestamp and ttl in milliseconds. Expiry is checked lazily on read
    and in bulk by ``sweep``.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        clock: Clock | None = None,
        default_ttl: float = 300.0,
    ) -> None:
        """Initialize TTL cache.

        Args:
            storage: Backing key-value storage
            clock: Time source (defaults to system clock)
            default_ttl: Default time to live in seconds
        """
        self.storage = storage
        self.clock = clock or SystemClock()
        self.default_ttl = default_ttl

    def _storage_key(self, key: str) -> str:
        return f"{CACHE_PREFIX}{key}"

    def _load(self, storage_key: str) -> CacheEntry | None:
        raw = self.storage.get(storage_key)
        if raw is None:
            return None
        try:
            stored = json.loads(raw)
            return CacheEntry(
                key=storage_key[len(CACHE_PREFIX) :],
                payload=stored["data"],
                stored_at=from_millis(float(stored["timestamp"])),
                ttl=float(stored["ttl"]) / 1000,
            )
        except (ValueError, TypeError, KeyError) as e:
            logger.warning("Discarding unreadable cache entry", key=storage_key, error=str(e))
            return None

    def _expired(self, entry: CacheEntry) -> bool:
        age = (self.clock.now() - entry.stored_at).total_seconds()
        return age > entry.ttl

    def _lookup(self, key: str) -> Any:
        """Return the cached payload, or _MISSING if missing or expired."""
        storage_key = self._storage_key(key)
        entry = self._load(storage_key)
        if entry is None:
            self.storage.delete(storage_key)
            return _MISSING

        if self._expired(entry):
            self.storage.delete(storage_key)
            logger.debug("Cache entry expired", key=key)
            return _MISSING

        return entry.payload

    def get(self, key: str) -> Any | None:
        """Return the cached payload, or None if missing or expired."""
        payload = self._lookup(key)
        return None if payload is _MISSING else payload

    def set(self, key: str, payload: Any, ttl: float | None = None) -> None:
        """Store a payload, resetting its age.

        A write rejected for capacity triggers one sweep and one retry; if the
        retry is rejected too the write is dropped.
        """
        ttl = self.default_ttl if ttl is None else ttl
        storage_key = self._storage_key(key)
        value = json.dumps(
            {
                "data": payload,
                "timestamp": to_millis(self.clock.now()),
                "ttl": int(round(ttl * 1000)),
            }
        )

        try:
            self.storage.set(storage_key, value)
            return
        except StorageFullError:
            removed = self.sweep()
            logger.info("Storage full, swept cache", key=key, removed=removed)

        try:
            self.storage.set(storage_key, value)
        except StorageFullError as e:
            logger.warning("Dropping cache write, storage still full", key=key, error=str(e))

    def delete(self, key: str) -> None:
        """Evict a single entry."""
        self.storage.delete(self._storage_key(key))

    def sweep(self) -> int:
        """Delete every expired or unreadable cache entry.

        Returns:
            Number of entries removed
        """
        removed = 0
        for storage_key in list(self.storage.keys()):
            if not storage_key.startswith(CACHE_PREFIX):
                continue
            entry = self._load(storage_key)
            if entry is None or self._expired(entry):
                self.storage.delete(storage_key)
                removed += 1

        if removed:
            logger.debug("Cache sweep completed", removed=removed)
        return removed

    async def get_or_fetch(
        self,
        key: str,
        fetch: Callable[[], Awaitable[Any]],
        ttl: float | None = None,
    ) -> Any:
        """Return the cached payload or await fetch() and cache its result."""
        cached = self._lookup(key)
        if cached is not _MISSING:
            logger.debug("Cache hit", key=key)
            return cached

        payload = await fetch()
        self.set(key, payload, ttl=ttl)
        return payload
