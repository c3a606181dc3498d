"""Bounded in-memory caches for completions and document summaries."""

from __future__ import annotations

import hashlib
import time
from dataclasses import dataclass
from threading import RLock
from typing import Callable, Dict, Generic, TypeVar

from ...services import telemetry as telemetry_service

T = TypeVar("T")

FINGERPRINT_BEFORE_CHARS = 200
FINGERPRINT_AFTER_CHARS = 50


@dataclass(slots=True)
class _CacheEntry(Generic[T]):
    key: str
    value: T
    created_at: float


@dataclass(slots=True, frozen=True)
class CacheStats:
    name: str
    size: int
    capacity: int
    hits: int
    misses: int
    evictions: int


class BoundedResultCache(Generic[T]):
    """Thread-safe key/value cache with oldest-first eviction and optional TTL."""

    def __init__(
        self,
        *,
        name: str = "results",
        max_entries: int = 64,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._name = name
        self._max_entries = max(1, int(max_entries))
        self._ttl_seconds = None if ttl_seconds is None else max(0.0, float(ttl_seconds))
        self._clock = clock
        self._entries: Dict[str, _CacheEntry[T]] = {}
        self._lock = RLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def capacity(self) -> int:
        return self._max_entries

    def get(self, key: str) -> T | None:
        if not key:
            return None
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                reason = "missing"
            elif self._is_expired(entry, now):
                self._evict_locked(key, reason="expired")
                self._misses += 1
                reason = "expired"
            else:
                self._hits += 1
                age_ms = max(0.0, (now - entry.created_at) * 1000.0)
                value = entry.value
                reason = ""
        if reason:
            self._emit("cache.miss", key, reason=reason)
            return None
        self._emit("cache.hit", key, extra={"age_ms": round(age_ms, 3)})
        return value

    def put(self, key: str, value: T) -> None:
        if not key:
            return
        with self._lock:
            self._purge_expired_locked()
            # Re-inserting moves the key to the newest position.
            self._entries.pop(key, None)
            self._entries[key] = _CacheEntry(key=key, value=value, created_at=self._clock())
            self._enforce_capacity_locked()

    def invalidate(self, key: str) -> bool:
        with self._lock:
            if key not in self._entries:
                return False
            self._evict_locked(key, reason="invalidated")
            return True

    def clear(self) -> None:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        if count:
            self._emit("cache.cleared", None, extra={"entries": count})

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                name=self._name,
                size=len(self._entries),
                capacity=self._max_entries,
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            entry = self._entries.get(key) if isinstance(key, str) else None
            return entry is not None and not self._is_expired(entry, self._clock())

    def _is_expired(self, entry: _CacheEntry[T], now: float) -> bool:
        return bool(self._ttl_seconds) and now - entry.created_at >= self._ttl_seconds  # type: ignore[operator]

    def _purge_expired_locked(self) -> None:
        if not self._ttl_seconds:
            return
        now = self._clock()
        stale_keys = [key for key, entry in self._entries.items() if self._is_expired(entry, now)]
        for key in stale_keys:
            self._evict_locked(key, reason="expired")

    def _enforce_capacity_locked(self) -> None:
        while len(self._entries) > self._max_entries:
            oldest = next(iter(self._entries))
            self._evict_locked(oldest, reason="capacity")

    def _evict_locked(self, key: str, *, reason: str) -> None:
        if self._entries.pop(key, None) is None:
            return
        self._evictions += 1
        self._emit("cache.evicted", key, reason=reason)

    def _emit(
        self,
        event_name: str,
        key: str | None,
        *,
        reason: str | None = None,
        extra: dict[str, object] | None = None,
    ) -> None:
        payload: dict[str, object] = dict(extra or {})
        payload["cache"] = self._name
        if key:
            payload["key"] = key[:12]
        if reason:
            payload["reason"] = reason
        telemetry_service.emit(event_name, payload)


class CompletionCache(BoundedResultCache[str]):
    """Memo of inline completions keyed by a context fingerprint."""

    def __init__(
        self,
        *,
        max_entries: int = 50,
        ttl_seconds: float | None = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(name="completion", max_entries=max_entries, ttl_seconds=ttl_seconds, clock=clock)

    @staticmethod
    def fingerprint(text_before: str, text_after: str, provider: str, model: str) -> str:
        """Hash the cursor neighbourhood together with the provider/model pair."""

        hasher = hashlib.sha1()
        hasher.update((text_before or "")[-FINGERPRINT_BEFORE_CHARS:].encode("utf-8", errors="ignore"))
        hasher.update(b"|")
        hasher.update((text_after or "")[:FINGERPRINT_AFTER_CHARS].encode("utf-8", errors="ignore"))
        hasher.update(b"|")
        hasher.update((provider or "").encode("utf-8", errors="ignore"))
        hasher.update(b"|")
        hasher.update((model or "").encode("utf-8", errors="ignore"))
        return hasher.hexdigest()


class SummaryCache(BoundedResultCache[str]):
    """Memo of document summaries keyed by document id and content hash."""

    def __init__(
        self,
        *,
        max_entries: int = 100,
        ttl_seconds: float | None = 1_800.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(name="summary", max_entries=max_entries, ttl_seconds=ttl_seconds, clock=clock)

    @staticmethod
    def key_for(document_id: str | None, text: str) -> str:
        digest = hashlib.sha1((text or "").encode("utf-8", errors="ignore")).hexdigest()
        return f"{document_id or 'document'}:{digest}"


__all__ = [
    "BoundedResultCache",
    "CacheStats",
    "CompletionCache",
    "FINGERPRINT_AFTER_CHARS",
    "FINGERPRINT_BEFORE_CHARS",
    "SummaryCache",
]
