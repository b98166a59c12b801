"""
Semantic response cache.

Entries are scoped to a user and matched by cosine similarity of hashed
bag-of-words embeddings. TTL expiry is checked lazily on lookup and by a
background sweep; overflow evicts the least-recently-accessed entry.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

from backend.app.cache.embedding import (
    EMBEDDING_DIMENSIONS,
    cosine_similarity,
    embed,
    normalize_query,
    query_hash,
)
from backend.app.plans.policy import Plan, get_plan_limits

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, str]


def _now() -> float:
    return time.time()


@dataclass(frozen=True)
class CachedResponse:
    text: str
    model: Optional[str] = None
    prompt_tokens: int = 0
    completion_tokens: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CacheEntry:
    user_id: str
    query: str
    normalized_query: str
    embedding: List[float]
    response: CachedResponse
    created_at: float
    ttl_seconds: int
    session_id: Optional[str] = None
    access_count: int = 0
    last_accessed_at: float = 0.0

    @property
    def expires_at(self) -> float:
        return self.created_at + self.ttl_seconds

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class CacheLookup:
    hit: bool
    response: Optional[CachedResponse] = None
    similarity: float = 0.0
    matched_query: Optional[str] = None


@dataclass
class CacheStats:
    entries: int
    hits: int
    misses: int
    hit_rate: float
    avg_similarity: float
    evictions: int
    expirations: int


class SemanticCache:
    """
    Process-wide cache object, constructed once and injected into the orchestrator.

    One lock guards the entry map, so the read, evict and write steps of a
    lookup or store run as a single critical section.
    """

    def __init__(
        self,
        *,
        max_entries: int = 1000,
        default_ttl_seconds: int = 3600,
        similarity_threshold: float = 0.85,
        sweep_interval_seconds: int = 300,
        dimensions: int = EMBEDDING_DIMENSIONS,
        enabled: bool = True,
    ):
        self.max_entries = max(1, max_entries)
        self.default_ttl_seconds = default_ttl_seconds
        self.similarity_threshold = similarity_threshold
        self.sweep_interval_seconds = sweep_interval_seconds
        self.dimensions = dimensions
        self.enabled = enabled
        self._entries: "OrderedDict[CacheKey, CacheEntry]" = OrderedDict()
        self._by_user: Dict[str, Set[CacheKey]] = {}
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._similarity_total = 0.0
        self._evictions = 0
        self._expirations = 0
        self._sweeper: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(cls, settings) -> "SemanticCache":
        return cls(
            max_entries=settings.cache_max_entries,
            default_ttl_seconds=settings.cache_ttl_seconds,
            similarity_threshold=settings.cache_similarity_threshold,
            sweep_interval_seconds=settings.cache_sweep_interval_seconds,
            enabled=settings.cache_enabled,
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # lookups

    def lookup(
        self,
        user_id: str,
        query: str,
        *,
        session_id: Optional[str] = None,
        threshold: Optional[float] = None,
    ) -> CacheLookup:
        """
        Find the most similar live entry for this user.

        Args:
            user_id: Owner; entries of other users are never considered
            query: Raw query text
            session_id: When given, only entries stored for this session match
            threshold: Minimum cosine similarity for a hit

        Returns:
            CacheLookup; ``hit`` implies ``similarity >= threshold``
        """
        required = self.similarity_threshold if threshold is None else threshold
        normalized = normalize_query(query)
        if not self.enabled or not user_id or not normalized:
            return CacheLookup(hit=False)

        vector = embed(normalized, self.dimensions)
        now = _now()
        with self._lock:
            best: Optional[CacheEntry] = None
            best_key: Optional[CacheKey] = None
            best_score = 0.0
            for key in list(self._by_user.get(user_id, ())):
                entry = self._entries[key]
                if entry.is_expired(now):
                    self._remove(key)
                    self._expirations += 1
                    continue
                if session_id is not None and entry.session_id != session_id:
                    continue
                score = min(1.0, round(cosine_similarity(vector, entry.embedding), 6))
                if score > best_score:
                    best, best_key, best_score = entry, key, score

            if best is None or best_key is None or best_score < required:
                self._misses += 1
                return CacheLookup(hit=False, similarity=best_score)

            best.access_count += 1
            best.last_accessed_at = now
            self._entries.move_to_end(best_key)
            self._hits += 1
            self._similarity_total += best_score
            return CacheLookup(
                hit=True,
                response=best.response,
                similarity=best_score,
                matched_query=best.query,
            )

    # writes

    def store(
        self,
        user_id: str,
        query: str,
        response: CachedResponse,
        *,
        session_id: Optional[str] = None,
        ttl_seconds: Optional[int] = None,
        plan: Optional[Plan] = None,
    ) -> bool:
        """Insert or overwrite the entry for (user, normalized query). No-op when caching is off for the plan."""
        normalized = normalize_query(query)
        if not self.enabled or not user_id or not normalized:
            return False
        per_user_cap: Optional[int] = None
        if plan is not None:
            limits = get_plan_limits(plan)
            if not limits.cache_enabled:
                return False
            per_user_cap = limits.cache_entries_per_user

        key: CacheKey = (user_id, query_hash(normalized))
        now = _now()
        entry = CacheEntry(
            user_id=user_id,
            query=query,
            normalized_query=normalized,
            embedding=embed(normalized, self.dimensions),
            response=response,
            created_at=now,
            ttl_seconds=self.default_ttl_seconds if ttl_seconds is None else ttl_seconds,
            session_id=session_id,
            last_accessed_at=now,
        )
        with self._lock:
            if key in self._entries:
                self._remove(key)
            if per_user_cap is not None:
                while len(self._by_user.get(user_id, ())) >= max(1, per_user_cap):
                    self._evict_lru(user_id=user_id)
            while len(self._entries) >= self.max_entries:
                self._evict_lru()
            self._entries[key] = entry
            self._by_user.setdefault(user_id, set()).add(key)
        return True

    def _remove(self, key: CacheKey) -> None:
        entry = self._entries.pop(key, None)
        if entry is None:
            return
        keys = self._by_user.get(entry.user_id)
        if keys is not None:
            keys.discard(key)
            if not keys:
                self._by_user.pop(entry.user_id, None)

    def _evict_lru(self, user_id: Optional[str] = None) -> None:
        # OrderedDict order is access order: first item is least recently used.
        for key, entry in self._entries.items():
            if user_id is None or entry.user_id == user_id:
                self._remove(key)
                self._evictions += 1
                return

    # maintenance

    def purge_expired(self) -> int:
        now = _now()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                self._remove(key)
            self._expirations += len(expired)
        if expired:
            logger.info("[Cache] purged expired entries", extra={"count": len(expired)})
        return len(expired)

    def clear_user(self, user_id: str) -> int:
        with self._lock:
            keys = list(self._by_user.get(user_id, ()))
            for key in keys:
                self._remove(key)
        return len(keys)

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            self._by_user.clear()
        return count

    def stats(self) -> CacheStats:
        with self._lock:
            total = self._hits + self._misses
            return CacheStats(
                entries=len(self._entries),
                hits=self._hits,
                misses=self._misses,
                hit_rate=round(self._hits / total, 4) if total else 0.0,
                avg_similarity=round(self._similarity_total / self._hits, 4) if self._hits else 0.0,
                evictions=self._evictions,
                expirations=self._expirations,
            )

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            try:
                self.purge_expired()
            except Exception:
                logger.exception("[Cache] sweep failed")

    def start_sweeper(self) -> asyncio.Task:
        """Start the periodic TTL sweep on the running event loop."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_loop())
        return self._sweeper

    async def stop_sweeper(self) -> None:
        task, self._sweeper = self._sweeper, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


__all__ = [
    "CachedResponse",
    "CacheEntry",
    "CacheLookup",
    "CacheStats",
    "SemanticCache",
]
