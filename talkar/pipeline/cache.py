"""
Result cache — finished artifacts keyed by request fingerprint.

TTL is a fixed policy (5 minutes) for every entry kind. An expired entry is
indistinguishable from one that was never written: `get()` returns None.

Two stores:
  InMemoryResultCache — process-local dict, lazily purged on read and by
                        the periodic sweep in main.py
  RedisResultCache    — shared across replicas, expiry enforced by Redis
                        (SET ... EX) and re-checked on read
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

from .models import Artifact, CacheEntry, JobKind

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 5 * 60
REDIS_KEY_PREFIX = "talkar:result:"


class ResultCache(ABC):
    @abstractmethod
    async def get(self, fingerprint: str) -> Optional[CacheEntry]:
        """Live entry for `fingerprint`, or None."""

    @abstractmethod
    async def put(
        self, fingerprint: str, job_id: str, kind: JobKind, artifact: Artifact
    ) -> CacheEntry:
        """Store a finished artifact for CACHE_TTL_SECONDS."""

    @abstractmethod
    async def purge_expired(self) -> int:
        """Drop expired entries. Returns how many were dropped."""

    @abstractmethod
    async def clear(self) -> None:
        """Drop everything."""


class InMemoryResultCache(ResultCache):
    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, CacheEntry] = {}

    @property
    def ttl(self) -> float:
        return CACHE_TTL_SECONDS

    async def get(self, fingerprint: str) -> Optional[CacheEntry]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(fingerprint)
            if entry is None:
                return None
            if now >= entry.expires_at:
                del self._entries[fingerprint]
                return None
            return entry.model_copy(deep=True)

    async def put(
        self, fingerprint: str, job_id: str, kind: JobKind, artifact: Artifact
    ) -> CacheEntry:
        now = self._clock()
        entry = CacheEntry(
            fingerprint=fingerprint,
            job_id=job_id,
            kind=kind,
            artifact=artifact.model_copy(deep=True),
            created_at=now,
            expires_at=now + CACHE_TTL_SECONDS,
        )
        with self._lock:
            self._entries[fingerprint] = entry
        return entry.model_copy(deep=True)

    async def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [fp for fp, entry in self._entries.items() if now >= entry.expires_at]
            for fp in expired:
                del self._entries[fp]
        if expired:
            logger.debug(f"Purged {len(expired)} expired cache entries")
        return len(expired)

    async def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class RedisResultCache(ResultCache):
    """
    Redis-backed store for multi-replica deployments.

    `redis_client` is a `redis.asyncio.Redis` instance.
    """

    def __init__(self, redis_client, clock: Callable[[], float] = time.time):
        self._redis = redis_client
        self._clock = clock

    @classmethod
    def from_url(cls, redis_url: str) -> "RedisResultCache":
        import redis.asyncio as aioredis

        return cls(aioredis.from_url(redis_url, decode_responses=True))

    async def get(self, fingerprint: str) -> Optional[CacheEntry]:
        raw = await self._redis.get(f"{REDIS_KEY_PREFIX}{fingerprint}")
        if not raw:
            return None
        entry = CacheEntry.model_validate_json(raw)
        if self._clock() >= entry.expires_at:
            return None
        return entry

    async def put(
        self, fingerprint: str, job_id: str, kind: JobKind, artifact: Artifact
    ) -> CacheEntry:
        now = self._clock()
        entry = CacheEntry(
            fingerprint=fingerprint,
            job_id=job_id,
            kind=kind,
            artifact=artifact,
            created_at=now,
            expires_at=now + CACHE_TTL_SECONDS,
        )
        await self._redis.set(
            f"{REDIS_KEY_PREFIX}{fingerprint}",
            entry.model_dump_json(),
            ex=CACHE_TTL_SECONDS,
        )
        return entry

    async def purge_expired(self) -> int:
        # Redis expires keys on its own
        return 0

    async def clear(self) -> None:
        keys = [key async for key in self._redis.scan_iter(match=f"{REDIS_KEY_PREFIX}*")]
        if keys:
            await self._redis.delete(*keys)
