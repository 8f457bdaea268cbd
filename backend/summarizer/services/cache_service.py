"""
Cache service - tiered read-through cache for summary results

Tiers are ordered by increasing latency: in-process memory, Redis, database.
A hit at a slower tier is copied into every faster tier before it is
returned. Writes go to memory synchronously and to the slower tiers in the
background.
"""
import asyncio
import hashlib
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Set, Tuple

import redis.asyncio as aioredis
from redis.exceptions import RedisError
import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from summarizer.core.config import settings
from summarizer.models.cache_entry import SummaryCacheEntry
from summarizer.schemas.summarization import SummarizationConfig, SummaryResult
from summarizer.services.text_processor import TextProcessor
from summarizer.utils.time_utils import Clock, as_utc, utc_now

logger = structlog.get_logger()

# (value, remaining ttl in seconds)
TierHit = Tuple[SummaryResult, int]


@dataclass
class CacheEntry:
    key: str
    value: SummaryResult
    ttl: int
    created_at: datetime
    hits: int = 0

    def expires_at(self) -> datetime:
        return self.created_at + timedelta(seconds=self.ttl)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at()


class MemoryCacheTier:
    """Bounded in-process tier; evicts the oldest entry when full"""

    name = "memory"

    def __init__(self, max_size: int = None, max_ttl: int = None, clock: Clock = utc_now):
        self.max_size = max_size or settings.MEMORY_CACHE_MAX_SIZE
        self.max_ttl = max_ttl or settings.MEMORY_CACHE_MAX_TTL
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[TierHit]:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            now = self._clock()
            if entry.is_expired(now):
                del self._entries[key]
                return None
            entry.hits += 1
            remaining = int((entry.expires_at() - now).total_seconds())
            return entry.value, max(remaining, 1)

    async def set(self, key: str, value: SummaryResult, ttl: int) -> None:
        async with self._lock:
            if key in self._entries:
                del self._entries[key]
            elif len(self._entries) >= self.max_size:
                oldest = min(self._entries.values(), key=lambda e: e.created_at)
                del self._entries[oldest.key]
                logger.debug("Memory cache eviction", cache_key=oldest.key)
            self._entries[key] = CacheEntry(
                key=key,
                value=value,
                ttl=min(ttl, self.max_ttl),
                created_at=self._clock(),
            )

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    async def stats(self) -> Dict[str, Any]:
        async with self._lock:
            return {
                "entries": len(self._entries),
                "max_size": self.max_size,
                "hits": sum(e.hits for e in self._entries.values()),
            }


class RedisCacheTier:
    """Shared Redis tier using native key expiry"""

    name = "redis"

    def __init__(self, client: Optional[aioredis.Redis] = None, redis_url: str = None):
        self._client = client
        self._redis_url = redis_url or settings.REDIS_URL

    def _get_client(self) -> aioredis.Redis:
        if self._client is None:
            self._client = aioredis.from_url(self._redis_url, decode_responses=True)
            logger.info("Redis cache tier connected", redis_url=self._redis_url)
        return self._client

    async def get(self, key: str) -> Optional[TierHit]:
        client = self._get_client()
        data = await client.get(key)
        if not data:
            return None
        remaining = int(await client.ttl(key))
        # -2: expired since the GET, -1: key has no expiry
        if remaining == -2:
            return None
        if remaining < 0:
            remaining = settings.CACHE_DEFAULT_TTL
        return SummaryResult.model_validate_json(data), max(remaining, 1)

    async def set(self, key: str, value: SummaryResult, ttl: int) -> None:
        await self._get_client().setex(key, ttl, value.model_dump_json())

    async def delete(self, key: str) -> None:
        await self._get_client().delete(key)

    async def clear(self) -> None:
        client = self._get_client()
        keys = [key async for key in client.scan_iter(match=f"{settings.CACHE_PREFIX}:*")]
        if keys:
            await client.delete(*keys)

    async def stats(self) -> Dict[str, Any]:
        client = self._get_client()
        count = 0
        async for _ in client.scan_iter(match=f"{settings.CACHE_PREFIX}:*"):
            count += 1
        return {"entries": count}


class DatabaseCacheTier:
    """Durable tier in the summary_cache table"""

    name = "database"

    def __init__(self, session_factory: async_sessionmaker, clock: Clock = utc_now):
        self._session_factory = session_factory
        self._clock = clock

    async def get(self, key: str) -> Optional[TierHit]:
        async with self._session_factory() as db:
            row = await db.get(SummaryCacheEntry, key)
            if row is None:
                return None
            now = self._clock()
            expires_at = as_utc(row.expires_at)
            if expires_at <= now:
                await db.delete(row)
                await db.commit()
                return None
            row.hits = (row.hits or 0) + 1
            await db.commit()
            remaining = int((expires_at - now).total_seconds())
            return SummaryResult.model_validate_json(row.value), max(remaining, 1)

    async def set(self, key: str, value: SummaryResult, ttl: int) -> None:
        now = self._clock()
        async with self._session_factory() as db:
            await db.merge(SummaryCacheEntry(
                cache_key=key,
                value=value.model_dump_json(),
                hits=0,
                expires_at=now + timedelta(seconds=ttl),
                created_at=now,
            ))
            await db.commit()

    async def delete(self, key: str) -> None:
        async with self._session_factory() as db:
            await db.execute(delete(SummaryCacheEntry).where(SummaryCacheEntry.cache_key == key))
            await db.commit()

    async def clear(self) -> None:
        async with self._session_factory() as db:
            await db.execute(delete(SummaryCacheEntry))
            await db.commit()

    async def stats(self) -> Dict[str, Any]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(SummaryCacheEntry.hits).where(SummaryCacheEntry.expires_at > self._clock())
            )
            hits = list(result.scalars().all())
        return {"entries": len(hits), "hits": sum(h or 0 for h in hits)}


class CacheManager:
    """
    Tiered summary cache

    The first tier must be the in-process memory tier; it is written
    synchronously by `set`, every other tier in the background.
    """

    def __init__(self, tiers: List[Any], clock: Clock = utc_now):
        if not tiers:
            raise ValueError("CacheManager needs at least one tier")
        self.tiers = tiers
        self._clock = clock
        self._pending: Set[asyncio.Task] = set()
        self._hits: Dict[str, int] = {tier.name: 0 for tier in tiers}
        self._misses = 0

    @classmethod
    def from_settings(cls, session_factory: Optional[async_sessionmaker] = None) -> "CacheManager":
        """Memory tier plus the Redis and database tiers enabled in settings"""
        tiers: List[Any] = [MemoryCacheTier()]
        if settings.ENABLE_REDIS_CACHE:
            tiers.append(RedisCacheTier())
        if settings.ENABLE_DB_CACHE and session_factory is not None:
            tiers.append(DatabaseCacheTier(session_factory))
        return cls(tiers)

    @staticmethod
    def generate_key(text: str, config: SummarizationConfig) -> str:
        """
        Deterministic cache key for a text and config

        Args:
            text: input text, normalised before hashing
            config: request config, serialised with sorted keys

        Returns:
            "summary:<sha256 hex>"
        """
        material = TextProcessor.normalize(text) + "\x1f" + config.canonical_json()
        digest = hashlib.sha256(material.encode("utf-8")).hexdigest()
        return f"{settings.CACHE_PREFIX}:{digest}"

    @staticmethod
    def ttl_for(config: SummarizationConfig) -> int:
        return settings.CACHE_TTL_SECONDS.get(config.mode.value, settings.CACHE_DEFAULT_TTL)

    async def get(self, key: str) -> Optional[SummaryResult]:
        """
        Read through the tiers

        Args:
            key: cache key

        Returns:
            cached SummaryResult, or None when every tier misses
        """
        for index, tier in enumerate(self.tiers):
            try:
                hit = await tier.get(key)
            except (SQLAlchemyError, RedisError, OSError, ValueError) as e:
                logger.warning("Cache tier read failed", tier=tier.name, cache_key=key, error=str(e))
                continue
            if hit is None:
                continue

            value, remaining_ttl = hit
            self._hits[tier.name] += 1
            for faster in self.tiers[:index]:
                try:
                    await faster.set(key, value, remaining_ttl)
                except (SQLAlchemyError, RedisError, OSError) as e:
                    logger.warning("Cache backfill failed", tier=faster.name, cache_key=key, error=str(e))
            logger.info("Cache hit", tier=tier.name, cache_key=key)
            return value

        self._misses += 1
        return None

    async def set(self, key: str, value: SummaryResult, ttl: Optional[int] = None) -> None:
        """
        Store a result

        The memory tier is written before returning; slower tiers are written
        by background tasks whose failures are only logged.
        """
        ttl = ttl or settings.CACHE_DEFAULT_TTL
        await self.tiers[0].set(key, value, ttl)
        for tier in self.tiers[1:]:
            task = asyncio.create_task(self._write_tier(tier, key, value, ttl))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _write_tier(self, tier: Any, key: str, value: SummaryResult, ttl: int) -> None:
        try:
            await tier.set(key, value, ttl)
            logger.debug("Cache tier written", tier=tier.name, cache_key=key, ttl=ttl)
        except (SQLAlchemyError, RedisError, OSError) as e:
            logger.error("Cache tier write failed", tier=tier.name, cache_key=key, error=str(e))

    async def drain(self) -> None:
        """Wait for pending background writes"""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def delete(self, key: str) -> None:
        for tier in self.tiers:
            try:
                await tier.delete(key)
            except (SQLAlchemyError, RedisError, OSError) as e:
                logger.error("Cache delete failed", tier=tier.name, cache_key=key, error=str(e))

    async def clear(self) -> None:
        """Remove every cached summary from every tier (use with care)"""
        for tier in self.tiers:
            try:
                await tier.clear()
            except (SQLAlchemyError, RedisError, OSError) as e:
                logger.error("Cache clear failed", tier=tier.name, error=str(e))
        logger.info("Cache cleared")

    async def get_stats(self) -> Dict[str, Any]:
        tiers: Dict[str, Any] = {}
        for tier in self.tiers:
            try:
                tiers[tier.name] = await tier.stats()
            except (SQLAlchemyError, RedisError, OSError) as e:
                tiers[tier.name] = {"error": str(e)}
            tiers[tier.name]["lookup_hits"] = self._hits[tier.name]
        return {
            "tiers": tiers,
            "misses": self._misses,
            "pending_writes": len(self._pending),
        }
