"""
Rate limiter - sliding-window admission control and monthly quota accounting

Request counts come from the append-only usage_logs table so every API
instance sees the same window. Database errors fail open: a broken counter
must not take the service down.
"""
import math
import uuid
from collections import defaultdict
from datetime import timedelta
from typing import Any, Dict, Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from summarizer.core.config import settings
from summarizer.models.usage import UsageLog, UserBlock, UserProfile
from summarizer.schemas.summarization import QuotaStatus, RateLimitStatus, UsageRecord
from summarizer.utils.time_utils import Clock, as_utc, start_of_month, start_of_next_month, utc_now

logger = structlog.get_logger()

ANALYTICS_PERIODS = {"day": 1, "week": 7, "month": 30}


def _as_uuid(value) -> Optional[uuid.UUID]:
    if value is None or isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


class RateLimiter:
    """Per-user, per-action sliding window limiter"""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        limits: Optional[Dict[str, Dict[str, int]]] = None,
        block_duration: Optional[int] = None,
        clock: Clock = utc_now,
    ):
        """
        Args:
            session_factory: async session factory
            limits: {action: {"max_requests": n, "window_seconds": s}},
                defaults to settings.RATE_LIMITS
            block_duration: seconds a user stays blocked after exceeding a limit
            clock: returns the current aware UTC time
        """
        self._session_factory = session_factory
        self.limits = limits or settings.RATE_LIMITS
        self.block_duration = block_duration or settings.BLOCK_DURATION_SECONDS
        self._clock = clock

    def limit_for(self, action: str) -> Dict[str, int]:
        return self.limits.get(action) or self.limits.get("default") or settings.RATE_LIMITS["default"]

    async def check_rate_limit(self, user_id: str, action: str) -> RateLimitStatus:
        """
        Admit or deny a request

        Args:
            user_id: caller
            action: action name (summarize/upload/feedback)

        Returns:
            RateLimitStatus; denied requests carry blocked_until
        """
        limit = self.limit_for(action)
        max_requests = limit["max_requests"]
        window = timedelta(seconds=limit["window_seconds"])
        now = self._clock()

        try:
            async with self._session_factory() as db:
                block = await db.get(UserBlock, user_id)
                if block is not None and as_utc(block.blocked_until) > now:
                    blocked_until = as_utc(block.blocked_until)
                    logger.info("Request denied, user blocked", user_id=user_id, action=action,
                                blocked_until=blocked_until.isoformat())
                    return RateLimitStatus(allowed=False, remaining=0,
                                           reset_time=blocked_until, blocked_until=blocked_until)

                window_start = now - window
                count = await db.scalar(
                    select(func.count(UsageLog.id)).where(
                        UsageLog.user_id == user_id,
                        UsageLog.action == action,
                        UsageLog.created_at >= window_start,
                    )
                ) or 0

                if count >= max_requests:
                    blocked_until = now + timedelta(seconds=self.block_duration)
                    await db.merge(UserBlock(
                        user_id=user_id,
                        reason=f"rate_limit:{action}",
                        blocked_until=blocked_until,
                        updated_at=now,
                    ))
                    await db.commit()
                    logger.warning("Rate limit exceeded, user blocked", user_id=user_id, action=action,
                                   count=count, max_requests=max_requests)
                    return RateLimitStatus(allowed=False, remaining=0,
                                           reset_time=blocked_until, blocked_until=blocked_until)

                return RateLimitStatus(
                    allowed=True,
                    remaining=max_requests - count - 1,
                    reset_time=now + window,
                )
        except SQLAlchemyError as e:
            logger.error("Rate limit check failed, allowing request", user_id=user_id, action=action, error=str(e))
            return RateLimitStatus(allowed=True, remaining=max_requests, reset_time=now + window)

    @staticmethod
    def calculate_cost(tokens: int, action: str) -> float:
        return round(tokens * settings.ACTION_COST_PER_TOKEN.get(action, 0.0), 6)

    async def record_usage(self, record: UsageRecord) -> None:
        """Append one usage row; failures are logged, never raised"""
        metadata = dict(record.metadata)
        try:
            async with self._session_factory() as db:
                db.add(UsageLog(
                    user_id=record.user_id,
                    action=record.action,
                    document_id=_as_uuid(metadata.pop("document_id", None)),
                    summary_id=_as_uuid(metadata.pop("summary_id", None)),
                    tokens_used=record.tokens_used,
                    cost=record.cost if record.cost is not None else self.calculate_cost(record.tokens_used, record.action),
                    processing_time=metadata.pop("processing_time_ms", None),
                    usage_metadata=metadata or None,
                    created_at=record.timestamp or self._clock(),
                ))
                await db.commit()
            logger.debug("Usage recorded", user_id=record.user_id, action=record.action, tokens=record.tokens_used)
        except SQLAlchemyError as e:
            logger.error("Recording usage failed", user_id=record.user_id, action=record.action, error=str(e))

    async def get_user_tier(self, user_id: str) -> str:
        """Subscription tier from the user profile, free when unknown"""
        try:
            async with self._session_factory() as db:
                profile = await db.get(UserProfile, user_id)
        except SQLAlchemyError as e:
            logger.error("Loading user profile failed", user_id=user_id, error=str(e))
            return settings.DEFAULT_TIER
        if profile is None or profile.tier not in settings.TIER_POLICIES:
            return settings.DEFAULT_TIER
        return profile.tier

    async def get_quota_status(self, user_id: str, action: str = "summarize") -> QuotaStatus:
        """
        Monthly usage against the user's quota

        Usage is counted from the first day of the current month; the limit
        is the profile's monthly_quota or the tier default.
        """
        now = self._clock()
        month_start = start_of_month(now)
        tier = settings.DEFAULT_TIER
        monthly_limit = int(settings.TIER_POLICIES[tier]["monthly_quota"])
        try:
            async with self._session_factory() as db:
                profile = await db.get(UserProfile, user_id)
                if profile is not None:
                    if profile.tier in settings.TIER_POLICIES:
                        tier = profile.tier
                    monthly_limit = profile.monthly_quota or int(settings.TIER_POLICIES[tier]["monthly_quota"])
                monthly_usage = await db.scalar(
                    select(func.count(UsageLog.id)).where(
                        UsageLog.user_id == user_id,
                        UsageLog.action == action,
                        UsageLog.created_at >= month_start,
                    )
                ) or 0
        except SQLAlchemyError as e:
            logger.error("Quota lookup failed, assuming quota available", user_id=user_id, error=str(e))
            monthly_usage = 0

        return QuotaStatus(
            monthly_usage=monthly_usage,
            monthly_limit=monthly_limit,
            remaining=max(0, monthly_limit - monthly_usage),
            reset_date=start_of_next_month(now),
            tier=tier,
        )

    async def has_quota(self, user_id: str, action: str = "summarize") -> bool:
        status = await self.get_quota_status(user_id, action)
        return status.remaining > 0

    async def get_usage_analytics(self, user_id: str, period: str = "week") -> Dict[str, Any]:
        """
        Usage totals for a user over a day, week or month

        Returns:
            totals, per-action counts and per-day buckets
        """
        if period not in ANALYTICS_PERIODS:
            raise ValueError(f"Unknown analytics period: {period}")
        since = self._clock() - timedelta(days=ANALYTICS_PERIODS[period])

        async with self._session_factory() as db:
            result = await db.execute(
                select(UsageLog).where(UsageLog.user_id == user_id, UsageLog.created_at >= since)
            )
            rows = list(result.scalars().all())

        by_action: Dict[str, int] = defaultdict(int)
        by_day: Dict[str, int] = defaultdict(int)
        for row in rows:
            by_action[row.action] += 1
            by_day[as_utc(row.created_at).date().isoformat()] += 1

        total_time = [row.processing_time for row in rows if row.processing_time]
        return {
            "period": period,
            "total_requests": len(rows),
            "total_tokens": sum(row.tokens_used or 0 for row in rows),
            "total_cost": round(sum(row.cost or 0.0 for row in rows), 6),
            "average_processing_time_ms": math.floor(sum(total_time) / len(total_time)) if total_time else 0,
            "by_action": dict(by_action),
            "by_day": dict(sorted(by_day.items())),
        }
