"""
Error monitor
Classifies failures, logs them with a correlation id, persists an error log
row and raises alerts through the task dispatcher.
"""
import asyncio
import uuid
from collections import Counter
from typing import Any, Dict, Optional

import anthropic
import httpx
import openai
import structlog
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from summarizer.core.config import settings
from summarizer.models.error_log import ErrorLog
from summarizer.utils.errors import ERROR_CLASSES, ErrorKind, Severity, SummarizationError
from summarizer.utils.time_utils import Clock, utc_now

logger = structlog.get_logger()

NETWORK_EXCEPTIONS = (
    httpx.TransportError,
    openai.APIConnectionError,
    anthropic.APIConnectionError,
    ConnectionError,
    asyncio.TimeoutError,
)

# Checked in order against the lowercased message
MESSAGE_HINTS = (
    (ErrorKind.RATE_LIMIT, ("rate limit", "too many requests", "429")),
    (ErrorKind.AUTHENTICATION, ("unauthorized", "forbidden", "invalid api key", "401", "403")),
    (ErrorKind.VALIDATION, ("validation", "invalid input", "required field", "too long")),
    (ErrorKind.NETWORK, ("timeout", "timed out", "connection", "network", "unreachable")),
    (ErrorKind.DATABASE, ("database", "sql", "deadlock", "constraint")),
    (ErrorKind.EXTERNAL_API, ("api", "upstream", "service unavailable", "502", "503")),
)


def classify(exc: BaseException) -> SummarizationError:
    """
    Map any exception onto the error taxonomy

    Exception types are checked first, message keywords second.
    """
    if isinstance(exc, SummarizationError):
        return exc

    message = str(exc) or type(exc).__name__
    kind = None
    if isinstance(exc, NETWORK_EXCEPTIONS):
        kind = ErrorKind.NETWORK
    elif isinstance(exc, (openai.AuthenticationError, anthropic.AuthenticationError)):
        kind = ErrorKind.AUTHENTICATION
    elif isinstance(exc, (openai.APIError, anthropic.APIError)):
        kind = ErrorKind.EXTERNAL_API
    elif isinstance(exc, (SQLAlchemyError, RedisError)):
        kind = ErrorKind.DATABASE
    else:
        lowered = message.lower()
        for candidate, hints in MESSAGE_HINTS:
            if any(hint in lowered for hint in hints):
                kind = candidate
                break

    kind = kind or ErrorKind.UNKNOWN
    error = ERROR_CLASSES[kind](message, kind=kind, details={"exception_type": type(exc).__name__})
    error.__cause__ = exc
    return error


class ErrorMonitor:
    """Central error handling for the pipeline"""

    def __init__(self, session_factory: Optional[async_sessionmaker] = None, dispatcher=None,
                 clock: Clock = utc_now, consecutive_threshold: int = None):
        self._session_factory = session_factory
        self.dispatcher = dispatcher
        self._clock = clock
        self.consecutive_threshold = consecutive_threshold or settings.ALERT_CONSECUTIVE_ERRORS
        self.counts: Counter = Counter()
        self.consecutive_errors = 0
        self.total_errors = 0
        self.total_successes = 0

    async def handle_error(self, exc: BaseException, context: Optional[Dict[str, Any]] = None) -> SummarizationError:
        """
        Classify, log, persist and possibly alert on an error

        Args:
            exc: the failure
            context: operation context (operation, user_id, ...)

        Returns:
            the classified SummarizationError carrying a correlation id,
            ready to be raised to the caller
        """
        context = dict(context or {})
        error = classify(exc)
        if not error.correlation_id:
            error.correlation_id = uuid.uuid4().hex

        self.counts[error.kind.value] += 1
        self.total_errors += 1
        self.consecutive_errors += 1

        log = logger.warning if error.severity in (Severity.LOW, Severity.MEDIUM) else logger.error
        log("Pipeline error",
            correlation_id=error.correlation_id,
            error_type=error.kind.value,
            severity=error.severity.value,
            retryable=error.retryable,
            error=error.message,
            details=error.details,
            **{k: v for k, v in context.items() if k not in ("error", "details")})

        await self._persist(error, context)

        if error.severity == Severity.CRITICAL or self.consecutive_errors >= self.consecutive_threshold:
            self._alert(error, context)
        return error

    def record_success(self) -> None:
        self.consecutive_errors = 0
        self.total_successes += 1

    async def _persist(self, error: SummarizationError, context: Dict[str, Any]) -> None:
        if self._session_factory is None:
            return
        try:
            async with self._session_factory() as db:
                db.add(ErrorLog(
                    correlation_id=error.correlation_id,
                    error_type=error.kind.value,
                    severity=error.severity.value,
                    message=error.message[:2000],
                    user_id=context.get("user_id"),
                    context={k: str(v) for k, v in context.items()},
                    created_at=self._clock(),
                ))
                await db.commit()
        except SQLAlchemyError as e:
            logger.error("Persisting error log failed", correlation_id=error.correlation_id, error=str(e))

    def _alert(self, error: SummarizationError, context: Dict[str, Any]) -> None:
        payload = {
            "alert_type": "critical_error" if error.severity == Severity.CRITICAL else "consecutive_errors",
            "correlation_id": error.correlation_id,
            "error_type": error.kind.value,
            "severity": error.severity.value,
            "message": error.message[:500],
            "consecutive_errors": self.consecutive_errors,
            "operation": context.get("operation"),
            "at": self._clock().isoformat(),
        }
        logger.error("Raising error alert", **payload)
        if self.dispatcher is not None:
            self.dispatcher.dispatch("send_error_alert", payload)

    def get_error_stats(self) -> Dict[str, Any]:
        total = self.total_errors + self.total_successes
        return {
            "total_errors": self.total_errors,
            "consecutive_errors": self.consecutive_errors,
            "by_type": dict(self.counts),
            "error_rate": round(self.total_errors / total, 4) if total else 0.0,
            "alerting": self.total_errors / total > settings.ALERT_ERROR_RATE if total else False,
        }
