"""
Summarizer service - the summarization request pipeline

validate -> cache -> admit (rate limit, quota) -> optimise -> select model
-> engine -> post-process -> evaluate -> store -> cache -> record usage
"""
import asyncio
import math
import time
import uuid
from typing import Any, Dict, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from summarizer.core.config import settings
from summarizer.models.document import Document, Summary
from summarizer.schemas.summarization import (
    FeedbackData,
    QuotaStatus,
    SummarizationConfig,
    SummaryResult,
    UsageRecord,
)
from summarizer.services.cache_service import CacheManager
from summarizer.services.cost_optimizer import CHARS_PER_TOKEN, CostOptimizer
from summarizer.services.error_monitor import ErrorMonitor
from summarizer.services.evaluation import EvaluationEngine
from summarizer.services.feedback_manager import FeedbackManager
from summarizer.services.pipeline_state import PipelineState, RequestLifecycle
from summarizer.services.post_processor import PostProcessor
from summarizer.services.rate_limiter import RateLimiter
from summarizer.services.summarization_engine import EngineOutput, SummarizationEngine
from summarizer.utils.errors import AuthenticationError, InputValidationError, ProcessingError, RateLimitError
from summarizer.utils.time_utils import Clock, utc_now

logger = structlog.get_logger()

# States from which a request may go straight to failed_terminal
_DIRECT_TERMINAL = {
    PipelineState.RECEIVED,
    PipelineState.VALIDATED,
    PipelineState.ADMITTED,
    PipelineState.FAILED,
    PipelineState.POLISHING,
    PipelineState.EVALUATED,
}


def _terminate(lifecycle: RequestLifecycle, note: str) -> None:
    if lifecycle.state == PipelineState.SUMMARIZING:
        lifecycle.advance(PipelineState.FAILED, note=note)
    if lifecycle.state in _DIRECT_TERMINAL:
        lifecycle.advance(PipelineState.FAILED_TERMINAL, note=note)


class SummarizerService:
    """Runs summarization requests end to end"""

    def __init__(
        self,
        cache: CacheManager,
        rate_limiter: RateLimiter,
        cost_optimizer: CostOptimizer,
        engine: SummarizationEngine,
        post_processor: PostProcessor,
        evaluator: EvaluationEngine,
        error_monitor: ErrorMonitor,
        session_factory: Optional[async_sessionmaker] = None,
        feedback_manager: Optional[FeedbackManager] = None,
        clock: Clock = utc_now,
    ):
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.cost_optimizer = cost_optimizer
        self.engine = engine
        self.post_processor = post_processor
        self.evaluator = evaluator
        self.error_monitor = error_monitor
        self.feedback_manager = feedback_manager
        self._session_factory = session_factory
        self._clock = clock

    @staticmethod
    def validate_input(text: str, user_id: str) -> None:
        if not user_id:
            raise AuthenticationError("Missing user id")
        if text is None or not text.strip():
            raise InputValidationError("Text is empty", details={"field": "text"})
        if len(text) > settings.MAX_INPUT_LENGTH:
            raise InputValidationError(
                f"Text length {len(text)} exceeds {settings.MAX_INPUT_LENGTH} characters",
                details={"field": "text", "max_length": settings.MAX_INPUT_LENGTH},
            )

    async def _admit(self, user_id: str, action: str) -> None:
        """Rate limit first, then monthly quota"""
        status = await self.rate_limiter.check_rate_limit(user_id, action)
        if not status.allowed:
            raise RateLimitError(
                f"Rate limit exceeded for {action}",
                details={
                    "reset_time": status.reset_time.isoformat(),
                    "blocked_until": status.blocked_until.isoformat() if status.blocked_until else None,
                    "remaining": 0,
                    "reason": "rate_limit",
                },
            )
        if action == "summarize":
            quota = await self.rate_limiter.get_quota_status(user_id, action)
            if quota.remaining <= 0:
                raise RateLimitError(
                    f"Monthly quota of {quota.monthly_limit} exhausted",
                    details={"reset_time": quota.reset_date.isoformat(), "remaining": 0, "reason": "quota"},
                )

    async def _store(self, user_id: str, text: str, cache_key: str, output: EngineOutput, summary: str,
                     config: SummarizationConfig, metrics: Dict[str, Any], confidence: float,
                     processing_time_ms: int) -> Optional[Dict[str, uuid.UUID]]:
        """Persist the document and summary rows; failures are logged only"""
        if self._session_factory is None:
            return None
        now = self._clock()
        document_id, summary_id = uuid.uuid4(), uuid.uuid4()
        try:
            async with self._session_factory() as db:
                db.add(Document(
                    id=document_id,
                    user_id=user_id,
                    original_text=text,
                    content_hash=cache_key.split(":")[-1],
                    status="completed",
                    doc_metadata={"length": len(text), "word_count": len(text.split())},
                    created_at=now,
                ))
                db.add(Summary(
                    id=summary_id,
                    document_id=document_id,
                    user_id=user_id,
                    summary_text=summary,
                    method=output.method,
                    config=config.model_dump(mode="json"),
                    metrics=metrics,
                    model_version=output.model_version,
                    processing_time=processing_time_ms,
                    confidence=confidence,
                    cache_key=cache_key,
                    created_at=now,
                ))
                await db.commit()
        except SQLAlchemyError as e:
            logger.error("Storing summary failed", user_id=user_id, cache_key=cache_key, error=str(e))
            return None
        return {"document_id": document_id, "summary_id": summary_id}

    async def summarize(
        self,
        text: str,
        config: SummarizationConfig,
        user_id: str,
        reference: Optional[str] = None,
    ) -> SummaryResult:
        """
        Summarise text for a user

        Args:
            text: input text (at most MAX_INPUT_LENGTH characters)
            config: summarization config
            user_id: authenticated caller
            reference: optional reference summary for ROUGE/BLEU

        Returns:
            SummaryResult; `cached` is True when served from the cache

        Raises:
            SummarizationError: classified failure with a correlation id
        """
        started = time.monotonic()
        lifecycle = RequestLifecycle(max_retries=max(0, self.engine.max_attempts - 1))
        log = logger.bind(user_id=user_id, request_id=lifecycle.request_id, mode=config.mode.value)
        admitted = False
        cancelled = False
        usage: Dict[str, Any] = {"status": "failed"}
        tokens_used = 0

        try:
            self.validate_input(text, user_id)
            lifecycle.advance(PipelineState.VALIDATED)

            cache_key = self.cache.generate_key(text, config)
            cached = await self.cache.get(cache_key)
            if cached is not None:
                lifecycle.advance(PipelineState.CACHE_HIT)
                lifecycle.advance(PipelineState.DONE)
                self.error_monitor.record_success()
                log.info("Summary served from cache", cache_key=cache_key)
                return cached.model_copy(update={"cached": True})

            await self._admit(user_id, "summarize")
            admitted = True
            lifecycle.advance(PipelineState.ADMITTED)

            tier = await self.rate_limiter.get_user_tier(user_id)
            optimized = self.cost_optimizer.optimize_input(text, config)
            tuned = self.cost_optimizer.optimize_parameters(config, optimized.optimized_length)
            selection = await self.cost_optimizer.select_model(tuned, optimized.optimized_length, tier)

            lifecycle.advance(PipelineState.SUMMARIZING)
            output = await self.engine.summarize(optimized.optimized_text, tuned, selection, lifecycle=lifecycle)
            tokens_used = output.tokens_used or math.ceil(len(optimized.optimized_text) / CHARS_PER_TOKEN)

            lifecycle.advance(PipelineState.POLISHING)
            summary = self.post_processor.process(output.summary, tuned)
            if not summary.strip():
                raise ProcessingError("Summary is empty after post-processing", details={"method": output.method})

            evaluation = self.evaluator.evaluate_summary(text, summary, reference)
            metrics = self.evaluator.build_summary_metrics(text, summary, reference, evaluation)
            confidence = self.evaluator.confidence(metrics)
            lifecycle.advance(PipelineState.EVALUATED)

            processing_time_ms = int((time.monotonic() - started) * 1000)
            ids = await self._store(user_id, text, cache_key, output, summary, config,
                                    metrics.model_dump(), confidence, processing_time_ms)

            result = SummaryResult(
                summary=summary,
                method=output.method,
                config=config,
                metrics=metrics,
                model_version=output.model_version,
                processing_time_ms=processing_time_ms,
                confidence=confidence,
                summary_id=str(ids["summary_id"]) if ids else None,
            )
            await self.cache.set(cache_key, result, self.cache.ttl_for(config))
            lifecycle.advance(PipelineState.DONE)
            self.error_monitor.record_success()

            usage = {
                "status": "completed",
                "method": output.method,
                "model_version": output.model_version,
                "provider": output.provider,
                "processing_time_ms": processing_time_ms,
                "truncated": optimized.truncated,
            }
            if ids:
                usage.update({"document_id": str(ids["document_id"]), "summary_id": str(ids["summary_id"])})
            log.info("Summary generated", method=output.method, model_version=output.model_version,
                     processing_time_ms=processing_time_ms, confidence=confidence, path=lifecycle.path())
            return result

        except asyncio.CancelledError:
            cancelled = True
            log.info("Summarization cancelled", state=lifecycle.state.value)
            raise
        except Exception as e:
            _terminate(lifecycle, type(e).__name__)
            error = await self.error_monitor.handle_error(
                e, {"operation": "summarize", "user_id": user_id, "state": lifecycle.state.value},
            )
            if error is e:
                raise
            raise error from e
        finally:
            if admitted and not cancelled:
                await self.rate_limiter.record_usage(UsageRecord(
                    user_id=user_id,
                    action="summarize",
                    tokens_used=tokens_used,
                    metadata=usage,
                ))

    async def submit_feedback(self, feedback: FeedbackData) -> None:
        """Admit and store a feedback submission"""
        if self.feedback_manager is None:
            raise ProcessingError("Feedback is not enabled")
        try:
            await self._admit(feedback.user_id, "feedback")
            await self.feedback_manager.collect_feedback(feedback)
        except Exception as e:
            error = await self.error_monitor.handle_error(
                e, {"operation": "feedback", "user_id": feedback.user_id},
            )
            if error is e:
                raise
            raise error from e
        await self.rate_limiter.record_usage(UsageRecord(
            user_id=feedback.user_id,
            action="feedback",
            metadata={"summary_id": feedback.summary_id, "rating": feedback.rating},
        ))

    async def get_quota(self, user_id: str) -> QuotaStatus:
        return await self.rate_limiter.get_quota_status(user_id, "summarize")
