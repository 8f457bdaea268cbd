"""
Summarization pipeline tests
"""
import asyncio

import pytest
from sqlalchemy import func, select
from tenacity import wait_none

from summarizer.core.config import settings
from summarizer.core.container import ServiceContainer
from summarizer.models.document import Summary
from summarizer.models.error_log import ErrorLog
from summarizer.models.usage import UsageLog, UserProfile
from summarizer.schemas.summarization import FeedbackData, SummarizationConfig, SummaryMode
from summarizer.services.backends import BackendRegistry, GenerationParams, TextGenerationBackend
from summarizer.services.summarization_engine import SummarizationEngine
from summarizer.utils.errors import (
    AuthenticationError,
    ErrorKind,
    InputValidationError,
    ProcessingError,
    RateLimitError,
)


class HangingBackend(TextGenerationBackend):
    provider = "cloudflare"

    def __init__(self):
        self.entered = asyncio.Event()

    async def generate(self, prompt: str, model_id: str, params: GenerationParams):
        self.entered.set()
        await asyncio.Event().wait()


def build_container(session_factory, backends, memory_cache, dispatcher, registry, clock):
    engine = SummarizationEngine(backends, registry, max_attempts=3, timeout=30, wait=wait_none())
    return ServiceContainer.build(
        session_factory=session_factory,
        backends=backends,
        cache=memory_cache,
        dispatcher=dispatcher,
        engine=engine,
        clock=clock,
    )


@pytest.fixture
def services(session_factory, backends, memory_cache, dispatcher, registry, clock):
    return build_container(session_factory, backends, memory_cache, dispatcher, registry, clock)


async def usage_rows(session_factory, action="summarize"):
    async with session_factory() as db:
        result = await db.execute(select(UsageLog).where(UsageLog.action == action))
        return list(result.scalars().all())


@pytest.mark.asyncio
async def test_extractive_request_end_to_end(services, session_factory, sample_text):
    result = await services.summarizer.summarize(sample_text, SummarizationConfig(), "user-1")

    assert result.method == "extractive"
    assert result.summary
    assert not result.cached
    assert 0.0 <= result.confidence <= 1.0
    assert result.metrics.compression_ratio < 1.0
    assert result.summary_id

    async with session_factory() as db:
        stored = (await db.execute(select(Summary))).scalars().one()
    assert str(stored.id) == result.summary_id
    assert stored.summary_text == result.summary

    rows = await usage_rows(session_factory)
    assert len(rows) == 1
    assert rows[0].usage_metadata["status"] == "completed"
    assert str(rows[0].summary_id) == result.summary_id


@pytest.mark.asyncio
async def test_repeat_request_is_served_from_cache(services, session_factory, sample_text):
    """A cache hit skips admission and is not recorded as usage"""
    first = await services.summarizer.summarize(sample_text, SummarizationConfig(), "user-1")
    second = await services.summarizer.summarize(sample_text, SummarizationConfig(), "user-1")

    assert second.cached
    assert second.summary == first.summary
    assert len(await usage_rows(session_factory)) == 1


@pytest.mark.asyncio
async def test_free_tier_abstractive_uses_fast_backend(services, backends, session_factory, sample_text):
    config = SummarizationConfig(mode=SummaryMode.ABSTRACTIVE)
    result = await services.summarizer.summarize(sample_text, config, "user-1")

    cloudflare = backends.get("cloudflare")
    assert len(cloudflare.calls) == 1
    assert result.method == "abstractive"
    assert result.model_version == settings.FAST_MODEL_ID
    assert result.config == config

    rows = await usage_rows(session_factory)
    assert rows[0].tokens_used == 42
    assert rows[0].usage_metadata["provider"] == "cloudflare"


@pytest.mark.asyncio
@pytest.mark.parametrize("text", ["", "   "])
async def test_empty_text_is_rejected(services, session_factory, text):
    with pytest.raises(InputValidationError) as exc_info:
        await services.summarizer.summarize(text, SummarizationConfig(), "user-1")
    assert exc_info.value.correlation_id
    assert await usage_rows(session_factory) == []


@pytest.mark.asyncio
async def test_text_over_limit_is_rejected(services):
    text = "word " * (settings.MAX_INPUT_LENGTH // 5 + 1)
    with pytest.raises(InputValidationError) as exc_info:
        await services.summarizer.summarize(text, SummarizationConfig(), "user-1")
    assert exc_info.value.to_dict()["error_details"]["max_length"] == settings.MAX_INPUT_LENGTH


@pytest.mark.asyncio
async def test_missing_user_is_rejected(services, sample_text):
    with pytest.raises(AuthenticationError):
        await services.summarizer.summarize(sample_text, SummarizationConfig(), "")


@pytest.mark.asyncio
async def test_rate_limit_blocks_after_window_is_full(services, session_factory, sample_text):
    limit = settings.RATE_LIMITS["summarize"]["max_requests"]
    for i in range(limit):
        await services.summarizer.summarize(f"{sample_text} Request number {i} is unique.",
                                            SummarizationConfig(), "user-1")

    with pytest.raises(RateLimitError) as exc_info:
        await services.summarizer.summarize(f"{sample_text} One request too many.", SummarizationConfig(), "user-1")
    details = exc_info.value.to_dict()["error_details"]
    assert details["reason"] == "rate_limit"
    assert details["blocked_until"]
    assert len(await usage_rows(session_factory)) == limit


@pytest.mark.asyncio
async def test_quota_exhaustion(services, session_factory, clock, sample_text):
    async with session_factory() as db:
        db.add(UserProfile(user_id="user-1", tier="pro", monthly_quota=1, created_at=clock()))
        await db.commit()

    await services.summarizer.summarize(sample_text, SummarizationConfig(), "user-1")
    with pytest.raises(RateLimitError) as exc_info:
        await services.summarizer.summarize(f"{sample_text} Another one.", SummarizationConfig(), "user-1")
    assert exc_info.value.to_dict()["error_details"]["reason"] == "quota"

    quota = await services.summarizer.get_quota("user-1")
    assert quota.monthly_usage == 1
    assert quota.remaining == 0


@pytest.mark.asyncio
async def test_failed_request_is_recorded_once(services, backends, session_factory, sample_text):
    backends.get("cloudflare").response = ""
    with pytest.raises(ProcessingError) as exc_info:
        await services.summarizer.summarize(sample_text, SummarizationConfig(mode=SummaryMode.ABSTRACTIVE), "user-1")

    error = exc_info.value
    assert error.correlation_id
    rows = await usage_rows(session_factory)
    assert len(rows) == 1
    assert rows[0].usage_metadata == {"status": "failed"}

    async with session_factory() as db:
        logged = await db.scalar(select(func.count(ErrorLog.id)).where(ErrorLog.correlation_id == error.correlation_id))
    assert logged == 1
    assert services.error_monitor.get_error_stats()["by_type"] == {ErrorKind.PROCESSING.value: 1}


@pytest.mark.asyncio
async def test_cancelled_request_records_nothing(session_factory, memory_cache, dispatcher, registry, clock,
                                                 sample_text):
    hanging = HangingBackend()
    backends = BackendRegistry({"cloudflare": hanging})
    services = build_container(session_factory, backends, memory_cache, dispatcher, registry, clock)

    task = asyncio.create_task(services.summarizer.summarize(
        sample_text, SummarizationConfig(mode=SummaryMode.ABSTRACTIVE), "user-1",
    ))
    await asyncio.wait_for(hanging.entered.wait(), timeout=5)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert await usage_rows(session_factory) == []
    assert services.error_monitor.get_error_stats()["total_errors"] == 0


@pytest.mark.asyncio
async def test_feedback_on_generated_summary(services, session_factory, dispatcher, sample_text):
    result = await services.summarizer.summarize(sample_text, SummarizationConfig(), "user-1")
    await services.summarizer.submit_feedback(FeedbackData(
        summary_id=result.summary_id, user_id="user-1", rating=1, feedback_type="incomplete",
    ))

    assert dispatcher.names() == ["store_retraining_example"]
    assert dispatcher.sent[0][1]["source_text"] == sample_text
    assert len(await usage_rows(session_factory, "feedback")) == 1


@pytest.mark.asyncio
async def test_feedback_with_bad_summary_id(services):
    with pytest.raises(InputValidationError) as exc_info:
        await services.summarizer.submit_feedback(FeedbackData(summary_id="nope", user_id="user-1", rating=3))
    assert exc_info.value.correlation_id


@pytest.mark.asyncio
@pytest.mark.parametrize("mode,method", [
    (SummaryMode.EXTRACTIVE, "extractive"),
    (SummaryMode.ABSTRACTIVE, "abstractive"),
])
async def test_database_outage_still_summarises(unavailable_db, offline_registry, backends, memory_cache,
                                                dispatcher, clock, sample_text, mode, method):
    """Admission and the registry fail open, so requests are served without a database"""
    services = build_container(unavailable_db, backends, memory_cache, dispatcher, offline_registry, clock)
    result = await services.summarizer.summarize(sample_text, SummarizationConfig(mode=mode), "user-1")

    assert result.method == method
    assert result.summary
    assert result.summary_id is None
    assert services.error_monitor.get_error_stats()["total_errors"] == 0
