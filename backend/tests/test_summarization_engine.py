"""
Summarization engine tests
"""
import asyncio
import uuid

import pytest
from tenacity import wait_none

from summarizer.core.config import settings
from summarizer.schemas.summarization import (
    Intent,
    ModelSelection,
    ModelType,
    ModelVariant,
    SummarizationConfig,
    SummaryLength,
    SummaryMode,
    Tone,
)
from summarizer.services.backends import BackendRegistry, GenerationParams, TextGenerationBackend
from summarizer.services.pipeline_state import PipelineState, RequestLifecycle
from summarizer.services.summarization_engine import LOCAL_EXTRACTIVE_VERSION, SummarizationEngine
from summarizer.services.text_processor import TextProcessor
from summarizer.utils.errors import ExternalAPIError, NetworkError, ProcessingError


def numbered_text(count: int) -> str:
    return " ".join(f"The system component number {i} handles task {i} efficiently." for i in range(count))


def selection(provider: str = "anthropic", variant_id=None, model_version=None) -> ModelSelection:
    return ModelSelection(
        provider=provider,
        model_id="test-model",
        estimated_cost=0.0,
        reasoning="test",
        variant_id=variant_id,
        model_version=model_version,
    )


def summarizing_lifecycle() -> RequestLifecycle:
    lifecycle = RequestLifecycle(max_retries=2)
    for state in (PipelineState.VALIDATED, PipelineState.ADMITTED, PipelineState.SUMMARIZING):
        lifecycle.advance(state)
    return lifecycle


@pytest.fixture
def engine(backends, registry):
    return SummarizationEngine(backends, registry, max_attempts=3, timeout=5, wait=wait_none())


class SlowBackend(TextGenerationBackend):
    provider = "anthropic"

    def __init__(self):
        self.calls = 0

    async def generate(self, prompt: str, model_id: str, params: GenerationParams):
        self.calls += 1
        await asyncio.sleep(1)


# ----------------------------------------------------------------------
# Extractive
# ----------------------------------------------------------------------

@pytest.mark.asyncio
@pytest.mark.parametrize("count,length,expected", [
    (10, SummaryLength.SHORT, 2),
    (10, SummaryLength.LONG, 5),
    (20, SummaryLength.MEDIUM, 6),
])
async def test_extractive_sentence_count(engine, count, length, expected):
    """Extractive summaries keep 20/30/50% of the sentences in document order"""
    text = numbered_text(count)
    config = SummarizationConfig(mode=SummaryMode.EXTRACTIVE, length=length)
    output = await engine.summarize(text, config, selection("local"))

    picked = TextProcessor.segment_sentences(output.summary)
    source = TextProcessor.segment_sentences(text)
    assert len(picked) == expected
    positions = [source.index(s) for s in picked]
    assert positions == sorted(positions)
    assert output.method == "extractive"
    assert output.model_version == LOCAL_EXTRACTIVE_VERSION


@pytest.mark.asyncio
async def test_extractive_custom_length(engine):
    config = SummarizationConfig(mode=SummaryMode.EXTRACTIVE, length=SummaryLength.CUSTOM, max_length=18)
    output = await engine.summarize(numbered_text(10), config, selection("local"))
    assert len(TextProcessor.segment_sentences(output.summary)) == 2


@pytest.mark.asyncio
async def test_extractive_text_without_sentences(engine):
    output = await engine.summarize("Too short", SummarizationConfig(), selection("local"))
    assert output.summary == "Too short"


@pytest.mark.asyncio
async def test_extractive_uses_registry_version(engine, registry):
    stored = await registry.register_model(ModelVariant(
        name="local", type=ModelType.EXTRACTIVE, provider="local", backend_model_id="tfidf-centroid",
    ), activate=True)
    output = await engine.summarize(numbered_text(10), SummarizationConfig(), selection("local"))
    assert output.model_version == stored.version


def test_focus_keywords_raise_matching_sentence(engine):
    text = numbered_text(5) + " The annual budget review covers every department."
    document = TextProcessor.process(text)
    plain = engine.score_sentences(document, SummarizationConfig())
    focused = engine.score_sentences(document, SummarizationConfig(focus_keywords=("budget",)))
    assert focused[5] - plain[5] == pytest.approx(0.075)
    assert focused[0] - plain[0] == pytest.approx(-0.075)


# ----------------------------------------------------------------------
# Backend modes
# ----------------------------------------------------------------------

@pytest.mark.asyncio
async def test_abstractive_prompt_and_params(engine, fake_backend, sample_text):
    fake_backend.response = "Companies increasingly automate document summaries."
    config = SummarizationConfig(mode=SummaryMode.ABSTRACTIVE, tone=Tone.FORMAL, focus_keywords=("market",))
    output = await engine.summarize(sample_text, config, selection(model_version="ANT-ABS-1"))

    assert output.summary == "Companies increasingly automate document summaries."
    assert output.method == "abstractive"
    assert output.provider == "anthropic"
    assert output.model_version == "ANT-ABS-1"
    assert output.tokens_used == 42

    call = fake_backend.calls[0]
    assert "formal" in call["prompt"]
    assert "Focus on: market." in call["prompt"]
    assert call["prompt"].endswith(sample_text)
    assert call["params"].max_tokens == 300


def test_custom_length_token_budget():
    config = SummarizationConfig(mode=SummaryMode.ABSTRACTIVE, length=SummaryLength.CUSTOM, max_length=400)
    params = SummarizationEngine.generation_params("short prompt", config)
    assert params.max_tokens == 600
    assert SummarizationEngine.generation_params("x" * 8000, SummarizationConfig(length=SummaryLength.SHORT)).max_tokens == 300


@pytest.mark.asyncio
async def test_intent_changes_instruction(engine, fake_backend, sample_text):
    config = SummarizationConfig(mode=SummaryMode.ABSTRACTIVE, intent=Intent.GRAMMAR)
    await engine.summarize(sample_text, config, selection())
    assert fake_backend.calls[0]["prompt"].startswith("Correct the grammar")


@pytest.mark.asyncio
async def test_paraphrase_prompt(engine, fake_backend, sample_text):
    output = await engine.summarize(sample_text, SummarizationConfig(mode=SummaryMode.PARAPHRASE), selection())
    assert output.method == "paraphrase"
    assert fake_backend.calls[0]["prompt"].startswith("Rewrite the following text in a more concise way")


@pytest.mark.asyncio
async def test_hybrid_short_input_summarises_the_extract(engine, fake_backend, sample_text):
    output = await engine.summarize(sample_text, SummarizationConfig(mode=SummaryMode.HYBRID), selection())
    assert output.method == "hybrid"
    assert len(fake_backend.calls) == 1
    body = fake_backend.calls[0]["prompt"].rsplit("\n\n", 1)[-1]
    extract = TextProcessor.segment_sentences(body)
    assert len(extract) == 3
    assert all(sentence in sample_text for sentence in extract)


@pytest.mark.asyncio
async def test_hybrid_long_input_is_hierarchical(engine, fake_backend):
    text = numbered_text(150)
    chunks = engine.chunk_sentences(TextProcessor.segment_sentences(text), settings.HYBRID_CHUNK_SIZE)
    assert len(chunks) > 1

    output = await engine.summarize(text, SummarizationConfig(mode=SummaryMode.HYBRID), selection())
    assert output.method == "hierarchical"
    assert len(fake_backend.calls) == len(chunks) + 1
    assert output.tokens_used == 42 * (len(chunks) + 1)


def test_chunks_are_sentence_aligned(engine):
    sentences = TextProcessor.segment_sentences(numbered_text(100))
    chunks = engine.chunk_sentences(sentences, 500)
    assert " ".join(chunks) == " ".join(sentences)
    assert all(chunk.endswith("efficiently.") for chunk in chunks)


# ----------------------------------------------------------------------
# Retry and fallback
# ----------------------------------------------------------------------

@pytest.mark.asyncio
async def test_transient_failures_are_retried(engine, fake_backend, sample_text):
    fake_backend.failures = [NetworkError("reset"), NetworkError("reset")]
    lifecycle = summarizing_lifecycle()
    output = await engine.summarize(
        sample_text, SummarizationConfig(mode=SummaryMode.ABSTRACTIVE), selection(), lifecycle=lifecycle,
    )
    assert output.method == "abstractive"
    assert len(fake_backend.calls) == 3
    assert lifecycle.retries == 2
    assert lifecycle.state == PipelineState.SUMMARIZING


@pytest.mark.asyncio
async def test_three_failures_degrade_to_extractive(engine, fake_backend, sample_text):
    """A backend failing every attempt ends in the extractive fallback"""
    fake_backend.always_fail = NetworkError("down")
    lifecycle = summarizing_lifecycle()
    output = await engine.summarize(
        sample_text, SummarizationConfig(mode=SummaryMode.ABSTRACTIVE), selection(), lifecycle=lifecycle,
    )
    assert output.method.endswith("(fallback)")
    assert output.method == "abstractive (fallback)"
    assert output.model_version == LOCAL_EXTRACTIVE_VERSION
    assert len(fake_backend.calls) == 3
    assert output.summary
    assert "fallback_backend" in lifecycle.path()
    assert lifecycle.state == PipelineState.SUMMARIZING


@pytest.mark.asyncio
async def test_non_retryable_error_is_not_retried(engine, fake_backend, sample_text):
    fake_backend.always_fail = ExternalAPIError("bad key", retryable=False)
    output = await engine.summarize(sample_text, SummarizationConfig(mode=SummaryMode.ABSTRACTIVE), selection())
    assert len(fake_backend.calls) == 1
    assert output.method == "abstractive (fallback)"


@pytest.mark.asyncio
async def test_processing_errors_retry_once_and_skip_registry(engine, fake_backend, registry, sample_text):
    await registry.register_model(ModelVariant(
        name="spare", type=ModelType.ABSTRACTIVE, provider="cloudflare", backend_model_id="@cf/spare",
    ))
    fake_backend.always_fail = ProcessingError("malformed response")
    output = await engine.summarize(sample_text, SummarizationConfig(mode=SummaryMode.ABSTRACTIVE), selection())
    assert len(fake_backend.calls) == 2
    assert output.method == "abstractive (fallback)"
    assert await registry.get_active_model(ModelType.ABSTRACTIVE) is None


@pytest.mark.asyncio
async def test_unexpected_exceptions_become_processing_errors(engine, fake_backend, sample_text):
    fake_backend.always_fail = ValueError("unexpected payload")
    output = await engine.summarize(sample_text, SummarizationConfig(mode=SummaryMode.PARAPHRASE), selection())
    assert len(fake_backend.calls) == 2
    assert output.method == "paraphrase (fallback)"


@pytest.mark.asyncio
async def test_timeouts_count_as_network_failures(registry, sample_text):
    slow = SlowBackend()
    engine = SummarizationEngine(BackendRegistry({"anthropic": slow}), registry,
                                 max_attempts=3, timeout=0.01, wait=wait_none())
    output = await engine.summarize(sample_text, SummarizationConfig(mode=SummaryMode.ABSTRACTIVE), selection())
    assert slow.calls == 3
    assert output.method == "abstractive (fallback)"


@pytest.mark.asyncio
async def test_registry_fallback_model_is_tried(engine, registry, fake_backend, backends, clock, sample_text):
    previous = await registry.register_model(ModelVariant(
        name="previous", type=ModelType.ABSTRACTIVE, provider="cloudflare", backend_model_id="@cf/previous",
    ), activate=True)
    clock.advance(10)
    current = await registry.register_model(ModelVariant(
        name="current", type=ModelType.ABSTRACTIVE, provider="anthropic", backend_model_id="claude-current",
    ), activate=True)

    fake_backend.always_fail = NetworkError("down")
    cloudflare = backends.get("cloudflare")
    cloudflare.response = "Summary from the previous model."
    lifecycle = summarizing_lifecycle()

    output = await engine.summarize(
        sample_text,
        SummarizationConfig(mode=SummaryMode.ABSTRACTIVE),
        selection(variant_id=current.id, model_version=current.version),
        lifecycle=lifecycle,
    )
    assert output.summary == "Summary from the previous model."
    assert output.method == "abstractive"
    assert output.model_version == previous.version
    assert output.provider == "cloudflare"
    assert cloudflare.calls[0]["model_id"] == "@cf/previous"
    assert (await registry.get_active_model(ModelType.ABSTRACTIVE)).id == previous.id
    assert (await registry.get_model(current.id)).metrics["error_rate"] == 1.0
    assert "fallback_backend" in lifecycle.path()


@pytest.mark.asyncio
async def test_unknown_provider_degrades(engine, sample_text):
    output = await engine.summarize(
        sample_text, SummarizationConfig(mode=SummaryMode.ABSTRACTIVE), selection(provider="missing"),
    )
    assert output.method == "abstractive (fallback)"


# ----------------------------------------------------------------------
# Registry outages
# ----------------------------------------------------------------------

@pytest.fixture
def offline_engine(backends, offline_registry):
    return SummarizationEngine(backends, offline_registry, max_attempts=3, timeout=5, wait=wait_none())


@pytest.mark.asyncio
async def test_extractive_without_registry(offline_engine, sample_text):
    output = await offline_engine.summarize(sample_text, SummarizationConfig(), selection("local"))
    assert output.summary
    assert output.model_version == LOCAL_EXTRACTIVE_VERSION


@pytest.mark.asyncio
async def test_backend_result_survives_metrics_write_failure(offline_engine, fake_backend, sample_text):
    """A paid backend answer is returned even when its metrics cannot be stored"""
    fake_backend.response = "Companies automate document summaries."
    output = await offline_engine.summarize(
        sample_text,
        SummarizationConfig(mode=SummaryMode.ABSTRACTIVE),
        selection(variant_id=str(uuid.uuid4()), model_version="ANT-ABS-1"),
    )
    assert output.summary == "Companies automate document summaries."
    assert output.method == "abstractive"
    assert len(fake_backend.calls) == 1


@pytest.mark.asyncio
async def test_fallback_lookup_failure_degrades_to_extractive(offline_engine, fake_backend, sample_text):
    fake_backend.always_fail = NetworkError("down")
    lifecycle = summarizing_lifecycle()
    output = await offline_engine.summarize(
        sample_text,
        SummarizationConfig(mode=SummaryMode.ABSTRACTIVE),
        selection(variant_id=str(uuid.uuid4())),
        lifecycle=lifecycle,
    )
    assert output.method == "abstractive (fallback)"
    assert output.model_version == LOCAL_EXTRACTIVE_VERSION
    assert len(fake_backend.calls) == 3
    assert lifecycle.state == PipelineState.SUMMARIZING
