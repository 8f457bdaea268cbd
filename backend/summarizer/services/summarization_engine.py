"""
Summarization engine
Local extractive scoring plus backend-driven abstractive, hybrid and
paraphrase modes with retry, registry fallback and extractive degrade.
"""
import asyncio
import math
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

import numpy as np
import structlog
from sqlalchemy.exc import SQLAlchemyError
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, wait_exponential_jitter

from summarizer.core.config import settings
from summarizer.schemas.summarization import (
    Intent,
    ModelSelection,
    ModelType,
    ProcessedDocument,
    SummarizationConfig,
    SummaryLength,
    SummaryMode,
    Tone,
)
from summarizer.services.backends import BackendRegistry, GenerationParams, GenerationResult, TextGenerationBackend
from summarizer.services.model_registry import ModelRegistry
from summarizer.services.pipeline_state import PipelineState, RequestLifecycle
from summarizer.services.text_processor import TextProcessor, cosine
from summarizer.utils.errors import ErrorKind, NetworkError, ProcessingError, SummarizationError

logger = structlog.get_logger()

LOCAL_EXTRACTIVE_VERSION = "LOC-EXT-1.0"

SCORE_WEIGHTS = {
    "similarity": 0.35,
    "position": 0.25,
    "length": 0.15,
    "keyword": 0.15,
    "entity": 0.10,
}

LENGTH_RATIOS = {
    SummaryLength.SHORT: 0.2,
    SummaryLength.MEDIUM: 0.3,
    SummaryLength.LONG: 0.5,
}

MAX_TOKENS = {
    SummaryLength.SHORT: 150,
    SummaryLength.MEDIUM: 300,
    SummaryLength.LONG: 500,
}

LENGTH_INSTRUCTIONS = {
    SummaryLength.SHORT: "Keep it brief, about 50-100 words.",
    SummaryLength.MEDIUM: "Aim for about 100-200 words.",
    SummaryLength.LONG: "Be thorough, about 200-400 words.",
}

TONE_INSTRUCTIONS = {
    Tone.FORMAL: "Use a formal, professional tone.",
    Tone.CASUAL: "Use a casual, conversational tone.",
    Tone.ACADEMIC: "Use an academic tone with precise terminology.",
    Tone.SIMPLE: "Use simple words and short sentences.",
    Tone.NEUTRAL: "Use a neutral, objective tone.",
}

INTENT_INSTRUCTIONS = {
    Intent.SUMMARIZE: "Summarize the following text, keeping the main points and key facts.",
    Intent.GRAMMAR: "Correct the grammar, spelling and punctuation of the following text without changing its meaning.",
    Intent.SIMPLIFY: "Rewrite the following text in plain language that is easy to understand.",
    Intent.HUMANIZE: "Rewrite the following text so that it reads naturally, as a person would write it.",
    Intent.EXPAND: "Expand the following text with additional explanation and detail while keeping its meaning.",
}

PARAPHRASE_INSTRUCTION = (
    "Rewrite the following text in a more concise way while preserving all key information. "
    "Do not add facts that are not in the text."
)

SYSTEM_PROMPT = "You are a careful editor. Only use information contained in the provided text."

# (backend, model_id, attempts) -> generated text
Producer = Callable[[TextGenerationBackend, str, int], Awaitable[GenerationResult]]


@dataclass(frozen=True)
class EngineOutput:
    summary: str
    method: str
    model_version: str
    provider: str
    tokens_used: int = 0


def target_sentence_count(sentence_count: int, config: SummarizationConfig,
                          avg_words: float, length: Optional[SummaryLength] = None) -> int:
    """
    Number of sentences to extract

    short/medium/long keep 20%/30%/50% (rounded up); custom keeps enough
    sentences to reach max_length words at the document's average sentence
    length. Always between 1 and sentence_count.
    """
    if sentence_count <= 0:
        return 0
    length = length or config.length
    if length == SummaryLength.CUSTOM:
        words_per_sentence = avg_words if avg_words > 0 else 15.0
        target = math.ceil((config.max_length or 0) / words_per_sentence)
    else:
        target = math.ceil(round(sentence_count * LENGTH_RATIOS[length], 6))
    return max(1, min(sentence_count, target))


def _retryable(exc: BaseException) -> bool:
    return isinstance(exc, SummarizationError) and exc.retryable


class SummarizationEngine:
    """Produces raw summaries for a config and a selected backend"""

    def __init__(
        self,
        backends: BackendRegistry,
        registry: ModelRegistry,
        max_attempts: Optional[int] = None,
        timeout: Optional[float] = None,
        wait=None,
    ):
        """
        Args:
            backends: provider -> backend lookup
            registry: model registry used for fallback and metric updates
            max_attempts: attempts per backend call before falling back
            timeout: per-attempt timeout in seconds
            wait: tenacity wait strategy, exponential backoff with jitter by default
        """
        self.backends = backends
        self.registry = registry
        self.max_attempts = max_attempts or settings.BACKEND_MAX_ATTEMPTS
        self.timeout = timeout or settings.BACKEND_TIMEOUT_SECONDS
        self.wait = wait if wait is not None else wait_exponential_jitter(
            initial=settings.BACKEND_RETRY_BASE_DELAY,
            max=settings.BACKEND_RETRY_MAX_DELAY,
            jitter=settings.BACKEND_RETRY_JITTER,
        )

    # ------------------------------------------------------------------
    # Extractive
    # ------------------------------------------------------------------

    @staticmethod
    def score_sentences(document: ProcessedDocument, config: SummarizationConfig) -> List[float]:
        """Weighted sentence scores, one per sentence"""
        sentences = document.sentences
        n = len(sentences)
        embeddings = document.embeddings
        centroid = None
        if embeddings is not None and embeddings.ndim == 2 and embeddings.shape[0] == n and embeddings.shape[1] > 0:
            centroid = np.asarray(embeddings).mean(axis=0)

        keywords = [k.lower() for k in config.focus_keywords]
        entity_texts = [e.text for e in document.entities]
        avg = document.avg_sentence_length

        scores = []
        for i, sentence in enumerate(sentences):
            similarity = cosine(embeddings[i], centroid) if centroid is not None else 0.5

            position = math.exp(-i / (n * 0.3))
            if i > 0.8 * n:
                position += 0.2
            position = min(position, 1.0)

            words = len(sentence.split())
            length = math.exp(-((words - avg) ** 2) / 50)

            lowered = sentence.lower()
            if keywords:
                keyword = sum(1 for k in keywords if k in lowered) / len(keywords)
            else:
                keyword = 0.5

            entity_hits = sum(1 for text in entity_texts if text in sentence)
            entity = min(1.0, entity_hits / words) if words else 0.0

            scores.append(
                SCORE_WEIGHTS["similarity"] * similarity
                + SCORE_WEIGHTS["position"] * position
                + SCORE_WEIGHTS["length"] * length
                + SCORE_WEIGHTS["keyword"] * keyword
                + SCORE_WEIGHTS["entity"] * entity
            )
        return scores

    def extractive(self, document: ProcessedDocument, config: SummarizationConfig,
                   length: Optional[SummaryLength] = None) -> str:
        """
        Pick the top-scoring sentences and return them in document order

        Args:
            document: processed input
            config: request config (focus keywords, custom max_length)
            length: overrides config.length

        Returns:
            extracted summary text
        """
        sentences = document.sentences
        if not sentences:
            return ""
        k = target_sentence_count(len(sentences), config, document.avg_sentence_length, length)
        scores = self.score_sentences(document, config)
        ranked = sorted(range(len(sentences)), key=lambda i: (-scores[i], i))
        chosen = sorted(ranked[:k])
        return " ".join(sentences[i] for i in chosen)

    async def _extractive_version(self) -> str:
        try:
            variant = await self.registry.get_active_model(ModelType.EXTRACTIVE)
        except SQLAlchemyError as e:
            logger.warning("Extractive version lookup failed", error=str(e))
            return LOCAL_EXTRACTIVE_VERSION
        return variant.version if variant else LOCAL_EXTRACTIVE_VERSION

    # ------------------------------------------------------------------
    # Backend calls
    # ------------------------------------------------------------------

    @staticmethod
    def build_prompt(text: str, config: SummarizationConfig, paraphrase: bool = False,
                     length: Optional[SummaryLength] = None) -> str:
        length = length or config.length
        parts = [PARAPHRASE_INSTRUCTION if paraphrase else INTENT_INSTRUCTIONS[config.intent]]
        parts.append(TONE_INSTRUCTIONS[config.tone])
        if length == SummaryLength.CUSTOM:
            parts.append(f"Use approximately {config.max_length} words.")
        else:
            parts.append(LENGTH_INSTRUCTIONS[length])
        if config.focus_keywords:
            parts.append(f"Focus on: {', '.join(config.focus_keywords)}.")
        parts.append("Return only the rewritten text.")
        return " ".join(parts) + "\n\n" + text

    @staticmethod
    def generation_params(prompt: str, config: SummarizationConfig,
                          length: Optional[SummaryLength] = None) -> GenerationParams:
        length = length or config.length
        if length == SummaryLength.CUSTOM:
            base = max(300, int((config.max_length or 200) * 1.5))
        else:
            base = MAX_TOKENS[length]
        scale = max(1.0, min(2.0, len(prompt) / 4 / 1000))
        return GenerationParams(
            max_tokens=int(base * scale),
            temperature=config.temperature if config.temperature is not None else 0.7,
            system_prompt=SYSTEM_PROMPT,
        )

    async def _call(self, backend: TextGenerationBackend, prompt: str, model_id: str,
                    params: GenerationParams) -> GenerationResult:
        """One bounded backend attempt"""
        try:
            return await asyncio.wait_for(backend.generate(prompt, model_id, params), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise NetworkError(f"{backend.provider} call timed out after {self.timeout}s",
                               details={"provider": backend.provider}) from e
        except SummarizationError:
            raise
        except Exception as e:
            raise ProcessingError(f"{backend.provider} call failed: {e}",
                                  details={"provider": backend.provider}) from e

    def _stop(self, attempts: int):
        def stop(retry_state: RetryCallState) -> bool:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            # processing errors get a single retry
            if isinstance(exc, SummarizationError) and exc.kind == ErrorKind.PROCESSING:
                return retry_state.attempt_number >= min(2, attempts)
            return retry_state.attempt_number >= attempts
        return stop

    async def generate(self, backend: TextGenerationBackend, prompt: str, model_id: str,
                       params: GenerationParams, attempts: Optional[int] = None,
                       lifecycle: Optional[RequestLifecycle] = None) -> GenerationResult:
        """
        Call a backend with retries

        Retryable errors are retried with exponential backoff and jitter up
        to `attempts` times; processing errors once.
        """
        attempts = attempts or self.max_attempts

        def before_sleep(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception()
            logger.warning("Backend call failed, retrying", provider=backend.provider, model_id=model_id,
                           attempt=retry_state.attempt_number, error=str(exc))
            if lifecycle is not None:
                lifecycle.advance(PipelineState.RETRYING, note=f"attempt {retry_state.attempt_number + 1}")
                lifecycle.advance(PipelineState.SUMMARIZING)

        async for attempt in AsyncRetrying(
            stop=self._stop(attempts),
            wait=self.wait,
            retry=retry_if_exception(_retryable),
            before_sleep=before_sleep,
            reraise=True,
        ):
            with attempt:
                try:
                    result = await self._call(backend, prompt, model_id, params)
                except SummarizationError:
                    if lifecycle is not None:
                        lifecycle.advance(PipelineState.FAILED)
                    raise
        return result

    async def _gather(self, coroutines: Sequence[Awaitable]) -> list:
        tasks = [asyncio.ensure_future(c) for c in coroutines]
        try:
            return await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            raise

    def _producer(self, text: str, config: SummarizationConfig,
                  lifecycle: Optional[RequestLifecycle]) -> Producer:
        """Backend work for a non-extractive mode"""

        async def produce(backend: TextGenerationBackend, model_id: str, attempts: int) -> GenerationResult:
            if config.mode == SummaryMode.PARAPHRASE:
                prompt = self.build_prompt(text, config, paraphrase=True)
                return await self.generate(backend, prompt, model_id,
                                           self.generation_params(prompt, config), attempts, lifecycle)

            if config.mode == SummaryMode.HYBRID:
                if len(text) > settings.HYBRID_CHUNK_THRESHOLD:
                    return await self._hierarchical(backend, model_id, text, config, attempts, lifecycle)
                document = TextProcessor.process(text)
                extract = self.extractive(document, config, length=SummaryLength.MEDIUM) or text
                prompt = self.build_prompt(extract, config)
                return await self.generate(backend, prompt, model_id,
                                           self.generation_params(prompt, config), attempts, lifecycle)

            prompt = self.build_prompt(text, config)
            return await self.generate(backend, prompt, model_id,
                                       self.generation_params(prompt, config), attempts, lifecycle)

        return produce

    @staticmethod
    def chunk_sentences(sentences: Sequence[str], chunk_size: int) -> List[str]:
        """Group sentences into chunks of about chunk_size characters"""
        chunks: List[str] = []
        current: List[str] = []
        size = 0
        for sentence in sentences:
            if current and size + len(sentence) > chunk_size:
                chunks.append(" ".join(current))
                current, size = [], 0
            current.append(sentence)
            size += len(sentence) + 1
        if current:
            chunks.append(" ".join(current))
        return chunks

    async def _hierarchical(self, backend: TextGenerationBackend, model_id: str, text: str,
                            config: SummarizationConfig, attempts: int,
                            lifecycle: Optional[RequestLifecycle]) -> GenerationResult:
        """Summarise chunks concurrently, then summarise the joined partials"""
        chunks = self.chunk_sentences(TextProcessor.segment_sentences(text), settings.HYBRID_CHUNK_SIZE)
        logger.info("Hierarchical summarization", chunks=len(chunks), text_length=len(text))

        def chunk_call(chunk: str):
            prompt = self.build_prompt(chunk, config, length=SummaryLength.SHORT)
            return self.generate(backend, prompt, model_id,
                                 self.generation_params(prompt, config, length=SummaryLength.SHORT), attempts)

        partials = await self._gather([chunk_call(chunk) for chunk in chunks])
        combined = " ".join(p.text for p in partials)
        prompt = self.build_prompt(combined, config)
        final = await self.generate(backend, prompt, model_id, self.generation_params(prompt, config),
                                    attempts, lifecycle)
        return GenerationResult(
            text=final.text,
            model_id=model_id,
            tokens_used=final.tokens_used + sum(p.tokens_used for p in partials),
        )

    async def _record_outcome(self, variant_id: Optional[str], ok: bool, started: float) -> None:
        if not variant_id:
            return
        observed: Dict[str, float] = {"error_rate": 0.0 if ok else 1.0}
        if ok:
            observed["latency_ms"] = (time.monotonic() - started) * 1000
        try:
            await self.registry.update_metrics(variant_id, observed)
        except SQLAlchemyError as e:
            logger.warning("Model metrics update skipped", model_id=variant_id, error=str(e))

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def summarize(
        self,
        text: str,
        config: SummarizationConfig,
        selection: ModelSelection,
        document: Optional[ProcessedDocument] = None,
        lifecycle: Optional[RequestLifecycle] = None,
    ) -> EngineOutput:
        """
        Summarise text with the selected backend

        Args:
            text: optimised input text
            config: request config (generation parameters may be tuned)
            selection: provider and model chosen by the cost optimizer
            document: pre-processed text, computed when omitted
            lifecycle: request state machine, advanced on failures

        Returns:
            EngineOutput; `method` ends with "(fallback)" when the backend
            path was abandoned for local extraction
        """
        if config.mode == SummaryMode.EXTRACTIVE:
            document = document or TextProcessor.process(text)
            summary = self.extractive(document, config) or text.strip()
            return EngineOutput(summary=summary, method=SummaryMode.EXTRACTIVE.value,
                                model_version=await self._extractive_version(), provider="local")

        produce = self._producer(text, config, lifecycle)
        method = config.mode.value
        if config.mode == SummaryMode.HYBRID and len(text) > settings.HYBRID_CHUNK_THRESHOLD:
            method = "hierarchical"

        started = time.monotonic()
        try:
            backend = self.backends.get(selection.provider)
            result = await produce(backend, selection.model_id, self.max_attempts)
            await self._record_outcome(selection.variant_id, True, started)
            return EngineOutput(summary=result.text, method=method,
                                model_version=selection.model_version or selection.model_id,
                                provider=selection.provider, tokens_used=result.tokens_used)
        except SummarizationError as e:
            error = e
            logger.error("Backend summarization failed", provider=selection.provider, model_id=selection.model_id,
                         error_type=e.kind.value, error=e.message)
            await self._record_outcome(selection.variant_id, False, started)

        if lifecycle is not None and lifecycle.state != PipelineState.FAILED:
            lifecycle.advance(PipelineState.FAILED, note=error.kind.value)

        if error.kind != ErrorKind.PROCESSING:
            try:
                fallback = await self.registry.fallback_model(selection.variant_id, config.model_type)
            except SQLAlchemyError as e:
                logger.error("Fallback model lookup failed", failed_id=selection.variant_id, error=str(e))
                fallback = None
            if fallback is not None:
                if lifecycle is not None:
                    lifecycle.advance(PipelineState.FALLBACK_BACKEND, note=fallback.version)
                    lifecycle.advance(PipelineState.SUMMARIZING)
                started = time.monotonic()
                try:
                    backend = self.backends.get(fallback.provider)
                    result = await produce(backend, fallback.backend_model_id, 1)
                    await self._record_outcome(fallback.id, True, started)
                    return EngineOutput(summary=result.text, method=method, model_version=fallback.version,
                                        provider=fallback.provider, tokens_used=result.tokens_used)
                except SummarizationError as e:
                    logger.error("Fallback model failed", fallback_id=fallback.id, error_type=e.kind.value,
                                 error=e.message)
                    await self._record_outcome(fallback.id, False, started)
                    if lifecycle is not None and lifecycle.state != PipelineState.FAILED:
                        lifecycle.advance(PipelineState.FAILED, note=e.kind.value)

        if lifecycle is not None:
            lifecycle.advance(PipelineState.FALLBACK_BACKEND, note="local extractive")
            lifecycle.advance(PipelineState.SUMMARIZING)
        document = TextProcessor.process(text)
        summary = self.extractive(document, config) or text.strip()
        logger.warning("Degraded to extractive summarization", mode=config.mode.value)
        return EngineOutput(summary=summary, method=f"{config.mode.value} (fallback)",
                            model_version=await self._extractive_version(), provider="local")
