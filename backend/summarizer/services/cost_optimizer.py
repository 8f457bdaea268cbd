"""
Cost optimizer - backend selection by tier and intent, and input trimming
"""
import math
import re
from typing import Tuple

import structlog
from sqlalchemy.exc import SQLAlchemyError

from summarizer.core.config import settings
from summarizer.schemas.summarization import (
    ModelSelection,
    OptimizedInput,
    QualityLevel,
    SummarizationConfig,
    SummaryLength,
    SummaryMode,
)
from summarizer.services.model_registry import ModelRegistry

logger = structlog.get_logger()

TRUNCATION_MARKER = "[...content truncated for efficiency...]"
HEAD_SHARE = 0.7
CHARS_PER_TOKEN = 4

QUALITY_MULTIPLIERS = {QualityLevel.PREMIUM: 0.8}
LENGTH_MULTIPLIERS = {SummaryLength.LONG: 0.9, SummaryLength.SHORT: 1.2}

BOILERPLATE_PATTERNS = [
    re.compile(r"disclaimer:.*", re.IGNORECASE),
    re.compile(r"terms of use:.*", re.IGNORECASE),
    re.compile(r"privacy policy:.*", re.IGNORECASE),
    re.compile(r"(?:copyright|©).*", re.IGNORECASE),
]

_SENTENCE_END_RE = re.compile(r"[.!?][\"')\]”’]?(?=\s|$)")


def _cut_at_sentence_end(segment: str) -> str:
    """Longest prefix of segment that ends on a sentence boundary"""
    last = None
    for last in _SENTENCE_END_RE.finditer(segment):
        pass
    if last is not None:
        return segment[:last.end()].rstrip()
    space = segment.rfind(" ")
    return (segment[:space] if space > 0 else segment).rstrip()


def _start_at_sentence_start(segment: str) -> str:
    """Longest suffix of segment that starts on a sentence boundary"""
    match = _SENTENCE_END_RE.search(segment)
    if match is not None and match.end() < len(segment):
        return segment[match.end():].lstrip()
    space = segment.find(" ")
    return (segment[space:] if space >= 0 else segment).lstrip()


class CostOptimizer:
    """Picks a backend and trims input before it is sent"""

    def __init__(self, registry: ModelRegistry):
        self.registry = registry

    @staticmethod
    def is_fast_route(config: SummarizationConfig, user_tier: str) -> bool:
        if user_tier == "free":
            return True
        return config.intent.value in settings.get_fast_intents()

    async def select_model(self, config: SummarizationConfig, text_length: int, user_tier: str) -> ModelSelection:
        """
        Choose the backend and model for a request

        Free users always get the fast backend; paid users get it for
        lightweight intents (grammar, simplify) and the quality backend
        otherwise. The registry's active variant is used when it is served
        by the chosen provider.

        Args:
            config: request config
            text_length: input length in characters
            user_tier: subscription tier

        Returns:
            ModelSelection
        """
        fast = self.is_fast_route(config, user_tier)
        if fast:
            provider, model_id, cost = settings.FAST_PROVIDER, settings.FAST_MODEL_ID, settings.FAST_MODEL_COST_PER_1K
            reasoning = "free tier" if user_tier == "free" else f"lightweight intent '{config.intent.value}'"
        else:
            provider, model_id, cost = settings.QUALITY_PROVIDER, settings.QUALITY_MODEL_ID, settings.QUALITY_MODEL_COST_PER_1K
            reasoning = f"{user_tier} tier, intent '{config.intent.value}'"

        try:
            variant = await self.registry.get_active_model(config.model_type)
        except SQLAlchemyError as e:
            logger.warning("Active model lookup failed, using default model", provider=provider, error=str(e))
            variant = None
        variant_id = version = None
        if variant is not None and variant.provider == provider:
            model_id, cost = variant.backend_model_id, variant.cost
            variant_id, version = variant.id, variant.version
            reasoning += f", registry variant {variant.version}"

        tokens = math.ceil(text_length / CHARS_PER_TOKEN)
        selection = ModelSelection(
            provider=provider,
            model_id=model_id,
            estimated_cost=round(tokens / 1000 * cost, 6),
            reasoning=f"{'fast' if fast else 'quality'} backend: {reasoning}",
            variant_id=variant_id,
            model_version=version,
        )
        logger.info("Model selected", provider=provider, model_id=model_id, tier=user_tier,
                    intent=config.intent.value, estimated_cost=selection.estimated_cost)
        return selection

    @staticmethod
    def max_length_for_config(config: SummarizationConfig) -> int:
        """Character budget for a mode after quality and length adjustments"""
        limit = settings.MODE_INPUT_LIMITS.get(config.mode.value, settings.MAX_INPUT_LENGTH)
        limit *= QUALITY_MULTIPLIERS.get(config.quality, 1.0)
        limit *= LENGTH_MULTIPLIERS.get(config.length, 1.0)
        return int(limit)

    @staticmethod
    def truncate(text: str, limit: int, mode: SummaryMode) -> Tuple[str, bool]:
        """
        Shorten text to about limit characters on sentence boundaries

        Abstractive input keeps its opening and closing (70% / 30%) around a
        gap marker; other modes keep the opening only.
        """
        if len(text) <= limit:
            return text, False
        if mode == SummaryMode.ABSTRACTIVE:
            head_budget = int(limit * HEAD_SHARE)
            tail_budget = max(0, limit - head_budget - len(TRUNCATION_MARKER))
            head = _cut_at_sentence_end(text[:head_budget])
            tail = _start_at_sentence_start(text[-tail_budget:]) if tail_budget else ""
            return f"{head}\n\n{TRUNCATION_MARKER}\n\n{tail}".strip(), True
        return _cut_at_sentence_end(text[:limit]), True

    @staticmethod
    def remove_boilerplate(text: str) -> str:
        for pattern in BOILERPLATE_PATTERNS:
            text = pattern.sub("", text)
        return text

    @staticmethod
    def compress_whitespace(text: str) -> str:
        lines = [" ".join(line.split()) for line in text.split("\n")]
        text = "\n".join(lines)
        return re.sub(r"\n{3,}", "\n\n", text).strip()

    def optimize_input(self, text: str, config: SummarizationConfig) -> OptimizedInput:
        """
        Truncate, strip boilerplate and compress whitespace, in that order

        Args:
            text: validated input text
            config: request config

        Returns:
            OptimizedInput with the savings in percent of characters
        """
        optimized, truncated = self.truncate(text, self.max_length_for_config(config), config.mode)
        optimized = self.remove_boilerplate(optimized)
        optimized = self.compress_whitespace(optimized)
        if not optimized:
            # Only boilerplate was found; keep the original rather than send nothing
            optimized = self.compress_whitespace(text)

        original_length = len(text)
        savings = (original_length - len(optimized)) / original_length * 100 if original_length else 0.0
        if truncated:
            logger.info("Input truncated", original_length=original_length, optimized_length=len(optimized),
                        mode=config.mode.value)
        return OptimizedInput(
            optimized_text=optimized,
            original_length=original_length,
            optimized_length=len(optimized),
            savings_percent=round(max(savings, 0.0), 2),
            truncated=truncated,
        )

    @staticmethod
    def optimize_parameters(config: SummarizationConfig, text_length: int) -> SummarizationConfig:
        """
        Cheaper generation parameters for a request

        Abstractive temperature is capped at 0.5 and max_length at 30% of
        the input's words (never below 10).
        """
        updates = {}
        if config.mode == SummaryMode.ABSTRACTIVE:
            updates["temperature"] = min(config.temperature if config.temperature is not None else 0.7, 0.5)
        if config.max_length:
            input_words = max(1, text_length // 5)
            updates["max_length"] = max(10, min(config.max_length, int(input_words * 0.3)))
            if config.min_length and config.min_length > updates["max_length"]:
                updates["min_length"] = updates["max_length"]
        return config.model_copy(update=updates) if updates else config
