"""
Summarization domain types
"""
import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from summarizer.core.config import settings
from summarizer.utils.errors import InputValidationError


class SummaryMode(str, Enum):
    EXTRACTIVE = "extractive"
    ABSTRACTIVE = "abstractive"
    HYBRID = "hybrid"
    PARAPHRASE = "paraphrase"


class QualityLevel(str, Enum):
    STANDARD = "standard"
    PREMIUM = "premium"
    CREATIVE = "creative"


class Tone(str, Enum):
    FORMAL = "formal"
    CASUAL = "casual"
    ACADEMIC = "academic"
    SIMPLE = "simple"
    NEUTRAL = "neutral"


class SummaryLength(str, Enum):
    SHORT = "short"
    MEDIUM = "medium"
    LONG = "long"
    CUSTOM = "custom"


class Intent(str, Enum):
    """What the caller wants done with the text"""
    SUMMARIZE = "summarize"
    GRAMMAR = "grammar"
    SIMPLIFY = "simplify"
    HUMANIZE = "humanize"
    EXPAND = "expand"


class OutputFormat(str, Enum):
    PARAGRAPHS = "paragraphs"
    BULLETS = "bullets"


class ModelType(str, Enum):
    EXTRACTIVE = "extractive"
    ABSTRACTIVE = "abstractive"
    HYBRID = "hybrid"


class FeedbackType(str, Enum):
    USEFUL = "useful"
    INCOMPLETE = "incomplete"
    TOO_TECHNICAL = "too_technical"
    TOO_SIMPLE = "too_simple"
    FACTUAL_ERROR = "factual_error"
    OTHER = "other"


class SummarizationConfig(BaseModel):
    """
    Summarization request options.

    Instances are immutable and validated once on construction. Use
    `SummarizationConfig.parse()` at the boundary to get taxonomy errors
    instead of pydantic ones.
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    mode: SummaryMode = SummaryMode.EXTRACTIVE
    quality: QualityLevel = QualityLevel.STANDARD
    tone: Tone = Tone.NEUTRAL
    length: SummaryLength = SummaryLength.MEDIUM
    intent: Intent = Intent.SUMMARIZE
    max_length: Optional[int] = Field(None, ge=1, description="Maximum summary length in words")
    min_length: Optional[int] = Field(None, ge=0, description="Minimum summary length in words")
    focus_keywords: Tuple[str, ...] = Field(default_factory=tuple, description="Keywords to favour")
    output_format: OutputFormat = OutputFormat.PARAGRAPHS
    temperature: Optional[float] = Field(None, ge=0.0, le=2.0)

    @model_validator(mode="after")
    def _check_lengths(self):
        if self.length == SummaryLength.CUSTOM:
            if self.max_length is None:
                raise ValueError("custom length requires max_length")
            if self.max_length < 10:
                raise ValueError("custom max_length must be at least 10 words")
        if self.max_length is not None and self.max_length > settings.MAX_SUMMARY_LENGTH:
            raise ValueError(f"max_length must not exceed {settings.MAX_SUMMARY_LENGTH} words")
        if (
            self.min_length is not None
            and self.max_length is not None
            and self.min_length > self.max_length
        ):
            raise ValueError("min_length must not exceed max_length")
        if len(self.focus_keywords) > settings.MAX_FOCUS_KEYWORDS:
            raise ValueError(f"at most {settings.MAX_FOCUS_KEYWORDS} focus keywords are allowed")
        return self

    @classmethod
    def parse(cls, data: Optional[Dict[str, Any]] = None) -> "SummarizationConfig":
        """Build a config from untrusted input, raising InputValidationError"""
        try:
            return cls.model_validate(data or {})
        except ValidationError as e:
            first = e.errors()[0] if e.errors() else {}
            field_name = ".".join(str(part) for part in first.get("loc", ())) or "config"
            raise InputValidationError(
                f"Invalid summarization config: {e}",
                details={"field": field_name},
            ) from e

    @property
    def model_type(self) -> ModelType:
        """Registry model type serving this config"""
        if self.mode == SummaryMode.EXTRACTIVE:
            return ModelType.EXTRACTIVE
        if self.mode == SummaryMode.HYBRID:
            return ModelType.HYBRID
        return ModelType.ABSTRACTIVE

    def canonical_json(self) -> str:
        """Stable serialisation with sorted keys, used for cache keys"""
        return json.dumps(self.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))


@dataclass(frozen=True)
class NamedEntity:
    text: str
    type: str
    start: int
    end: int
    confidence: float = 0.7


@dataclass(frozen=True)
class ProcessedDocument:
    """Per-request analysis of the input text; never shared between requests"""
    sentences: Tuple[str, ...]
    tokens: Tuple[Tuple[str, ...], ...]
    entities: Tuple[NamedEntity, ...] = ()
    embeddings: Optional[np.ndarray] = field(default=None, compare=False)  # one L2-normalised row per sentence
    avg_sentence_length: float = 0.0
    word_count: int = 0
    readability: float = 0.0
    keywords: Tuple[str, ...] = field(default_factory=tuple)


class SummaryMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    compression_ratio: float = Field(0.0, ge=0.0, le=1.0)
    word_count: int = 0
    sentence_count: int = 0
    readability: float = Field(0.0, ge=0.0, le=1.0)
    coherence: float = Field(0.0, ge=0.0, le=1.0)
    rouge1: float = Field(0.0, ge=0.0, le=1.0)
    rouge2: float = Field(0.0, ge=0.0, le=1.0)
    rouge_l: float = Field(0.0, ge=0.0, le=1.0)
    bleu: float = Field(0.0, ge=0.0, le=1.0)
    semantic_similarity: float = Field(0.0, ge=0.0, le=1.0)


class SummaryResult(BaseModel):
    model_config = ConfigDict(frozen=True, protected_namespaces=())

    summary: str
    method: str
    config: SummarizationConfig
    metrics: SummaryMetrics
    model_version: str
    processing_time_ms: int = 0
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    summary_id: Optional[str] = None
    cached: bool = False


class EvaluationResult(BaseModel):
    """Lexical quality heuristics for a summary"""
    model_config = ConfigDict(frozen=True)

    rouge1: float = 0.0
    rouge2: float = 0.0
    rouge_l: float = 0.0
    bleu: float = 0.0
    semantic_similarity: float = 0.0
    coherence: float = 0.0
    compression_ratio: float = 0.0
    entity_preservation: float = 0.0
    factual_consistency: float = 0.0
    overall_score: float = 0.0


class ModelVariant(BaseModel):
    """A registered model version served by some backend"""
    model_config = ConfigDict(frozen=True, protected_namespaces=())

    id: Optional[str] = None
    name: str
    type: ModelType
    provider: str = ""
    backend_model_id: str
    version: Optional[str] = None
    cost: float = Field(0.0, ge=0.0, description="Cost per 1K tokens")
    quality: float = Field(0.0, ge=0.0, le=1.0)
    speed: float = Field(0.0, ge=0.0, le=1.0)
    is_active: bool = False
    config: Dict[str, Any] = Field(default_factory=dict)
    metrics: Dict[str, float] = Field(default_factory=dict)
    deployed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class UsageRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    action: str
    tokens_used: int = 0
    cost: Optional[float] = None
    timestamp: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class FeedbackData(BaseModel):
    model_config = ConfigDict(frozen=True)

    summary_id: str
    user_id: str
    rating: int = Field(..., ge=1, le=5)
    feedback_type: FeedbackType = FeedbackType.OTHER
    edited_summary: Optional[str] = None
    comments: Optional[str] = None


class RateLimitStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    allowed: bool
    remaining: int
    reset_time: datetime
    blocked_until: Optional[datetime] = None


class QuotaStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    monthly_usage: int
    monthly_limit: int
    remaining: int
    reset_date: datetime
    tier: str


class ModelSelection(BaseModel):
    model_config = ConfigDict(frozen=True, protected_namespaces=())

    provider: str
    model_id: str
    estimated_cost: float
    reasoning: str
    variant_id: Optional[str] = None
    model_version: Optional[str] = None


class OptimizedInput(BaseModel):
    model_config = ConfigDict(frozen=True)

    optimized_text: str
    original_length: int
    optimized_length: int
    savings_percent: float
    truncated: bool = False


class FeedbackStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    summary_id: str
    total: int
    average_rating: float
    top_issues: List[str] = Field(default_factory=list)
