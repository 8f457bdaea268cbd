"""
HTTP request and response schemas
"""
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Any, Dict, List, Optional

from summarizer.schemas.summarization import FeedbackType, ModelVariant, SummaryResult


class SummarizeRequest(BaseModel):
    """Summarization request"""
    text: str = Field(..., description="Text to summarise")
    config: Dict[str, Any] = Field(default_factory=dict, description="Summarization config")
    reference: Optional[str] = Field(None, description="Reference summary for ROUGE/BLEU")


class SummarizeResponse(BaseModel):
    """Summarization response"""
    result: SummaryResult


class FeedbackRequest(BaseModel):
    """Feedback on a generated summary"""
    summary_id: str
    rating: int = Field(..., ge=1, le=5, description="Rating (1-5)")
    feedback_type: FeedbackType = FeedbackType.OTHER
    edited_summary: Optional[str] = None
    comments: Optional[str] = Field(None, max_length=2000)


class FeedbackResponse(BaseModel):
    status: str = "accepted"


class QuotaResponse(BaseModel):
    """Monthly quota for the caller"""
    monthly_usage: int
    monthly_limit: int
    remaining: int
    reset_date: datetime
    tier: str


class ModelListResponse(BaseModel):
    models: List[ModelVariant]
    health: Dict[str, Any] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    """Error body returned for every failed request"""
    error_type: str
    error_message: str
    retryable: bool
    correlation_id: Optional[str] = None
    error_details: Optional[Dict[str, Any]] = None
