"""
Summarization API
"""
from fastapi import APIRouter, Depends

from summarizer.api.deps import get_services, get_user_id
from summarizer.core.container import ServiceContainer
from summarizer.schemas.api import FeedbackRequest, FeedbackResponse, SummarizeRequest, SummarizeResponse
from summarizer.schemas.summarization import FeedbackData, SummarizationConfig

router = APIRouter(prefix="/summarize", tags=["summarize"])


@router.post("", response_model=SummarizeResponse)
async def summarize(
    body: SummarizeRequest,
    user_id: str = Depends(get_user_id),
    services: ServiceContainer = Depends(get_services),
):
    """Summarise text"""
    config = SummarizationConfig.parse(body.config)
    result = await services.summarizer.summarize(body.text, config, user_id, reference=body.reference)
    return SummarizeResponse(result=result)


@router.post("/feedback", response_model=FeedbackResponse, status_code=202)
async def submit_feedback(
    body: FeedbackRequest,
    user_id: str = Depends(get_user_id),
    services: ServiceContainer = Depends(get_services),
):
    """Rate a generated summary"""
    feedback = FeedbackData(user_id=user_id, **body.model_dump())
    await services.summarizer.submit_feedback(feedback)
    return FeedbackResponse()
