"""
Usage and quota API
"""
from fastapi import APIRouter, Depends, Query

from summarizer.api.deps import get_services, get_user_id
from summarizer.core.container import ServiceContainer
from summarizer.schemas.api import QuotaResponse
from summarizer.utils.errors import InputValidationError

router = APIRouter(prefix="/usage", tags=["usage"])


@router.get("/quota", response_model=QuotaResponse)
async def get_quota(
    user_id: str = Depends(get_user_id),
    services: ServiceContainer = Depends(get_services),
):
    """Monthly quota of the caller"""
    status = await services.summarizer.get_quota(user_id)
    return QuotaResponse(**status.model_dump())


@router.get("/analytics")
async def get_usage_analytics(
    period: str = Query("week", description="day / week / month"),
    user_id: str = Depends(get_user_id),
    services: ServiceContainer = Depends(get_services),
):
    """Usage totals of the caller over a period"""
    try:
        return await services.rate_limiter.get_usage_analytics(user_id, period)
    except ValueError as e:
        raise InputValidationError(str(e), details={"field": "period"}) from e
