"""
Model registry API
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from summarizer.api.deps import get_services, get_user_id
from summarizer.core.container import ServiceContainer
from summarizer.schemas.api import ModelListResponse
from summarizer.schemas.summarization import ModelType, ModelVariant

router = APIRouter(prefix="/models", tags=["models"])


@router.get("", response_model=ModelListResponse)
async def list_models(
    type: Optional[ModelType] = Query(None, description="extractive / abstractive / hybrid"),
    user_id: str = Depends(get_user_id),
    services: ServiceContainer = Depends(get_services),
):
    """Registered model variants with the health of the active ones"""
    models = await services.registry.list_models(type)
    health = await services.registry.get_model_health()
    return ModelListResponse(models=models, health=health)


@router.post("/{model_id}/activate", response_model=ModelVariant)
async def activate_model(
    model_id: str,
    user_id: str = Depends(get_user_id),
    services: ServiceContainer = Depends(get_services),
):
    """Make a variant the active one of its type"""
    return await services.registry.activate_model(model_id)
