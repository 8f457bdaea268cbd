"""
Model registry - versioned model variants with one active variant per type

The registry is constructed explicitly and handed to the components that
need it; its in-process cache of active variants belongs to the instance.
"""
import asyncio
import uuid
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from summarizer.core.config import settings
from summarizer.models.model_version import ModelVersion
from summarizer.schemas.summarization import ModelType, ModelVariant
from summarizer.utils.errors import InputValidationError
from summarizer.utils.time_utils import Clock, as_utc, utc_now

logger = structlog.get_logger()

# Columns that double as metrics and are blended by update_metrics
COLUMN_METRICS = ("quality", "speed", "cost")


def infer_provider(backend_model_id: str) -> str:
    """Guess the serving provider from a backend model id"""
    model_id = backend_model_id.lower()
    if "claude" in model_id or "anthropic" in model_id:
        return "anthropic"
    if model_id.startswith("@cf/"):
        return "cloudflare"
    if "deepseek" in model_id:
        return "deepseek"
    if "gpt" in model_id or "openai" in model_id:
        return "openai"
    return "huggingface"


def _to_variant(row: ModelVersion) -> ModelVariant:
    return ModelVariant(
        id=str(row.id),
        name=row.name,
        type=ModelType(row.type),
        provider=row.provider,
        backend_model_id=row.backend_model_id,
        version=row.version,
        cost=row.cost or 0.0,
        quality=row.quality or 0.0,
        speed=row.speed or 0.0,
        is_active=bool(row.is_active),
        config=row.config or {},
        metrics=row.metrics or {},
        deployed_at=as_utc(row.deployed_at),
        created_at=as_utc(row.created_at),
    )


def _parse_id(model_id: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(model_id))
    except ValueError as e:
        raise InputValidationError(f"Invalid model id: {model_id}", details={"field": "model_id"}) from e


class ModelRegistry:
    """Model version registry backed by the model_versions table"""

    def __init__(self, session_factory: async_sessionmaker, clock: Clock = utc_now, ema_weight: float = None):
        self._session_factory = session_factory
        self._clock = clock
        self.ema_weight = settings.MODEL_METRIC_EMA_WEIGHT if ema_weight is None else ema_weight
        self._active_cache: Dict[ModelType, ModelVariant] = {}
        self._lock = asyncio.Lock()

    def generate_version(self, variant: ModelVariant) -> str:
        """<PRO>-<TYP>-<epoch ms>-<suffix>, e.g. ANT-ABS-1718000000000-3f9a1c"""
        timestamp = int(self._clock().timestamp() * 1000)
        return f"{variant.provider[:3].upper()}-{variant.type.value[:3].upper()}-{timestamp}-{uuid.uuid4().hex[:6]}"

    async def register_model(self, variant: ModelVariant, activate: bool = False) -> ModelVariant:
        """
        Register a new model variant

        Args:
            variant: variant description; id and version are assigned here
            activate: activate the variant right away

        Returns:
            the stored variant
        """
        provider = variant.provider or infer_provider(variant.backend_model_id)
        variant = variant.model_copy(update={"provider": provider})
        row = ModelVersion(
            id=uuid.uuid4(),
            name=variant.name,
            type=variant.type.value,
            provider=provider,
            backend_model_id=variant.backend_model_id,
            version=variant.version or self.generate_version(variant),
            cost=variant.cost,
            quality=variant.quality,
            speed=variant.speed,
            is_active=False,
            config=dict(variant.config),
            metrics=dict(variant.metrics),
            created_at=self._clock(),
        )
        async with self._session_factory() as db:
            db.add(row)
            await db.commit()
            stored = _to_variant(row)
        logger.info("Model registered", model_id=stored.id, version=stored.version, type=stored.type.value)

        if activate:
            return await self.activate_model(stored.id)
        return stored

    async def get_model(self, model_id: str) -> Optional[ModelVariant]:
        async with self._session_factory() as db:
            row = await db.get(ModelVersion, _parse_id(model_id))
            return _to_variant(row) if row else None

    async def get_model_by_version(self, version: str) -> Optional[ModelVariant]:
        async with self._session_factory() as db:
            row = await db.scalar(select(ModelVersion).where(ModelVersion.version == version))
            return _to_variant(row) if row else None

    async def get_active_model(self, model_type: ModelType) -> Optional[ModelVariant]:
        """
        Active variant for a model type

        Served from the in-process cache; a miss is loaded from the
        database and cached.
        """
        model_type = ModelType(model_type)
        async with self._lock:
            cached = self._active_cache.get(model_type)
            if cached is not None:
                return cached

            async with self._session_factory() as db:
                row = await db.scalar(
                    select(ModelVersion)
                    .where(ModelVersion.type == model_type.value, ModelVersion.is_active.is_(True))
                    .order_by(ModelVersion.deployed_at.desc())
                    .limit(1)
                )
            if row is None:
                return None
            variant = _to_variant(row)
            self._active_cache[model_type] = variant
            return variant

    async def activate_model(self, model_id: str) -> ModelVariant:
        """
        Make a variant the only active one of its type

        Deactivation of the current variant and activation of the target
        happen in one transaction; the cache is refreshed afterwards.
        """
        target_id = _parse_id(model_id)
        now = self._clock()
        async with self._session_factory() as db:
            async with db.begin():
                row = await db.get(ModelVersion, target_id)
                if row is None:
                    raise InputValidationError(f"Model not found: {model_id}", details={"field": "model_id"})
                await db.execute(
                    update(ModelVersion)
                    .where(ModelVersion.type == row.type, ModelVersion.is_active.is_(True))
                    .values(is_active=False)
                )
                row.is_active = True
                row.deployed_at = now
            await db.refresh(row)
            variant = _to_variant(row)

        async with self._lock:
            self._active_cache[variant.type] = variant
        logger.info("Model activated", model_id=variant.id, version=variant.version, type=variant.type.value)
        return variant

    async def update_metrics(self, model_id: str, observed: Dict[str, float]) -> Optional[ModelVariant]:
        """
        Blend observed metrics into the running averages

        new = old * (1 - w) + observed * w, with w = ema_weight. A metric
        seen for the first time is stored as observed.
        """
        async with self._session_factory() as db:
            row = await db.get(ModelVersion, _parse_id(model_id))
            if row is None:
                logger.warning("Metrics update for unknown model", model_id=model_id)
                return None

            metrics = dict(row.metrics or {})
            for name, value in observed.items():
                if value is None:
                    continue
                previous = metrics.get(name)
                if previous is None and name in COLUMN_METRICS:
                    previous = getattr(row, name)
                blended = value if previous is None else previous * (1 - self.ema_weight) + value * self.ema_weight
                metrics[name] = blended
                if name in COLUMN_METRICS:
                    setattr(row, name, blended)
            row.metrics = metrics
            await db.commit()
            variant = _to_variant(row)

        if variant.is_active:
            async with self._lock:
                self._active_cache[variant.type] = variant
        logger.debug("Model metrics updated", model_id=model_id, metrics=observed)
        return variant

    async def fallback_model(self, failed_id: Optional[str], model_type: ModelType) -> Optional[ModelVariant]:
        """
        Activate the most recently deployed inactive variant of a type

        Args:
            failed_id: variant that just failed, never chosen
            model_type: model type to fall back within

        Returns:
            the activated variant, or None when no candidate exists
        """
        model_type = ModelType(model_type)
        async with self._session_factory() as db:
            query = select(ModelVersion).where(
                ModelVersion.type == model_type.value,
                ModelVersion.is_active.is_(False),
            )
            if failed_id:
                query = query.where(ModelVersion.id != _parse_id(failed_id))
            result = await db.execute(query)
            candidates = list(result.scalars().all())

        if not candidates:
            logger.warning("No fallback model available", type=model_type.value, failed_id=failed_id)
            return None

        def recency(row: ModelVersion):
            deployed = as_utc(row.deployed_at)
            created = as_utc(row.created_at)
            return (deployed is not None, deployed or created, created)

        chosen = max(candidates, key=recency)
        logger.warning("Falling back to previous model", failed_id=failed_id, fallback_id=str(chosen.id),
                       version=chosen.version)
        return await self.activate_model(str(chosen.id))

    async def list_models(self, model_type: Optional[ModelType] = None) -> List[ModelVariant]:
        """All variants, newest first, for side-by-side comparison"""
        query = select(ModelVersion).order_by(ModelVersion.created_at.desc())
        if model_type is not None:
            query = query.where(ModelVersion.type == ModelType(model_type).value)
        async with self._session_factory() as db:
            result = await db.execute(query)
            return [_to_variant(row) for row in result.scalars().all()]

    async def get_model_health(self) -> Dict[str, Any]:
        """Health of each active variant from its running error rate"""
        health: Dict[str, Any] = {}
        for model_type in ModelType:
            variant = await self.get_active_model(model_type)
            if variant is None:
                health[model_type.value] = {"status": "missing"}
                continue
            error_rate = variant.metrics.get("error_rate", 0.0)
            if error_rate < 0.2:
                status = "healthy"
            elif error_rate < 0.5:
                status = "degraded"
            else:
                status = "unhealthy"
            health[model_type.value] = {
                "status": status,
                "model_id": variant.id,
                "version": variant.version,
                "provider": variant.provider,
                "error_rate": round(error_rate, 4),
                "quality": round(variant.quality, 4),
            }
        return health

    async def refresh_cache(self) -> None:
        async with self._lock:
            self._active_cache.clear()
        for model_type in ModelType:
            await self.get_active_model(model_type)
