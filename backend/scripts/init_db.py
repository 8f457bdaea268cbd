"""
Database initialisation script
Creates the tables and registers the default model variants.
"""
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import structlog

from summarizer.core.config import settings
from summarizer.core.database import AsyncSessionLocal, Base, engine
from summarizer.core.logging import setup_logging
from summarizer import models  # noqa: F401
from summarizer.schemas.summarization import ModelType, ModelVariant
from summarizer.services.model_registry import ModelRegistry

logger = structlog.get_logger()


def default_variants():
    """One active variant per model type, served by the quality backend"""
    variants = []
    for model_type in (ModelType.ABSTRACTIVE, ModelType.HYBRID):
        variants.append(ModelVariant(
            name=f"{settings.QUALITY_PROVIDER} {model_type.value}",
            type=model_type,
            provider=settings.QUALITY_PROVIDER,
            backend_model_id=settings.QUALITY_MODEL_ID,
            cost=settings.QUALITY_MODEL_COST_PER_1K,
            quality=0.85,
            speed=0.6,
        ))
    variants.append(ModelVariant(
        name="local extractive",
        type=ModelType.EXTRACTIVE,
        provider="local",
        backend_model_id="tfidf-centroid",
        cost=0.0,
        quality=0.6,
        speed=1.0,
    ))
    return variants


async def init_db():
    """Create tables and seed the registry when it is empty"""
    try:
        logger.info("Initialising database")
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Tables created")

        registry = ModelRegistry(AsyncSessionLocal)
        if await registry.list_models():
            logger.info("Model registry already populated")
            return
        for variant in default_variants():
            stored = await registry.register_model(variant, activate=True)
            logger.info("Default model registered", version=stored.version, type=stored.type.value)
    except Exception as e:
        logger.error("Database initialisation failed", error=str(e))
        raise
    finally:
        await engine.dispose()


if __name__ == "__main__":
    setup_logging()
    asyncio.run(init_db())
