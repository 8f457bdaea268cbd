"""
Model registry tests
"""
import re

import pytest

from summarizer.schemas.summarization import ModelType, ModelVariant
from summarizer.services.model_registry import ModelRegistry, infer_provider
from summarizer.utils.errors import InputValidationError


def variant(name: str, model_type: ModelType = ModelType.ABSTRACTIVE, **kwargs) -> ModelVariant:
    defaults = {
        "backend_model_id": "claude-3-5-sonnet-20240620",
        "cost": 0.003,
        "quality": 0.8,
        "speed": 0.5,
    }
    defaults.update(kwargs)
    return ModelVariant(name=name, type=model_type, **defaults)


@pytest.mark.asyncio
async def test_register_assigns_version_and_stays_inactive(registry):
    stored = await registry.register_model(variant("sonnet"))
    assert stored.id
    assert stored.provider == "anthropic"
    assert not stored.is_active
    assert re.match(r"^ANT-ABS-\d+-[0-9a-f]{6}$", stored.version)
    assert await registry.get_active_model(ModelType.ABSTRACTIVE) is None
    assert (await registry.get_model_by_version(stored.version)).id == stored.id


@pytest.mark.asyncio
async def test_activate_leaves_exactly_one_active(registry, clock):
    """Activating a variant deactivates every other variant of its type"""
    first = await registry.register_model(variant("first"), activate=True)
    clock.advance(10)
    second = await registry.register_model(variant("second"), activate=True)
    await registry.register_model(variant("extractive", ModelType.EXTRACTIVE, backend_model_id="tfidf"), activate=True)

    models = await registry.list_models(ModelType.ABSTRACTIVE)
    active = [m for m in models if m.is_active]
    assert [m.id for m in active] == [second.id]
    assert (await registry.get_active_model(ModelType.ABSTRACTIVE)).id == second.id
    assert (await registry.get_model(first.id)).deployed_at is not None
    assert (await registry.get_active_model(ModelType.EXTRACTIVE)).is_active


@pytest.mark.asyncio
async def test_active_model_survives_new_registry_instance(registry, session_factory, clock):
    stored = await registry.register_model(variant("sonnet"), activate=True)
    fresh = ModelRegistry(session_factory, clock=clock)
    assert (await fresh.get_active_model(ModelType.ABSTRACTIVE)).id == stored.id


@pytest.mark.asyncio
async def test_update_metrics_is_exponential_average(registry):
    stored = await registry.register_model(variant("sonnet", quality=0.8))
    updated = await registry.update_metrics(stored.id, {"quality": 0.0, "error_rate": 1.0})
    assert updated.quality == pytest.approx(0.72)
    assert updated.metrics["quality"] == pytest.approx(0.72)
    assert updated.metrics["error_rate"] == 1.0

    updated = await registry.update_metrics(stored.id, {"error_rate": 0.0})
    assert updated.metrics["error_rate"] == pytest.approx(0.9)


@pytest.mark.asyncio
async def test_update_metrics_unknown_model(registry):
    assert await registry.update_metrics("00000000-0000-0000-0000-000000000000", {"quality": 1.0}) is None


@pytest.mark.asyncio
async def test_fallback_prefers_most_recently_deployed(registry, clock):
    previous = await registry.register_model(variant("previous"), activate=True)
    clock.advance(10)
    current = await registry.register_model(variant("current"), activate=True)
    clock.advance(10)
    await registry.register_model(variant("never deployed"))

    fallback = await registry.fallback_model(current.id, ModelType.ABSTRACTIVE)
    assert fallback.id == previous.id
    assert fallback.is_active
    assert not (await registry.get_model(current.id)).is_active


@pytest.mark.asyncio
async def test_fallback_without_candidates(registry):
    only = await registry.register_model(variant("only"), activate=True)
    assert await registry.fallback_model(only.id, ModelType.ABSTRACTIVE) is None
    assert (await registry.get_active_model(ModelType.ABSTRACTIVE)).id == only.id


@pytest.mark.asyncio
async def test_model_health(registry):
    stored = await registry.register_model(variant("sonnet"), activate=True)
    health = await registry.get_model_health()
    assert health["abstractive"]["status"] == "healthy"
    assert health["extractive"]["status"] == "missing"

    await registry.update_metrics(stored.id, {"error_rate": 0.6})
    health = await registry.get_model_health()
    assert health["abstractive"]["status"] == "unhealthy"


@pytest.mark.asyncio
async def test_invalid_model_id(registry):
    with pytest.raises(InputValidationError):
        await registry.activate_model("not-a-uuid")
    with pytest.raises(InputValidationError):
        await registry.activate_model("00000000-0000-0000-0000-000000000000")


def test_infer_provider():
    assert infer_provider("claude-3-haiku") == "anthropic"
    assert infer_provider("@cf/meta/llama-3.1-8b-instruct") == "cloudflare"
    assert infer_provider("deepseek-chat") == "deepseek"
    assert infer_provider("gpt-4o-mini") == "openai"
    assert infer_provider("facebook/bart-large-cnn") == "huggingface"
