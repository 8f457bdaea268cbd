"""
pytest configuration and fixtures
"""
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

backend_path = Path(__file__).parent.parent
sys.path.insert(0, str(backend_path))

from summarizer.core.database import Base  # noqa: E402
from summarizer import models  # noqa: E402,F401
from summarizer.services.backends import (  # noqa: E402
    BackendRegistry,
    GenerationParams,
    GenerationResult,
    TextGenerationBackend,
)
from summarizer.services.cache_service import CacheManager, MemoryCacheTier  # noqa: E402
from summarizer.services.model_registry import ModelRegistry  # noqa: E402


class FakeClock:
    """Controllable aware UTC clock"""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 3, 10, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FakeBackend(TextGenerationBackend):
    """
    Scripted backend

    `failures` are raised one per call before any success; after that the
    backend answers with `response` (or the first words of the prompt body).
    """

    def __init__(self, provider: str = "fake", response: Optional[str] = None,
                 failures: Optional[List[Exception]] = None, always_fail: Optional[Exception] = None):
        self.provider = provider
        self.response = response
        self.failures = list(failures or [])
        self.always_fail = always_fail
        self.calls: List[Dict[str, Any]] = []

    async def generate(self, prompt: str, model_id: str, params: GenerationParams) -> GenerationResult:
        self.calls.append({"prompt": prompt, "model_id": model_id, "params": params})
        if self.always_fail is not None:
            raise self.always_fail
        if self.failures:
            raise self.failures.pop(0)
        text = self.response
        if text is None:
            body = prompt.rsplit("\n\n", 1)[-1]
            text = " ".join(body.split()[:40])
        return GenerationResult(text=text, model_id=model_id, tokens_used=42)


class RecordingDispatcher:
    """Task dispatcher that records messages instead of sending them"""

    def __init__(self):
        self.sent: List[tuple] = []

    def dispatch(self, task_name: str, payload: Dict[str, Any]):
        self.sent.append((task_name, payload))

    def names(self) -> List[str]:
        return [name for name, _ in self.sent]

    async def drain(self) -> None:
        return None


class UnavailableDatabase:
    """Session factory whose sessions never open, as when the database is down"""

    def __call__(self):
        return self

    async def __aenter__(self):
        raise OperationalError("SELECT 1", {}, ConnectionRefusedError("connection refused"))

    async def __aexit__(self, *exc_info):
        return False


SAMPLE_TEXT = (
    "Artificial intelligence is transforming how companies process documents. "
    "Microsoft Corporation announced a new summarization feature on March 3, 2024. "
    "The feature reduces reading time for long reports by about 40%. "
    "Analysts expect the market for document automation to reach $12 billion. "
    "Many teams already rely on automated summaries for daily briefings. "
    "Critics warn that summaries can omit important caveats and context. "
    "Researchers at Stanford University are studying how to measure summary quality. "
    "Their early results suggest that extractive methods remain surprisingly strong. "
    "Hybrid approaches combine sentence selection with neural rewriting. "
    "The company plans to expand the feature to more languages next year."
)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def session_factory():
    """In-memory SQLite database with every table created"""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)
    yield factory
    await engine.dispose()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def registry(session_factory, clock):
    return ModelRegistry(session_factory, clock=clock)


@pytest.fixture
def memory_cache(clock):
    return CacheManager([MemoryCacheTier(max_size=100, clock=clock)], clock=clock)


@pytest.fixture
def fake_backend():
    return FakeBackend(provider="anthropic")


@pytest.fixture
def backends(fake_backend):
    return BackendRegistry({
        "anthropic": fake_backend,
        "cloudflare": FakeBackend(provider="cloudflare"),
    })


@pytest.fixture
def sample_text():
    return SAMPLE_TEXT


@pytest.fixture
def unavailable_db():
    return UnavailableDatabase()


@pytest.fixture
def offline_registry(unavailable_db, clock):
    return ModelRegistry(unavailable_db, clock=clock)
