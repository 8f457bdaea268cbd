"""
Feedback worker task tests
"""
import uuid

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from summarizer.core.celery_app import celery_app
from summarizer.core.config import settings
from summarizer.core.database import Base
from summarizer.models.alert import Alert
from summarizer.models.feedback import Feedback, RetrainingExample
from summarizer.tasks import feedback_tasks


@pytest.fixture
def sync_session_factory(monkeypatch):
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    monkeypatch.setattr(feedback_tasks, "SessionLocal", factory)
    yield factory
    engine.dispose()


def example_payload(**overrides):
    payload = {
        "summary_id": str(uuid.uuid4()),
        "model_version": "ANT-ABS-1",
        "source_text": "The original document text.",
        "target_text": "A corrected summary.",
        "rating": 2,
        "feedback_type": "incomplete",
    }
    payload.update(overrides)
    return payload


def test_store_retraining_example(sync_session_factory):
    payload = example_payload()
    result = feedback_tasks.store_retraining_example(payload)
    assert result["example_id"]

    with sync_session_factory() as db:
        example = db.scalars(select(RetrainingExample)).one()
    assert example.status == "pending"
    assert str(example.summary_id) == payload["summary_id"]
    assert example.target_text == "A corrected summary."


def test_retraining_job_claims_pending_examples(sync_session_factory):
    """Each run takes the pending examples once"""
    for _ in range(3):
        feedback_tasks.store_retraining_example(example_payload())

    assert feedback_tasks.run_retraining_job({"samples": 12, "average_rating": 2.4}) == {"examples": 3}
    assert feedback_tasks.run_retraining_job({"samples": 12, "average_rating": 2.4}) == {"examples": 0}

    with sync_session_factory() as db:
        statuses = {e.status for e in db.scalars(select(RetrainingExample))}
    assert statuses == {"used"}


def test_example_without_summary_id(sync_session_factory):
    with sync_session_factory() as db:
        example = feedback_tasks.save_retraining_example(db, example_payload(summary_id=None))
        assert example.summary_id is None


def test_send_error_alert_stores_alert(sync_session_factory):
    payload = {
        "alert_type": "critical_error",
        "correlation_id": "abc",
        "error_type": "network",
        "severity": "critical",
        "message": "disk full",
        "consecutive_errors": 1,
    }
    result = feedback_tasks.send_error_alert(payload)
    assert result["delivered"] is True
    assert result["correlation_id"] == "abc"

    with sync_session_factory() as db:
        alert = db.scalars(select(Alert)).one()
    assert alert.id == result["alert_id"]
    assert alert.alert_type == "critical_error"
    assert alert.severity == "critical"
    assert alert.correlation_id == "abc"
    assert alert.message == "disk full"
    assert alert.data == payload


def test_alert_without_type_or_message(sync_session_factory):
    with sync_session_factory() as db:
        alert = feedback_tasks.save_alert(db, {"correlation_id": "xyz"})
        assert alert.alert_type == "error"
        assert alert.message == "Alert: error"


def test_retraining_check_is_scheduled():
    entry = celery_app.conf.beat_schedule["check-retraining"]
    assert entry["task"] == feedback_tasks.check_retraining.name
    assert entry["schedule"] == settings.RETRAINING_CHECK_INTERVAL_SECONDS


async def add_ratings(session_factory, clock, rating: int, count: int):
    async with session_factory() as db:
        for _ in range(count):
            db.add(Feedback(
                summary_id=uuid.uuid4(),
                user_id="user-1",
                rating=rating,
                feedback_type="incomplete",
                created_at=clock(),
            ))
        await db.commit()


@pytest.mark.asyncio
async def test_retraining_check_dispatches_job(session_factory, dispatcher, clock):
    await add_ratings(session_factory, clock, rating=2, count=settings.RETRAINING_MIN_SAMPLES)
    assert await feedback_tasks.check_retraining_once(session_factory, dispatcher, clock=clock)
    assert dispatcher.names() == ["run_retraining_job"]
    assert dispatcher.sent[0][1]["samples"] == settings.RETRAINING_MIN_SAMPLES


@pytest.mark.asyncio
async def test_retraining_check_without_feedback(session_factory, dispatcher, clock):
    assert not await feedback_tasks.check_retraining_once(session_factory, dispatcher, clock=clock)
    assert dispatcher.sent == []
