"""
Feedback worker tasks
Consumes retraining examples, retraining jobs and error alerts sent by the API,
and runs the periodic retraining check scheduled by Celery beat.
"""
import asyncio
import uuid
from typing import Any, Dict

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import NullPool

from summarizer.core.celery_app import celery_app
from summarizer.core.config import settings
from summarizer.core.database import get_async_database_url
from summarizer.core.database_sync import SessionLocal
from summarizer.models.alert import Alert
from summarizer.models.feedback import RetrainingExample
from summarizer.services.feedback_manager import FeedbackManager
from summarizer.services.model_registry import ModelRegistry
from summarizer.services.task_dispatcher import TaskDispatcher
from summarizer.utils.time_utils import Clock, utc_now

logger = structlog.get_logger()


def save_retraining_example(db: Session, payload: Dict[str, Any]) -> RetrainingExample:
    """Insert one pending retraining example"""
    summary_id = payload.get("summary_id")
    example = RetrainingExample(
        summary_id=uuid.UUID(summary_id) if summary_id else None,
        model_version=payload.get("model_version"),
        source_text=payload["source_text"],
        target_text=payload["target_text"],
        rating=payload.get("rating"),
        feedback_type=payload.get("feedback_type"),
        status="pending",
    )
    db.add(example)
    db.commit()
    return example


def claim_pending_examples(db: Session) -> int:
    """
    Mark pending examples as used by a retraining run

    Returns:
        number of examples handed to the run
    """
    pending = db.scalar(
        select(func.count(RetrainingExample.id)).where(RetrainingExample.status == "pending")
    ) or 0
    if pending:
        db.execute(
            update(RetrainingExample)
            .where(RetrainingExample.status == "pending")
            .values(status="used")
        )
        db.commit()
    return pending


@celery_app.task(bind=True, name="summarizer.tasks.feedback_tasks.store_retraining_example",
                 max_retries=3, default_retry_delay=30)
def store_retraining_example(self, payload: Dict[str, Any]):
    db = SessionLocal()
    try:
        example = save_retraining_example(db, payload)
        logger.info("Retraining example stored", example_id=example.id, summary_id=payload.get("summary_id"))
        return {"example_id": example.id}
    except Exception as e:
        db.rollback()
        logger.error("Storing retraining example failed", summary_id=payload.get("summary_id"), error=str(e))
        raise self.retry(exc=e)
    finally:
        db.close()


@celery_app.task(bind=True, name="summarizer.tasks.feedback_tasks.run_retraining_job")
def run_retraining_job(self, payload: Dict[str, Any]):
    """Collects pending examples for the external fine-tuning pipeline"""
    db = SessionLocal()
    try:
        claimed = claim_pending_examples(db)
        logger.warning("Retraining job started", examples=claimed, samples=payload.get("samples"),
                       average_rating=payload.get("average_rating"))
        return {"examples": claimed}
    finally:
        db.close()


def save_alert(db: Session, payload: Dict[str, Any]) -> Alert:
    """Insert one alert row holding the full payload"""
    alert_type = payload.get("alert_type", "error")
    alert = Alert(
        alert_type=alert_type,
        severity=payload.get("severity", "high"),
        correlation_id=payload.get("correlation_id"),
        message=payload.get("message") or f"Alert: {alert_type}",
        data=payload,
    )
    db.add(alert)
    db.commit()
    return alert


@celery_app.task(bind=True, name="summarizer.tasks.feedback_tasks.send_error_alert",
                 max_retries=3, default_retry_delay=10)
def send_error_alert(self, payload: Dict[str, Any]):
    logger.critical("Error alert", alert=payload)
    db = SessionLocal()
    try:
        alert = save_alert(db, payload)
        return {"delivered": True, "alert_id": alert.id, "correlation_id": payload.get("correlation_id")}
    except Exception as e:
        db.rollback()
        logger.error("Storing alert failed", correlation_id=payload.get("correlation_id"), error=str(e))
        raise self.retry(exc=e)
    finally:
        db.close()


async def check_retraining_once(session_factory: async_sessionmaker, dispatcher, clock: Clock = utc_now) -> bool:
    """Run the feedback manager's retraining check and wait for its dispatch"""
    manager = FeedbackManager(session_factory, ModelRegistry(session_factory, clock=clock), dispatcher, clock=clock)
    try:
        return await manager.trigger_retraining()
    finally:
        await dispatcher.drain()


async def _check_retraining() -> bool:
    # each run gets its own event loop, so connections are not pooled across runs
    engine = create_async_engine(get_async_database_url(settings.DATABASE_URL), poolclass=NullPool)
    session_factory = async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)
    try:
        return await check_retraining_once(session_factory, TaskDispatcher(celery_app))
    finally:
        await engine.dispose()


@celery_app.task(name="summarizer.tasks.feedback_tasks.check_retraining")
def check_retraining():
    """Periodic check, queues run_retraining_job when last week's ratings are poor"""
    triggered = asyncio.run(_check_retraining())
    logger.info("Retraining check finished", triggered=triggered)
    return {"triggered": triggered}
