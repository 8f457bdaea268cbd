"""
Celery task queue configuration
"""
from celery import Celery
from summarizer.core.config import settings

celery_app = Celery(
    "summarizer",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["summarizer.tasks.feedback_tasks"]
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=600,
    task_soft_time_limit=540,
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=200,
)

celery_app.conf.task_routes = {
    "summarizer.tasks.feedback_tasks.store_retraining_example": {"queue": "feedback"},
    "summarizer.tasks.feedback_tasks.run_retraining_job": {"queue": "feedback"},
    "summarizer.tasks.feedback_tasks.check_retraining": {"queue": "feedback"},
    "summarizer.tasks.feedback_tasks.send_error_alert": {"queue": "alerts"},
}

celery_app.conf.beat_schedule = {
    "check-retraining": {
        "task": "summarizer.tasks.feedback_tasks.check_retraining",
        "schedule": settings.RETRAINING_CHECK_INTERVAL_SECONDS,
    },
}
