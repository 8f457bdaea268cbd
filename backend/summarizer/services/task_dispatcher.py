"""
Outbound task dispatcher
Sends Celery messages from async code without blocking the request path.
"""
import asyncio
from typing import Any, Dict, Optional, Set

import structlog
from celery import Celery

logger = structlog.get_logger()

TASK_PREFIX = "summarizer.tasks.feedback_tasks."


class TaskDispatcher:
    """Fire-and-forget sender for worker tasks"""

    def __init__(self, celery_app: Optional[Celery] = None):
        if celery_app is None:
            from summarizer.core.celery_app import celery_app as default_app
            celery_app = default_app
        self.celery_app = celery_app
        self._pending: Set[asyncio.Task] = set()

    def _send(self, task_name: str, payload: Dict[str, Any]) -> None:
        self.celery_app.send_task(TASK_PREFIX + task_name, kwargs={"payload": payload})

    async def _send_in_thread(self, task_name: str, payload: Dict[str, Any]) -> None:
        try:
            await asyncio.to_thread(self._send, task_name, payload)
            logger.info("Task dispatched", task_name=task_name)
        except Exception as e:
            # broker outages must not fail the request that triggered the task
            logger.error("Task dispatch failed", task_name=task_name, error=str(e))

    def dispatch(self, task_name: str, payload: Dict[str, Any]) -> asyncio.Task:
        """
        Schedule a task message in the background

        Args:
            task_name: task name inside summarizer.tasks.feedback_tasks
            payload: JSON-serialisable task arguments

        Returns:
            the background asyncio task performing the send
        """
        task = asyncio.create_task(self._send_in_thread(task_name, payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for pending sends, used on shutdown"""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
