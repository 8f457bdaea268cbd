"""
Task dispatcher tests
"""
import pytest

from summarizer.services.task_dispatcher import TASK_PREFIX, TaskDispatcher


class FakeCelery:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    def send_task(self, name, kwargs=None):
        if self.fail:
            raise ConnectionError("broker unreachable")
        self.sent.append((name, kwargs))


@pytest.mark.asyncio
async def test_dispatch_sends_in_background():
    celery = FakeCelery()
    dispatcher = TaskDispatcher(celery)
    dispatcher.dispatch("send_error_alert", {"correlation_id": "abc"})
    await dispatcher.drain()
    assert celery.sent == [(TASK_PREFIX + "send_error_alert", {"payload": {"correlation_id": "abc"}})]


@pytest.mark.asyncio
async def test_broker_failure_is_not_raised():
    """A broker outage is logged, the caller never sees it"""
    dispatcher = TaskDispatcher(FakeCelery(fail=True))
    task = dispatcher.dispatch("run_retraining_job", {"samples": 10})
    await dispatcher.drain()
    assert task.done()
    assert task.exception() is None
