"""
Request lifecycle tests
"""
import pytest

from summarizer.services.pipeline_state import PipelineState, RequestLifecycle
from summarizer.utils.errors import ProcessingError


def advance_all(lifecycle, *states):
    for state in states:
        lifecycle.advance(state)


def test_happy_path():
    lifecycle = RequestLifecycle()
    advance_all(
        lifecycle,
        PipelineState.VALIDATED,
        PipelineState.ADMITTED,
        PipelineState.SUMMARIZING,
        PipelineState.POLISHING,
        PipelineState.EVALUATED,
        PipelineState.DONE,
    )
    assert lifecycle.is_terminal
    assert lifecycle.path() == [
        "received", "validated", "admitted", "summarizing", "polishing", "evaluated", "done",
    ]


def test_cache_hit_path():
    lifecycle = RequestLifecycle()
    advance_all(lifecycle, PipelineState.VALIDATED, PipelineState.CACHE_HIT, PipelineState.DONE)
    assert lifecycle.state == PipelineState.DONE


def test_illegal_transition_raises():
    lifecycle = RequestLifecycle()
    with pytest.raises(ProcessingError):
        lifecycle.advance(PipelineState.SUMMARIZING)
    assert lifecycle.state == PipelineState.RECEIVED


def test_terminal_states_have_no_exits():
    lifecycle = RequestLifecycle()
    lifecycle.advance(PipelineState.FAILED_TERMINAL)
    assert lifecycle.is_terminal
    with pytest.raises(ProcessingError):
        lifecycle.advance(PipelineState.VALIDATED)


def test_retry_budget_is_bounded():
    """Only max_retries RETRYING transitions are allowed per request"""
    lifecycle = RequestLifecycle(max_retries=2)
    advance_all(lifecycle, PipelineState.VALIDATED, PipelineState.ADMITTED, PipelineState.SUMMARIZING)
    for _ in range(2):
        advance_all(lifecycle, PipelineState.FAILED, PipelineState.RETRYING, PipelineState.SUMMARIZING)
    assert lifecycle.retries == 2

    lifecycle.advance(PipelineState.FAILED)
    with pytest.raises(ProcessingError):
        lifecycle.advance(PipelineState.RETRYING)

    # fallback is still reachable once retries are spent
    advance_all(lifecycle, PipelineState.FALLBACK_BACKEND, PipelineState.SUMMARIZING, PipelineState.POLISHING)
    assert "fallback_backend" in lifecycle.path()


def test_request_ids_are_unique():
    assert RequestLifecycle().request_id != RequestLifecycle().request_id
