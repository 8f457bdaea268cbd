"""
Request lifecycle state machine
"""
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

import structlog

from summarizer.utils.errors import ProcessingError

logger = structlog.get_logger()


class PipelineState(str, Enum):
    RECEIVED = "received"
    VALIDATED = "validated"
    CACHE_HIT = "cache_hit"
    ADMITTED = "admitted"
    SUMMARIZING = "summarizing"
    FAILED = "failed"
    RETRYING = "retrying"
    FALLBACK_BACKEND = "fallback_backend"
    POLISHING = "polishing"
    EVALUATED = "evaluated"
    DONE = "done"
    FAILED_TERMINAL = "failed_terminal"


TRANSITIONS: Dict[PipelineState, FrozenSet[PipelineState]] = {
    PipelineState.RECEIVED: frozenset({PipelineState.VALIDATED, PipelineState.FAILED_TERMINAL}),
    PipelineState.VALIDATED: frozenset({PipelineState.CACHE_HIT, PipelineState.ADMITTED, PipelineState.FAILED_TERMINAL}),
    PipelineState.CACHE_HIT: frozenset({PipelineState.DONE}),
    PipelineState.ADMITTED: frozenset({PipelineState.SUMMARIZING, PipelineState.FAILED_TERMINAL}),
    PipelineState.SUMMARIZING: frozenset({PipelineState.POLISHING, PipelineState.FAILED}),
    PipelineState.FAILED: frozenset({
        PipelineState.RETRYING, PipelineState.FALLBACK_BACKEND, PipelineState.FAILED_TERMINAL,
    }),
    PipelineState.RETRYING: frozenset({PipelineState.SUMMARIZING}),
    PipelineState.FALLBACK_BACKEND: frozenset({PipelineState.SUMMARIZING}),
    PipelineState.POLISHING: frozenset({PipelineState.EVALUATED, PipelineState.FAILED_TERMINAL}),
    PipelineState.EVALUATED: frozenset({PipelineState.DONE, PipelineState.FAILED_TERMINAL}),
    PipelineState.DONE: frozenset(),
    PipelineState.FAILED_TERMINAL: frozenset(),
}


@dataclass(frozen=True)
class Transition:
    source: PipelineState
    target: PipelineState
    at: float
    note: Optional[str] = None


@dataclass
class RequestLifecycle:
    """
    Tracks one request through the pipeline

    Illegal transitions raise ProcessingError. The number of RETRYING
    transitions is bounded by max_retries.
    """
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    max_retries: int = 2
    state: PipelineState = PipelineState.RECEIVED
    history: List[Transition] = field(default_factory=list)
    retries: int = 0

    def advance(self, target: PipelineState, note: Optional[str] = None) -> None:
        if target not in TRANSITIONS[self.state]:
            raise ProcessingError(
                f"Illegal pipeline transition {self.state.value} -> {target.value}",
                details={"request_id": self.request_id},
            )
        if target == PipelineState.RETRYING:
            if self.retries >= self.max_retries:
                raise ProcessingError(
                    f"Retry budget of {self.max_retries} exhausted",
                    details={"request_id": self.request_id},
                )
            self.retries += 1
        self.history.append(Transition(self.state, target, time.monotonic(), note))
        logger.debug("Pipeline transition", request_id=self.request_id,
                     source=self.state.value, target=target.value, note=note)
        self.state = target

    @property
    def is_terminal(self) -> bool:
        return self.state in (PipelineState.DONE, PipelineState.FAILED_TERMINAL)

    def path(self) -> List[str]:
        """States visited so far, starting with RECEIVED"""
        return [PipelineState.RECEIVED.value] + [t.target.value for t in self.history]
