"""In-process coordination for live runs.

One ``RunHandle`` per run id holds the lock every mutating orchestrator
call takes, the cooperative cancel and pause flags, and the index of the
step being dispatched.  Runs never share a handle, so there is no
cross-run locking.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from scenarioflow.core.enums import RESOLVED_STEP_STATUSES, StepStatus
from scenarioflow.core.exceptions import SequenceViolationError
from scenarioflow.db.models import RunStep

logger = logging.getLogger(__name__)


@dataclass
class RunHandle:
    run_id: str
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    cancel_requested: bool = False
    pause_requested: bool = False
    executing_step: Optional[int] = None


class RunRegistry:
    def __init__(self):
        self._handles: dict[str, RunHandle] = {}

    def handle(self, run_id: str) -> RunHandle:
        h = self._handles.get(run_id)
        if h is None:
            h = RunHandle(run_id)
            self._handles[run_id] = h
        return h

    def discard(self, run_id: str) -> None:
        self._handles.pop(run_id, None)

    def __contains__(self, run_id: str) -> bool:
        return run_id in self._handles

    def __len__(self) -> int:
        return len(self._handles)

    def check_sequence(self, handle: RunHandle, steps: Sequence[RunStep], step: RunStep) -> None:
        """Raise unless ``step`` may enter executing now."""
        if handle.executing_step is not None:
            raise SequenceViolationError(
                f"Step {handle.executing_step} of run {handle.run_id} is still executing",
                current_status=StepStatus.EXECUTING.value,
            )
        for other in steps:
            if other.step_index < step.step_index and StepStatus(other.status) not in RESOLVED_STEP_STATUSES:
                raise SequenceViolationError(
                    f"Step {step.step_index} of run {handle.run_id} cannot execute: "
                    f"step {other.step_index} is {other.status}",
                    current_status=other.status,
                )
            if other.id != step.id and other.status == StepStatus.EXECUTING.value:
                raise SequenceViolationError(
                    f"Step {other.step_index} of run {handle.run_id} is executing",
                    current_status=other.status,
                )
