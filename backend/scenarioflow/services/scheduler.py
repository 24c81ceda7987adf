"""Run scheduler: fires wait timers and scheduled starts.

One asyncio task per timed run, keyed by run id.  Deadlines live in the
database (``RunStep.wait_until`` / ``ScenarioRun.scheduled_at``), so the
tasks are only a wake-up mechanism: ``rehydrate()`` rebuilds them after a
restart and a fired task lets the orchestrator re-check what is due.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from scenarioflow.config import settings
from scenarioflow.core.context import Clock, utcnow

if TYPE_CHECKING:
    from scenarioflow.services.orchestrator import RunOrchestrator

logger = logging.getLogger(__name__)


class RunScheduler:
    """Timer registry driving ``RunOrchestrator.fire_due_timers``."""

    def __init__(
        self,
        orchestrator: "RunOrchestrator",
        clock: Clock = utcnow,
        poll_interval: Optional[float] = None,
    ):
        self._orchestrator = orchestrator
        self._clock = clock
        self._poll_interval = poll_interval or settings.SCHEDULER_POLL_INTERVAL_SECONDS
        self._tasks: dict[str, asyncio.Task] = {}
        self._due: dict[str, datetime] = {}
        self._started = False
        orchestrator.set_timer_listener(self)

    @property
    def armed(self) -> dict[str, datetime]:
        return dict(self._due)

    async def start(self) -> int:
        if self._started:
            return len(self._tasks)
        self._started = True
        count = await self.rehydrate()
        logger.info(f"Run scheduler started with {count} armed timer(s)")
        return count

    async def stop(self):
        self._started = False
        tasks = list(self._tasks.values())
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._due.clear()
        logger.info("Run scheduler stopped")

    async def rehydrate(self) -> int:
        """Arm a task for every deadline persisted in the database."""
        timers = await self._orchestrator.armed_timers()
        for run_id, due_at in timers:
            self.arm(run_id, due_at)
        return len(timers)

    def arm(self, run_id: str, due_at: datetime) -> None:
        if not self._started:
            return
        if self._due.get(run_id) == due_at and run_id in self._tasks:
            return
        self.disarm(run_id)
        self._due[run_id] = due_at
        self._tasks[run_id] = asyncio.create_task(
            self._wait_and_fire(run_id, due_at), name=f"run-timer-{run_id}"
        )
        logger.debug(f"Armed timer for run {run_id} at {due_at.isoformat()}")

    def disarm(self, run_id: str) -> None:
        self._due.pop(run_id, None)
        task = self._tasks.pop(run_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _wait_and_fire(self, run_id: str, due_at: datetime):
        while True:
            remaining = (due_at - self._clock()).total_seconds()
            if remaining <= 0:
                break
            await asyncio.sleep(min(remaining, self._poll_interval))

        # Detach first so the orchestrator's re-arm/disarm does not cancel us
        if self._tasks.get(run_id) is asyncio.current_task():
            self._tasks.pop(run_id, None)
            self._due.pop(run_id, None)
        try:
            fired = await self._orchestrator.fire_due_timers(run_id=run_id)
        except Exception:
            logger.exception(f"Timer for run {run_id} failed to fire")
            return
        if fired:
            logger.info(f"Timer fired for run {run_id}")
