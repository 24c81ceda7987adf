"""Run orchestrator: owns the scenario run state machine.

    pending -> running <-> paused
    running -> awaiting_approval -> running
    running -> completed | failed | cancelled
    pending | paused | awaiting_approval -> cancelled

Every mutating call holds the run's lock from the ``RunRegistry`` and works
in short transactions from the session factory.  The transaction that marks
a step executing commits before the dispatcher is awaited and the result is
recorded in a new one, so a crash mid-dispatch leaves the step executing
and ``recover()`` fails it instead of dispatching twice.
"""

from __future__ import annotations

import copy
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Optional, Protocol, Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from scenarioflow.config import settings
from scenarioflow.core.context import Clock, TenantContext, as_utc, utcnow
from scenarioflow.core.enums import (
    RESOLVED_STEP_STATUSES,
    AuditEventType,
    PlaybookStatus,
    RunStatus,
    StepStatus,
)
from scenarioflow.core.exceptions import NotFoundError, StateConflictError, ValidationError
from scenarioflow.db.models import RunStep, ScenarioAuditLog, ScenarioRun
from scenarioflow.db.repositories.runs import SORTABLE_COLUMNS, RunRepository
from scenarioflow.services.audit import log_event, run_timeline
from scenarioflow.services.dispatcher import ActionDispatcher, DispatchResult
from scenarioflow.services.playbooks import PlaybookDefinitionStore
from scenarioflow.services.run_registry import RunHandle, RunRegistry
from scenarioflow.services.scenarios import ScenarioRegistry

logger = logging.getLogger(__name__)


class TimerListener(Protocol):
    def arm(self, run_id: str, due_at: datetime) -> None:
        ...

    def disarm(self, run_id: str) -> None:
        ...


@dataclass
class RunDetail:
    run: ScenarioRun
    steps: list[RunStep]
    timeline: list[ScenarioAuditLog]


@dataclass
class RunPage:
    runs: list[ScenarioRun]
    total: int
    has_more: bool


@dataclass
class RecoveryReport:
    failed_runs: list[str] = field(default_factory=list)
    failed_steps: int = 0
    resumed_runs: int = 0


def _clamp_score(value: float) -> float:
    return round(max(0.0, min(100.0, value)), 1)


class RunOrchestrator:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        dispatcher: ActionDispatcher,
        clock: Clock = utcnow,
        registry: Optional[RunRegistry] = None,
    ):
        self._session_factory = session_factory
        self._dispatcher = dispatcher
        self._clock = clock
        self.registry = registry or RunRegistry()
        self._timer_listener: Optional[TimerListener] = None

    def set_timer_listener(self, listener: Optional[TimerListener]) -> None:
        self._timer_listener = listener

    # ── Internals ─────────────────────────────────────────────────────

    @asynccontextmanager
    async def _locked(self, run_id: str) -> AsyncIterator[RunHandle]:
        handle = self.registry.handle(run_id)
        async with handle.lock:
            yield handle

    async def _load(
        self, session: AsyncSession, run_id: str, tenant: Optional[TenantContext] = None
    ) -> ScenarioRun:
        run = await RunRepository(session).get_run(
            run_id, tenant.org_id if tenant is not None else None
        )
        if run is None:
            raise NotFoundError("ScenarioRun", run_id)
        return run

    async def _require(self, tenant: TenantContext, run_id: str) -> ScenarioRun:
        async with self._session_factory() as session:
            return await self._load(session, run_id, tenant)

    @staticmethod
    def _next_due(run: ScenarioRun) -> Optional[datetime]:
        if run.status == RunStatus.PENDING.value and run.scheduled_at is not None:
            return as_utc(run.scheduled_at)
        if run.status == RunStatus.RUNNING.value:
            for step in run.steps:
                if step.wait_until is not None:
                    return as_utc(step.wait_until)
        return None

    def _notify(self, run_id: str, due_at: Optional[datetime]) -> None:
        if self._timer_listener is None:
            return
        if due_at is None:
            self._timer_listener.disarm(run_id)
        else:
            self._timer_listener.arm(run_id, due_at)

    def _mark_ready(
        self,
        session: AsyncSession,
        tenant: TenantContext,
        run: ScenarioRun,
        step: RunStep,
        now: datetime,
    ) -> None:
        step.status = StepStatus.READY.value
        step.ready_at = now
        step.wait_until = None
        step.wait_remaining_seconds = None
        step.execution_context = {
            "orgId": run.org_id,
            "runId": run.id,
            "scenarioId": run.scenario_id,
            "playbookId": run.playbook_id,
            "playbookVersion": run.playbook_version,
            "stepIndex": step.step_index,
            "stepName": step.name,
            "readyAt": now.isoformat(),
            "previousOutcomes": [
                {"stepIndex": s.step_index, "status": s.status}
                for s in run.steps if s.step_index < step.step_index
            ],
        }
        log_event(
            session, tenant, AuditEventType.STEP_READY,
            scenario_id=run.scenario_id, run_id=run.id, step_id=step.id,
            payload={"stepIndex": step.step_index, "requiresApproval": step.requires_approval},
        )

    def _complete(
        self, session: AsyncSession, tenant: TenantContext, run: ScenarioRun, now: datetime
    ) -> None:
        """Aggregate executed-step impacts into the run's scores and summary."""
        executed = [s for s in run.steps if s.status == StepStatus.COMPLETED.value]
        skipped = [s for s in run.steps if s.status == StepStatus.SKIPPED.value]
        failed = [s for s in run.steps if s.status == StepStatus.FAILED.value]

        sentiment = sum(float((s.simulated_impact or {}).get("sentimentDelta", 0)) for s in executed)
        coverage = sum(float((s.simulated_impact or {}).get("coverageDelta", 0)) for s in executed)
        engagement = sum(float((s.simulated_impact or {}).get("engagementDelta", 0)) for s in executed)

        if failed:
            risk = 50 + len(failed) * 10
        else:
            risk = max(0.0, -sentiment * 2)
        opportunity = max(0.0, sentiment * 2 + coverage)

        started = as_utc(run.started_at) if run.started_at else now
        run.status = RunStatus.COMPLETED.value
        run.completed_at = now
        run.risk_score = _clamp_score(risk)
        run.opportunity_score = _clamp_score(opportunity)
        run.narrative_summary = (
            f"Executed {len(executed)} of {len(run.steps)} step(s)"
            f"{f', {len(skipped)} skipped' if skipped else ''}. "
            f"Net sentiment {sentiment:+.1f}, coverage {coverage:+.1f}, "
            f"engagement {engagement:+.1f}. Risk {run.risk_score:.0f}/100, "
            f"opportunity {run.opportunity_score:.0f}/100."
        )
        run.result_summary = {
            "totalSteps": len(run.steps),
            "executedSteps": len(executed),
            "skippedSteps": len(skipped),
            "failedSteps": len(failed),
            "sentimentDelta": round(sentiment, 2),
            "coverageDelta": round(coverage, 2),
            "engagementDelta": round(engagement, 2),
            "durationSeconds": round((now - started).total_seconds(), 1),
        }
        log_event(
            session, tenant, AuditEventType.RUN_COMPLETED,
            scenario_id=run.scenario_id, run_id=run.id, playbook_id=run.playbook_id,
            payload={"riskScore": run.risk_score, "opportunityScore": run.opportunity_score},
        )
        logger.info("Run %s completed (risk=%.1f, opportunity=%.1f)",
                    run.id, run.risk_score, run.opportunity_score)

    async def _dispatch(
        self, run_id: str, step_index: int, action_type: str,
        payload: dict[str, Any], context: dict[str, Any],
    ) -> DispatchResult:
        try:
            result = await self._dispatcher.dispatch(action_type, payload, context)
        except Exception as exc:
            logger.warning("Dispatch of %s for run %s step %d raised: %s",
                           action_type, run_id, step_index, exc)
            return DispatchResult(success=False, error=str(exc) or type(exc).__name__)
        if not result.success and not result.error:
            result.error = "Dispatcher reported failure"
        return result

    async def _record_result(
        self, run_id: str, step_id: str, result: DispatchResult
    ) -> bool:
        """Persist a dispatch outcome. Returns False if the run failed."""
        async with self._session_factory() as session, session.begin():
            run = await self._load(session, run_id)
            tenant = TenantContext(run.org_id)
            step = next(s for s in run.steps if s.id == step_id)
            now = self._clock()
            step.executed_at = now
            step.outcome = {
                "success": result.success,
                "impact": result.impact,
                "error": result.error,
                "details": result.details,
            }
            if result.success:
                step.status = StepStatus.COMPLETED.value
                step.simulated_impact = result.impact
                log_event(
                    session, tenant, AuditEventType.STEP_EXECUTED,
                    scenario_id=run.scenario_id, run_id=run.id, step_id=step.id,
                    payload={"stepIndex": step.step_index, "actionType": step.action_type,
                             "impact": result.impact},
                )
                logger.info("Run %s step %d (%s) completed",
                            run_id, step.step_index, step.action_type)
                return True

            step.status = StepStatus.FAILED.value
            step.error_message = result.error
            run.status = RunStatus.FAILED.value
            run.completed_at = now
            run.error_message = f"Step {step.step_index} ({step.name}) failed: {result.error}"
            log_event(
                session, tenant, AuditEventType.STEP_FAILED,
                scenario_id=run.scenario_id, run_id=run.id, step_id=step.id,
                payload={"stepIndex": step.step_index, "error": result.error},
            )
            log_event(
                session, tenant, AuditEventType.RUN_FAILED,
                scenario_id=run.scenario_id, run_id=run.id, playbook_id=run.playbook_id,
                payload={"error": run.error_message},
            )
            logger.warning("Run %s failed at step %d: %s", run_id, step.step_index, result.error)
            return False

    async def _advance(
        self, run_id: str, handle: RunHandle, now: Optional[datetime] = None
    ) -> Optional[datetime]:
        """Move the run forward until it suspends or finishes.

        Must be called with ``handle.lock`` held.  Returns the deadline of
        the timer left armed, if any.
        """
        while True:
            async with self._session_factory() as session, session.begin():
                run = await self._load(session, run_id)
                if (
                    run.status != RunStatus.RUNNING.value
                    or handle.cancel_requested
                    or handle.pause_requested
                ):
                    return self._next_due(run)

                tenant = TenantContext(run.org_id)
                current = now or self._clock()
                step = next(
                    (s for s in run.steps if StepStatus(s.status) not in RESOLVED_STEP_STATUSES),
                    None,
                )
                if step is None:
                    self._complete(session, tenant, run, current)
                    self.registry.discard(run_id)
                    return None
                if step.status not in (StepStatus.PENDING.value, StepStatus.READY.value):
                    logger.warning("Run %s stalled on step %d in status %s",
                                   run_id, step.step_index, step.status)
                    return None

                if step.status == StepStatus.PENDING.value:
                    if step.wait_duration_minutes > 0 and step.wait_until is None:
                        step.wait_until = current + timedelta(minutes=step.wait_duration_minutes)
                        logger.info("Run %s step %d waiting until %s",
                                    run_id, step.step_index, step.wait_until.isoformat())
                        return step.wait_until
                    if step.wait_until is not None and as_utc(step.wait_until) > current:
                        return as_utc(step.wait_until)
                    self._mark_ready(session, tenant, run, step, current)

                if step.requires_approval and step.approved_at is None:
                    run.status = RunStatus.AWAITING_APPROVAL.value
                    logger.info("Run %s awaiting approval of step %d (roles=%s)",
                                run_id, step.step_index, step.approval_roles)
                    return None

                self.registry.check_sequence(handle, run.steps, step)
                step.status = StepStatus.EXECUTING.value
                step_id = step.id
                step_index = step.step_index
                action_type = step.action_type
                payload = copy.deepcopy(step.action_payload or {})
                context = copy.deepcopy(step.execution_context or {})

            handle.executing_step = step_index
            try:
                result = await self._dispatch(run_id, step_index, action_type, payload, context)
            finally:
                handle.executing_step = None

            if not await self._record_result(run_id, step_id, result):
                self.registry.discard(run_id)
                return None

    # ── Operations ────────────────────────────────────────────────────

    async def start_run(
        self,
        tenant: TenantContext,
        scenario_id: str,
        scheduled_at: Optional[datetime] = None,
    ) -> ScenarioRun:
        """Snapshot the scenario's pinned template into a new run.

        With a future ``scheduled_at`` the run stays pending until its start
        time fires; otherwise it starts advancing immediately.
        """
        now = self._clock()
        deferred = scheduled_at is not None and as_utc(scheduled_at) > now

        async with self._session_factory() as session, session.begin():
            scenario = await ScenarioRegistry(session).get(tenant, scenario_id)
            template = await PlaybookDefinitionStore(session).get(
                tenant, scenario.playbook_id, scenario.playbook_version
            )
            if template.status != PlaybookStatus.ACTIVE.value:
                raise StateConflictError(
                    f"Playbook {template.id} v{template.version} is {template.status}; "
                    "only active versions can run",
                    current_status=template.status,
                )

            run = ScenarioRun(
                org_id=tenant.org_id,
                scenario_id=scenario.id,
                playbook_id=template.id,
                playbook_version=template.version,
                status=RunStatus.PENDING.value if deferred else RunStatus.RUNNING.value,
                scheduled_at=as_utc(scheduled_at) if scheduled_at is not None else None,
                started_at=None if deferred else now,
                started_by=tenant.actor_id,
                steps=[
                    RunStep(
                        org_id=tenant.org_id,
                        step_index=d.step_index,
                        name=d.name,
                        description=d.description,
                        action_type=d.action_type,
                        action_payload=copy.deepcopy(d.action_payload or {}),
                        requires_approval=d.requires_approval,
                        approval_roles=list(d.approval_roles or []),
                        wait_duration_minutes=d.wait_duration_minutes,
                        status=StepStatus.PENDING.value,
                    )
                    for d in sorted(template.steps, key=lambda s: s.step_index)
                ],
            )
            session.add(run)
            await session.flush()
            if not deferred:
                log_event(
                    session, tenant, AuditEventType.RUN_STARTED,
                    scenario_id=scenario.id, run_id=run.id, playbook_id=template.id,
                    payload={"playbookVersion": template.version, "stepCount": len(run.steps)},
                )
            run_id = run.id

        if deferred:
            logger.info("Run %s scheduled for %s", run_id, as_utc(scheduled_at).isoformat())
            self._notify(run_id, as_utc(scheduled_at))
        else:
            logger.info("Run %s started for scenario %s (playbook %s v%d)",
                        run_id, scenario_id, run.playbook_id, run.playbook_version)
            async with self._locked(run_id) as handle:
                self._notify(run_id, await self._advance(run_id, handle))
        return await self.get_run(tenant, run_id)

    async def pause_run(self, tenant: TenantContext, run_id: str) -> ScenarioRun:
        """Pause cooperatively: an executing step finishes, the next one waits."""
        run = await self._require(tenant, run_id)
        if run.status == RunStatus.PAUSED.value:
            return run
        if run.status != RunStatus.RUNNING.value:
            raise StateConflictError(
                f"Cannot pause a {run.status} run", current_status=run.status
            )

        handle = self.registry.handle(run_id)
        handle.pause_requested = True
        try:
            async with handle.lock:
                async with self._session_factory() as session, session.begin():
                    run = await self._load(session, run_id, tenant)
                    if run.status == RunStatus.PAUSED.value:
                        return run
                    if run.status != RunStatus.RUNNING.value:
                        raise StateConflictError(
                            f"Cannot pause a {run.status} run", current_status=run.status
                        )
                    now = self._clock()
                    remaining = None
                    for step in run.steps:
                        if step.wait_until is not None:
                            remaining = max(0.0, (as_utc(step.wait_until) - now).total_seconds())
                            step.wait_remaining_seconds = remaining
                            step.wait_until = None
                    run.status = RunStatus.PAUSED.value
                    log_event(
                        session, tenant, AuditEventType.RUN_PAUSED,
                        scenario_id=run.scenario_id, run_id=run.id,
                        payload={"remainingWaitSeconds": remaining},
                    )
                self._notify(run_id, None)
        finally:
            handle.pause_requested = False
        logger.info("Run %s paused (remaining wait=%s)", run_id, remaining)
        return run

    async def resume_run(self, tenant: TenantContext, run_id: str) -> ScenarioRun:
        await self._require(tenant, run_id)
        async with self._locked(run_id) as handle:
            async with self._session_factory() as session, session.begin():
                run = await self._load(session, run_id, tenant)
                if run.status == RunStatus.RUNNING.value:
                    return run
                if run.status != RunStatus.PAUSED.value:
                    raise StateConflictError(
                        f"Cannot resume a {run.status} run", current_status=run.status
                    )
                now = self._clock()
                for step in run.steps:
                    if step.wait_remaining_seconds is not None:
                        step.wait_until = now + timedelta(seconds=step.wait_remaining_seconds)
                        step.wait_remaining_seconds = None
                run.status = RunStatus.RUNNING.value
                log_event(
                    session, tenant, AuditEventType.RUN_RESUMED,
                    scenario_id=run.scenario_id, run_id=run.id,
                )
            logger.info("Run %s resumed", run_id)
            self._notify(run_id, await self._advance(run_id, handle))
        return await self.get_run(tenant, run_id)

    async def cancel_run(
        self, tenant: TenantContext, run_id: str, reason: Optional[str] = None
    ) -> ScenarioRun:
        """Cancel cooperatively: an executing step finishes, the rest are skipped."""
        run = await self._require(tenant, run_id)
        if run.status == RunStatus.CANCELLED.value:
            return run
        if RunStatus(run.status).is_terminal:
            raise StateConflictError(
                f"Cannot cancel a {run.status} run", current_status=run.status
            )

        handle = self.registry.handle(run_id)
        handle.cancel_requested = True
        try:
            async with handle.lock:
                async with self._session_factory() as session, session.begin():
                    run = await self._load(session, run_id, tenant)
                    if run.status == RunStatus.CANCELLED.value:
                        self.registry.discard(run_id)
                        return run
                    if RunStatus(run.status).is_terminal:
                        raise StateConflictError(
                            f"Cannot cancel a {run.status} run", current_status=run.status
                        )
                    previous = run.status
                    skipped = 0
                    for step in run.steps:
                        if step.status in (StepStatus.PENDING.value, StepStatus.READY.value):
                            step.status = StepStatus.SKIPPED.value
                            step.wait_until = None
                            step.wait_remaining_seconds = None
                            skipped += 1
                    run.status = RunStatus.CANCELLED.value
                    run.completed_at = self._clock()
                    run.cancel_reason = reason
                    log_event(
                        session, tenant, AuditEventType.RUN_CANCELLED,
                        scenario_id=run.scenario_id, run_id=run.id, playbook_id=run.playbook_id,
                        payload={"reason": reason, "previousStatus": previous,
                                 "skippedSteps": skipped},
                    )
                self._notify(run_id, None)
        except StateConflictError:
            handle.cancel_requested = False
            raise
        self.registry.discard(run_id)
        logger.info("Run %s cancelled from %s (%d steps skipped)", run_id, previous, skipped)
        return run

    async def apply_approval(
        self,
        tenant: TenantContext,
        step_id: str,
        approved: bool,
        notes: Optional[str],
        actor_id: Optional[str],
    ) -> RunStep:
        """Record an approval decision and resume the run. Used by ApprovalGateway."""
        async with self._session_factory() as session:
            step = await RunRepository(session).get_step(step_id, tenant.org_id)
            if step is None:
                raise NotFoundError("RunStep", step_id)
            run_id = step.run_id

        async with self._locked(run_id) as handle:
            async with self._session_factory() as session, session.begin():
                run = await self._load(session, run_id, tenant)
                step = next(s for s in run.steps if s.id == step_id)
                if (
                    run.status != RunStatus.AWAITING_APPROVAL.value
                    or step.status != StepStatus.READY.value
                    or not step.requires_approval
                ):
                    raise StateConflictError(
                        f"Step {step.step_index} of run {run_id} is not awaiting approval "
                        f"(run {run.status}, step {step.status})",
                        current_status=run.status,
                    )
                step.approved_at = self._clock()
                step.approved_by = actor_id
                step.approval_notes = notes
                run.status = RunStatus.RUNNING.value
                if approved:
                    log_event(
                        session, tenant, AuditEventType.STEP_APPROVED,
                        scenario_id=run.scenario_id, run_id=run.id, step_id=step.id,
                        payload={"stepIndex": step.step_index, "notes": notes},
                        actor_id=actor_id,
                    )
                else:
                    step.status = StepStatus.SKIPPED.value
                    log_event(
                        session, tenant, AuditEventType.STEP_SKIPPED,
                        scenario_id=run.scenario_id, run_id=run.id, step_id=step.id,
                        payload={"stepIndex": step.step_index, "rejected": True, "notes": notes},
                        actor_id=actor_id,
                    )
            logger.info("Run %s step %s %s by %s", run_id, step_id,
                        "approved" if approved else "rejected", actor_id)
            self._notify(run_id, await self._advance(run_id, handle))

        async with self._session_factory() as session:
            return await RunRepository(session).get_step(step_id, tenant.org_id)

    async def fire_due_timers(
        self, now: Optional[datetime] = None, run_id: Optional[str] = None
    ) -> list[str]:
        """Advance every run whose wait timer or scheduled start is due.

        Returns the ids of the runs that were advanced.
        """
        current = as_utc(now) if now is not None else self._clock()
        async with self._session_factory() as session:
            repo = RunRepository(session)
            starts = await repo.due_scheduled_run_ids(current)
            waits = await repo.due_timer_run_ids(current)
        if run_id is not None:
            starts = [r for r in starts if r == run_id]
            waits = [r for r in waits if r == run_id]

        fired: list[str] = []
        for rid in starts:
            try:
                async with self._locked(rid) as handle:
                    async with self._session_factory() as session, session.begin():
                        run = await self._load(session, rid)
                        if (
                            run.status != RunStatus.PENDING.value
                            or run.scheduled_at is None
                            or as_utc(run.scheduled_at) > current
                        ):
                            continue
                        run.status = RunStatus.RUNNING.value
                        run.started_at = current
                        log_event(
                            session, TenantContext(run.org_id), AuditEventType.RUN_STARTED,
                            scenario_id=run.scenario_id, run_id=run.id,
                            playbook_id=run.playbook_id,
                            payload={"playbookVersion": run.playbook_version,
                                     "stepCount": len(run.steps),
                                     "scheduledAt": as_utc(run.scheduled_at).isoformat()},
                        )
                    logger.info("Scheduled run %s started", rid)
                    self._notify(rid, await self._advance(rid, handle, current))
                fired.append(rid)
            except Exception:
                logger.exception("Failed to start scheduled run %s", rid)

        for rid in waits:
            try:
                async with self._locked(rid) as handle:
                    self._notify(rid, await self._advance(rid, handle, current))
                fired.append(rid)
            except Exception:
                logger.exception("Failed to fire wait timer for run %s", rid)
        return fired

    async def recover(self) -> RecoveryReport:
        """Reconcile runs left behind by a previous process.

        Steps still marked executing were dispatched but never recorded; they
        are failed rather than dispatched again, and their runs fail with
        them.  Running runs are advanced so due timers fire and future ones
        are handed back to the timer listener.
        """
        report = RecoveryReport()
        now = self._clock()
        async with self._session_factory() as session, session.begin():
            repo = RunRepository(session)
            for step in await repo.executing_steps():
                run = await repo.get_run(step.run_id)
                tenant = TenantContext(step.org_id)
                step.status = StepStatus.FAILED.value
                step.error_message = "Interrupted while executing; outcome unknown"
                report.failed_steps += 1
                log_event(
                    session, tenant, AuditEventType.STEP_FAILED,
                    scenario_id=run.scenario_id if run else None, run_id=step.run_id,
                    step_id=step.id,
                    payload={"stepIndex": step.step_index, "error": step.error_message},
                )
                if run is not None and not RunStatus(run.status).is_terminal:
                    run.status = RunStatus.FAILED.value
                    run.completed_at = now
                    run.error_message = (
                        f"Step {step.step_index} ({step.name}) was interrupted by a restart"
                    )
                    log_event(
                        session, tenant, AuditEventType.RUN_FAILED,
                        scenario_id=run.scenario_id, run_id=run.id,
                        playbook_id=run.playbook_id, payload={"error": run.error_message},
                    )
                    report.failed_runs.append(run.id)
                    logger.warning("Recovery failed run %s (step %d was executing)",
                                   run.id, step.step_index)
            running = await repo.run_ids_with_status(RunStatus.RUNNING.value)
            armed = await repo.armed_timers()

        for rid in running:
            try:
                async with self._locked(rid) as handle:
                    self._notify(rid, await self._advance(rid, handle))
                report.resumed_runs += 1
            except Exception:
                logger.exception("Recovery could not advance run %s", rid)
        for rid, due in armed:
            if rid not in running:
                self._notify(rid, as_utc(due))

        logger.info("Recovery: %d interrupted step(s) failed, %d running run(s) resumed",
                    report.failed_steps, report.resumed_runs)
        return report

    async def armed_timers(self) -> list[tuple[str, datetime]]:
        async with self._session_factory() as session:
            timers = await RunRepository(session).armed_timers()
        return [(rid, as_utc(due)) for rid, due in timers]

    # ── Reads ─────────────────────────────────────────────────────────

    async def get_run(self, tenant: TenantContext, run_id: str) -> ScenarioRun:
        return await self._require(tenant, run_id)

    async def get_run_detail(self, tenant: TenantContext, run_id: str) -> RunDetail:
        async with self._session_factory() as session:
            run = await self._load(session, run_id, tenant)
            timeline = await run_timeline(session, tenant, run_id)
        return RunDetail(run=run, steps=list(run.steps), timeline=list(timeline))

    async def list_runs(
        self,
        tenant: TenantContext,
        scenario_id: Optional[str] = None,
        playbook_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> RunPage:
        if sort_by not in SORTABLE_COLUMNS:
            raise ValidationError(
                f"Cannot sort by {sort_by!r}", {"sort_by": sorted(SORTABLE_COLUMNS)}
            )
        if sort_order not in ("asc", "desc"):
            raise ValidationError("sort_order must be 'asc' or 'desc'", {"sort_order": sort_order})
        if status is not None:
            try:
                status = RunStatus(status).value
            except ValueError as exc:
                raise ValidationError(str(exc), {"status": status}) from exc
        if limit < 1 or offset < 0:
            raise ValidationError("limit must be >= 1 and offset >= 0",
                                  {"limit": limit, "offset": offset})
        limit = min(limit, settings.RUN_LIST_MAX_LIMIT)

        async with self._session_factory() as session:
            repo = RunRepository(session)
            runs = await repo.list_runs(
                tenant.org_id, scenario_id, playbook_id, status,
                limit=limit, offset=offset, sort_by=sort_by, sort_order=sort_order,
            )
            total = await repo.count_runs(tenant.org_id, scenario_id, playbook_id, status)
        return RunPage(runs=list(runs), total=total, has_more=offset + len(runs) < total)

    async def list_run_steps(self, tenant: TenantContext, run_id: str) -> Sequence[RunStep]:
        run = await self._require(tenant, run_id)
        return list(run.steps)
