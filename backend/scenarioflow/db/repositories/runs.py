"""Run repository: tenant-scoped queries over scenario runs and their steps."""

import logging
from datetime import datetime
from typing import Sequence

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from scenarioflow.db.models import ScenarioRun, RunStep

logger = logging.getLogger(__name__)

SORTABLE_COLUMNS = {
    "created_at": ScenarioRun.created_at,
    "started_at": ScenarioRun.started_at,
    "completed_at": ScenarioRun.completed_at,
    "risk_score": ScenarioRun.risk_score,
    "opportunity_score": ScenarioRun.opportunity_score,
}


class RunRepository:
    """Typed queries for ScenarioRun and RunStep models."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # ── Runs ──────────────────────────────────────────────────────────

    async def get_run(self, run_id: str, org_id: str | None = None) -> ScenarioRun | None:
        stmt = select(ScenarioRun).where(ScenarioRun.id == run_id)
        if org_id is not None:
            stmt = stmt.where(ScenarioRun.org_id == org_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    def _filtered(self, stmt, org_id, scenario_id, playbook_id, status):
        stmt = stmt.where(ScenarioRun.org_id == org_id)
        if scenario_id:
            stmt = stmt.where(ScenarioRun.scenario_id == scenario_id)
        if playbook_id:
            stmt = stmt.where(ScenarioRun.playbook_id == playbook_id)
        if status:
            stmt = stmt.where(ScenarioRun.status == status)
        return stmt

    async def list_runs(
        self,
        org_id: str,
        scenario_id: str | None = None,
        playbook_id: str | None = None,
        status: str | None = None,
        limit: int = 50,
        offset: int = 0,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> Sequence[ScenarioRun]:
        column = SORTABLE_COLUMNS[sort_by]
        order = column.asc() if sort_order == "asc" else column.desc()
        stmt = self._filtered(select(ScenarioRun), org_id, scenario_id, playbook_id, status)
        stmt = stmt.order_by(order, ScenarioRun.id).limit(limit).offset(offset)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def count_runs(
        self,
        org_id: str,
        scenario_id: str | None = None,
        playbook_id: str | None = None,
        status: str | None = None,
    ) -> int:
        stmt = self._filtered(
            select(func.count(ScenarioRun.id)), org_id, scenario_id, playbook_id, status
        )
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def count_by_status(self, org_id: str) -> dict[str, int]:
        stmt = (
            select(ScenarioRun.status, func.count(ScenarioRun.id))
            .where(ScenarioRun.org_id == org_id)
            .group_by(ScenarioRun.status)
        )
        result = await self.session.execute(stmt)
        return {status: count for status, count in result.all()}

    async def count_active_for(
        self,
        active_statuses: Sequence[str],
        scenario_id: str | None = None,
        playbook_id: str | None = None,
    ) -> int:
        stmt = select(func.count(ScenarioRun.id)).where(
            ScenarioRun.status.in_(active_statuses)
        )
        if scenario_id:
            stmt = stmt.where(ScenarioRun.scenario_id == scenario_id)
        if playbook_id:
            stmt = stmt.where(ScenarioRun.playbook_id == playbook_id)
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def recent_completed(self, org_id: str, limit: int = 2) -> Sequence[ScenarioRun]:
        stmt = (
            select(ScenarioRun)
            .where(ScenarioRun.org_id == org_id, ScenarioRun.status == "completed")
            .order_by(ScenarioRun.completed_at.desc(), ScenarioRun.id)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def average_risk_score(self, org_id: str) -> float | None:
        stmt = select(func.avg(ScenarioRun.risk_score)).where(
            ScenarioRun.org_id == org_id,
            ScenarioRun.status == "completed",
        )
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def due_scheduled_run_ids(self, now: datetime) -> list[str]:
        stmt = select(ScenarioRun.id).where(
            ScenarioRun.status == "pending",
            ScenarioRun.scheduled_at.is_not(None),
            ScenarioRun.scheduled_at <= now,
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def run_ids_with_status(self, status: str) -> list[str]:
        result = await self.session.execute(
            select(ScenarioRun.id).where(ScenarioRun.status == status)
        )
        return list(result.scalars().all())

    # ── Steps ─────────────────────────────────────────────────────────

    async def get_step(self, step_id: str, org_id: str) -> RunStep | None:
        result = await self.session.execute(
            select(RunStep).where(RunStep.id == step_id, RunStep.org_id == org_id)
        )
        return result.scalar_one_or_none()

    async def due_timer_run_ids(self, now: datetime) -> list[str]:
        stmt = (
            select(RunStep.run_id)
            .join(ScenarioRun, ScenarioRun.id == RunStep.run_id)
            .where(
                ScenarioRun.status == "running",
                RunStep.wait_until.is_not(None),
                RunStep.wait_until <= now,
            )
            .distinct()
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def armed_timers(self) -> list[tuple[str, datetime]]:
        """(run_id, deadline) for every persisted wait timer and scheduled start."""
        waits = await self.session.execute(
            select(RunStep.run_id, RunStep.wait_until)
            .join(ScenarioRun, ScenarioRun.id == RunStep.run_id)
            .where(ScenarioRun.status == "running", RunStep.wait_until.is_not(None))
        )
        starts = await self.session.execute(
            select(ScenarioRun.id, ScenarioRun.scheduled_at).where(
                ScenarioRun.status == "pending",
                ScenarioRun.scheduled_at.is_not(None),
            )
        )
        return [(run_id, due) for run_id, due in waits.all()] + [
            (run_id, due) for run_id, due in starts.all()
        ]

    async def executing_steps(self) -> Sequence[RunStep]:
        result = await self.session.execute(
            select(RunStep).where(RunStep.status == "executing")
        )
        return result.scalars().all()
