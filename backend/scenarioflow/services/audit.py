"""Scenario audit trail.

Entries are added to the caller's session so they commit (or roll back)
together with the state change they describe.
"""

import logging
from typing import Any, Optional, Sequence

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from scenarioflow.core.context import TenantContext
from scenarioflow.core.enums import AuditEventType
from scenarioflow.db.models import ScenarioAuditLog

logger = logging.getLogger(__name__)


def log_event(
    session: AsyncSession,
    tenant: TenantContext,
    event_type: AuditEventType,
    *,
    scenario_id: Optional[str] = None,
    run_id: Optional[str] = None,
    playbook_id: Optional[str] = None,
    step_id: Optional[str] = None,
    payload: Optional[dict[str, Any]] = None,
    actor_id: Optional[str] = None,
) -> ScenarioAuditLog:
    """
    Add an audit entry to the session.

    Args:
        session: Session holding the state change being audited
        tenant: Owning organization; its actor is the default actor
        event_type: Lifecycle event
        payload: Extra event details as JSON
        actor_id: Overrides the tenant actor (e.g. an approver)
    """
    entry = ScenarioAuditLog(
        org_id=tenant.org_id,
        scenario_id=scenario_id,
        run_id=run_id,
        playbook_id=playbook_id,
        step_id=step_id,
        event_type=event_type.value,
        payload=payload,
        actor_id=actor_id if actor_id is not None else tenant.actor_id,
    )
    session.add(entry)
    return entry


async def list_audit_logs(
    session: AsyncSession,
    tenant: TenantContext,
    *,
    scenario_id: Optional[str] = None,
    run_id: Optional[str] = None,
    playbook_id: Optional[str] = None,
    event_type: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[Sequence[ScenarioAuditLog], int]:
    """Newest-first audit entries for a tenant, plus the unpaginated total."""
    filters = [ScenarioAuditLog.org_id == tenant.org_id]
    if scenario_id:
        filters.append(ScenarioAuditLog.scenario_id == scenario_id)
    if run_id:
        filters.append(ScenarioAuditLog.run_id == run_id)
    if playbook_id:
        filters.append(ScenarioAuditLog.playbook_id == playbook_id)
    if event_type:
        filters.append(ScenarioAuditLog.event_type == event_type)

    stmt = (
        select(ScenarioAuditLog)
        .where(*filters)
        .order_by(ScenarioAuditLog.created_at.desc(), ScenarioAuditLog.id)
        .limit(limit)
        .offset(offset)
    )
    result = await session.execute(stmt)
    total = await session.scalar(select(func.count(ScenarioAuditLog.id)).where(*filters))
    return result.scalars().all(), total or 0


async def run_timeline(
    session: AsyncSession, tenant: TenantContext, run_id: str
) -> Sequence[ScenarioAuditLog]:
    result = await session.execute(
        select(ScenarioAuditLog)
        .where(
            ScenarioAuditLog.org_id == tenant.org_id,
            ScenarioAuditLog.run_id == run_id,
        )
        .order_by(ScenarioAuditLog.created_at, ScenarioAuditLog.id)
    )
    return result.scalars().all()
