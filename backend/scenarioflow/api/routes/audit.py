"""API routes for the scenario audit trail and dashboard stats."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from scenarioflow.api.deps import get_tenant
from scenarioflow.api.presenters import display
from scenarioflow.api.routes.runs import AuditEntryResponse, RunResponse, audit_response, run_response
from scenarioflow.core.context import TenantContext
from scenarioflow.core.enums import Trend
from scenarioflow.db import get_db
from scenarioflow.services.analytics import get_stats
from scenarioflow.services.audit import list_audit_logs

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["audit"])


class AuditListResponse(BaseModel):
    entries: list[AuditEntryResponse]
    total: int


class StatsResponse(BaseModel):
    total_playbooks: int
    active_playbooks: int
    total_scenarios: int
    total_runs: int
    runs_by_status: dict[str, int]
    average_risk_score: Optional[float]
    recent_runs: list[RunResponse]
    risk_trend: str
    risk_trend_display: dict


@router.get("/audit", response_model=AuditListResponse, summary="List audit entries")
async def list_audit(
    scenario_id: Optional[str] = Query(None),
    run_id: Optional[str] = Query(None),
    playbook_id: Optional[str] = Query(None),
    event_type: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    tenant: TenantContext = Depends(get_tenant),
    db: AsyncSession = Depends(get_db),
):
    entries, total = await list_audit_logs(
        db, tenant,
        scenario_id=scenario_id, run_id=run_id, playbook_id=playbook_id,
        event_type=event_type, limit=limit, offset=offset,
    )
    return AuditListResponse(entries=[audit_response(e) for e in entries], total=total)


@router.get("/stats", response_model=StatsResponse, summary="Dashboard stats")
async def stats(
    tenant: TenantContext = Depends(get_tenant),
    db: AsyncSession = Depends(get_db),
):
    data = await get_stats(db, tenant)
    risk_trend: Trend = data["risk_trend"]
    return StatsResponse(
        total_playbooks=data["total_playbooks"],
        active_playbooks=data["active_playbooks"],
        total_scenarios=data["total_scenarios"],
        total_runs=data["total_runs"],
        runs_by_status=data["runs_by_status"],
        average_risk_score=data["average_risk_score"],
        recent_runs=[run_response(r) for r in data["recent_runs"]],
        risk_trend=risk_trend.value,
        risk_trend_display=display(Trend, risk_trend),
    )
