"""API routes for scenario runs: list, inspect, pause/resume/cancel, approve."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from scenarioflow.api.deps import get_approvals, get_orchestrator, get_tenant
from scenarioflow.api.presenters import display, iso
from scenarioflow.core.context import TenantContext
from scenarioflow.core.enums import ActionType, RunStatus, StepStatus
from scenarioflow.db.models import RunStep, ScenarioAuditLog, ScenarioRun
from scenarioflow.services.approvals import ApprovalGateway
from scenarioflow.services.orchestrator import RunOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/runs", tags=["runs"])


# ── Models ────────────────────────────────────────────────────────────


class RunStepResponse(BaseModel):
    id: str
    run_id: str
    step_index: int
    name: str
    action_type: str
    action_label: str
    action_payload: dict
    requires_approval: bool
    approval_roles: list[str]
    wait_duration_minutes: int
    status: str
    status_display: dict
    execution_context: Optional[dict]
    outcome: Optional[dict]
    simulated_impact: Optional[dict]
    wait_until: Optional[str]
    wait_remaining_seconds: Optional[float]
    ready_at: Optional[str]
    executed_at: Optional[str]
    approved_at: Optional[str]
    approved_by: Optional[str]
    approval_notes: Optional[str]
    error_message: Optional[str]


class RunResponse(BaseModel):
    id: str
    scenario_id: str
    playbook_id: str
    playbook_version: int
    status: str
    status_display: dict
    scheduled_at: Optional[str]
    started_at: Optional[str]
    completed_at: Optional[str]
    risk_score: Optional[float]
    opportunity_score: Optional[float]
    narrative_summary: Optional[str]
    error_message: Optional[str]
    cancel_reason: Optional[str]
    result_summary: Optional[dict]
    started_by: Optional[str]
    created_at: str
    steps: list[RunStepResponse]


class RunListResponse(BaseModel):
    runs: list[RunResponse]
    total: int
    has_more: bool


class AuditEntryResponse(BaseModel):
    id: str
    event_type: str
    scenario_id: Optional[str]
    run_id: Optional[str]
    playbook_id: Optional[str]
    step_id: Optional[str]
    payload: Optional[dict]
    actor_id: Optional[str]
    created_at: str


class RunDetailResponse(BaseModel):
    run: RunResponse
    timeline: list[AuditEntryResponse]


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class ApprovalRequest(BaseModel):
    approved: bool
    notes: Optional[str] = None


def step_response(s: RunStep) -> RunStepResponse:
    return RunStepResponse(
        id=s.id,
        run_id=s.run_id,
        step_index=s.step_index,
        name=s.name,
        action_type=s.action_type,
        action_label=display(ActionType, s.action_type)["label"],
        action_payload=s.action_payload or {},
        requires_approval=s.requires_approval,
        approval_roles=s.approval_roles or [],
        wait_duration_minutes=s.wait_duration_minutes,
        status=s.status,
        status_display=display(StepStatus, s.status),
        execution_context=s.execution_context,
        outcome=s.outcome,
        simulated_impact=s.simulated_impact,
        wait_until=iso(s.wait_until),
        wait_remaining_seconds=s.wait_remaining_seconds,
        ready_at=iso(s.ready_at),
        executed_at=iso(s.executed_at),
        approved_at=iso(s.approved_at),
        approved_by=s.approved_by,
        approval_notes=s.approval_notes,
        error_message=s.error_message,
    )


def run_response(r: ScenarioRun) -> RunResponse:
    return RunResponse(
        id=r.id,
        scenario_id=r.scenario_id,
        playbook_id=r.playbook_id,
        playbook_version=r.playbook_version,
        status=r.status,
        status_display=display(RunStatus, r.status),
        scheduled_at=iso(r.scheduled_at),
        started_at=iso(r.started_at),
        completed_at=iso(r.completed_at),
        risk_score=r.risk_score,
        opportunity_score=r.opportunity_score,
        narrative_summary=r.narrative_summary,
        error_message=r.error_message,
        cancel_reason=r.cancel_reason,
        result_summary=r.result_summary,
        started_by=r.started_by,
        created_at=iso(r.created_at),
        steps=[step_response(s) for s in r.steps],
    )


def audit_response(e: ScenarioAuditLog) -> AuditEntryResponse:
    return AuditEntryResponse(
        id=e.id,
        event_type=e.event_type,
        scenario_id=e.scenario_id,
        run_id=e.run_id,
        playbook_id=e.playbook_id,
        step_id=e.step_id,
        payload=e.payload,
        actor_id=e.actor_id,
        created_at=iso(e.created_at),
    )


# ── Routes ────────────────────────────────────────────────────────────


@router.get("", response_model=RunListResponse, summary="List runs")
async def list_runs(
    scenario_id: Optional[str] = Query(None),
    playbook_id: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    limit: int = Query(50, ge=1),
    offset: int = Query(0, ge=0),
    sort_by: str = Query("created_at"),
    sort_order: str = Query("desc"),
    tenant: TenantContext = Depends(get_tenant),
    orchestrator: RunOrchestrator = Depends(get_orchestrator),
):
    page = await orchestrator.list_runs(
        tenant,
        scenario_id=scenario_id,
        playbook_id=playbook_id,
        status=status,
        limit=limit,
        offset=offset,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return RunListResponse(
        runs=[run_response(r) for r in page.runs],
        total=page.total,
        has_more=page.has_more,
    )


@router.get("/{run_id}", response_model=RunDetailResponse, summary="Run with steps and audit timeline")
async def get_run(
    run_id: str,
    tenant: TenantContext = Depends(get_tenant),
    orchestrator: RunOrchestrator = Depends(get_orchestrator),
):
    detail = await orchestrator.get_run_detail(tenant, run_id)
    return RunDetailResponse(
        run=run_response(detail.run),
        timeline=[audit_response(e) for e in detail.timeline],
    )


@router.post("/{run_id}/pause", response_model=RunResponse, summary="Pause a running run")
async def pause_run(
    run_id: str,
    tenant: TenantContext = Depends(get_tenant),
    orchestrator: RunOrchestrator = Depends(get_orchestrator),
):
    return run_response(await orchestrator.pause_run(tenant, run_id))


@router.post("/{run_id}/resume", response_model=RunResponse, summary="Resume a paused run")
async def resume_run(
    run_id: str,
    tenant: TenantContext = Depends(get_tenant),
    orchestrator: RunOrchestrator = Depends(get_orchestrator),
):
    return run_response(await orchestrator.resume_run(tenant, run_id))


@router.post("/{run_id}/cancel", response_model=RunResponse, summary="Cancel a run")
async def cancel_run(
    run_id: str,
    body: CancelRequest | None = None,
    tenant: TenantContext = Depends(get_tenant),
    orchestrator: RunOrchestrator = Depends(get_orchestrator),
):
    reason = body.reason if body else None
    return run_response(await orchestrator.cancel_run(tenant, run_id, reason))


@router.post("/steps/{step_id}/approve", response_model=RunStepResponse,
             summary="Approve or reject a step awaiting approval")
async def approve_step(
    step_id: str,
    body: ApprovalRequest,
    tenant: TenantContext = Depends(get_tenant),
    approvals: ApprovalGateway = Depends(get_approvals),
):
    step = await approvals.approve_step(tenant, step_id, body.approved, body.notes)
    return step_response(step)
