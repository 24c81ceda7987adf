"""API routes for scenarios: CRUD, dry-run simulation, and starting runs."""

import logging
from dataclasses import asdict
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from scenarioflow.api.deps import get_clock, get_orchestrator, get_tenant
from scenarioflow.api.presenters import display, iso
from scenarioflow.api.routes.runs import RunResponse, run_response
from scenarioflow.core.context import Clock, TenantContext
from scenarioflow.core.enums import RiskLevel, ScenarioType
from scenarioflow.db import get_db
from scenarioflow.db.models import Scenario
from scenarioflow.services.orchestrator import RunOrchestrator
from scenarioflow.services.scenarios import ScenarioRegistry
from scenarioflow.services.simulation import SimulationEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/scenarios", tags=["scenarios"])


# ── Models ────────────────────────────────────────────────────────────


class ScenarioCreate(BaseModel):
    name: str = Field(..., max_length=256)
    playbook_id: str
    description: Optional[str] = None
    scenario_type: str = "custom"
    context_parameters: dict[str, Any] = Field(default_factory=dict)
    baseline_risk: str = "medium"
    horizon_days: Optional[int] = None
    tags: list[str] = Field(default_factory=list)


class ScenarioUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=256)
    description: Optional[str] = None
    scenario_type: Optional[str] = None
    context_parameters: Optional[dict[str, Any]] = None
    baseline_risk: Optional[str] = None
    horizon_days: Optional[int] = None
    tags: Optional[list[str]] = None


class ScenarioResponse(BaseModel):
    id: str
    name: str
    description: Optional[str]
    scenario_type: str
    scenario_type_label: str
    playbook_id: str
    playbook_version: int
    context_parameters: dict
    baseline_risk: str
    baseline_risk_display: dict
    horizon_days: int
    tags: list[str]
    created_by: Optional[str]
    created_at: str


class ScenarioListResponse(BaseModel):
    scenarios: list[ScenarioResponse]
    total: int


class SimulateRequest(BaseModel):
    now: Optional[datetime] = None


class StartRunRequest(BaseModel):
    scheduled_at: Optional[datetime] = None


class TimelinePointResponse(BaseModel):
    day: int
    date: str
    sentiment_projected: float
    coverage_projected: float
    risk_level: str


class RecommendationResponse(BaseModel):
    priority: str
    action: str
    rationale: str


class StepPreviewResponse(BaseModel):
    step_index: int
    step_name: str
    action_type: str
    risk_level: str
    predicted_outcome: str
    simulated_impact: dict[str, float]
    expected_day: int


class SimulationResponse(BaseModel):
    scenario_id: str
    playbook_id: str
    playbook_version: int
    simulated_at: datetime
    risk_score: float
    opportunity_score: float
    confidence_score: float
    narrative_summary: str
    timeline: list[TimelinePointResponse]
    recommendations: list[RecommendationResponse]
    step_previews: list[StepPreviewResponse]
    warnings: list[str]


def scenario_response(s: Scenario) -> ScenarioResponse:
    return ScenarioResponse(
        id=s.id,
        name=s.name,
        description=s.description,
        scenario_type=s.scenario_type,
        scenario_type_label=display(ScenarioType, s.scenario_type)["label"],
        playbook_id=s.playbook_id,
        playbook_version=s.playbook_version,
        context_parameters=s.context_parameters or {},
        baseline_risk=s.baseline_risk,
        baseline_risk_display=display(RiskLevel, s.baseline_risk),
        horizon_days=s.horizon_days,
        tags=s.tags or [],
        created_by=s.created_by,
        created_at=iso(s.created_at),
    )


# ── Routes ────────────────────────────────────────────────────────────


@router.post("", response_model=ScenarioResponse, status_code=201, summary="Create a scenario")
async def create_scenario(
    body: ScenarioCreate,
    tenant: TenantContext = Depends(get_tenant),
    db: AsyncSession = Depends(get_db),
):
    scenario = await ScenarioRegistry(db).create(
        tenant,
        name=body.name,
        playbook_id=body.playbook_id,
        context_parameters=body.context_parameters,
        baseline_risk=body.baseline_risk,
        horizon_days=body.horizon_days,
        scenario_type=body.scenario_type,
        description=body.description,
        tags=body.tags,
    )
    await db.commit()
    return scenario_response(scenario)


@router.get("", response_model=ScenarioListResponse, summary="List scenarios")
async def list_scenarios(
    scenario_type: Optional[str] = Query(None),
    playbook_id: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    tenant: TenantContext = Depends(get_tenant),
    db: AsyncSession = Depends(get_db),
):
    scenarios, total = await ScenarioRegistry(db).list_scenarios(
        tenant, scenario_type=scenario_type, playbook_id=playbook_id,
        limit=limit, offset=offset,
    )
    return ScenarioListResponse(
        scenarios=[scenario_response(s) for s in scenarios], total=total
    )


@router.get("/{scenario_id}", response_model=ScenarioResponse, summary="Get a scenario")
async def get_scenario(
    scenario_id: str,
    tenant: TenantContext = Depends(get_tenant),
    db: AsyncSession = Depends(get_db),
):
    return scenario_response(await ScenarioRegistry(db).get(tenant, scenario_id))


@router.patch("/{scenario_id}", response_model=ScenarioResponse,
              summary="Update a scenario (the playbook binding is fixed)")
async def update_scenario(
    scenario_id: str,
    body: ScenarioUpdate,
    tenant: TenantContext = Depends(get_tenant),
    db: AsyncSession = Depends(get_db),
):
    scenario = await ScenarioRegistry(db).update(
        tenant, scenario_id, body.model_dump(exclude_unset=True)
    )
    await db.commit()
    return scenario_response(scenario)


@router.delete("/{scenario_id}", summary="Delete a scenario and its finished runs")
async def delete_scenario(
    scenario_id: str,
    tenant: TenantContext = Depends(get_tenant),
    db: AsyncSession = Depends(get_db),
):
    await ScenarioRegistry(db).delete(tenant, scenario_id)
    await db.commit()
    return {"message": "Scenario deleted", "id": scenario_id}


@router.post("/{scenario_id}/simulate", response_model=SimulationResponse,
             summary="Dry-run the scenario's playbook without creating a run")
async def simulate_scenario(
    scenario_id: str,
    body: SimulateRequest | None = None,
    tenant: TenantContext = Depends(get_tenant),
    clock: Clock = Depends(get_clock),
    db: AsyncSession = Depends(get_db),
):
    result = await SimulationEngine(db, clock=clock).simulate(
        tenant, scenario_id, now=body.now if body else None
    )
    await db.commit()
    return SimulationResponse(**asdict(result))


@router.post("/{scenario_id}/runs", response_model=RunResponse, status_code=201,
             summary="Start a run of the scenario's pinned playbook version")
async def start_run(
    scenario_id: str,
    body: StartRunRequest | None = None,
    tenant: TenantContext = Depends(get_tenant),
    orchestrator: RunOrchestrator = Depends(get_orchestrator),
):
    run = await orchestrator.start_run(
        tenant, scenario_id, scheduled_at=body.scheduled_at if body else None
    )
    return run_response(run)
