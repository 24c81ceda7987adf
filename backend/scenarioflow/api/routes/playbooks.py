"""API routes for playbook templates: create, update, version, activate, archive."""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from scenarioflow.api.deps import get_tenant
from scenarioflow.api.presenters import display, iso
from scenarioflow.core.context import TenantContext
from scenarioflow.core.enums import ActionType, PlaybookStatus, RiskLevel
from scenarioflow.db import get_db
from scenarioflow.db.models import PlaybookTemplate
from scenarioflow.services.playbooks import PlaybookDefinitionStore, PlaybookInput, StepInput

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/playbooks", tags=["playbooks"])


# ── Models ────────────────────────────────────────────────────────────


class StepBody(BaseModel):
    name: str
    action_type: str
    description: Optional[str] = None
    action_payload: dict[str, Any] = Field(default_factory=dict)
    requires_approval: bool = False
    approval_roles: list[str] = Field(default_factory=list)
    wait_duration_minutes: int = 0
    step_index: Optional[int] = None

    def to_input(self) -> StepInput:
        return StepInput(**self.model_dump())


class PlaybookCreate(BaseModel):
    name: str = Field(..., max_length=256)
    description: Optional[str] = None
    category: Optional[str] = None
    risk_level: str = "medium"  # low | medium | high | critical
    trigger_type: str = "manual"  # event | scheduled | manual
    tags: list[str] = Field(default_factory=list)
    steps: list[StepBody]


class PlaybookUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=256)
    description: Optional[str] = None
    category: Optional[str] = None
    risk_level: Optional[str] = None
    trigger_type: Optional[str] = None
    tags: Optional[list[str]] = None


class PlaybookStepsEdit(BaseModel):
    expected_version: int
    steps: list[StepBody]


class StepDefinitionResponse(BaseModel):
    step_index: int
    name: str
    description: Optional[str]
    action_type: str
    action_label: str
    action_payload: dict
    requires_approval: bool
    approval_roles: list[str]
    wait_duration_minutes: int


class PlaybookResponse(BaseModel):
    id: str
    version: int
    name: str
    description: Optional[str]
    category: Optional[str]
    risk_level: str
    risk_display: dict
    trigger_type: str
    status: str
    status_display: dict
    is_latest: bool
    tags: list[str]
    created_by: Optional[str]
    created_at: str
    updated_at: str
    steps: list[StepDefinitionResponse]


class PlaybookListResponse(BaseModel):
    playbooks: list[PlaybookResponse]
    total: int


def playbook_response(t: PlaybookTemplate) -> PlaybookResponse:
    return PlaybookResponse(
        id=t.id,
        version=t.version,
        name=t.name,
        description=t.description,
        category=t.category,
        risk_level=t.risk_level,
        risk_display=display(RiskLevel, t.risk_level),
        trigger_type=t.trigger_type,
        status=t.status,
        status_display=display(PlaybookStatus, t.status),
        is_latest=t.is_latest,
        tags=t.tags or [],
        created_by=t.created_by,
        created_at=iso(t.created_at),
        updated_at=iso(t.updated_at),
        steps=[
            StepDefinitionResponse(
                step_index=s.step_index,
                name=s.name,
                description=s.description,
                action_type=s.action_type,
                action_label=display(ActionType, s.action_type)["label"],
                action_payload=s.action_payload or {},
                requires_approval=s.requires_approval,
                approval_roles=s.approval_roles or [],
                wait_duration_minutes=s.wait_duration_minutes,
            )
            for s in sorted(t.steps, key=lambda s: s.step_index)
        ],
    )


# ── Routes ────────────────────────────────────────────────────────────


@router.post("", response_model=PlaybookResponse, status_code=201, summary="Create a playbook")
async def create_playbook(
    body: PlaybookCreate,
    tenant: TenantContext = Depends(get_tenant),
    db: AsyncSession = Depends(get_db),
):
    template = await PlaybookDefinitionStore(db).create(
        tenant,
        PlaybookInput(
            name=body.name,
            description=body.description,
            category=body.category,
            risk_level=body.risk_level,
            trigger_type=body.trigger_type,
            tags=body.tags,
            steps=[s.to_input() for s in body.steps],
        ),
    )
    await db.commit()
    return playbook_response(template)


@router.get("", response_model=PlaybookListResponse, summary="List playbooks (latest versions)")
async def list_playbooks(
    status: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    tenant: TenantContext = Depends(get_tenant),
    db: AsyncSession = Depends(get_db),
):
    templates, total = await PlaybookDefinitionStore(db).list_playbooks(
        tenant, status=status, category=category, limit=limit, offset=offset
    )
    return PlaybookListResponse(
        playbooks=[playbook_response(t) for t in templates], total=total
    )


@router.get("/{playbook_id}", response_model=PlaybookResponse, summary="Get a playbook version")
async def get_playbook(
    playbook_id: str,
    version: Optional[int] = Query(None, ge=1),
    tenant: TenantContext = Depends(get_tenant),
    db: AsyncSession = Depends(get_db),
):
    template = await PlaybookDefinitionStore(db).get(tenant, playbook_id, version)
    return playbook_response(template)


@router.get("/{playbook_id}/versions", response_model=list[PlaybookResponse],
            summary="List every version of a playbook")
async def list_playbook_versions(
    playbook_id: str,
    tenant: TenantContext = Depends(get_tenant),
    db: AsyncSession = Depends(get_db),
):
    versions = await PlaybookDefinitionStore(db).list_versions(tenant, playbook_id)
    return [playbook_response(t) for t in versions]


@router.patch("/{playbook_id}", response_model=PlaybookResponse,
              summary="Update descriptive fields of the latest version")
async def update_playbook(
    playbook_id: str,
    body: PlaybookUpdate,
    tenant: TenantContext = Depends(get_tenant),
    db: AsyncSession = Depends(get_db),
):
    template = await PlaybookDefinitionStore(db).update_metadata(
        tenant, playbook_id, body.model_dump(exclude_unset=True)
    )
    await db.commit()
    return playbook_response(template)


@router.put("/{playbook_id}/steps", response_model=PlaybookResponse,
            summary="Replace the step list, producing a new version")
async def edit_playbook_steps(
    playbook_id: str,
    body: PlaybookStepsEdit,
    tenant: TenantContext = Depends(get_tenant),
    db: AsyncSession = Depends(get_db),
):
    template = await PlaybookDefinitionStore(db).edit(
        tenant, playbook_id, [s.to_input() for s in body.steps], body.expected_version
    )
    await db.commit()
    return playbook_response(template)


@router.post("/{playbook_id}/activate", response_model=PlaybookResponse,
             summary="Activate the latest version")
async def activate_playbook(
    playbook_id: str,
    tenant: TenantContext = Depends(get_tenant),
    db: AsyncSession = Depends(get_db),
):
    template = await PlaybookDefinitionStore(db).activate(tenant, playbook_id)
    await db.commit()
    return playbook_response(template)


@router.post("/{playbook_id}/archive", response_model=PlaybookResponse,
             summary="Archive a playbook (all versions)")
async def archive_playbook(
    playbook_id: str,
    tenant: TenantContext = Depends(get_tenant),
    db: AsyncSession = Depends(get_db),
):
    template = await PlaybookDefinitionStore(db).archive(tenant, playbook_id)
    await db.commit()
    return playbook_response(template)


@router.delete("/{playbook_id}", summary="Delete a playbook and all its versions")
async def delete_playbook(
    playbook_id: str,
    tenant: TenantContext = Depends(get_tenant),
    db: AsyncSession = Depends(get_db),
):
    await PlaybookDefinitionStore(db).delete(tenant, playbook_id)
    await db.commit()
    return {"message": "Playbook deleted", "id": playbook_id}
