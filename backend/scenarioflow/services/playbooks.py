"""Playbook definition store.

Templates are versioned: (id, version) is the key and every committed step
edit inserts version+1 while the previous row stays resolvable for the runs
and scenarios pinned to it.  All methods work inside the caller's session
and leave committing to the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from scenarioflow.core.context import TenantContext
from scenarioflow.core.enums import (
    ACTIVE_RUN_STATUSES,
    ActionType,
    AuditEventType,
    PlaybookStatus,
    RiskLevel,
    TriggerType,
)
from scenarioflow.core.exceptions import (
    ConcurrencyError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from scenarioflow.db.models import PlaybookTemplate, Scenario, StepDefinition
from scenarioflow.db.repositories.runs import RunRepository
from scenarioflow.services.audit import log_event

logger = logging.getLogger(__name__)

# Descriptive fields that change in place without a new version
METADATA_FIELDS = frozenset(
    {"name", "description", "category", "risk_level", "trigger_type", "tags"}
)


@dataclass
class StepInput:
    name: str
    action_type: str
    description: Optional[str] = None
    action_payload: dict[str, Any] = field(default_factory=dict)
    requires_approval: bool = False
    approval_roles: list[str] = field(default_factory=list)
    wait_duration_minutes: int = 0
    step_index: Optional[int] = None


@dataclass
class PlaybookInput:
    name: str
    steps: list[StepInput]
    description: Optional[str] = None
    category: Optional[str] = None
    risk_level: str = RiskLevel.MEDIUM.value
    trigger_type: str = TriggerType.MANUAL.value
    tags: list[str] = field(default_factory=list)


def validate_steps(steps: Sequence[StepInput]) -> list[StepInput]:
    """Check the shape rules and return the steps ordered by index.

    Steps without an index are numbered in list order; either every step
    carries an index or none does.  Indexes must be exactly 0..n-1.
    """
    if not steps:
        raise ValidationError("A playbook needs at least one step", {"steps": "empty"})

    given = [s.step_index for s in steps]
    if all(i is None for i in given):
        indexed = [(i, s) for i, s in enumerate(steps)]
    elif any(i is None for i in given):
        raise ValidationError(
            "Either every step has a stepIndex or none does",
            {"steps": "mixed stepIndex"},
        )
    else:
        if sorted(given) != list(range(len(steps))):
            raise ValidationError(
                "stepIndex values must be contiguous from 0 with no duplicates",
                {"steps": sorted(given)},
            )
        indexed = sorted(zip(given, steps), key=lambda pair: pair[0])

    errors: dict[str, str] = {}
    normalized: list[StepInput] = []
    for index, step in indexed:
        key = f"steps[{index}]"
        if not step.name or not step.name.strip():
            errors[f"{key}.name"] = "required"
        try:
            action = ActionType(step.action_type)
        except ValueError:
            errors[f"{key}.action_type"] = f"unknown action type {step.action_type!r}"
            action = None
        roles = [r.strip() for r in (step.approval_roles or []) if r and r.strip()]
        if step.requires_approval and not roles:
            errors[f"{key}.approval_roles"] = "required when requires_approval is set"
        if step.wait_duration_minutes is None or step.wait_duration_minutes < 0:
            errors[f"{key}.wait_duration_minutes"] = "must be >= 0"
        if action is None or key + ".name" in errors:
            continue
        normalized.append(
            StepInput(
                name=step.name.strip(),
                action_type=action.value,
                description=step.description,
                action_payload=dict(step.action_payload or {}),
                requires_approval=bool(step.requires_approval),
                approval_roles=roles if step.requires_approval else [],
                wait_duration_minutes=int(step.wait_duration_minutes or 0),
                step_index=index,
            )
        )

    if errors:
        raise ValidationError("Invalid playbook steps", errors)
    return normalized


def _definition_to_input(step: StepDefinition) -> StepInput:
    return StepInput(
        name=step.name,
        action_type=step.action_type,
        description=step.description,
        action_payload=step.action_payload or {},
        requires_approval=step.requires_approval,
        approval_roles=step.approval_roles or [],
        wait_duration_minutes=step.wait_duration_minutes,
        step_index=step.step_index,
    )


def _build_definitions(steps: Sequence[StepInput]) -> list[StepDefinition]:
    return [
        StepDefinition(
            step_index=s.step_index,
            name=s.name,
            description=s.description,
            action_type=s.action_type,
            action_payload=s.action_payload,
            requires_approval=s.requires_approval,
            approval_roles=s.approval_roles,
            wait_duration_minutes=s.wait_duration_minutes,
        )
        for s in steps
    ]


class PlaybookDefinitionStore:
    """Versioned, tenant-scoped storage for playbook templates."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # ── Reads ─────────────────────────────────────────────────────────

    async def get(
        self, tenant: TenantContext, playbook_id: str, version: Optional[int] = None
    ) -> PlaybookTemplate:
        stmt = select(PlaybookTemplate).where(
            PlaybookTemplate.id == playbook_id,
            PlaybookTemplate.org_id == tenant.org_id,
        )
        if version is None:
            stmt = stmt.where(PlaybookTemplate.is_latest.is_(True))
        else:
            stmt = stmt.where(PlaybookTemplate.version == version)
        result = await self.session.execute(stmt)
        template = result.scalar_one_or_none()
        if template is None:
            raise NotFoundError("PlaybookTemplate", playbook_id)
        return template

    async def list_playbooks(
        self,
        tenant: TenantContext,
        status: Optional[str] = None,
        category: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[Sequence[PlaybookTemplate], int]:
        filters = [
            PlaybookTemplate.org_id == tenant.org_id,
            PlaybookTemplate.is_latest.is_(True),
        ]
        if status:
            filters.append(PlaybookTemplate.status == status)
        if category:
            filters.append(PlaybookTemplate.category == category)
        result = await self.session.execute(
            select(PlaybookTemplate)
            .where(*filters)
            .order_by(PlaybookTemplate.updated_at.desc(), PlaybookTemplate.id)
            .limit(limit)
            .offset(offset)
        )
        total = await self.session.scalar(
            select(func.count()).select_from(PlaybookTemplate).where(*filters)
        )
        return result.scalars().all(), total or 0

    async def list_versions(
        self, tenant: TenantContext, playbook_id: str
    ) -> Sequence[PlaybookTemplate]:
        result = await self.session.execute(
            select(PlaybookTemplate)
            .where(
                PlaybookTemplate.id == playbook_id,
                PlaybookTemplate.org_id == tenant.org_id,
            )
            .order_by(PlaybookTemplate.version)
        )
        versions = result.scalars().all()
        if not versions:
            raise NotFoundError("PlaybookTemplate", playbook_id)
        return versions

    # ── Writes ────────────────────────────────────────────────────────

    async def create(self, tenant: TenantContext, definition: PlaybookInput) -> PlaybookTemplate:
        if not definition.name or not definition.name.strip():
            raise ValidationError("Playbook name is required", {"name": "required"})
        try:
            risk = RiskLevel(definition.risk_level)
            trigger = TriggerType(definition.trigger_type)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        steps = validate_steps(definition.steps)

        template = PlaybookTemplate(
            version=1,
            org_id=tenant.org_id,
            name=definition.name.strip(),
            description=definition.description,
            category=definition.category,
            risk_level=risk.value,
            trigger_type=trigger.value,
            status=PlaybookStatus.DRAFT.value,
            is_latest=True,
            tags=list(definition.tags or []),
            created_by=tenant.actor_id,
            steps=_build_definitions(steps),
        )
        self.session.add(template)
        await self.session.flush()
        log_event(
            self.session, tenant, AuditEventType.PLAYBOOK_CREATED,
            playbook_id=template.id,
            payload={"version": 1, "stepCount": len(steps)},
        )
        logger.info("Playbook %s created with %d steps (org=%s)",
                    template.id, len(steps), tenant.org_id)
        return template

    async def edit(
        self,
        tenant: TenantContext,
        playbook_id: str,
        steps: Sequence[StepInput],
        expected_version: int,
    ) -> PlaybookTemplate:
        """Replace the full step list, producing version+1."""
        latest = await self.get(tenant, playbook_id)
        if latest.status == PlaybookStatus.ARCHIVED.value:
            raise StateConflictError(
                f"Playbook {playbook_id} is archived", current_status=latest.status
            )
        if latest.version != expected_version:
            raise ConcurrencyError("PlaybookTemplate", expected_version, latest.version)
        normalized = validate_steps(steps)

        new_version = latest.version + 1
        latest.is_latest = False
        template = PlaybookTemplate(
            id=latest.id,
            version=new_version,
            org_id=latest.org_id,
            name=latest.name,
            description=latest.description,
            category=latest.category,
            risk_level=latest.risk_level,
            trigger_type=latest.trigger_type,
            status=latest.status,
            is_latest=True,
            tags=list(latest.tags or []),
            created_by=latest.created_by,
            steps=_build_definitions(normalized),
        )
        self.session.add(template)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            raise ConcurrencyError("PlaybookTemplate", expected_version, None) from exc

        log_event(
            self.session, tenant, AuditEventType.PLAYBOOK_UPDATED,
            playbook_id=playbook_id,
            payload={"fromVersion": latest.version, "version": new_version,
                     "stepCount": len(normalized)},
        )
        logger.info("Playbook %s edited: v%d -> v%d", playbook_id, latest.version, new_version)
        return template

    async def update_metadata(
        self, tenant: TenantContext, playbook_id: str, changes: dict[str, Any]
    ) -> PlaybookTemplate:
        """Change descriptive fields of the latest version in place.

        Steps and version are never touched here; step changes go through
        ``edit``.
        """
        unknown = sorted(set(changes) - METADATA_FIELDS)
        if unknown:
            raise ValidationError(
                f"Cannot update {', '.join(unknown)}",
                {name: "not updatable" for name in unknown},
            )
        template = await self.get(tenant, playbook_id)
        if template.status == PlaybookStatus.ARCHIVED.value:
            raise StateConflictError(
                f"Playbook {playbook_id} is archived", current_status=template.status
            )

        values = dict(changes)
        if "name" in values:
            if not values["name"] or not values["name"].strip():
                raise ValidationError("Playbook name is required", {"name": "required"})
            values["name"] = values["name"].strip()
        try:
            if "risk_level" in values:
                values["risk_level"] = RiskLevel(values["risk_level"]).value
            if "trigger_type" in values:
                values["trigger_type"] = TriggerType(values["trigger_type"]).value
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        if "tags" in values:
            values["tags"] = list(values["tags"] or [])

        for name, value in values.items():
            setattr(template, name, value)
        log_event(
            self.session, tenant, AuditEventType.PLAYBOOK_UPDATED,
            playbook_id=playbook_id,
            payload={"version": template.version, "fields": sorted(values)},
        )
        await self.session.flush()
        logger.info("Playbook %s v%d metadata updated: %s",
                    playbook_id, template.version, ", ".join(sorted(values)))
        return template

    async def activate(self, tenant: TenantContext, playbook_id: str) -> PlaybookTemplate:
        template = await self.get(tenant, playbook_id)
        if template.status == PlaybookStatus.ACTIVE.value:
            return template
        if template.status == PlaybookStatus.ARCHIVED.value:
            raise StateConflictError(
                f"Playbook {playbook_id} is archived", current_status=template.status
            )
        validate_steps([_definition_to_input(s) for s in template.steps])
        template.status = PlaybookStatus.ACTIVE.value
        log_event(
            self.session, tenant, AuditEventType.PLAYBOOK_ACTIVATED,
            playbook_id=playbook_id, payload={"version": template.version},
        )
        await self.session.flush()
        logger.info("Playbook %s v%d activated", playbook_id, template.version)
        return template

    async def archive(self, tenant: TenantContext, playbook_id: str) -> PlaybookTemplate:
        """Archive every version. Existing runs keep executing their snapshot."""
        versions = await self.list_versions(tenant, playbook_id)
        latest = next(v for v in versions if v.is_latest)
        if latest.status == PlaybookStatus.ARCHIVED.value:
            return latest
        for version in versions:
            version.status = PlaybookStatus.ARCHIVED.value
        log_event(
            self.session, tenant, AuditEventType.PLAYBOOK_ARCHIVED,
            playbook_id=playbook_id, payload={"version": latest.version},
        )
        await self.session.flush()
        logger.info("Playbook %s archived", playbook_id)
        return latest

    async def delete(self, tenant: TenantContext, playbook_id: str) -> None:
        versions = await self.list_versions(tenant, playbook_id)

        live_runs = await RunRepository(self.session).count_active_for(
            [s.value for s in ACTIVE_RUN_STATUSES], playbook_id=playbook_id
        )
        if live_runs:
            raise StateConflictError(
                f"Playbook {playbook_id} is referenced by {live_runs} unfinished run(s)"
            )
        bound = await self.session.scalar(
            select(func.count(Scenario.id)).where(Scenario.playbook_id == playbook_id)
        )
        if bound:
            raise StateConflictError(
                f"Playbook {playbook_id} is bound to {bound} scenario(s)"
            )

        for version in versions:
            await self.session.delete(version)
        log_event(
            self.session, tenant, AuditEventType.PLAYBOOK_DELETED,
            playbook_id=playbook_id, payload={"versions": len(versions)},
        )
        await self.session.flush()
        logger.info("Playbook %s deleted (%d versions)", playbook_id, len(versions))
