"""Scenario registry: binds context and a risk baseline to a pinned template version."""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from scenarioflow.config import settings
from scenarioflow.core.context import TenantContext
from scenarioflow.core.enums import (
    ACTIVE_RUN_STATUSES,
    AuditEventType,
    PlaybookStatus,
    RiskLevel,
    ScenarioType,
)
from scenarioflow.core.exceptions import NotFoundError, StateConflictError, ValidationError
from scenarioflow.db.models import Scenario
from scenarioflow.db.repositories.runs import RunRepository
from scenarioflow.services.audit import log_event
from scenarioflow.services.playbooks import PlaybookDefinitionStore

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset({
    "name", "description", "scenario_type", "horizon_days",
    "context_parameters", "baseline_risk", "tags",
})


class ScenarioRegistry:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        tenant: TenantContext,
        name: str,
        playbook_id: str,
        context_parameters: Optional[dict[str, Any]] = None,
        baseline_risk: str = RiskLevel.MEDIUM.value,
        horizon_days: Optional[int] = None,
        scenario_type: str = ScenarioType.CUSTOM.value,
        description: Optional[str] = None,
        tags: Optional[list[str]] = None,
    ) -> Scenario:
        """Create a scenario pinned to the current version of an active template."""
        if not name or not name.strip():
            raise ValidationError("Scenario name is required", {"name": "required"})
        horizon = settings.DEFAULT_HORIZON_DAYS if horizon_days is None else horizon_days
        if not 1 <= horizon <= settings.MAX_HORIZON_DAYS:
            raise ValidationError(
                f"horizon_days must be between 1 and {settings.MAX_HORIZON_DAYS}",
                {"horizon_days": horizon},
            )
        try:
            risk = RiskLevel(baseline_risk)
            kind = ScenarioType(scenario_type)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        template = await PlaybookDefinitionStore(self.session).get(tenant, playbook_id)
        if template.status != PlaybookStatus.ACTIVE.value:
            raise StateConflictError(
                f"Playbook {playbook_id} is {template.status}; "
                "scenarios bind only to active playbooks",
                current_status=template.status,
            )

        scenario = Scenario(
            org_id=tenant.org_id,
            name=name.strip(),
            description=description,
            scenario_type=kind.value,
            playbook_id=template.id,
            playbook_version=template.version,
            context_parameters=dict(context_parameters or {}),
            baseline_risk=risk.value,
            horizon_days=horizon,
            tags=list(tags or []),
            created_by=tenant.actor_id,
        )
        self.session.add(scenario)
        await self.session.flush()
        log_event(
            self.session, tenant, AuditEventType.SCENARIO_CREATED,
            scenario_id=scenario.id, playbook_id=template.id,
            payload={"playbookVersion": template.version},
        )
        logger.info("Scenario %s bound to playbook %s v%d",
                    scenario.id, template.id, template.version)
        return scenario

    async def get(self, tenant: TenantContext, scenario_id: str) -> Scenario:
        result = await self.session.execute(
            select(Scenario).where(
                Scenario.id == scenario_id, Scenario.org_id == tenant.org_id
            )
        )
        scenario = result.scalar_one_or_none()
        if scenario is None:
            raise NotFoundError("Scenario", scenario_id)
        return scenario

    async def list_scenarios(
        self,
        tenant: TenantContext,
        scenario_type: Optional[str] = None,
        playbook_id: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[Sequence[Scenario], int]:
        filters = [Scenario.org_id == tenant.org_id]
        if scenario_type:
            filters.append(Scenario.scenario_type == scenario_type)
        if playbook_id:
            filters.append(Scenario.playbook_id == playbook_id)
        result = await self.session.execute(
            select(Scenario)
            .where(*filters)
            .order_by(Scenario.created_at.desc(), Scenario.id)
            .limit(limit)
            .offset(offset)
        )
        total = await self.session.scalar(select(func.count(Scenario.id)).where(*filters))
        return result.scalars().all(), total or 0

    async def update(
        self, tenant: TenantContext, scenario_id: str, changes: dict[str, Any]
    ) -> Scenario:
        """Change a scenario's descriptive fields. The pinned binding never moves."""
        unknown = sorted(set(changes) - UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(
                f"Cannot update {', '.join(unknown)}",
                {name: "not updatable" for name in unknown},
            )
        scenario = await self.get(tenant, scenario_id)

        values = dict(changes)
        if "name" in values:
            if not values["name"] or not values["name"].strip():
                raise ValidationError("Scenario name is required", {"name": "required"})
            values["name"] = values["name"].strip()
        if "horizon_days" in values:
            horizon = values["horizon_days"]
            if horizon is None or not 1 <= horizon <= settings.MAX_HORIZON_DAYS:
                raise ValidationError(
                    f"horizon_days must be between 1 and {settings.MAX_HORIZON_DAYS}",
                    {"horizon_days": horizon},
                )
        try:
            if "baseline_risk" in values:
                values["baseline_risk"] = RiskLevel(values["baseline_risk"]).value
            if "scenario_type" in values:
                values["scenario_type"] = ScenarioType(values["scenario_type"]).value
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        if "context_parameters" in values:
            values["context_parameters"] = dict(values["context_parameters"] or {})
        if "tags" in values:
            values["tags"] = list(values["tags"] or [])

        for name, value in values.items():
            setattr(scenario, name, value)
        log_event(
            self.session, tenant, AuditEventType.SCENARIO_UPDATED,
            scenario_id=scenario.id, playbook_id=scenario.playbook_id,
            payload={"fields": sorted(values)},
        )
        await self.session.flush()
        logger.info("Scenario %s updated: %s", scenario_id, ", ".join(sorted(values)))
        return scenario

    async def delete(self, tenant: TenantContext, scenario_id: str) -> None:
        """Delete a scenario and its finished runs."""
        scenario = await self.get(tenant, scenario_id)
        live_runs = await RunRepository(self.session).count_active_for(
            [s.value for s in ACTIVE_RUN_STATUSES], scenario_id=scenario_id
        )
        if live_runs:
            raise StateConflictError(
                f"Scenario {scenario_id} has {live_runs} unfinished run(s)"
            )
        await self.session.delete(scenario)
        log_event(
            self.session, tenant, AuditEventType.SCENARIO_DELETED,
            scenario_id=scenario_id, payload={"runsRemoved": len(scenario.runs)},
        )
        await self.session.flush()
        logger.info("Scenario %s deleted", scenario_id)
