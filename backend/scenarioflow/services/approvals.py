"""Approval gateway: the only way a run leaves awaiting_approval besides cancel."""

import logging
from typing import Optional

from scenarioflow.core.context import TenantContext
from scenarioflow.core.exceptions import ValidationError
from scenarioflow.db.models import RunStep
from scenarioflow.services.orchestrator import RunOrchestrator

logger = logging.getLogger(__name__)


class ApprovalGateway:
    def __init__(self, orchestrator: RunOrchestrator):
        self._orchestrator = orchestrator

    async def approve_step(
        self,
        tenant: TenantContext,
        run_step_id: str,
        approved: bool,
        notes: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> RunStep:
        """Record a human decision on a ready approval step.

        Approved steps are dispatched like any other step; rejected steps are
        skipped and the run moves on.  A rejection must say why.
        """
        notes = notes.strip() if notes else None
        if not approved and not notes:
            raise ValidationError(
                "Notes are required when rejecting a step", {"notes": "required"}
            )
        actor = actor_id or tenant.actor_id
        logger.info("Approval decision on step %s by %s: %s",
                    run_step_id, actor, "approve" if approved else "reject")
        return await self._orchestrator.apply_approval(
            tenant, run_step_id, approved, notes, actor
        )
