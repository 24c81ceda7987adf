"""Shared FastAPI dependencies: tenant context and long-lived services."""

from fastapi import Header, Request

from scenarioflow.core.context import Clock, TenantContext
from scenarioflow.services.approvals import ApprovalGateway
from scenarioflow.services.orchestrator import RunOrchestrator


async def get_tenant(
    x_org_id: str = Header(..., alias="X-Org-Id", min_length=1),
    x_actor_id: str | None = Header(None, alias="X-Actor-Id"),
) -> TenantContext:
    return TenantContext(org_id=x_org_id, actor_id=x_actor_id)


def get_orchestrator(request: Request) -> RunOrchestrator:
    return request.app.state.orchestrator


def get_approvals(request: Request) -> ApprovalGateway:
    return request.app.state.approvals


def get_clock(request: Request) -> Clock:
    return request.app.state.clock
