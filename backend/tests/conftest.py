"""Shared pytest fixtures for scenarioflow tests.

Provides:
- Async test database (temp-file SQLite, one per test)
- A fake clock and the in-memory action dispatcher
- Orchestrator / approval gateway wired to the test database
- Test client (httpx AsyncClient on the FastAPI app)
- Factory functions for creating test playbooks and scenarios
"""

import os
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

# Force test database
os.environ["SF_DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SF_DISPATCH_WEBHOOK_URL"] = ""

from scenarioflow.core.context import TenantContext  # noqa: E402
from scenarioflow.db import build_engine, get_db, init_db  # noqa: E402
from scenarioflow.db.models import PlaybookTemplate, Scenario  # noqa: E402
from scenarioflow.main import create_app  # noqa: E402
from scenarioflow.services.approvals import ApprovalGateway  # noqa: E402
from scenarioflow.services.dispatcher import InMemoryActionDispatcher  # noqa: E402
from scenarioflow.services.orchestrator import RunOrchestrator  # noqa: E402
from scenarioflow.services.playbooks import (  # noqa: E402
    PlaybookDefinitionStore,
    PlaybookInput,
    StepInput,
)
from scenarioflow.services.scenarios import ScenarioRegistry  # noqa: E402

TENANT = TenantContext(org_id="org-acme", actor_id="alice")
OTHER_TENANT = TenantContext(org_id="org-globex", actor_id="mallory")


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


# ── Database fixtures ─────────────────────────────────────────────────


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """Create a file-backed SQLite engine so separate sessions share data."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'scenarioflow-test.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
        await session.rollback()


# ── Engine fixtures ───────────────────────────────────────────────────


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def dispatcher() -> InMemoryActionDispatcher:
    return InMemoryActionDispatcher()


@pytest.fixture
def orchestrator(session_factory, dispatcher, clock) -> RunOrchestrator:
    return RunOrchestrator(session_factory, dispatcher, clock=clock)


@pytest.fixture
def approvals(orchestrator) -> ApprovalGateway:
    return ApprovalGateway(orchestrator)


@pytest.fixture
def app(session_factory, dispatcher, clock):
    application = create_app(session_factory=session_factory, dispatcher=dispatcher, clock=clock)

    async def _override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    application.dependency_overrides[get_db] = _override_get_db
    yield application
    application.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async test client sending the default tenant headers."""
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"X-Org-Id": TENANT.org_id, "X-Actor-Id": TENANT.actor_id},
    ) as ac:
        yield ac


# ── Factory helpers ───────────────────────────────────────────────────


def make_step(name: str = "Notify press", action_type: str = "outreach", **kwargs) -> StepInput:
    kwargs.setdefault("action_payload", {"channel": "email"})
    return StepInput(name=name, action_type=action_type, **kwargs)


def approval_playbook_steps(final_wait_minutes: int = 5) -> list[StepInput]:
    """S0 plain, S1 approval-gated, S2 plain with a wait."""
    return [
        make_step("Draft holding statement", "crisis_response"),
        make_step("Sign-off", "approval_gate", requires_approval=True,
                  approval_roles=["comms_lead"], action_payload={}),
        make_step("Publish statement", "content_publish",
                  wait_duration_minutes=final_wait_minutes),
    ]


async def create_playbook(
    session_factory,
    steps: list[StepInput] | None = None,
    tenant: TenantContext = TENANT,
    activate: bool = True,
    **kwargs,
) -> PlaybookTemplate:
    kwargs.setdefault("name", "Crisis response")
    async with session_factory() as session:
        store = PlaybookDefinitionStore(session)
        template = await store.create(
            tenant, PlaybookInput(steps=steps or [make_step()], **kwargs)
        )
        if activate:
            template = await store.activate(tenant, template.id)
        await session.commit()
    return template


async def create_scenario(
    session_factory,
    playbook_id: str,
    tenant: TenantContext = TENANT,
    **kwargs,
) -> Scenario:
    kwargs.setdefault("name", "Product recall")
    async with session_factory() as session:
        scenario = await ScenarioRegistry(session).create(tenant, playbook_id=playbook_id, **kwargs)
        await session.commit()
    return scenario


async def count_rows(session_factory, model) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(model))
