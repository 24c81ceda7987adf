"""scenarioflow backend application."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from scenarioflow.api.errors import register_exception_handlers
from scenarioflow.api.routes import audit, playbooks, runs, scenarios
from scenarioflow.config import settings
from scenarioflow.core.context import Clock, utcnow
from scenarioflow.db import async_session_factory, dispose_db, init_db
from scenarioflow.services.approvals import ApprovalGateway
from scenarioflow.services.dispatcher import ActionDispatcher, build_dispatcher
from scenarioflow.services.orchestrator import RunOrchestrator
from scenarioflow.services.scheduler import RunScheduler

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    await init_db()
    if settings.STARTUP_RECOVER_RUNS:
        report = await app.state.orchestrator.recover()
        if report.failed_runs:
            logger.warning(f"Recovery failed {len(report.failed_runs)} interrupted run(s)")
    await app.state.scheduler.start()
    yield
    await app.state.scheduler.stop()
    cleanup = getattr(app.state.dispatcher, "cleanup", None)
    if cleanup is not None:
        await cleanup()
    await dispose_db()
    logger.info("Shutdown complete")


def create_app(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    dispatcher: Optional[ActionDispatcher] = None,
    clock: Clock = utcnow,
) -> FastAPI:
    app = FastAPI(
        title=f"{settings.APP_NAME} API",
        description="Scenario playbook orchestration: versioned playbooks, "
                    "human-gated runs and dry-run simulations",
        version=settings.APP_VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)

    app.state.clock = clock
    app.state.dispatcher = dispatcher or build_dispatcher()
    app.state.orchestrator = RunOrchestrator(
        session_factory or async_session_factory, app.state.dispatcher, clock=clock
    )
    app.state.approvals = ApprovalGateway(app.state.orchestrator)
    app.state.scheduler = RunScheduler(app.state.orchestrator, clock=clock)

    app.include_router(playbooks.router)
    app.include_router(scenarios.router)
    app.include_router(runs.router)
    app.include_router(audit.router)

    @app.get("/", tags=["health"])
    async def root():
        """API health check."""
        return {
            "service": f"{settings.APP_NAME} API",
            "version": settings.APP_VERSION,
            "status": "running",
            "docs": "/docs",
        }

    return app


app = create_app()
