"""SQLAlchemy ORM models for scenarioflow.

All persistent entities: versioned playbook templates and their steps,
scenarios, runs with their step snapshots, and the scenario audit log.
Every row carries the owning ``org_id``.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    ForeignKeyConstraint,
    Integer,
    String,
    Text,
    JSON,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .engine import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


# ── Playbook templates ───────────────────────────────────────────────


class PlaybookTemplate(Base):
    """One version of a playbook.  (id, version) is the key; every committed
    edit inserts a new row so runs and scenarios pinned to an older version
    can still resolve it."""
    __tablename__ = "scenario_playbooks"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    version: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    org_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    risk_level: Mapped[str] = mapped_column(String(16), default="medium")
    trigger_type: Mapped[str] = mapped_column(String(16), default="manual")  # event | scheduled | manual
    status: Mapped[str] = mapped_column(String(16), default="draft")  # draft | active | archived
    is_latest: Mapped[bool] = mapped_column(Boolean, default=True)
    tags: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    steps: Mapped[list["StepDefinition"]] = relationship(
        back_populates="template", lazy="selectin", cascade="all, delete-orphan",
        order_by="StepDefinition.step_index",
    )

    __table_args__ = (
        Index("ix_scenario_playbooks_org_latest", "org_id", "is_latest"),
        Index("ix_scenario_playbooks_status", "status"),
    )


class StepDefinition(Base):
    __tablename__ = "scenario_playbook_steps"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    playbook_id: Mapped[str] = mapped_column(String(32), nullable=False)
    playbook_version: Mapped[int] = mapped_column(Integer, nullable=False)
    step_index: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    action_type: Mapped[str] = mapped_column(String(32), nullable=False)
    action_payload: Mapped[dict] = mapped_column(JSON, default=dict)
    requires_approval: Mapped[bool] = mapped_column(Boolean, default=False)
    approval_roles: Mapped[list] = mapped_column(JSON, default=list)
    wait_duration_minutes: Mapped[int] = mapped_column(Integer, default=0)

    template: Mapped["PlaybookTemplate"] = relationship(back_populates="steps")

    __table_args__ = (
        ForeignKeyConstraint(
            ["playbook_id", "playbook_version"],
            ["scenario_playbooks.id", "scenario_playbooks.version"],
            ondelete="CASCADE",
        ),
        UniqueConstraint("playbook_id", "playbook_version", "step_index",
                         name="uq_playbook_step_index"),
    )


# ── Scenarios ────────────────────────────────────────────────────────


class Scenario(Base):
    __tablename__ = "scenarios"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    org_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    scenario_type: Mapped[str] = mapped_column(String(32), default="custom")
    # Pinned at creation; later template edits never move it
    playbook_id: Mapped[str] = mapped_column(String(32), nullable=False)
    playbook_version: Mapped[int] = mapped_column(Integer, nullable=False)
    context_parameters: Mapped[dict] = mapped_column(JSON, default=dict)
    baseline_risk: Mapped[str] = mapped_column(String(16), default="medium")
    horizon_days: Mapped[int] = mapped_column(Integer, default=30)
    tags: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    runs: Mapped[list["ScenarioRun"]] = relationship(
        back_populates="scenario", lazy="selectin", cascade="all, delete-orphan",
    )

    __table_args__ = (
        ForeignKeyConstraint(
            ["playbook_id", "playbook_version"],
            ["scenario_playbooks.id", "scenario_playbooks.version"],
        ),
        Index("ix_scenarios_playbook", "playbook_id"),
    )


# ── Runs ─────────────────────────────────────────────────────────────


class ScenarioRun(Base):
    """A live instance of one playbook version.  Its steps are copies taken at
    creation, so the run never reads the template again."""
    __tablename__ = "scenario_runs"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    org_id: Mapped[str] = mapped_column(String(64), nullable=False)
    scenario_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("scenarios.id", ondelete="CASCADE"), nullable=False
    )
    # Source of the snapshot; intentionally not a foreign key
    playbook_id: Mapped[str] = mapped_column(String(32), nullable=False)
    playbook_version: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(24), default="pending")
    scheduled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    risk_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    opportunity_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    narrative_summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancel_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    result_summary: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    started_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    scenario: Mapped["Scenario"] = relationship(back_populates="runs")
    steps: Mapped[list["RunStep"]] = relationship(
        back_populates="run", lazy="selectin", cascade="all, delete-orphan",
        order_by="RunStep.step_index",
    )

    __table_args__ = (
        Index("ix_scenario_runs_org_status", "org_id", "status"),
        Index("ix_scenario_runs_scenario", "scenario_id"),
        Index("ix_scenario_runs_playbook", "playbook_id", "playbook_version"),
        Index("ix_scenario_runs_started", "started_at"),
    )


class RunStep(Base):
    __tablename__ = "scenario_run_steps"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    org_id: Mapped[str] = mapped_column(String(64), nullable=False)
    run_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("scenario_runs.id", ondelete="CASCADE"), nullable=False
    )
    step_index: Mapped[int] = mapped_column(Integer, nullable=False)

    # Snapshot of the StepDefinition at run start
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    action_type: Mapped[str] = mapped_column(String(32), nullable=False)
    action_payload: Mapped[dict] = mapped_column(JSON, default=dict)
    requires_approval: Mapped[bool] = mapped_column(Boolean, default=False)
    approval_roles: Mapped[list] = mapped_column(JSON, default=list)
    wait_duration_minutes: Mapped[int] = mapped_column(Integer, default=0)

    status: Mapped[str] = mapped_column(String(16), default="pending")
    execution_context: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    outcome: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    simulated_impact: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    # Armed wait timer deadline; cleared (with remaining seconds kept) on pause
    wait_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    wait_remaining_seconds: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    ready_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    executed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    approval_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    run: Mapped["ScenarioRun"] = relationship(back_populates="steps")

    __table_args__ = (
        UniqueConstraint("run_id", "step_index", name="uq_run_step_index"),
        Index("ix_scenario_run_steps_wait", "wait_until"),
    )


# ── Audit log ────────────────────────────────────────────────────────


class ScenarioAuditLog(Base):
    """Append-only lifecycle trail; references are plain ids so entries
    outlive the rows they describe."""
    __tablename__ = "scenario_audit_log"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    org_id: Mapped[str] = mapped_column(String(64), nullable=False)
    scenario_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    run_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    playbook_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    step_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    event_type: Mapped[str] = mapped_column(String(32), nullable=False)
    payload: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    actor_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index("ix_scenario_audit_org_created", "org_id", "created_at"),
        Index("ix_scenario_audit_run", "run_id"),
    )
