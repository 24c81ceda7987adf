"""initial scenario playbook tables

Revision ID: 3e7a91c0d2b4
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "3e7a91c0d2b4"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "scenario_playbooks",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("version", sa.Integer, primary_key=True),
        sa.Column("org_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(256), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("category", sa.String(100), nullable=True),
        sa.Column("risk_level", sa.String(16), server_default="medium"),
        sa.Column("trigger_type", sa.String(16), server_default="manual"),
        sa.Column("status", sa.String(16), server_default="draft"),
        sa.Column("is_latest", sa.Boolean, server_default=sa.true()),
        sa.Column("tags", sa.JSON, nullable=True),
        sa.Column("created_by", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_scenario_playbooks_org_latest", "scenario_playbooks", ["org_id", "is_latest"])
    op.create_index("ix_scenario_playbooks_status", "scenario_playbooks", ["status"])

    op.create_table(
        "scenario_playbook_steps",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("playbook_id", sa.String(32), nullable=False),
        sa.Column("playbook_version", sa.Integer, nullable=False),
        sa.Column("step_index", sa.Integer, nullable=False),
        sa.Column("name", sa.String(256), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("action_type", sa.String(32), nullable=False),
        sa.Column("action_payload", sa.JSON, nullable=True),
        sa.Column("requires_approval", sa.Boolean, server_default=sa.false()),
        sa.Column("approval_roles", sa.JSON, nullable=True),
        sa.Column("wait_duration_minutes", sa.Integer, server_default="0"),
        sa.ForeignKeyConstraint(
            ["playbook_id", "playbook_version"],
            ["scenario_playbooks.id", "scenario_playbooks.version"],
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint("playbook_id", "playbook_version", "step_index",
                            name="uq_playbook_step_index"),
    )

    op.create_table(
        "scenarios",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("org_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(256), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("scenario_type", sa.String(32), server_default="custom"),
        sa.Column("playbook_id", sa.String(32), nullable=False),
        sa.Column("playbook_version", sa.Integer, nullable=False),
        sa.Column("context_parameters", sa.JSON, nullable=True),
        sa.Column("baseline_risk", sa.String(16), server_default="medium"),
        sa.Column("horizon_days", sa.Integer, server_default="30"),
        sa.Column("tags", sa.JSON, nullable=True),
        sa.Column("created_by", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.ForeignKeyConstraint(
            ["playbook_id", "playbook_version"],
            ["scenario_playbooks.id", "scenario_playbooks.version"],
        ),
    )
    op.create_index("ix_scenarios_org_id", "scenarios", ["org_id"])
    op.create_index("ix_scenarios_playbook", "scenarios", ["playbook_id"])

    op.create_table(
        "scenario_runs",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("org_id", sa.String(64), nullable=False),
        sa.Column("scenario_id", sa.String(32),
                  sa.ForeignKey("scenarios.id", ondelete="CASCADE"), nullable=False),
        sa.Column("playbook_id", sa.String(32), nullable=False),
        sa.Column("playbook_version", sa.Integer, nullable=False),
        sa.Column("status", sa.String(24), server_default="pending"),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("risk_score", sa.Float, nullable=True),
        sa.Column("opportunity_score", sa.Float, nullable=True),
        sa.Column("narrative_summary", sa.Text, nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("cancel_reason", sa.Text, nullable=True),
        sa.Column("result_summary", sa.JSON, nullable=True),
        sa.Column("started_by", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_scenario_runs_org_status", "scenario_runs", ["org_id", "status"])
    op.create_index("ix_scenario_runs_scenario", "scenario_runs", ["scenario_id"])
    op.create_index("ix_scenario_runs_playbook", "scenario_runs", ["playbook_id", "playbook_version"])
    op.create_index("ix_scenario_runs_started", "scenario_runs", ["started_at"])

    op.create_table(
        "scenario_run_steps",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("org_id", sa.String(64), nullable=False),
        sa.Column("run_id", sa.String(32),
                  sa.ForeignKey("scenario_runs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("step_index", sa.Integer, nullable=False),
        sa.Column("name", sa.String(256), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("action_type", sa.String(32), nullable=False),
        sa.Column("action_payload", sa.JSON, nullable=True),
        sa.Column("requires_approval", sa.Boolean, server_default=sa.false()),
        sa.Column("approval_roles", sa.JSON, nullable=True),
        sa.Column("wait_duration_minutes", sa.Integer, server_default="0"),
        sa.Column("status", sa.String(16), server_default="pending"),
        sa.Column("execution_context", sa.JSON, nullable=True),
        sa.Column("outcome", sa.JSON, nullable=True),
        sa.Column("simulated_impact", sa.JSON, nullable=True),
        sa.Column("wait_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("wait_remaining_seconds", sa.Float, nullable=True),
        sa.Column("ready_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("executed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_by", sa.String(64), nullable=True),
        sa.Column("approval_notes", sa.Text, nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("run_id", "step_index", name="uq_run_step_index"),
    )
    op.create_index("ix_scenario_run_steps_wait", "scenario_run_steps", ["wait_until"])

    op.create_table(
        "scenario_audit_log",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("org_id", sa.String(64), nullable=False),
        sa.Column("scenario_id", sa.String(32), nullable=True),
        sa.Column("run_id", sa.String(32), nullable=True),
        sa.Column("playbook_id", sa.String(32), nullable=True),
        sa.Column("step_id", sa.String(32), nullable=True),
        sa.Column("event_type", sa.String(32), nullable=False),
        sa.Column("payload", sa.JSON, nullable=True),
        sa.Column("actor_id", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_scenario_audit_org_created", "scenario_audit_log", ["org_id", "created_at"])
    op.create_index("ix_scenario_audit_run", "scenario_audit_log", ["run_id"])


def downgrade() -> None:
    op.drop_table("scenario_audit_log")
    op.drop_table("scenario_run_steps")
    op.drop_table("scenario_runs")
    op.drop_table("scenarios")
    op.drop_table("scenario_playbook_steps")
    op.drop_table("scenario_playbooks")
