"""Closed vocabularies shared by the store, registry, simulator and orchestrator.

Every status and type is an exhaustive ``str`` Enum.  Display labels and
colors are not defined here; see ``scenarioflow.api.presenters``.
"""

from __future__ import annotations

from enum import Enum


class PlaybookStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"


class TriggerType(str, Enum):
    EVENT = "event"
    SCHEDULED = "scheduled"
    MANUAL = "manual"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def weight(self) -> int:
        return RISK_WEIGHTS[self]


RISK_WEIGHTS: dict[RiskLevel, int] = {
    RiskLevel.LOW: 1,
    RiskLevel.MEDIUM: 2,
    RiskLevel.HIGH: 3,
    RiskLevel.CRITICAL: 4,
}


class ScenarioType(str, Enum):
    CRISIS_SIM = "crisis_sim"
    CAMPAIGN_SIM = "campaign_sim"
    REPUTATION_SIM = "reputation_sim"
    STRATEGIC_SIM = "strategic_sim"
    OUTREACH_SIM = "outreach_sim"
    COMPETITIVE_SIM = "competitive_sim"
    CUSTOM = "custom"


class ActionType(str, Enum):
    OUTREACH = "outreach"
    CRISIS_RESPONSE = "crisis_response"
    GOVERNANCE = "governance"
    REPORT_GENERATION = "report_generation"
    MEDIA_ALERT = "media_alert"
    REPUTATION_ACTION = "reputation_action"
    COMPETITIVE_ANALYSIS = "competitive_analysis"
    STAKEHOLDER_NOTIFY = "stakeholder_notify"
    CONTENT_PUBLISH = "content_publish"
    ESCALATION = "escalation"
    APPROVAL_GATE = "approval_gate"
    WAIT = "wait"
    CONDITIONAL = "conditional"
    CUSTOM = "custom"


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    AWAITING_APPROVAL = "awaiting_approval"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_RUN_STATUSES


TERMINAL_RUN_STATUSES = frozenset({
    RunStatus.COMPLETED,
    RunStatus.FAILED,
    RunStatus.CANCELLED,
})

ACTIVE_RUN_STATUSES = frozenset(set(RunStatus) - TERMINAL_RUN_STATUSES)


class StepStatus(str, Enum):
    PENDING = "pending"
    READY = "ready"
    EXECUTING = "executing"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STEP_STATUSES


TERMINAL_STEP_STATUSES = frozenset({
    StepStatus.COMPLETED,
    StepStatus.SKIPPED,
    StepStatus.FAILED,
})

# A later step may only execute once every earlier one is in this set
RESOLVED_STEP_STATUSES = frozenset({StepStatus.COMPLETED, StepStatus.SKIPPED})


class Trend(str, Enum):
    IMPROVING = "improving"
    WORSENING = "worsening"
    STABLE = "stable"
    UNKNOWN = "unknown"


class AuditEventType(str, Enum):
    PLAYBOOK_CREATED = "playbook_created"
    PLAYBOOK_UPDATED = "playbook_updated"
    PLAYBOOK_ACTIVATED = "playbook_activated"
    PLAYBOOK_ARCHIVED = "playbook_archived"
    PLAYBOOK_DELETED = "playbook_deleted"
    SCENARIO_CREATED = "scenario_created"
    SCENARIO_UPDATED = "scenario_updated"
    SCENARIO_DELETED = "scenario_deleted"
    SCENARIO_SIMULATED = "scenario_simulated"
    RUN_STARTED = "run_started"
    RUN_PAUSED = "run_paused"
    RUN_RESUMED = "run_resumed"
    RUN_COMPLETED = "run_completed"
    RUN_FAILED = "run_failed"
    RUN_CANCELLED = "run_cancelled"
    STEP_READY = "step_ready"
    STEP_APPROVED = "step_approved"
    STEP_EXECUTED = "step_executed"
    STEP_SKIPPED = "step_skipped"
    STEP_FAILED = "step_failed"
