"""Display metadata for the closed vocabularies.

Every enum member has a label and (where shown as a badge) a color.  The
``unknown`` fallback exists only here, for values read back from storage
that no longer belong to an enum.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from scenarioflow.core.context import as_utc
from scenarioflow.core.enums import (
    ActionType,
    PlaybookStatus,
    RiskLevel,
    RunStatus,
    ScenarioType,
    StepStatus,
    Trend,
    TriggerType,
)

UNKNOWN = {"label": "Unknown", "color": "gray"}

LABELS: dict[type[Enum], dict[Enum, str]] = {
    PlaybookStatus: {
        PlaybookStatus.DRAFT: "Draft",
        PlaybookStatus.ACTIVE: "Active",
        PlaybookStatus.ARCHIVED: "Archived",
    },
    TriggerType: {
        TriggerType.EVENT: "Event",
        TriggerType.SCHEDULED: "Scheduled",
        TriggerType.MANUAL: "Manual",
    },
    RiskLevel: {
        RiskLevel.LOW: "Low",
        RiskLevel.MEDIUM: "Medium",
        RiskLevel.HIGH: "High",
        RiskLevel.CRITICAL: "Critical",
    },
    ScenarioType: {
        ScenarioType.CRISIS_SIM: "Crisis Simulation",
        ScenarioType.CAMPAIGN_SIM: "Campaign Simulation",
        ScenarioType.REPUTATION_SIM: "Reputation Simulation",
        ScenarioType.STRATEGIC_SIM: "Strategic Simulation",
        ScenarioType.OUTREACH_SIM: "Outreach Simulation",
        ScenarioType.COMPETITIVE_SIM: "Competitive Simulation",
        ScenarioType.CUSTOM: "Custom",
    },
    ActionType: {
        ActionType.OUTREACH: "Outreach",
        ActionType.CRISIS_RESPONSE: "Crisis Response",
        ActionType.GOVERNANCE: "Governance",
        ActionType.REPORT_GENERATION: "Report Generation",
        ActionType.MEDIA_ALERT: "Media Alert",
        ActionType.REPUTATION_ACTION: "Reputation Action",
        ActionType.COMPETITIVE_ANALYSIS: "Competitive Analysis",
        ActionType.STAKEHOLDER_NOTIFY: "Stakeholder Notification",
        ActionType.CONTENT_PUBLISH: "Content Publish",
        ActionType.ESCALATION: "Escalation",
        ActionType.APPROVAL_GATE: "Approval Gate",
        ActionType.WAIT: "Wait",
        ActionType.CONDITIONAL: "Conditional",
        ActionType.CUSTOM: "Custom",
    },
    RunStatus: {
        RunStatus.PENDING: "Pending",
        RunStatus.RUNNING: "Running",
        RunStatus.PAUSED: "Paused",
        RunStatus.AWAITING_APPROVAL: "Awaiting Approval",
        RunStatus.COMPLETED: "Completed",
        RunStatus.FAILED: "Failed",
        RunStatus.CANCELLED: "Cancelled",
    },
    StepStatus: {
        StepStatus.PENDING: "Pending",
        StepStatus.READY: "Ready",
        StepStatus.EXECUTING: "Executing",
        StepStatus.COMPLETED: "Completed",
        StepStatus.SKIPPED: "Skipped",
        StepStatus.FAILED: "Failed",
    },
    Trend: {
        Trend.IMPROVING: "Improving",
        Trend.WORSENING: "Worsening",
        Trend.STABLE: "Stable",
        Trend.UNKNOWN: "Unknown",
    },
}

COLORS: dict[type[Enum], dict[Enum, str]] = {
    PlaybookStatus: {
        PlaybookStatus.DRAFT: "gray",
        PlaybookStatus.ACTIVE: "green",
        PlaybookStatus.ARCHIVED: "slate",
    },
    RiskLevel: {
        RiskLevel.LOW: "green",
        RiskLevel.MEDIUM: "yellow",
        RiskLevel.HIGH: "orange",
        RiskLevel.CRITICAL: "red",
    },
    RunStatus: {
        RunStatus.PENDING: "gray",
        RunStatus.RUNNING: "blue",
        RunStatus.PAUSED: "yellow",
        RunStatus.AWAITING_APPROVAL: "purple",
        RunStatus.COMPLETED: "green",
        RunStatus.FAILED: "red",
        RunStatus.CANCELLED: "slate",
    },
    StepStatus: {
        StepStatus.PENDING: "gray",
        StepStatus.READY: "blue",
        StepStatus.EXECUTING: "indigo",
        StepStatus.COMPLETED: "green",
        StepStatus.SKIPPED: "slate",
        StepStatus.FAILED: "red",
    },
    Trend: {
        Trend.IMPROVING: "green",
        Trend.WORSENING: "red",
        Trend.STABLE: "gray",
        Trend.UNKNOWN: "gray",
    },
}


def display(enum_cls: type[Enum], value) -> dict[str, str]:
    """Label/color for a stored value; unknown values fall back to gray."""
    try:
        member = enum_cls(value)
    except ValueError:
        return dict(UNKNOWN)
    return {
        "label": LABELS[enum_cls][member],
        "color": COLORS.get(enum_cls, {}).get(member, "gray"),
    }


def iso(value: Optional[datetime]) -> Optional[str]:
    return as_utc(value).isoformat() if value is not None else None
