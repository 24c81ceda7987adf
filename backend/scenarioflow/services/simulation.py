"""Scenario simulation: a dry run of a scenario's bound playbook.

Deterministic projection over (scenario, template version, now): per-step
predicted outcomes and impacts, a per-day timeline across the horizon,
clamped risk/opportunity/confidence scores and prioritized recommendations.
Nothing is dispatched and no run is created; the only write is the
``scenario_simulated`` audit entry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from scenarioflow.config import settings
from scenarioflow.core.context import Clock, TenantContext, as_utc, utcnow
from scenarioflow.core.enums import (
    ActionType,
    AuditEventType,
    RiskLevel,
    ScenarioType,
)
from scenarioflow.db.models import PlaybookTemplate, Scenario, StepDefinition
from scenarioflow.services.audit import log_event
from scenarioflow.services.playbooks import PlaybookDefinitionStore
from scenarioflow.services.scenarios import ScenarioRegistry

logger = logging.getLogger(__name__)

# (sentiment, coverage, engagement) expected from one successful action
ACTION_IMPACTS: dict[ActionType, tuple[float, float, float]] = {
    ActionType.OUTREACH: (4.0, 6.0, 5.0),
    ActionType.CRISIS_RESPONSE: (6.0, 3.0, 2.0),
    ActionType.GOVERNANCE: (1.0, 0.0, 0.0),
    ActionType.REPORT_GENERATION: (0.0, 1.0, 0.0),
    ActionType.MEDIA_ALERT: (2.0, 8.0, 3.0),
    ActionType.REPUTATION_ACTION: (5.0, 2.0, 2.0),
    ActionType.COMPETITIVE_ANALYSIS: (1.0, 1.0, 0.0),
    ActionType.STAKEHOLDER_NOTIFY: (2.0, 2.0, 4.0),
    ActionType.CONTENT_PUBLISH: (3.0, 7.0, 6.0),
    ActionType.ESCALATION: (-1.0, 1.0, 1.0),
    ActionType.APPROVAL_GATE: (0.0, 0.0, 0.0),
    ActionType.WAIT: (0.0, 0.0, 0.0),
    ActionType.CONDITIONAL: (0.0, 0.0, 0.0),
    ActionType.CUSTOM: (1.0, 1.0, 1.0),
}

# Floor risk an action carries regardless of the template's own level
ACTION_RISK: dict[ActionType, RiskLevel] = {
    ActionType.CRISIS_RESPONSE: RiskLevel.HIGH,
    ActionType.ESCALATION: RiskLevel.HIGH,
    ActionType.CONTENT_PUBLISH: RiskLevel.MEDIUM,
    ActionType.MEDIA_ALERT: RiskLevel.MEDIUM,
    ActionType.REPUTATION_ACTION: RiskLevel.MEDIUM,
}

# Starting sentiment implied by the scenario's risk baseline
BASELINE_SENTIMENT: dict[RiskLevel, float] = {
    RiskLevel.LOW: 5.0,
    RiskLevel.MEDIUM: 0.0,
    RiskLevel.HIGH: -10.0,
    RiskLevel.CRITICAL: -20.0,
}

# Context parameters a simulation of each scenario type expects
REQUIRED_CONTEXT: dict[ScenarioType, tuple[str, ...]] = {
    ScenarioType.CRISIS_SIM: ("incident", "audience"),
    ScenarioType.CAMPAIGN_SIM: ("campaign", "audience"),
    ScenarioType.REPUTATION_SIM: ("subject",),
    ScenarioType.STRATEGIC_SIM: ("objective",),
    ScenarioType.OUTREACH_SIM: ("audience",),
    ScenarioType.COMPETITIVE_SIM: ("competitor",),
    ScenarioType.CUSTOM: (),
}

# Actions that do nothing on their own and need no payload
PASSIVE_ACTIONS = frozenset({ActionType.APPROVAL_GATE, ActionType.WAIT, ActionType.CONDITIONAL})

_PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}


@dataclass
class TimelinePoint:
    day: int
    date: str
    sentiment_projected: float
    coverage_projected: float
    risk_level: str


@dataclass
class Recommendation:
    priority: str  # high | medium | low
    action: str
    rationale: str


@dataclass
class StepPreview:
    step_index: int
    step_name: str
    action_type: str
    risk_level: str
    predicted_outcome: str
    simulated_impact: dict[str, float]
    expected_day: int


@dataclass
class SimulationResult:
    scenario_id: str
    playbook_id: str
    playbook_version: int
    simulated_at: datetime
    risk_score: float
    opportunity_score: float
    confidence_score: float
    narrative_summary: str
    timeline: list[TimelinePoint] = field(default_factory=list)
    recommendations: list[Recommendation] = field(default_factory=list)
    step_previews: list[StepPreview] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _risk_for_sentiment(sentiment: float) -> RiskLevel:
    if sentiment < -40:
        return RiskLevel.CRITICAL
    if sentiment < -20:
        return RiskLevel.HIGH
    if sentiment < -10:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def _max_risk(*levels: RiskLevel) -> RiskLevel:
    return max(levels, key=lambda level: level.weight)


def project(
    scenario: Scenario,
    template: PlaybookTemplate,
    now: datetime,
    max_recommendations: int = 5,
) -> SimulationResult:
    """Pure projection. Same inputs, same result."""
    baseline = RiskLevel(scenario.baseline_risk)
    template_risk = RiskLevel(template.risk_level)
    horizon = scenario.horizon_days
    context = scenario.context_parameters or {}
    steps: list[StepDefinition] = sorted(template.steps, key=lambda s: s.step_index)

    warnings: list[str] = []
    required = REQUIRED_CONTEXT[ScenarioType(scenario.scenario_type)]
    missing_context = [key for key in required if context.get(key) in (None, "", [], {})]
    if missing_context:
        warnings.append(f"Missing context parameters: {', '.join(missing_context)}")

    previews: list[StepPreview] = []
    day_deltas: dict[int, tuple[float, float]] = {}
    sentiment_total = coverage_total = engagement_total = 0.0
    unsupervised_high_risk = 0
    empty_payload_steps: list[int] = []
    approval_roles: list[str] = []
    elapsed_minutes = 0
    beyond_horizon = False

    for step in steps:
        action = ActionType(step.action_type)
        elapsed_minutes += step.wait_duration_minutes
        day = elapsed_minutes // (24 * 60)
        if day >= horizon:
            beyond_horizon = True
            day = horizon - 1

        has_payload = bool(step.action_payload)
        if action not in PASSIVE_ACTIONS and not has_payload:
            empty_payload_steps.append(step.step_index)
        effectiveness = 1.0 if has_payload or action in PASSIVE_ACTIONS else 0.5

        base_sentiment, base_coverage, base_engagement = ACTION_IMPACTS[action]
        impact = {
            "sentimentDelta": round(base_sentiment * effectiveness, 2),
            "coverageDelta": round(base_coverage * effectiveness, 2),
            "engagementDelta": round(base_engagement * effectiveness, 2),
        }
        sentiment_total += impact["sentimentDelta"]
        coverage_total += impact["coverageDelta"]
        engagement_total += impact["engagementDelta"]
        prev_s, prev_c = day_deltas.get(day, (0.0, 0.0))
        day_deltas[day] = (prev_s + impact["sentimentDelta"], prev_c + impact["coverageDelta"])

        step_risk = _max_risk(template_risk, ACTION_RISK.get(action, RiskLevel.LOW))
        if step_risk.weight >= RiskLevel.HIGH.weight and not step.requires_approval:
            unsupervised_high_risk += 1

        if step.requires_approval:
            approval_roles.extend(r for r in step.approval_roles if r not in approval_roles)
            outcome = (
                f"Held for approval by {', '.join(step.approval_roles)}; "
                f"{action.value} runs on day {day + 1} once approved"
            )
        elif action in PASSIVE_ACTIONS:
            outcome = f"{action.value} completes on day {day + 1} with no external effect"
        else:
            outcome = f"{action.value} expected to succeed on day {day + 1}"
            if not has_payload:
                outcome += " at reduced effect (no payload)"

        previews.append(
            StepPreview(
                step_index=step.step_index,
                step_name=step.name,
                action_type=action.value,
                risk_level=step_risk.value,
                predicted_outcome=outcome,
                simulated_impact=impact,
                expected_day=day + 1,
            )
        )

    if beyond_horizon:
        warnings.append(
            f"Step waits total {elapsed_minutes} minutes, beyond the {horizon}-day horizon"
        )
    if empty_payload_steps:
        warnings.append(
            "Steps without action payload: " + ", ".join(str(i) for i in empty_payload_steps)
        )

    # Timeline: cumulative impact on top of the baseline, one point per day
    timeline: list[TimelinePoint] = []
    sentiment = BASELINE_SENTIMENT[baseline]
    coverage = 0.0
    for day in range(horizon):
        ds, dc = day_deltas.get(day, (0.0, 0.0))
        sentiment = _clamp(sentiment + ds, -100.0, 100.0)
        coverage += dc
        timeline.append(
            TimelinePoint(
                day=day + 1,
                date=(now + timedelta(days=day)).date().isoformat(),
                sentiment_projected=round(sentiment, 2),
                coverage_projected=round(coverage, 2),
                risk_level=_risk_for_sentiment(sentiment).value,
            )
        )

    risk_score = round(_clamp(
        baseline.weight * 15 + template_risk.weight * 5
        + unsupervised_high_risk * 5 - sentiment_total,
        0.0, 100.0,
    ), 1)
    opportunity_score = round(_clamp(
        sentiment_total * 2 + coverage_total + engagement_total * 0.5, 0.0, 100.0
    ), 1)

    context_ratio = 1.0 if not required else (len(required) - len(missing_context)) / len(required)
    active_steps = [s for s in steps if ActionType(s.action_type) not in PASSIVE_ACTIONS]
    payload_ratio = (
        1.0 if not active_steps
        else (len(active_steps) - len(empty_payload_steps)) / len(active_steps)
    )
    confidence_score = round(_clamp(0.4 + 0.3 * context_ratio + 0.3 * payload_ratio, 0.0, 1.0), 2)

    recommendations: list[Recommendation] = []
    if risk_score >= 70:
        recommendations.append(Recommendation(
            "high", "Escalate to leadership before starting a run",
            f"Projected risk is {risk_score:.0f}/100",
        ))
    if unsupervised_high_risk:
        recommendations.append(Recommendation(
            "high", "Add an approval gate to high-risk steps",
            f"{unsupervised_high_risk} high-risk step(s) would execute without review",
        ))
    if missing_context:
        recommendations.append(Recommendation(
            "medium", f"Provide context parameters: {', '.join(missing_context)}",
            "Projection confidence is reduced without them",
        ))
    if empty_payload_steps:
        recommendations.append(Recommendation(
            "medium", "Complete the action payload of every active step",
            f"{len(empty_payload_steps)} step(s) would run at reduced effect",
        ))
    if approval_roles:
        recommendations.append(Recommendation(
            "medium", f"Line up approvers: {', '.join(approval_roles)}",
            "Runs suspend until each approval step is decided",
        ))
    if beyond_horizon:
        recommendations.append(Recommendation(
            "low", "Extend the scenario horizon",
            "Some steps are scheduled after the horizon ends",
        ))
    if opportunity_score >= 60:
        recommendations.append(Recommendation(
            "low", "Prepare amplification for positive coverage",
            f"Projected opportunity is {opportunity_score:.0f}/100",
        ))
    recommendations.sort(key=lambda r: _PRIORITY_ORDER[r.priority])
    recommendations = recommendations[:max_recommendations]

    final_level = _risk_for_sentiment(sentiment)
    narrative = (
        f"{scenario.name}: {len(steps)} step(s) of playbook {template.name} "
        f"v{template.version} over {horizon} day(s). Net sentiment "
        f"{sentiment_total:+.1f}, coverage {coverage_total:+.1f}. Projected risk "
        f"{risk_score:.0f}/100 ending at {final_level.value} level, opportunity "
        f"{opportunity_score:.0f}/100."
    )

    return SimulationResult(
        scenario_id=scenario.id,
        playbook_id=template.id,
        playbook_version=template.version,
        simulated_at=now,
        risk_score=risk_score,
        opportunity_score=opportunity_score,
        confidence_score=confidence_score,
        narrative_summary=narrative,
        timeline=timeline,
        recommendations=recommendations,
        step_previews=previews,
        warnings=warnings,
    )


class SimulationEngine:
    """Loads the scenario and its pinned template, then projects."""

    def __init__(self, session: AsyncSession, clock: Clock = utcnow):
        self.session = session
        self.clock = clock

    async def simulate(
        self, tenant: TenantContext, scenario_id: str, now: Optional[datetime] = None
    ) -> SimulationResult:
        scenario = await ScenarioRegistry(self.session).get(tenant, scenario_id)
        template = await PlaybookDefinitionStore(self.session).get(
            tenant, scenario.playbook_id, scenario.playbook_version
        )
        when = as_utc(now) if now is not None else self.clock()
        result = project(
            scenario, template, when,
            max_recommendations=settings.SIMULATION_MAX_RECOMMENDATIONS,
        )
        payload: dict[str, Any] = {
            "playbookVersion": template.version,
            "riskScore": result.risk_score,
            "opportunityScore": result.opportunity_score,
            "confidenceScore": result.confidence_score,
        }
        log_event(
            self.session, tenant, AuditEventType.SCENARIO_SIMULATED,
            scenario_id=scenario.id, playbook_id=template.id, payload=payload,
        )
        await self.session.flush()
        logger.info("Scenario %s simulated (risk=%.1f, opportunity=%.1f)",
                    scenario.id, result.risk_score, result.opportunity_score)
        return result
