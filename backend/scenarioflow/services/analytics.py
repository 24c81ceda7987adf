"""Dashboard stats and score trends."""

import logging
from typing import Any, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from scenarioflow.core.context import TenantContext
from scenarioflow.core.enums import PlaybookStatus, RunStatus, Trend
from scenarioflow.db.models import PlaybookTemplate, Scenario
from scenarioflow.db.repositories.runs import RunRepository

logger = logging.getLogger(__name__)

# Score changes smaller than this are noise
TREND_TOLERANCE = 1.0


def trend(
    current: Optional[float],
    previous: Optional[float],
    lower_is_better: bool = False,
    tolerance: float = TREND_TOLERANCE,
) -> Trend:
    """Direction of a score between two observations.

    ``unknown`` only when there is nothing to compare against.
    """
    if previous is None or current is None:
        return Trend.UNKNOWN
    delta = current - previous
    if abs(delta) < tolerance:
        return Trend.STABLE
    improved = delta < 0 if lower_is_better else delta > 0
    return Trend.IMPROVING if improved else Trend.WORSENING


async def get_stats(session: AsyncSession, tenant: TenantContext) -> dict[str, Any]:
    repo = RunRepository(session)

    active_playbooks = await session.scalar(
        select(func.count()).select_from(PlaybookTemplate).where(
            PlaybookTemplate.org_id == tenant.org_id,
            PlaybookTemplate.is_latest.is_(True),
            PlaybookTemplate.status == PlaybookStatus.ACTIVE.value,
        )
    )
    total_playbooks = await session.scalar(
        select(func.count()).select_from(PlaybookTemplate).where(
            PlaybookTemplate.org_id == tenant.org_id,
            PlaybookTemplate.is_latest.is_(True),
        )
    )
    scenarios = await session.scalar(
        select(func.count(Scenario.id)).where(Scenario.org_id == tenant.org_id)
    )

    by_status = await repo.count_by_status(tenant.org_id)
    runs_by_status = {s.value: by_status.get(s.value, 0) for s in RunStatus}
    average_risk = await repo.average_risk_score(tenant.org_id)
    recent = await repo.list_runs(tenant.org_id, limit=5, sort_by="created_at")
    last_two = await repo.recent_completed(tenant.org_id, limit=2)

    current_risk = last_two[0].risk_score if last_two else None
    previous_risk = last_two[1].risk_score if len(last_two) > 1 else None

    return {
        "total_playbooks": total_playbooks or 0,
        "active_playbooks": active_playbooks or 0,
        "total_scenarios": scenarios or 0,
        "total_runs": sum(runs_by_status.values()),
        "runs_by_status": runs_by_status,
        "average_risk_score": round(average_risk, 1) if average_risk is not None else None,
        "recent_runs": list(recent),
        "risk_trend": trend(current_risk, previous_risk, lower_is_better=True),
    }
