"""Explicit call context: tenant identity and time source.

The engine never reads tenant identity from globals; every public service
call takes a ``TenantContext``.  Time comes from an injectable ``Clock`` so
timers and simulations are reproducible under test.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class TenantContext:
    org_id: str
    actor_id: Optional[str] = None

