"""Action dispatchers: execute the side effect of one run step.

The orchestrator calls ``dispatch`` exactly once per executing step and never
retries.  A raised exception is treated the same as ``success=False``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

import httpx

from scenarioflow.config import settings
from scenarioflow.core.exceptions import ActionExecutionError

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    success: bool
    impact: dict[str, float] = field(default_factory=dict)
    error: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)


class ActionDispatcher(Protocol):
    async def dispatch(
        self,
        action_type: str,
        action_payload: dict[str, Any],
        execution_context: dict[str, Any],
    ) -> DispatchResult:
        ...


class NullActionDispatcher:
    """Succeeds with zero impact. Used when no webhook is configured."""

    async def dispatch(self, action_type, action_payload, execution_context) -> DispatchResult:
        return DispatchResult(success=True, details={"dispatcher": "null"})


@dataclass
class DispatchCall:
    action_type: str
    action_payload: dict[str, Any]
    execution_context: dict[str, Any]


class InMemoryActionDispatcher:
    """Scriptable dispatcher that records every call.

    Results are looked up by step index first, then by action type, and
    default to success with no impact.  ``hold()`` makes every dispatch wait
    until ``release()`` so callers can act while a step is executing.
    """

    def __init__(self, default: Optional[DispatchResult] = None):
        self.calls: list[DispatchCall] = []
        self._by_action: dict[str, DispatchResult | Exception] = {}
        self._by_step: dict[int, DispatchResult | Exception] = {}
        self._default = default or DispatchResult(success=True)
        self._gate: asyncio.Event | None = None
        self.entered = asyncio.Event()

    def script(
        self,
        outcome: DispatchResult | Exception,
        *,
        action_type: Optional[str] = None,
        step_index: Optional[int] = None,
    ) -> None:
        if step_index is not None:
            self._by_step[step_index] = outcome
        elif action_type is not None:
            self._by_action[action_type] = outcome
        else:
            self._default = outcome

    def hold(self) -> None:
        self._gate = asyncio.Event()
        self.entered = asyncio.Event()

    def release(self) -> None:
        if self._gate is not None:
            self._gate.set()

    async def dispatch(self, action_type, action_payload, execution_context) -> DispatchResult:
        self.calls.append(DispatchCall(action_type, dict(action_payload), dict(execution_context)))
        self.entered.set()
        if self._gate is not None:
            await self._gate.wait()

        step_index = execution_context.get("stepIndex")
        outcome = self._by_step.get(step_index, self._by_action.get(action_type, self._default))
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class HttpActionDispatcher:
    """Posts each action to a webhook; the endpoint's JSON reply is the result.

    Expected reply: ``{"success": bool, "impact": {...}, "error": str?}``.
    Any non-2xx status or transport error is a failed dispatch.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url or settings.DISPATCH_WEBHOOK_URL
        self.timeout = timeout or settings.DISPATCH_TIMEOUT_SECONDS
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout, connect=10),
                transport=self._transport,
            )
        return self._client

    async def cleanup(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def dispatch(self, action_type, action_payload, execution_context) -> DispatchResult:
        start = time.monotonic()
        body = {
            "actionType": action_type,
            "actionPayload": action_payload,
            "executionContext": execution_context,
        }
        try:
            resp = await self._get_client().post(self.url, json=body)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as e:
            raise ActionExecutionError(action_type, f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ActionExecutionError(action_type, str(e) or type(e).__name__) from e

        latency_ms = int((time.monotonic() - start) * 1000)
        logger.info("Dispatched %s to webhook in %dms", action_type, latency_ms)
        return DispatchResult(
            success=bool(data.get("success", False)),
            impact={
                k: float(v) for k, v in (data.get("impact") or {}).items()
                if isinstance(v, (int, float))
            },
            error=data.get("error"),
            details={"latencyMs": latency_ms},
        )


def build_dispatcher() -> ActionDispatcher:
    if settings.DISPATCH_WEBHOOK_URL:
        return HttpActionDispatcher()
    return NullActionDispatcher()
