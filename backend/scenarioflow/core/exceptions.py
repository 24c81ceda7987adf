"""Service-wide exception hierarchy.

Services raise these; the API layer registers one handler per type and maps
them onto HTTP status codes (see ``scenarioflow.api.errors``).

Usage:
    from scenarioflow.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="ScenarioRun", resource_id=run_id)
    raise ValidationError("steps must not be empty", details={"steps": "empty"})
"""


class ScenarioFlowError(Exception):
    """Base class for every error the engine raises on purpose."""


class NotFoundError(ScenarioFlowError):
    """Raised when a requested resource does not exist within the given tenant.

    Used for both genuinely missing records and cross-tenant lookups, so a
    caller cannot probe for ids that belong to another organization.

    Args:
        resource: Entity name (e.g. "PlaybookTemplate", "RunStep").
        resource_id: The id that was looked up.
        tenant_id: Optional org scope that was enforced. For logging only.
    """

    def __init__(
        self,
        resource: str,
        resource_id: str | None = None,
        tenant_id: str | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.tenant_id = tenant_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if tenant_id is not None:
            msg += f" (tenant={tenant_id})"
        super().__init__(msg)


class ValidationError(ScenarioFlowError):
    """Raised when a template, step or request violates a shape rule.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown, keyed by field name.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class StateConflictError(ScenarioFlowError):
    """Raised for an illegal lifecycle transition.

    Examples: approving a step that is not ready, deleting a template that a
    live run still references, cancelling a completed run.
    """

    def __init__(self, message: str, current_status: str | None = None) -> None:
        self.current_status = current_status
        super().__init__(message)


class SequenceViolationError(StateConflictError):
    """Raised when a step would execute before an earlier step is resolved."""


class ConcurrencyError(ScenarioFlowError):
    """Raised when an optimistic version check on a template edit fails."""

    def __init__(self, resource: str, expected: int, actual: int | None) -> None:
        self.resource = resource
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{resource} version mismatch: expected {expected}, found {actual}"
        )


class ActionExecutionError(ScenarioFlowError):
    """Raised by dispatchers for a failed side effect.

    The orchestrator catches it, records it on the step and the run, and
    never lets it escape to the caller or to other runs.
    """

    def __init__(self, action_type: str, message: str) -> None:
        self.action_type = action_type
        super().__init__(f"{action_type}: {message}")
