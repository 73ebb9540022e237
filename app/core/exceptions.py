"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against them
once and get consistent HTTP status codes everywhere.

Usage:
    from app.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Project", resource_id="p-42")
    raise ValidationError("Unknown workflow type", details={"workflow_type": "..."})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist in the store.

    Args:
        resource: Human-readable entity name (e.g. "Project", "Client").
        resource_id: The id that was looked up. Included in logs and messages.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    The data was well-formed but violated a rule (unknown workflow type,
    unsupported status, operation not allowed in the current stage).

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class TransitionError(ValidationError):
    """Raised when an explicitly requested workflow event is not legal
    from the project's current stage.

    Maps to HTTP 409.
    """

    def __init__(self, event: str, current_stage: str, reason: str | None = None) -> None:
        self.event = event
        self.current_stage = current_stage
        self.reason = reason
        msg = f"Cannot apply '{event}' (stage={current_stage})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, details={"event": event, "stage": current_stage})


class ConflictError(Exception):
    """Raised when an operation would create a duplicate.

    Maps to HTTP 409.

    Args:
        resource: Entity name.
        field: The unique field that would be duplicated.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class StoreError(Exception):
    """Raised when the project store cannot persist or read a record.

    Callers treat it as retryable. A stage transition that hits this
    error is not applied.

    Maps to HTTP 503.
    """

    def __init__(self, operation: str, resource_id: str | None = None, cause: Exception | None = None) -> None:
        self.operation = operation
        self.resource_id = resource_id
        self.cause = cause
        msg = f"Store {operation} failed"
        if resource_id is not None:
            msg += f" for {resource_id}"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)
