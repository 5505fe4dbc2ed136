"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere.

Usage:
    from keon.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Task", resource_id=42)
    raise InvalidTransition(task_id=42, current="done", target="todo")
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Maps to HTTP 404.

    Args:
        resource: Human-readable model/entity name (e.g. "Task", "ProcessTemplate").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Distinct from HTTP 400 (malformed input, caught in blueprint) — this
    exception signals that the data was well-formed but violated a business
    rule (missing validation levels, unknown recurrence unit, ...).

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidTransition(ValidationError):
    """Raised when a status mutation targets a status outside the allowed set.

    Rejected before any write. Maps to HTTP 422.
    """

    def __init__(self, task_id: int | None, current: str, target: str) -> None:
        self.task_id = task_id
        self.current_status = current
        self.target_status = target
        super().__init__(
            f"Invalid transition: {current} → {target}",
            details={"task_id": task_id, "from": current, "to": target},
        )


class ConflictError(Exception):
    """Raised when an operation collides with state written by someone else.

    Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The field whose current value blocks the operation.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} already has {field}={value!r}")


class PermissionDenied(Exception):
    """Raised when the acting profile lacks the capability for an action.

    Maps to HTTP 403.
    """

    def __init__(self, profile_id: int | None, action: str, reason: str | None = None) -> None:
        self.profile_id = profile_id
        self.action = action
        msg = f"Profile {profile_id} is not allowed to '{action}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
