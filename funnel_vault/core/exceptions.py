"""
Service-layer exception hierarchy.

Services raise these types; blueprints map them to HTTP status codes in one
place.  Store I/O failures inside the reconcile/approve/push core are not
raised: they come back as ``{"success": False, "error": ...}`` result dicts.

Usage:
    from funnel_vault.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Project", resource_id=project_id)
    raise ValidationError("value is required", details={"value": "missing"})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Project", "Field").
        resource_id: The key that was looked up.  Included in logs.
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
    """Input was well-formed but violates a business rule.  Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would duplicate a unique value.  Maps to HTTP 409."""

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field}={value!r} already exists")


class TransitionError(Exception):
    """Raised when a single-section status transition is not allowed.  Maps to HTTP 409."""

    def __init__(self, section_id: str, action: str, current: str | None, reason: str | None = None):
        msg = f"Cannot '{action}' section {section_id} (status={current})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
        self.section_id = section_id
        self.action = action
        self.current_status = current
        self.reason = reason
