"""Domain exceptions raised by the liquidation workflow.

Every exception carries a stable ``code`` and the HTTP status it maps to at
the API boundary. Services raise them; only the API layer converts them.
"""

from __future__ import annotations

from typing import Any


class LiquidationError(Exception):
    """Base class for all liquidation domain errors."""

    code: str = "LIQUIDATION_ERROR"
    http_status: int = 400

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        self.message = message
        self.context = context or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the API error body."""
        return {
            "detail": self.message,
            "code": self.code,
            "context": self.context or None,
        }


class AuthenticationError(LiquidationError):
    """No acting user could be resolved for the request."""

    code = "AUTHENTICATION_REQUIRED"
    http_status = 401


class PermissionDeniedError(LiquidationError):
    """The actor's role or ownership does not allow the operation."""

    code = "PERMISSION_DENIED"
    http_status = 403


class InvalidStateError(LiquidationError):
    """The liquidation is not in a status that allows the operation."""

    code = "INVALID_STATE"
    http_status = 409

    def __init__(
        self,
        message: str,
        current_status: str | None = None,
        action: str | None = None,
    ):
        self.current_status = current_status
        self.action = action
        context: dict[str, Any] = {}
        if current_status is not None:
            context["current_status"] = current_status
        if action is not None:
            context["action"] = action
        super().__init__(message, context)


class ValidationError(LiquidationError):
    """One or more fields are missing or malformed.

    ``errors`` maps a field name to the list of messages for that field.
    """

    code = "VALIDATION_ERROR"
    http_status = 422

    def __init__(self, errors: dict[str, list[str]], message: str | None = None):
        self.errors = errors
        if message is None:
            first = next(iter(errors.values()), ["Validation failed"])
            message = first[0] if first else "Validation failed"
        super().__init__(message, {"errors": errors})

    @classmethod
    def for_field(cls, field: str, message: str) -> ValidationError:
        return cls({field: [message]})


class DuplicateControlNumberError(LiquidationError):
    """A liquidation with the same DV control number already exists."""

    code = "DUPLICATE_CONTROL_NUMBER"
    http_status = 422

    def __init__(self, control_no: str):
        self.control_no = control_no
        super().__init__(
            "This DV Control No. already exists.",
            {"errors": {"dv_control_no": ["This DV Control No. already exists."]}},
        )


class FileFormatError(LiquidationError):
    """Uploaded file has the wrong type or exceeds the size ceiling."""

    code = "FILE_FORMAT_ERROR"
    http_status = 422


class ConcurrencyError(LiquidationError):
    """The liquidation was modified by someone else since it was read."""

    code = "CONCURRENCY_CONFLICT"
    http_status = 409


class NotFoundError(LiquidationError):
    """Referenced record does not exist."""

    code = "NOT_FOUND"
    http_status = 404
