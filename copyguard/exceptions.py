"""
CopyGuard - Custom exceptions for error handling.
"""

from typing import Any, Optional


class CopyGuardError(Exception):
    """Base exception for all CopyGuard errors."""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}

    @property
    def error_type(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.error_type, "message": self.message, **self.details}


class InvalidInputError(CopyGuardError):
    """Raised when a required field is missing or malformed."""

    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None, value: Any = None) -> None:
        super().__init__(message, details={"field": field} if field else None)
        self.field = field
        self.value = value


class NotFoundError(CopyGuardError):
    """Raised when a requested resource is not found."""

    status_code = 404


class StateConflictError(CopyGuardError):
    """Raised when a transition is attempted from the wrong state."""

    status_code = 409

    def __init__(self, message: str, current_status: Optional[str] = None) -> None:
        super().__init__(
            message,
            details={"current_status": current_status} if current_status else None,
        )
        self.current_status = current_status


class AuthorizationError(CopyGuardError):
    """Raised when the acting user may not perform an operation."""

    status_code = 403


class RoleMismatchError(AuthorizationError):
    """Raised when the acting user's role is not the role a step requires."""

    def __init__(self, required_role: str, user_role: Optional[str]) -> None:
        super().__init__(
            f"User does not have required role {required_role}",
            details={"required_role": required_role, "user_role": user_role},
        )
        self.required_role = required_role
        self.user_role = user_role


class ComplianceBlockedError(CopyGuardError):
    """Raised when the compliance gate refuses a submission."""

    status_code = 422

    def __init__(self, issues: list[Any]) -> None:
        super().__init__(
            "Cannot submit content with HIGH severity compliance issues",
            details={"issues": [issue.to_dict() for issue in issues]},
        )
        self.issues = issues


class EvaluatorUnavailableError(CopyGuardError):
    """Raised when the generative evaluation backend fails or times out."""

    status_code = 503


class AuditLogError(CopyGuardError):
    """Raised when an audit record cannot be persisted."""

    pass


class StepTemplateError(CopyGuardError):
    """Raised when a workflow step template is invalid."""

    def __init__(self, message: str, path: str = "", suggestion: str = ""):
        self.path = path
        self.suggestion = suggestion
        full_message = message
        if path:
            full_message = f"{path}: {message}"
        if suggestion:
            full_message = f"{full_message}\n  Hint: {suggestion}"
        super().__init__(full_message)
