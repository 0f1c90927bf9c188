"""
Error types shared by the rule modules, the store procedures and the routes.

Routes translate these into HTTP responses; nothing here knows about HTTP.
"""

from typing import Optional


class PortalError(Exception):
    """Base class for portal errors carrying a machine code and a user-facing message."""

    default_code = "portal_error"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def to_detail(self) -> dict:
        return {"error": self.code, "message": self.message}


class ValidationError(PortalError):
    """Client-side check failed; no write was attempted."""

    default_code = "validation_error"


class ClaimValidationError(ValidationError):
    default_code = "late_days_claim_invalid"


class ProcedureError(PortalError):
    """A store procedure rejected the call. The message is shown to the user verbatim."""

    default_code = "procedure_failed"


class AccessBlockedError(PortalError):
    """The caller's identity is not allowed to use this part of the portal."""

    default_code = "access_blocked"


class ConfirmationRequired(PortalError):
    """A destructive action was requested without explicit confirmation."""

    default_code = "confirmation_required"


class NotFoundError(PortalError):
    default_code = "not_found"
