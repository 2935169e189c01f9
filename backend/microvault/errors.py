"""Domain errors raised by the registry services and mapped to HTTP in ``main``."""

from __future__ import annotations

from typing import Any

from .rbac import Decision, DenyReason


class RegistryError(Exception):
    status_code = 500
    code = "internal_error"
    message = "Internal server error"

    def __init__(self, message: str | None = None, **extra: Any):
        super().__init__(message or self.message)
        self.message = message or self.message
        self.extra = extra

    def to_body(self) -> dict[str, Any]:
        return {"detail": self.message, "reason": self.code, **self.extra}


class ValidationError(RegistryError):
    status_code = 400
    code = "validation_error"
    message = "Validation failed"

    def __init__(self, message: str | None = None, errors: list[dict[str, str]] | None = None):
        super().__init__(message, errors=errors or [])


class AuthenticationRequired(RegistryError):
    status_code = 401
    code = "authentication_required"
    message = "Access token required"


class InvalidCredential(RegistryError):
    status_code = 403
    code = "invalid_credential"
    message = "Invalid or expired token"


class PrincipalNotFound(RegistryError):
    status_code = 403
    code = "principal_not_found"
    message = "User not found"


class AccountDisabled(RegistryError):
    status_code = 403
    code = DenyReason.ACCOUNT_DISABLED.value
    message = "Account disabled"


class LoginFailed(RegistryError):
    status_code = 401
    code = "invalid_credentials"
    message = "Invalid credentials"


_DENY_MESSAGES = {
    DenyReason.ACCOUNT_DISABLED: "Account disabled",
    DenyReason.INSUFFICIENT_CLEARANCE: "Insufficient biosafety clearance",
    DenyReason.ROLE_FORBIDDEN: "Insufficient permissions for this role",
    DenyReason.NOT_OWNER: "You can only modify your own strains",
    DenyReason.SELF_ACTION_BLOCKED: "You cannot delete your own account",
    DenyReason.NOT_DELETED: "Strain is not deleted",
    DenyReason.ALREADY_INITIALIZED: "System already initialized",
}

# denials that are reported as bad requests rather than 403
_BAD_REQUEST_REASONS = {DenyReason.SELF_ACTION_BLOCKED, DenyReason.NOT_DELETED}


class Forbidden(RegistryError):
    status_code = 403
    code = "forbidden"

    def __init__(self, decision: Decision, message: str | None = None):
        reason = decision.reason or DenyReason.ROLE_FORBIDDEN
        extra = {}
        if decision.required is not None:
            extra["required"] = decision.required
        if decision.current is not None:
            extra["current"] = decision.current
        super().__init__(message or _DENY_MESSAGES[reason], **extra)
        self.decision = decision
        self.code = reason.value
        if reason in _BAD_REQUEST_REASONS:
            self.status_code = 400


class NotFound(RegistryError):
    status_code = 404
    code = "not_found"
    message = "Not found"


class Conflict(RegistryError):
    # kept at 400 for compatibility with existing clients
    status_code = 400
    code = "conflict"
    message = "Resource already exists"


class AuditWriteFailure(RegistryError):
    status_code = 500
    code = "audit_write_failure"


class StoreUnavailable(RegistryError):
    status_code = 500
    code = "store_unavailable"


def enforce(decision: Decision, message: str | None = None) -> None:
    """Raise ``Forbidden`` for a denied decision."""

    if not decision:
        raise Forbidden(decision, message)
