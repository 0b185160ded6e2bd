"""
Error taxonomy for the engine.

Validators and gates raise typed errors carrying an HTTP status code and
a machine-readable code. The API layer catches them once and renders
{"error": code, "message": message, **details}.
"""

from typing import Any, Dict, Optional


class EngineError(Exception):
    """Base class for all engine errors."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.code, "message": self.message}
        body.update(self.details)
        return body


class ValidationError(EngineError):
    """Bad amount, invalid increment, missing required field."""
    status_code = 400
    code = "VALIDATION_ERROR"


class AuthError(EngineError):
    """Missing or invalid credentials (401), insufficient role (403)."""
    status_code = 401
    code = "UNAUTHORIZED"

    @classmethod
    def forbidden(cls, message: str = "Forbidden") -> "AuthError":
        return cls(message, status_code=403, code="FORBIDDEN")


class RestrictionError(EngineError):
    """Bidder is blocked or in cooldown."""
    status_code = 403
    code = "USER_RESTRICTED"

    def __init__(
        self,
        message: str,
        status: str,
        cooldown_active: bool,
        cooldown_until: Optional[str],
    ):
        super().__init__(message)
        self.status = status
        self.cooldown_active = cooldown_active
        self.cooldown_until = cooldown_until

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "status": self.status,
            "cooldownActive": self.cooldown_active,
            "cooldownUntil": self.cooldown_until,
            "message": self.message,
        }


class NotFoundError(EngineError):
    """Auction, payout or product absent."""
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(EngineError):
    """Duplicate settlement, already-completed auction."""
    status_code = 409
    code = "CONFLICT"


class InvalidStateError(ConflictError):
    """Auction is not in a biddable state."""
    code = "INVALID_STATE"


class RateLimitError(EngineError):
    """Too many requests in the current window."""
    status_code = 429
    code = "RATE_LIMITED"

    def __init__(self, message: str, retry_after: int):
        super().__init__(message, details={"retryAfter": retry_after})
        self.retry_after = retry_after


class InternalError(EngineError):
    """Unexpected storage failure."""
    status_code = 500
    code = "INTERNAL_ERROR"


class UpstreamError(EngineError):
    """Escrow provider rejected or failed the release."""
    status_code = 502
    code = "UPSTREAM_ERROR"


def require(check, error_cls=ValidationError) -> None:
    """
    Raise error_cls when a (is_valid, error_message) check failed.

    Bridges the tuple-returning validators in utils.validation.
    """
    is_valid, message = check
    if not is_valid:
        raise error_cls(message)


__all__ = [
    "EngineError",
    "ValidationError",
    "AuthError",
    "RestrictionError",
    "NotFoundError",
    "ConflictError",
    "InvalidStateError",
    "RateLimitError",
    "InternalError",
    "UpstreamError",
    "require",
]
