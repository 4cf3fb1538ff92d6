"""Error taxonomy shared by the domain, security and HTTP layers."""

from __future__ import annotations

from typing import Any


class ConfigurationError(RuntimeError):
    """Raised at startup when the deployment configuration is unsafe or incomplete."""


class AuthServiceError(Exception):
    """Base class for errors that map onto an HTTP status and a client-facing message."""

    status_code: int = 500
    default_message: str = "Server error"

    def __init__(self, message: str | None = None, *, details: Any = None) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class ValidationError(AuthServiceError):
    status_code = 400
    default_message = "Invalid request"


class PasswordPolicyViolation(ValidationError):
    """Password rejected by the policy; ``details`` lists the failed rules."""

    default_message = "Password does not meet the password policy"


class Unauthenticated(AuthServiceError):
    status_code = 401
    default_message = "Not authorized to access this route"


class TokenVerificationError(Unauthenticated):
    """Session token is malformed, forged, or expired."""


class Forbidden(AuthServiceError):
    status_code = 403
    default_message = "Not authorized to perform this action"


class NotFound(AuthServiceError):
    status_code = 404
    default_message = "Resource not found"


class Conflict(AuthServiceError):
    status_code = 409
    default_message = "Resource already exists"


class DuplicateEmail(Conflict):
    default_message = "User already exists with that email"


class RateLimited(AuthServiceError):
    status_code = 429
    default_message = "Too many requests, please try again later"

    def __init__(
        self,
        message: str | None = None,
        *,
        retry_after_seconds: int | None = None,
        details: Any = None,
    ) -> None:
        super().__init__(message, details=details)
        self.retry_after_seconds = retry_after_seconds


class Internal(AuthServiceError):
    status_code = 500
    default_message = "Server error"
