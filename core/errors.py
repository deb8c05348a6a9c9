"""
core/errors.py -- Domain error taxonomy shared by every service.

Services raise these; they never build HTTP responses. api/main.py registers a
single exception handler that turns any ServiceError into the structured
result envelope with the status_code and code declared on the class, so the
mapping from failure kind to HTTP status lives in exactly one place.

Messages are safe to show to end users. Never put secrets, codes, tokens or
stack traces in them.

Layer rule: core/ is the kernel; no imports from api/, auth/, notes/, or kv/.
"""

from __future__ import annotations


class ServiceError(Exception):
    """Base class for every failure that crosses the service boundary."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field

    def to_detail(self) -> dict:
        detail: dict = {"code": self.code, "message": self.message}
        if self.field is not None:
            detail["field"] = self.field
        return detail


class ValidationFailed(ServiceError):
    """Malformed input. Raised before any store mutation."""

    status_code = 400
    code = "validation_error"


class ContentRejected(ValidationFailed):
    """Note content hit the moderation banned-term list."""

    code = "content_rejected"

    def __init__(self, banned_terms: list[str]) -> None:
        super().__init__(
            "Content contains banned terms: " + ", ".join(banned_terms),
            field="content",
        )
        self.banned_terms = banned_terms

    def to_detail(self) -> dict:
        detail = super().to_detail()
        detail["banned_terms"] = self.banned_terms
        return detail


class VerificationExpired(ServiceError):
    """Code or exchange token missing, wrong or expired. Restart the flow."""

    status_code = 400
    code = "verification_expired"


class Unauthorized(ServiceError):
    """No usable session. Does not distinguish missing from invalid tokens."""

    status_code = 401
    code = "unauthorized"

    def __init__(self, message: str = "Authentication required.") -> None:
        super().__init__(message)


class InvalidCredentials(ServiceError):
    """Login or re-authentication failed. Same error for unknown user and bad password."""

    status_code = 401
    code = "invalid_credentials"

    def __init__(self, message: str = "Invalid username/email or password.") -> None:
        super().__init__(message)


class InvalidPassword(ServiceError):
    """Wrong note password."""

    status_code = 401
    code = "invalid_password"

    def __init__(self, message: str = "Incorrect note password.") -> None:
        super().__init__(message)


class Forbidden(ServiceError):
    """Authenticated, but not the owner. Never reveals who the owner is."""

    status_code = 403
    code = "forbidden"

    def __init__(self, message: str = "You do not have permission to modify this note.") -> None:
        super().__init__(message)


class NotFound(ServiceError):
    status_code = 404
    code = "not_found"


class Conflict(ServiceError):
    """A unique value (username, email, short link) is already taken."""

    status_code = 409
    code = "conflict"


class RateLimited(ServiceError):
    status_code = 429
    code = "rate_limited"

    def __init__(self, message: str, *, retry_after: int = 60) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class TransientError(ServiceError):
    """Backing store or collaborator unreachable or timed out. Not retried internally."""

    status_code = 503
    code = "service_unavailable"
