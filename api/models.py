"""
API request and response models for the ShareNote REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Request models only bound payload size. Field rules (username shape, password
length, slug format, content size) are enforced by the services so a rule
violation is a 400 with a field name, not a 422 schema error.

Passwords are never stripped: str_strip_whitespace is not set on models that
carry them.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import Account, NoteSummary, NoteView

_MAX_SHORT_FIELD = 320
_MAX_SECRET = 1024
_MAX_BODY = 256 * 1024

# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Structured error body shared by every failure response."""

    code: str
    message: str
    field: Optional[str] = None
    banned_terms: Optional[list[str]] = None
    detail: Optional[str] = None


class ApiResponse(BaseModel):
    """Result envelope: {success, data, message, error}."""

    success: bool = True
    data: Optional[Any] = None
    message: Optional[str] = None
    error: Optional[ErrorDetail] = None


def ok(data: Any = None, message: Optional[str] = None) -> dict:
    return ApiResponse(success=True, data=data, message=message).model_dump(exclude_none=True)


def failure(error: ErrorDetail) -> dict:
    return ApiResponse(success=False, error=error, message=error.message).model_dump(exclude_none=True)


# ---------------------------------------------------------------------------
# Auth request models
# ---------------------------------------------------------------------------


class SendVerificationRequest(BaseModel):
    """Request body for POST /api/v1/auth/send-verification."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=_MAX_SHORT_FIELD)
    type: str = Field(default="register", max_length=20)


class VerifyEmailRequest(BaseModel):
    """Request body for POST /api/v1/auth/verify-email."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=_MAX_SHORT_FIELD)
    code: str = Field(min_length=1, max_length=20)
    type: str = Field(default="register", max_length=20)


class RegisterRequest(BaseModel):
    username: str = Field(max_length=_MAX_SHORT_FIELD)
    password: str = Field(max_length=_MAX_SECRET)
    email: str = Field(max_length=_MAX_SHORT_FIELD)
    exchange_token: Optional[str] = Field(default=None, max_length=_MAX_SECRET)
    captcha_token: Optional[str] = Field(default=None, max_length=_MAX_SECRET)


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login. username may be a username or an email."""

    username: str = Field(max_length=_MAX_SHORT_FIELD)
    password: str = Field(max_length=_MAX_SECRET)
    captcha_token: Optional[str] = Field(default=None, max_length=_MAX_SECRET)


class ResetPasswordRequest(BaseModel):
    email: str = Field(max_length=_MAX_SHORT_FIELD)
    new_password: str = Field(max_length=_MAX_SECRET)
    exchange_token: Optional[str] = Field(default=None, max_length=_MAX_SECRET)


class DeactivateRequest(BaseModel):
    password: str = Field(default="", max_length=_MAX_SECRET)
    confirm_text: str = Field(default="", max_length=100)


# ---------------------------------------------------------------------------
# Note request models
# ---------------------------------------------------------------------------


class NoteCreate(BaseModel):
    """Request body for POST /api/v1/notes."""

    title: str = Field(max_length=_MAX_SHORT_FIELD * 2)
    content: str = Field(default="", max_length=_MAX_BODY)
    password: Optional[str] = Field(default=None, max_length=_MAX_SECRET)
    custom_short_url: Optional[str] = Field(default=None, max_length=100)
    captcha_token: Optional[str] = Field(default=None, max_length=_MAX_SECRET)


class NoteUpdate(BaseModel):
    """Request body for PUT /api/v1/notes/{id}.

    Omitted fields are left unchanged; password="" removes protection.
    """

    title: Optional[str] = Field(default=None, max_length=_MAX_SHORT_FIELD * 2)
    content: Optional[str] = Field(default=None, max_length=_MAX_BODY)
    password: Optional[str] = Field(default=None, max_length=_MAX_SECRET)


class NotePasswordCheck(BaseModel):
    password: str = Field(default="", max_length=_MAX_SECRET)
    captcha_token: Optional[str] = Field(default=None, max_length=_MAX_SECRET)


class AuditExemptionUpdate(BaseModel):
    """Request body for POST /api/v1/admin/user-audit."""

    model_config = ConfigDict(str_strip_whitespace=True)

    user_id: str = Field(max_length=100)
    no_content_audit: bool


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AccountResponse(BaseModel):
    """Public view of an account. The password hash is never included."""

    model_config = ConfigDict(frozen=True)

    id: str
    username: str
    email: str
    created_at: str
    no_content_audit: bool = False

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        return cls(
            id=account.id,
            username=account.username,
            email=account.email,
            created_at=account.created_at,
            no_content_audit=account.no_content_audit,
        )


class NoteResponse(BaseModel):
    """A single note as seen by the requester. content is null while locked."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    content: Optional[str]
    created_at: str
    updated_at: str
    is_password_protected: bool
    is_owner: bool
    locked: bool
    short_url: Optional[str] = None

    @classmethod
    def from_view(cls, view: NoteView) -> "NoteResponse":
        return cls(
            id=view.id,
            title=view.title,
            content=view.content,
            created_at=view.created_at,
            updated_at=view.updated_at,
            is_password_protected=view.is_password_protected,
            is_owner=view.is_owner,
            locked=view.locked,
            short_url=view.short_url,
        )


class NoteSummaryResponse(BaseModel):
    """One row in the GET /notes list -- no body."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    created_at: str
    updated_at: str
    is_password_protected: bool
    short_url: Optional[str] = None

    @classmethod
    def from_summary(cls, summary: NoteSummary) -> "NoteSummaryResponse":
        return cls(
            id=summary.id,
            title=summary.title,
            created_at=summary.created_at,
            updated_at=summary.updated_at,
            is_password_protected=summary.is_password_protected,
            short_url=summary.short_url,
        )


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
