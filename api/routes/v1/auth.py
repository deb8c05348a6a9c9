"""
api/routes/v1/auth.py -- Account and session REST endpoints.

Routes:
  POST /api/v1/auth/send-verification  -- email a 6-digit code (register|reset)
  POST /api/v1/auth/verify-email       -- swap a code for an exchange token
  POST /api/v1/auth/register           -- create account; sets session cookie
  POST /api/v1/auth/login              -- username/email login; sets session cookie
  POST /api/v1/auth/logout             -- clears cookie
  GET  /api/v1/auth/me                 -- current account (requires auth)
  POST /api/v1/auth/reset-password     -- overwrite password with an exchange token
  POST /api/v1/auth/deactivate         -- delete account and notes (requires auth)

Security:
  [H2] login, send-verification and verify-email are rate-limited per IP (slowapi) in
       addition to the per-email 60s send marker.
  [C1] AccountService.login() provides timing equalization.
  [M5] Cache-Control: no-store on every response that carries a token.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import LOGIN_LIMIT, VERIFICATION_LIMIT, limiter
from api.models import (
    AccountResponse,
    DeactivateRequest,
    LoginRequest,
    RegisterRequest,
    ResetPasswordRequest,
    SendVerificationRequest,
    VerifyEmailRequest,
    ok,
)
from auth.dependencies import get_identity
from auth.models import Identity
from auth.service import AccountService
from auth.tokens import clear_auth_cookie, set_auth_cookie
from auth.validators import validate_email
from auth.verification import EphemeralCodeIssuer
from core.errors import ValidationFailed

# Auth policy:
# - send-verification, verify-email, register, login, logout, reset-password: public
# - me, deactivate: requires auth (get_identity)
router = APIRouter()


def _accounts(request: Request) -> AccountService:
    return request.app.state.account_service


def _codes(request: Request) -> EphemeralCodeIssuer:
    return request.app.state.code_issuer


def _no_store(resp: JSONResponse) -> JSONResponse:
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Email verification
# ---------------------------------------------------------------------------


@limiter.limit(VERIFICATION_LIMIT)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/send-verification")
async def send_verification(request: Request, body: SendVerificationRequest) -> JSONResponse:
    """Email a verification code. At most one send per email per 60 seconds."""
    email = validate_email(body.email)
    await _codes(request).issue_code(body.type, email)
    return JSONResponse(content=ok(message="Verification code sent. Please check your inbox."))


@limiter.limit(VERIFICATION_LIMIT)  # [H2]
@router.post("/auth/verify-email")
async def verify_email(request: Request, body: VerifyEmailRequest) -> JSONResponse:
    """Check a code; on success return a single-use exchange token (valid 10 minutes)."""
    email = validate_email(body.email)
    token = await _codes(request).verify_code(body.type, email, body.code)
    if token is None:
        raise ValidationFailed("Verification code is invalid or has expired.", field="code")
    resp = JSONResponse(content=ok({"exchange_token": token}, message="Email verified."))
    return _no_store(resp)


# ---------------------------------------------------------------------------
# Registration and login
# ---------------------------------------------------------------------------


@router.post("/auth/register", status_code=201)
async def register(request: Request, body: RegisterRequest) -> JSONResponse:
    account, token = await _accounts(request).register(
        username=body.username,
        password=body.password,
        email=body.email,
        exchange_token=body.exchange_token,
        captcha_proof=body.captcha_token,
    )
    resp = JSONResponse(
        status_code=201,
        content=ok({"user": AccountResponse.from_account(account).model_dump()}, message="Registration successful."),
    )
    set_auth_cookie(resp, token)
    return _no_store(resp)


@limiter.limit(LOGIN_LIMIT)  # [H2]
@router.post("/auth/login")
async def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with a username or email and a password; set the session cookie.

    The same generic error covers unknown accounts and wrong passwords [C1].
    """
    account, token = await _accounts(request).login(body.username, body.password, body.captcha_token)
    resp = JSONResponse(
        content=ok(
            {"user": AccountResponse.from_account(account).model_dump(), "token": token},
            message="Login successful.",
        )
    )
    set_auth_cookie(resp, token)
    return _no_store(resp)


@router.post("/auth/logout")
async def logout() -> JSONResponse:
    """Clear the session cookie. The token itself is not revoked."""
    resp = JSONResponse(content=ok(message="Logged out."))
    clear_auth_cookie(resp)
    return resp


@router.get("/auth/me")
async def me(request: Request, identity: Identity = Depends(get_identity)) -> dict:
    accounts = _accounts(request)
    account = await accounts.current_account(identity)
    data = AccountResponse.from_account(account).model_dump()
    data["is_admin"] = accounts.is_admin(identity)
    return ok({"user": data})


# ---------------------------------------------------------------------------
# Password reset and deactivation
# ---------------------------------------------------------------------------


@router.post("/auth/reset-password")
async def reset_password(request: Request, body: ResetPasswordRequest) -> dict:
    await _accounts(request).reset_password(body.email, body.new_password, body.exchange_token)
    return ok(message="Password has been reset. Please log in with your new password.")


@router.post("/auth/deactivate")
async def deactivate(
    request: Request,
    body: DeactivateRequest,
    identity: Identity = Depends(get_identity),
) -> JSONResponse:
    """Delete the caller's account and every note it owns, then clear the cookie."""
    await _accounts(request).deactivate(identity, body.password, body.confirm_text)
    resp = JSONResponse(content=ok(message="Account deleted."))
    clear_auth_cookie(resp)
    return resp
