"""
auth/tokens.py -- Password hashing, session JWTs, note access grants, cookies.

Security design decisions:
  Passwords: bcrypt used directly (no passlib wrapper). The cost factor comes
       from Settings.bcrypt_rounds (12 in production; tests lower it). The
       _DUMMY_HASH constant enables timing equalization in
       AccountService.login() so response time does not reveal whether an
       account exists [C1].

  Sessions: python-jose with HS256. Tokens carry the account id (sub), the
       username, a "typ" claim and a 7-day expiry. decode_access_token()
       returns None on any failure -- the dependency layer turns that into
       "anonymous". There is NO server-side revocation: a token stays valid
       until exp even after a password reset or deactivation [S1].

  Note access grants: after a correct note password the client receives a
       one-hour JWT bound to the note id and to an HMAC fingerprint of the
       stored protection value. Changing or removing the note password changes
       the fingerprint, so outstanding grants stop working without any
       server-side state.

  SECRET_KEY: read once at module load from core.config.get_settings(); the
       key is process-wide and read-only after start.

Layer rule: no imports from api/ or notes/.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
from jose import JWTError, jwt

from auth.models import HashedNotePassword, Identity, NotePassword
from auth.validators import MAX_PASSWORD_BYTES
from core.config import get_settings

logger = logging.getLogger("sharenote.auth")

_settings = get_settings()

_ALGORITHM = "HS256"

AUTH_COOKIE = "auth-token"
NOTE_ACCESS_COOKIE_PREFIX = "note-access-"

_SESSION_TYPE = "session"
_NOTE_ACCESS_TYPE = "note-access"

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def _bcrypt_input(plain: str) -> bytes:
    """UTF-8 encode and keep the first MAX_PASSWORD_BYTES bytes.

    bcrypt only ever uses 72 bytes of input, and current releases raise on
    anything longer. New passwords are capped by auth/validators.py; the cut
    here covers legacy plaintext note passwords being migrated and hashes made
    by implementations that truncated silently.
    """
    return plain.encode("utf-8")[:MAX_PASSWORD_BYTES]


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password."""
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(_bcrypt_input(plain), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed or empty hash yields False rather than an exception.
    """
    try:
        return bcrypt.checkpw(_bcrypt_input(plain), hashed.encode("utf-8"))
    except (ValueError, TypeError, AttributeError):
        return False


# Timing equalization dummy hash [C1].
_DUMMY_HASH: str = hash_password("sharenote_timing_dummy")


def burn_password_check(plain: str) -> None:
    """Spend one bcrypt verification without a real hash (unknown-account path) [C1]."""
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# Session tokens
# ---------------------------------------------------------------------------


def create_access_token(account_id: str, username: str, expire_seconds: int = 0) -> str:
    """Encode a signed session JWT.

    Args:
        account_id:     Opaque account id, stored as the sub claim.
        username:       Display username, carried for convenience.
        expire_seconds: Override for the validity window. 0 (default) uses
                        Settings.token_expire_seconds (7 days).
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    now = datetime.now(timezone.utc)
    payload = {
        "sub": account_id,
        "username": username,
        "typ": _SESSION_TYPE,
        "iat": now,
        "exp": now + timedelta(seconds=duration),
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> Optional[Identity]:
    """Verify a session JWT. Returns the Identity or None on any failure.

    Tampered signatures, malformed structure, expired tokens, note access
    grants presented as sessions and missing claims all collapse to None.
    """
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if payload.get("typ") != _SESSION_TYPE:
        return None
    account_id = payload.get("sub")
    username = payload.get("username")
    if not isinstance(account_id, str) or not isinstance(username, str) or not account_id:
        return None
    return Identity(account_id=account_id, username=username)


# ---------------------------------------------------------------------------
# Note access grants
# ---------------------------------------------------------------------------


def protection_fingerprint(protection: NotePassword) -> str:
    """HMAC the stored protection value so grants die when the password changes."""
    material = protection.hash if isinstance(protection, HashedNotePassword) else "plain:" + protection.value
    return hmac.new(
        _settings.secret_key.encode(),
        material.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()[:32]


def create_note_access_grant(note_id: str, protection: NotePassword) -> str:
    expire = datetime.now(timezone.utc) + timedelta(seconds=_settings.note_access_expire_seconds)
    payload = {
        "sub": note_id,
        "typ": _NOTE_ACCESS_TYPE,
        "pv": protection_fingerprint(protection),
        "exp": expire,
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def check_note_access_grant(grant: Optional[str], note_id: str, protection: NotePassword) -> bool:
    if not grant:
        return False
    try:
        payload = jwt.decode(grant, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return False
    if payload.get("typ") != _NOTE_ACCESS_TYPE or payload.get("sub") != note_id:
        return False
    return hmac.compare_digest(str(payload.get("pv", "")), protection_fingerprint(protection))


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str) -> None:
    """Write the session token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST -- CSRF mitigation.
    secure: HTTPS-only in production (Settings.cookies_secure).
    max_age: matches the JWT expiry so both expire together.
    """
    response.set_cookie(
        AUTH_COOKIE,
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.cookies_secure,
        max_age=_settings.token_expire_seconds,
    )


def clear_auth_cookie(response) -> None:
    """Expire the session cookie immediately (max-age 0). The JWT itself stays valid [S1]."""
    response.delete_cookie(
        AUTH_COOKIE,
        httponly=True,
        samesite="lax",
        secure=_settings.cookies_secure,
    )


def set_note_access_cookie(response, note_id: str, grant: str) -> None:
    response.set_cookie(
        NOTE_ACCESS_COOKIE_PREFIX + note_id,
        value=grant,
        httponly=True,
        samesite="lax",
        secure=_settings.cookies_secure,
        max_age=_settings.note_access_expire_seconds,
    )
