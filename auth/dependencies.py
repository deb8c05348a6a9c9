"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two session carriers are checked in priority order:
  1. "auth-token" cookie -- set by register/login.
  2. Authorization: Bearer <token> header -- API clients.

try_get_identity() is the soft variant (returns None on failure).
get_identity() wraps it and raises Unauthorized if unauthenticated.
note_grant() reads a note access grant for a given note id.

The session is stateless: these helpers never touch the store. Services
that need the account record load it themselves and treat a missing record
as Unauthorized.

Layer rule: no imports from api/ or notes/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Request

from auth.guard import authenticate_token
from auth.models import Identity
from auth.tokens import AUTH_COOKIE, NOTE_ACCESS_COOKIE_PREFIX
from core.errors import Unauthorized

NOTE_ACCESS_HEADER = "X-Note-Access"


def try_get_identity(request: Request) -> Optional[Identity]:
    """Authenticate the request via cookie or Bearer header. Never raises."""
    token: Optional[str] = request.cookies.get(AUTH_COOKIE)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:].strip()
    return authenticate_token(token)


def get_identity(request: Request) -> Identity:
    """Require authentication.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(identity: Identity = Depends(get_identity)): ...
    """
    identity = try_get_identity(request)
    if identity is None:
        raise Unauthorized()
    return identity


def note_grant(request: Request, note_id: str) -> Optional[str]:
    """Return the note access grant presented for note_id, cookie first."""
    return request.cookies.get(NOTE_ACCESS_COOKIE_PREFIX + note_id) or request.headers.get(NOTE_ACCESS_HEADER)
