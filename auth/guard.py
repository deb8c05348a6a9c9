"""
auth/guard.py -- Authorization decisions for sessions and notes.

Pure functions over already-loaded domain objects: no store access, no HTTP.
Services load the note, call the guard, then act on the verdict. Keeping the
rules here means every read/write path goes through the same four checks:

  authenticate_token   token -> Identity | None (never raises)
  authorize_note_read  what of a note this requester may see
  authorize_note_write owner-only mutation gate
  verify_note_password note password check -> access grant

Read policy:
  - Existence, title, timestamps and the protection flag are disclosed to
    any requester who knows the note id or short link.
  - The body is disclosed to the owner (password bypassed), for unprotected
    notes, and to requesters presenting a valid note access grant.

Layer rule: no imports from api/, notes/, or kv/.
"""

from __future__ import annotations

import hmac
from typing import Optional

from auth.captcha import require_captcha
from auth.models import HashedNotePassword, Identity, Note, NoteView, PlaintextNotePassword
from auth.tokens import (
    check_note_access_grant,
    create_note_access_grant,
    decode_access_token,
    verify_password,
)
from core.errors import Forbidden, InvalidPassword, ValidationFailed


def authenticate_token(token: Optional[str]) -> Optional[Identity]:
    """Resolve a session token to an Identity. Missing or invalid tokens mean anonymous."""
    if not token:
        return None
    return decode_access_token(token)


def is_owner(note: Note, identity: Optional[Identity]) -> bool:
    return identity is not None and note.user_id is not None and identity.account_id == note.user_id


def authorize_note_read(note: Note, identity: Optional[Identity], grant: Optional[str] = None) -> NoteView:
    owner = is_owner(note, identity)
    unlocked = (
        owner
        or note.protection is None
        or check_note_access_grant(grant, note.id, note.protection)
    )
    return NoteView(
        id=note.id,
        title=note.title,
        content=note.content if unlocked else None,
        created_at=note.created_at,
        updated_at=note.updated_at,
        is_password_protected=note.is_password_protected,
        is_owner=owner,
        short_url=note.short_url,
    )


def authorize_note_write(note: Note, identity: Optional[Identity]) -> None:
    """Raise Forbidden unless identity owns note. Unowned (anonymous) notes are never writable."""
    if not is_owner(note, identity):
        raise Forbidden()


def verify_note_password(note: Note, password: str, captcha_proof: Optional[str]) -> str:
    """Check a note password and return a note access grant.

    Hashed protection is checked with bcrypt; legacy plaintext protection with
    a constant-time comparison. Blocking (bcrypt) -- call from a worker thread.
    """
    require_captcha(captcha_proof)
    if not password:
        raise ValidationFailed("Password must not be empty.", field="password")
    protection = note.protection
    if protection is None:
        raise ValidationFailed("This note is not password protected.", field="password")

    if isinstance(protection, HashedNotePassword):
        matched = verify_password(password, protection.hash)
    elif isinstance(protection, PlaintextNotePassword):
        matched = hmac.compare_digest(password.encode("utf-8"), protection.value.encode("utf-8"))
    else:
        matched = False

    if not matched:
        raise InvalidPassword()
    return create_note_access_grant(note.id, protection)
