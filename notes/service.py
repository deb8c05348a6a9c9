"""
notes/service.py -- Note CRUD over CredentialStore, gated by auth/guard.py.

Every entry point loads what it needs, asks the guard for a verdict, then
acts. No ownership or password logic lives here.

Moderation runs on create and on update unless the owning account has the
noContentAudit exemption. Anonymous notes are always screened.

Concurrent updates from the owner are last-write-wins; there is no version
check.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from datetime import datetime, timezone
from typing import Optional

from auth.captcha import require_captcha
from auth.guard import authorize_note_read, authorize_note_write, verify_note_password
from auth.models import (
    HashedNotePassword,
    Identity,
    Note,
    NoteSummary,
    NoteView,
    PlaintextNotePassword,
)
from auth.store import CredentialStore
from auth.tokens import hash_password
from auth.validators import (
    validate_content,
    validate_note_password,
    validate_slug,
    validate_title,
)
from core.errors import Conflict, ContentRejected, NotFound, TransientError, Unauthorized
from notes.moderation import ContentModerator

logger = logging.getLogger("sharenote.notes")

_SLUG_ATTEMPTS = 5


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_note_id() -> str:
    return secrets.token_urlsafe(12)


class NoteService:
    def __init__(self, store: CredentialStore, moderator: ContentModerator) -> None:
        self.store = store
        self.moderator = moderator

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _load(self, note_id: str) -> Note:
        note = await self.store.get_note(note_id)
        if note is None:
            raise NotFound("Note not found.")
        return note

    async def _is_audit_exempt(self, identity: Optional[Identity]) -> bool:
        if identity is None:
            return False
        account = await self.store.get_account(identity.account_id)
        if account is None:
            raise Unauthorized("Account no longer exists.")
        return account.no_content_audit

    async def _screen(self, identity: Optional[Identity], content: str) -> None:
        if await self._is_audit_exempt(identity):
            logger.info("Moderation skipped for exempt account %s", identity.account_id)
            return
        if not content:
            return
        result = await self.moderator.screen(content)
        if not result.is_valid:
            raise ContentRejected(result.banned_terms)

    async def _generated_slug(self) -> str:
        for _ in range(_SLUG_ATTEMPTS):
            slug = secrets.token_urlsafe(6)
            if not await self.store.short_link_exists(slug):
                return slug
        raise TransientError("Could not allocate a short link. Please try again.")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def create_note(
        self,
        identity: Optional[Identity],
        title: str,
        content: str,
        password: Optional[str] = None,
        custom_short_url: Optional[str] = None,
        captcha_proof: Optional[str] = None,
    ) -> Note:
        """Create a note owned by identity, or an anonymous note when identity is None."""
        require_captcha(captcha_proof)
        title = validate_title(title)
        content = validate_content(content)
        if password:
            validate_note_password(password)

        if custom_short_url and custom_short_url.strip():
            slug = validate_slug(custom_short_url)
            if await self.store.short_link_exists(slug):
                raise Conflict("That short link is already taken.", field="custom_short_url")
        else:
            slug = await self._generated_slug()

        await self._screen(identity, content)

        now = _now_iso()
        protection = None
        if password:
            protection = HashedNotePassword(await asyncio.to_thread(hash_password, password))
        note = Note(
            id=new_note_id(),
            title=title,
            content=content,
            created_at=now,
            updated_at=now,
            user_id=identity.account_id if identity else None,
            protection=protection,
            short_url=slug,
        )
        await self.store.create_note(note)
        logger.info("Note %s created (owner=%s)", note.id, note.user_id or "anonymous")
        return note

    async def get_note(self, note_id: str, identity: Optional[Identity], grant: Optional[str] = None) -> NoteView:
        note = await self._load(note_id)
        return authorize_note_read(note, identity, grant)

    async def resolve_short_link(
        self, slug: str, identity: Optional[Identity], grant: Optional[str] = None
    ) -> NoteView:
        note_id = await self.store.resolve_short_link(slug)
        if note_id is None:
            raise NotFound("Short link not found.")
        return await self.get_note(note_id, identity, grant)

    async def list_notes(self, identity: Identity) -> list[NoteSummary]:
        """The caller's notes, newest first. Records no longer owned by the caller are skipped."""
        summaries: list[NoteSummary] = []
        for note_id in await self.store.list_owned_note_ids(identity.account_id):
            note = await self.store.get_note(note_id)
            if note is None or note.user_id != identity.account_id:
                continue
            summaries.append(
                NoteSummary(
                    id=note.id,
                    title=note.title,
                    created_at=note.created_at,
                    updated_at=note.updated_at,
                    is_password_protected=note.is_password_protected,
                    short_url=note.short_url,
                )
            )
        summaries.sort(key=lambda s: s.created_at, reverse=True)
        return summaries

    async def update_note(
        self,
        note_id: str,
        identity: Optional[Identity],
        title: Optional[str] = None,
        content: Optional[str] = None,
        password: Optional[str] = None,
    ) -> Note:
        """Owner-only update.

        password=None leaves protection unchanged, "" removes it, any other
        value replaces it. A legacy plaintext password that is left unchanged
        is rewritten as a bcrypt hash on this write.
        """
        note = await self._load(note_id)
        authorize_note_write(note, identity)

        new_title = validate_title(title) if title else note.title
        new_content = validate_content(content) if content is not None else note.content
        await self._screen(identity, new_content)

        if password is not None:
            if password.strip():
                validate_note_password(password)
                note.protection = HashedNotePassword(await asyncio.to_thread(hash_password, password))
            else:
                note.protection = None
        elif isinstance(note.protection, PlaintextNotePassword):
            note.protection = HashedNotePassword(await asyncio.to_thread(hash_password, note.protection.value))
            logger.info("Migrated legacy plaintext password on note %s", note.id)

        note.title = new_title
        note.content = new_content
        note.updated_at = _now_iso()
        await self.store.save_note(note)
        return note

    async def delete_note(self, note_id: str, identity: Optional[Identity]) -> None:
        note = await self._load(note_id)
        authorize_note_write(note, identity)
        await self.store.delete_note(note)
        logger.info("Note %s deleted by owner", note.id)

    async def verify_password(
        self, note_id: str, password: str, captcha_proof: Optional[str]
    ) -> tuple[Note, str]:
        """Check a note password. Returns (note, access grant) or raises InvalidPassword."""
        note = await self._load(note_id)
        grant = await asyncio.to_thread(verify_note_password, note, password, captcha_proof)
        return note, grant
