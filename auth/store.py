"""
auth/store.py -- Domain key conventions over the key-value store.

Pattern: Repository + Data Mapper. CredentialStore is the repository;
_account_to_record / _record_to_account and the note equivalents are the
mappers. Services never build store keys themselves.

Key layout (values are JSON unless noted):
  user:{id}                       Account record
  user:username:{username}        account id (plain string)
  user:email:{email}              account id (plain string)
  user:{id}:notes                 set of owned note ids
  note:{id}                       Note record
  notes:index                     set of every note id
  short:{slug}                    note id (plain string)

Records keep the camelCase field names of the original data set
(passwordHash, createdAt, noContentAudit, shortUrl, ...) so existing stores
remain readable. Legacy notes may carry a plaintext "password" field instead
of "passwordHash"; the mapper turns either into the tagged NotePassword.

Atomicity: the store has no multi-key transactions. Writes are ordered so a
crash leaves the least harmful partial state:
  create -> record first, gating username index LAST
  delete -> gating username index FIRST, record last
reconcile() is the offline sweep that cleans up whatever a crash left behind.

Layer rule: no imports from api/ or notes/.
"""

from __future__ import annotations

import json
import logging
from typing import Optional

from auth.models import (
    Account,
    HashedNotePassword,
    Note,
    PlaintextNotePassword,
    ReconcileReport,
)
from kv.store import KeyValueStore

logger = logging.getLogger("sharenote.store")

NOTES_INDEX = "notes:index"


# ---------------------------------------------------------------------------
# Key builders
# ---------------------------------------------------------------------------


def account_key(account_id: str) -> str:
    return f"user:{account_id}"


def username_key(username: str) -> str:
    return f"user:username:{username}"


def email_key(email: str) -> str:
    return f"user:email:{email}"


def owned_notes_key(account_id: str) -> str:
    return f"user:{account_id}:notes"


def note_key(note_id: str) -> str:
    return f"note:{note_id}"


def short_key(slug: str) -> str:
    return f"short:{slug}"


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for accounts, their secondary indices, and notes.

    Usage:
        creds = CredentialStore(SQLKeyValueStore("sqlite:///./kv.db"))
        await creds.create_account(account)
        account = await creds.get_account_by_username("alice")
    """

    def __init__(self, kv: KeyValueStore) -> None:
        self.kv = kv

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def get_account(self, account_id: str) -> Optional[Account]:
        raw = await self.kv.get(account_key(account_id))
        return _record_to_account(raw) if raw else None

    async def get_account_id_by_username(self, username: str) -> Optional[str]:
        return await self.kv.get(username_key(username))

    async def get_account_id_by_email(self, email: str) -> Optional[str]:
        return await self.kv.get(email_key(email))

    async def get_account_by_username(self, username: str) -> Optional[Account]:
        account_id = await self.get_account_id_by_username(username)
        return await self.get_account(account_id) if account_id else None

    async def get_account_by_email(self, email: str) -> Optional[Account]:
        account_id = await self.get_account_id_by_email(email)
        return await self.get_account(account_id) if account_id else None

    async def create_account(self, account: Account) -> None:
        """Write the record, then the email index, then the gating username index."""
        await self.kv.set(account_key(account.id), _account_to_record(account))
        await self.kv.set(email_key(account.email), account.id)
        await self.kv.set(username_key(account.username), account.id)

    async def save_account(self, account: Account) -> None:
        """Overwrite an existing account record. Indices are untouched."""
        await self.kv.set(account_key(account.id), _account_to_record(account))

    async def delete_account(self, account: Account) -> int:
        """Delete an account and everything it owns. Returns the number of notes removed.

        Order: username index (gates login and uniqueness) first, then email
        index, then each owned note with its short link and index memberships,
        then the owned-notes set, and the account record last.
        """
        await self.kv.delete(username_key(account.username))
        await self.kv.delete(email_key(account.email))
        note_ids = await self.kv.smembers(owned_notes_key(account.id))
        for note_id in note_ids:
            note = await self.get_note(note_id)
            if note is not None and note.short_url:
                await self.kv.delete(short_key(note.short_url))
            await self.kv.delete(note_key(note_id))
        if note_ids:
            await self.kv.srem(NOTES_INDEX, *note_ids)
        await self.kv.delete(owned_notes_key(account.id))
        await self.kv.delete(account_key(account.id))
        return len(note_ids)

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    async def get_note(self, note_id: str) -> Optional[Note]:
        raw = await self.kv.get(note_key(note_id))
        return _record_to_note(raw) if raw else None

    async def create_note(self, note: Note) -> None:
        """Write the record, the global index, the short link, then the owner index."""
        await self.kv.set(note_key(note.id), _note_to_record(note))
        await self.kv.sadd(NOTES_INDEX, note.id)
        if note.short_url:
            await self.kv.set(short_key(note.short_url), note.id)
        if note.user_id:
            await self.kv.sadd(owned_notes_key(note.user_id), note.id)

    async def save_note(self, note: Note) -> None:
        await self.kv.set(note_key(note.id), _note_to_record(note))

    async def delete_note(self, note: Note) -> None:
        """Remove a note, its short link and every index membership."""
        if note.short_url:
            await self.kv.delete(short_key(note.short_url))
        if note.user_id:
            await self.kv.srem(owned_notes_key(note.user_id), note.id)
        await self.kv.srem(NOTES_INDEX, note.id)
        await self.kv.delete(note_key(note.id))

    async def list_owned_note_ids(self, account_id: str) -> set[str]:
        return await self.kv.smembers(owned_notes_key(account_id))

    async def short_link_exists(self, slug: str) -> bool:
        return await self.kv.get(short_key(slug)) is not None

    async def resolve_short_link(self, slug: str) -> Optional[str]:
        return await self.kv.get(short_key(slug))

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def reconcile(self, fix: bool = False) -> ReconcileReport:
        """Find references left dangling by partially applied multi-key writes.

        Checks username/email indices and short links that point at missing
        records, and index-set members whose note record is gone. With
        fix=True the dangling references are deleted. Records themselves are
        never deleted here.
        """
        report = ReconcileReport(fixed=fix)

        for key in await self.kv.keys("user:username:*"):
            account_id = await self.kv.get(key)
            if not account_id or await self.get_account(account_id) is None:
                report.dangling_username_indices.append(key)
        for key in await self.kv.keys("user:email:*"):
            account_id = await self.kv.get(key)
            if not account_id or await self.get_account(account_id) is None:
                report.dangling_email_indices.append(key)
        for key in await self.kv.keys("short:*"):
            note_id = await self.kv.get(key)
            if not note_id or await self.kv.get(note_key(note_id)) is None:
                report.dangling_short_links.append(key)
        for note_id in await self.kv.smembers(NOTES_INDEX):
            if await self.kv.get(note_key(note_id)) is None:
                report.dangling_index_members.append(note_id)
        for key in await self.kv.keys("user:*:notes"):
            # user:username:notes / user:email:notes are string indices, not sets
            if key.startswith(("user:username:", "user:email:")):
                continue
            for note_id in await self.kv.smembers(key):
                if await self.kv.get(note_key(note_id)) is None:
                    report.dangling_owner_members.append(f"{key}/{note_id}")

        if fix:
            stale_keys = (
                report.dangling_username_indices + report.dangling_email_indices + report.dangling_short_links
            )
            if stale_keys:
                await self.kv.delete(*stale_keys)
            if report.dangling_index_members:
                await self.kv.srem(NOTES_INDEX, *report.dangling_index_members)
            for entry in report.dangling_owner_members:
                set_key, note_id = entry.rsplit("/", 1)
                await self.kv.srem(set_key, note_id)
            logger.info("Reconcile removed %d dangling references", report.total)
        return report


# ---------------------------------------------------------------------------
# Record mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _account_to_record(account: Account) -> str:
    return json.dumps(
        {
            "id": account.id,
            "username": account.username,
            "email": account.email,
            "passwordHash": account.password_hash,
            "createdAt": account.created_at,
            "updatedAt": account.updated_at,
            "noContentAudit": account.no_content_audit,
        }
    )


def _record_to_account(raw: str) -> Account:
    data = json.loads(raw)
    return Account(
        id=data["id"],
        username=data["username"],
        email=data.get("email", ""),
        password_hash=data.get("passwordHash", ""),
        created_at=data.get("createdAt", ""),
        updated_at=data.get("updatedAt", ""),
        no_content_audit=bool(data.get("noContentAudit", False)),
    )


def _note_to_record(note: Note) -> str:
    record: dict = {
        "id": note.id,
        "title": note.title,
        "content": note.content,
        "createdAt": note.created_at,
        "updatedAt": note.updated_at,
        "userId": note.user_id,
        "shortUrl": note.short_url,
        "passwordHash": None,
    }
    if isinstance(note.protection, HashedNotePassword):
        record["passwordHash"] = note.protection.hash
    elif isinstance(note.protection, PlaintextNotePassword):
        record["password"] = note.protection.value
    return json.dumps(record)


def _record_to_note(raw: str) -> Note:
    data = json.loads(raw)
    protection = None
    if data.get("passwordHash"):
        protection = HashedNotePassword(data["passwordHash"])
    elif data.get("password"):
        protection = PlaintextNotePassword(data["password"])
    return Note(
        id=data["id"],
        title=data.get("title", ""),
        content=data.get("content", ""),
        created_at=data.get("createdAt", ""),
        updated_at=data.get("updatedAt", ""),
        user_id=data.get("userId") or None,
        protection=protection,
        short_url=data.get("shortUrl") or None,
    )
