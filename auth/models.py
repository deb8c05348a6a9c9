"""
auth/models.py -- Domain dataclasses for accounts, sessions and notes.

Pattern: Data class (pure data container, zero logic beyond trivial
predicates). Stores map these to and from JSON records; services and the
guard do the work.

Notes live here rather than in notes/ because every note decision (read,
write, password) is made by the access-control layer in auth/guard.py, and
auth/ must not import from notes/.

Layer rule: no imports from api/, notes/, or kv/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Union


@dataclass
class Account:
    """A registered identity.

    password_hash is always a bcrypt hash; plaintext is never stored.
    no_content_audit exempts the account's note content from moderation and
    can only be toggled by an operator on the admin allow-list.
    """

    id: str
    username: str
    email: str
    password_hash: str
    created_at: str = ""
    updated_at: str = ""
    no_content_audit: bool = False


@dataclass(frozen=True)
class Identity:
    """Claims carried by a verified session token. Not re-read from the store."""

    account_id: str
    username: str


# ---------------------------------------------------------------------------
# Note protection -- tagged variant
#
# Notes created before hashing was introduced carry their password in
# plaintext (record field "password"). Verification dispatches on the type;
# the next owner write rewrites a plaintext value as a hash.
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HashedNotePassword:
    hash: str


@dataclass(frozen=True)
class PlaintextNotePassword:
    value: str


NotePassword = Union[HashedNotePassword, PlaintextNotePassword]


@dataclass
class Note:
    """A stored note.

    user_id is None for legacy/anonymous notes. protection is None when the
    note has no password.
    """

    id: str
    title: str
    content: str
    created_at: str = ""
    updated_at: str = ""
    user_id: Optional[str] = None
    protection: Optional[NotePassword] = None
    short_url: Optional[str] = None

    @property
    def is_password_protected(self) -> bool:
        return self.protection is not None


@dataclass
class NoteView:
    """What a particular requester is allowed to see of a note.

    content is None when the body is withheld: the note is protected, the
    requester is not the owner, and no valid access grant was presented.
    Existence, title and the protection flag are always disclosed.
    """

    id: str
    title: str
    content: Optional[str]
    created_at: str
    updated_at: str
    is_password_protected: bool
    is_owner: bool
    short_url: Optional[str] = None

    @property
    def locked(self) -> bool:
        return self.content is None


@dataclass
class NoteSummary:
    """One row in the owner's note list (no body)."""

    id: str
    title: str
    created_at: str
    updated_at: str
    is_password_protected: bool
    short_url: Optional[str] = None


@dataclass
class ReconcileReport:
    """Dangling references found (and optionally removed) by CredentialStore.reconcile()."""

    dangling_username_indices: list[str] = field(default_factory=list)
    dangling_email_indices: list[str] = field(default_factory=list)
    dangling_short_links: list[str] = field(default_factory=list)
    dangling_index_members: list[str] = field(default_factory=list)
    dangling_owner_members: list[str] = field(default_factory=list)
    fixed: bool = False

    @property
    def total(self) -> int:
        return (
            len(self.dangling_username_indices)
            + len(self.dangling_email_indices)
            + len(self.dangling_short_links)
            + len(self.dangling_index_members)
            + len(self.dangling_owner_members)
        )
