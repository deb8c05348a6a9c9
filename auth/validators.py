"""
auth/validators.py -- Input shape rules shared by the account and note flows.

Each validate_* function raises core.errors.ValidationFailed naming the
offending field, and returns the normalized value otherwise.
"""

from __future__ import annotations

import re

from core.errors import ValidationFailed

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
USERNAME_RE = re.compile(r"^[A-Za-z0-9_-]{3,20}$")
SLUG_RE = re.compile(r"^[A-Za-z0-9_-]{3,50}$")

MIN_ACCOUNT_PASSWORD = 6
MIN_NOTE_PASSWORD = 4
# bcrypt reads at most 72 bytes; longer passwords are refused, never truncated.
MAX_PASSWORD_BYTES = 72

MAX_TITLE_LENGTH = 200
MAX_CONTENT_LENGTH = 50 * 1024

RESERVED_SLUGS = frozenset(
    {"api", "admin", "www", "app", "note", "notes", "short", "s", "login", "register", "auth"}
)


def is_email(value: str) -> bool:
    return bool(EMAIL_RE.match(value))


def validate_email(email: str) -> str:
    email = (email or "").strip()
    if not is_email(email):
        raise ValidationFailed("Please enter a valid email address.", field="email")
    return email


def validate_username(username: str) -> str:
    username = username or ""
    if not 3 <= len(username) <= 20:
        raise ValidationFailed("Username must be 3-20 characters long.", field="username")
    if not USERNAME_RE.match(username):
        raise ValidationFailed(
            "Username may only contain letters, digits, underscores and hyphens.", field="username"
        )
    return username


def _check_password_bytes(password: str, label: str, field: str) -> None:
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValidationFailed(
            f"{label} must be at most {MAX_PASSWORD_BYTES} bytes (fewer characters for non-Latin text).",
            field=field,
        )


def validate_account_password(password: str, field: str = "password") -> str:
    if len(password or "") < MIN_ACCOUNT_PASSWORD:
        raise ValidationFailed(f"Password must be at least {MIN_ACCOUNT_PASSWORD} characters.", field=field)
    _check_password_bytes(password, "Password", field)
    return password


def validate_note_password(password: str) -> str:
    if len(password) < MIN_NOTE_PASSWORD:
        raise ValidationFailed(f"Note password must be at least {MIN_NOTE_PASSWORD} characters.", field="password")
    _check_password_bytes(password, "Note password", "password")
    return password


def validate_title(title: str) -> str:
    title = (title or "").strip()
    if not title:
        raise ValidationFailed("Title must not be empty.", field="title")
    if len(title) > MAX_TITLE_LENGTH:
        raise ValidationFailed(f"Title must be at most {MAX_TITLE_LENGTH} characters.", field="title")
    return title


def validate_content(content: str) -> str:
    content = (content or "").strip()
    if len(content) > MAX_CONTENT_LENGTH:
        raise ValidationFailed("Content must be at most 50KB.", field="content")
    return content


def validate_slug(slug: str) -> str:
    slug = slug.strip()
    if not SLUG_RE.match(slug):
        raise ValidationFailed(
            "Short link must be 3-50 letters, digits, underscores or hyphens.", field="custom_short_url"
        )
    if slug.startswith("-") or slug.endswith("-"):
        raise ValidationFailed("Short link must not start or end with a hyphen.", field="custom_short_url")
    if slug.lower() in RESERVED_SLUGS:
        raise ValidationFailed("That short link is reserved.", field="custom_short_url")
    return slug
