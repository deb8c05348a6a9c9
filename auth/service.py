"""
auth/service.py -- Account lifecycle: registration, login, reset, deactivation.

State machines:
  registration   email-unverified -> email-verified(exchange token) -> account-created
  password reset email-unverified -> email-verified(exchange token) -> password-updated

The email-verified step lives in auth/verification.py; this module consumes
the exchange token that step produced.

Security:
  [C1] login() always runs bcrypt, against a dummy hash when the account does
       not exist, and returns one generic InvalidCredentials for unknown
       identifiers and wrong passwords alike.
  [S1] Sessions are stateless. reset_password() and deactivate() do not (and
       cannot) revoke sessions already issued; they expire on their own.
  [A1] The admin allow-list is injected at construction, never read from the
       environment here, so admin checks are testable in isolation.

bcrypt is CPU-bound; every hash/verify runs in a worker thread so the event
loop keeps serving other requests.

Layer rule: no imports from api/ or notes/.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from datetime import datetime, timezone
from typing import Optional

from auth.captcha import require_captcha
from auth.models import Account, Identity
from auth.store import CredentialStore
from auth.tokens import burn_password_check, create_access_token, hash_password, verify_password
from auth.validators import (
    is_email,
    validate_account_password,
    validate_email,
    validate_username,
)
from auth.verification import EphemeralCodeIssuer
from core.errors import (
    Conflict,
    Forbidden,
    InvalidCredentials,
    NotFound,
    Unauthorized,
    ValidationFailed,
    VerificationExpired,
)

logger = logging.getLogger("sharenote.accounts")

DEACTIVATION_PHRASE = "delete my account"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_account_id() -> str:
    return secrets.token_urlsafe(12)


class AccountService:
    """Orchestrates the credential lifecycle over CredentialStore and EphemeralCodeIssuer.

    Every public method either returns its result or raises a
    core.errors.ServiceError subclass; nothing else is expected to escape.
    """

    def __init__(
        self,
        store: CredentialStore,
        codes: EphemeralCodeIssuer,
        admin_ids: frozenset[str] = frozenset(),
    ) -> None:
        self.store = store
        self.codes = codes
        self.admin_ids = frozenset(admin_ids)

    # ------------------------------------------------------------------
    # Registration and login
    # ------------------------------------------------------------------

    async def register(
        self,
        username: str,
        password: str,
        email: str,
        exchange_token: Optional[str],
        captcha_proof: Optional[str],
    ) -> tuple[Account, str]:
        """Create an account from a verified email. Returns (account, session token).

        Check order: captcha, input shape, exchange token (consumed here, so a
        later conflict still burns it), then username/email uniqueness.
        """
        require_captcha(captcha_proof)
        username = validate_username(username)
        validate_account_password(password)
        email = validate_email(email)

        if not exchange_token or not await self.codes.consume_exchange_token("register", email, exchange_token):
            raise VerificationExpired("Email verification has expired. Please verify your email again.")

        if await self.store.get_account_id_by_username(username):
            raise Conflict("Username is already taken.", field="username")
        if await self.store.get_account_id_by_email(email):
            raise Conflict("Email is already registered.", field="email")

        now = _now_iso()
        account = Account(
            id=new_account_id(),
            username=username,
            email=email,
            password_hash=await asyncio.to_thread(hash_password, password),
            created_at=now,
            updated_at=now,
            no_content_audit=False,
        )
        await self.store.create_account(account)
        logger.info("Account registered: %s (%s)", account.username, account.id)
        return account, create_access_token(account.id, account.username)

    async def login(
        self,
        identifier: str,
        password: str,
        captcha_proof: Optional[str],
    ) -> tuple[Account, str]:
        """Authenticate by username or email. Returns (account, session token) [C1]."""
        require_captcha(captcha_proof)
        if not identifier or not password:
            raise ValidationFailed("Username/email and password are required.", field="username")

        if is_email(identifier):
            account_id = await self.store.get_account_id_by_email(identifier)
        else:
            account_id = await self.store.get_account_id_by_username(identifier)
        account = await self.store.get_account(account_id) if account_id else None

        if account is None:
            # Equalize timing -- do NOT return before running bcrypt [C1]
            await asyncio.to_thread(burn_password_check, password)
            logger.info("Login failed: unknown identifier")
            raise InvalidCredentials()
        if not await asyncio.to_thread(verify_password, password, account.password_hash):
            logger.info("Login failed: bad password for %s", account.id)
            raise InvalidCredentials()

        return account, create_access_token(account.id, account.username)

    async def current_account(self, identity: Identity) -> Account:
        """Load the account behind a session. A session whose account is gone is Unauthorized."""
        account = await self.store.get_account(identity.account_id)
        if account is None:
            raise Unauthorized("Account no longer exists.")
        return account

    # ------------------------------------------------------------------
    # Password reset and deactivation
    # ------------------------------------------------------------------

    async def reset_password(self, email: str, new_password: str, exchange_token: Optional[str]) -> Account:
        """Overwrite the password of the account registered to email [S1]."""
        validate_account_password(new_password, field="new_password")
        email = validate_email(email)

        if not exchange_token or not await self.codes.consume_exchange_token("reset", email, exchange_token):
            raise VerificationExpired("Verification token is invalid or expired. Please verify your email again.")

        account = await self.store.get_account_by_email(email)
        if account is None:
            raise NotFound("Account not found.")

        account.password_hash = await asyncio.to_thread(hash_password, new_password)
        account.updated_at = _now_iso()
        await self.store.save_account(account)
        logger.info("Password reset for %s", account.id)
        return account

    async def deactivate(self, identity: Identity, password: str, confirmation_phrase: str) -> None:
        """Delete the caller's account and everything it owns.

        The caller must clear the session cookie; the token itself remains
        cryptographically valid until it expires [S1], but every lookup of the
        deleted account fails from here on.
        """
        if confirmation_phrase != DEACTIVATION_PHRASE:
            raise ValidationFailed("Confirmation text does not match.", field="confirm_text")

        account = await self.current_account(identity)
        if not await asyncio.to_thread(verify_password, password or "", account.password_hash):
            raise InvalidCredentials("Incorrect password.")

        removed = await self.store.delete_account(account)
        logger.warning("Account deactivated: %s (%d notes removed)", account.id, removed)

    # ------------------------------------------------------------------
    # Administration [A1]
    # ------------------------------------------------------------------

    def is_admin(self, identity: Optional[Identity]) -> bool:
        return identity is not None and identity.account_id in self.admin_ids

    def require_admin(self, identity: Optional[Identity]) -> Identity:
        if identity is None:
            raise Unauthorized()
        if not self.is_admin(identity):
            raise Forbidden("Admin access required.")
        return identity

    async def lookup_account(self, actor: Optional[Identity], query: str) -> Account:
        """Admin-only: find an account by id, falling back to username."""
        self.require_admin(actor)
        if not query:
            raise ValidationFailed("Provide a user id or username.", field="query")
        account = await self.store.get_account(query)
        if account is None:
            account = await self.store.get_account_by_username(query)
        if account is None:
            raise NotFound("User not found.")
        return account

    async def set_content_audit_exemption(
        self, actor: Optional[Identity], account_id: str, enabled: bool
    ) -> Account:
        """Admin-only: toggle the noContentAudit moderation exemption."""
        self.require_admin(actor)
        if not account_id:
            raise ValidationFailed("User id is required.", field="user_id")
        account = await self.store.get_account(account_id)
        if account is None:
            raise NotFound("User not found.")
        account.no_content_audit = enabled
        account.updated_at = _now_iso()
        await self.store.save_account(account)
        logger.warning(
            "Admin %s set noContentAudit=%s on %s", actor.account_id if actor else "?", enabled, account.id
        )
        return account
