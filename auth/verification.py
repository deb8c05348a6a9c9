"""
auth/verification.py -- Email verification codes and exchange tokens.

Flow (purpose is "register" or "reset"):

  issue_code     -> 6-digit code stored at verification:{purpose}:{email}
                    (TTL 300s), marker email_rate_limit:{email} (TTL 60s),
                    email sent.
  verify_code    -> correct code is deleted (single use) and swapped for an
                    opaque exchange token at temp_token:{purpose}:{email}
                    (TTL 600s). A wrong code leaves the stored code usable
                    until it expires.
  consume_exchange_token
                 -> the operation being authorized (registration, password
                    reset) deletes the token on success (single use).

The rate-limit marker is checked then set, not set atomically: two concurrent
requests can both pass and send two emails. That only costs an extra email.

Layer rule: no imports from api/ or notes/.
"""

from __future__ import annotations

import asyncio
import hmac
import logging
import secrets
from typing import Optional

from core.errors import RateLimited, TransientError, ValidationFailed
from core.mailer import Mailer, render_verification_email
from kv.store import KeyValueStore

logger = logging.getLogger("sharenote.verification")

PURPOSES = ("register", "reset")

CODE_TTL_SECONDS = 300
EXCHANGE_TOKEN_TTL_SECONDS = 600
SEND_INTERVAL_SECONDS = 60


def verification_key(purpose: str, email: str) -> str:
    return f"verification:{purpose}:{email}"


def exchange_token_key(purpose: str, email: str) -> str:
    return f"temp_token:{purpose}:{email}"


def rate_limit_key(email: str) -> str:
    return f"email_rate_limit:{email}"


def _check_purpose(purpose: str) -> None:
    if purpose not in PURPOSES:
        raise ValidationFailed("Invalid verification type.", field="type")


def generate_code() -> str:
    return str(100000 + secrets.randbelow(900000))


class EphemeralCodeIssuer:
    def __init__(self, kv: KeyValueStore, mailer: Mailer, send_timeout: float = 10.0) -> None:
        self.kv = kv
        self.mailer = mailer
        self.send_timeout = send_timeout

    async def issue_code(self, purpose: str, email: str) -> None:
        """Generate, store and email a code. Raises RateLimited within 60s of the last send."""
        _check_purpose(purpose)
        if await self.kv.get(rate_limit_key(email)) is not None:
            logger.info("Verification send rate-limited for %s", email)
            raise RateLimited(
                "Please wait before requesting another code (one per 60 seconds).",
                retry_after=SEND_INTERVAL_SECONDS,
            )

        code = generate_code()
        await self.kv.setex(verification_key(purpose, email), CODE_TTL_SECONDS, code)
        await self.kv.setex(rate_limit_key(email), SEND_INTERVAL_SECONDS, "1")

        subject, body = render_verification_email(code, purpose, CODE_TTL_SECONDS)
        try:
            await asyncio.wait_for(
                asyncio.to_thread(self.mailer.send, email, subject, body),
                timeout=self.send_timeout,
            )
        except asyncio.TimeoutError as exc:
            # The worker thread cannot be cancelled: the message may still go
            # out later, carrying a code that no longer exists.
            await self.kv.delete(verification_key(purpose, email), rate_limit_key(email))
            logger.warning(
                "Verification email to %s timed out after %.1fs; a late delivery will carry a withdrawn code",
                email,
                self.send_timeout,
            )
            raise TransientError("Failed to send the verification email. Please try again.") from exc
        except OSError as exc:
            # Undo so the user can retry immediately instead of waiting out the marker.
            await self.kv.delete(verification_key(purpose, email), rate_limit_key(email))
            logger.error("Verification email to %s failed: %s", email, exc)
            raise TransientError("Failed to send the verification email. Please try again.") from exc
        logger.info("Verification code issued (purpose=%s, email=%s)", purpose, email)

    async def verify_code(self, purpose: str, email: str, code: str) -> Optional[str]:
        """Return a fresh exchange token if code matches, else None."""
        _check_purpose(purpose)
        key = verification_key(purpose, email)
        stored = await self.kv.get(key)
        if stored is None:
            return None
        if str(stored).strip() != str(code).strip():
            return None

        await self.kv.delete(key)
        token = secrets.token_urlsafe(24)
        await self.kv.setex(exchange_token_key(purpose, email), EXCHANGE_TOKEN_TTL_SECONDS, token)
        return token

    async def consume_exchange_token(self, purpose: str, email: str, token: Optional[str]) -> bool:
        """Delete and accept the exchange token if it matches. False means: do not proceed."""
        _check_purpose(purpose)
        if not token:
            return False
        key = exchange_token_key(purpose, email)
        stored = await self.kv.get(key)
        if stored is None or not hmac.compare_digest(stored.encode(), token.encode()):
            return False
        await self.kv.delete(key)
        return True
