"""
core/mailer.py -- Outbound email for verification codes.

Contract: send(to, subject, html_body) returns None on success and raises on
failure. Callers decide what a failure means; EphemeralCodeIssuer turns it
into a TransientError.

Two implementations:
  SMTPMailer -- smtplib with STARTTLS and a connect/IO timeout.
  LogMailer  -- development fallback when SMTP_HOST is empty. Logs that a
                message was "sent" (recipient and subject only -- never the
                body, which contains the code).

send() is blocking; async callers run it in a worker thread.
"""

from __future__ import annotations

import html
import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr
from typing import Protocol

from core.config import Settings

logger = logging.getLogger("sharenote.mailer")


class Mailer(Protocol):
    def send(self, to: str, subject: str, html_body: str) -> None: ...


class SMTPMailer:
    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def send(self, to: str, subject: str, html_body: str) -> None:
        s = self._settings
        msg = EmailMessage()
        msg["From"] = formataddr((s.email_from_name, s.email_from))
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content("Please view this message in an HTML-capable mail client.")
        msg.add_alternative(html_body, subtype="html")

        with smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=s.collaborator_timeout_seconds) as smtp:
            if s.smtp_starttls:
                smtp.starttls()
            if s.smtp_user:
                smtp.login(s.smtp_user, s.smtp_password)
            smtp.send_message(msg)
        logger.info("Email sent to %s (%s)", to, subject)


class LogMailer:
    """Development mailer: records the send in the log instead of delivering it."""

    def send(self, to: str, subject: str, html_body: str) -> None:
        logger.warning("SMTP not configured -- email to %s (%s) was not delivered", to, subject)


def build_mailer(settings: Settings) -> Mailer:
    if settings.smtp_host:
        return SMTPMailer(settings)
    return LogMailer()


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

_SUBJECTS = {
    "register": "ShareNote - your registration code",
    "reset": "ShareNote - your password reset code",
}

_ACTIONS = {
    "register": "create your account",
    "reset": "reset your password",
}

_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head><meta charset="UTF-8"><title>{subject}</title></head>
<body style="font-family: -apple-system, 'Segoe UI', Roboto, Arial, sans-serif; color: #334155;">
  <div style="max-width: 600px; margin: 40px auto; padding: 32px; border: 1px solid #e2e8f0; border-radius: 12px;">
    <h1 style="margin-top: 0;">ShareNote</h1>
    <p>Use the code below to {action}.</p>
    <p style="font-size: 32px; font-weight: 800; letter-spacing: 8px; font-family: monospace;">{code}</p>
    <p style="color: #ef4444; font-weight: 600;">This code expires in {minutes} minutes and can be used once.</p>
    <p>If you did not request this, you can ignore this email.</p>
  </div>
</body>
</html>
"""


def render_verification_email(code: str, purpose: str, ttl_seconds: int) -> tuple[str, str]:
    """Return (subject, html_body) for a verification code email."""
    subject = _SUBJECTS[purpose]
    body = _TEMPLATE.format(
        subject=html.escape(subject),
        action=_ACTIONS[purpose],
        code=html.escape(code),
        minutes=ttl_seconds // 60,
    )
    return subject, body
