"""
notes/moderation.py -- Banned-term screening for note content.

ContentModerator asks the remote moderation API when a key is configured and
falls back to the local list (LOCAL_BANNED_TERMS, empty by default) when the
API is not configured or fails. Failing open is deliberate: a moderation
outage must not block every note submission.

Only note bodies are screened. Titles are not.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from core.config import Settings
from core.fetcher import fetch_banned_terms

logger = logging.getLogger("sharenote.moderation")


@dataclass
class ModerationResult:
    is_valid: bool
    banned_terms: list[str] = field(default_factory=list)


class ContentModerator:
    def __init__(
        self,
        api_url: str = "",
        api_key: str = "",
        local_terms: Iterable[str] = (),
        timeout: float = 10.0,
    ) -> None:
        self.api_url = api_url
        self.api_key = api_key
        self.local_terms = [t for t in local_terms if t]
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "ContentModerator":
        return cls(
            api_url=settings.moderation_api_url,
            api_key=settings.moderation_api_key,
            local_terms=settings.banned_terms,
            timeout=settings.collaborator_timeout_seconds,
        )

    def check_local(self, text: str) -> ModerationResult:
        lowered = text.lower()
        found = [term for term in self.local_terms if term.lower() in lowered]
        return ModerationResult(is_valid=not found, banned_terms=found)

    def check(self, text: str) -> ModerationResult:
        """Screen text. Blocking -- use screen() from async code."""
        if not text:
            return ModerationResult(is_valid=True)
        if not (self.api_key and self.api_url):
            return self.check_local(text)
        terms = fetch_banned_terms(text, self.api_url, self.api_key, timeout=self.timeout)
        if terms is None:
            logger.warning("Moderation API unavailable; falling back to local list")
            return self.check_local(text)
        return ModerationResult(is_valid=not terms, banned_terms=terms)

    async def screen(self, text: str) -> ModerationResult:
        return await asyncio.to_thread(self.check, text)
