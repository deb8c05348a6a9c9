"""
api/routes/v1/misc.py -- Quote of the day.

The quote API is optional. Without QUOTE_API_KEY, or when the call fails,
the fixed fallback quote is returned so the page never shows an error.
"""

import asyncio

from fastapi import APIRouter, Request

from api.models import ok
from core.config import Settings
from core.fetcher import fetch_quote

router = APIRouter()

FALLBACK_QUOTE = "The palest ink is better than the best memory."


@router.get("/quote")
async def quote(request: Request) -> dict:
    settings: Settings = request.app.state.settings
    text = None
    if settings.quote_api_url and settings.quote_api_key:
        text = await asyncio.to_thread(
            fetch_quote,
            settings.quote_api_url,
            settings.quote_api_key,
            settings.collaborator_timeout_seconds,
        )
    return ok({"text": text or FALLBACK_QUOTE})
