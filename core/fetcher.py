"""
fetcher.py -- All external HTTP calls (content moderation, quote of the day).

Every function returns None when the remote service is unusable (network
error, timeout, non-2xx, unexpected payload). Callers pick the fallback;
nothing here raises on transport failure and nothing is retried.

These calls block; async callers run them in a worker thread.
"""

import logging
from typing import Any, Optional

import requests

logger = logging.getLogger("sharenote.fetcher")

# Module-level session shared across all fetcher calls for connection pooling.
# max_redirects=3 replaces the requests default of 30 -- these are known public
# APIs and a short chain limits SSRF via redirects.
_session = requests.Session()
_session.max_redirects = 3

_QUOTE_SOURCE_ID = "10003018"
_TERM_FIELDS = ("word", "text", "content", "value")


def _extract_terms(words: Any) -> list[str]:
    """Flatten the moderation API's "words" field into a list of strings.

    The API has returned a list of strings, a list of objects, a single
    object and a bare scalar at different times; accept all of them.
    """
    if words is None:
        return []
    if isinstance(words, list):
        terms: list[str] = []
        for item in words:
            terms.extend(_extract_terms(item))
        return terms
    if isinstance(words, dict):
        for name in _TERM_FIELDS:
            if words.get(name):
                return [str(words[name])]
        return [str(v) for v in words.values() if isinstance(v, str) and v.strip()]
    return [str(words)]


def fetch_banned_terms(text: str, api_url: str, api_key: str, timeout: float = 10) -> Optional[list[str]]:
    """Ask the moderation API which banned terms text contains.

    Returns [] for clean text, a non-empty list of terms for rejected text,
    and None when the API could not give an answer.
    """
    try:
        resp = _session.get(
            api_url,
            params={"text": text, "key": api_key, "yange": "no"},
            timeout=timeout,
        )
        resp.raise_for_status()
        body = resp.json()
    except (requests.RequestException, ValueError) as e:
        logger.warning("Moderation API call failed: %s", e)
        return None

    if not isinstance(body, dict) or body.get("code") != 200 or not isinstance(body.get("data"), dict):
        logger.warning("Moderation API returned an unusable payload: %s", str(body)[:200])
        return None

    data = body["data"]
    if data.get("containsBannedWord") is not True:
        return []
    return _extract_terms(data.get("words")) or ["sensitive content"]


def fetch_quote(api_url: str, api_key: str, timeout: float = 10) -> Optional[str]:
    """Fetch one quote of the day. Returns None on any failure."""
    try:
        resp = _session.get(api_url, params={"id": _QUOTE_SOURCE_ID, "key": api_key}, timeout=timeout)
        resp.raise_for_status()
        body = resp.json()
    except (requests.RequestException, ValueError) as e:
        logger.warning("Quote API call failed: %s", e)
        return None
    if not isinstance(body, dict) or body.get("code") != 200 or not body.get("msg"):
        logger.warning("Quote API returned an unusable payload")
        return None
    return str(body["msg"])
