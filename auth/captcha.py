"""
auth/captcha.py -- Server side of the image CAPTCHA contract.

The puzzle is rendered and solved entirely in the browser. On a correct
answer the client issues itself a proof string of the form
"image-captcha-<timestamp>" and sends it with the request. The server only
checks that a proof of that shape was supplied.

This is a usability speed bump, NOT bot resistance: any script can produce a
valid-looking proof. Real protection requires server-generated puzzles whose
answers never leave the server.
"""

from __future__ import annotations

from typing import Optional

from core.errors import ValidationFailed

CAPTCHA_PROOF_PREFIX = "image-captcha-"


def is_valid_captcha_proof(proof: Optional[str]) -> bool:
    return bool(proof) and proof.startswith(CAPTCHA_PROOF_PREFIX) and len(proof) > len(CAPTCHA_PROOF_PREFIX)


def require_captcha(proof: Optional[str]) -> None:
    """Raise ValidationFailed unless a well-formed CAPTCHA proof was supplied."""
    if not proof:
        raise ValidationFailed("Please complete the CAPTCHA.", field="captcha_token")
    if not is_valid_captcha_proof(proof):
        raise ValidationFailed("Invalid CAPTCHA proof.", field="captcha_token")
