"""
tests/test_tokens.py -- Unit tests for auth/tokens.py and the signing-key policy.

Covers:
  - bcrypt hash/verify round trip, wrong password, malformed hash, >72-byte input
  - session JWT issue/verify, tampered signature, expiry, wrong token type
  - note access grants bound to note id and protection value
  - SECRET_KEY policy (dev fallback, short keys rejected)
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import bcrypt
import pytest
from jose import jwt

from auth.models import HashedNotePassword, PlaintextNotePassword
from auth.tokens import (
    check_note_access_grant,
    create_access_token,
    create_note_access_grant,
    decode_access_token,
    hash_password,
    verify_password,
)
from core.config import DEV_SECRET_KEY, Settings, get_settings


def _flip_signature_char(token: str) -> str:
    header, payload, signature = token.split(".")
    i = len(signature) // 2
    replacement = "A" if signature[i] != "A" else "B"
    return ".".join([header, payload, signature[:i] + replacement + signature[i + 1 :]])


class TestPasswordCodec:
    def test_round_trip(self) -> None:
        hashed = hash_password("secret1")
        assert hashed != "secret1"
        assert verify_password("secret1", hashed)

    def test_other_password_rejected(self) -> None:
        hashed = hash_password("secret1")
        assert not verify_password("secret2", hashed)
        assert not verify_password("", hashed)

    def test_hashes_are_salted(self) -> None:
        assert hash_password("secret1") != hash_password("secret1")

    def test_malformed_hash_is_false_not_error(self) -> None:
        assert verify_password("secret1", "not-a-bcrypt-hash") is False
        assert verify_password("secret1", "") is False

    @pytest.mark.parametrize("plain", ["p" * 80, "密码" * 13, "n" * 200])
    def test_input_over_72_bytes_hashes_and_verifies(self, plain) -> None:
        assert len(plain.encode("utf-8")) > 72
        hashed = hash_password(plain)
        assert verify_password(plain, hashed)
        assert not verify_password("p" * 10, hashed)

    def test_multibyte_password_at_72_bytes(self) -> None:
        plain = "密码" * 12
        assert len(plain.encode("utf-8")) == 72
        assert verify_password(plain, hash_password(plain))
        assert not verify_password("密码" * 11, hash_password(plain))

    def test_hash_from_truncating_bcrypt_still_verifies(self) -> None:
        plain = "q" * 90
        legacy = bcrypt.hashpw(plain.encode("utf-8")[:72], bcrypt.gensalt(rounds=4)).decode("utf-8")
        assert verify_password(plain, legacy)


class TestSessionCodec:
    def test_issue_and_verify(self) -> None:
        token = create_access_token("acct-1", "alice")
        identity = decode_access_token(token)
        assert identity is not None
        assert identity.account_id == "acct-1"
        assert identity.username == "alice"

    def test_default_validity_is_seven_days(self) -> None:
        token = create_access_token("acct-1", "alice")
        claims = jwt.get_unverified_claims(token)
        assert claims["exp"] - claims["iat"] == 7 * 24 * 3600

    def test_tampered_signature_rejected(self) -> None:
        token = create_access_token("acct-1", "alice")
        assert decode_access_token(_flip_signature_char(token)) is None

    def test_expired_token_rejected(self) -> None:
        past = datetime.now(timezone.utc) - timedelta(seconds=10)
        token = jwt.encode(
            {"sub": "acct-1", "username": "alice", "typ": "session", "iat": past - timedelta(days=7), "exp": past},
            get_settings().secret_key,
            algorithm="HS256",
        )
        assert decode_access_token(token) is None

    def test_foreign_key_rejected(self) -> None:
        token = jwt.encode(
            {"sub": "acct-1", "username": "alice", "typ": "session"},
            "some-other-key-that-is-long-enough-000000",
            algorithm="HS256",
        )
        assert decode_access_token(token) is None

    def test_garbage_rejected(self) -> None:
        assert decode_access_token("not.a.jwt") is None
        assert decode_access_token("") is None

    def test_note_grant_is_not_a_session(self) -> None:
        grant = create_note_access_grant("note-1", HashedNotePassword(hash_password("pw12")))
        assert decode_access_token(grant) is None


class TestNoteAccessGrant:
    def test_grant_accepted_for_same_note_and_protection(self) -> None:
        protection = HashedNotePassword(hash_password("pw12"))
        grant = create_note_access_grant("note-1", protection)
        assert check_note_access_grant(grant, "note-1", protection)

    def test_grant_bound_to_note_id(self) -> None:
        protection = HashedNotePassword(hash_password("pw12"))
        grant = create_note_access_grant("note-1", protection)
        assert not check_note_access_grant(grant, "note-2", protection)

    def test_password_change_invalidates_grant(self) -> None:
        grant = create_note_access_grant("note-1", HashedNotePassword(hash_password("pw12")))
        assert not check_note_access_grant(grant, "note-1", HashedNotePassword(hash_password("pw12")))

    def test_plaintext_protection_supported(self) -> None:
        grant = create_note_access_grant("note-1", PlaintextNotePassword("legacy"))
        assert check_note_access_grant(grant, "note-1", PlaintextNotePassword("legacy"))
        assert not check_note_access_grant(grant, "note-1", PlaintextNotePassword("other"))

    def test_session_token_is_not_a_grant(self) -> None:
        protection = PlaintextNotePassword("legacy")
        assert not check_note_access_grant(create_access_token("acct-1", "alice"), "note-1", protection)
        assert not check_note_access_grant(None, "note-1", protection)


class TestSecretKeyPolicy:
    def test_missing_key_falls_back_to_dev_key(self) -> None:
        settings = Settings(secret_key="", _env_file=None)
        assert settings.secret_key == DEV_SECRET_KEY

    def test_short_key_rejected(self) -> None:
        with pytest.raises(ValueError):
            Settings(secret_key="too-short", _env_file=None)

    def test_secure_cookies_follow_debug(self, monkeypatch) -> None:
        monkeypatch.delenv("SECURE_COOKIES", raising=False)
        assert Settings(debug=False, _env_file=None).cookies_secure is True
        assert Settings(debug=True, _env_file=None).cookies_secure is False
        assert Settings(debug=True, secure_cookies=True, _env_file=None).cookies_secure is True
