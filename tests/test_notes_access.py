"""
tests/test_notes_access.py -- NoteService and AccessGuard: ownership, note passwords, moderation.

Covers:
  - owner-only update/delete; anonymous notes are never writable
  - protected notes: metadata disclosed, body gated until a valid grant
  - hashed and legacy plaintext note passwords; migration on next write
  - moderation rejects banned terms unless the owner is exempt
  - short links (custom, reserved, duplicate) and listing order
"""

from __future__ import annotations

import asyncio

import pytest

from auth.guard import authorize_note_read
from auth.models import HashedNotePassword, Identity, Note, PlaintextNotePassword
from auth.store import NOTES_INDEX, owned_notes_key, short_key
from conftest import BANNED_TERM, CAPTCHA
from core.errors import Conflict, ContentRejected, Forbidden, InvalidPassword, NotFound, ValidationFailed


def _identity(account) -> Identity:
    return Identity(account_id=account.id, username=account.username)


class TestOwnership:
    def test_only_owner_may_update_or_delete(self, services) -> None:
        async def scenario() -> None:
            alice, _ = await services.register("alice", "a@x.com")
            bob, _ = await services.register("bob", "b@x.com")
            note = await services.notes.create_note(_identity(alice), "title", "body", None, None, CAPTCHA)

            with pytest.raises(Forbidden):
                await services.notes.update_note(note.id, _identity(bob), content="hijacked")
            with pytest.raises(Forbidden):
                await services.notes.delete_note(note.id, _identity(bob))
            with pytest.raises(Forbidden):
                await services.notes.update_note(note.id, None, content="anon")

            updated = await services.notes.update_note(note.id, _identity(alice), title="new title", content="new body")
            assert updated.title == "new title"
            assert (await services.store.get_note(note.id)).content == "new body"

            await services.notes.delete_note(note.id, _identity(alice))
            assert await services.store.get_note(note.id) is None
            assert note.id not in await services.kv.smembers(NOTES_INDEX)
            assert note.id not in await services.kv.smembers(owned_notes_key(alice.id))
            assert await services.kv.get(short_key(note.short_url)) is None

        asyncio.run(scenario())

    def test_anonymous_note_is_readable_but_not_writable(self, services) -> None:
        async def scenario() -> None:
            alice, _ = await services.register("alice", "a@x.com")
            note = await services.notes.create_note(None, "anon", "hello", None, None, CAPTCHA)
            assert note.user_id is None

            view = await services.notes.get_note(note.id, None)
            assert view.content == "hello"
            assert view.is_owner is False

            with pytest.raises(Forbidden):
                await services.notes.delete_note(note.id, _identity(alice))

        asyncio.run(scenario())

    def test_missing_note_not_found(self, services) -> None:
        with pytest.raises(NotFound):
            asyncio.run(services.notes.get_note("missing", None))

    def test_create_requires_captcha(self, services) -> None:
        with pytest.raises(ValidationFailed) as exc_info:
            asyncio.run(services.notes.create_note(None, "t", "b", None, None, None))
        assert exc_info.value.field == "captcha_token"


class TestPasswordProtection:
    def test_body_gated_until_password_verified(self, services) -> None:
        async def scenario() -> None:
            alice, _ = await services.register("alice", "a@x.com")
            bob, _ = await services.register("bob", "b@x.com")
            note = await services.notes.create_note(_identity(alice), "secret", "hidden body", "pw1234", None, CAPTCHA)
            assert isinstance(note.protection, HashedNotePassword)

            locked = await services.notes.get_note(note.id, _identity(bob))
            assert locked.title == "secret"
            assert locked.is_password_protected is True
            assert locked.content is None
            assert locked.locked

            with pytest.raises(InvalidPassword):
                await services.notes.verify_password(note.id, "wrong-pw", CAPTCHA)
            still_locked = await services.notes.get_note(note.id, _identity(bob))
            assert still_locked.content is None

            _, grant = await services.notes.verify_password(note.id, "pw1234", CAPTCHA)
            unlocked = await services.notes.get_note(note.id, _identity(bob), grant)
            assert unlocked.content == "hidden body"

            owner_view = await services.notes.get_note(note.id, _identity(alice))
            assert owner_view.content == "hidden body"
            assert owner_view.is_owner is True

        asyncio.run(scenario())

    def test_unowned_protected_note_is_gated(self, services) -> None:
        async def scenario() -> None:
            note = await services.notes.create_note(None, "anon secret", "hidden", "pw1234", None, CAPTCHA)
            assert note.user_id is None
            locked = await services.notes.get_note(note.id, None)
            assert locked.title == "anon secret"
            assert locked.content is None
            _, grant = await services.notes.verify_password(note.id, "pw1234", CAPTCHA)
            assert (await services.notes.get_note(note.id, None, grant)).content == "hidden"

        asyncio.run(scenario())

    def test_verify_requires_captcha(self, services) -> None:
        async def scenario() -> None:
            note = await services.notes.create_note(None, "t", "b", "pw1234", None, CAPTCHA)
            with pytest.raises(ValidationFailed) as exc_info:
                await services.notes.verify_password(note.id, "pw1234", None)
            assert exc_info.value.field == "captcha_token"

        asyncio.run(scenario())

    def test_unprotected_note_verify_is_validation_error(self, services) -> None:
        async def scenario() -> None:
            note = await services.notes.create_note(None, "t", "b", None, None, CAPTCHA)
            with pytest.raises(ValidationFailed):
                await services.notes.verify_password(note.id, "anything", CAPTCHA)

        asyncio.run(scenario())

    def test_legacy_plaintext_password_verifies_and_migrates(self, services) -> None:
        async def scenario() -> None:
            alice, _ = await services.register("alice", "a@x.com")
            legacy = Note(
                id="legacy-note",
                title="old",
                content="old body",
                created_at="2023-01-01T00:00:00+00:00",
                updated_at="2023-01-01T00:00:00+00:00",
                user_id=alice.id,
                protection=PlaintextNotePassword("letmein"),
                short_url="old-link",
            )
            await services.store.create_note(legacy)

            with pytest.raises(InvalidPassword):
                await services.notes.verify_password("legacy-note", "letmeout", CAPTCHA)
            _, grant = await services.notes.verify_password("legacy-note", "letmein", CAPTCHA)
            assert (await services.notes.get_note("legacy-note", None, grant)).content == "old body"

            await services.notes.update_note("legacy-note", _identity(alice), title="renamed")
            migrated = await services.store.get_note("legacy-note")
            assert isinstance(migrated.protection, HashedNotePassword)
            assert "letmein" not in await services.kv.get("note:legacy-note")
            await services.notes.verify_password("legacy-note", "letmein", CAPTCHA)

        asyncio.run(scenario())

    def test_password_change_invalidates_grants_and_empty_removes(self, services) -> None:
        async def scenario() -> None:
            alice, _ = await services.register("alice", "a@x.com")
            me = _identity(alice)
            note = await services.notes.create_note(me, "t", "body", "pw1234", None, CAPTCHA)
            _, grant = await services.notes.verify_password(note.id, "pw1234", CAPTCHA)

            await services.notes.update_note(note.id, me, password="pw5678")
            assert (await services.notes.get_note(note.id, None, grant)).content is None

            await services.notes.update_note(note.id, me, password="")
            view = await services.notes.get_note(note.id, None)
            assert view.is_password_protected is False
            assert view.content == "body"

        asyncio.run(scenario())

    def test_note_password_length_enforced(self, services) -> None:
        with pytest.raises(ValidationFailed) as exc_info:
            asyncio.run(services.notes.create_note(None, "t", "b", "abc", None, CAPTCHA))
        assert exc_info.value.field == "password"

    @pytest.mark.parametrize("password", ["n" * 100, "n" * 73, "密码" * 13])
    def test_note_password_over_72_bytes_rejected(self, services, password) -> None:
        async def scenario() -> None:
            with pytest.raises(ValidationFailed) as exc_info:
                await services.notes.create_note(None, "t", "b", password, None, CAPTCHA)
            assert exc_info.value.field == "password"

            alice, _ = await services.register("alice", "a@x.com")
            note = await services.notes.create_note(_identity(alice), "t", "b", "pw1234", None, CAPTCHA)
            with pytest.raises(ValidationFailed):
                await services.notes.update_note(note.id, _identity(alice), password=password)
            await services.notes.verify_password(note.id, "pw1234", CAPTCHA)

        asyncio.run(scenario())

    @pytest.mark.parametrize("password", ["n" * 72, "密码" * 12])
    def test_note_password_at_72_bytes_accepted(self, services, password) -> None:
        async def scenario() -> None:
            note = await services.notes.create_note(None, "t", "body", password, None, CAPTCHA)
            _, grant = await services.notes.verify_password(note.id, password, CAPTCHA)
            assert (await services.notes.get_note(note.id, None, grant)).content == "body"

        asyncio.run(scenario())

    def test_long_legacy_plaintext_password_migrates(self, services) -> None:
        async def scenario() -> None:
            alice, _ = await services.register("alice", "a@x.com")
            long_pw = "legacy-" * 20
            await services.store.create_note(
                Note(
                    id="long-legacy",
                    title="old",
                    content="old body",
                    created_at="2023-01-01T00:00:00+00:00",
                    updated_at="2023-01-01T00:00:00+00:00",
                    user_id=alice.id,
                    protection=PlaintextNotePassword(long_pw),
                )
            )
            await services.notes.update_note("long-legacy", _identity(alice), title="renamed")
            migrated = await services.store.get_note("long-legacy")
            assert isinstance(migrated.protection, HashedNotePassword)
            await services.notes.verify_password("long-legacy", long_pw, CAPTCHA)

        asyncio.run(scenario())

    def test_guard_discloses_metadata_for_plaintext_note(self) -> None:
        note = Note(
            id="n1",
            title="t",
            content="c",
            created_at="x",
            updated_at="x",
            protection=PlaintextNotePassword("pw"),
        )
        view = authorize_note_read(note, None)
        assert view.is_password_protected and view.content is None and not view.is_owner


class TestModeration:
    def test_banned_term_rejected_and_named(self, services) -> None:
        async def scenario() -> None:
            alice, _ = await services.register("alice", "a@x.com")
            with pytest.raises(ContentRejected) as exc_info:
                await services.notes.create_note(
                    _identity(alice), "t", f"this has {BANNED_TERM} inside", None, None, CAPTCHA
                )
            assert exc_info.value.banned_terms == [BANNED_TERM]
            assert exc_info.value.to_detail()["banned_terms"] == [BANNED_TERM]
            assert await services.store.list_owned_note_ids(alice.id) == set()

        asyncio.run(scenario())

    def test_exempt_account_bypasses_moderation(self, services) -> None:
        async def scenario() -> None:
            alice, _ = await services.register("alice", "a@x.com")
            alice.no_content_audit = True
            await services.store.save_account(alice)
            note = await services.notes.create_note(
                _identity(alice), "t", f"this has {BANNED_TERM} inside", None, None, CAPTCHA
            )
            assert BANNED_TERM in note.content
            updated = await services.notes.update_note(note.id, _identity(alice), content=f"{BANNED_TERM} again")
            assert updated.content.startswith(BANNED_TERM)

        asyncio.run(scenario())

    def test_update_is_screened(self, services) -> None:
        async def scenario() -> None:
            alice, _ = await services.register("alice", "a@x.com")
            note = await services.notes.create_note(_identity(alice), "t", "clean", None, None, CAPTCHA)
            with pytest.raises(ContentRejected):
                await services.notes.update_note(note.id, _identity(alice), content=BANNED_TERM)
            assert (await services.store.get_note(note.id)).content == "clean"

        asyncio.run(scenario())

    def test_title_is_not_screened(self, services) -> None:
        note = asyncio.run(services.notes.create_note(None, BANNED_TERM, "clean body", None, None, CAPTCHA))
        assert note.title == BANNED_TERM


class TestShortLinksAndListing:
    def test_custom_short_link_resolves_and_conflicts(self, services) -> None:
        async def scenario() -> None:
            note = await services.notes.create_note(None, "t", "b", None, "my-link", CAPTCHA)
            view = await services.notes.resolve_short_link("my-link", None)
            assert view.id == note.id
            with pytest.raises(Conflict) as exc_info:
                await services.notes.create_note(None, "t2", "b2", None, "my-link", CAPTCHA)
            assert exc_info.value.field == "custom_short_url"
            with pytest.raises(NotFound):
                await services.notes.resolve_short_link("nope-link", None)

        asyncio.run(scenario())

    @pytest.mark.parametrize("slug", ["ab", "-edge", "edge-", "admin", "has space", "x" * 51])
    def test_bad_slugs_rejected(self, services, slug) -> None:
        with pytest.raises(ValidationFailed) as exc_info:
            asyncio.run(services.notes.create_note(None, "t", "b", None, slug, CAPTCHA))
        assert exc_info.value.field == "custom_short_url"

    def test_generated_short_link_assigned(self, services) -> None:
        note = asyncio.run(services.notes.create_note(None, "t", "b", None, None, CAPTCHA))
        assert note.short_url and len(note.short_url) == 8

    def test_list_is_newest_first_and_own_only(self, services) -> None:
        async def scenario() -> None:
            alice, _ = await services.register("alice", "a@x.com")
            bob, _ = await services.register("bob", "b@x.com")
            first = await services.notes.create_note(_identity(alice), "first", "1", None, None, CAPTCHA)
            second = await services.notes.create_note(_identity(alice), "second", "2", "pw1234", None, CAPTCHA)
            await services.notes.create_note(_identity(bob), "bobs", "3", None, None, CAPTCHA)

            summaries = await services.notes.list_notes(_identity(alice))
            assert [s.id for s in summaries] == [second.id, first.id]
            assert summaries[0].is_password_protected is True

        asyncio.run(scenario())

    def test_oversized_content_rejected(self, services) -> None:
        with pytest.raises(ValidationFailed) as exc_info:
            asyncio.run(services.notes.create_note(None, "t", "x" * (50 * 1024 + 1), None, None, CAPTCHA))
        assert exc_info.value.field == "content"
