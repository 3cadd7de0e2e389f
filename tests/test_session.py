"""
Session record: mapping behaviour, dirty-check hash, and store methods.
"""

from datetime import timedelta

import pytest

from tessera.cookie import Cookie, utcnow
from tessera.faults import SessionNotFoundFault
from tessera.session import Session, session_hash


def make_session(store, session_id="sid", data=None, cookie=None):
    scope = {"session_id": session_id, "session_store": store}
    session = Session(scope, data, cookie)
    scope["session"] = session
    return scope, session


# ============================================================================
# Mapping
# ============================================================================

class TestSessionMapping:

    def test_data_operations(self, store):
        _, session = make_session(store)
        session["key"] = "value"
        assert session["key"] == "value"
        assert "key" in session
        assert len(session) == 1

    def test_get_with_default(self, store):
        _, session = make_session(store)
        assert session.get("missing", "default") == "default"

    def test_delete_key(self, store):
        _, session = make_session(store, data={"x": 1})
        del session["x"]
        assert "x" not in session

    def test_cookie_key_is_reserved(self, store):
        _, session = make_session(store)
        with pytest.raises(ValueError, match="reserved"):
            session["cookie"] = "nope"

    def test_cookie_key_dropped_from_data(self, store):
        _, session = make_session(store, data={"cookie": {"path": "/"}, "a": 1})
        assert list(session) == ["a"]

    def test_id_is_fixed(self, store):
        scope, session = make_session(store, "first")
        scope["session_id"] = "second"
        assert session.id == "first"

    def test_to_dict_embeds_cookie(self, store):
        _, session = make_session(store, data={"a": 1})
        data = session.to_dict()
        assert data["a"] == 1
        assert data["cookie"]["path"] == "/"
        assert data["cookie"]["http_only"] is True


# ============================================================================
# Dirty-check hash
# ============================================================================

class TestSessionHash:

    def test_stable_across_key_order(self, store):
        _, first = make_session(store, data={"a": 1, "b": 2})
        _, second = make_session(store, data={"b": 2, "a": 1})
        assert session_hash(first) == session_hash(second)

    def test_changes_with_content(self, store):
        _, session = make_session(store, data={"a": 1})
        before = session_hash(session)
        session["a"] = 2
        assert session_hash(session) != before

    def test_ignores_cookie(self, store):
        _, session = make_session(store)
        before = session_hash(session)
        session.cookie.max_age = 60_000
        assert session_hash(session) == before

    def test_non_serializable_is_an_error(self, store):
        _, session = make_session(store)
        session["fn"] = object()
        with pytest.raises(TypeError):
            session_hash(session)


# ============================================================================
# Expiration
# ============================================================================

class TestSessionTouch:

    def test_reset_max_age(self, store):
        cookie = Cookie(max_age=60_000)
        _, session = make_session(store, cookie=cookie)
        cookie.expires = utcnow() + timedelta(seconds=5)
        cookie.original_max_age = 60_000

        session.reset_max_age()

        assert session.cookie.max_age > 59_000

    def test_touch_browser_session_cookie(self, store):
        _, session = make_session(store)
        session.touch()
        assert session.cookie.expires is None


# ============================================================================
# Store operations
# ============================================================================

class TestSessionStoreOperations:

    @pytest.mark.asyncio
    async def test_save(self, store):
        _, session = make_session(store, data={"user": "bob"})
        await session.save()
        assert (await store.get("sid"))["user"] == "bob"

    @pytest.mark.asyncio
    async def test_save_notifies_lifecycle(self, store):
        class Recorder:
            saved = []

            def mark_saved(self, session):
                self.saved.append(session)

        _, session = make_session(store)
        recorder = Recorder()
        session._lifecycle = recorder
        await session.save()
        assert recorder.saved == [session]

    @pytest.mark.asyncio
    async def test_reload(self, store):
        scope, session = make_session(store, data={"n": 1})
        await session.save()
        session["n"] = 2

        reloaded = await session.reload()

        assert reloaded["n"] == 1
        assert scope["session"] is reloaded
        assert reloaded is not session

    @pytest.mark.asyncio
    async def test_reload_missing(self, store):
        _, session = make_session(store)
        with pytest.raises(SessionNotFoundFault, match="failed to load session"):
            await session.reload()

    @pytest.mark.asyncio
    async def test_destroy(self, store):
        scope, session = make_session(store, data={"n": 1})
        await session.save()

        await session.destroy()

        assert "session" not in scope
        assert await store.get("sid") is None

    @pytest.mark.asyncio
    async def test_regenerate(self, store):
        def generator(scope):
            scope["session_id"] = "new-id"
            scope["session"] = Session(scope)

        store.bind_generator(generator)
        scope, session = make_session(store, data={"n": 1})
        await session.save()

        fresh = await session.regenerate()

        assert fresh.id == "new-id"
        assert scope["session"] is fresh
        assert "n" not in fresh
        assert await store.get("sid") is None
