"""
Unit tests for the session store adapters.
"""

import sqlite3
from datetime import timedelta

import pytest

from fraudguard.auth import (
    InMemorySessionStore,
    Permission,
    Role,
    Session,
    SessionState,
    SessionStore,
    SQLiteSessionStore,
    StoreUnavailable,
    TemporaryGrant,
    WarningReason,
)


@pytest.fixture(params=["memory", "sqlite"])
def any_store(request, clock, tmp_path):
    if request.param == "memory":
        return InMemorySessionStore(clock=clock)
    return SQLiteSessionStore(tmp_path / "sessions.db", clock=clock)


def make_session(clock, session_id="s-1", user_id="u-1", ttl=timedelta(minutes=30), **kwargs):
    now = clock()
    return Session(
        session_id=session_id,
        user_id=user_id,
        role=kwargs.pop("role", Role.CITIZEN),
        created_at=now,
        last_activity_at=now,
        expires_at=now + ttl,
        **kwargs,
    )


class TestBasicOperations:
    """Test put/get/remove on both adapters."""

    def test_put_and_get(self, any_store, clock):
        """A stored session comes back intact."""
        grant = TemporaryGrant(
            permissions=frozenset({Permission.USERS_VIEW_ALL}),
            expires_at=clock() + timedelta(hours=1),
            granted_by="u-admin",
            reason="audit",
        )
        session = make_session(
            clock,
            role=Role.OFFICER,
            custom_permissions=frozenset({Permission.REPORTS_EXPORT}),
            temporary_grants=(grant,),
            remember_me=True,
            state=SessionState.WARNING,
            warning_reason=WarningReason.INACTIVITY,
        )
        any_store.put(session)

        loaded = any_store.get("s-1")
        assert loaded == session

    def test_get_missing(self, any_store):
        """Unknown ids return None."""
        assert any_store.get("nope") is None

    def test_put_replaces(self, any_store, clock):
        """put overwrites the record for the same id."""
        session = make_session(clock)
        any_store.put(session)
        any_store.put(session.copy(state=SessionState.WARNING))

        assert any_store.get("s-1").state is SessionState.WARNING
        assert len(any_store.get_by_user("u-1")) == 1

    def test_remove(self, any_store, clock):
        """remove reports whether something was deleted."""
        any_store.put(make_session(clock))

        assert any_store.remove("s-1") is True
        assert any_store.remove("s-1") is False
        assert any_store.get("s-1") is None

    def test_get_by_user_and_remove_all(self, any_store, clock):
        """Sessions are grouped by owner, oldest first."""
        any_store.put(make_session(clock, "s-1"))
        clock.advance(seconds=1)
        any_store.put(make_session(clock, "s-2"))
        any_store.put(make_session(clock, "s-3", user_id="u-2"))

        assert [s.session_id for s in any_store.get_by_user("u-1")] == ["s-1", "s-2"]
        assert any_store.remove_all("u-1") == 2
        assert any_store.get_by_user("u-1") == []
        assert any_store.get("s-3") is not None


class TestExpiry:
    """Test that expired sessions are never returned."""

    def test_expired_hidden(self, any_store, clock):
        """A session at or past its absolute expiry is invisible."""
        any_store.put(make_session(clock, ttl=timedelta(minutes=5)))

        clock.advance(minutes=5)

        assert any_store.get("s-1") is None
        assert any_store.get_by_user("u-1") == []

    def test_cleanup(self, any_store, clock):
        """cleanup_expired_sessions purges only expired records."""
        any_store.put(make_session(clock, "s-1", ttl=timedelta(minutes=5)))
        any_store.put(make_session(clock, "s-2", ttl=timedelta(hours=1)))

        clock.advance(minutes=10)

        assert any_store.cleanup_expired_sessions() == 1
        assert any_store.get("s-2") is not None


class TestInterface:
    """Test the store interface."""

    def test_incomplete_store_rejected(self):
        """A store missing operations can't be instantiated."""

        class ReadOnlyStore(SessionStore):
            def get(self, session_id):
                return None

        with pytest.raises(TypeError):
            ReadOnlyStore()


class TestInMemoryStore:
    """Test in-memory specifics."""

    def test_stores_copies(self, clock):
        """Mutating a returned session does not change the stored one."""
        store = InMemorySessionStore(clock=clock)
        store.put(make_session(clock))

        loaded = store.get("s-1")
        loaded.state = SessionState.WARNING

        assert store.get("s-1").state is SessionState.ACTIVE

    def test_lazy_drop_on_read(self, clock):
        """Expired records are dropped when read."""
        store = InMemorySessionStore(clock=clock)
        store.put(make_session(clock, ttl=timedelta(minutes=1)))
        clock.advance(minutes=2)

        store.get("s-1")

        assert len(store) == 0


class TestSQLiteStore:
    """Test SQLite specifics."""

    def test_persists_across_instances(self, clock, tmp_path):
        """A second adapter on the same file sees the session."""
        path = tmp_path / "sessions.db"
        SQLiteSessionStore(path, clock=clock).put(make_session(clock))

        assert SQLiteSessionStore(path, clock=clock).get("s-1") is not None

    def test_sqlite_errors_become_store_unavailable(self, clock, tmp_path):
        """Driver errors surface as StoreUnavailable."""
        path = tmp_path / "sessions.db"
        store = SQLiteSessionStore(path, clock=clock)

        conn = sqlite3.connect(str(path))
        conn.execute("DROP TABLE sessions")
        conn.commit()
        conn.close()

        with pytest.raises(StoreUnavailable):
            store.get("s-1")

    def test_unopenable_path(self, clock, tmp_path):
        """A path that can't be opened fails at construction."""
        with pytest.raises(StoreUnavailable):
            SQLiteSessionStore(tmp_path / "missing" / "sessions.db", clock=clock)
