"""
Tests for the authorization context façade.
"""

import pytest

from fraudguard.auth import (
    AuthorizationContext,
    InMemorySessionStore,
    Permission,
    PermissionDeniedError,
    Role,
    SessionNotFound,
    SessionState,
    SQLiteSessionStore,
    StoreUnavailable,
    build_default_context,
)


@pytest.fixture
def context(verifier, settings, audit, notifications, clock, timers):
    context = build_default_context(
        verifier,
        settings=settings,
        audit_sink=audit,
        notification_sink=notifications,
        clock=clock,
        timer_factory=timers,
    )
    yield context
    context.shutdown()


class TestWiring:
    """Test build_default_context."""

    def test_in_memory_by_default(self, context):
        """Without a store path the context keeps sessions in memory."""
        assert isinstance(context, AuthorizationContext)
        assert isinstance(context.manager.store, InMemorySessionStore)

    def test_sqlite_when_path_set(self, verifier, settings, clock, timers, tmp_path):
        """A store path selects the SQLite adapter."""
        settings = settings.model_copy(update={"store_path": str(tmp_path / "sessions.db")})
        context = build_default_context(verifier, settings=settings, clock=clock, timer_factory=timers)
        try:
            assert isinstance(context.manager.store, SQLiteSessionStore)
            sid = context.login("officer@example.com", "officer-pass").session.session_id
            assert context.validate(sid)
        finally:
            context.shutdown()


class TestQueries:
    """Test permission queries by session id."""

    def test_permissions_follow_session(self, context):
        """Queries answer for the principal bound to the session."""
        sid = context.login("officer@example.com", "officer-pass").session.session_id

        assert context.has_permission(sid, Permission.REPORTS_ASSIGN)
        assert not context.has_permission(sid, Permission.USERS_DELETE)
        assert context.has_any_permission(sid, [Permission.USERS_DELETE, Permission.REPORTS_VIEW_ALL])
        assert context.has_all_permissions(sid, [Permission.REPORTS_VIEW_ALL, Permission.REPORTS_RESOLVE])
        assert context.has_role(sid, Role.OFFICER)
        assert context.can_access_resource(sid, "reports", "resolve")
        assert context.can_manage(sid, Role.CITIZEN)
        assert Permission.DASHBOARD_OFFICER in context.permissions(sid)

    def test_access_list_vs_hierarchy(self, context):
        """Admins aren't on officer-only lists but do outrank officers."""
        sid = context.login("admin@example.com", "admin-pass").session.session_id

        assert not context.has_any_role(sid, [Role.OFFICER])
        assert context.meets_minimum_role(sid, Role.OFFICER)
        assert context.check(sid, required_roles=[Role.ADMIN, Role.OFFICER], any_role=True)

    def test_unknown_session_has_no_access(self, context):
        """Unknown sessions answer no to everything."""
        assert context.principal("nope") is None
        assert context.permissions("nope") == frozenset()
        assert not context.has_permission("nope", Permission.REPORTS_CREATE)
        assert not context.has_role("nope", Role.CITIZEN)
        assert not context.check("nope")

    def test_logged_out_session_has_no_access(self, context):
        """Access ends with the session."""
        sid = context.login("citizen@example.com", "citizen-pass").session.session_id
        context.logout(sid)

        assert not context.has_permission(sid, Permission.REPORTS_CREATE)

    def test_expired_session_has_no_access(self, context, timers):
        """Access ends when the session expires."""
        sid = context.login("citizen@example.com", "citizen-pass").session.session_id

        timers.advance(minutes=30)

        assert not context.has_permission(sid, Permission.REPORTS_CREATE)

    def test_store_outage_denies(self, context, monkeypatch):
        """Queries degrade to no access when the store is down."""
        sid = context.login("citizen@example.com", "citizen-pass").session.session_id

        def unavailable(session_id):
            raise StoreUnavailable("down")

        monkeypatch.setattr(context.manager.store, "get", unavailable)

        assert not context.has_permission(sid, Permission.REPORTS_CREATE)


class TestLifecycle:
    """Test lifecycle pass-throughs and subscriptions."""

    def test_activity_and_extend(self, context, timers):
        """Activity and extend keep a session usable."""
        sid = context.login("citizen@example.com", "citizen-pass").session.session_id

        timers.advance(minutes=20)
        context.record_activity(sid)
        timers.advance(minutes=26)
        assert context.extend(sid)
        timers.advance(minutes=20)

        assert context.validate(sid)

    def test_on_session_change(self, context):
        """Subscribers see transitions until they unsubscribe."""
        events = []
        unsubscribe = context.on_session_change(events.append)

        sid = context.login("citizen@example.com", "citizen-pass").session.session_id
        unsubscribe()
        context.logout(sid)

        assert [e.current for e in events] == [
            SessionState.AUTHENTICATING,
            SessionState.ACTIVE,
        ]


class TestRaisingGuards:
    """Test the require_* helpers."""

    def test_require_principal(self, context):
        """A live session yields its principal."""
        sid = context.login("officer@example.com", "officer-pass").session.session_id

        assert context.require_principal(sid).user_id == "u-officer"

    def test_require_principal_unknown(self, context):
        """Unknown sessions raise SessionNotFound."""
        with pytest.raises(SessionNotFound) as exc_info:
            context.require_principal("missing-session")

        assert exc_info.value.session_id == "missing-session"

    def test_require_permission(self, context):
        """Missing permissions raise PermissionDeniedError."""
        sid = context.login("citizen@example.com", "citizen-pass").session.session_id

        assert context.require_permission(sid, Permission.REPORTS_CREATE).user_id == "u-citizen"
        with pytest.raises(PermissionDeniedError):
            context.require_permission(sid, Permission.USERS_DELETE)
