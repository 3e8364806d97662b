"""
Authorization context.

Single entry point for callers: session lifecycle operations plus permission
and role queries answered for the principal bound to a session.
"""

from datetime import datetime
from typing import Callable, FrozenSet, Iterable, Optional

from loguru import logger

from .config import SessionSettings, configure_logging, load_settings
from .database import InMemorySessionStore, SessionStore, SQLiteSessionStore
from .evaluator import (
    AuthorizationEvaluator,
    PermissionLike,
    RoleLike,
    require_permission,
    utcnow,
)
from .exceptions import SessionNotFound, StoreUnavailable
from .models import LoginResult, Principal, SessionChange
from .permissions import Permission
from .scheduler import ExpiryScheduler, TimerFactory, thread_timer
from .session_manager import SessionLifecycleManager
from .sinks import AuditSink, CredentialVerifier, NotificationSink


class AuthorizationContext:
    """
    Façade over the lifecycle manager and the evaluator.

    Permission queries take a session id and never raise: an unknown,
    ended or expired session, or an unreachable store, all answer
    "no access".
    """

    def __init__(self, manager: SessionLifecycleManager):
        self.manager = manager
        self.evaluator = manager.evaluator

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def login(self, identifier: str, secret: str, remember_me: bool = False) -> LoginResult:
        return self.manager.login(identifier, secret, remember_me)

    def logout(self, session_id: str) -> None:
        self.manager.logout(session_id)

    def extend(self, session_id: str) -> bool:
        return self.manager.extend(session_id)

    def record_activity(self, session_id: str, now: Optional[datetime] = None) -> None:
        self.manager.record_activity(session_id, now)

    def validate(self, session_id: str, now: Optional[datetime] = None) -> bool:
        return self.manager.validate(session_id, now)

    def on_session_change(self, listener: Callable[[SessionChange], None]) -> Callable[[], None]:
        return self.manager.on_session_change(listener)

    def shutdown(self) -> None:
        self.manager.shutdown()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def principal(self, session_id: str, now: Optional[datetime] = None) -> Optional[Principal]:
        """
        Principal bound to a valid session.

        Returns:
            None if the session is not valid at ``now`` or the store is down
        """
        try:
            if not self.manager.validate(session_id, now):
                return None
            session = self.manager.get_session(session_id)
        except StoreUnavailable as e:
            logger.warning(f"Denying access, session store unavailable: {e}")
            return None
        return session.principal if session else None

    def require_principal(self, session_id: str) -> Principal:
        """
        Principal bound to a valid session, for guards that prefer raising.

        Raises:
            SessionNotFound: Session unknown, ended or expired
            StoreUnavailable: Store unreachable
        """
        session = self.manager.get_session(session_id)
        if session is None or not self.manager.validate(session_id):
            raise SessionNotFound(session_id)
        return session.principal

    def require_permission(self, session_id: str, permission: PermissionLike) -> Principal:
        """
        Require a permission for the session's principal.

        Raises:
            SessionNotFound: Session unknown, ended or expired
            PermissionDeniedError: Principal lacks the permission
        """
        principal = self.require_principal(session_id)
        require_permission(principal, permission)
        return principal

    def permissions(self, session_id: str, now: Optional[datetime] = None) -> FrozenSet[Permission]:
        return self.evaluator.effective_permissions(self.principal(session_id, now), now)

    def has_permission(
        self, session_id: str, permission: PermissionLike, now: Optional[datetime] = None
    ) -> bool:
        return self.evaluator.has_permission(self.principal(session_id, now), permission, now)

    def has_any_permission(
        self, session_id: str, permissions: Iterable[PermissionLike], now: Optional[datetime] = None
    ) -> bool:
        return self.evaluator.has_any_permission(self.principal(session_id, now), permissions, now)

    def has_all_permissions(
        self, session_id: str, permissions: Iterable[PermissionLike], now: Optional[datetime] = None
    ) -> bool:
        return self.evaluator.has_all_permissions(self.principal(session_id, now), permissions, now)

    def has_role(self, session_id: str, role: RoleLike) -> bool:
        return self.evaluator.has_role(self.principal(session_id), role)

    def has_any_role(self, session_id: str, roles: Iterable[RoleLike]) -> bool:
        return self.evaluator.has_any_role(self.principal(session_id), roles)

    def meets_minimum_role(self, session_id: str, role: RoleLike) -> bool:
        return self.evaluator.meets_minimum_role(self.principal(session_id), role)

    def can_manage(self, session_id: str, target_role: RoleLike) -> bool:
        return self.evaluator.can_manage(self.principal(session_id), target_role)

    def can_access_resource(
        self, session_id: str, resource: str, action: str, now: Optional[datetime] = None
    ) -> bool:
        return self.evaluator.can_access_resource(
            self.principal(session_id, now), resource, action, now
        )

    def check(
        self,
        session_id: str,
        required_permissions: Optional[Iterable[PermissionLike]] = None,
        required_roles: Optional[Iterable[RoleLike]] = None,
        any_permission: bool = False,
        any_role: bool = False,
        now: Optional[datetime] = None,
    ) -> bool:
        """Combined guard check against the session's principal."""
        return self.evaluator.check(
            self.principal(session_id, now),
            required_permissions=required_permissions,
            required_roles=required_roles,
            any_permission=any_permission,
            any_role=any_role,
            now=now,
        )


def build_default_context(
    verifier: CredentialVerifier,
    settings: Optional[SessionSettings] = None,
    store: Optional[SessionStore] = None,
    audit_sink: Optional[AuditSink] = None,
    notification_sink: Optional[NotificationSink] = None,
    clock: Callable[[], datetime] = utcnow,
    timer_factory: TimerFactory = thread_timer,
) -> AuthorizationContext:
    """
    Wire a context from settings.

    Args:
        verifier: Credential verifier
        settings: Engine settings (default: loaded from environment)
        store: Session store (default: SQLite at ``settings.store_path`` if
            set, otherwise in memory)
        audit_sink: Audit sink (default: log)
        notification_sink: Notification sink (default: log)
        clock: Source of "now"
        timer_factory: Timer factory for the scheduler

    Returns:
        AuthorizationContext ready for use
    """
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    if store is None:
        if settings.store_path:
            store = SQLiteSessionStore(
                settings.store_path, timeout=settings.store_timeout_seconds, clock=clock
            )
        else:
            store = InMemorySessionStore(clock=clock)

    evaluator = AuthorizationEvaluator(clock=clock)
    scheduler = ExpiryScheduler(
        settings.warning_threshold, clock=clock, timer_factory=timer_factory
    )
    manager = SessionLifecycleManager(
        store=store,
        verifier=verifier,
        settings=settings,
        evaluator=evaluator,
        scheduler=scheduler,
        audit_sink=audit_sink,
        notification_sink=notification_sink,
        clock=clock,
    )

    logger.info(
        f"Authorization context ready (store={type(store).__name__}, "
        f"policy={settings.conflict_policy.value})"
    )
    return AuthorizationContext(manager)
