"""
Session lifecycle manager.

Owns the session state machine:

    Unauthenticated -> Authenticating -> Active <-> Warning -> Expired | Terminated
                                                              -> Unauthenticated

All mutations of one session run under that session's lock, and conflict
resolution runs under the owning user's lock (user lock first, then session
lock). Store calls are bounded by a timeout and retried with exponential
backoff; a timeout counts as StoreUnavailable, never as "session invalid".
"""

import secrets
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Set, Tuple

from loguru import logger
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config import SessionSettings, load_settings
from .database import SessionStore
from .evaluator import AuthorizationEvaluator, utcnow
from .exceptions import AccountLocked, ConflictError, InvalidCredentials, StoreUnavailable
from .locks import KeyedLock
from .models import (
    LIVE_STATES,
    AuditEvent,
    ConflictPolicy,
    LoginResult,
    Principal,
    Session,
    SessionChange,
    SessionConflict,
    SessionState,
    TerminationReason,
    WarningReason,
)
from .scheduler import ExpiryScheduler
from .sinks import (
    AuditSink,
    CredentialVerifier,
    LoggingAuditSink,
    LoggingNotificationSink,
    Notification,
    NotificationSink,
)

SessionListener = Callable[[SessionChange], None]


def _short(session_id: Optional[str]) -> str:
    return session_id[:8] if session_id else "-"


class SessionLifecycleManager:
    """
    Session creation, validation, renewal and teardown.

    Combines the credential verifier, the session store and the expiry
    scheduler to provide:
    - Login with concurrent-session conflict resolution
    - Logout that always succeeds from the caller's point of view
    - Activity tracking and explicit extension
    - Warning and expiry transitions driven by the scheduler
    """

    def __init__(
        self,
        store: SessionStore,
        verifier: CredentialVerifier,
        settings: Optional[SessionSettings] = None,
        evaluator: Optional[AuthorizationEvaluator] = None,
        scheduler: Optional[ExpiryScheduler] = None,
        audit_sink: Optional[AuditSink] = None,
        notification_sink: Optional[NotificationSink] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize manager.

        Args:
            store: Session store adapter
            verifier: Credential verifier
            settings: Engine settings (default: loaded from environment)
            evaluator: Authorization evaluator
            scheduler: Expiry scheduler; its handlers are bound to this manager
            audit_sink: Receives security events
            notification_sink: Receives user-facing messages
            clock: Source of "now"
        """
        self.settings = settings or load_settings()
        self.store = store
        self.verifier = verifier
        self.evaluator = evaluator or AuthorizationEvaluator(clock=clock)
        self.scheduler = scheduler or ExpiryScheduler(
            self.settings.warning_threshold, clock=clock
        )
        self.scheduler.bind(self._handle_warning, self._handle_expired)
        self.audit_sink = audit_sink or LoggingAuditSink()
        self.notification_sink = notification_sink or LoggingNotificationSink()
        self._clock = clock

        self._locks = KeyedLock()
        self._listeners: List[SessionListener] = []
        self._listeners_lock = threading.Lock()
        # session id -> (user id, last known state) for sessions this engine runs
        self._live: Dict[str, Tuple[str, SessionState]] = {}
        # sessions logged out while the store delete was failing
        self._revoked: Set[str] = set()
        self._executor = ThreadPoolExecutor(
            max_workers=8, thread_name_prefix="session-store"
        )

    # ========================================================================
    # Login / Logout
    # ========================================================================

    def login(
        self, identifier: str, secret: str, remember_me: bool = False
    ) -> LoginResult:
        """
        Authenticate and open a session.

        Args:
            identifier: Email or username
            secret: Password
            remember_me: Use the long absolute-expiry window

        Returns:
            LoginResult with the new session and, if prior sessions were
            terminated, the conflict notice

        Raises:
            InvalidCredentials: Identifier or secret wrong
            AccountLocked: Too many failed attempts
            ConflictError: Live sessions exist and the policy is reject_new
            StoreUnavailable: Verifier or store unreachable
        """
        self._emit(SessionChange(
            None, None, SessionState.UNAUTHENTICATED, SessionState.AUTHENTICATING
        ))

        try:
            principal = self.verifier.verify(identifier, secret)
        except (InvalidCredentials, AccountLocked, StoreUnavailable) as e:
            self._login_failed(identifier, None, e)
            raise

        try:
            result = self._open_session(principal, remember_me)
        except (ConflictError, StoreUnavailable) as e:
            self._login_failed(identifier, principal.user_id, e)
            raise

        self._notify("Welcome!", "You have been successfully logged in.")
        if result.conflict is not None:
            self._notify("Multiple Sessions Detected", result.conflict.message)

        logger.success(
            f"User authenticated: {principal.user_id} "
            f"(session {_short(result.session.session_id)})"
        )
        return result

    def _login_failed(self, identifier: str, user_id: Optional[str], error: Exception) -> None:
        logger.warning(f"Login failed for '{identifier}': {type(error).__name__}")
        self._audit("login.failed", user_id=user_id, metadata={
            "identifier": identifier,
            "error": type(error).__name__,
        })

        if isinstance(error, AccountLocked):
            self._notify("Account Temporarily Locked", error.user_message, "error")
        elif isinstance(error, ConflictError):
            self._notify("Already Signed In", error.user_message, "warning")
        else:
            self._notify("Login Failed", error.user_message, "error")

        self._emit(SessionChange(
            None, user_id, SessionState.AUTHENTICATING, SessionState.UNAUTHENTICATED
        ))

    def _open_session(self, principal: Principal, remember_me: bool) -> LoginResult:
        policy = self.settings.conflict_policy

        with self._locks.hold(f"user:{principal.user_id}"):
            existing = [
                s for s in self._call_store("get_by_user", self.store.get_by_user, principal.user_id)
                if s.state in LIVE_STATES and s.session_id not in self._revoked
            ]

            conflict = None
            if existing:
                existing_ids = [s.session_id for s in existing]
                conflict = SessionConflict(existing_ids, policy)
                logger.warning(
                    f"Session conflict for user {principal.user_id}: "
                    f"{len(existing_ids)} live session(s), policy={policy.value}"
                )
                self._audit("session.conflict", user_id=principal.user_id, metadata={
                    "existing_sessions": existing_ids,
                    "resolution": policy.value,
                })
                if policy is ConflictPolicy.REJECT_NEW:
                    raise ConflictError(existing_ids)

            now = self._clock()
            ttl = self.settings.remember_me_ttl if remember_me else self.settings.session_ttl
            session = Session(
                session_id=secrets.token_urlsafe(32),
                user_id=principal.user_id,
                role=principal.role,
                custom_permissions=frozenset(principal.custom_permissions),
                temporary_grants=tuple(principal.temporary_grants),
                created_at=now,
                last_activity_at=now,
                expires_at=now + ttl,
                remember_me=remember_me,
                state=SessionState.ACTIVE,
            )

            # New session is persisted before old ones go, so a store failure
            # here leaves the user's previous sessions untouched.
            self._call_store("put", self.store.put, session)

            with self._locks.hold(session.session_id):
                self._live[session.session_id] = (session.user_id, SessionState.ACTIVE)
                self._arm(session)

            for old in existing:
                with self._locks.hold(old.session_id):
                    self._end_session(
                        old.session_id,
                        old.user_id,
                        old.state,
                        SessionState.TERMINATED,
                        TerminationReason.CONFLICT,
                    )

        self._audit("session.created", user_id=session.user_id, session_id=session.session_id,
                    metadata={"remember_me": remember_me, "role": session.role.value})
        self._emit(SessionChange(
            session.session_id, session.user_id,
            SessionState.AUTHENTICATING, SessionState.ACTIVE,
        ))

        return LoginResult(
            session=session.copy(),
            permissions=self.evaluator.effective_permissions(session, now),
            conflict=conflict,
        )

    def logout(self, session_id: str) -> None:
        """
        End a session at the user's request.

        Never raises. If the store delete fails the session is still treated
        as gone by this engine, and the failure goes to the audit sink.
        Logging out an unknown or already-ended session is a no-op.
        """
        with self._locks.hold(session_id):
            if session_id in self._revoked:
                self._retry_removal(session_id)
                return

            lookup_failed = False
            try:
                session = self._call_store("get", self.store.get, session_id)
            except StoreUnavailable as e:
                logger.error(f"Logout lookup failed for session {_short(session_id)}: {e}")
                session = None
                lookup_failed = True

            tracked = self._live.get(session_id)
            if session is None and tracked is None:
                if lookup_failed:
                    self.scheduler.cancel(session_id)
                    self._retry_removal(session_id)
                    return
                logger.debug(f"Logout for unknown session {_short(session_id)}")
                return

            user_id = session.user_id if session else tracked[0]
            previous = session.state if session else tracked[1]
            self._end_session(
                session_id, user_id, previous,
                SessionState.TERMINATED, TerminationReason.LOGOUT,
            )

        self._notify("Logged Out", "You have been successfully logged out.")
        logger.info(f"User logged out: {user_id} (session {_short(session_id)})")

    def terminate_user_sessions(self, user_id: str, actor: Optional[str] = None) -> int:
        """
        Forcibly end every session of a user (administrative removeAll).

        Returns:
            Number of sessions removed from the store

        Raises:
            StoreUnavailable: Store unreachable after retries
        """
        with self._locks.hold(f"user:{user_id}"):
            sessions = self._call_store("get_by_user", self.store.get_by_user, user_id)
            removed = self._call_store("remove_all", self.store.remove_all, user_id)

            ids = {s.session_id: s.state for s in sessions}
            for session_id, (owner, state) in list(self._live.items()):
                if owner == user_id:
                    ids.setdefault(session_id, state)

            for session_id, state in ids.items():
                with self._locks.hold(session_id):
                    self.scheduler.cancel(session_id)
                    self._live.pop(session_id, None)
                    self._revoked.discard(session_id)
                    self._emit_end(session_id, user_id, state,
                                   SessionState.TERMINATED, TerminationReason.ADMIN)

        self._audit("session.admin_terminated", user_id=user_id, metadata={
            "actor": actor,
            "sessions": sorted(ids),
        })
        if ids:
            self._notify("Session Ended", "Your session was ended by an administrator.", "warning")
        logger.info(f"Terminated {len(ids)} session(s) for user {user_id} (actor={actor})")
        return removed

    # ========================================================================
    # Validation / Activity / Extension
    # ========================================================================

    def validate(self, session_id: str, now: Optional[datetime] = None) -> bool:
        """
        Check that a session exists, is live and has not passed either deadline.

        Read-only: does not count as activity.

        Raises:
            StoreUnavailable: Store unreachable (never reported as invalid)
        """
        if session_id in self._revoked:
            return False

        session = self._call_store("get", self.store.get, session_id)
        if session is None or session.state not in LIVE_STATES:
            return False

        now = now or self._clock()
        return now < session.deadline(self.settings.inactivity_timeout)

    def record_activity(self, session_id: str, now: Optional[datetime] = None) -> None:
        """
        Record user activity on a session.

        Advances last activity, restarts the inactivity countdown and, if the
        session is in WARNING because of inactivity, returns it to ACTIVE.
        Activity on an ended session is ignored. Activity arriving after a
        deadline has passed does not revive the session; it expires it.
        """
        now = now or self._clock()

        with self._locks.hold(session_id):
            if session_id in self._revoked:
                return

            session = self._call_store("get", self.store.get, session_id)
            if session is None or session.state not in LIVE_STATES:
                self._reap_missing(session_id, now)
                return

            if now >= session.deadline(self.settings.inactivity_timeout):
                self._expire(session, now)
                return

            updated = session.copy(last_activity_at=max(session.last_activity_at, now))
            if (
                session.state is SessionState.WARNING
                and session.warning_reason is WarningReason.INACTIVITY
            ):
                updated.state = SessionState.ACTIVE
                updated.warning_reason = None

            tracked = session_id in self._live
            self._call_store("put", self.store.put, updated)

            inactivity_deadline = updated.inactivity_deadline(self.settings.inactivity_timeout)
            if not self.scheduler.touch(session_id, inactivity_deadline):
                if tracked:
                    # Expiry already signalled; its handler is waiting on this lock
                    self._expire(updated, self._clock())
                    return
                # Session loaded from a persistent store after a restart
                self._arm(updated)
            self._live[session_id] = (updated.user_id, updated.state)

            if updated.state is not session.state:
                self._emit(SessionChange(
                    session_id, updated.user_id, session.state, updated.state
                ))

    def extend(self, session_id: str) -> bool:
        """
        Explicit user-initiated renewal.

        Moves the absolute expiry to at least ``now + renewal_window``, counts
        as activity, and returns the session to ACTIVE.

        Returns:
            False if the session is gone, ended, or already past a deadline

        Raises:
            StoreUnavailable: Store unreachable after retries
        """
        now = self._clock()

        with self._locks.hold(session_id):
            if session_id in self._revoked:
                return False

            session = self._call_store("get", self.store.get, session_id)
            if session is None or session.state not in LIVE_STATES:
                self._reap_missing(session_id, now)
                return False

            if now >= session.deadline(self.settings.inactivity_timeout):
                self._expire(session, now)
                return False

            updated = session.copy(
                last_activity_at=now,
                expires_at=max(session.expires_at, now + self.settings.renewal_window),
                state=SessionState.ACTIVE,
                warning_reason=None,
            )
            self._call_store("put", self.store.put, updated)
            self._live[session_id] = (updated.user_id, updated.state)
            self._arm(updated)

        if session.state is not SessionState.ACTIVE:
            self._emit(SessionChange(
                session_id, updated.user_id, session.state, SessionState.ACTIVE
            ))
        self._audit("session.extended", user_id=updated.user_id, session_id=session_id,
                    metadata={"expires_at": updated.expires_at.isoformat()})
        self._notify("Session Extended", "Your session has been extended successfully.")
        return True

    # ========================================================================
    # Read helpers
    # ========================================================================

    def get_session(self, session_id: str) -> Optional[Session]:
        """Stored session, or None if absent, revoked or ended."""
        if session_id in self._revoked:
            return None
        session = self._call_store("get", self.store.get, session_id)
        if session is None or session.state not in LIVE_STATES:
            return None
        return session

    def list_user_sessions(self, user_id: str) -> List[Session]:
        sessions = self._call_store("get_by_user", self.store.get_by_user, user_id)
        return [s for s in sessions if s.session_id not in self._revoked]

    def time_until_expiry(self, session: Session, now: Optional[datetime] = None) -> timedelta:
        """Time left before the earlier of the two deadlines, never negative."""
        now = now or self._clock()
        remaining = session.deadline(self.settings.inactivity_timeout) - now
        return max(remaining, timedelta(0))

    def is_about_to_expire(self, session: Session, now: Optional[datetime] = None) -> bool:
        remaining = self.time_until_expiry(session, now)
        return timedelta(0) < remaining <= self.settings.warning_threshold

    # ========================================================================
    # Listeners
    # ========================================================================

    def on_session_change(self, listener: SessionListener) -> Callable[[], None]:
        """
        Subscribe to state transitions.

        Returns:
            Callable that unsubscribes the listener
        """
        with self._listeners_lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._listeners_lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, change: SessionChange) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(change)
            except Exception as e:
                logger.error(f"Session listener failed: {e}")

    def _emit_end(
        self,
        session_id: str,
        user_id: str,
        previous: SessionState,
        final: SessionState,
        reason: TerminationReason,
    ) -> None:
        self._emit(SessionChange(session_id, user_id, previous, final, reason))
        self._emit(SessionChange(session_id, user_id, final, SessionState.UNAUTHENTICATED, reason))

    # ========================================================================
    # Scheduler signals
    # ========================================================================

    def _handle_warning(self, session_id: str, reason: WarningReason, generation: int) -> None:
        with self._locks.hold(session_id):
            if self.scheduler.is_superseded(session_id, generation):
                logger.debug(f"Stale warning for session {_short(session_id)} dropped")
                return

            try:
                session = self._call_store("get", self.store.get, session_id)
            except StoreUnavailable as e:
                self._defer_warning(session_id, reason, e)
                return

            if session is None or session.state not in LIVE_STATES:
                self._reap_missing(session_id, self._clock())
                return

            if WarningReason.ABSOLUTE in (reason, session.warning_reason):
                warning_reason = WarningReason.ABSOLUTE
            else:
                warning_reason = WarningReason.INACTIVITY

            updated = session.copy(state=SessionState.WARNING, warning_reason=warning_reason)
            try:
                self._call_store("put", self.store.put, updated)
            except StoreUnavailable as e:
                self._defer_warning(session_id, reason, e)
                return
            self._live[session_id] = (updated.user_id, SessionState.WARNING)

        remaining = self.time_until_expiry(updated)
        minutes = max(1, int(-(-remaining.total_seconds() // 60)))
        self._notify(
            "Session Expiring Soon",
            f"Your session will expire in {minutes} minutes. Extend it to stay signed in.",
            "warning",
        )
        self._audit("session.warning", user_id=updated.user_id, session_id=session_id,
                    metadata={"reason": reason.value})

        if session.state is not SessionState.WARNING:
            self._emit(SessionChange(
                session_id, updated.user_id, session.state, SessionState.WARNING
            ))

    def _defer_warning(self, session_id: str, reason: WarningReason, error: Exception) -> None:
        logger.error(
            f"Warning for session {_short(session_id)} not persisted, "
            f"retrying in {self.settings.warning_retry_seconds:g}s: {error}"
        )
        self.scheduler.defer_warning(session_id, reason, self.settings.warning_retry)

    def _handle_expired(self, session_id: str, generation: int) -> None:
        with self._locks.hold(session_id):
            if self.scheduler.is_superseded(session_id, generation):
                logger.debug(f"Stale expiry for session {_short(session_id)} dropped")
                return

            now = self._clock()
            try:
                session = self._call_store("get", self.store.get, session_id)
            except StoreUnavailable as e:
                logger.error(f"Expiry lookup failed for session {_short(session_id)}: {e}")
                session = None

            if session is None:
                self._reap_missing(session_id, now, expired=True)
                return

            self._expire(session, now)

    # ========================================================================
    # Teardown (caller holds the session lock)
    # ========================================================================

    def _expire(self, session: Session, now: datetime) -> None:
        idle = now >= session.inactivity_deadline(self.settings.inactivity_timeout)
        self._end_session(
            session.session_id, session.user_id, session.state,
            SessionState.EXPIRED, TerminationReason.EXPIRED,
        )
        if idle:
            self._notify("Session Expired", "Your session has expired due to inactivity.", "error")
        else:
            self._notify("Session Expired", "Your session has expired. Please sign in again.", "error")
        logger.info(f"Session expired: {_short(session.session_id)} (idle={idle})")

    def _reap_missing(self, session_id: str, now: datetime, expired: bool = False) -> None:
        """
        Clean up a session this engine still tracks but the store no longer returns.

        The store hides sessions past their absolute expiry, so a tracked
        session that disappears at or after that instant counts as expired;
        otherwise it was removed by someone else.
        """
        tracked = self._live.get(session_id)
        if tracked is None:
            self.scheduler.cancel(session_id)
            return

        deadlines = self.scheduler.deadlines(session_id)
        if deadlines is not None and now >= deadlines[1]:
            expired = True

        user_id, previous = tracked
        if expired:
            self._end_session(session_id, user_id, previous,
                              SessionState.EXPIRED, TerminationReason.EXPIRED)
            self._notify("Session Expired", "Your session has expired. Please sign in again.", "error")
        else:
            self._end_session(session_id, user_id, previous,
                              SessionState.TERMINATED, TerminationReason.REMOVED)

    def _end_session(
        self,
        session_id: str,
        user_id: str,
        previous: SessionState,
        final: SessionState,
        reason: TerminationReason,
    ) -> None:
        self.scheduler.cancel(session_id)
        self._live.pop(session_id, None)

        try:
            self._call_store("remove", self.store.remove, session_id)
            self._revoked.discard(session_id)
        except StoreUnavailable as e:
            self._revoked.add(session_id)
            logger.error(f"Could not remove session {_short(session_id)} from store: {e}")
            self._audit("session.remove_failed", user_id=user_id, session_id=session_id,
                        metadata={"reason": reason.value, "error": str(e)})

        action = "session.expired" if final is SessionState.EXPIRED else "session.terminated"
        self._audit(action, user_id=user_id, session_id=session_id,
                    metadata={"reason": reason.value})
        self._emit_end(session_id, user_id, previous, final, reason)

    def _retry_removal(self, session_id: str) -> None:
        try:
            self._call_store("remove", self.store.remove, session_id)
            self._revoked.discard(session_id)
        except StoreUnavailable as e:
            self._revoked.add(session_id)
            self._audit("session.remove_failed", session_id=session_id,
                        metadata={"reason": TerminationReason.LOGOUT.value, "error": str(e)})

    def cleanup_expired_sessions(self) -> int:
        """Purge expired records and retry deletes that failed earlier."""
        for session_id in list(self._revoked):
            with self._locks.hold(session_id):
                self._retry_removal(session_id)
        return self._call_store("cleanup", self.store.cleanup_expired_sessions)

    # ========================================================================
    # Plumbing
    # ========================================================================

    def _arm(self, session: Session) -> None:
        self.scheduler.arm(
            session.session_id,
            session.inactivity_deadline(self.settings.inactivity_timeout),
            session.expires_at,
        )

    def _call_store(self, operation: str, func, *args):
        """
        Run a store call with a timeout, retrying StoreUnavailable with backoff.

        Raises:
            StoreUnavailable: All attempts failed or timed out
        """
        retrying = Retrying(
            stop=stop_after_attempt(self.settings.store_retry_attempts),
            wait=wait_exponential(
                multiplier=self.settings.store_retry_backoff_seconds,
                max=self.settings.store_retry_max_backoff_seconds,
            ),
            retry=retry_if_exception_type(StoreUnavailable),
            before_sleep=lambda state: logger.warning(
                f"Session store {operation} failed "
                f"(attempt {state.attempt_number}): {state.outcome.exception()}"
            ),
            reraise=True,
        )
        return retrying(self._call_store_once, operation, func, *args)

    def _call_store_once(self, operation: str, func, *args):
        future = self._executor.submit(func, *args)
        try:
            return future.result(timeout=self.settings.store_timeout_seconds)
        except FutureTimeout as e:
            future.cancel()
            raise StoreUnavailable(f"Session store timed out during {operation}") from e

    def _audit(
        self,
        action: str,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> None:
        event = AuditEvent(
            action=action,
            timestamp=self._clock(),
            user_id=user_id,
            session_id=session_id,
            metadata=metadata or {},
        )
        try:
            self.audit_sink.record(event)
        except Exception as e:
            logger.error(f"Audit sink failed for {action}: {e}")

    def _notify(self, title: str, description: str, level: str = "info") -> None:
        try:
            self.notification_sink.notify(Notification(title, description, level))
        except Exception as e:
            logger.error(f"Notification sink failed: {e}")

    def shutdown(self) -> None:
        """Cancel all timers and release the store worker threads."""
        self.scheduler.shutdown()
        self._executor.shutdown(wait=False)
