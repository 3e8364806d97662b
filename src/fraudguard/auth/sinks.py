"""
Collaborator interfaces and stock implementations.

The engine talks to the outside world through three narrow interfaces:
a credential verifier, an audit sink and a notification sink.
"""

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Protocol

from loguru import logger

from .evaluator import utcnow
from .exceptions import AccountLocked, InvalidCredentials
from .models import AuditEvent, Principal


@dataclass(frozen=True)
class Notification:
    """
    User-facing message.

    Attributes:
        title: Short heading
        description: Body text
        level: "info", "warning" or "error"
    """
    title: str
    description: str
    level: str = "info"


class CredentialVerifier(Protocol):
    """Validates an identifier/secret pair."""

    def verify(self, identifier: str, secret: str) -> Principal:
        """
        Returns the principal, or raises InvalidCredentials, AccountLocked
        or StoreUnavailable.
        """
        ...


class AuditSink(Protocol):
    def record(self, event: AuditEvent) -> None:
        ...


class NotificationSink(Protocol):
    def notify(self, message: Notification) -> None:
        ...


class LoggingAuditSink:
    """Writes audit events to the log."""

    def record(self, event: AuditEvent) -> None:
        session = event.session_id[:8] if event.session_id else "-"
        logger.info(
            f"AUDIT {event.action} user={event.user_id} session={session} "
            f"{event.metadata}"
        )


class LoggingNotificationSink:
    """Writes user notifications to the log."""

    def notify(self, message: Notification) -> None:
        log = logger.warning if message.level in ("warning", "error") else logger.info
        log(f"NOTIFY [{message.title}] {message.description}")


class CollectingAuditSink:
    """Keeps audit events in memory."""

    def __init__(self):
        self._lock = threading.Lock()
        self.events: List[AuditEvent] = []

    def record(self, event: AuditEvent) -> None:
        with self._lock:
            self.events.append(event)

    def actions(self) -> List[str]:
        with self._lock:
            return [event.action for event in self.events]


class CollectingNotificationSink:
    """Keeps notifications in memory."""

    def __init__(self):
        self._lock = threading.Lock()
        self.messages: List[Notification] = []

    def notify(self, message: Notification) -> None:
        with self._lock:
            self.messages.append(message)

    def titles(self) -> List[str]:
        with self._lock:
            return [message.title for message in self.messages]


class StaticCredentialVerifier:
    """
    In-memory verifier for tests and local demos.

    Compares secrets as plain strings and locks an identifier after
    ``max_attempts`` consecutive failures.
    """

    def __init__(
        self,
        accounts: Optional[Dict[str, tuple]] = None,
        max_attempts: int = 5,
        lockout: timedelta = timedelta(minutes=15),
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize verifier.

        Args:
            accounts: identifier -> (secret, Principal)
            max_attempts: Failures allowed before lockout
            lockout: Lockout duration
            clock: Source of "now"
        """
        self._accounts: Dict[str, tuple] = {
            self._key(identifier): account for identifier, account in (accounts or {}).items()
        }
        self._failures: Dict[str, int] = {}
        self._locked_until: Dict[str, datetime] = {}
        self._lock = threading.Lock()
        self.max_attempts = max_attempts
        self.lockout = lockout
        self._clock = clock

    @staticmethod
    def _key(identifier: str) -> str:
        return identifier.strip().lower()

    def add_account(self, identifier: str, secret: str, principal: Principal) -> None:
        with self._lock:
            self._accounts[self._key(identifier)] = (secret, principal)

    def verify(self, identifier: str, secret: str) -> Principal:
        key = self._key(identifier)
        now = self._clock()

        with self._lock:
            locked_until = self._locked_until.get(key)
            if locked_until is not None:
                if locked_until > now:
                    raise AccountLocked(locked_until - now)
                del self._locked_until[key]
                self._failures.pop(key, None)

            account = self._accounts.get(key)
            if account is None or account[0] != secret:
                failures = self._failures.get(key, 0) + 1
                self._failures[key] = failures
                if failures >= self.max_attempts:
                    self._locked_until[key] = now + self.lockout
                    raise AccountLocked(self.lockout)
                raise InvalidCredentials()

            self._failures.pop(key, None)
            return account[1]
