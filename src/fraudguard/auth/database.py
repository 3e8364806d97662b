"""
Session store adapters.

Thread-safe persistence for session records, keyed by session id and by user
id. Neither adapter ever hands back a session whose absolute expiry has
passed. I/O failures surface as StoreUnavailable.
"""

import json
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Union

from loguru import logger

from .evaluator import utcnow
from .exceptions import StoreUnavailable
from .models import Session


class SessionStore(ABC):
    """
    Session persistence interface.

    Every operation is atomic with respect to a single session id.
    """

    @abstractmethod
    def put(self, session: Session) -> None:
        """Insert or replace a session."""

    @abstractmethod
    def get(self, session_id: str) -> Optional[Session]:
        """Session by id, or None if absent or past its absolute expiry."""

    @abstractmethod
    def get_by_user(self, user_id: str) -> List[Session]:
        """Unexpired sessions owned by a user, oldest first."""

    @abstractmethod
    def remove(self, session_id: str) -> bool:
        """Delete one session. Returns True if it existed."""

    @abstractmethod
    def remove_all(self, user_id: str) -> int:
        """Delete every session of a user. Returns the number removed."""

    @abstractmethod
    def cleanup_expired_sessions(self) -> int:
        """Drop sessions past their absolute expiry."""


class InMemorySessionStore(SessionStore):
    """
    Dict-backed store with TTL semantics.

    Expired records are dropped lazily when read and in bulk by
    ``cleanup_expired_sessions``. Stored sessions are copies, so callers
    can't mutate persisted state by accident.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock
        self._lock = threading.RLock()
        self._sessions: Dict[str, Session] = {}

    def put(self, session: Session) -> None:
        with self._lock:
            self._sessions[session.session_id] = session.copy()

    def get(self, session_id: str) -> Optional[Session]:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            if session.expires_at <= self._clock():
                del self._sessions[session_id]
                return None
            return session.copy()

    def get_by_user(self, user_id: str) -> List[Session]:
        with self._lock:
            now = self._clock()
            owned = [
                s for s in self._sessions.values()
                if s.user_id == user_id and s.expires_at > now
            ]
            return [s.copy() for s in sorted(owned, key=lambda s: s.created_at)]

    def remove(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def remove_all(self, user_id: str) -> int:
        with self._lock:
            doomed = [sid for sid, s in self._sessions.items() if s.user_id == user_id]
            for sid in doomed:
                del self._sessions[sid]
            return len(doomed)

    def cleanup_expired_sessions(self) -> int:
        with self._lock:
            now = self._clock()
            doomed = [sid for sid, s in self._sessions.items() if s.expires_at <= now]
            for sid in doomed:
                del self._sessions[sid]

            if doomed:
                logger.info(f"Cleaned up {len(doomed)} expired sessions")

            return len(doomed)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


def _iso(value: datetime) -> str:
    """UTC ISO timestamp with fixed precision, so string order is time order."""
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


class SQLiteSessionStore(SessionStore):
    """
    SQLite-backed session store.

    All operations are protected by threading.RLock for thread safety; each
    call opens its own connection.
    """

    def __init__(
        self,
        db_path: Union[Path, str],
        timeout: float = 3.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize database.

        Args:
            db_path: Path to SQLite database file
            timeout: Seconds to wait on a locked database file
            clock: Source of "now" for expiry filtering
        """
        self.db_path = Path(db_path)
        self.timeout = timeout
        self._clock = clock
        self._lock = threading.RLock()
        self._init_db()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=self.timeout)
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Cannot open session store: {e}") from e
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StoreUnavailable(f"Session store error: {e}") from e
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Create tables if they don't exist."""
        with self._lock, self._connect() as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS sessions (
                    session_id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    role TEXT NOT NULL,
                    custom_permissions TEXT NOT NULL,
                    temporary_grants TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    last_activity_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL,
                    remember_me INTEGER DEFAULT 0,
                    state TEXT NOT NULL,
                    warning_reason TEXT
                )
            """)

            cursor.execute("CREATE INDEX IF NOT EXISTS idx_sessions_user ON sessions(user_id)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_sessions_expiry ON sessions(expires_at)")

        logger.info(f"Session database initialized: {self.db_path}")

    def _row_to_session(self, row) -> Session:
        return Session.from_record({
            "sessionId": row[0],
            "userId": row[1],
            "role": row[2],
            "customPermissions": json.loads(row[3]),
            "temporaryGrants": json.loads(row[4]),
            "createdAt": row[5],
            "lastActivityAt": row[6],
            "expiresAt": row[7],
            "rememberMe": bool(row[8]),
            "state": row[9],
            "warningReason": row[10],
        })

    def put(self, session: Session) -> None:
        record = session.to_record()
        with self._lock, self._connect() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO sessions (
                    session_id, user_id, role, custom_permissions, temporary_grants,
                    created_at, last_activity_at, expires_at, remember_me, state,
                    warning_reason
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                session.session_id,
                session.user_id,
                record["role"],
                json.dumps(record["customPermissions"]),
                json.dumps(record["temporaryGrants"]),
                _iso(session.created_at),
                _iso(session.last_activity_at),
                _iso(session.expires_at),
                1 if session.remember_me else 0,
                record["state"],
                record["warningReason"],
            ))

    def get(self, session_id: str) -> Optional[Session]:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM sessions WHERE session_id = ? AND expires_at > ?",
                (session_id, _iso(self._clock())),
            ).fetchone()

        if not row:
            return None
        return self._row_to_session(row)

    def get_by_user(self, user_id: str) -> List[Session]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM sessions
                WHERE user_id = ? AND expires_at > ?
                ORDER BY created_at
                """,
                (user_id, _iso(self._clock())),
            ).fetchall()

        return [self._row_to_session(row) for row in rows]

    def remove(self, session_id: str) -> bool:
        with self._lock, self._connect() as conn:
            cursor = conn.execute("DELETE FROM sessions WHERE session_id = ?", (session_id,))
            return cursor.rowcount > 0

    def remove_all(self, user_id: str) -> int:
        with self._lock, self._connect() as conn:
            cursor = conn.execute("DELETE FROM sessions WHERE user_id = ?", (user_id,))
            deleted = cursor.rowcount

        if deleted > 0:
            logger.info(f"Removed {deleted} sessions for user {user_id}")

        return deleted

    def cleanup_expired_sessions(self) -> int:
        """
        Remove expired sessions.

        Returns:
            Number of sessions deleted
        """
        with self._lock, self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM sessions WHERE expires_at <= ?", (_iso(self._clock()),)
            )
            deleted = cursor.rowcount

        if deleted > 0:
            logger.info(f"Cleaned up {deleted} expired sessions")

        return deleted
