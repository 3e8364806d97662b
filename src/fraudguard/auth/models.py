"""
Session and principal data models.

Data classes for principals, temporary grants, sessions, conflicts and the
events the engine emits.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from .permissions import Permission, Role


class SessionState(str, Enum):
    """Session lifecycle states."""
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    ACTIVE = "active"
    WARNING = "warning"
    EXPIRED = "expired"
    TERMINATED = "terminated"


LIVE_STATES = frozenset({SessionState.ACTIVE, SessionState.WARNING})


class WarningReason(str, Enum):
    """Which countdown pushed a session into WARNING."""
    INACTIVITY = "inactivity"
    ABSOLUTE = "absolute"


class ConflictPolicy(str, Enum):
    """What to do when a user logs in while already owning live sessions."""
    TERMINATE_EXISTING = "terminate_existing"
    REJECT_NEW = "reject_new"


class TerminationReason(str, Enum):
    """Why a session left the live states. Recorded for audit only."""
    LOGOUT = "logout"
    EXPIRED = "expired"
    CONFLICT = "conflict"
    ADMIN = "admin"
    REMOVED = "removed"


@dataclass(frozen=True)
class TemporaryGrant:
    """
    Time-boxed permission grant.

    Attributes:
        permissions: Permissions granted
        expires_at: Grant stops counting at this instant
        granted_by: Actor who approved the grant
        reason: Free-text justification
    """
    permissions: FrozenSet[Permission]
    expires_at: datetime
    granted_by: str
    reason: str = ""

    def is_active(self, now: datetime) -> bool:
        return self.expires_at > now


@dataclass(frozen=True)
class Principal:
    """
    Authenticated identity returned by the credential verifier.

    Attributes:
        user_id: Unique user identifier
        role: The user's role
        custom_permissions: Grants beyond the role defaults
        temporary_grants: Time-boxed grants
        email: Contact address, used for log context only
    """
    user_id: str
    role: Role
    custom_permissions: FrozenSet[Permission] = frozenset()
    temporary_grants: tuple = ()
    email: Optional[str] = None


@dataclass
class Session:
    """
    Live user session.

    Attributes:
        session_id: Opaque, unguessable identifier
        user_id: User who owns this session
        role: Role of the owning principal at login time
        custom_permissions: Principal's custom permissions at login time
        temporary_grants: Principal's temporary grants at login time
        created_at: Session creation timestamp
        last_activity_at: Last recorded activity
        expires_at: Absolute expiry
        remember_me: Whether the long expiry window was used
        state: Current lifecycle state
        warning_reason: Countdown that triggered WARNING, if any
    """
    session_id: str
    user_id: str
    role: Role
    created_at: datetime
    last_activity_at: datetime
    expires_at: datetime
    custom_permissions: FrozenSet[Permission] = frozenset()
    temporary_grants: tuple = ()
    remember_me: bool = False
    state: SessionState = SessionState.ACTIVE
    warning_reason: Optional[WarningReason] = None

    @property
    def principal(self) -> Principal:
        """The principal bound to this session."""
        return Principal(
            user_id=self.user_id,
            role=self.role,
            custom_permissions=self.custom_permissions,
            temporary_grants=self.temporary_grants,
        )

    def inactivity_deadline(self, inactivity_timeout: timedelta) -> datetime:
        return self.last_activity_at + inactivity_timeout

    def deadline(self, inactivity_timeout: timedelta) -> datetime:
        """Whichever comes first: inactivity or absolute expiry."""
        return min(self.inactivity_deadline(inactivity_timeout), self.expires_at)

    def copy(self, **changes) -> "Session":
        return replace(self, **changes)

    def to_record(self) -> Dict[str, Any]:
        """Logical persisted layout."""
        return {
            "sessionId": self.session_id,
            "userId": self.user_id,
            "role": self.role.value,
            "customPermissions": sorted(p.value for p in self.custom_permissions),
            "temporaryGrants": [
                {
                    "permissions": sorted(p.value for p in grant.permissions),
                    "expiresAt": grant.expires_at.isoformat(),
                    "grantedBy": grant.granted_by,
                    "reason": grant.reason,
                }
                for grant in self.temporary_grants
            ],
            "createdAt": self.created_at.isoformat(),
            "lastActivityAt": self.last_activity_at.isoformat(),
            "expiresAt": self.expires_at.isoformat(),
            "rememberMe": self.remember_me,
            "state": self.state.value,
            "warningReason": self.warning_reason.value if self.warning_reason else None,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Session":
        warning = record.get("warningReason")
        return cls(
            session_id=record["sessionId"],
            user_id=record["userId"],
            role=Role(record["role"]),
            custom_permissions=frozenset(
                Permission(p) for p in record.get("customPermissions", [])
            ),
            temporary_grants=tuple(
                TemporaryGrant(
                    permissions=frozenset(Permission(p) for p in grant["permissions"]),
                    expires_at=datetime.fromisoformat(grant["expiresAt"]),
                    granted_by=grant["grantedBy"],
                    reason=grant.get("reason", ""),
                )
                for grant in record.get("temporaryGrants", [])
            ),
            created_at=datetime.fromisoformat(record["createdAt"]),
            last_activity_at=datetime.fromisoformat(record["lastActivityAt"]),
            expires_at=datetime.fromisoformat(record["expiresAt"]),
            remember_me=bool(record.get("rememberMe", False)),
            state=SessionState(record.get("state", SessionState.ACTIVE.value)),
            warning_reason=WarningReason(warning) if warning else None,
        )


@dataclass(frozen=True)
class SessionConflict:
    """
    Login found the user already owning live sessions.

    Attributes:
        existing_sessions: IDs of the sessions found
        resolution: Policy applied
    """
    existing_sessions: List[str]
    resolution: ConflictPolicy

    @property
    def message(self) -> str:
        if self.resolution is ConflictPolicy.TERMINATE_EXISTING:
            return (
                "You have been logged in from another device. "
                "Previous sessions have been terminated."
            )
        return "You are already signed in on another device."


@dataclass(frozen=True)
class SessionChange:
    """
    State transition delivered to ``on_session_change`` listeners.

    ``session_id`` is None while a login is still authenticating.
    """
    session_id: Optional[str]
    user_id: Optional[str]
    previous: SessionState
    current: SessionState
    reason: Optional[TerminationReason] = None


@dataclass
class AuditEvent:
    """
    Security-relevant event for the audit sink.

    Attributes:
        action: Dotted action name (e.g. "session.created")
        timestamp: When it happened
        user_id: User involved, if known
        session_id: Session involved, if any
        metadata: Extra structured detail
    """
    action: str
    timestamp: datetime
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class LoginResult:
    """
    Successful login.

    Attributes:
        session: The new session
        permissions: Effective permissions at login time
        conflict: Conflict notice when prior sessions were terminated
    """
    session: Session
    permissions: FrozenSet[Permission]
    conflict: Optional[SessionConflict] = None
