"""
Authentication module for FraudGuard.

Provides session lifecycle management with inactivity and absolute expiry,
concurrent-session conflict handling, and role-based authorization.
"""

from .config import SessionSettings, configure_logging, load_settings
from .context import AuthorizationContext, build_default_context
from .database import InMemorySessionStore, SessionStore, SQLiteSessionStore
from .evaluator import AuthorizationEvaluator, check_permission, require_permission
from .exceptions import (
    AccountLocked,
    AuthError,
    ConfigurationError,
    ConflictError,
    InvalidCredentials,
    SessionNotFound,
    StoreUnavailable,
)
from .models import (
    AuditEvent,
    ConflictPolicy,
    LoginResult,
    Principal,
    Session,
    SessionChange,
    SessionConflict,
    SessionState,
    TemporaryGrant,
    TerminationReason,
    WarningReason,
)
from .permissions import (
    PERMISSION_GROUPS,
    RESOURCE_PERMISSIONS,
    ROLE_HIERARCHY,
    ROLE_PERMISSIONS,
    Permission,
    PermissionCatalog,
    PermissionDeniedError,
    Role,
    default_catalog,
    permissions_in_group,
)
from .scheduler import ExpiryScheduler
from .session_manager import SessionLifecycleManager
from .sinks import (
    CollectingAuditSink,
    CollectingNotificationSink,
    LoggingAuditSink,
    LoggingNotificationSink,
    Notification,
    StaticCredentialVerifier,
)

__all__ = [
    # Roles and permissions
    "Role",
    "Permission",
    "PermissionCatalog",
    "PermissionDeniedError",
    "ROLE_HIERARCHY",
    "ROLE_PERMISSIONS",
    "RESOURCE_PERMISSIONS",
    "PERMISSION_GROUPS",
    "default_catalog",
    "permissions_in_group",
    # Evaluation
    "AuthorizationEvaluator",
    "check_permission",
    "require_permission",
    # Models
    "Principal",
    "TemporaryGrant",
    "Session",
    "SessionState",
    "SessionConflict",
    "SessionChange",
    "ConflictPolicy",
    "TerminationReason",
    "WarningReason",
    "AuditEvent",
    "LoginResult",
    # Storage
    "SessionStore",
    "InMemorySessionStore",
    "SQLiteSessionStore",
    # Lifecycle
    "ExpiryScheduler",
    "SessionLifecycleManager",
    "AuthorizationContext",
    "build_default_context",
    # Collaborators
    "Notification",
    "LoggingAuditSink",
    "LoggingNotificationSink",
    "CollectingAuditSink",
    "CollectingNotificationSink",
    "StaticCredentialVerifier",
    # Errors
    "AuthError",
    "InvalidCredentials",
    "AccountLocked",
    "ConflictError",
    "StoreUnavailable",
    "SessionNotFound",
    "ConfigurationError",
    # Configuration
    "SessionSettings",
    "load_settings",
    "configure_logging",
]
