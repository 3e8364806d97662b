"""
Permission catalog for the fraud reporting portal.

This module provides:
- Permission definitions for portal resources
- The role hierarchy and each role's default permission set
- Resource/action lookup tables used by access guards

Default permission sets are cumulative: each role starts from the set of the
role directly below it. ``PermissionCatalog`` re-checks that property when it
is built and refuses to start if a hand edit broke it.
"""

from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Set, Union

from loguru import logger

from .exceptions import AuthError, ConfigurationError


class Permission(str, Enum):
    """
    Enum of all permissions in the portal.

    Values are ``resource:action[:scope]`` tokens.
    """
    # Reports
    REPORTS_VIEW_OWN = "reports:view:own"
    REPORTS_VIEW_ALL = "reports:view:all"
    REPORTS_CREATE = "reports:create"
    REPORTS_UPDATE_OWN = "reports:update:own"
    REPORTS_UPDATE_ALL = "reports:update:all"
    REPORTS_DELETE_OWN = "reports:delete:own"
    REPORTS_DELETE_ALL = "reports:delete:all"
    REPORTS_ASSIGN = "reports:assign"
    REPORTS_ESCALATE = "reports:escalate"
    REPORTS_RESOLVE = "reports:resolve"
    REPORTS_EXPORT = "reports:export"
    REPORTS_BULK_OPERATIONS = "reports:bulk_operations"

    # User management
    USERS_VIEW_ALL = "users:view:all"
    USERS_CREATE = "users:create"
    USERS_UPDATE = "users:update"
    USERS_DELETE = "users:delete"
    USERS_MANAGE_ROLES = "users:manage_roles"
    USERS_BULK_OPERATIONS = "users:bulk_operations"
    USERS_IMPERSONATE = "users:impersonate"

    # Analytics & dashboards
    ANALYTICS_VIEW_BASIC = "analytics:view:basic"
    ANALYTICS_VIEW_ADVANCED = "analytics:view:advanced"
    ANALYTICS_EXPORT = "analytics:export"
    DASHBOARD_ADMIN = "dashboard:admin"
    DASHBOARD_OFFICER = "dashboard:officer"

    # System
    SYSTEM_CONFIG = "system:config"
    SYSTEM_AUDIT_LOGS = "system:audit_logs"
    SYSTEM_BACKUP = "system:backup"
    SYSTEM_MAINTENANCE = "system:maintenance"

    # Data
    DATA_EXPORT = "data:export"
    DATA_IMPORT = "data:import"
    DATA_PURGE = "data:purge"

    # Community & education
    COMMUNITY_MODERATE = "community:moderate"
    EDUCATION_MANAGE = "education:manage"

    # Evidence
    EVIDENCE_VIEW = "evidence:view"
    EVIDENCE_UPLOAD = "evidence:upload"
    EVIDENCE_DELETE = "evidence:delete"

    # Notifications
    NOTIFICATIONS_SEND = "notifications:send"
    NOTIFICATIONS_BROADCAST = "notifications:broadcast"


class Role(str, Enum):
    """
    Portal roles, lowest privilege first.
    """
    CITIZEN = "citizen"           # Files and tracks own reports
    OFFICER = "officer"           # Works the report queue
    ADMIN = "admin"               # Manages users and exports
    SUPER_ADMIN = "super_admin"   # System configuration and data purge


# Higher number = more privileges
ROLE_HIERARCHY: Dict[Role, int] = {
    Role.CITIZEN: 1,
    Role.OFFICER: 2,
    Role.ADMIN: 3,
    Role.SUPER_ADMIN: 4,
}


_CITIZEN_PERMISSIONS: Set[Permission] = {
    Permission.REPORTS_VIEW_OWN,
    Permission.REPORTS_CREATE,
    Permission.REPORTS_UPDATE_OWN,
    Permission.REPORTS_DELETE_OWN,
    Permission.EVIDENCE_VIEW,
    Permission.EVIDENCE_UPLOAD,
    Permission.ANALYTICS_VIEW_BASIC,
}

_OFFICER_PERMISSIONS: Set[Permission] = _CITIZEN_PERMISSIONS | {
    Permission.REPORTS_VIEW_ALL,
    Permission.REPORTS_UPDATE_ALL,
    Permission.REPORTS_ASSIGN,
    Permission.REPORTS_RESOLVE,
    Permission.DASHBOARD_OFFICER,
    Permission.EVIDENCE_DELETE,
    Permission.COMMUNITY_MODERATE,
    Permission.NOTIFICATIONS_SEND,
}

_ADMIN_PERMISSIONS: Set[Permission] = _OFFICER_PERMISSIONS | {
    Permission.REPORTS_DELETE_ALL,
    Permission.REPORTS_ESCALATE,
    Permission.REPORTS_EXPORT,
    Permission.REPORTS_BULK_OPERATIONS,
    Permission.USERS_VIEW_ALL,
    Permission.USERS_CREATE,
    Permission.USERS_UPDATE,
    Permission.USERS_DELETE,
    Permission.USERS_MANAGE_ROLES,
    Permission.USERS_BULK_OPERATIONS,
    Permission.ANALYTICS_VIEW_ADVANCED,
    Permission.ANALYTICS_EXPORT,
    Permission.DASHBOARD_ADMIN,
    Permission.SYSTEM_AUDIT_LOGS,
    Permission.DATA_EXPORT,
    Permission.DATA_IMPORT,
    Permission.EDUCATION_MANAGE,
    Permission.NOTIFICATIONS_BROADCAST,
}

_SUPER_ADMIN_PERMISSIONS: Set[Permission] = _ADMIN_PERMISSIONS | {
    Permission.USERS_IMPERSONATE,
    Permission.SYSTEM_CONFIG,
    Permission.SYSTEM_BACKUP,
    Permission.SYSTEM_MAINTENANCE,
    Permission.DATA_PURGE,
}

# Map each role to its default permissions
ROLE_PERMISSIONS: Dict[Role, Set[Permission]] = {
    Role.CITIZEN: _CITIZEN_PERMISSIONS,
    Role.OFFICER: _OFFICER_PERMISSIONS,
    Role.ADMIN: _ADMIN_PERMISSIONS,
    Role.SUPER_ADMIN: _SUPER_ADMIN_PERMISSIONS,
}


# resource -> action -> permissions required (all of them)
RESOURCE_PERMISSIONS: Dict[str, Dict[str, List[Permission]]] = {
    "reports": {
        "view_own": [Permission.REPORTS_VIEW_OWN],
        "view_all": [Permission.REPORTS_VIEW_ALL],
        "create": [Permission.REPORTS_CREATE],
        "update_own": [Permission.REPORTS_UPDATE_OWN],
        "update_all": [Permission.REPORTS_UPDATE_ALL],
        "delete_own": [Permission.REPORTS_DELETE_OWN],
        "delete_all": [Permission.REPORTS_DELETE_ALL],
        "export": [Permission.REPORTS_EXPORT],
        "assign": [Permission.REPORTS_ASSIGN],
        "resolve": [Permission.REPORTS_RESOLVE],
    },
    "users": {
        "view": [Permission.USERS_VIEW_ALL],
        "create": [Permission.USERS_CREATE],
        "update": [Permission.USERS_UPDATE],
        "delete": [Permission.USERS_DELETE],
        "manage_roles": [Permission.USERS_MANAGE_ROLES],
    },
    "analytics": {
        "view_basic": [Permission.ANALYTICS_VIEW_BASIC],
        "view_advanced": [Permission.ANALYTICS_VIEW_ADVANCED],
        "export": [Permission.ANALYTICS_EXPORT],
    },
    "system": {
        "config": [Permission.SYSTEM_CONFIG],
        "audit_logs": [Permission.SYSTEM_AUDIT_LOGS],
        "backup": [Permission.SYSTEM_BACKUP],
        "maintenance": [Permission.SYSTEM_MAINTENANCE],
    },
}


# Named groupings used by administration screens
PERMISSION_GROUPS: Dict[str, Dict[str, object]] = {
    "reports": {
        "name": "Report Management",
        "permissions": [p for p in Permission if p.value.startswith("reports:")],
    },
    "users": {
        "name": "User Management",
        "permissions": [p for p in Permission if p.value.startswith("users:")],
    },
    "analytics": {
        "name": "Analytics & Reporting",
        "permissions": [p for p in Permission if p.value.startswith("analytics:")],
    },
    "system": {
        "name": "System Administration",
        "permissions": [p for p in Permission if p.value.startswith("system:")],
    },
    "data": {
        "name": "Data Management",
        "permissions": [p for p in Permission if p.value.startswith("data:")],
    },
    "community": {
        "name": "Community & Education",
        "permissions": [Permission.COMMUNITY_MODERATE, Permission.EDUCATION_MANAGE],
    },
}


def role_from_value(value: Union[str, Role, None]) -> Optional[Role]:
    """
    Resolve a role name to a Role.

    Args:
        value: Role or role name (e.g. "officer")

    Returns:
        Role, or None if the name is unknown
    """
    if isinstance(value, Role):
        return value
    try:
        return Role(value)
    except (ValueError, TypeError):
        return None


def permission_from_value(value: Union[str, Permission, None]) -> Optional[Permission]:
    """Resolve a permission token to a Permission, or None if unknown."""
    if isinstance(value, Permission):
        return value
    try:
        return Permission(value)
    except (ValueError, TypeError):
        return None


def permissions_in_group(group_id: str) -> List[Permission]:
    """Permissions listed under a group, empty for unknown groups."""
    group = PERMISSION_GROUPS.get(group_id)
    if group is None:
        return []
    return list(group["permissions"])


class PermissionCatalog:
    """
    Static role and permission definitions.

    Built once at startup. Construction fails with ConfigurationError if a
    role is missing from either table, two roles share a hierarchy level, or
    a higher role's default set does not contain a lower role's set.
    """

    def __init__(
        self,
        role_permissions: Optional[Mapping[Role, Iterable[Permission]]] = None,
        hierarchy: Optional[Mapping[Role, int]] = None,
    ):
        """
        Initialize catalog.

        Args:
            role_permissions: Default permission set per role
            hierarchy: Hierarchy level per role (higher = more privileges)

        Raises:
            ConfigurationError: If the definitions are inconsistent
        """
        role_permissions = ROLE_PERMISSIONS if role_permissions is None else role_permissions
        hierarchy = ROLE_HIERARCHY if hierarchy is None else hierarchy

        self._permissions: Dict[Role, FrozenSet[Permission]] = {
            role: frozenset(perms) for role, perms in role_permissions.items()
        }
        self._levels: Dict[Role, int] = dict(hierarchy)

        self._validate()
        logger.debug(f"Permission catalog loaded: {len(self._levels)} roles")

    def _validate(self) -> None:
        missing_levels = set(self._permissions) - set(self._levels)
        missing_perms = set(self._levels) - set(self._permissions)
        if missing_levels or missing_perms:
            raise ConfigurationError(
                "Every role needs a hierarchy level and a permission set "
                f"(no level: {sorted(r.value for r in missing_levels)}, "
                f"no permissions: {sorted(r.value for r in missing_perms)})"
            )

        if len(set(self._levels.values())) != len(self._levels):
            raise ConfigurationError("Role hierarchy levels must be unique")

        ordered = self.roles()
        for lower, higher in zip(ordered, ordered[1:]):
            missing = self._permissions[lower] - self._permissions[higher]
            if missing:
                raise ConfigurationError(
                    f"Role '{higher.value}' lacks permissions of lower role "
                    f"'{lower.value}': {sorted(p.value for p in missing)}"
                )

    def roles(self) -> List[Role]:
        """All roles, lowest level first."""
        return sorted(self._levels, key=self._levels.__getitem__)

    def default_permissions(self, role: Union[Role, str]) -> FrozenSet[Permission]:
        """
        Get the default permissions for a role.

        Args:
            role: Role or role name

        Returns:
            FrozenSet[Permission]: Empty for unknown roles
        """
        resolved = role_from_value(role)
        if resolved is None:
            return frozenset()
        return self._permissions.get(resolved, frozenset())

    def hierarchy_level(self, role: Union[Role, str]) -> int:
        """Hierarchy level of a role, 0 for unknown roles."""
        resolved = role_from_value(role)
        if resolved is None:
            return 0
        return self._levels.get(resolved, 0)

    def is_at_least(self, role: Union[Role, str], other: Union[Role, str]) -> bool:
        """
        Check whether ``role`` ranks at or above ``other``.

        Unknown roles never satisfy the comparison.
        """
        level = self.hierarchy_level(role)
        other_level = self.hierarchy_level(other)
        if level == 0 or other_level == 0:
            return False
        return level >= other_level


class PermissionDeniedError(AuthError):
    """
    Raised when a user attempts an action they don't have permission for.

    Attributes:
        user_id: The user who was denied
        action: The action that was denied
        required_permission: The permission that was required
    """

    user_message = "You don't have permission to perform this action."

    def __init__(
        self,
        user_id: Optional[str],
        action: str,
        required_permission: Optional[Permission] = None,
    ):
        self.user_id = user_id
        self.action = action
        self.required_permission = required_permission

        message = f"User {user_id} denied permission for action: {action}"
        if required_permission:
            message += f" (requires: {required_permission.value})"

        super().__init__(message)


# Catalog built from the module tables; importing this module validates them
default_catalog = PermissionCatalog()
