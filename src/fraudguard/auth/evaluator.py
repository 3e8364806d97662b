"""
Authorization evaluator.

Answers role and permission questions about a principal. Every query is pure
and total: a missing or malformed principal, an unknown role or an unknown
permission all evaluate to "no access" instead of raising, so guards can
combine results with plain boolean logic.
"""

from datetime import datetime, timezone
from typing import Callable, FrozenSet, Iterable, Optional, Set, Union

from .permissions import (
    RESOURCE_PERMISSIONS,
    Permission,
    PermissionCatalog,
    PermissionDeniedError,
    Role,
    default_catalog,
    permission_from_value,
    role_from_value,
)

PermissionLike = Union[Permission, str]
RoleLike = Union[Role, str]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_permissions(values) -> Set[Permission]:
    """Known permissions from an iterable, silently dropping unknown tokens."""
    if values is None or isinstance(values, (str, bytes)):
        return set()
    try:
        resolved = (permission_from_value(value) for value in values)
        return {p for p in resolved if p is not None}
    except TypeError:
        return set()


class AuthorizationEvaluator:
    """
    Evaluates permissions and roles for principals.

    Effective permissions are the union of the role defaults, the principal's
    custom permissions, and any temporary grant whose expiry is still in the
    future. Grants are re-filtered on every call.
    """

    def __init__(
        self,
        catalog: Optional[PermissionCatalog] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize evaluator.

        Args:
            catalog: Permission catalog (default: module catalog)
            clock: Source of "now" when callers don't pass one
        """
        self.catalog = catalog or default_catalog
        self._clock = clock

    def _role_of(self, principal) -> Optional[Role]:
        if principal is None:
            return None
        return role_from_value(getattr(principal, "role", None))

    def effective_permissions(
        self, principal, now: Optional[datetime] = None
    ) -> FrozenSet[Permission]:
        """
        Get all permissions a principal holds at ``now``.

        Args:
            principal: Principal (or Session) to evaluate
            now: Evaluation instant (default: clock)

        Returns:
            FrozenSet[Permission]: Empty for a missing principal
        """
        role = self._role_of(principal)
        if role is None:
            return frozenset()

        now = now or self._clock()
        permissions = set(self.catalog.default_permissions(role))
        permissions |= _as_permissions(getattr(principal, "custom_permissions", None))

        for grant in getattr(principal, "temporary_grants", None) or ():
            expires_at = getattr(grant, "expires_at", None)
            try:
                active = expires_at is not None and expires_at > now
            except TypeError:
                # naive vs aware datetime
                active = False
            if active:
                permissions |= _as_permissions(getattr(grant, "permissions", None))

        return frozenset(permissions)

    def has_permission(
        self, principal, permission: PermissionLike, now: Optional[datetime] = None
    ) -> bool:
        """Check a single permission."""
        resolved = permission_from_value(permission)
        if resolved is None:
            return False
        return resolved in self.effective_permissions(principal, now)

    def has_any_permission(
        self,
        principal,
        permissions: Iterable[PermissionLike],
        now: Optional[datetime] = None,
    ) -> bool:
        """True if the principal holds at least one of ``permissions``."""
        required = _as_permissions(permissions)
        return bool(required & self.effective_permissions(principal, now))

    def has_all_permissions(
        self,
        principal,
        permissions: Iterable[PermissionLike],
        now: Optional[datetime] = None,
    ) -> bool:
        """
        True if the principal holds every one of ``permissions``.

        An unknown permission token can never be held, so it makes the
        whole check fail.
        """
        if self._role_of(principal) is None:
            return False
        try:
            requested = list(permissions)
        except TypeError:
            return False
        required = _as_permissions(requested)
        if len(required) != len({str(getattr(p, "value", p)) for p in requested}):
            return False
        return required <= self.effective_permissions(principal, now)

    def has_role(self, principal, role: RoleLike) -> bool:
        """Exact role match."""
        current = self._role_of(principal)
        return current is not None and current is role_from_value(role)

    def has_any_role(self, principal, roles: Iterable[RoleLike]) -> bool:
        """
        Access-list check: the principal's role must be listed.

        No hierarchy is applied, so an admin does not satisfy ``[officer]``.
        """
        current = self._role_of(principal)
        if current is None:
            return False
        try:
            return any(role_from_value(role) is current for role in roles)
        except TypeError:
            return False

    def meets_minimum_role(self, principal, role: RoleLike) -> bool:
        """Hierarchy check: the principal ranks at or above ``role``."""
        current = self._role_of(principal)
        if current is None:
            return False
        return self.catalog.is_at_least(current, role)

    def is_higher_role(self, principal, role: RoleLike) -> bool:
        """Strictly outranks ``role``."""
        current = self._role_of(principal)
        if current is None or role_from_value(role) is None:
            return False
        return self.catalog.hierarchy_level(current) > self.catalog.hierarchy_level(role)

    def can_manage(self, principal, target_role: RoleLike) -> bool:
        """
        Check whether the principal may manage users holding ``target_role``.

        Super admins manage everyone. Admins and officers manage roles
        strictly below their own. Citizens manage nobody.
        """
        current = self._role_of(principal)
        target = role_from_value(target_role)
        if current is None or target is None:
            return False
        if current is Role.SUPER_ADMIN:
            return True
        if current is Role.CITIZEN:
            return False
        return self.catalog.hierarchy_level(current) > self.catalog.hierarchy_level(target)

    def can_access_resource(
        self, principal, resource: str, action: str, now: Optional[datetime] = None
    ) -> bool:
        """
        Check a resource/action pair against RESOURCE_PERMISSIONS.

        Unknown resources and actions are denied.
        """
        required = RESOURCE_PERMISSIONS.get(resource, {}).get(action)
        if not required:
            return False
        return self.has_all_permissions(principal, required, now)

    def check(
        self,
        principal,
        required_permissions: Optional[Iterable[PermissionLike]] = None,
        required_roles: Optional[Iterable[RoleLike]] = None,
        any_permission: bool = False,
        any_role: bool = False,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Combined guard check, permissions first and then roles.

        Args:
            principal: Principal to evaluate
            required_permissions: Permissions to require (none = skip)
            required_roles: Roles to require (none = skip)
            any_permission: Accept any one permission instead of all
            any_role: Accept any listed role instead of all of them
            now: Evaluation instant

        Returns:
            bool: True if every requirement holds
        """
        if self._role_of(principal) is None:
            return False

        permissions = list(required_permissions or [])
        if permissions:
            if any_permission:
                allowed = self.has_any_permission(principal, permissions, now)
            else:
                allowed = self.has_all_permissions(principal, permissions, now)
            if not allowed:
                return False

        roles = list(required_roles or [])
        if roles:
            if any_role:
                return self.has_any_role(principal, roles)
            return all(self.has_role(principal, role) for role in roles)

        return True


# Global evaluator instance
_evaluator = AuthorizationEvaluator()


def check_permission(principal, permission: PermissionLike) -> bool:
    """
    Global helper to check if a principal has a permission right now.

    Args:
        principal: The principal to check
        permission: The permission to check

    Returns:
        bool: True if authorized, False otherwise
    """
    return _evaluator.has_permission(principal, permission)


def require_permission(principal, permission: PermissionLike) -> None:
    """
    Require a permission, raising PermissionDeniedError if not authorized.

    Args:
        principal: The principal to check
        permission: The required permission

    Raises:
        PermissionDeniedError: If the principal doesn't have the permission
    """
    if not check_permission(principal, permission):
        resolved = permission_from_value(permission)
        raise PermissionDeniedError(
            user_id=getattr(principal, "user_id", None),
            action=resolved.value if resolved else str(permission),
            required_permission=resolved,
        )
