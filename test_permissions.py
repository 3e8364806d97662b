"""
Unit tests for the role and permission catalog.
"""

import pytest

from fraudguard.auth import (
    PERMISSION_GROUPS,
    ROLE_HIERARCHY,
    ROLE_PERMISSIONS,
    ConfigurationError,
    Permission,
    PermissionCatalog,
    Role,
    default_catalog,
    permissions_in_group,
)
from fraudguard.auth.permissions import permission_from_value, role_from_value


class TestHierarchy:
    """Test role ranking."""

    def test_levels(self):
        """Roles rank citizen < officer < admin < super admin."""
        levels = [default_catalog.hierarchy_level(r) for r in
                  (Role.CITIZEN, Role.OFFICER, Role.ADMIN, Role.SUPER_ADMIN)]
        assert levels == [1, 2, 3, 4]

    def test_roles_sorted_lowest_first(self):
        """roles() lists the hierarchy bottom-up."""
        assert default_catalog.roles() == [
            Role.CITIZEN, Role.OFFICER, Role.ADMIN, Role.SUPER_ADMIN
        ]

    def test_is_at_least(self):
        """Hierarchy comparison includes equality."""
        assert default_catalog.is_at_least(Role.ADMIN, Role.OFFICER)
        assert default_catalog.is_at_least(Role.ADMIN, Role.ADMIN)
        assert not default_catalog.is_at_least(Role.OFFICER, Role.ADMIN)

    def test_string_role_names(self):
        """Role names are accepted as plain strings."""
        assert default_catalog.hierarchy_level("officer") == 2
        assert default_catalog.is_at_least("super_admin", "citizen")

    def test_unknown_role(self):
        """Unknown roles have level 0 and never compare as at-least."""
        assert default_catalog.hierarchy_level("janitor") == 0
        assert not default_catalog.is_at_least("janitor", Role.CITIZEN)
        assert not default_catalog.is_at_least(Role.SUPER_ADMIN, "janitor")
        assert default_catalog.default_permissions("janitor") == frozenset()


class TestDefaultPermissions:
    """Test default permission sets."""

    def test_superset_property(self):
        """Every role holds all permissions of every lower role."""
        roles = default_catalog.roles()
        for i, lower in enumerate(roles):
            for higher in roles[i + 1:]:
                assert default_catalog.default_permissions(lower) <= \
                    default_catalog.default_permissions(higher)

    def test_citizen_basics(self):
        """Citizens manage their own reports only."""
        perms = default_catalog.default_permissions(Role.CITIZEN)
        assert Permission.REPORTS_CREATE in perms
        assert Permission.REPORTS_VIEW_OWN in perms
        assert Permission.REPORTS_VIEW_ALL not in perms

    def test_admin_cannot_configure_system(self):
        """System configuration is reserved for super admins."""
        assert Permission.SYSTEM_CONFIG not in default_catalog.default_permissions(Role.ADMIN)
        assert Permission.SYSTEM_CONFIG in default_catalog.default_permissions(Role.SUPER_ADMIN)

    def test_returned_set_is_immutable(self):
        """Callers can't widen a role by mutating the returned set."""
        perms = default_catalog.default_permissions(Role.CITIZEN)
        assert isinstance(perms, frozenset)


class TestCatalogValidation:
    """Test construction-time checks."""

    def test_broken_superset_rejected(self):
        """A higher role missing a lower role's permission fails fast."""
        role_permissions = dict(ROLE_PERMISSIONS)
        role_permissions[Role.OFFICER] = {Permission.REPORTS_VIEW_ALL}

        with pytest.raises(ConfigurationError) as exc_info:
            PermissionCatalog(role_permissions=role_permissions)

        assert "officer" in str(exc_info.value)

    def test_missing_role_rejected(self):
        """Every role in the hierarchy needs a permission set."""
        role_permissions = {r: p for r, p in ROLE_PERMISSIONS.items() if r is not Role.ADMIN}

        with pytest.raises(ConfigurationError):
            PermissionCatalog(role_permissions=role_permissions)

    def test_duplicate_levels_rejected(self):
        """Two roles can't share a level."""
        hierarchy = dict(ROLE_HIERARCHY)
        hierarchy[Role.OFFICER] = hierarchy[Role.CITIZEN]

        with pytest.raises(ConfigurationError):
            PermissionCatalog(hierarchy=hierarchy)


class TestLookups:
    """Test tolerant value lookups and groups."""

    def test_role_from_value(self):
        """Known names resolve; anything else is None."""
        assert role_from_value("admin") is Role.ADMIN
        assert role_from_value(Role.OFFICER) is Role.OFFICER
        assert role_from_value("ADMIN") is None
        assert role_from_value(None) is None
        assert role_from_value(42) is None

    def test_permission_from_value(self):
        """Permission tokens resolve by their wire value."""
        assert permission_from_value("reports:create") is Permission.REPORTS_CREATE
        assert permission_from_value("reports:fly") is None
        assert permission_from_value(["reports:create"]) is None

    def test_permission_groups(self):
        """Groups list permissions by area."""
        reports = permissions_in_group("reports")
        assert Permission.REPORTS_CREATE in reports
        assert all(p.value.startswith("reports:") for p in reports)
        assert "users" in PERMISSION_GROUPS

    def test_unknown_group(self):
        """Unknown group ids give an empty list."""
        assert permissions_in_group("nope") == []
