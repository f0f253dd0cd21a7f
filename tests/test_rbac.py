"""
Test suite for RBAC module

Tests role to permission mapping and capability checks.
"""

import pytest

from lending_engine.errors import PermissionDenied
from lending_engine.rbac import (
    CapabilitySet, Permission, ROLE_PERMISSIONS, StaffRole, check, resolve_capabilities
)


class TestRolePermissions:
    """Test the fixed role mapping"""

    def test_super_admin_has_everything(self):
        """Test super admins hold every permission"""
        assert ROLE_PERMISSIONS[StaffRole.SUPER_ADMIN] == frozenset(Permission)

    def test_only_super_admin_deletes(self):
        """Test permanent deletion is reserved to super admins"""
        holders = [role for role, perms in ROLE_PERMISSIONS.items() if Permission.PERMANENT_DELETE in perms]
        assert holders == [StaffRole.SUPER_ADMIN]

    def test_risk_officer(self):
        """Test risk officers can verify guarantors but not move money"""
        caps = resolve_capabilities(["risk_officer"])
        assert caps.has(Permission.VERIFY_GUARANTOR)
        assert not caps.has_any(Permission.RECORD_REPAYMENT, Permission.RECORD_PAYOUT)


class TestResolveCapabilities:
    """Test resolving role names"""

    def test_roles_union(self):
        """Test multiple roles combine their permissions"""
        caps = resolve_capabilities(["risk_officer", "ops_officer"], user_id="staff-1")
        assert caps.user_id == "staff-1"
        assert caps.roles == frozenset({StaffRole.RISK_OFFICER, StaffRole.OPS_OFFICER})
        assert caps.has(Permission.RECORD_PAYOUT)
        assert not caps.has(Permission.ARCHIVE)

    def test_unknown_roles_grant_nothing(self):
        """Test creditor and debtor roles carry no staff permissions"""
        caps = resolve_capabilities(["creditor", "debtor"])
        assert caps.roles == frozenset()
        assert caps.permissions == frozenset()


class TestCheck:
    """Test permission enforcement"""

    def test_require_raises(self):
        """Test require raises PermissionDenied naming the user"""
        caps = CapabilitySet(user_id="staff-9")
        with pytest.raises(PermissionDenied, match="staff-9"):
            caps.require(Permission.MANAGE_SETTINGS)

    def test_check_none_is_trusted(self):
        """Test a missing capability set means the caller already authorized"""
        check(None, Permission.PERMANENT_DELETE)

    def test_check_enforces(self):
        """Test check defers to the capability set"""
        finance = resolve_capabilities(["finance_manager"])
        check(finance, Permission.ARCHIVE)
        with pytest.raises(PermissionDenied):
            check(finance, Permission.PERMANENT_DELETE)
