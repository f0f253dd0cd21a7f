"""
Role-Based Access Control (RBAC) Module

Staff roles map to a fixed set of permissions. A caller's roles are
resolved once into an immutable ``CapabilitySet`` which is then passed
explicitly to the managers that mutate loans, credits and guarantors.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Optional

from .errors import PermissionDenied


class Permission(Enum):
    """System permissions"""
    # Money movement
    RECORD_REPAYMENT = "record_repayment"
    RECORD_PAYOUT = "record_payout"

    # Lifecycle
    ARCHIVE = "archive"
    RESTORE = "restore"
    PERMANENT_DELETE = "permanent_delete"

    # Administration
    MANAGE_SETTINGS = "manage_settings"
    VIEW_AUDIT_LOG = "view_audit_log"

    # Risk
    VERIFY_GUARANTOR = "verify_guarantor"
    VIEW_REPORTS = "view_reports"


class StaffRole(Enum):
    """Internal staff roles"""
    SUPER_ADMIN = "super_admin"
    FINANCE_MANAGER = "finance_manager"
    OPS_OFFICER = "ops_officer"
    RISK_OFFICER = "risk_officer"


ROLE_PERMISSIONS: Dict[StaffRole, FrozenSet[Permission]] = {
    StaffRole.SUPER_ADMIN: frozenset(Permission),
    StaffRole.FINANCE_MANAGER: frozenset({
        Permission.RECORD_REPAYMENT,
        Permission.RECORD_PAYOUT,
        Permission.ARCHIVE,
        Permission.RESTORE,
        Permission.VERIFY_GUARANTOR,
        Permission.VIEW_REPORTS,
    }),
    StaffRole.OPS_OFFICER: frozenset({
        Permission.RECORD_REPAYMENT,
        Permission.RECORD_PAYOUT,
        Permission.VERIFY_GUARANTOR,
        Permission.VIEW_REPORTS,
    }),
    StaffRole.RISK_OFFICER: frozenset({
        Permission.VERIFY_GUARANTOR,
        Permission.VIEW_REPORTS,
    }),
}


@dataclass(frozen=True)
class CapabilitySet:
    """Permissions held by one caller for the length of a session"""
    user_id: Optional[str] = None
    roles: FrozenSet[StaffRole] = field(default_factory=frozenset)
    permissions: FrozenSet[Permission] = field(default_factory=frozenset)

    def has(self, permission: Permission) -> bool:
        return permission in self.permissions

    def has_any(self, *permissions: Permission) -> bool:
        return any(p in self.permissions for p in permissions)

    def require(self, permission: Permission) -> None:
        """Raise PermissionDenied unless the permission is held"""
        if permission not in self.permissions:
            raise PermissionDenied(
                f"User {self.user_id or '<anonymous>'} lacks permission {permission.value}"
            )


def resolve_capabilities(role_names: Iterable[str], user_id: Optional[str] = None) -> CapabilitySet:
    """
    Resolve role names into a CapabilitySet

    Unknown role names (creditor, debtor, or anything not in StaffRole)
    grant nothing and are ignored.
    """
    roles = set()
    for name in role_names:
        try:
            roles.add(StaffRole(name))
        except ValueError:
            continue

    permissions = set()
    for role in roles:
        permissions |= ROLE_PERMISSIONS[role]

    return CapabilitySet(user_id=user_id, roles=frozenset(roles), permissions=frozenset(permissions))


def check(capabilities: Optional[CapabilitySet], permission: Permission) -> None:
    """Enforce a permission; ``None`` means the caller already authorized"""
    if capabilities is not None:
        capabilities.require(permission)
