"""
Static role to permission table for payment administration
"""

from typing import Dict, FrozenSet

from app.models.user import UserRole

VIEW_PAYMENTS = "view_payments"
PROCESS_PAYMENTS = "process_payments"
REFUND_PAYMENTS = "refund_payments"

_ADMIN_PERMISSIONS = frozenset({VIEW_PAYMENTS, PROCESS_PAYMENTS, REFUND_PAYMENTS})

ROLE_PERMISSIONS: Dict[UserRole, FrozenSet[str]] = {
    UserRole.CUSTOMER: frozenset(),
    UserRole.PROVIDER: frozenset(),
    UserRole.ADMIN: _ADMIN_PERMISSIONS,
    UserRole.SUPER_ADMIN: _ADMIN_PERMISSIONS,
}


def has_permission(role, permission: str) -> bool:
    try:
        role = UserRole(role)
    except ValueError:
        return False
    return permission in ROLE_PERMISSIONS.get(role, frozenset())
