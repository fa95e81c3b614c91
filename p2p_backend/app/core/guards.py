"""
Security guards for role-based access control.

Provides dependencies for protecting posting and ledger endpoints.
"""

from typing import List
from fastapi import Depends
from p2p_backend.app.models.enums import UserRole
from p2p_backend.app.core.dependencies import get_current_user
from p2p_backend.app.core.exceptions import InsufficientPermissionsError

# Roles allowed to reverse postings, resubmit failed events and drain the queue
MANAGER_ROLES = [UserRole.OWNER, UserRole.ADMIN, UserRole.MANAGER]


def require_role(allowed_roles: List[UserRole]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.post("/posting/events/{event_id}/reverse")
        async def reverse(current_user: dict = Depends(require_role(MANAGER_ROLES))):
            ...

    Args:
        allowed_roles: List of UserRole enums that are allowed to access the endpoint

    Returns:
        FastAPI dependency function that validates user role

    Raises:
        InsufficientPermissionsError (403) if user role is not in allowed_roles
    """
    async def role_checker(current_user: dict = Depends(get_current_user)) -> dict:
        user_role_str = current_user.get("role")

        if not user_role_str:
            raise InsufficientPermissionsError("Role information missing from token")

        # Convert string role to UserRole enum
        try:
            user_role = UserRole(user_role_str)
        except ValueError:
            raise InsufficientPermissionsError("Invalid role in token")

        if user_role not in allowed_roles:
            raise InsufficientPermissionsError(f"Access denied. Required role: {', '.join([r.value for r in allowed_roles])}")

        return current_user

    return role_checker


require_manager = require_role(MANAGER_ROLES)
