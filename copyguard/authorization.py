"""
CopyGuard - Role authorization for approval steps.
"""

from typing import Any, Optional

from .exceptions import RoleMismatchError
from .models import Role


def _role_value(role: Any) -> Optional[str]:
    if role is None:
        return None
    return role.value if isinstance(role, Role) else str(role)


class RoleAuthorizer:
    """Exact role matching: a user may act on a step only if their single
    role equals the step's required role. There is no role hierarchy, so
    ADMIN does not stand in for MANAGER.
    """

    def is_authorized(self, user: Any, required_role: Any) -> bool:
        return _role_value(getattr(user, "role", None)) == _role_value(required_role)

    def authorize(self, user: Any, required_role: Any) -> None:
        """Raise ``RoleMismatchError`` unless ``user.role == required_role``."""
        if not self.is_authorized(user, required_role):
            raise RoleMismatchError(
                required_role=_role_value(required_role),
                user_role=_role_value(getattr(user, "role", None)),
            )
