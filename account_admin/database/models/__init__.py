from .user import User
from .role import Role
from .permission import Permission
from .association import UserRole, RolePermission
from .credential import Credential, LoginSession

__all__ = [
    "User", "Role", "Permission", "UserRole", "RolePermission", "Credential", "LoginSession",
]
