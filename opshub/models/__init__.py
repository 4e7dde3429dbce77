"""模型集合。"""

from .assignment import UserCustomRole, UserPermission
from .permission import CustomRole, Permission
from .user import User

__all__ = ["CustomRole", "Permission", "User", "UserCustomRole", "UserPermission"]
