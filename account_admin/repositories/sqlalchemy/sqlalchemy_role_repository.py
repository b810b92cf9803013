from typing import List, Optional
from sqlalchemy.orm import Session
from account_admin.database import models
from account_admin.repositories.interfaces import IRoleRepository

class SqlalchemyRoleRepository(IRoleRepository):
    def __init__(self, db_session: Session):
        self.db = db_session

    def create(self, role_model: models.Role) -> models.Role:
        role_model.normalized_name = role_model.name.lower()
        self.db.add(role_model)
        self.db.flush()
        return role_model

    def find_by_name(self, name: str) -> Optional[models.Role]:
        return self.db.query(models.Role).filter(models.Role.normalized_name == name.lower()).first()

    def list_all(self) -> List[models.Role]:
        return self.db.query(models.Role).order_by(models.Role.normalized_name.asc()).all()

    def delete(self, role: models.Role) -> bool:
        if not role:
            return False
        # 연결을 먼저 지운 뒤 역할을 지웁니다. 외래 키 제약 때문에 순서가 바뀌면 flush가 실패합니다.
        self.db.query(models.UserRole).filter(
            models.UserRole.role_id == role.id
        ).delete(synchronize_session="fetch")
        self.db.query(models.RolePermission).filter(
            models.RolePermission.role_id == role.id
        ).delete(synchronize_session="fetch")
        self.db.delete(role)
        self.db.flush()
        return True

    def add_user(self, user: models.User, role: models.Role):
        membership = models.UserRole(user_id=user.id, role_id=role.id)
        self.db.merge(membership) # INSERT OR IGNORE와 유사한 동작
        self.db.flush()

    def remove_user(self, user: models.User, role: models.Role) -> bool:
        membership = self.db.query(models.UserRole).filter(
            models.UserRole.user_id == user.id,
            models.UserRole.role_id == role.id
        ).first()
        if not membership:
            return False
        self.db.delete(membership)
        self.db.flush()
        return True

    def list_roles_for_user(self, user: models.User) -> List[models.Role]:
        return (
            self.db.query(models.Role)
            .join(models.UserRole, models.UserRole.role_id == models.Role.id)
            .filter(models.UserRole.user_id == user.id)
            .order_by(models.Role.normalized_name.asc())
            .all()
        )

    def list_users_in_role(self, role: models.Role) -> List[models.User]:
        return (
            self.db.query(models.User)
            .join(models.UserRole, models.UserRole.user_id == models.User.id)
            .filter(models.UserRole.role_id == role.id)
            .order_by(models.User.username.asc())
            .all()
        )

    def find_permission(self, role: models.Role, permission_id: str) -> Optional[models.RolePermission]:
        return self.db.query(models.RolePermission).filter(
            models.RolePermission.role_id == role.id,
            models.RolePermission.permission_id == permission_id
        ).first()

    def add_permission(self, role: models.Role, permission: models.Permission) -> models.RolePermission:
        existing = self.find_permission(role, permission.id)
        if existing:
            return existing
        association = models.RolePermission(role_id=role.id, permission_id=permission.id)
        self.db.add(association)
        self.db.flush()
        return association

    def remove_permission(self, role_permission: models.RolePermission) -> bool:
        if not role_permission:
            return False
        self.db.delete(role_permission)
        self.db.flush()
        return True

    def list_permissions(self, role: models.Role) -> List[models.Permission]:
        return (
            self.db.query(models.Permission)
            .join(models.RolePermission, models.RolePermission.permission_id == models.Permission.id)
            .filter(models.RolePermission.role_id == role.id)
            .order_by(models.Permission.id.asc())
            .all()
        )
