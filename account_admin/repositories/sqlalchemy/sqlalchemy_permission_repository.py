from typing import List, Optional
from sqlalchemy.orm import Session
from account_admin.database import models
from account_admin.repositories.interfaces import IPermissionRepository

class SqlalchemyPermissionRepository(IPermissionRepository):
    def __init__(self, db_session: Session):
        self.db = db_session

    def create(self, permission_model: models.Permission) -> models.Permission:
        self.db.add(permission_model)
        self.db.flush()
        return permission_model

    def find_by_id(self, permission_id: str) -> Optional[models.Permission]:
        return self.db.get(models.Permission, permission_id)

    def list_all(self) -> List[models.Permission]:
        return self.db.query(models.Permission).order_by(models.Permission.id.asc()).all()

    def list_for_user(self, user: models.User) -> List[models.Permission]:
        return (
            self.db.query(models.Permission)
            .join(models.RolePermission, models.RolePermission.permission_id == models.Permission.id)
            .join(models.UserRole, models.UserRole.role_id == models.RolePermission.role_id)
            .filter(models.UserRole.user_id == user.id)
            .distinct()
            .order_by(models.Permission.id.asc())
            .all()
        )
