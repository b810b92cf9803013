from typing import List, Optional
from sqlalchemy.orm import Session
from account_admin.database import models
from account_admin.repositories.interfaces import IUserRepository

class SqlalchemyUserRepository(IUserRepository):
    def __init__(self, db_session: Session):
        self.db = db_session

    def create(self, user_model: models.User) -> models.User:
        user_model.username = user_model.username.lower()
        self.db.add(user_model)
        self.db.flush()
        return user_model

    def find_by_username(self, username: str) -> Optional[models.User]:
        return self.db.query(models.User).filter(models.User.username == username.lower()).first()

    def list_all(self) -> List[models.User]:
        return self.db.query(models.User).order_by(models.User.username.asc()).all()

    def update(self, user: models.User) -> models.User:
        self.db.add(user)
        self.db.flush()
        return user

    def delete(self, user: models.User) -> bool:
        if not user:
            return False
        self.db.query(models.UserRole).filter(
            models.UserRole.user_id == user.id
        ).delete(synchronize_session="fetch")
        self.db.delete(user)
        self.db.flush()
        return True
