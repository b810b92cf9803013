from abc import ABC, abstractmethod
from typing import List, Optional
from account_admin.database import models

class IPermissionRepository(ABC):
    @abstractmethod
    def create(self, permission_model: models.Permission) -> models.Permission:
        """권한 카탈로그에 항목을 추가합니다. (db_init 전용)"""
        pass

    @abstractmethod
    def find_by_id(self, permission_id: str) -> Optional[models.Permission]:
        """id로 특정 권한을 조회합니다."""
        pass

    @abstractmethod
    def list_all(self) -> List[models.Permission]:
        """애플리케이션 전체 권한 카탈로그를 조회합니다."""
        pass

    @abstractmethod
    def list_for_user(self, user: models.User) -> List[models.Permission]:
        """
        사용자가 속한 모든 역할의 권한을 모아 조회합니다.
        여러 역할에 같은 권한이 있어도 한 번만 포함됩니다.
        """
        pass
