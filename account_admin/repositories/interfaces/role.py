from abc import ABC, abstractmethod
from typing import List, Optional
from account_admin.database import models

class IRoleRepository(ABC):
    @abstractmethod
    def create(self, role_model: models.Role) -> models.Role:
        """새로운 역할을 생성합니다. 이름이 중복되면 IntegrityError가 발생합니다."""
        pass

    @abstractmethod
    def find_by_name(self, name: str) -> Optional[models.Role]:
        """이름(대소문자 무시)으로 특정 역할을 조회합니다."""
        pass

    @abstractmethod
    def list_all(self) -> List[models.Role]:
        """모든 역할의 목록을 조회합니다."""
        pass

    @abstractmethod
    def delete(self, role: models.Role) -> bool:
        """
        역할을 삭제합니다.
        역할에 속한 사용자 멤버십과 권한 연결을 먼저 모두 제거한 뒤 역할을 삭제합니다.
        """
        pass

    # --- 사용자 멤버십 ---
    @abstractmethod
    def add_user(self, user: models.User, role: models.Role):
        """사용자를 역할에 추가합니다. 이미 멤버이면 무시합니다."""
        pass

    @abstractmethod
    def remove_user(self, user: models.User, role: models.Role) -> bool:
        """사용자를 역할에서 제거합니다. 멤버가 아니었다면 False를 반환합니다."""
        pass

    @abstractmethod
    def list_roles_for_user(self, user: models.User) -> List[models.Role]:
        """사용자가 속한 모든 역할을 조회합니다."""
        pass

    @abstractmethod
    def list_users_in_role(self, role: models.Role) -> List[models.User]:
        """역할에 속한 모든 사용자를 조회합니다."""
        pass

    # --- 권한 연결 ---
    @abstractmethod
    def find_permission(self, role: models.Role, permission_id: str) -> Optional[models.RolePermission]:
        """역할-권한 연결을 조회합니다."""
        pass

    @abstractmethod
    def add_permission(self, role: models.Role, permission: models.Permission) -> models.RolePermission:
        """
        역할에 권한을 연결합니다.
        이미 연결되어 있으면 새로 만들지 않고 기존 연결을 반환합니다.
        """
        pass

    @abstractmethod
    def remove_permission(self, role_permission: models.RolePermission) -> bool:
        """역할-권한 연결을 삭제합니다."""
        pass

    @abstractmethod
    def list_permissions(self, role: models.Role) -> List[models.Permission]:
        """역할에 연결된 모든 권한을 id 순으로 조회합니다."""
        pass
