from abc import ABC, abstractmethod
from typing import List, Optional
from account_admin.database import models

class IUserRepository(ABC):
    @abstractmethod
    def create(self, user_model: models.User) -> models.User:
        """새로운 사용자 프로필을 생성합니다. 이름이 중복되면 IntegrityError가 발생합니다."""
        pass

    @abstractmethod
    def find_by_username(self, username: str) -> Optional[models.User]:
        """사용자 이름(대소문자 무시)으로 특정 사용자를 조회합니다."""
        pass

    @abstractmethod
    def list_all(self) -> List[models.User]:
        """모든 사용자의 목록을 이름순으로 조회합니다."""
        pass

    @abstractmethod
    def update(self, user: models.User) -> models.User:
        """변경된 사용자 프로필을 반영합니다."""
        pass

    @abstractmethod
    def delete(self, user: models.User) -> bool:
        """
        사용자를 삭제합니다.
        삭제 전에 해당 사용자의 모든 역할 멤버십을 같은 트랜잭션 안에서 먼저 제거합니다.
        """
        pass
