from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Optional
from account_admin.database import models

class ICredentialRepository(ABC):
    """
    비밀번호 해시, 계정 잠금, 접속 상태, 로그인 세션을 소유하는 자격 증명 시스템의 인터페이스.
    계정 관리 서비스는 이 인터페이스를 통해서만 자격 증명을 다룹니다.
    """

    @abstractmethod
    def create(self, username: str, password: str, email: str) -> models.Credential:
        """새로운 자격 증명 레코드를 생성합니다."""
        pass

    @abstractmethod
    def get(self, username: str) -> Optional[Dict[str, Any]]:
        """
        자격 증명 정보를 조회합니다.

        Returns:
            email, is_locked_out, is_online, creation_date, last_login_date,
            last_password_change_date를 담은 딕셔너리. 레코드가 없으면 None.
        """
        pass

    @abstractmethod
    def update(self, username: str, **fields: Any) -> bool:
        """자격 증명 필드(email 등)를 갱신합니다. 레코드가 없으면 False를 반환합니다."""
        pass

    @abstractmethod
    def change_password(self, username: str, old_password: str, new_password: str) -> bool:
        """기존 비밀번호가 맞고 새 비밀번호가 정책을 통과하면 변경하고 True를 반환합니다."""
        pass

    @abstractmethod
    def set_password(self, username: str, new_password: str) -> bool:
        """기존 비밀번호 확인 없이 비밀번호를 재설정합니다. (관리자용)"""
        pass

    @abstractmethod
    def unlock(self, username: str) -> bool:
        """잠긴 계정을 해제합니다. 레코드가 없으면 False를 반환합니다."""
        pass

    @abstractmethod
    def delete(self, username: str) -> bool:
        """자격 증명 레코드와 해당 사용자의 로그인 세션을 삭제합니다."""
        pass

    @abstractmethod
    def validate_password_strength(self, password: str) -> bool:
        """비밀번호가 설정된 강도 정책을 만족하는지 확인합니다."""
        pass

    # --- 로그인 세션 ---
    @abstractmethod
    def validate_login(self, username: str, password: str) -> bool:
        """
        로그인 자격을 검증합니다.
        실패 횟수가 한도에 도달하면 계정을 잠그고, 잠긴 계정은 항상 실패합니다.
        """
        pass

    @abstractmethod
    def issue_session(self, username: str, expires_at: datetime) -> models.LoginSession:
        """새로운 로그인 세션 토큰을 발급합니다. 같은 사용자의 만료된 세션은 함께 삭제됩니다."""
        pass

    @abstractmethod
    def find_session(self, token: str) -> Optional[models.LoginSession]:
        """토큰으로 로그인 세션을 조회합니다."""
        pass

    @abstractmethod
    def touch(self, username: str):
        """사용자의 마지막 활동 시각을 갱신합니다. (is_online 판정에 사용)"""
        pass

    @abstractmethod
    def revoke_session(self, session: models.LoginSession) -> bool:
        """로그인 세션을 폐기합니다."""
        pass
