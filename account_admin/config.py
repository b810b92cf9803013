# account_admin/config.py
"""
애플리케이션 설정을 환경 변수(.env 포함)에서 읽어옵니다.

모든 설정값은 기본값을 가지므로 테스트 환경에서도 Settings()를 바로 생성할 수 있습니다.
필드 이름은 대문자 환경 변수에 대응합니다. (예: database_url -> DATABASE_URL)
"""
import logging
from functools import lru_cache
from typing import Dict

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- 데이터베이스 ---
    database_url: str = "sqlite:///account_admin.db"
    # 멈춘 트랜잭션은 이 시간이 지나면 드라이버 수준에서 실패하고 롤백됩니다.
    db_timeout_seconds: float = 30.0

    # --- 서버 ---
    host: str = ""
    port: int = 8000
    log_level: str = "INFO"

    # --- 관리자 계정 및 역할 ---
    admin_role: str = "Administrator"
    admin_username: str = "admin"
    admin_password: str = "Ch4nge-me!"
    admin_email: str = "admin@localhost"

    # --- 비밀번호 정책 ---
    min_password_length: int = 7
    min_password_non_alphanumeric: int = 1
    password_strength_regex: str = ""
    max_invalid_password_attempts: int = 5

    # --- 세션 ---
    online_window_minutes: int = 15
    session_lifetime_minutes: int = 30
    persistent_session_days: int = 14

    # 외부에서 관리되는 권한 카탈로그 (id -> name). db_init이 이 목록으로 동기화합니다.
    application_permissions: Dict[str, str] = {
        "SecurityAdministration": "Security Administration",
    }

    @model_validator(mode="after")
    def check_admin_password(self) -> "Settings":
        if self.admin_username.lower() in self.admin_password.lower():
            raise ValueError("ADMIN_PASSWORD must not contain ADMIN_USERNAME.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Settings 인스턴스를 한 번만 생성하고 이후에는 캐시된 값을 반환합니다."""
    settings = Settings()
    logger.debug("Settings loaded (database_url=%s)", settings.database_url)
    return settings
