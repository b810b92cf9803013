import hashlib
import hmac
import logging
import re
import secrets
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from account_admin.config import Settings
from account_admin.database import models
from account_admin.repositories.interfaces import ICredentialRepository

logger = logging.getLogger(__name__)

class SqlalchemyCredentialRepository(ICredentialRepository):
    """
    ICredentialRepository의 SQLAlchemy 구현체.

    비밀번호는 사용자별 salt와 PBKDF2-SHA256으로 해시하여 저장합니다.
    비밀번호 정책, 잠금 한도, 접속 판정 시간, 세션 수명은 Settings에서 읽습니다.
    """
    HASH_ITERATIONS = 100_000
    UPDATABLE_FIELDS = ("email",)

    def __init__(self, db_session: Session, settings: Settings):
        self.db = db_session
        self.settings = settings

    # --------------------------------------------------------------------------
    ## 내부 유틸리티
    # --------------------------------------------------------------------------

    def _hash(self, password: str, salt: str) -> str:
        digest = hashlib.pbkdf2_hmac(
            'sha256', password.encode('utf-8'), salt.encode('utf-8'), self.HASH_ITERATIONS
        )
        return digest.hex()

    def _verify(self, credential: models.Credential, password: str) -> bool:
        candidate = self._hash(password, credential.password_salt)
        return hmac.compare_digest(candidate, credential.password_hash)

    def _apply_password(self, credential: models.Credential, password: str):
        credential.password_salt = secrets.token_hex(16)
        credential.password_hash = self._hash(password, credential.password_salt)
        credential.last_password_change_date = datetime.now()

    def _record_failure(self, credential: models.Credential):
        credential.failed_password_attempts += 1
        if credential.failed_password_attempts >= self.settings.max_invalid_password_attempts:
            credential.is_locked_out = True
            credential.last_lockout_date = datetime.now()
            logger.warning("계정 '%s'이(가) 비밀번호 오류 누적으로 잠겼습니다.", credential.username)
        self.db.flush()

    def _find(self, username: str) -> Optional[models.Credential]:
        return self.db.get(models.Credential, username.lower())

    def _is_online(self, credential: models.Credential) -> bool:
        if credential.last_activity_date is None:
            return False
        window = timedelta(minutes=self.settings.online_window_minutes)
        return datetime.now() - credential.last_activity_date <= window

    # --------------------------------------------------------------------------
    ## 자격 증명
    # --------------------------------------------------------------------------

    def create(self, username: str, password: str, email: str) -> models.Credential:
        now = datetime.now()
        credential = models.Credential(
            username=username.lower(),
            email=email or "",
            is_locked_out=False,
            failed_password_attempts=0,
            creation_date=now,
        )
        self._apply_password(credential, password)
        self.db.add(credential)
        self.db.flush()
        return credential

    def get(self, username: str) -> Optional[Dict[str, Any]]:
        credential = self._find(username)
        if not credential:
            return None
        return {
            "email": credential.email,
            "is_locked_out": credential.is_locked_out,
            "is_online": self._is_online(credential),
            "creation_date": credential.creation_date,
            "last_login_date": credential.last_login_date,
            "last_password_change_date": credential.last_password_change_date,
        }

    def update(self, username: str, **fields: Any) -> bool:
        credential = self._find(username)
        if not credential:
            return False
        unknown = set(fields) - set(self.UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unsupported credential fields: {', '.join(sorted(unknown))}")
        for name, value in fields.items():
            setattr(credential, name, value)
        self.db.flush()
        return True

    def change_password(self, username: str, old_password: str, new_password: str) -> bool:
        credential = self._find(username)
        if not credential or credential.is_locked_out:
            return False
        if not self._verify(credential, old_password):
            self._record_failure(credential)
            return False
        if not self.validate_password_strength(new_password):
            return False
        self._apply_password(credential, new_password)
        credential.failed_password_attempts = 0
        self.db.flush()
        return True

    def set_password(self, username: str, new_password: str) -> bool:
        credential = self._find(username)
        if not credential:
            return False
        self._apply_password(credential, new_password)
        self.db.flush()
        return True

    def unlock(self, username: str) -> bool:
        credential = self._find(username)
        if not credential:
            return False
        credential.is_locked_out = False
        credential.failed_password_attempts = 0
        self.db.flush()
        return True

    def delete(self, username: str) -> bool:
        name = username.lower()
        self.db.query(models.LoginSession).filter(
            models.LoginSession.username == name
        ).delete(synchronize_session="fetch")
        credential = self._find(name)
        if not credential:
            return False
        self.db.delete(credential)
        self.db.flush()
        return True

    def validate_password_strength(self, password: str) -> bool:
        if not password or len(password) < self.settings.min_password_length:
            return False
        non_alphanumeric = sum(1 for ch in password if not ch.isalnum())
        if non_alphanumeric < self.settings.min_password_non_alphanumeric:
            return False
        pattern = self.settings.password_strength_regex
        if pattern and not re.search(pattern, password):
            return False
        return True

    # --------------------------------------------------------------------------
    ## 로그인 세션
    # --------------------------------------------------------------------------

    def validate_login(self, username: str, password: str) -> bool:
        credential = self._find(username)
        if not credential or credential.is_locked_out:
            return False
        if not self._verify(credential, password):
            self._record_failure(credential)
            return False

        now = datetime.now()
        credential.failed_password_attempts = 0
        credential.last_login_date = now
        credential.last_activity_date = now
        self.db.flush()
        return True

    def issue_session(self, username: str, expires_at: datetime) -> models.LoginSession:
        now = datetime.now()
        # 다시 제시되지 않는 만료 토큰은 여기서 정리합니다.
        self.db.query(models.LoginSession).filter(
            models.LoginSession.username == username.lower(),
            models.LoginSession.expires_at < now,
        ).delete(synchronize_session="fetch")

        session = models.LoginSession(
            token=secrets.token_urlsafe(32),
            username=username.lower(),
            created_at=now,
            expires_at=expires_at,
        )
        self.db.add(session)
        self.db.flush()
        return session

    def find_session(self, token: str) -> Optional[models.LoginSession]:
        return self.db.get(models.LoginSession, token)

    def touch(self, username: str):
        credential = self._find(username)
        if credential:
            credential.last_activity_date = datetime.now()
            self.db.flush()

    def revoke_session(self, session: models.LoginSession) -> bool:
        if not session:
            return False
        self.db.delete(session)
        self.db.flush()
        return True
