from sqlalchemy import Boolean, Column, DateTime, Integer, String
from ..database import Base

class Credential(Base):
    """
    사용자의 자격 증명 레코드입니다. 비밀번호 해시, 잠금 카운터, 접속 기록을 담습니다.
    프로필(User)과는 별개의 시스템이 소유하므로 외래 키 없이 username으로만 연결됩니다.
    """
    __tablename__ = "credentials"
    username = Column(String, primary_key=True)
    email = Column(String, nullable=False, default="")
    password_hash = Column(String, nullable=False)
    password_salt = Column(String, nullable=False)
    is_locked_out = Column(Boolean, nullable=False, default=False)
    failed_password_attempts = Column(Integer, nullable=False, default=0)
    creation_date = Column(DateTime, nullable=False)
    last_login_date = Column(DateTime)
    last_password_change_date = Column(DateTime, nullable=False)
    last_activity_date = Column(DateTime)
    last_lockout_date = Column(DateTime)

class LoginSession(Base):
    """로그인 성공 시 발급되는 세션 토큰입니다."""
    __tablename__ = "login_sessions"
    token = Column(String, primary_key=True)
    username = Column(String, nullable=False, index=True)
    created_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)
