from sqlalchemy import Column, Integer, String
from ..database import Base

class User(Base):
    """
    시스템에 로그인할 수 있는 사용자의 프로필을 나타냅니다.
    username은 대소문자를 구분하지 않으며 항상 소문자로 저장됩니다.
    비밀번호, 잠금 상태, 접속 시각 등은 자격 증명(Credential) 쪽에서 관리합니다.
    """
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    username = Column(String, unique=True, nullable=False, index=True)
    full_name = Column(String, nullable=False, default="")
