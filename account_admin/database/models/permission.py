from sqlalchemy import Column, String
from ..database import Base

class Permission(Base):
    """
    역할에 부여할 수 있는 원자적 권한입니다.
    카탈로그는 API가 아닌 외부 설정(db_init)으로만 생성되며, 이 서비스에서는 읽기 전용입니다.
    """
    __tablename__ = "permissions"
    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
