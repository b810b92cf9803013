from sqlalchemy import Column, Integer, String
from ..database import Base

class Role(Base):
    """
    권한(Permission)을 묶고 사용자를 소속시키는 이름 있는 그룹입니다.
    (예: 'Administrator').
    name은 생성 시 입력한 표기를 그대로 보존하고, 유일성은 소문자로 정규화한
    normalized_name으로 보장합니다.
    """
    __tablename__ = "roles"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    normalized_name = Column(String, unique=True, nullable=False, index=True)
