from sqlalchemy import Column, Integer, String, ForeignKey
from sqlalchemy.orm import relationship
from ..database import Base

class UserRole(Base):
    """
    사용자(User)와 역할(Role) 사이의 멤버십을 나타내는 연관 테이블 모델입니다.
    (user_id, role_id) 쌍이 기본 키이므로 같은 멤버십은 한 번만 존재합니다.
    """
    __tablename__ = 'user_roles'
    user_id = Column(Integer, ForeignKey('users.id'), primary_key=True)
    role_id = Column(Integer, ForeignKey('roles.id'), primary_key=True)

    user = relationship("User")
    role = relationship("Role")

class RolePermission(Base):
    """
    역할(Role)과 권한(Permission) 사이의 연관 테이블 모델입니다.
    """
    __tablename__ = 'role_permissions'
    role_id = Column(Integer, ForeignKey('roles.id'), primary_key=True)
    permission_id = Column(String, ForeignKey('permissions.id'), primary_key=True)

    role = relationship("Role")
    permission = relationship("Permission")
