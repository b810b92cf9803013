import logging
from typing import Optional

from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from account_admin.config import Settings, get_settings
from .database import Base, SessionLocal, engine as default_engine, session_scope
from .models import Permission, Role
from account_admin.repositories.sqlalchemy import (
    SqlalchemyCredentialRepository, SqlalchemyPermissionRepository,
    SqlalchemyRoleRepository, SqlalchemyUserRepository
)
from account_admin.services.identity_service import IdentityService

logger = logging.getLogger(__name__)


def initialize_db(
    engine: Optional[Engine] = None,
    session_factory: Optional[sessionmaker] = None,
    settings: Optional[Settings] = None,
):
    """
    테이블을 생성하고, 권한 카탈로그와 관리자 역할/계정을 준비합니다.

    권한 카탈로그는 설정(application_permissions)과 동기화되며 매번 실행됩니다.
    관리자 계정은 사용자가 한 명도 없을 때만 생성됩니다.
    전체 작업은 하나의 트랜잭션으로 실행되어, 실패하면 아무것도 반영되지 않습니다.
    """
    engine = engine or default_engine
    session_factory = session_factory or SessionLocal
    settings = settings or get_settings()

    logger.info("DB 초기화 중...")
    # 모든 테이블을 생성합니다. (이미 존재하면 생성하지 않음)
    Base.metadata.create_all(bind=engine)
    logger.info("테이블 생성 완료.")

    with session_scope(session_factory) as db:
        user_repo = SqlalchemyUserRepository(db)
        role_repo = SqlalchemyRoleRepository(db)
        permission_repo = SqlalchemyPermissionRepository(db)
        credential_repo = SqlalchemyCredentialRepository(db, settings)

        # 권한 카탈로그 동기화 (추가 및 이름 변경만, 삭제는 하지 않음)
        for permission_id, name in settings.application_permissions.items():
            permission = permission_repo.find_by_id(permission_id)
            if permission is None:
                permission_repo.create(Permission(id=permission_id, name=name))
                logger.info("권한 '%s' 추가", permission_id)
            elif permission.name != name:
                permission.name = name

        if role_repo.find_by_name(settings.admin_role) is None:
            role_repo.create(Role(name=settings.admin_role))
            logger.info("관리자 역할 '%s' 생성", settings.admin_role)

        if user_repo.list_all():
            logger.info("사용자가 이미 존재합니다. 관리자 계정 생성을 건너뜁니다.")
            return

        identity = IdentityService(user_repo, role_repo, permission_repo, credential_repo, settings)
        identity.create_user(settings.admin_username, "Administrator", settings.admin_password, settings.admin_email)
        identity.add_user_to_role(settings.admin_username, settings.admin_role)
        for permission_id in settings.application_permissions:
            identity.add_permission_to_role(settings.admin_role, permission_id)
        logger.info("관리자 계정 '%s' 생성 완료.", settings.admin_username)


if __name__ == '__main__':
    logging.basicConfig(level=get_settings().log_level)
    initialize_db()
