# tests/conftest.py
"""
공용 테스트 Fixture.

각 테스트는 StaticPool을 사용하는 독립된 인메모리 SQLite DB를 받습니다.
StaticPool은 하나의 연결을 모든 세션이 공유하게 하므로, session_scope()로
커밋한 내용을 같은 테스트의 다른 세션에서 읽을 수 있습니다.
"""
import os

# 설정 모듈이 import되기 전에 지정해야 기본 엔진이 파일 DB를 가리키지 않습니다.
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from account_admin.config import Settings
from account_admin.database import models
from account_admin.database.database import Base, build_engine
from account_admin.repositories.sqlalchemy import (
    SqlalchemyCredentialRepository, SqlalchemyPermissionRepository,
    SqlalchemyRoleRepository, SqlalchemyUserRepository
)
from account_admin.services.identity_service import IdentityService


@pytest.fixture(autouse=True)
def fast_password_hashing(monkeypatch):
    """테스트 속도를 위해 PBKDF2 반복 횟수를 줄입니다."""
    monkeypatch.setattr(SqlalchemyCredentialRepository, "HASH_ITERATIONS", 1000)


@pytest.fixture
def settings() -> Settings:
    """테스트용 설정. .env 파일은 읽지 않습니다."""
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        admin_username="root",
        admin_password="S3cure!pass",
        max_invalid_password_attempts=3,
        application_permissions={"P1": "ManageUsers", "P2": "ViewReports"},
    )


@pytest.fixture
def engine():
    engine = build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def seed_permissions(db_session):
    """외부에서 준비되는 권한 카탈로그를 흉내 냅니다."""
    db_session.add_all([
        models.Permission(id="P1", name="ManageUsers"),
        models.Permission(id="P2", name="ViewReports"),
    ])
    db_session.flush()


@pytest.fixture
def identity_factory(settings):
    """주어진 세션 위에 실제 SQLAlchemy 리포지토리로 IdentityService를 조립하는 함수."""
    def build(session) -> IdentityService:
        return IdentityService(
            SqlalchemyUserRepository(session),
            SqlalchemyRoleRepository(session),
            SqlalchemyPermissionRepository(session),
            SqlalchemyCredentialRepository(session, settings),
            settings,
        )
    return build


@pytest.fixture
def identity(db_session, seed_permissions, identity_factory) -> IdentityService:
    """db_session 하나를 공유하는 IdentityService. (커밋하지 않음)"""
    return identity_factory(db_session)
