from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from account_admin.config import get_settings

# 모든 모델 클래스가 상속받을 Base 클래스
Base = declarative_base()


def build_engine(database_url: str, timeout_seconds: float = 30.0, **kwargs) -> Engine:
    """
    SQLAlchemy 엔진을 생성합니다.

    SQLite인 경우 요청마다 다른 스레드에서 세션을 사용하므로 check_same_thread를 끄고,
    잠금 대기 시간(timeout)을 지정하여 멈춘 트랜잭션이 무한정 대기하지 않도록 합니다.
    외래 키 제약은 연결마다 PRAGMA로 활성화합니다.
    """
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": timeout_seconds}
    engine = create_engine(database_url, connect_args=connect_args, **kwargs)

    if engine.dialect.name == "sqlite":
        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


_settings = get_settings()
engine = build_engine(_settings.database_url, _settings.db_timeout_seconds)

# autocommit=False, autoflush=False: commit은 session_scope()에서만 호출됩니다.
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def session_scope(session_factory: sessionmaker = SessionLocal) -> Iterator[Session]:
    """
    하나의 작업 단위(unit of work)를 위한 세션을 제공하는 Context Manager.

    블록이 정상 종료되면 commit, 예외가 발생하면 rollback 후 예외를 다시 던지고,
    어느 경우든 세션을 닫습니다. 중간에 실패한 연쇄 삭제가 일부만 반영되는 일은 없습니다.

    사용 예시:
        with session_scope() as db:
            service = IdentityService(...db 기반 리포지토리...)
            service.delete_role("Administrator")
    """
    db = session_factory()
    try:
        yield db
        db.commit()
    except BaseException:
        db.rollback()
        raise
    finally:
        db.close()
