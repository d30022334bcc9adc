from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from compute.config import settings


def make_engine(url: str, echo: bool = False):
    """
    SQLAlchemy 엔진을 생성합니다.
    SQLite는 워커 스레드마다 세션을 열기 때문에 check_same_thread를 꺼야 합니다.
    """
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, echo=echo, connect_args=connect_args)


def make_session_factory(engine):
    # autocommit=False, autoflush=False로 설정하여, 명시적으로 commit을 호출해야 DB에 반영됩니다.
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


engine = make_engine(settings.DATABASE_URL, echo=settings.DB_ECHO)

SessionLocal = make_session_factory(engine)

# 모든 모델 클래스가 상속받을 Base 클래스
Base = declarative_base()
