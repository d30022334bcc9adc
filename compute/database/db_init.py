import logging

from .database import engine as default_engine, Base
from .models import *
from compute.logging_config import configure_logging

logger = logging.getLogger(__name__)


def initialize_db(engine=None):
    """
    VM 메타데이터 테이블을 생성합니다. (이미 존재하면 생성하지 않음)
    """
    engine = engine or default_engine
    logger.info("DB 초기화 중 (%s)...", engine.url)
    Base.metadata.create_all(bind=engine)
    logger.info("테이블 생성 완료.")


def main():
    configure_logging()
    initialize_db()


if __name__ == '__main__':
    main()
