"""애플리케이션 설정."""
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """환경 변수(COMPUTE_ 접두사) 또는 .env 파일에서 읽어오는 설정값."""

    # 데이터베이스
    DATABASE_URL: str = "sqlite:///compute_metadata.db"
    DB_ECHO: bool = False

    # 서버
    HOST: str = ""
    PORT: int = 8000

    # 라이프사이클 작업을 실행하는 워커 풀의 최대 동시 실행 수
    MAX_WORKERS: int = 10

    # 낙관적 동시성 충돌 시 최신 상태로 가드를 다시 평가하는 최대 횟수
    CONFLICT_RETRY_LIMIT: int = 3

    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", env_prefix="COMPUTE_")


settings = Settings()
