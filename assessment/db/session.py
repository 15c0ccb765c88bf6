# assessment/db/session.py
# SQLAlchemy 기본 세팅. DB URL은 .env의 DATABASE_URL을 사용.
import functools
import logging
import time

from sqlalchemy import create_engine
from sqlalchemy.exc import DisconnectionError, OperationalError
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

from assessment.config import settings  # Settings() 인스턴스

logger = logging.getLogger(__name__)

DATABASE_URL = settings.database_url

if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL 환경변수가 설정되어 있지 않습니다.")


def engine_options(url: str) -> dict:
    """URL 종류별 create_engine 옵션"""
    if url.startswith("sqlite"):
        options = {"connect_args": {"check_same_thread": False}}
        # 인메모리 DB는 커넥션 하나를 공유해야 테이블이 보인다
        if url in ("sqlite://", "sqlite:///:memory:"):
            options["poolclass"] = StaticPool
        return options
    return {
        "pool_pre_ping": True,  # 끊어진 커넥션 자동 감지
        "pool_size": 30,
        "max_overflow": 0,      # 풀 크기 초과 연결 금지
        "pool_timeout": 30,     # 풀 고갈 시 대기 시간(초) 후 Timeout
    }


engine = create_engine(DATABASE_URL, **engine_options(DATABASE_URL))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def retry_on_disconnect(func):
    """
    저장소 경계의 재시도.
    - 연결 끊김(OperationalError/DisconnectionError)이면 rollback 후 작업 전체를 다시 실행
    - settings.storage_retry_attempts 회를 넘기면 StorageUnavailable
    - 도메인 에러는 그대로 전파
    서비스 객체의 메서드에 붙이며, 객체는 `db` 속성을 가져야 한다.
    """
    from assessment.services.errors import StorageUnavailable

    @functools.wraps(func)
    def wrapper(self, *args, **kwargs):
        attempts = max(1, settings.storage_retry_attempts)
        for attempt in range(1, attempts + 1):
            try:
                return func(self, *args, **kwargs)
            except (OperationalError, DisconnectionError) as e:
                self.db.rollback()
                if attempt == attempts:
                    logger.error("storage unavailable after %d attempts: %s", attempt, func.__qualname__)
                    raise StorageUnavailable(str(e)) from e
                logger.warning(
                    "storage fault in %s (attempt %d/%d): %s",
                    func.__qualname__, attempt, attempts, e,
                )
                time.sleep(settings.storage_retry_backoff_seconds * attempt)

    return wrapper
