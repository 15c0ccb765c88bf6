# assessment/config.py


from dotenv import load_dotenv
from pathlib import Path
from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()  # .env 파일 먼저 읽기

BASE_DIR = Path(__file__).resolve().parent.parent

class Settings(BaseSettings):
    # 환경 구분
    app_env: str = "local"

    # DB
    database_url: str = "sqlite:///./assessment.db"   # DATABASE_URL

    # JWT (Bearer 토큰 검증)
    jwt_secret: str | None = None            # JWT_SECRET
    jwt_audience: str | None = None          # JWT_AUDIENCE
    jwt_issuer: str | None = None            # JWT_ISSUER

    # 참가자 링크
    frontend_url: str = "http://localhost:3000"
    link_expires_hours: int = 24

    # 세션/응시 정책
    late_entry_grace_minutes: int = 0
    mark_no_show_on_close: bool = True

    # 상태 동기화 스케줄러
    scheduler_enabled: bool = True
    scheduler_interval_seconds: int = 180
    scheduler_auto_activate: bool = True

    # 저장소 재시도
    storage_retry_attempts: int = 3
    storage_retry_backoff_seconds: float = 0.2

    log_level: str = "INFO"
    cors_origins: List[str] = ["*"]

    # pydantic-settings v2 스타일
    model_config = SettingsConfigDict(
        env_file=str(BASE_DIR / ".env"),  # 루트 .env 절대경로
        env_file_encoding="utf-8",
        extra="ignore",                   # 필요 없는 env 무시
    )

settings = Settings()

if __name__ == "__main__":
    print("BASE_DIR:", BASE_DIR)
    print("DATABASE_URL:", settings.database_url)
    print("SCHEDULER:", settings.scheduler_enabled, settings.scheduler_interval_seconds)
