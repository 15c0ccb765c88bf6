# assessment/main.py

# ------------------------
# 환경 변수 로드
# ------------------------
from dotenv import load_dotenv
load_dotenv()

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

# ------------------------
# FastAPI, CORS 미들웨어 import
# ------------------------
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from assessment.config import settings
from assessment.db.models import create_all
from assessment.db.session import engine
from assessment.services.errors import EngineError, StorageUnavailable
from assessment.services.scheduler import sweep_forever

# ------------------------
# 라우터 import
# ------------------------
from assessment.routers import admin as admin_router
from assessment.routers import auth as auth_router
from assessment.routers import participants as participants_router
from assessment.routers import progress as progress_router
from assessment.routers import sessions as sessions_router

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ------------------------
# 1) lifespan
#    - 테이블 생성
#    - 상태 정합 sweep 주기 작업 (scheduler_enabled)
# ------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    create_all(engine)
    task = None
    if settings.scheduler_enabled:
        task = asyncio.create_task(sweep_forever(settings.scheduler_interval_seconds))
    yield
    if task is not None:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("status scheduler stopped")


# ------------------------
# 2) 도메인 에러 -> HTTP
#    - 라우터의 HTTPException 과 같은 {"detail": {...}} 모양
# ------------------------
async def engine_error_handler(request: Request, exc: EngineError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": {"message": exc.code, "detail": exc.detail}},
    )


async def storage_unavailable_handler(request: Request, exc: StorageUnavailable):
    logger.error("storage unavailable on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": {"message": exc.code, "detail": exc.detail}},
    )


def create_app() -> FastAPI:
    app = FastAPI(title="Assessment Session API", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,  # 쿠키 안 쓰면 False
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(EngineError, engine_error_handler)
    app.add_exception_handler(StorageUnavailable, storage_unavailable_handler)

    # ------------------------
    # 3) 라우터 등록
    # ------------------------
    app.include_router(auth_router.router)
    app.include_router(sessions_router.router)
    app.include_router(participants_router.router)
    app.include_router(participants_router.links_router)
    app.include_router(progress_router.router)
    app.include_router(admin_router.router)

    # ------------------------
    # 4) Root 엔드포인트 (health check)
    # ------------------------
    @app.get("/")
    def root():
        return {"ok": True}

    return app


app = create_app()
