from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from assessment.deps import get_clock, get_db, require_admin
from assessment.schemas.progress import SweepOut
from assessment.services.scheduler import StatusScheduler

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.post("/status/sweep", response_model=SweepOut)
def trigger_status_sweep(
    now: Optional[datetime] = Query(None, description="기준 시각 (없으면 현재)"),
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
    user=Depends(require_admin),
):
    """
    상태 정합 즉시 실행 (주기 작업과 같은 sweep)
    - 세션 expire/complete, 시간 초과 응시 auto_completed
    - 행 단위 실패는 failures 로만 집계
    """
    return StatusScheduler(db, clock=clock).sweep(now)
