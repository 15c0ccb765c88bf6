from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from assessment.deps import get_clock, get_current_user, get_db, require_admin
from assessment.models.sessions import AssessmentSession
from assessment.schemas.session import ModuleIn, SessionCreate, SessionOut, SessionStatsOut
from assessment.services.clock import as_utc
from assessment.services.session_manager import SessionManager

router = APIRouter(prefix="/api/sessions", tags=["sessions"])


def _out(manager: SessionManager, session: AssessmentSession) -> SessionOut:
    out = SessionOut.model_validate(session)
    out.start_time = as_utc(session.start_time)
    out.end_time = as_utc(session.end_time)
    out.effective_status = manager.effective_status(session)
    return out


# ---------- 생성/조회 ----------
@router.post("", response_model=SessionOut, status_code=201)
def create_session(
    body: SessionCreate,
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
    user=Depends(require_admin),
):
    """
    세션 생성 (draft)
    - modules 는 sequence 순(없으면 입력 순)으로 1..n 번호 부여
    - end_time <= start_time 이면 400
    """
    manager = SessionManager(db, clock=clock)
    return _out(manager, manager.create_session(body))


@router.get("/code/{code}", response_model=SessionOut)
def get_session_by_code(
    code: str,
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
    user=Depends(get_current_user),
):
    manager = SessionManager(db, clock=clock)
    return _out(manager, manager.get_by_code(code))


@router.get("/{session_id}", response_model=SessionOut)
def get_session(
    session_id: int,
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
    user=Depends(get_current_user),
):
    manager = SessionManager(db, clock=clock)
    return _out(manager, manager.get(session_id))


@router.get("/{session_id}/stats", response_model=SessionStatsOut)
def get_session_stats(
    session_id: int,
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
    user=Depends(require_admin),
):
    return SessionManager(db, clock=clock).stats(session_id)


# ---------- 상태 전이 ----------
@router.post("/{session_id}/activate", response_model=SessionOut)
def activate_session(session_id: int, db: Session = Depends(get_db), clock=Depends(get_clock), user=Depends(require_admin)):
    manager = SessionManager(db, clock=clock)
    return _out(manager, manager.activate(session_id))


@router.post("/{session_id}/cancel", response_model=SessionOut)
def cancel_session(session_id: int, db: Session = Depends(get_db), clock=Depends(get_clock), user=Depends(require_admin)):
    manager = SessionManager(db, clock=clock)
    return _out(manager, manager.cancel(session_id))


@router.post("/{session_id}/complete", response_model=SessionOut)
def complete_session(session_id: int, db: Session = Depends(get_db), clock=Depends(get_clock), user=Depends(require_admin)):
    manager = SessionManager(db, clock=clock)
    return _out(manager, manager.complete(session_id))


@router.post("/{session_id}/expire", response_model=SessionOut)
def expire_session(session_id: int, db: Session = Depends(get_db), clock=Depends(get_clock), user=Depends(require_admin)):
    manager = SessionManager(db, clock=clock)
    return _out(manager, manager.expire(session_id))


# ---------- 모듈 ----------
@router.post("/{session_id}/modules", response_model=SessionOut, status_code=201)
def add_module(
    session_id: int,
    body: ModuleIn,
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
    user=Depends(require_admin),
):
    """sequence 를 주면 그 위치에 끼워 넣고 뒤 모듈은 밀림"""
    manager = SessionManager(db, clock=clock)
    return _out(manager, manager.add_module(session_id, body))


@router.delete("/{session_id}/modules/{test_id}", response_model=SessionOut)
def remove_module(
    session_id: int,
    test_id: int,
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
    user=Depends(require_admin),
):
    manager = SessionManager(db, clock=clock)
    return _out(manager, manager.remove_module(session_id, test_id))
