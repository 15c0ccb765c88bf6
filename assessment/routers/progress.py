from dataclasses import asdict
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from assessment.deps import get_clock, get_db, participant_access
from assessment.schemas.progress import (
    ActivityIn,
    CompleteIn,
    CompletionOut,
    NextStepOut,
    ParticipantProgressOut,
    ProgressOut,
)
from assessment.services.navigation import NavigationCoordinator
from assessment.services.progress_engine import CompletionResult, ProgressEngine, ProgressView

router = APIRouter(prefix="/api/sessions/{session_id}/participants/{participant_id}", tags=["progress"])


def _progress_out(view: ProgressView) -> ProgressOut:
    return ProgressOut(**asdict(view))


def _completion_out(result: CompletionResult) -> CompletionOut:
    return CompletionOut(
        progress=_progress_out(result.view) if result.view else None,
        next_step=NextStepOut.model_validate(result.next_step) if result.next_step else None,
        changed=result.changed,
    )


@router.post("/tests/{test_id}/start", response_model=ProgressOut)
def start_test(
    session_id: int,
    participant_id: int,
    test_id: int,
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
    participant=Depends(participant_access),
):
    """
    검사 시작
    - 이미 시작: 409 already_started
    - 세션 비활성: 403 session_not_active / 지각 불가: 403 late_entry_not_allowed
    """
    return _progress_out(ProgressEngine(db, clock=clock).start(session_id, participant_id, test_id))


@router.patch("/tests/{test_id}/progress", response_model=ProgressOut)
def record_activity(
    session_id: int,
    participant_id: int,
    test_id: int,
    body: ActivityIn,
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
    participant=Depends(participant_access),
):
    """시간이 지났으면 자동 종료 후 409 attempt_not_active"""
    view = ProgressEngine(db, clock=clock).record_activity(
        session_id,
        participant_id,
        test_id,
        answered_questions=body.answered_questions,
        time_spent_delta=body.time_spent_delta,
    )
    return _progress_out(view)


@router.post("/tests/{test_id}/complete", response_model=CompletionOut)
def complete_test(
    session_id: int,
    participant_id: int,
    test_id: int,
    body: CompleteIn | None = None,
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
    participant=Depends(participant_access),
):
    answered = body.answered_questions if body else None
    result = ProgressEngine(db, clock=clock).complete(
        session_id, participant_id, test_id, auto=False, answered_questions=answered
    )
    return _completion_out(result)


@router.get("/tests/{test_id}/progress", response_model=ProgressOut)
def get_progress(
    session_id: int,
    participant_id: int,
    test_id: int,
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
    participant=Depends(participant_access),
):
    return _progress_out(ProgressEngine(db, clock=clock).get_progress(session_id, participant_id, test_id))


@router.get("/progress", response_model=ParticipantProgressOut)
def list_progress(
    session_id: int,
    participant_id: int,
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
    participant=Depends(participant_access),
):
    """전체 모듈 진행 현황 + 다음 검사"""
    views: List[ProgressView] = ProgressEngine(db, clock=clock).list_progress(session_id, participant_id)
    step = NavigationCoordinator(db, clock=clock).next_step(session_id, participant_id)
    return ParticipantProgressOut(
        participant_id=participant_id,
        modules=[_progress_out(v) for v in views],
        next_step=NextStepOut.model_validate(step),
    )


@router.get("/next", response_model=NextStepOut)
def next_step(
    session_id: int,
    participant_id: int,
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
    participant=Depends(participant_access),
):
    return NextStepOut.model_validate(NavigationCoordinator(db, clock=clock).next_step(session_id, participant_id))
