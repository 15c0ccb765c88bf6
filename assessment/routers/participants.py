from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from assessment.deps import get_clock, get_current_user, get_db, require_admin
from assessment.schemas.participant import (
    BulkInviteIn,
    BulkInviteOut,
    InviteIn,
    InviteOut,
    LinkResolvedOut,
    ParticipantOut,
    SkippedOut,
    StatusUpdateIn,
)
from assessment.services.enrollment import EnrollmentManager, InviteResult

router = APIRouter(prefix="/api/sessions/{session_id}/participants", tags=["participants"])
links_router = APIRouter(prefix="/api/participant-links", tags=["participants"])


def _invite_out(result: InviteResult) -> InviteOut:
    return InviteOut(
        participant=ParticipantOut.model_validate(result.participant),
        access_url=result.access_url,
        warnings=result.warnings,
    )


# ---------- 초대 ----------
@router.post("", response_model=InviteOut, status_code=201)
def invite_participant(
    session_id: int,
    body: InviteIn,
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
    user=Depends(require_admin),
):
    """
    참가자 1명 초대
    - 이미 등록: 409 duplicate_participant / 정원 초과: 409 session_full
    - 초대 전송 실패는 warnings 로만 반환 (등록은 유지)
    """
    result = EnrollmentManager(db, clock=clock).invite(
        session_id,
        body.user_id,
        link_expires_hours=body.link_expires_hours,
        send_invitation=body.send_invitation,
    )
    return _invite_out(result)


@router.post("/bulk", response_model=BulkInviteOut, status_code=201)
def bulk_invite_participants(
    session_id: int,
    body: BulkInviteIn,
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
    user=Depends(require_admin),
):
    """일부가 skip 되어도 성공. skipped_participants 에 사유 포함"""
    result = EnrollmentManager(db, clock=clock).bulk_invite(
        session_id,
        body.user_ids,
        link_expires_hours=body.link_expires_hours,
        send_invitations=body.send_invitations,
    )
    return BulkInviteOut(
        total_added=result.total_added,
        added=[_invite_out(item) for item in result.added],
        skipped_participants=[SkippedOut(user_id=s.user_id, reason=s.reason) for s in result.skipped],
        warnings=result.warnings,
    )


# ---------- 상태/삭제 ----------
@router.patch("/{participant_id}/status", response_model=ParticipantOut)
def update_participant_status(
    session_id: int,
    participant_id: int,
    body: StatusUpdateIn,
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
    user=Depends(require_admin),
):
    manager = EnrollmentManager(db, clock=clock)
    manager.get_in_session(session_id, participant_id)
    return manager.update_status(participant_id, body.status)


@router.delete("/{participant_id}", status_code=204)
def remove_participant(
    session_id: int,
    participant_id: int,
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
    user=Depends(require_admin),
):
    manager = EnrollmentManager(db, clock=clock)
    manager.get_in_session(session_id, participant_id)
    manager.remove(participant_id)


# ---------- 링크 ----------
@links_router.post("/{token}", response_model=LinkResolvedOut)
def resolve_participant_link(
    token: str,
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
    user=Depends(get_current_user),
):
    """초대 링크 확인. 처음이면 invited -> registered"""
    owner = None if user["role"] == "admin" else user["id"]
    participant = EnrollmentManager(db, clock=clock).resolve_link(token, user_id=owner)
    return LinkResolvedOut(
        participant=ParticipantOut.model_validate(participant),
        session_id=participant.session_id,
        session_code=participant.session.session_code,
    )
