# assessment/deps.py
import logging
from uuid import UUID

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from assessment.db.session import SessionLocal
from assessment.models.participants import SessionParticipant
from assessment.models.user_profile import UserProfile
from assessment.services.auth import verify_bearer
from assessment.services.clock import system_clock
from assessment.services.enrollment import EnrollmentManager

logger = logging.getLogger(__name__)

# ----------------------------
# DB 세션
# ----------------------------
def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()  # commit 포함
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

# ----------------------------
# 시계 (테스트에서 override)
# ----------------------------
def get_clock():
    return system_clock

# ----------------------------
# 현재 사용자 가져오기
# ----------------------------
async def get_current_user(
    authorization: str | None = Header(None),
):
    """
    인증은 항상 짧은 DB 세션으로 처리해 커넥션 점유 시간을 최소화한다.
    처음 보는 사용자는 프로필을 만든다.
    """
    try:
        claims = await verify_bearer(authorization)
        user_id = UUID(str(claims["user_id"]))
    except ValueError as e:
        logger.info("verify_bearer failed: %s", e)
        raise HTTPException(status_code=401, detail="unauthorized")

    with SessionLocal() as db:
        prof = db.get(UserProfile, user_id)
        if prof is None:
            prof = UserProfile(
                id=user_id,
                email=claims.get("email"),
                role=claims.get("role") or "participant",
                status="active",
                profile_meta={},
            )
            db.add(prof)
            db.commit()
            db.refresh(prof)

    if prof.status == "blocked":
        raise HTTPException(status_code=403, detail="account_blocked")

    return {
        "id": user_id,
        "email": claims.get("email") or prof.email,
        "role": claims.get("role") or prof.role,
        "profile": prof,
    }

# ----------------------------
# 권한
# ----------------------------
def require_admin(user=Depends(get_current_user)):
    if user["role"] != "admin":
        raise HTTPException(status_code=403, detail="admin_only")
    return user


def participant_access(
    session_id: int,
    participant_id: int,
    user=Depends(get_current_user),
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
) -> SessionParticipant:
    """본인 등록 건이거나 관리자만 접근"""
    participant = EnrollmentManager(db, clock=clock).get_in_session(session_id, participant_id)
    if user["role"] != "admin" and participant.user_id != user["id"]:
        raise HTTPException(status_code=403, detail="forbidden")
    return participant
