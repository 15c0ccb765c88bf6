# assessment/routers/auth.py
from datetime import datetime
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict

from assessment.deps import get_current_user
from assessment.models.user_profile import UserProfile

router = APIRouter(prefix="/api/auth", tags=["auth"])

# ---------- Schemas ----------
class MeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: UUID
    email: str | None = None
    display_name: str | None = None
    role: str
    status: Literal["active", "blocked", "deleted"]
    created_at: datetime | None = None

# ---------- Endpoints ----------
@router.get("/me", response_model=MeOut, response_model_exclude_none=True)
def me(user=Depends(get_current_user)):
    """
    현재 로그인한 사용자 정보 조회.
    - 인증: Authorization: Bearer <token>
    - 반환: 토큰의 sub(=id), email, role 과 user_profiles 의 표시명/상태
    """
    profile: UserProfile = user["profile"]
    return MeOut(
        id=user["id"],
        email=user["email"],
        display_name=profile.display_name,
        role=user["role"],
        status=profile.status,
        created_at=getattr(profile, "created_at", None),
    )
