from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Literal, Optional, List
from uuid import UUID

# -- Request --

# 참가자 초대 - 요청
class InviteIn(BaseModel):
    user_id: UUID = Field(..., description="초대할 사용자 ID")
    link_expires_hours: Optional[int] = Field(None, ge=1, le=24 * 30, description="링크 유효 시간 (없으면 기본값)")
    send_invitation: bool = Field(True, description="초대 링크 전송 여부")


# 일괄 초대 - 요청
class BulkInviteIn(BaseModel):
    user_ids: List[UUID] = Field(..., min_length=1, max_length=500, description="초대할 사용자 ID 목록")
    link_expires_hours: Optional[int] = Field(None, ge=1, le=24 * 30)
    send_invitations: bool = True


# 참가자 상태 변경 - 요청
class StatusUpdateIn(BaseModel):
    status: Literal["invited", "registered", "started", "completed", "no_show"]


# -- Response --

class ParticipantOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    session_id: int
    user_id: UUID
    status: str
    invitation_sent_at: Optional[datetime] = None
    registered_at: Optional[datetime] = None
    link_expires_at: datetime


class InviteOut(BaseModel):
    participant: ParticipantOut
    access_url: str
    warnings: List[str] = Field(default_factory=list)


class SkippedOut(BaseModel):
    user_id: UUID
    reason: str  # already_enrolled | session_full | inactive_user | user_not_found


class BulkInviteOut(BaseModel):
    total_added: int
    added: List[InviteOut]
    skipped_participants: List[SkippedOut]
    warnings: List[str] = Field(default_factory=list)


# 링크 확인 - 응답
class LinkResolvedOut(BaseModel):
    participant: ParticipantOut
    session_id: int
    session_code: str
