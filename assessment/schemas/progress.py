from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Optional, List

# -- Request --

# 응시 활동 기록 - 요청
class ActivityIn(BaseModel):
    answered_questions: Optional[int] = Field(None, description="누적 응답 수 (절대값)")
    time_spent_delta: Optional[int] = Field(None, description="추가 소요 시간(초)")


# 응시 종료 - 요청
class CompleteIn(BaseModel):
    answered_questions: Optional[int] = None


# -- Response --

class ProgressOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    session_id: int
    participant_id: int
    test_id: int
    status: str
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    answered_questions: int
    total_questions: int
    time_spent: int
    is_auto_completed: bool
    last_activity_at: Optional[datetime] = None
    time_limit: Optional[int] = None
    expected_completion_at: Optional[datetime] = None
    time_remaining: Optional[int] = None
    is_time_expired: bool
    progress_percentage: int


class NextStepOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    session_complete: bool
    test_id: Optional[int] = None
    sequence: Optional[int] = None


class CompletionOut(BaseModel):
    progress: Optional[ProgressOut] = None
    next_step: Optional[NextStepOut] = None
    changed: bool


class SweepOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    ran_at: datetime
    activated: int
    expired: int
    completed_sessions: int
    auto_completed: int
    failures: int


class ParticipantProgressOut(BaseModel):
    participant_id: int
    modules: List[ProgressOut]
    next_step: NextStepOut
