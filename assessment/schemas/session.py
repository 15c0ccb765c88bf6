from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

# -- Request --

# 세션에 배정할 검사 모듈
class ModuleIn(BaseModel):
    test_id: int = Field(..., description="카탈로그 검사 ID")
    is_required: bool = Field(True, description="필수 여부")
    weight: Decimal = Field(Decimal("1.00"), ge=0, le=999, description="가중치")
    sequence: Optional[int] = Field(None, ge=1, description="순서 (없으면 입력 순서)")


# 세션 생성 - 요청
class SessionCreate(BaseModel):
    session_name: str = Field(..., min_length=1, max_length=255, description="세션명")
    session_code: Optional[str] = Field(None, min_length=3, max_length=50, description="세션 코드 (없으면 자동 생성)")
    description: Optional[str] = None
    start_time: datetime
    end_time: datetime
    auto_expire: bool = True
    allow_late_entry: bool = False
    max_participants: Optional[int] = Field(None, ge=1)
    modules: List[ModuleIn] = Field(default_factory=list)


# -- Response --

class ModuleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    test_id: int
    sequence: int
    is_required: bool
    weight: Decimal


class SessionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    session_name: str
    session_code: str
    description: Optional[str] = None
    start_time: datetime
    end_time: datetime
    status: str
    effective_status: Optional[str] = None
    auto_expire: bool
    allow_late_entry: bool
    max_participants: Optional[int] = None
    modules: List[ModuleOut] = Field(default_factory=list)


class SessionStatsOut(BaseModel):
    session_id: int
    status: str
    effective_status: str
    current_participants: int
    participants_by_status: dict
    completion_rate: int
