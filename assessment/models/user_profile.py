# assessment/models/user_profile.py
# 인증 제공자의 사용자 id 를 보조하는 프로필 테이블 모델
from sqlalchemy import Column, String, DateTime, JSON, Uuid, text, Enum
from assessment.db.base import Base

USER_STATUSES = ("active", "blocked", "deleted")

class UserProfile(Base):
    __tablename__ = "user_profiles"
    id = Column(Uuid(as_uuid=True), primary_key=True)  # = 토큰의 sub
    display_name = Column(String(100))
    email = Column(String(255), nullable=True)
    role = Column(String(20), nullable=False, server_default=text("'participant'"))  # admin|participant
    status = Column(
        Enum(*USER_STATUSES, name="user_status", native_enum=False),
        nullable=False,
        server_default=text("'active'")
    )
    profile_meta = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP"))
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP"))

    @property
    def is_active(self) -> bool:
        return self.status == "active"
