# assessment/models/sessions.py
from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, Enum, Index, func
from sqlalchemy.orm import relationship
from assessment.db.base import Base, BigIntPK

SESSION_STATUSES = ("draft", "active", "expired", "completed", "cancelled")

class AssessmentSession(Base):
    __tablename__ = "test_sessions"

    id = Column(BigIntPK, primary_key=True, index=True)
    session_name = Column(String(255), nullable=False)
    session_code = Column(String(50), nullable=False, unique=True)
    description = Column(Text, nullable=True)

    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    status = Column(
        Enum(*SESSION_STATUSES, name="session_status", native_enum=False),
        nullable=False,
        default="draft",
    )  # draft|active|expired|completed|cancelled

    auto_expire = Column(Boolean, nullable=False, default=True)
    allow_late_entry = Column(Boolean, nullable=False, default=False)
    max_participants = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())

    __table_args__ = (
        Index("ix_test_sessions_status_end_time", "status", "end_time"),
    )

    # 관계
    modules = relationship(
        "SessionModule",
        back_populates="session",
        order_by="SessionModule.sequence",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
