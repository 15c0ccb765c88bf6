# assessment/models/participants.py
from sqlalchemy import Column, BigInteger, String, DateTime, Enum, ForeignKey, Uuid, Index, UniqueConstraint, func
from sqlalchemy.orm import relationship
from assessment.db.base import Base, BigIntPK

PARTICIPANT_STATUSES = ("invited", "registered", "started", "completed", "no_show")

class SessionParticipant(Base):
    __tablename__ = "session_participants"

    id = Column(BigIntPK, primary_key=True, index=True)
    session_id = Column(BigInteger, ForeignKey("test_sessions.id"), nullable=False, index=True)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("user_profiles.id"), nullable=False, index=True)

    status = Column(
        Enum(*PARTICIPANT_STATUSES, name="participant_status", native_enum=False),
        nullable=False,
        default="invited",
    )  # invited|registered|started|completed|no_show

    invitation_sent_at = Column(DateTime(timezone=True), nullable=True)
    registered_at = Column(DateTime(timezone=True), nullable=True)
    unique_link = Column(String(64), nullable=False, unique=True)
    link_expires_at = Column(DateTime(timezone=True), nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("session_id", "user_id", name="uq_session_participants_session_user"),
        Index("ix_session_participants_session_status", "session_id", "status"),
    )

    user = relationship("UserProfile", lazy="joined")
    session = relationship("AssessmentSession", lazy="select")
