# assessment/models/session_module.py
from sqlalchemy import Column, BigInteger, Integer, Boolean, Numeric, DateTime, ForeignKey, UniqueConstraint, func
from sqlalchemy.orm import relationship
from assessment.db.base import Base, BigIntPK

class SessionModule(Base):
    __tablename__ = "session_modules"

    id = Column(BigIntPK, primary_key=True, index=True)
    session_id = Column(BigInteger, ForeignKey("test_sessions.id"), nullable=False, index=True)
    test_id = Column(BigInteger, ForeignKey("tests.id"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)  # 1부터, 세션 안에서 빈칸 없이
    is_required = Column(Boolean, nullable=False, default=True)
    weight = Column(Numeric(5, 2), nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("session_id", "test_id", name="uq_session_modules_session_test"),
    )

    session = relationship("AssessmentSession", back_populates="modules")
    test = relationship("CatalogTest", lazy="joined")
