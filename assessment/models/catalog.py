# assessment/models/catalog.py
# 검사(test) 카탈로그. 엔진은 읽기만 한다.
from sqlalchemy import Boolean, Column, Integer, String, DateTime, func
from assessment.db.base import Base, BigIntPK

class CatalogTest(Base):
    __tablename__ = "tests"

    id = Column(BigIntPK, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    time_limit = Column(Integer, nullable=False)        # 분 단위
    total_questions = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
