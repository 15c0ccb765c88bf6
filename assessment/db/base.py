"""
공용 DB 베이스/세션 팩토리.
SessionLocal, engine, Base 정의는 assessment.db.session 한 곳에서 관리한다.
"""
from sqlalchemy import BigInteger, Integer

from assessment.db.session import engine, SessionLocal, Base

# sqlite 는 INTEGER PRIMARY KEY 만 자동 증가
BigIntPK = BigInteger().with_variant(Integer, "sqlite")

__all__ = ["engine", "SessionLocal", "Base", "BigIntPK"]
