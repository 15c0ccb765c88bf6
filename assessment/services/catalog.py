# assessment/services/catalog.py
"""
검사 카탈로그 조회 (읽기 전용)
- time_limit(분), total_questions 를 제공
"""
from typing import Optional
from sqlalchemy.orm import Session

from assessment.models.catalog import CatalogTest


class TestCatalog:
    __test__ = False  # pytest 수집 대상 아님

    def __init__(self, db: Session):
        self.db = db

    def get(self, test_id: int) -> Optional[CatalogTest]:
        return self.db.get(CatalogTest, test_id)

    def time_limits(self, test_ids) -> dict:
        """{test_id: time_limit} - 스윕에서 한 번에 읽기 위함"""
        ids = list(set(test_ids))
        if not ids:
            return {}
        rows = (
            self.db.query(CatalogTest.id, CatalogTest.time_limit)
            .filter(CatalogTest.id.in_(ids))
            .all()
        )
        return {row.id: row.time_limit for row in rows}
