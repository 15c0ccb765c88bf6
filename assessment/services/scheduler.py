"""
상태 정합 스케줄러
- 시간 경과만으로 일어나는 전이를 모두 여기서 처리한다 (다른 서비스의 전이 함수를 그대로 호출)
  1) 시작 시각이 된 draft 세션 활성화 (설정)
  2) 제한 시간이 지난 in_progress 응시 자동 종료
  3) 종료 시각이 지난 active 세션 expire (전원 completed 이면 complete)
- sweep 은 멱등이며 예외를 던지지 않는다. 행 단위 실패는 로그 후 건너뜀.
"""
import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from assessment.config import settings
from assessment.db.session import SessionLocal
from assessment.models.participants import SessionParticipant
from assessment.models.sessions import AssessmentSession
from assessment.models.test_progress import ParticipantTestProgress
from assessment.services.catalog import TestCatalog
from assessment.services.clock import FrozenClock, as_utc, system_clock
from assessment.services.errors import InvalidStateTransition
from assessment.services.events import hub
from assessment.services.progress_engine import ProgressEngine, is_time_expired
from assessment.services.session_manager import SessionManager

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    ran_at: datetime
    activated: int = 0
    expired: int = 0
    completed_sessions: int = 0
    auto_completed: int = 0
    failures: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


class StatusScheduler:
    def __init__(self, db: Session, clock=None, events=None):
        self.db = db
        self.clock = clock or system_clock
        self.events = events or hub

    def sweep(self, now: Optional[datetime] = None) -> SweepReport:
        now = as_utc(now) if now is not None else self.clock.now()
        # 이번 스윕의 모든 전이는 같은 now 로 기록
        clock = FrozenClock(now)
        report = SweepReport(ran_at=now)

        if settings.scheduler_auto_activate:
            self._activate_due(clock, report)
        self._finish_overdue_attempts(clock, report)
        self._close_overdue_sessions(clock, report)

        logger.info(
            "sweep at %s: activated=%d expired=%d completed=%d auto_completed=%d failures=%d",
            now.isoformat(), report.activated, report.expired, report.completed_sessions,
            report.auto_completed, report.failures,
        )
        return report

    # ---------- 공통 ----------
    def _list(self, label: str, query: Callable, report: SweepReport):
        try:
            return query()
        except Exception:
            self.db.rollback()
            logger.exception("sweep: listing %s failed", label)
            report.failures += 1
            return []

    def _each(self, label: str, entity_id: int, action: Callable, report: SweepReport):
        """행 하나 처리. 경쟁으로 이미 전이된 경우는 no-op (None)."""
        try:
            return action()
        except InvalidStateTransition:
            self.db.rollback()
            return None
        except Exception:
            self.db.rollback()
            logger.exception("sweep: %s %s failed", label, entity_id)
            report.failures += 1
            return None

    # ---------- 1) draft 활성화 ----------
    def _activate_due(self, clock: FrozenClock, report: SweepReport) -> None:
        now = clock.now()
        due = self._list(
            "draft sessions",
            lambda: [
                row.id
                for row in self.db.query(AssessmentSession.id)
                .filter(
                    AssessmentSession.status == "draft",
                    AssessmentSession.start_time <= now,
                    AssessmentSession.end_time >= now,
                )
                .all()
            ],
            report,
        )
        manager = SessionManager(self.db, clock=clock, events=self.events)
        for session_id in due:
            if self._each("activate session", session_id, lambda: bool(manager.activate(session_id)), report):
                report.activated += 1

    # ---------- 2) 응시 자동 종료 ----------
    def _finish_overdue_attempts(self, clock: FrozenClock, report: SweepReport) -> None:
        now = clock.now()
        rows = self._list(
            "attempts in progress",
            lambda: self.db.query(
                ParticipantTestProgress.id, ParticipantTestProgress.test_id, ParticipantTestProgress.started_at
            )
            .filter(ParticipantTestProgress.status == "in_progress")
            .all(),
            report,
        )
        if not rows:
            return
        test_ids = [row.test_id for row in rows]
        limits = self._list("catalog time limits", lambda: TestCatalog(self.db).time_limits(test_ids), report)
        if not limits:
            return

        engine = ProgressEngine(self.db, clock=clock, events=self.events)
        for row in rows:
            if not is_time_expired(row.started_at, limits.get(row.test_id), now):
                continue
            if self._each("auto-complete attempt", row.id, lambda: engine.auto_complete(row.id).changed, report):
                report.auto_completed += 1

    # ---------- 3) 세션 종료 ----------
    def _close_overdue_sessions(self, clock: FrozenClock, report: SweepReport) -> None:
        now = clock.now()
        overdue = self._list(
            "overdue sessions",
            lambda: [
                row.id
                for row in self.db.query(AssessmentSession.id)
                .filter(
                    AssessmentSession.status == "active",
                    AssessmentSession.auto_expire.is_(True),
                    AssessmentSession.end_time < now,
                )
                .all()
            ],
            report,
        )
        manager = SessionManager(self.db, clock=clock, events=self.events)
        for session_id in overdue:
            outcome = self._each("close session", session_id, lambda: self._close(manager, session_id), report)
            if outcome == "completed":
                report.completed_sessions += 1
            elif outcome == "expired":
                report.expired += 1

    def _close(self, manager: SessionManager, session_id: int) -> str:
        if self._everyone_completed(session_id):
            manager.complete(session_id)
            return "completed"
        manager.expire(session_id)
        return "expired"

    def _everyone_completed(self, session_id: int) -> bool:
        statuses = [
            row.status
            for row in self.db.query(SessionParticipant.status)
            .filter(SessionParticipant.session_id == session_id)
            .all()
        ]
        return bool(statuses) and all(status == "completed" for status in statuses)


def run_sweep_once(now: Optional[datetime] = None) -> SweepReport:
    """독립 DB 세션으로 스윕 1회"""
    db = SessionLocal()
    try:
        return StatusScheduler(db).sweep(now)
    finally:
        db.close()


async def sweep_forever(interval_seconds: int) -> None:
    """lifespan 에서 띄우는 주기 작업. 취소되면 종료."""
    logger.info("status scheduler started (every %ss)", interval_seconds)
    while True:
        try:
            await asyncio.to_thread(run_sweep_once)
        except Exception:
            logger.exception("status sweep crashed")
        await asyncio.sleep(interval_seconds)
