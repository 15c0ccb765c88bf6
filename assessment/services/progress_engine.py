"""
응시 진행 엔진 (세션 x 참가자 x 검사)
- start / record_activity / complete(auto) / get_progress
- 상태 변경은 모두 "현재 상태가 X 일 때만" 조건부 갱신
- 파생 필드(예상 종료 시각, 남은 시간, 만료 여부, 진행률)는 조회 시점에 계산, 저장하지 않음
"""
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from assessment.config import settings
from assessment.db.session import retry_on_disconnect
from assessment.models.catalog import CatalogTest
from assessment.models.participants import SessionParticipant
from assessment.models.test_progress import ParticipantTestProgress
from assessment.services.catalog import TestCatalog
from assessment.services.clock import as_utc, system_clock
from assessment.services.errors import (
    AlreadyStarted,
    AttemptNotActive,
    InvalidProgressUpdate,
    InvalidStateTransition,
    InvalidStatusTransition,
    LateEntryNotAllowed,
    ModuleNotFound,
    ProgressNotFound,
    SessionNotActive,
)
from assessment.services.enrollment import EnrollmentManager
from assessment.services.events import TransitionEvent, hub
from assessment.services.navigation import NavigationCoordinator, NextStep
from assessment.services.session_manager import SessionManager, effective_status

logger = logging.getLogger(__name__)


# ---------- 파생 필드 (순수 함수) ----------
def expected_completion_at(started_at: Optional[datetime], time_limit: Optional[int]) -> Optional[datetime]:
    if started_at is None or time_limit is None:
        return None
    return as_utc(started_at) + timedelta(minutes=time_limit)


def time_remaining(started_at: Optional[datetime], time_limit: Optional[int], now: datetime) -> Optional[int]:
    """남은 초 (올림, 0 미만 없음)"""
    expected = expected_completion_at(started_at, time_limit)
    if expected is None:
        return None
    return max(0, math.ceil((expected - now).total_seconds()))


def is_time_expired(started_at: Optional[datetime], time_limit: Optional[int], now: datetime) -> bool:
    expected = expected_completion_at(started_at, time_limit)
    if expected is None:
        return False
    return now >= expected


def progress_percentage(answered: int, total: int) -> int:
    if not total:
        return 0
    return min(100, math.floor(100 * answered / total + 0.5))


@dataclass
class ProgressView:
    id: int
    session_id: int
    participant_id: int
    test_id: int
    status: str
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    answered_questions: int
    total_questions: int
    time_spent: int
    is_auto_completed: bool
    last_activity_at: Optional[datetime]
    time_limit: Optional[int]
    expected_completion_at: Optional[datetime]
    time_remaining: Optional[int]
    is_time_expired: bool
    progress_percentage: int


def build_view(row: ParticipantTestProgress, time_limit: Optional[int], now: datetime) -> ProgressView:
    started_at = as_utc(row.started_at)
    return ProgressView(
        id=row.id,
        session_id=row.session_id,
        participant_id=row.participant_id,
        test_id=row.test_id,
        status=row.status,
        started_at=started_at,
        completed_at=as_utc(row.completed_at),
        answered_questions=row.answered_questions or 0,
        total_questions=row.total_questions or 0,
        time_spent=row.time_spent or 0,
        is_auto_completed=bool(row.is_auto_completed),
        last_activity_at=as_utc(row.last_activity_at),
        time_limit=time_limit,
        expected_completion_at=expected_completion_at(started_at, time_limit),
        time_remaining=time_remaining(started_at, time_limit, now),
        is_time_expired=is_time_expired(started_at, time_limit, now),
        progress_percentage=progress_percentage(row.answered_questions or 0, row.total_questions or 0),
    )


@dataclass
class CompletionResult:
    view: Optional[ProgressView]
    next_step: Optional[NextStep] = None
    changed: bool = False


class ProgressEngine:
    """ParticipantTestProgress 행의 유일한 작성자"""

    def __init__(self, db: Session, clock=None, events=None):
        self.db = db
        self.clock = clock or system_clock
        self.events = events or hub
        self.catalog = TestCatalog(db)

    # ---------- 내부 조회 ----------
    def _resolve(self, session_id: int, participant_id: int, test_id: int):
        session = SessionManager(self.db, clock=self.clock, events=self.events).get(session_id)
        participant = EnrollmentManager(self.db, clock=self.clock, events=self.events).get_in_session(
            session_id, participant_id
        )
        if not any(m.test_id == test_id for m in session.modules):
            raise ModuleNotFound(f"test {test_id} is not a module of session {session_id}")
        test = self.catalog.get(test_id)
        if test is None:
            raise ModuleNotFound(f"test {test_id} does not exist in catalog")
        return session, participant, test

    def _find(self, participant_id: int, test_id: int) -> Optional[ParticipantTestProgress]:
        return (
            self.db.query(ParticipantTestProgress)
            .filter(
                ParticipantTestProgress.participant_id == participant_id,
                ParticipantTestProgress.test_id == test_id,
            )
            .first()
        )

    def _ensure_row(self, participant: SessionParticipant, test: CatalogTest) -> ParticipantTestProgress:
        """not_started 행을 지연 생성. 동시 생성 충돌이면 기존 행을 쓴다."""
        row = self._find(participant.id, test.id)
        if row is not None:
            return row
        row = ParticipantTestProgress(
            session_id=participant.session_id,
            participant_id=participant.id,
            test_id=test.id,
            user_id=participant.user_id,
            status="not_started",
            answered_questions=0,
            total_questions=test.total_questions or 0,
            time_spent=0,
            is_auto_completed=False,
        )
        try:
            with self.db.begin_nested():
                self.db.add(row)
        except IntegrityError:
            row = self._find(participant.id, test.id)
        return row

    def _update_if(self, row_id: int, status: str, values: dict) -> bool:
        updated = (
            self.db.query(ParticipantTestProgress)
            .filter(ParticipantTestProgress.id == row_id, ParticipantTestProgress.status == status)
            .update(values, synchronize_session=False)
        )
        return bool(updated)

    # ---------- start ----------
    @retry_on_disconnect
    def start(self, session_id: int, participant_id: int, test_id: int) -> ProgressView:
        session, participant, test = self._resolve(session_id, participant_id, test_id)
        row = self._find(participant.id, test.id)
        if row is not None and row.started_at is not None:
            raise AlreadyStarted(f"test {test_id} already started by participant {participant_id}")

        now = self.clock.now()
        status = effective_status(session, now)
        if status != "active" or now > as_utc(session.end_time):
            raise SessionNotActive(f"session {session_id} is {status}")

        if participant.status == "no_show":
            raise InvalidStatusTransition(f"participant {participant_id} is no_show")

        # 지각 판정은 참가자의 첫 응시에만
        first_entry = participant.status in ("invited", "registered")
        deadline = as_utc(session.start_time) + timedelta(minutes=settings.late_entry_grace_minutes)
        if first_entry and not session.allow_late_entry and now > deadline:
            raise LateEntryNotAllowed(f"session {session_id} started at {session.start_time}")

        if session.status == "draft":
            try:
                SessionManager(self.db, clock=self.clock, events=self.events).activate(session_id)
            except InvalidStateTransition:
                self.db.refresh(session)  # 다른 요청이 먼저 활성화

        row = self._ensure_row(participant, test)
        started = self._update_if(
            row.id,
            "not_started",
            {
                "status": "in_progress",
                "started_at": now,
                "last_activity_at": now,
                "answered_questions": 0,
                "total_questions": test.total_questions or 0,
            },
        )
        if not started:
            self.db.rollback()
            raise AlreadyStarted(f"test {test_id} already started by participant {participant_id}")

        participant_event = EnrollmentManager(self.db, clock=self.clock, events=self.events).mark_started(
            participant, commit=False
        )
        self.db.commit()
        self.db.refresh(row)

        self.events.publish(TransitionEvent("progress", row.id, "not_started", "in_progress", now))
        if participant_event:
            self.db.refresh(participant)
            self.events.publish(participant_event)
        logger.info("participant %s started test %s in session %s", participant_id, test_id, session_id)
        return build_view(row, test.time_limit, now)

    # ---------- record_activity ----------
    @retry_on_disconnect
    def record_activity(
        self,
        session_id: int,
        participant_id: int,
        test_id: int,
        answered_questions: Optional[int] = None,
        time_spent_delta: Optional[int] = None,
    ) -> ProgressView:
        session, participant, test = self._resolve(session_id, participant_id, test_id)
        row = self._find(participant.id, test.id)
        if row is None or row.status != "in_progress":
            raise AttemptNotActive(f"no attempt in progress for test {test_id}")

        now = self.clock.now()
        if is_time_expired(row.started_at, test.time_limit, now):
            # 마감 이후 활동은 받지 않고 자동 종료부터 처리 (취소된 세션 포함)
            self._finish(row, test.time_limit, auto=True, now=now)
            raise AttemptNotActive(f"time limit reached for test {test_id}; attempt auto-completed")
        if session.status == "cancelled":
            raise AttemptNotActive(f"session {session_id} is cancelled")

        if answered_questions is not None and not 0 <= answered_questions <= (row.total_questions or 0):
            raise InvalidProgressUpdate(
                f"answered_questions must be between 0 and {row.total_questions}"
            )
        if time_spent_delta is not None and time_spent_delta < 0:
            raise InvalidProgressUpdate("time_spent_delta must not be negative")

        values = {"last_activity_at": now}
        if answered_questions is not None:
            values["answered_questions"] = answered_questions
        if time_spent_delta:
            values["time_spent"] = ParticipantTestProgress.time_spent + time_spent_delta

        if not self._update_if(row.id, "in_progress", values):
            self.db.rollback()
            raise AttemptNotActive(f"attempt at test {test_id} is no longer in progress")
        self.db.commit()
        self.db.refresh(row)
        return build_view(row, test.time_limit, now)

    # ---------- complete ----------
    @retry_on_disconnect
    def complete(
        self,
        session_id: int,
        participant_id: int,
        test_id: int,
        auto: bool = False,
        answered_questions: Optional[int] = None,
    ) -> CompletionResult:
        session, participant, test = self._resolve(session_id, participant_id, test_id)
        row = self._find(participant.id, test.id)
        now = self.clock.now()

        if auto:
            # 자동 종료는 멱등: 대상이 아니면 그대로 성공
            if row is None or row.status != "in_progress":
                view = build_view(row, test.time_limit, now) if row is not None else None
                return CompletionResult(view=view)
            return self._finish(row, test.time_limit, auto=True, now=now)

        if row is None or row.status != "in_progress":
            state = row.status if row is not None else "not_started"
            raise AttemptNotActive(f"attempt at test {test_id} is {state}")
        if session.status == "cancelled":
            raise AttemptNotActive(f"session {session_id} is cancelled")
        if answered_questions is not None and not 0 <= answered_questions <= (row.total_questions or 0):
            raise InvalidProgressUpdate(
                f"answered_questions must be between 0 and {row.total_questions}"
            )

        # 마감 이후 도착한 수동 종료는 자동 종료로 처리
        expired = is_time_expired(row.started_at, test.time_limit, now)
        return self._finish(row, test.time_limit, auto=expired, now=now, answered_questions=answered_questions)

    @retry_on_disconnect
    def auto_complete(self, progress_id: int) -> CompletionResult:
        """스케줄러 경로. 이미 종료된 행은 no-op."""
        row = self.db.get(ParticipantTestProgress, progress_id)
        if row is None:
            raise ProgressNotFound(f"progress {progress_id} does not exist")
        test = self.catalog.get(row.test_id)
        time_limit = test.time_limit if test else None
        now = self.clock.now()
        if row.status != "in_progress":
            return CompletionResult(view=build_view(row, time_limit, now))
        return self._finish(row, time_limit, auto=True, now=now)

    def _finish(
        self,
        row: ParticipantTestProgress,
        time_limit: Optional[int],
        auto: bool,
        now: datetime,
        answered_questions: Optional[int] = None,
    ) -> CompletionResult:
        target = "auto_completed" if auto else "completed"
        values = {"status": target, "completed_at": now, "is_auto_completed": auto}
        if answered_questions is not None:
            values["answered_questions"] = answered_questions

        if not self._update_if(row.id, "in_progress", values):
            # 동시 종료에 밀림
            self.db.rollback()
            self.db.refresh(row)
            if auto:
                return CompletionResult(view=build_view(row, time_limit, now))
            raise AttemptNotActive(f"attempt {row.id} is already {row.status}")
        self.db.commit()
        self.db.refresh(row)

        self.events.publish(TransitionEvent("progress", row.id, "in_progress", target, now))
        logger.info(
            "participant %s finished test %s (%s)", row.participant_id, row.test_id, target
        )

        next_step = NavigationCoordinator(self.db, clock=self.clock, events=self.events).on_attempt_finished(
            row.session_id, row.participant_id, row.test_id
        )
        return CompletionResult(view=build_view(row, time_limit, now), next_step=next_step, changed=True)

    # ---------- 조회 ----------
    @retry_on_disconnect
    def get_progress(self, session_id: int, participant_id: int, test_id: int) -> ProgressView:
        _, participant, test = self._resolve(session_id, participant_id, test_id)
        row = self._ensure_row(participant, test)
        self.db.commit()
        return build_view(row, test.time_limit, self.clock.now())

    @retry_on_disconnect
    def list_progress(self, session_id: int, participant_id: int) -> List[ProgressView]:
        """참가자의 전체 모듈 진행 상황 (모듈 순서대로)"""
        session = SessionManager(self.db, clock=self.clock, events=self.events).get(session_id)
        participant = EnrollmentManager(self.db, clock=self.clock, events=self.events).get_in_session(
            session_id, participant_id
        )
        now = self.clock.now()
        views = []
        for module in sorted(session.modules, key=lambda m: m.sequence):
            row = self._ensure_row(participant, module.test)
            views.append(build_view(row, module.test.time_limit, now))
        self.db.commit()
        return views
