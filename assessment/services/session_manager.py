"""
세션 생명주기 관리
- 세션 생성 (모듈 순서 부여)
- 상태 전이: activate / expire / complete / cancel
- 모듈 추가/삭제 (순서 재부여)
"""
import logging
import secrets
import string
from datetime import datetime
from typing import Dict, List

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from assessment.config import settings
from assessment.db.session import retry_on_disconnect
from assessment.models.catalog import CatalogTest
from assessment.models.participants import PARTICIPANT_STATUSES, SessionParticipant
from assessment.models.session_module import SessionModule
from assessment.models.sessions import AssessmentSession
from assessment.models.test_progress import ParticipantTestProgress
from assessment.schemas.session import ModuleIn, SessionCreate
from assessment.services.clock import as_utc, system_clock
from assessment.services.errors import (
    DuplicateModule,
    DuplicateSessionCode,
    InvalidSessionSchedule,
    InvalidStateTransition,
    ModuleNotFound,
    ParticipantHasProgress,
    SessionNotFound,
    SessionNotModifiable,
)
from assessment.services.events import TransitionEvent, hub

logger = logging.getLogger(__name__)

# action -> (허용되는 현재 상태, 목표 상태)
SESSION_TRANSITIONS = {
    "activate": (("draft",), "active"),
    "expire": (("active",), "expired"),
    "complete": (("active", "expired"), "completed"),
    "cancel": (("draft", "active", "expired"), "cancelled"),
}

TERMINAL_SESSION_STATUSES = ("completed", "cancelled")
MODIFIABLE_SESSION_STATUSES = ("draft", "active")


def effective_status(session: AssessmentSession, now: datetime) -> str:
    """저장된 상태 + 현재 시각으로 계산한 실제 상태"""
    if session.status in TERMINAL_SESSION_STATUSES:
        return session.status
    start_time = as_utc(session.start_time)
    end_time = as_utc(session.end_time)
    if now > end_time and session.auto_expire:
        return "expired"
    if session.status == "draft" and start_time <= now <= end_time:
        return "active"
    return session.status


def generate_session_code(session_name: str, now: datetime) -> str:
    prefix = "".join(ch for ch in session_name[:3].upper() if ch in string.ascii_uppercase) or "SES"
    fragment = str(int(now.timestamp() * 1000))[-6:]
    suffix = "".join(secrets.choice(string.ascii_uppercase + string.digits) for _ in range(3))
    return f"{prefix}-{fragment}-{suffix}"


def _renumber(modules: List[SessionModule]) -> None:
    for index, module in enumerate(modules, start=1):
        module.sequence = index


class SessionManager:
    """세션/모듈 행의 유일한 작성자"""

    def __init__(self, db: Session, clock=None, events=None):
        self.db = db
        self.clock = clock or system_clock
        self.events = events or hub

    # ---------- 조회 ----------
    def get(self, session_id: int) -> AssessmentSession:
        session = self.db.get(AssessmentSession, session_id)
        if not session:
            raise SessionNotFound(f"session {session_id} does not exist")
        return session

    def get_by_code(self, code: str) -> AssessmentSession:
        session = (
            self.db.query(AssessmentSession)
            .filter(func.upper(AssessmentSession.session_code) == code.strip().upper())
            .first()
        )
        if not session:
            raise SessionNotFound(f"session with code '{code}' does not exist")
        return session

    def effective_status(self, session: AssessmentSession) -> str:
        return effective_status(session, self.clock.now())

    # ---------- 생성 ----------
    @retry_on_disconnect
    def create_session(self, data: SessionCreate) -> AssessmentSession:
        start_time = as_utc(data.start_time)
        end_time = as_utc(data.end_time)
        if end_time <= start_time:
            raise InvalidSessionSchedule("end_time must be after start_time")

        test_ids = [m.test_id for m in data.modules]
        if len(set(test_ids)) != len(test_ids):
            raise DuplicateModule("a test can only be assigned once per session")
        self._require_catalog_tests(test_ids)

        now = self.clock.now()
        session = AssessmentSession(
            session_name=data.session_name,
            session_code=(data.session_code or generate_session_code(data.session_name, now)).upper(),
            description=data.description,
            start_time=start_time,
            end_time=end_time,
            status="draft",
            auto_expire=data.auto_expire,
            allow_late_entry=data.allow_late_entry,
            max_participants=data.max_participants,
        )

        # 명시된 sequence 우선, 같으면 입력 순서
        ordered = sorted(
            enumerate(data.modules),
            key=lambda pair: (pair[1].sequence if pair[1].sequence is not None else float("inf"), pair[0]),
        )
        modules = [
            SessionModule(test_id=m.test_id, is_required=m.is_required, weight=m.weight)
            for _, m in ordered
        ]
        _renumber(modules)
        session.modules = modules

        self.db.add(session)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise DuplicateSessionCode(f"session code '{session.session_code}' is already in use")
        self.db.refresh(session)

        logger.info("session %s created (%s) with %d modules", session.id, session.session_code, len(modules))
        return session

    def _require_catalog_tests(self, test_ids: List[int]) -> None:
        if not test_ids:
            return
        found = {
            row.id
            for row in self.db.query(CatalogTest.id).filter(CatalogTest.id.in_(test_ids)).all()
        }
        missing = [tid for tid in test_ids if tid not in found]
        if missing:
            raise ModuleNotFound(f"tests not found in catalog: {missing}")

    # ---------- 상태 전이 ----------
    @retry_on_disconnect
    def activate(self, session_id: int) -> AssessmentSession:
        return self._transition(session_id, "activate")

    @retry_on_disconnect
    def cancel(self, session_id: int) -> AssessmentSession:
        return self._transition(session_id, "cancel")

    @retry_on_disconnect
    def complete(self, session_id: int) -> AssessmentSession:
        session = self._transition(session_id, "complete")
        self._close_cascade(session)
        return session

    @retry_on_disconnect
    def expire(self, session_id: int) -> AssessmentSession:
        session = self._transition(session_id, "expire")
        self._close_cascade(session)
        return session

    def _transition(self, session_id: int, action: str) -> AssessmentSession:
        sources, target = SESSION_TRANSITIONS[action]
        session = self.get(session_id)
        from_status = session.status
        if from_status not in sources:
            raise InvalidStateTransition(f"cannot {action} a session in status '{from_status}'")

        now = self.clock.now()
        # 조건부 갱신: 읽은 뒤 다른 요청이 상태를 바꿨다면 0건
        updated = (
            self.db.query(AssessmentSession)
            .filter(AssessmentSession.id == session_id, AssessmentSession.status.in_(sources))
            .update({"status": target, "updated_at": now}, synchronize_session=False)
        )
        if not updated:
            self.db.rollback()
            self.db.refresh(session)
            raise InvalidStateTransition(f"cannot {action} a session in status '{session.status}'")
        self.db.commit()
        self.db.refresh(session)

        self.events.publish(TransitionEvent("session", session.id, from_status, target, now))
        return session

    def _close_cascade(self, session: AssessmentSession) -> None:
        """expire/complete 후 no_show 처리. 실패해도 세션 전이는 유지한다."""
        if not settings.mark_no_show_on_close:
            return
        from assessment.services.enrollment import EnrollmentManager

        try:
            marked = EnrollmentManager(self.db, clock=self.clock, events=self.events).mark_no_shows(session.id)
        except Exception:
            self.db.rollback()
            logger.exception("no_show cascade failed for session %s", session.id)
            return
        if marked:
            logger.info("session %s: %d participant(s) marked no_show", session.id, marked)

    # ---------- 모듈 ----------
    @retry_on_disconnect
    def add_module(self, session_id: int, module: ModuleIn) -> AssessmentSession:
        session = self._modifiable(session_id)
        if any(m.test_id == module.test_id for m in session.modules):
            raise DuplicateModule(f"test {module.test_id} is already assigned to session {session_id}")
        self._require_catalog_tests([module.test_id])

        modules = list(session.modules)
        position = len(modules) if module.sequence is None else min(module.sequence - 1, len(modules))
        new_module = SessionModule(test_id=module.test_id, is_required=module.is_required, weight=module.weight)
        modules.insert(position, new_module)
        _renumber(modules)
        session.modules = modules

        self.db.commit()
        self.db.refresh(session)
        logger.info("session %s: test %s added at sequence %s", session_id, module.test_id, new_module.sequence)
        return session

    @retry_on_disconnect
    def remove_module(self, session_id: int, test_id: int) -> AssessmentSession:
        session = self._modifiable(session_id)
        target = next((m for m in session.modules if m.test_id == test_id), None)
        if target is None:
            raise ModuleNotFound(f"test {test_id} is not a module of session {session_id}")

        touched = (
            self.db.query(ParticipantTestProgress)
            .filter(
                ParticipantTestProgress.session_id == session_id,
                ParticipantTestProgress.test_id == test_id,
                ParticipantTestProgress.status != "not_started",
            )
            .count()
        )
        if touched:
            raise ParticipantHasProgress(f"{touched} attempt(s) at test {test_id} already started")

        self.db.query(ParticipantTestProgress).filter(
            ParticipantTestProgress.session_id == session_id,
            ParticipantTestProgress.test_id == test_id,
        ).delete(synchronize_session=False)

        modules = [m for m in session.modules if m is not target]
        _renumber(modules)
        session.modules = modules  # delete-orphan 으로 target 삭제

        self.db.commit()
        self.db.refresh(session)
        logger.info("session %s: test %s removed", session_id, test_id)
        return session

    def _modifiable(self, session_id: int) -> AssessmentSession:
        session = self.get(session_id)
        if session.status not in MODIFIABLE_SESSION_STATUSES:
            raise SessionNotModifiable(f"session {session_id} is {session.status}")
        return session

    # ---------- 통계 ----------
    def stats(self, session_id: int) -> Dict:
        session = self.get(session_id)
        rows = (
            self.db.query(SessionParticipant.status, func.count(SessionParticipant.id))
            .filter(SessionParticipant.session_id == session_id)
            .group_by(SessionParticipant.status)
            .all()
        )
        by_status = {status: 0 for status in PARTICIPANT_STATUSES}
        by_status.update({status: count for status, count in rows})
        total = sum(by_status.values())
        completion_rate = int(100 * by_status["completed"] / total + 0.5) if total else 0

        return {
            "session_id": session.id,
            "status": session.status,
            "effective_status": self.effective_status(session),
            "current_participants": total,
            "participants_by_status": by_status,
            "completion_rate": completion_rate,
        }


def participant_count(db: Session, session_id: int) -> int:
    return (
        db.query(func.count(SessionParticipant.id))
        .filter(SessionParticipant.session_id == session_id)
        .scalar()
    ) or 0
