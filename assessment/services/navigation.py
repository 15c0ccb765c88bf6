# assessment/services/navigation.py
"""
모듈 진행 순서 결정
- 세션 모듈을 sequence 순으로 보고, 종료되지 않은 첫 모듈을 다음 검사로 안내
- 선택 모듈도 건너뛰지 않는다 (종료 상태만 대상에서 제외)
- 남은 모듈이 없으면 참가자를 completed 로
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from assessment.models.sessions import AssessmentSession
from assessment.models.test_progress import ParticipantTestProgress, TERMINAL_PROGRESS_STATUSES
from assessment.services.clock import system_clock
from assessment.services.enrollment import EnrollmentManager
from assessment.services.errors import ModuleNotFound
from assessment.services.events import hub
from assessment.services.session_manager import SessionManager

logger = logging.getLogger(__name__)


@dataclass
class NextStep:
    session_complete: bool
    test_id: Optional[int] = None
    sequence: Optional[int] = None


class NavigationCoordinator:
    def __init__(self, db: Session, clock=None, events=None):
        self.db = db
        self.clock = clock or system_clock
        self.events = events or hub

    def _first_open(self, session: AssessmentSession, participant_id: int) -> NextStep:
        statuses = {
            row.test_id: row.status
            for row in self.db.query(ParticipantTestProgress.test_id, ParticipantTestProgress.status)
            .filter(ParticipantTestProgress.participant_id == participant_id)
            .all()
        }
        for module in sorted(session.modules, key=lambda m: m.sequence):
            # 진행 행이 없으면 not_started
            if statuses.get(module.test_id, "not_started") not in TERMINAL_PROGRESS_STATUSES:
                return NextStep(session_complete=False, test_id=module.test_id, sequence=module.sequence)
        return NextStep(session_complete=True)

    def next_step(self, session_id: int, participant_id: int) -> NextStep:
        """읽기 전용 조회 (상태 변경 없음)"""
        session = SessionManager(self.db, clock=self.clock, events=self.events).get(session_id)
        EnrollmentManager(self.db, clock=self.clock, events=self.events).get_in_session(session_id, participant_id)
        return self._first_open(session, participant_id)

    def on_attempt_finished(self, session_id: int, participant_id: int, finished_test_id: int) -> NextStep:
        session = SessionManager(self.db, clock=self.clock, events=self.events).get(session_id)
        enrollment = EnrollmentManager(self.db, clock=self.clock, events=self.events)
        enrollment.get_in_session(session_id, participant_id)
        if not any(m.test_id == finished_test_id for m in session.modules):
            raise ModuleNotFound(f"test {finished_test_id} is not a module of session {session_id}")

        step = self._first_open(session, participant_id)
        if step.session_complete:
            enrollment.mark_completed(participant_id)
            logger.info("participant %s finished every module of session %s", participant_id, session_id)
        return step
