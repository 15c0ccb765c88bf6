"""
참가자 등록 관리
- 초대 (단건/일괄), 링크 확인, 상태 변경, 삭제
- 세션 참가자 행의 유일한 작성자. 다른 서비스는 mark_* 메서드로만 상태를 바꾼다.
"""
import logging
import secrets
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from assessment.config import settings
from assessment.db.session import retry_on_disconnect
from assessment.models.participants import PARTICIPANT_STATUSES, SessionParticipant
from assessment.models.sessions import AssessmentSession
from assessment.models.test_progress import ParticipantTestProgress, TERMINAL_PROGRESS_STATUSES
from assessment.models.user_profile import UserProfile
from assessment.services.clock import as_utc, system_clock
from assessment.services.errors import (
    DuplicateParticipant,
    InactiveUser,
    InvalidStatusTransition,
    LinkExpired,
    ParticipantHasProgress,
    ParticipantNotFound,
    SessionFull,
    SessionNotFound,
    SessionNotModifiable,
    UserNotFound,
)
from assessment.services.events import TransitionEvent, hub
from assessment.services.notifications import (
    InvitationSender,
    LoggingInvitationSender,
    participant_access_url,
)
from assessment.services.session_manager import SessionManager, participant_count

logger = logging.getLogger(__name__)

# 현재 상태 -> 갈 수 있는 상태 (앞으로만)
PARTICIPANT_TRANSITIONS = {
    "invited": ("registered", "no_show"),
    "registered": ("started", "no_show"),
    "started": ("completed",),
    "completed": (),
    "no_show": (),
}

CLOSED_SESSION_STATUSES = ("completed", "cancelled")
NO_SHOW_CANDIDATE_STATUSES = ("registered", "started")

# bulk 초대 skip 사유
SKIP_ALREADY_ENROLLED = "already_enrolled"
SKIP_SESSION_FULL = "session_full"
SKIP_INACTIVE_USER = "inactive_user"
SKIP_USER_NOT_FOUND = "user_not_found"


@dataclass
class InviteResult:
    participant: SessionParticipant
    access_url: str
    warnings: List[str] = field(default_factory=list)


@dataclass
class SkippedParticipant:
    user_id: UUID
    reason: str


@dataclass
class BulkInviteResult:
    added: List[InviteResult] = field(default_factory=list)
    skipped: List[SkippedParticipant] = field(default_factory=list)

    @property
    def total_added(self) -> int:
        return len(self.added)

    @property
    def warnings(self) -> List[str]:
        return [w for item in self.added for w in item.warnings]


def generate_link_token() -> str:
    return secrets.token_hex(16)


class EnrollmentManager:
    def __init__(self, db: Session, clock=None, events=None, sender: Optional[InvitationSender] = None):
        self.db = db
        self.clock = clock or system_clock
        self.events = events or hub
        self.sender = sender or LoggingInvitationSender()

    # ---------- 조회 ----------
    def get(self, participant_id: int) -> SessionParticipant:
        participant = self.db.get(SessionParticipant, participant_id)
        if not participant:
            raise ParticipantNotFound(f"participant {participant_id} does not exist")
        return participant

    def get_in_session(self, session_id: int, participant_id: int) -> SessionParticipant:
        participant = self.get(participant_id)
        if participant.session_id != session_id:
            raise ParticipantNotFound(f"participant {participant_id} is not enrolled in session {session_id}")
        return participant

    # ---------- 초대 ----------
    def _open_session(self, session_id: int, lock: bool = False) -> AssessmentSession:
        if lock:
            # 정원 검사와 삽입 사이에 다른 초대가 끼어들지 않도록 세션 행 잠금
            session = (
                self.db.query(AssessmentSession)
                .filter(AssessmentSession.id == session_id)
                .with_for_update()
                .populate_existing()
                .one_or_none()
            )
            if session is None:
                raise SessionNotFound(f"session {session_id} does not exist")
        else:
            session = SessionManager(self.db, clock=self.clock, events=self.events).get(session_id)
        if session.status in CLOSED_SESSION_STATUSES:
            raise SessionNotModifiable(f"session {session_id} is {session.status}")
        return session

    def _over_capacity(self, session: AssessmentSession) -> bool:
        """삽입(flush) 후 재확인"""
        if session.max_participants is None:
            return False
        count = (
            self.db.query(func.count(SessionParticipant.id))
            .filter(SessionParticipant.session_id == session.id)
            .scalar()
        )
        return (count or 0) > session.max_participants

    def _new_participant(self, session_id: int, user_id: UUID, link_expires_hours: int) -> SessionParticipant:
        now = self.clock.now()
        return SessionParticipant(
            session_id=session_id,
            user_id=user_id,
            status="invited",
            unique_link=generate_link_token(),
            link_expires_at=now + timedelta(hours=link_expires_hours),
        )

    def _deliver(self, session: AssessmentSession, participant: SessionParticipant) -> InviteResult:
        """초대 전송. 실패는 등록을 되돌리지 않고 경고로만 남긴다."""
        url = participant_access_url(session, participant)
        result = InviteResult(participant=participant, access_url=url)
        try:
            self.sender.send(session, participant, url)
        except Exception as e:
            logger.warning("invitation delivery failed for participant %s: %s", participant.id, e)
            result.warnings.append(f"invitation_not_delivered: user {participant.user_id}")
            return result
        participant.invitation_sent_at = self.clock.now()
        self.db.commit()
        return result

    @retry_on_disconnect
    def invite(
        self,
        session_id: int,
        user_id: UUID,
        link_expires_hours: Optional[int] = None,
        send_invitation: bool = True,
    ) -> InviteResult:
        session = self._open_session(session_id, lock=True)

        user = self.db.get(UserProfile, user_id)
        if not user:
            raise UserNotFound(f"user {user_id} does not exist")
        if not user.is_active:
            raise InactiveUser(f"user {user_id} is {user.status}")

        exists = (
            self.db.query(SessionParticipant.id)
            .filter(SessionParticipant.session_id == session_id, SessionParticipant.user_id == user_id)
            .first()
        )
        if exists:
            raise DuplicateParticipant(f"user {user_id} is already enrolled in session {session_id}")
        if session.max_participants is not None and participant_count(self.db, session_id) >= session.max_participants:
            raise SessionFull(f"session {session_id} reached {session.max_participants} participants")

        participant = self._new_participant(session_id, user_id, link_expires_hours or settings.link_expires_hours)
        self.db.add(participant)
        try:
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            raise DuplicateParticipant(f"user {user_id} is already enrolled in session {session_id}")
        if self._over_capacity(session):
            self.db.rollback()
            raise SessionFull(f"session {session_id} reached {session.max_participants} participants")
        self.db.commit()
        self.db.refresh(participant)
        logger.info("participant %s invited to session %s (user %s)", participant.id, session_id, user_id)

        if not send_invitation:
            return InviteResult(participant=participant, access_url=participant_access_url(session, participant))
        return self._deliver(session, participant)

    @retry_on_disconnect
    def bulk_invite(
        self,
        session_id: int,
        user_ids: Iterable[UUID],
        link_expires_hours: Optional[int] = None,
        send_invitations: bool = True,
    ) -> BulkInviteResult:
        session = self._open_session(session_id, lock=True)
        user_ids = list(user_ids)
        hours = link_expires_hours or settings.link_expires_hours

        users = {
            u.id: u
            for u in self.db.query(UserProfile).filter(UserProfile.id.in_(set(user_ids))).all()
        }
        enrolled = {
            row.user_id
            for row in self.db.query(SessionParticipant.user_id)
            .filter(SessionParticipant.session_id == session_id)
            .all()
        }
        slots = None
        if session.max_participants is not None:
            slots = max(0, session.max_participants - len(enrolled))

        result = BulkInviteResult()
        created: List[SessionParticipant] = []
        for user_id in user_ids:
            user = users.get(user_id)
            if user is None:
                result.skipped.append(SkippedParticipant(user_id, SKIP_USER_NOT_FOUND))
                continue
            if not user.is_active:
                result.skipped.append(SkippedParticipant(user_id, SKIP_INACTIVE_USER))
                continue
            if user_id in enrolled:
                result.skipped.append(SkippedParticipant(user_id, SKIP_ALREADY_ENROLLED))
                continue
            if slots is not None and slots <= 0:
                result.skipped.append(SkippedParticipant(user_id, SKIP_SESSION_FULL))
                continue

            # 항목별 savepoint: 한 건의 충돌이 나머지를 막지 않는다
            participant = self._new_participant(session_id, user_id, hours)
            try:
                with self.db.begin_nested():
                    self.db.add(participant)
                    self.db.flush()
                    if self._over_capacity(session):
                        raise SessionFull(f"session {session_id} reached {session.max_participants} participants")
            except IntegrityError:
                result.skipped.append(SkippedParticipant(user_id, SKIP_ALREADY_ENROLLED))
                continue
            except SessionFull:
                slots = 0
                result.skipped.append(SkippedParticipant(user_id, SKIP_SESSION_FULL))
                continue

            enrolled.add(user_id)
            created.append(participant)
            if slots is not None:
                slots -= 1

        self.db.commit()
        logger.info(
            "bulk invite to session %s: %d added, %d skipped", session_id, len(created), len(result.skipped)
        )

        for participant in created:
            self.db.refresh(participant)
            if send_invitations:
                result.added.append(self._deliver(session, participant))
            else:
                result.added.append(
                    InviteResult(participant=participant, access_url=participant_access_url(session, participant))
                )
        return result

    # ---------- 링크 ----------
    @retry_on_disconnect
    def resolve_link(self, token: str, user_id: Optional[UUID] = None) -> SessionParticipant:
        """user_id 를 주면 본인 링크만 허용 (남의 링크는 없는 링크로 취급)"""
        participant = (
            self.db.query(SessionParticipant)
            .filter(SessionParticipant.unique_link == token)
            .first()
        )
        if not participant or (user_id is not None and participant.user_id != user_id):
            raise ParticipantNotFound("unknown participant link")

        session = self.db.get(AssessmentSession, participant.session_id)
        if session.status == "cancelled":
            raise SessionNotModifiable(f"session {session.id} is cancelled")

        now = self.clock.now()
        # 상태와 무관하게 만료 링크는 거부
        if now > as_utc(participant.link_expires_at):
            raise LinkExpired(f"link for participant {participant.id} expired")

        if participant.status == "invited":
            self._advance(participant, ("invited",), "registered", {"registered_at": now})
        return participant

    # ---------- 상태 ----------
    @retry_on_disconnect
    def update_status(self, participant_id: int, new_status: str) -> SessionParticipant:
        participant = self.get(participant_id)
        current = participant.status
        if new_status not in PARTICIPANT_STATUSES or new_status not in PARTICIPANT_TRANSITIONS[current]:
            raise InvalidStatusTransition(f"cannot move participant from '{current}' to '{new_status}'")

        values = {}
        if new_status == "registered":
            values["registered_at"] = self.clock.now()
        if not self._advance(participant, (current,), new_status, values):
            raise InvalidStatusTransition(
                f"participant {participant_id} changed concurrently; now '{participant.status}'"
            )
        return participant

    def _advance(self, participant: SessionParticipant, sources, target: str, values=None, commit: bool = True):
        """sources 상태일 때만 target 으로. 바뀌면 TransitionEvent, 아니면 None."""
        from_status = participant.status
        now = self.clock.now()
        updated = (
            self.db.query(SessionParticipant)
            .filter(SessionParticipant.id == participant.id, SessionParticipant.status.in_(sources))
            .update({"status": target, **(values or {})}, synchronize_session=False)
        )
        if not updated:
            self.db.refresh(participant)
            return None

        event = TransitionEvent("participant", participant.id, from_status, target, now)
        if commit:
            self.db.commit()
            self.db.refresh(participant)
            self.events.publish(event)
        return event

    def mark_started(self, participant: SessionParticipant, commit: bool = True):
        """첫 응시 시작. 이미 started 이후면 그대로 둔다."""
        if participant.status in ("started", "completed"):
            return None
        if participant.status not in ("invited", "registered"):
            raise InvalidStatusTransition(f"participant {participant.id} is {participant.status}")
        values = {}
        if participant.registered_at is None:
            values["registered_at"] = self.clock.now()
        return self._advance(participant, ("invited", "registered"), "started", values, commit=commit)

    @retry_on_disconnect
    def mark_completed(self, participant_id: int):
        participant = self.get(participant_id)
        if participant.status not in ("invited", "registered", "started"):
            return None
        return self._advance(participant, ("invited", "registered", "started"), "completed")

    @retry_on_disconnect
    def mark_no_shows(self, session_id: int) -> int:
        """
        세션 종료 시 no_show 처리 (멱등)
        - registered/started 이면서 완료된 필수 모듈이 하나도 없는 참가자
        - 필수 모듈이 없는 세션이면 전체 모듈 기준
        """
        session = self.db.get(AssessmentSession, session_id)
        required = [m.test_id for m in session.modules if m.is_required] or [m.test_id for m in session.modules]

        candidates = (
            self.db.query(SessionParticipant)
            .filter(
                SessionParticipant.session_id == session_id,
                SessionParticipant.status.in_(NO_SHOW_CANDIDATE_STATUSES),
            )
            .all()
        )
        if not candidates:
            return 0

        finished = set()
        if required:
            finished = {
                row.participant_id
                for row in self.db.query(ParticipantTestProgress.participant_id)
                .filter(
                    ParticipantTestProgress.session_id == session_id,
                    ParticipantTestProgress.test_id.in_(required),
                    ParticipantTestProgress.status.in_(TERMINAL_PROGRESS_STATUSES),
                )
                .all()
            }

        marked = 0
        for participant in candidates:
            if participant.id in finished:
                continue
            if self._advance(participant, NO_SHOW_CANDIDATE_STATUSES, "no_show"):
                marked += 1
        return marked

    # ---------- 삭제 ----------
    @retry_on_disconnect
    def remove(self, participant_id: int) -> None:
        participant = self.get(participant_id)
        touched = (
            self.db.query(ParticipantTestProgress)
            .filter(
                ParticipantTestProgress.participant_id == participant_id,
                ParticipantTestProgress.status != "not_started",
            )
            .count()
        )
        if touched:
            raise ParticipantHasProgress(f"participant {participant_id} has {touched} started attempt(s)")

        self.db.query(ParticipantTestProgress).filter(
            ParticipantTestProgress.participant_id == participant_id
        ).delete(synchronize_session=False)
        session_id = participant.session_id
        self.db.delete(participant)
        self.db.commit()
        logger.info("participant %s removed from session %s", participant_id, session_id)
