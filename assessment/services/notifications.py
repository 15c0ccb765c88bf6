# assessment/services/notifications.py
# 초대 링크 전송. 기본 구현은 로그만 남긴다 (SMTP 등으로 교체 가능).
import logging

from assessment.config import settings
from assessment.models.participants import SessionParticipant
from assessment.models.sessions import AssessmentSession

logger = logging.getLogger(__name__)


def participant_access_url(session: AssessmentSession, participant: SessionParticipant) -> str:
    base = settings.frontend_url.rstrip("/")
    return f"{base}/psikotes/{session.session_code}?token={participant.unique_link}"


class InvitationSender:
    """send() 가 예외를 던지면 호출자는 경고로만 기록한다 (등록은 유지)."""

    def send(self, session: AssessmentSession, participant: SessionParticipant, access_url: str) -> None:
        raise NotImplementedError


class LoggingInvitationSender(InvitationSender):
    def send(self, session, participant, access_url):
        to_email = participant.user.email if participant.user else None
        logger.info("[INVITE] session=%s -> %s | %s", session.session_code, to_email, access_url)
