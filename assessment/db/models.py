# assessment/db/models.py
# DB 모델 모음: user_profiles, tests, test_sessions, session_modules,
# session_participants, participant_test_progress
# 관계 문자열("CatalogTest" 등)이 풀리도록 한 곳에서 모두 import 한다.
from assessment.models.user_profile import UserProfile
from assessment.models.catalog import CatalogTest
from assessment.models.sessions import AssessmentSession
from assessment.models.session_module import SessionModule
from assessment.models.participants import SessionParticipant
from assessment.models.test_progress import ParticipantTestProgress
from assessment.db.session import Base

__all__ = [
    "Base",
    "UserProfile",
    "CatalogTest",
    "AssessmentSession",
    "SessionModule",
    "SessionParticipant",
    "ParticipantTestProgress",
]


def create_all(bind) -> None:
    Base.metadata.create_all(bind=bind)
