import os
import uuid
from datetime import datetime, timedelta, timezone

# 앱 import 전에 테스트 환경 고정
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["JWT_SECRET"] = "test-secret"
os.environ.pop("JWT_AUDIENCE", None)
os.environ.pop("JWT_ISSUER", None)

import pytest
from jose import jwt

from assessment.db.models import Base, CatalogTest, UserProfile, create_all
from assessment.db.session import SessionLocal, engine
from assessment.schemas.session import ModuleIn, SessionCreate
from assessment.services.clock import FrozenClock
from assessment.services.events import TransitionHub
from assessment.services.session_manager import SessionManager

T0 = datetime(2025, 3, 3, 9, 0, tzinfo=timezone.utc)

ADMIN_ID = uuid.UUID("00000000-0000-0000-0000-00000000a001")
USER_IDS = [uuid.UUID(f"00000000-0000-0000-0000-00000000000{i}") for i in range(1, 6)]
BLOCKED_ID = uuid.UUID("00000000-0000-0000-0000-00000000b001")


@pytest.fixture
def db():
    Base.metadata.drop_all(bind=engine)
    create_all(engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def clock():
    return FrozenClock(T0)


@pytest.fixture
def events():
    hub = TransitionHub()
    received = []
    hub.subscribe(received.append)
    hub.received = received
    return hub


@pytest.fixture
def seed(db):
    """카탈로그 검사 3개 + 사용자"""
    db.add_all(
        [
            CatalogTest(id=1, name="Numerical", time_limit=30, total_questions=20),
            CatalogTest(id=2, name="Verbal", time_limit=20, total_questions=10),
            CatalogTest(id=3, name="Logic", time_limit=15, total_questions=12),
        ]
    )
    db.add(UserProfile(id=ADMIN_ID, email="admin@example.com", role="admin", status="active", profile_meta={}))
    for i, user_id in enumerate(USER_IDS, start=1):
        db.add(UserProfile(id=user_id, email=f"user{i}@example.com", status="active", profile_meta={}))
    db.add(UserProfile(id=BLOCKED_ID, email="blocked@example.com", status="blocked", profile_meta={}))
    db.commit()
    return {"admin": ADMIN_ID, "users": USER_IDS, "blocked": BLOCKED_ID}


@pytest.fixture
def make_session(db, clock, events, seed):
    def _make(test_ids=(1, 2, 3), start=T0, end=None, **overrides):
        data = SessionCreate(
            session_name=overrides.pop("session_name", "Spring Intake"),
            start_time=start,
            end_time=end or start + timedelta(hours=2),
            modules=[ModuleIn(test_id=tid) for tid in test_ids],
            **overrides,
        )
        return SessionManager(db, clock=clock, events=events).create_session(data)

    return _make


def make_token(user_id, role=None, email=None):
    claims = {"sub": str(user_id), "email": email or f"{user_id}@example.com"}
    if role:
        claims["app_metadata"] = {"role": role}
    return jwt.encode(claims, "test-secret", algorithm="HS256")


@pytest.fixture
def client(db, clock, seed):
    from fastapi.testclient import TestClient

    from assessment.deps import get_clock
    from assessment.main import app

    app.dependency_overrides[get_clock] = lambda: clock
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {make_token(ADMIN_ID, role='admin')}"}


def user_headers(user_id):
    return {"Authorization": f"Bearer {make_token(user_id)}"}
