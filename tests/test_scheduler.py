from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError
from conftest import T0, USER_IDS

from assessment.config import settings
from assessment.models.sessions import AssessmentSession
from assessment.models.test_progress import ParticipantTestProgress
from assessment.services.catalog import TestCatalog
from assessment.services.enrollment import EnrollmentManager
from assessment.services.progress_engine import ProgressEngine, progress_percentage
from assessment.services.scheduler import StatusScheduler
from assessment.services.session_manager import SessionManager


@pytest.fixture
def scheduler(db, clock, events):
    return StatusScheduler(db, clock=clock, events=events)


@pytest.fixture
def started(make_session, db, clock, events):
    """세션 생성, 참가자 초대, 첫 검사 시작"""
    def _started(test_ids=(2,), users=(USER_IDS[0],), **overrides):
        session = make_session(test_ids=test_ids, **overrides)
        enrollment = EnrollmentManager(db, clock=clock, events=events)
        engine = ProgressEngine(db, clock=clock, events=events)
        participants = []
        for user_id in users:
            participant = enrollment.invite(session.id, user_id).participant
            engine.start(session.id, participant.id, test_ids[0])
            participants.append(participant)
        return session, participants

    return _started


def _status(db, session_id):
    db.expire_all()
    return db.get(AssessmentSession, session_id).status


def test_expires_overdue_active_session(make_session, scheduler, db, clock, events):
    # 09:00 ~ 11:00, 11:01 스윕
    session = make_session(start=T0, end=T0 + timedelta(hours=2), auto_expire=True)
    SessionManager(db, clock=clock, events=events).activate(session.id)

    report = scheduler.sweep(T0 + timedelta(hours=2, minutes=1))

    assert report.expired == 1
    assert _status(db, session.id) == "expired"


def test_auto_completes_abandoned_attempt(started, scheduler, db):
    # 10문항 20분 검사, 4문항 후 방치, 21분에 스윕
    session, (participant,) = started(test_ids=(2,))
    ProgressEngine(db, clock=scheduler.clock).record_activity(session.id, participant.id, 2, answered_questions=4)

    report = scheduler.sweep(T0 + timedelta(minutes=21))

    assert report.auto_completed == 1
    db.expire_all()
    row = db.query(ParticipantTestProgress).filter_by(participant_id=participant.id).one()
    assert row.status == "auto_completed"
    assert row.is_auto_completed is True
    assert progress_percentage(row.answered_questions, row.total_questions) == 40
    assert row.completed_at.replace(tzinfo=None) == (T0 + timedelta(minutes=21)).replace(tzinfo=None)


def test_attempt_inside_time_limit_is_left_alone(started, scheduler, db):
    started(test_ids=(2,))

    report = scheduler.sweep(T0 + timedelta(minutes=19, seconds=59))

    assert report.auto_completed == 0
    assert db.query(ParticipantTestProgress).filter_by(status="in_progress").count() == 1


def test_sweep_is_idempotent(started, scheduler, db):
    session, participants = started(test_ids=(2, 3), users=USER_IDS[:2])
    now = T0 + timedelta(hours=3)

    first = scheduler.sweep(now)
    snapshot = sorted(
        (row.id, row.status, row.completed_at) for row in db.query(ParticipantTestProgress).all()
    )
    second = scheduler.sweep(now)

    assert first.auto_completed == 2
    assert first.expired == 1
    assert (second.activated, second.expired, second.completed_sessions, second.auto_completed) == (0, 0, 0, 0)
    db.expire_all()
    assert sorted(
        (row.id, row.status, row.completed_at) for row in db.query(ParticipantTestProgress).all()
    ) == snapshot
    assert _status(db, session.id) == "expired"


def test_session_with_everyone_completed_is_completed(started, scheduler, db, clock):
    session, (participant,) = started(test_ids=(2,))
    clock.advance(minutes=5)
    ProgressEngine(db, clock=clock, events=scheduler.events).complete(session.id, participant.id, 2)

    report = scheduler.sweep(T0 + timedelta(hours=2, minutes=1))

    assert report.completed_sessions == 1
    assert report.expired == 0
    assert _status(db, session.id) == "completed"


def test_overdue_attempts_are_finished_before_session_closes(started, scheduler, db):
    session, (participant,) = started(test_ids=(2,))

    report = scheduler.sweep(T0 + timedelta(hours=3))

    # 시간 초과 응시가 먼저 자동 종료되어 참가자가 completed 가 되므로 세션도 completed
    assert report.auto_completed == 1
    assert report.completed_sessions == 1
    assert _status(db, session.id) == "completed"


def test_empty_session_expires(make_session, scheduler, db, clock, events):
    session = make_session()
    SessionManager(db, clock=clock, events=events).activate(session.id)

    report = scheduler.sweep(T0 + timedelta(hours=2, minutes=1))

    assert report.expired == 1
    assert _status(db, session.id) == "expired"


def test_activates_due_drafts(make_session, scheduler, db, monkeypatch):
    session = make_session()

    report = scheduler.sweep(T0 + timedelta(minutes=1))
    assert report.activated == 1
    assert _status(db, session.id) == "active"

    monkeypatch.setattr(settings, "scheduler_auto_activate", False)
    other = make_session(session_code="LATER")
    assert scheduler.sweep(T0 + timedelta(minutes=2)).activated == 0
    assert _status(db, other.id) == "draft"


def test_draft_past_its_window_is_untouched(make_session, scheduler, db):
    session = make_session()

    report = scheduler.sweep(T0 + timedelta(hours=3))

    assert (report.activated, report.expired) == (0, 0)
    assert _status(db, session.id) == "draft"


def test_manual_sweep_session_without_auto_expire(make_session, scheduler, db, clock, events):
    session = make_session(auto_expire=False)
    SessionManager(db, clock=clock, events=events).activate(session.id)

    assert scheduler.sweep(T0 + timedelta(hours=3)).expired == 0
    assert _status(db, session.id) == "active"


def test_row_failure_does_not_block_others(started, scheduler, db, monkeypatch):
    started(test_ids=(2,), users=USER_IDS[:2])
    rows = db.query(ParticipantTestProgress).order_by(ParticipantTestProgress.id).all()
    broken_id = rows[0].id
    original = ProgressEngine.auto_complete

    def flaky(self, progress_id):
        if progress_id == broken_id:
            raise RuntimeError("boom")
        return original(self, progress_id)

    monkeypatch.setattr(ProgressEngine, "auto_complete", flaky)

    report = scheduler.sweep(T0 + timedelta(minutes=25))

    assert report.failures == 1
    assert report.auto_completed == 1
    db.expire_all()
    assert db.get(ParticipantTestProgress, broken_id).status == "in_progress"


def test_catalog_fault_does_not_escape_sweep(started, make_session, scheduler, db, clock, events, monkeypatch):
    session, _ = started(test_ids=(2,))
    other = make_session(session_code="EVENING", end=T0 + timedelta(hours=1))
    SessionManager(db, clock=clock, events=events).activate(other.id)

    def broken(self, test_ids):
        raise OperationalError("SELECT tests", {}, Exception("connection reset"))

    monkeypatch.setattr(TestCatalog, "time_limits", broken)

    report = scheduler.sweep(T0 + timedelta(hours=2, minutes=1))

    assert report.failures == 1
    assert report.auto_completed == 0
    # 세션 종료 단계는 그대로 진행
    assert report.expired == 2
    assert _status(db, session.id) == "expired"
    assert _status(db, other.id) == "expired"
