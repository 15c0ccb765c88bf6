from datetime import timedelta

from conftest import T0

from assessment.services.progress_engine import (
    expected_completion_at,
    is_time_expired,
    progress_percentage,
    time_remaining,
)


def test_expected_completion_adds_time_limit():
    assert expected_completion_at(T0, 30) == T0 + timedelta(minutes=30)
    assert expected_completion_at(None, 30) is None


def test_time_expiry_boundary_is_inclusive():
    assert is_time_expired(T0, 30, T0 + timedelta(minutes=29, seconds=59)) is False
    assert is_time_expired(T0, 30, T0 + timedelta(minutes=30)) is True


def test_not_started_attempt_never_expires():
    assert is_time_expired(None, 30, T0 + timedelta(days=1)) is False


def test_time_remaining_rounds_up_and_floors_at_zero():
    assert time_remaining(T0, 30, T0) == 1800
    assert time_remaining(T0, 30, T0 + timedelta(minutes=29, seconds=59, milliseconds=500)) == 1
    assert time_remaining(T0, 30, T0 + timedelta(minutes=45)) == 0
    assert time_remaining(None, 30, T0) is None


def test_progress_percentage_rounds_half_up():
    assert progress_percentage(4, 10) == 40
    assert progress_percentage(10, 10) == 100
    assert progress_percentage(1, 8) == 13  # 12.5
    assert progress_percentage(1, 3) == 33


def test_progress_percentage_handles_zero_total_and_overflow():
    assert progress_percentage(0, 0) == 0
    assert progress_percentage(5, 0) == 0
    assert progress_percentage(12, 10) == 100
