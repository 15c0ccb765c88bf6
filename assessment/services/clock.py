# assessment/services/clock.py
# 시간 소스. 서비스는 모두 clock.now() 로만 현재 시각을 얻는다.
from datetime import datetime, timedelta, timezone
from typing import Optional


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """저장소에서 naive 로 돌아온 값을 UTC aware 로 맞춘다."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FrozenClock:
    """테스트용 고정 시계. set/advance 로만 움직인다."""

    def __init__(self, now: datetime):
        self._now = as_utc(now)

    def now(self) -> datetime:
        return self._now

    def set(self, now: datetime) -> None:
        self._now = as_utc(now)

    def advance(self, **kwargs) -> datetime:
        self._now = self._now + timedelta(**kwargs)
        return self._now


system_clock = SystemClock()
