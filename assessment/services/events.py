# assessment/services/events.py
# 상태 전이 알림 훅. 커밋된 전이마다 구독자에게 TransitionEvent 를 보낸다.
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransitionEvent:
    entity: str          # session | participant | progress
    entity_id: int
    from_status: Optional[str]
    to_status: str
    at: datetime


class TransitionHub:
    def __init__(self):
        self._subscribers: List[Callable[[TransitionEvent], None]] = []

    def subscribe(self, callback: Callable[[TransitionEvent], None]) -> Callable[[], None]:
        """구독 등록. 반환값을 호출하면 해지된다."""
        self._subscribers.append(callback)
        return lambda: self._subscribers.remove(callback)

    def publish(self, event: TransitionEvent) -> None:
        logger.info(
            "%s %s: %s -> %s", event.entity, event.entity_id, event.from_status, event.to_status
        )
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                # 구독자 실패는 전이를 되돌리지 않는다
                logger.exception("transition subscriber failed for %s %s", event.entity, event.entity_id)


hub = TransitionHub()
