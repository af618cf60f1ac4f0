"""Domain events emitted for the external notification system"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol


class EventType(str, Enum):
    POOL_STARTED = "pool_started"
    POOL_PAUSED = "pool_paused"
    POOL_RESUMED = "pool_resumed"
    POOL_COMPLETED = "pool_completed"
    ROUND_OPENED = "round_opened"
    ROUND_CLOSED = "round_closed"
    PAYOUT_RELEASED = "payout_released"
    PAYMENT_MISSED = "payment_missed"
    REMINDER_REQUESTED = "reminder_requested"


@dataclass(frozen=True)
class DomainEvent:
    type: EventType
    pool_id: str
    round: Optional[int]
    occurred_at: datetime
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": self.type.value,
            "pool_id": self.pool_id,
            "round": self.round,
            "occurred_at": self.occurred_at.isoformat(),
            **self.payload,
        }


class EventSink(Protocol):
    def emit(self, event: DomainEvent) -> None: ...


class EventRecorder:
    """Buffers events until the caller has committed, then hands them over"""

    def __init__(self):
        self._events: List[DomainEvent] = []

    def emit(self, event: DomainEvent) -> None:
        self._events.append(event)

    @property
    def events(self) -> List[DomainEvent]:
        return list(self._events)

    def drain(self) -> List[DomainEvent]:
        events, self._events = self._events, []
        return events
