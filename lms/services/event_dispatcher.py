"""
lms/services/event_dispatcher.py
Domain events: persisted with the change, delivered after commit

Flow:
1. A service calls record() inside its transaction. The event is added
   to domain_event_log on the same session and queued on session.info.
2. The service commits.
3. The service calls publish_pending(); queued events go to listeners.

Listeners run only for committed changes. A failing listener is logged
and does not affect the other listeners or the caller; the event stays
in the log for replay.
"""
import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from lms.orm.domain_event_log import DomainEventLog

logger = logging.getLogger(__name__)

_PENDING_KEY = "lms_pending_events"


class EventName:
    ATTEMPT_GRADED = "attempt.graded"
    ATTEMPT_RESCORED = "attempt.rescored"
    ENROLLMENT_CREATED = "enrollment.created"
    ENROLLMENT_COMPLETED = "enrollment.completed"
    ENROLLMENT_DROPPED = "enrollment.dropped"
    ENROLLMENT_REENROLLED = "enrollment.reenrolled"
    LESSON_COMPLETED = "lesson.completed"
    COURSE_STARTED = "course.started"


@dataclass(frozen=True)
class DomainEvent:
    name: str
    aggregate_type: str
    aggregate_id: int
    payload: Dict[str, Any] = field(default_factory=dict)
    actor_id: Optional[int] = None
    occurred_at: datetime = field(default_factory=datetime.utcnow)


Listener = Callable[[DomainEvent], Any]


class EventDispatcher:
    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)

    def subscribe(self, event_name: str, listener: Listener) -> None:
        """Register a sync or async callable for one event name ("*" for all)."""
        self._listeners[event_name].append(listener)

    def listeners_for(self, event_name: str) -> List[Listener]:
        return list(self._listeners.get(event_name, [])) + list(self._listeners.get("*", []))

    async def record(self, db: AsyncSession, event: DomainEvent) -> DomainEventLog:
        entry = DomainEventLog(
            event_name=event.name,
            aggregate_type=event.aggregate_type,
            aggregate_id=event.aggregate_id,
            actor_id=event.actor_id,
            payload=event.payload,
            occurred_at=event.occurred_at,
        )
        db.add(entry)
        db.info.setdefault(_PENDING_KEY, []).append(event)
        logger.debug(f"Recorded event {event.name} for {event.aggregate_type} {event.aggregate_id}")
        return entry

    @staticmethod
    def discard_pending(db: AsyncSession) -> None:
        """Drop queued events, used after a rollback."""
        db.info.pop(_PENDING_KEY, None)

    async def publish_pending(self, db: AsyncSession) -> int:
        """Deliver events queued on this session. Call only after commit."""
        events: List[DomainEvent] = db.info.pop(_PENDING_KEY, [])
        for event in events:
            await self.publish(event)
        return len(events)

    async def publish(self, event: DomainEvent) -> None:
        for listener in self.listeners_for(event.name):
            try:
                result = listener(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception(
                    f"Listener {getattr(listener, '__name__', listener)!r} failed for {event.name} "
                    f"({event.aggregate_type} {event.aggregate_id})"
                )
