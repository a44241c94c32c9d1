"""
Broadcast progress channel.

Each subscriber owns an unbounded asyncio.Queue, so a slow subscriber never
blocks the publisher. There is no replay: a late subscriber only sees events
published after it subscribed. close() delivers an end-of-stream marker to
every subscriber and turns further publishes into no-ops.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional


class AuditPhase(Enum):
    """Фаза консолидированного аудита."""
    ENVIRONMENT_VALIDATION = "environment_validation"
    AUTOMATED_TESTS = "automated_tests"
    MANUAL_TESTS = "manual_tests"
    REPORT_GENERATION = "report_generation"


@dataclass(frozen=True)
class AuditProgress:
    """Событие прогресса."""

    phase: AuditPhase
    percentage: float
    message: str
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value,
            "percentage": self.percentage,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }


_CLOSED = object()


class ProgressSubscription:
    """Подписка на канал. Асинхронный итератор до закрытия канала."""

    def __init__(self, bus: "ProgressBus"):
        self._bus = bus
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self._done = False

    def _deliver(self, item: Any) -> None:
        self._queue.put_nowait(item)

    async def get(self) -> Optional[AuditProgress]:
        """Следующее событие или None после закрытия канала."""
        if self._done:
            return None
        item = await self._queue.get()
        if item is _CLOSED:
            self._done = True
            return None
        return item

    def pending(self) -> List[AuditProgress]:
        """Забрать уже доставленные события без ожидания."""
        events = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is _CLOSED:
                self._done = True
                break
            events.append(item)
        return events

    def cancel(self) -> None:
        self._bus._unsubscribe(self)
        self._done = True

    def __aiter__(self) -> AsyncIterator[AuditProgress]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[AuditProgress]:
        while True:
            event = await self.get()
            if event is None:
                return
            yield event


class ProgressBus:
    """Широковещательный канал событий прогресса."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("airlink_audit.progress")
        self._subscribers: List[ProgressSubscription] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> ProgressSubscription:
        subscription = ProgressSubscription(self)
        if self._closed:
            subscription._deliver(_CLOSED)
        else:
            self._subscribers.append(subscription)
        return subscription

    def _unsubscribe(self, subscription: ProgressSubscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)

    def publish(self, event: AuditProgress) -> None:
        if self._closed:
            self.logger.debug(f"Progress bus closed, dropping event: {event.message}")
            return
        for subscription in list(self._subscribers):
            subscription._deliver(event)

    def close(self) -> None:
        """Закрыть канал. Повторный вызов ничего не делает."""
        if self._closed:
            return
        self._closed = True
        for subscription in self._subscribers:
            subscription._deliver(_CLOSED)
        self._subscribers.clear()
