"""
gpsmeter Event Bus - Async Pub/Sub for tracker notifications
============================================================

Lets UI, notification and logging layers follow the tracker without the
tracker knowing about them.

Usage:
    bus = EventBus()

    @bus.on(EventType.SAMPLE_ACCEPTED)
    async def show(event: Event):
        print(event.data["speed_kmh"])

    await bus.start()
    bus.emit_nowait(EventType.TRIP_STARTED, data={"trip_id": 1})
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, Coroutine, TypeAlias

logger = logging.getLogger(__name__)

AsyncHandler: TypeAlias = Callable[["Event"], Coroutine[Any, Any, None]]


class EventType(Enum):
    """Everything the tracker announces."""

    # Trip lifecycle
    TRIP_STARTED = auto()
    TRIP_RESTORED = auto()
    TRIP_PAUSED = auto()
    TRIP_RESUMED = auto()
    TRIP_COMPLETED = auto()

    # Samples
    SAMPLE_ACCEPTED = auto()

    # GPS health
    GPS_FIX_ACQUIRED = auto()
    GPS_FIX_LOST = auto()

    # Storage
    PERSISTENCE_ERROR = auto()


@dataclass
class Event:
    """Immutable event with metadata."""

    type: EventType
    data: Any = None
    timestamp: float = field(default_factory=time.time)
    source: str = "tracker"


@dataclass
class HandlerInfo:
    handler: AsyncHandler
    priority: int = 100  # Lower = called first
    once: bool = False


class EventBus:
    """
    Queue-backed async event bus.

    Handlers run on the event loop one event at a time; a failing handler
    is logged and never affects the others or the publisher.
    """

    def __init__(self, max_history: int = 200) -> None:
        self._handlers: dict[EventType, list[HandlerInfo]] = {}
        self._queue: asyncio.Queue[Event] = asyncio.Queue()
        self._running = False
        self._task: asyncio.Task | None = None
        self._history: list[Event] = []
        self._max_history = max_history
        self._stats = {
            "events_published": 0,
            "events_processed": 0,
            "handler_errors": 0,
        }

    def subscribe(
        self,
        event_type: EventType,
        handler: AsyncHandler,
        priority: int = 100,
        once: bool = False,
    ) -> None:
        handlers = self._handlers.setdefault(event_type, [])
        handlers.append(HandlerInfo(handler=handler, priority=priority, once=once))
        handlers.sort(key=lambda h: h.priority)
        logger.debug("Subscribed to %s: %s", event_type.name, handler.__name__)

    def unsubscribe(self, event_type: EventType, handler: AsyncHandler) -> bool:
        """Remove a handler. Returns True if found."""
        for i, info in enumerate(self._handlers.get(event_type, [])):
            if info.handler == handler:
                del self._handlers[event_type][i]
                return True
        return False

    def on(
        self, event_type: EventType, priority: int = 100, once: bool = False
    ) -> Callable[[AsyncHandler], AsyncHandler]:
        """Decorator form of subscribe()."""
        def decorator(handler: AsyncHandler) -> AsyncHandler:
            self.subscribe(event_type, handler, priority, once)
            return handler
        return decorator

    async def emit(self, event_type: EventType, data: Any = None, source: str = "tracker") -> Event:
        event = Event(type=event_type, data=data, source=source)
        await self._queue.put(event)
        self._stats["events_published"] += 1
        return event

    def emit_nowait(self, event_type: EventType, data: Any = None, source: str = "tracker") -> Event:
        """Publish from synchronous code; the queue is unbounded so this never blocks."""
        event = Event(type=event_type, data=data, source=source)
        self._queue.put_nowait(event)
        self._stats["events_published"] += 1
        return event

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._process_loop())
        logger.debug("Event bus started")

    async def stop(self, timeout: float = 5.0) -> None:
        """Drain pending events (up to ``timeout``) and stop."""
        self._running = False

        if self._task:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("Event queue drain timeout, forcing stop")

            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.debug("Event bus stopped")

    async def drain(self) -> None:
        """Dispatch everything queued so far without a running loop task."""
        while not self._queue.empty():
            event = self._queue.get_nowait()
            try:
                await self._dispatch(event)
            finally:
                self._queue.task_done()

    async def _process_loop(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._dispatch(event)
            finally:
                self._queue.task_done()

    async def _dispatch(self, event: Event) -> None:
        self._history.append(event)
        if len(self._history) > self._max_history:
            self._history = self._history[-self._max_history:]

        handlers = self._handlers.get(event.type, [])
        to_remove: list[HandlerInfo] = []

        for info in list(handlers):
            try:
                await info.handler(event)
                self._stats["events_processed"] += 1
                if info.once:
                    to_remove.append(info)
            except Exception as e:
                logger.error(
                    "Handler error for %s: %s - %s",
                    event.type.name,
                    info.handler.__name__,
                    e,
                )
                self._stats["handler_errors"] += 1

        for info in to_remove:
            handlers.remove(info)

    def get_history(self, event_type: EventType | None = None, limit: int = 100) -> list[Event]:
        events = self._history
        if event_type:
            events = [e for e in events if e.type == event_type]
        return events[-limit:]

    def get_stats(self) -> dict:
        return {
            **self._stats,
            "queue_size": self._queue.qsize(),
            "handler_count": sum(len(h) for h in self._handlers.values()),
        }
