"""
Trip Tracker - live tracking state machine
==========================================

Lifecycle::

    idle -> active -> (paused <-> active) -> completed

The tracker owns one TrackingSession per trip, feeds every raw sample
through the SampleProcessor and TripAccumulator, persists accepted points
and watches the signal with two periodic checks:

- tick (~1s): average speed refresh, speed decay after 3s without samples,
  auto-pause debounce expiry
- GPS loss check (~5s): health becomes LOST after 10s without samples

All state changes happen synchronously before the first ``await`` of a
handler, so overlapping sample handlers always see the latest session.

Usage:
    tracker = TripTracker(store, source, cfg.tracking, bus=bus)
    if not await tracker.recover():
        await tracker.start()
    ...
    await tracker.stop()
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Callable, Protocol

from ..config import TrackingConfig
from ..domain.models import (
    GpsHealth,
    ProcessedPoint,
    RawSample,
    TrackingSnapshot,
    TrackingState,
    TripAggregate,
    TripStatus,
)
from .aggregate import TripAccumulator
from .errors import LocationUnavailableError
from .events import EventBus, EventType
from .geodesy import to_kmh
from .sample_processor import SampleProcessor

logger = logging.getLogger(__name__)

Clock = Callable[[], int]
SampleCallback = Callable[[RawSample], None]


def wall_clock_ms() -> int:
    return int(time.time() * 1000)


class LocationSource(Protocol):
    async def subscribe(self, on_sample: SampleCallback) -> Any: ...

    async def unsubscribe(self, handle: Any) -> None: ...


class TripStore(Protocol):
    async def create_trip(self, started_at_ms: int) -> int: ...

    async def append_point(self, point: ProcessedPoint) -> int: ...

    async def update_trip_aggregate(self, trip_id: int, **fields: Any) -> None: ...

    async def mark_completed(self, trip_id: int, ended_at_ms: int, **fields: Any) -> None: ...

    async def get_active_trip(self) -> TripAggregate | None: ...

    async def delete_trip(self, trip_id: int) -> None: ...


@dataclass
class TrackingSession:
    """In-memory state of the trip being tracked. Never persisted."""

    trip_id: int
    last_accepted_point: ProcessedPoint | None = None
    last_sample_wall_clock_ms: int = 0
    gps_health: GpsHealth = GpsHealth.SEARCHING
    is_paused: bool = False
    auto_paused: bool = False
    current_speed_kmh: float = 0.0
    accuracy: float | None = None


class DebounceTimer:
    """Single-shot deadline, armed once and cleared without firing."""

    def __init__(self, duration_ms: int) -> None:
        self.duration_ms = duration_ms
        self._deadline_ms: int | None = None

    @property
    def armed(self) -> bool:
        return self._deadline_ms is not None

    def arm(self, now_ms: int) -> None:
        if self._deadline_ms is None:
            self._deadline_ms = now_ms + self.duration_ms

    def disarm(self) -> None:
        self._deadline_ms = None

    def expired(self, now_ms: int) -> bool:
        return self._deadline_ms is not None and now_ms >= self._deadline_ms


class TripTracker:
    """
    Tracking state machine for a single device.

    Only one trip can be active or paused at a time; start() while tracking
    is rejected.
    """

    def __init__(
        self,
        store: TripStore,
        source: LocationSource,
        config: TrackingConfig | None = None,
        *,
        clock: Clock = wall_clock_ms,
        bus: EventBus | None = None,
        autostart_timers: bool = True,
    ) -> None:
        self.store = store
        self.source = source
        self.config = config or TrackingConfig()
        self._clock = clock
        self._bus = bus
        self._autostart_timers = autostart_timers

        self._processor = SampleProcessor(self.config.noise_floor_kmh)
        self._accumulator = TripAccumulator()
        self._stationary = DebounceTimer(int(self.config.auto_pause_duration_secs * 1000))

        self._state = TrackingState.IDLE
        self._session: TrackingSession | None = None
        self._subscription: Any | None = None
        self._timer_tasks: list[asyncio.Task] = []
        self._pending: set[asyncio.Task] = set()

    # =========================================================================
    # Read side
    # =========================================================================

    @property
    def state(self) -> TrackingState:
        return self._state

    @property
    def session(self) -> TrackingSession | None:
        return self._session

    @property
    def trip(self) -> TripAggregate | None:
        return self._accumulator.trip

    @property
    def auto_pause_threshold_kmh(self) -> float:
        return to_kmh(self.config.auto_pause_threshold, self.config.unit)

    def snapshot(self) -> TrackingSnapshot:
        """Current values for UI and notification layers."""
        trip = self._accumulator.trip
        session = self._session
        if trip is None:
            return TrackingSnapshot(state=self._state)

        return TrackingSnapshot(
            state=self._state,
            trip_id=trip.id,
            speed_kmh=session.current_speed_kmh if session else 0.0,
            total_distance_meters=trip.total_distance_meters,
            avg_speed_kmh=trip.avg_speed_kmh,
            max_speed_kmh=trip.max_speed_kmh,
            elapsed_seconds=self._accumulator.elapsed_seconds(self._clock()),
            gps_health=session.gps_health if session else GpsHealth.SEARCHING,
            accuracy=session.accuracy if session else None,
            auto_paused=session.auto_paused if session else False,
        )

    # =========================================================================
    # Commands
    # =========================================================================

    async def start(self) -> bool:
        """
        Start a new trip.

        Returns:
            True once the trip exists and the location source is open.
            False if already tracking, or if storage or location failed.
        """
        if self._state in (TrackingState.ACTIVE, TrackingState.PAUSED):
            logger.warning("Start rejected: trip %s is %s", self._trip_id(), self._state.value)
            return False

        try:
            dangling = await self.store.get_active_trip()
            if dangling is not None:
                logger.warning("Completing dangling trip %d before starting", dangling.id)
                await self.store.mark_completed(dangling.id, self._clock())

            now = self._clock()
            trip_id = await self.store.create_trip(now)
        except Exception as e:
            logger.error("Failed to create trip: %s", e)
            return False

        self._accumulator.start(trip_id, now)
        self._session = TrackingSession(trip_id=trip_id, last_sample_wall_clock_ms=now)
        self._stationary.disarm()
        self._state = TrackingState.ACTIVE

        if not await self._open_location():
            self._discard_session()
            try:
                await self.store.delete_trip(trip_id)
            except Exception as e:
                logger.error("Failed to discard trip %d: %s", trip_id, e)
            return False

        if self._autostart_timers:
            self.run_timers()
        self._emit(EventType.TRIP_STARTED, {"trip_id": trip_id, "started_at_ms": now})
        logger.info("Trip %d started", trip_id)
        return True

    async def recover(self) -> bool:
        """
        Resume a trip left active by a previous process.

        The trip comes back as ACTIVE even if it was paused; elapsed time and
        average speed are recomputed from the wall clock.

        Returns:
            True if a trip was restored.
        """
        if self._state in (TrackingState.ACTIVE, TrackingState.PAUSED):
            return False

        try:
            persisted = await self.store.get_active_trip()
        except Exception as e:
            logger.error("Error checking for active trip: %s", e)
            return False

        if persisted is None:
            return False

        now = self._clock()
        trip = self._accumulator.restore(
            persisted.id,
            persisted.started_at_ms,
            persisted.total_distance_meters,
            persisted.max_speed_kmh,
            persisted.avg_speed_kmh,
            now,
        )
        self._session = TrackingSession(trip_id=trip.id, last_sample_wall_clock_ms=now)
        self._stationary.disarm()
        self._state = TrackingState.ACTIVE

        if persisted.status != TripStatus.ACTIVE:
            await self._persist_status()

        if not await self._open_location():
            # Stays ACTIVE; health remains SEARCHING until the loss check fires
            logger.warning("Trip %d restored without a location source", trip.id)

        if self._autostart_timers:
            self.run_timers()
        self._emit(EventType.TRIP_RESTORED, {"trip_id": trip.id, "started_at_ms": trip.started_at_ms})
        return True

    async def pause(self) -> bool:
        """User pause. Samples keep arriving but are not counted."""
        if self._state != TrackingState.ACTIVE:
            return False
        self._enter_pause(auto=False)
        await self._persist_status()
        return True

    async def resume(self) -> bool:
        """User resume, from a manual or an automatic pause."""
        if self._state != TrackingState.PAUSED:
            return False
        self._leave_pause()
        await self._persist_status()
        return True

    async def stop(self) -> bool:
        """
        Complete the current trip.

        Sample writes still in flight are not awaited; the final aggregate
        written here comes from memory and is authoritative.
        """
        if self._state not in (TrackingState.ACTIVE, TrackingState.PAUSED):
            return False

        self.cancel_timers()
        self._stationary.disarm()
        trip = self._accumulator.complete(self._clock())
        self._state = TrackingState.COMPLETED
        self._session = None

        await self._close_location()

        try:
            await self.store.mark_completed(
                trip.id,
                trip.ended_at_ms,  # type: ignore[arg-type]
                total_distance_meters=trip.total_distance_meters,
                max_speed_kmh=trip.max_speed_kmh,
                avg_speed_kmh=trip.avg_speed_kmh,
            )
        except Exception as e:
            logger.error("Failed to complete trip %d: %s", trip.id, e)
            self._emit(EventType.PERSISTENCE_ERROR, {"trip_id": trip.id, "error": str(e)})

        self._emit(EventType.TRIP_COMPLETED, trip.model_copy())
        logger.info(
            "Trip %d completed: %.1fm in %ds, max %.1f km/h",
            trip.id, trip.total_distance_meters, trip.duration_seconds, trip.max_speed_kmh,
        )
        return True

    @asynccontextmanager
    async def tracking(self) -> AsyncIterator[TripTracker]:
        """Recover or start a trip for the duration of the block, then stop it."""
        if not await self.recover() and not await self.start():
            raise LocationUnavailableError("tracking could not be started")
        try:
            yield self
        finally:
            await self.stop()

    # =========================================================================
    # Samples
    # =========================================================================

    def _handle_sample(self, sample: RawSample) -> None:
        """Location source callback; runs the async handler as a task."""
        task = asyncio.create_task(self.on_raw_sample(sample))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def on_raw_sample(self, sample: RawSample) -> ProcessedPoint | None:
        """
        Process one sample from the location source.

        Returns:
            The accepted point, or None if the sample was not counted.
        """
        session = self._session
        if session is None or self._state not in (TrackingState.ACTIVE, TrackingState.PAUSED):
            logger.debug("Sample ignored - no active trip")
            return None

        now = self._clock()
        # Any sample proves the signal is alive, even while paused
        session.last_sample_wall_clock_ms = now
        self._set_health(session, GpsHealth.ACQUIRED)

        if not self._processor.has_valid_fix(sample):
            logger.warning("Sample dropped - non-finite coordinates for trip %d", session.trip_id)
            return None

        resumed = False
        if self._state == TrackingState.PAUSED:
            if not self._should_auto_resume(session, sample):
                logger.debug("Sample dropped - trip %d paused", session.trip_id)
                return None
            self._leave_pause()
            resumed = True
            logger.info("Trip %d auto-resumed", session.trip_id)

        result = self._processor.process(sample, session.last_accepted_point)
        point = self._processor.to_point(session.trip_id, sample, result.speed_kmh)
        trip = self._accumulator.apply(result.speed_kmh, result.distance_increment_m, now)

        session.last_accepted_point = point
        session.current_speed_kmh = result.speed_kmh
        session.accuracy = sample.horizontal_accuracy

        paused = self._evaluate_auto_pause(result.speed_kmh, now)
        self._emit(EventType.SAMPLE_ACCEPTED, self.snapshot())

        fields: dict[str, Any] = {
            "total_distance_meters": trip.total_distance_meters,
            "max_speed_kmh": trip.max_speed_kmh,
            "avg_speed_kmh": trip.avg_speed_kmh,
        }
        if paused or resumed:
            fields["status"] = trip.status
        await self._persist_sample(point, fields)
        return point

    async def _persist_sample(self, point: ProcessedPoint, fields: dict[str, Any]) -> None:
        try:
            await self.store.append_point(point)
            await self.store.update_trip_aggregate(point.trip_id, **fields)
        except Exception as e:
            # In-memory totals stay authoritative; the next write catches up
            logger.error("Error saving location for trip %d: %s", point.trip_id, e)
            self._emit(EventType.PERSISTENCE_ERROR, {"trip_id": point.trip_id, "error": str(e)})

    # =========================================================================
    # Auto-pause
    # =========================================================================

    def _evaluate_auto_pause(self, speed_kmh: float, now_ms: int) -> bool:
        """Arm, disarm or fire the stationary debounce. True if it paused."""
        if not self.config.auto_pause_enabled or self._state != TrackingState.ACTIVE:
            return False

        if speed_kmh >= self.auto_pause_threshold_kmh:
            self._stationary.disarm()
            return False

        if not self._stationary.armed:
            self._stationary.arm(now_ms)
            return False

        if self._stationary.expired(now_ms):
            self._enter_pause(auto=True)
            return True
        return False

    def _should_auto_resume(self, session: TrackingSession, sample: RawSample) -> bool:
        if not session.auto_paused or not self.config.auto_pause_enabled:
            return False
        speed = self._processor.process(sample, session.last_accepted_point).speed_kmh
        return speed >= self.auto_pause_threshold_kmh

    def _enter_pause(self, auto: bool) -> None:
        session = self._session
        if session is None:
            return
        self._stationary.disarm()
        self._accumulator.pause()
        self._state = TrackingState.PAUSED
        session.is_paused = True
        session.auto_paused = auto
        self._emit(EventType.TRIP_PAUSED, {"trip_id": session.trip_id, "auto": auto})
        logger.info("Trip %d %s", session.trip_id, "auto-paused" if auto else "paused")

    def _leave_pause(self) -> None:
        session = self._session
        if session is None:
            return
        auto = session.auto_paused
        self._accumulator.resume()
        self._state = TrackingState.ACTIVE
        session.is_paused = False
        session.auto_paused = False
        self._emit(EventType.TRIP_RESUMED, {"trip_id": session.trip_id, "auto": auto})

    # =========================================================================
    # Watchdogs
    # =========================================================================

    async def tick(self) -> None:
        """Fast periodic check: average, speed decay, auto-pause expiry."""
        session = self._session
        if self._state != TrackingState.ACTIVE or session is None:
            return

        now = self._clock()
        self._accumulator.refresh_average(now)

        decay_ms = self.config.speed_decay_secs * 1000
        if session.current_speed_kmh > 0 and now - session.last_sample_wall_clock_ms > decay_ms:
            logger.debug("No GPS update for %.0fs, setting speed to 0", self.config.speed_decay_secs)
            session.current_speed_kmh = 0.0

        if self.config.auto_pause_enabled and self._stationary.expired(now):
            self._enter_pause(auto=True)
            await self._persist_status()

    def check_gps_loss(self) -> bool:
        """Slow periodic check. Returns True when health just became LOST."""
        session = self._session
        # Paused trips intentionally stop requiring fresh samples
        if self._state != TrackingState.ACTIVE or session is None:
            return False

        silence_ms = self._clock() - session.last_sample_wall_clock_ms
        if silence_ms > self.config.gps_loss_secs * 1000 and session.gps_health != GpsHealth.LOST:
            logger.warning("No GPS update for %.1fs, signal lost", silence_ms / 1000)
            self._set_health(session, GpsHealth.LOST)
            return True
        return False

    def _set_health(self, session: TrackingSession, health: GpsHealth) -> None:
        if session.gps_health == health:
            return
        session.gps_health = health
        if health == GpsHealth.ACQUIRED:
            self._emit(EventType.GPS_FIX_ACQUIRED, {"trip_id": session.trip_id})
        elif health == GpsHealth.LOST:
            self._emit(EventType.GPS_FIX_LOST, {"trip_id": session.trip_id})

    def run_timers(self) -> None:
        self.cancel_timers()
        self._timer_tasks = [
            asyncio.create_task(
                self._every(self.config.tick_interval_secs, self.tick),
                name="gpsmeter-tick",
            ),
            asyncio.create_task(
                self._every(self.config.gps_loss_check_interval_secs, self.check_gps_loss),
                name="gpsmeter-gps-loss",
            ),
        ]

    def cancel_timers(self) -> None:
        for task in self._timer_tasks:
            task.cancel()
        self._timer_tasks = []

    async def _every(self, interval: float, fn: Callable[[], Any]) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                result = fn()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error("Tracker timer error: %s", e)

    # =========================================================================
    # Collaborators
    # =========================================================================

    async def _open_location(self) -> bool:
        try:
            self._subscription = await self.source.subscribe(self._handle_sample)
            return True
        except LocationUnavailableError as e:
            logger.error("Location unavailable: %s", e)
        except Exception as e:
            logger.error("Failed to start location tracking: %s", e)
        self._subscription = None
        return False

    async def _close_location(self) -> None:
        handle, self._subscription = self._subscription, None
        if handle is None:
            return
        try:
            await self.source.unsubscribe(handle)
        except Exception as e:
            logger.warning("Error stopping location tracking: %s", e)

    async def _persist_status(self) -> None:
        trip = self._accumulator.trip
        if trip is None:
            return
        try:
            await self.store.update_trip_aggregate(trip.id, status=trip.status)
        except Exception as e:
            logger.error("Failed to save status of trip %d: %s", trip.id, e)
            self._emit(EventType.PERSISTENCE_ERROR, {"trip_id": trip.id, "error": str(e)})

    def _discard_session(self) -> None:
        self._accumulator.clear()
        self._session = None
        self._state = TrackingState.IDLE

    def _trip_id(self) -> int | None:
        return self._session.trip_id if self._session else None

    def _emit(self, event_type: EventType, data: Any = None) -> None:
        if self._bus is not None:
            self._bus.emit_nowait(event_type, data=data)
