"""
Trip Aggregate
==============

Owns the running totals of the current trip and keeps them consistent:

- ``total_distance_meters`` only grows, once per accepted sample
- ``max_speed_kmh`` only grows
- ``avg_speed_kmh`` is recomputed from wall-clock time since the start
  (paused intervals are included)
- a completed trip never changes again
"""

from __future__ import annotations

import logging
import math

from ..domain.models import TripAggregate, TripStatus
from .errors import TripCompletedError
from .geodesy import meters_to_km

logger = logging.getLogger(__name__)

MS_PER_HOUR = 3_600_000


def average_speed_kmh(total_distance_m: float, started_at_ms: int, now_ms: int) -> float:
    """Average speed since ``started_at_ms``; 0 when no time has elapsed."""
    elapsed_hours = (now_ms - started_at_ms) / MS_PER_HOUR
    if elapsed_hours <= 0:
        return 0.0
    return meters_to_km(total_distance_m) / elapsed_hours


class TripAccumulator:
    """
    Applies per-sample updates to a TripAggregate.

    Usage:
        acc = TripAccumulator()
        acc.start(trip_id=1, started_at_ms=now)
        acc.apply(speed_kmh=12.0, increment_m=3.4, now_ms=now + 1000)
    """

    def __init__(self) -> None:
        self._trip: TripAggregate | None = None

    @property
    def trip(self) -> TripAggregate | None:
        return self._trip

    @property
    def has_trip(self) -> bool:
        return self._trip is not None

    def _require_open(self) -> TripAggregate:
        if self._trip is None:
            raise RuntimeError("no trip loaded")
        if self._trip.status == TripStatus.COMPLETED:
            raise TripCompletedError(self._trip.id)
        return self._trip

    def start(self, trip_id: int, started_at_ms: int) -> TripAggregate:
        """Begin a fresh trip with zero totals."""
        self._trip = TripAggregate(id=trip_id, started_at_ms=started_at_ms)
        return self._trip

    def restore(
        self,
        trip_id: int,
        started_at_ms: int,
        total_distance: float,
        max_speed: float,
        avg_speed: float,
        now_ms: int,
    ) -> TripAggregate:
        """
        Rehydrate a trip persisted before a restart.

        Elapsed time is taken from the wall clock, so the stored average is
        only used when it cannot be recomputed.
        """
        trip = TripAggregate(
            id=trip_id,
            started_at_ms=started_at_ms,
            total_distance_meters=max(0.0, total_distance),
            max_speed_kmh=max(0.0, max_speed),
            avg_speed_kmh=max(0.0, avg_speed),
            status=TripStatus.ACTIVE,
        )
        if now_ms > started_at_ms:
            trip.avg_speed_kmh = average_speed_kmh(
                trip.total_distance_meters, started_at_ms, now_ms
            )
        self._trip = trip
        logger.info(
            "Restored trip %d: %.1fm, max %.1f km/h, avg %.2f km/h",
            trip_id, trip.total_distance_meters, trip.max_speed_kmh, trip.avg_speed_kmh,
        )
        return trip

    def apply(self, speed_kmh: float, increment_m: float, now_ms: int) -> TripAggregate:
        """
        Fold one accepted sample into the totals.

        Raises:
            ValueError: negative or non-finite increment
            TripCompletedError: trip already completed
        """
        trip = self._require_open()
        if not math.isfinite(increment_m) or increment_m < 0:
            raise ValueError(f"invalid distance increment: {increment_m}")

        trip.max_speed_kmh = max(trip.max_speed_kmh, speed_kmh)
        if increment_m > 0:
            trip.total_distance_meters += increment_m
        trip.avg_speed_kmh = average_speed_kmh(
            trip.total_distance_meters, trip.started_at_ms, now_ms
        )
        return trip

    def refresh_average(self, now_ms: int) -> float:
        """Periodic recompute of the average speed."""
        trip = self._require_open()
        trip.avg_speed_kmh = average_speed_kmh(
            trip.total_distance_meters, trip.started_at_ms, now_ms
        )
        return trip.avg_speed_kmh

    def elapsed_seconds(self, now_ms: int) -> int:
        if self._trip is None:
            return 0
        end = self._trip.ended_at_ms if self._trip.ended_at_ms is not None else now_ms
        return max(0, (end - self._trip.started_at_ms) // 1000)

    def pause(self) -> None:
        self._require_open().status = TripStatus.PAUSED

    def resume(self) -> None:
        self._require_open().status = TripStatus.ACTIVE

    def complete(self, now_ms: int) -> TripAggregate:
        """Stamp the end time and freeze the trip."""
        trip = self._require_open()
        trip.avg_speed_kmh = average_speed_kmh(
            trip.total_distance_meters, trip.started_at_ms, now_ms
        )
        trip.ended_at_ms = now_ms
        trip.status = TripStatus.COMPLETED
        return trip

    def clear(self) -> None:
        self._trip = None
