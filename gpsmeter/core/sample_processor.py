"""
Sample Processor
================

Turns one raw GPS sample plus the previously accepted point into a speed
estimate and a distance increment.

Rules:
- Device reported speed wins when present (m/s -> km/h).
- Otherwise speed is derived from distance / time since the previous point.
- Anything below the noise floor is treated as standing still (exactly 0).
- Distance only counts when the final speed is above zero, so GPS jitter
  while stationary never inflates the trip.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from dataclasses import dataclass

from ..domain.models import ProcessedPoint, RawSample
from .geodesy import calculate_distance, ms_to_kmh

logger = logging.getLogger(__name__)

DEFAULT_NOISE_FLOOR_KMH = 1.0


@dataclass(frozen=True)
class SampleResult:
    """Outcome of processing a single sample."""

    speed_kmh: float
    distance_increment_m: float


@dataclass(frozen=True)
class RecomputedTotals:
    """Totals re-derived from a stored point sequence."""

    total_distance_meters: float
    max_speed_kmh: float
    points_count: int


def _finite(*values: float | None) -> bool:
    return all(v is not None and math.isfinite(v) for v in values)


class SampleProcessor:
    """Speed/distance estimation with noise suppression."""

    def __init__(self, noise_floor_kmh: float = DEFAULT_NOISE_FLOOR_KMH) -> None:
        self.noise_floor_kmh = noise_floor_kmh

    def process(
        self,
        current: RawSample,
        previous: ProcessedPoint | None,
    ) -> SampleResult:
        """
        Compute speed and distance increment for ``current``.

        Args:
            current: Newly received raw sample
            previous: Last accepted point of the trip, or None for the first

        Returns:
            SampleResult with speed in km/h and increment in meters.
            Malformed input yields zeros instead of raising.
        """
        if not _finite(current.latitude, current.longitude):
            logger.debug("Non-finite coordinates in sample, treating as stationary")
            return SampleResult(0.0, 0.0)

        speed = self._estimate_speed(current, previous)

        if speed < self.noise_floor_kmh:
            speed = 0.0

        increment = 0.0
        if (
            previous is not None
            and speed > 0
            and _finite(previous.latitude, previous.longitude)
        ):
            increment = calculate_distance(
                previous.latitude, previous.longitude,
                current.latitude, current.longitude,
            )

        return SampleResult(speed_kmh=speed, distance_increment_m=increment)

    def _estimate_speed(
        self, current: RawSample, previous: ProcessedPoint | None
    ) -> float:
        instant = current.instant_speed
        if _finite(instant) and instant >= 0:  # type: ignore[operator]
            return ms_to_kmh(instant)  # type: ignore[arg-type]

        if previous is None or not _finite(previous.latitude, previous.longitude):
            return 0.0

        # Zero or negative delta (duplicate timestamp, clock skew) falls through to 0
        dt = (current.captured_at_ms - previous.captured_at_ms) / 1000
        if dt <= 0:
            return 0.0

        distance = calculate_distance(
            previous.latitude, previous.longitude,
            current.latitude, current.longitude,
        )
        return ms_to_kmh(distance / dt)

    @staticmethod
    def has_valid_fix(sample: RawSample) -> bool:
        """True when the sample carries finite coordinates."""
        return _finite(sample.latitude, sample.longitude)

    @staticmethod
    def to_point(trip_id: int, sample: RawSample, speed_kmh: float) -> ProcessedPoint:
        """Annotate a raw sample with its trip and computed speed."""
        return ProcessedPoint(
            trip_id=trip_id,
            latitude=sample.latitude,
            longitude=sample.longitude,
            speed_kmh=speed_kmh,
            altitude=sample.altitude,
            accuracy=sample.horizontal_accuracy,
            captured_at_ms=sample.captured_at_ms,
        )

    def recompute_totals(self, points: Iterable[ProcessedPoint]) -> RecomputedTotals:
        """
        Re-derive distance and max speed from stored points.

        Stored points carry the speed computed when they were accepted, so
        the same noise policy applies: a transition only adds distance when
        the later point's speed is above zero.
        """
        total = 0.0
        max_speed = 0.0
        count = 0
        previous: ProcessedPoint | None = None

        for point in points:
            count += 1
            max_speed = max(max_speed, point.speed_kmh)
            if previous is not None and point.speed_kmh > 0:
                total += calculate_distance(
                    previous.latitude, previous.longitude,
                    point.latitude, point.longitude,
                )
            previous = point

        return RecomputedTotals(
            total_distance_meters=total,
            max_speed_kmh=max_speed,
            points_count=count,
        )
