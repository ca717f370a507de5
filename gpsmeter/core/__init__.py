"""gpsmeter Core - Geodesy, sample processing, trip aggregate and tracker."""

from .aggregate import TripAccumulator, average_speed_kmh
from .errors import GpsMeterError, LocationUnavailableError, TripCompletedError
from .events import Event, EventBus, EventType
from .geodesy import (
    calculate_distance,
    format_distance,
    format_duration,
    format_speed,
    kmh_to_mph,
    mph_to_kmh,
    ms_to_kmh,
    to_kmh,
)
from .sample_processor import RecomputedTotals, SampleProcessor, SampleResult
from .tracker import TrackingSession, TripTracker

__all__ = [
    # Errors
    "GpsMeterError",
    "LocationUnavailableError",
    "TripCompletedError",
    # Events
    "Event",
    "EventBus",
    "EventType",
    # Geodesy
    "calculate_distance",
    "format_distance",
    "format_duration",
    "format_speed",
    "kmh_to_mph",
    "mph_to_kmh",
    "ms_to_kmh",
    "to_kmh",
    # Processing
    "RecomputedTotals",
    "SampleProcessor",
    "SampleResult",
    "TripAccumulator",
    "average_speed_kmh",
    # Tracking
    "TrackingSession",
    "TripTracker",
]
