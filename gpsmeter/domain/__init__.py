"""gpsmeter Domain Layer - Core business models and enums."""

from .models import (
    GpsHealth,
    ProcessedPoint,
    RawSample,
    SpeedUnit,
    TrackingSnapshot,
    TrackingState,
    TripAggregate,
    TripStatus,
)

__all__ = [
    "GpsHealth",
    "ProcessedPoint",
    "RawSample",
    "SpeedUnit",
    "TrackingSnapshot",
    "TrackingState",
    "TripAggregate",
    "TripStatus",
]
