"""gpsmeter Domain Models - Pydantic models for samples, points and trips."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class SpeedUnit(str, Enum):
    """Display unit chosen by the user."""

    KMH = "kmh"
    MPH = "mph"


class TripStatus(str, Enum):
    """Persisted trip status."""

    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


class GpsHealth(str, Enum):
    """Freshness of the location signal."""

    SEARCHING = "searching"  # no sample yet
    ACQUIRED = "acquired"
    LOST = "lost"  # samples stopped arriving


class TrackingState(str, Enum):
    """Lifecycle state of the tracker."""

    IDLE = "idle"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


class RawSample(BaseModel):
    """One GPS fix as delivered by the location source."""

    model_config = ConfigDict(frozen=True)

    latitude: float
    longitude: float
    instant_speed: float | None = None  # m/s, device reported
    altitude: float | None = None  # metres above sea level
    horizontal_accuracy: float | None = None  # metres
    captured_at_ms: int  # epoch milliseconds


class ProcessedPoint(BaseModel):
    """A sample accepted into a trip, annotated with its computed speed."""

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    trip_id: int
    latitude: float
    longitude: float
    speed_kmh: float = Field(0.0, ge=0)
    altitude: float | None = None
    accuracy: float | None = None
    captured_at_ms: int


class TripAggregate(BaseModel):
    """Live and durable summary of one trip."""

    id: int
    started_at_ms: int
    ended_at_ms: int | None = None
    total_distance_meters: float = Field(0.0, ge=0)
    max_speed_kmh: float = Field(0.0, ge=0)
    avg_speed_kmh: float = Field(0.0, ge=0)
    status: TripStatus = TripStatus.ACTIVE

    @property
    def is_completed(self) -> bool:
        return self.status == TripStatus.COMPLETED

    @property
    def duration_seconds(self) -> int:
        """Whole seconds between start and end, 0 while the trip is open."""
        if self.ended_at_ms is None:
            return 0
        return max(0, (self.ended_at_ms - self.started_at_ms) // 1000)


class TrackingSnapshot(BaseModel):
    """Read model handed to UI and notification collaborators."""

    state: TrackingState = TrackingState.IDLE
    trip_id: int | None = None
    speed_kmh: float = 0.0
    total_distance_meters: float = 0.0
    avg_speed_kmh: float = 0.0
    max_speed_kmh: float = 0.0
    elapsed_seconds: int = 0
    gps_health: GpsHealth = GpsHealth.SEARCHING
    accuracy: float | None = None
    auto_paused: bool = False

    @property
    def is_tracking(self) -> bool:
        return self.state in (TrackingState.ACTIVE, TrackingState.PAUSED)
