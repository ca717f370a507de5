"""Exceptions raised by the tracking core and its collaborators."""

from __future__ import annotations


class GpsMeterError(Exception):
    """Base class for all gpsmeter errors."""


class LocationUnavailableError(GpsMeterError):
    """Location source could not be opened (permission denied, gpsd down)."""


class TripCompletedError(GpsMeterError):
    """Attempted to mutate a trip that has already been completed."""

    def __init__(self, trip_id: int) -> None:
        super().__init__(f"trip {trip_id} is completed and can no longer change")
        self.trip_id = trip_id
