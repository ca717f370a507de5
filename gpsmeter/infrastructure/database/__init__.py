"""Database infrastructure - SQLite for trips and location points."""

from .async_repository import AsyncTripRepository
from .schema import TRIPS_SCHEMA

__all__ = [
    "TRIPS_SCHEMA",
    "AsyncTripRepository",
]
