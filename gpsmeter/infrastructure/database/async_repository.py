"""
Async Trip Repository
=====================

Async data access layer for trips and location points using aiosqlite.
Every operation opens its own short-lived connection.

Usage:
    repo = AsyncTripRepository("data/gps_speed_meter.db")
    await repo.init_schema()

    trip_id = await repo.create_trip(started_at_ms=now)
    await repo.append_point(point)
    await repo.update_trip_aggregate(trip_id, total_distance_meters=120.5)

    await repo.close()
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from enum import Enum
from pathlib import Path
from typing import Any

import aiosqlite

from ...domain.models import ProcessedPoint, TripAggregate, TripStatus
from .schema import TRIPS_SCHEMA

logger = logging.getLogger(__name__)

AGGREGATE_FIELDS = frozenset(
    {"total_distance_meters", "max_speed_kmh", "avg_speed_kmh", "status"}
)

# Running totals that only grow while a trip is open
MONOTONIC_FIELDS = frozenset({"total_distance_meters", "max_speed_kmh"})


def _row_to_trip(row: aiosqlite.Row) -> TripAggregate:
    return TripAggregate(
        id=row["id"],
        started_at_ms=row["started_at_ms"],
        ended_at_ms=row["ended_at_ms"],
        total_distance_meters=row["total_distance_meters"],
        max_speed_kmh=row["max_speed_kmh"],
        avg_speed_kmh=row["avg_speed_kmh"],
        status=TripStatus(row["status"]),
    )


def _row_to_point(row: aiosqlite.Row) -> ProcessedPoint:
    return ProcessedPoint(
        id=row["id"],
        trip_id=row["trip_id"],
        latitude=row["latitude"],
        longitude=row["longitude"],
        speed_kmh=row["speed_kmh"],
        altitude=row["altitude"],
        accuracy=row["accuracy"],
        captured_at_ms=row["captured_at_ms"],
    )


def _assignments(fields: dict[str, Any], monotonic: bool = False) -> tuple[str, list[Any]]:
    """
    Build a SET clause from whitelisted aggregate fields.

    With ``monotonic`` the growing totals are written as MAX(column, ?), so
    an older write landing last cannot move them backwards.
    """
    unknown = set(fields) - AGGREGATE_FIELDS
    if unknown:
        raise ValueError(f"unknown trip fields: {', '.join(sorted(unknown))}")

    columns = sorted(fields)
    values = [
        fields[c].value if isinstance(fields[c], Enum) else fields[c]
        for c in columns
    ]
    clauses = [
        f"{c} = MAX({c}, ?)" if monotonic and c in MONOTONIC_FIELDS else f"{c} = ?"
        for c in columns
    ]
    return ", ".join(clauses), values


class AsyncTripRepository:
    """
    Async repository for trip persistence.

    Non-blocking SQLite operations using aiosqlite.
    Completed trips are frozen: aggregate writes that arrive after
    completion are ignored at the SQL level.
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    async def init_schema(self) -> None:
        """Initialize database schema. Must be called before first use."""
        async with self._get_connection() as conn:
            await conn.executescript(TRIPS_SCHEMA)
            await conn.commit()
        logger.info("Trip database initialized: %s", self.db_path)

    @asynccontextmanager
    async def _get_connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Get async database connection with row factory."""
        conn = await aiosqlite.connect(str(self.db_path), timeout=30.0)
        conn.row_factory = aiosqlite.Row
        await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute("PRAGMA foreign_keys=ON")
        try:
            yield conn
        finally:
            await conn.close()

    async def close(self) -> None:
        """Release the repository. Connections are per operation, so nothing stays open."""
        logger.debug("Trip repository closed")

    # =========================================================================
    # Trip Operations
    # =========================================================================

    async def create_trip(self, started_at_ms: int) -> int:
        """Insert a new active trip. Returns its ID."""
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                "INSERT INTO trips (started_at_ms, status) VALUES (?, ?)",
                (started_at_ms, TripStatus.ACTIVE.value),
            )
            await conn.commit()
            trip_id = cursor.lastrowid or 0

        logger.debug("Created trip %d", trip_id)
        return trip_id

    async def update_trip_aggregate(self, trip_id: int, **fields: Any) -> None:
        """
        Update running totals and/or status of an open trip.

        Distance and max speed never decrease here; ``mark_completed`` writes
        the final values as given.

        Raises:
            ValueError: unknown field name
        """
        if not fields:
            return
        assignments, values = _assignments(fields, monotonic=True)

        async with self._get_connection() as conn:
            await conn.execute(
                f"UPDATE trips SET {assignments} WHERE id = ? AND status != ?",
                (*values, trip_id, TripStatus.COMPLETED.value),
            )
            await conn.commit()

    async def mark_completed(self, trip_id: int, ended_at_ms: int, **final_fields: Any) -> None:
        """Stamp end time, write the final aggregate and freeze the trip."""
        final_fields.pop("status", None)
        assignments, values = _assignments(final_fields)
        if assignments:
            assignments += ", "

        async with self._get_connection() as conn:
            await conn.execute(
                f"""
                UPDATE trips SET {assignments}ended_at_ms = ?, status = ?
                WHERE id = ? AND status != ?
                """,
                (
                    *values,
                    ended_at_ms,
                    TripStatus.COMPLETED.value,
                    trip_id,
                    TripStatus.COMPLETED.value,
                ),
            )
            await conn.commit()

        logger.debug("Trip %d marked completed", trip_id)

    async def get_active_trip(self) -> TripAggregate | None:
        """Most recent trip that is not completed (active or paused)."""
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                """
                SELECT * FROM trips
                WHERE status != ?
                ORDER BY started_at_ms DESC, id DESC
                LIMIT 1
                """,
                (TripStatus.COMPLETED.value,),
            )
            row = await cursor.fetchone()
            return _row_to_trip(row) if row else None

    async def get_trip(self, trip_id: int) -> TripAggregate | None:
        async with self._get_connection() as conn:
            cursor = await conn.execute("SELECT * FROM trips WHERE id = ?", (trip_id,))
            row = await cursor.fetchone()
            return _row_to_trip(row) if row else None

    async def list_trips(self, limit: int = 50, offset: int = 0) -> list[TripAggregate]:
        """Trips, newest first."""
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                """
                SELECT * FROM trips
                ORDER BY started_at_ms DESC, id DESC
                LIMIT ? OFFSET ?
                """,
                (limit, offset),
            )
            rows = await cursor.fetchall()
            return [_row_to_trip(row) for row in rows]

    async def delete_trip(self, trip_id: int) -> bool:
        """Delete a trip and, by cascade, its points. Returns True if it existed."""
        async with self._get_connection() as conn:
            cursor = await conn.execute("DELETE FROM trips WHERE id = ?", (trip_id,))
            await conn.commit()
            deleted = cursor.rowcount > 0

        if deleted:
            logger.info("Deleted trip %d", trip_id)
        return deleted

    # =========================================================================
    # Point Operations
    # =========================================================================

    async def append_point(self, point: ProcessedPoint) -> int:
        """Insert an accepted location point. Returns its ID."""
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                """
                INSERT INTO location_points
                (trip_id, latitude, longitude, speed_kmh, altitude, accuracy, captured_at_ms)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    point.trip_id,
                    point.latitude,
                    point.longitude,
                    point.speed_kmh,
                    point.altitude,
                    point.accuracy,
                    point.captured_at_ms,
                ),
            )
            await conn.commit()
            return cursor.lastrowid or 0

    async def get_points_for_trip(self, trip_id: int) -> list[ProcessedPoint]:
        """All points of a trip in capture order."""
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                """
                SELECT * FROM location_points
                WHERE trip_id = ?
                ORDER BY captured_at_ms, id
                """,
                (trip_id,),
            )
            rows = await cursor.fetchall()
            return [_row_to_point(row) for row in rows]

    async def count_points(self, trip_id: int) -> int:
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                "SELECT COUNT(*) FROM location_points WHERE trip_id = ?",
                (trip_id,),
            )
            row = await cursor.fetchone()
            return row[0] if row else 0

    # =========================================================================
    # Statistics
    # =========================================================================

    async def get_stats(self) -> dict:
        """Get overall statistics."""
        async with self._get_connection() as conn:
            stats: dict[str, Any] = {}

            cursor = await conn.execute("SELECT COUNT(*) FROM trips")
            row = await cursor.fetchone()
            stats["trips_total"] = row[0] if row else 0

            cursor = await conn.execute(
                "SELECT COUNT(*) FROM trips WHERE status = ?",
                (TripStatus.COMPLETED.value,),
            )
            row = await cursor.fetchone()
            stats["trips_completed"] = row[0] if row else 0

            cursor = await conn.execute("SELECT COUNT(*) FROM location_points")
            row = await cursor.fetchone()
            stats["points_total"] = row[0] if row else 0

            cursor = await conn.execute(
                "SELECT COALESCE(SUM(total_distance_meters), 0), COALESCE(MAX(max_speed_kmh), 0) FROM trips"
            )
            row = await cursor.fetchone()
            stats["distance_total_meters"] = row[0] if row else 0.0
            stats["max_speed_kmh"] = row[1] if row else 0.0

            return stats
