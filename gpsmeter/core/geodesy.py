"""
Geodesy Utilities
=================

Great-circle distance, unit conversions and display formatting.

All functions are pure. Nothing here rounds except the ``format_*`` helpers,
which are meant for final display only.

Usage:
    meters = calculate_distance(41.0, 29.0, 41.001, 29.0)
    print(format_distance(meters, SpeedUnit.KMH))  # "111 m"
"""

from __future__ import annotations

import math
from typing import Protocol

from ..domain.models import SpeedUnit

EARTH_RADIUS_M = 6371000.0

MS_TO_KMH = 3.6
KMH_TO_MPH = 0.621371
MPH_TO_KMH = 1.60934
METERS_TO_KM = 0.001
METERS_TO_MILES = 0.000621371
FEET_PER_MILE = 5280


class HasCoordinates(Protocol):
    latitude: float
    longitude: float


def calculate_distance(
    lat1: float, lon1: float, lat2: float, lon2: float
) -> float:
    """
    Calculate distance between two points using the Haversine formula.

    Args:
        lat1, lon1: First point coordinates (degrees)
        lat2, lon2: Second point coordinates (degrees)

    Returns:
        Distance in meters
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_M * c


def distance_between(a: HasCoordinates, b: HasCoordinates) -> float:
    """Haversine distance in meters between two objects with lat/lon."""
    return calculate_distance(a.latitude, a.longitude, b.latitude, b.longitude)


def ms_to_kmh(speed_ms: float) -> float:
    return speed_ms * MS_TO_KMH


def kmh_to_mph(kmh: float) -> float:
    return kmh * KMH_TO_MPH


def mph_to_kmh(mph: float) -> float:
    return mph * MPH_TO_KMH


def meters_to_km(meters: float) -> float:
    return meters * METERS_TO_KM


def meters_to_miles(meters: float) -> float:
    return meters * METERS_TO_MILES


def to_kmh(value: float, unit: SpeedUnit) -> float:
    """Convert a speed expressed in ``unit`` to km/h."""
    return mph_to_kmh(value) if unit == SpeedUnit.MPH else value


def calculate_average_speed(distance_m: float, duration_s: float) -> float:
    """
    Average speed over a distance.

    Args:
        distance_m: Distance in meters
        duration_s: Duration in seconds

    Returns:
        Average speed in km/h, 0 when the duration is not positive
    """
    if duration_s <= 0:
        return 0.0
    return meters_to_km(distance_m) / (duration_s / 3600)


def format_speed(kmh: float, unit: SpeedUnit, decimals: int = 0) -> str:
    value = kmh_to_mph(kmh) if unit == SpeedUnit.MPH else kmh
    return f"{value:.{decimals}f}"


def format_distance(meters: float, unit: SpeedUnit) -> str:
    """Short distance label: metres/km, or feet/miles for imperial users."""
    if unit == SpeedUnit.MPH:
        miles = meters_to_miles(meters)
        if miles < 1:
            return f"{miles * FEET_PER_MILE:.0f} ft"
        return f"{miles:.2f} mi"

    km = meters_to_km(meters)
    if km < 1:
        return f"{meters:.0f} m"
    return f"{km:.2f} km"


def format_duration(seconds: float) -> str:
    """
    Format a duration as ``H:MM:SS`` (one hour or more) or ``M:SS``.

    Fractions of a second are truncated, never rounded up.
    """
    total = max(0, int(seconds))
    hours, rem = divmod(total, 3600)
    minutes, secs = divmod(rem, 60)

    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"
