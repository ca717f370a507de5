"""
Geodesy Unit Tests
==================

Tests for distance, unit conversion and display formatting.
"""

import math

import pytest

from gpsmeter.core.geodesy import (
    calculate_average_speed,
    calculate_distance,
    format_distance,
    format_duration,
    format_speed,
    kmh_to_mph,
    meters_to_miles,
    mph_to_kmh,
    ms_to_kmh,
    to_kmh,
)
from gpsmeter.domain.models import SpeedUnit


class TestCalculateDistance:
    """Tests for haversine distance."""

    def test_same_point_is_zero(self):
        assert calculate_distance(41.0, 29.0, 41.0, 29.0) == 0.0

    def test_one_millidegree_north(self):
        """0.001 degree of latitude is about 111 meters."""
        distance = calculate_distance(41.0, 29.0, 41.001, 29.0)
        assert 110 < distance < 112

    def test_symmetric(self):
        d1 = calculate_distance(41.0, 29.0, 41.01, 29.02)
        d2 = calculate_distance(41.01, 29.02, 41.0, 29.0)
        assert d1 == pytest.approx(d2)

    def test_known_city_distance(self):
        """Istanbul to Ankara is roughly 350 km."""
        distance = calculate_distance(41.0082, 28.9784, 39.9334, 32.8597)
        assert 340_000 < distance < 360_000

    def test_antipodal_points(self):
        distance = calculate_distance(0.0, 0.0, 0.0, 180.0)
        assert distance == pytest.approx(math.pi * 6371000.0)


class TestConversions:
    def test_ms_to_kmh(self):
        assert ms_to_kmh(10) == pytest.approx(36.0)

    def test_kmh_mph_factors(self):
        assert kmh_to_mph(100) == pytest.approx(62.1371)
        assert mph_to_kmh(1) == pytest.approx(1.60934)

    def test_meters_to_miles(self):
        assert meters_to_miles(1000) == pytest.approx(0.621371)

    def test_to_kmh_respects_unit(self):
        assert to_kmh(2.0, SpeedUnit.KMH) == 2.0
        assert to_kmh(2.0, SpeedUnit.MPH) == pytest.approx(3.21868)

    def test_average_speed(self):
        assert calculate_average_speed(1000, 3600) == pytest.approx(1.0)
        assert calculate_average_speed(1000, 0) == 0.0


class TestFormatting:
    def test_format_speed(self):
        assert format_speed(50.4, SpeedUnit.KMH) == "50"
        assert format_speed(100, SpeedUnit.MPH, 1) == "62.1"

    def test_format_distance_metric(self):
        assert format_distance(850, SpeedUnit.KMH) == "850 m"
        assert format_distance(1500, SpeedUnit.KMH) == "1.50 km"

    def test_format_distance_imperial(self):
        assert format_distance(100, SpeedUnit.MPH) == "328 ft"
        assert format_distance(3218.69, SpeedUnit.MPH) == "2.00 mi"

    def test_format_duration_minutes(self):
        assert format_duration(0) == "0:00"
        assert format_duration(65) == "1:05"

    def test_format_duration_hours(self):
        assert format_duration(3725) == "1:02:05"

    def test_format_duration_truncates(self):
        assert format_duration(59.9) == "0:59"
        assert format_duration(-3) == "0:00"
