"""
Sample Processor Unit Tests
===========================

Speed estimation, noise floor and distance increments.
"""

import math

import pytest

from gpsmeter.core.geodesy import calculate_distance
from gpsmeter.core.sample_processor import SampleProcessor
from gpsmeter.domain.models import ProcessedPoint, RawSample


def raw(lat=41.0, lon=29.0, speed=None, t=0):
    return RawSample(latitude=lat, longitude=lon, instant_speed=speed, captured_at_ms=t)


def point(lat=41.0, lon=29.0, speed=0.0, t=0, trip_id=1):
    return ProcessedPoint(
        trip_id=trip_id, latitude=lat, longitude=lon, speed_kmh=speed, captured_at_ms=t
    )


@pytest.fixture
def processor():
    return SampleProcessor(noise_floor_kmh=1.0)


class TestSpeed:
    def test_device_speed_converted(self, processor):
        result = processor.process(raw(speed=10.0), None)
        assert result.speed_kmh == pytest.approx(36.0)

    def test_first_sample_has_no_distance(self, processor):
        result = processor.process(raw(speed=10.0), None)
        assert result.distance_increment_m == 0.0

    def test_derived_speed_without_device_speed(self, processor):
        """~111 m in 10 s is ~40 km/h."""
        result = processor.process(raw(lat=41.001, t=10_000), point(t=0))
        assert 39 < result.speed_kmh < 41
        assert 110 < result.distance_increment_m < 112

    def test_identical_coordinates_are_stationary(self, processor):
        result = processor.process(raw(t=5_000), point(t=0))
        assert result.speed_kmh == 0.0
        assert result.distance_increment_m == 0.0

    def test_zero_time_delta(self, processor):
        result = processor.process(raw(lat=41.001, t=0), point(t=0))
        assert result.speed_kmh == 0.0
        assert result.distance_increment_m == 0.0

    def test_negative_time_delta(self, processor):
        result = processor.process(raw(lat=41.001, t=0), point(t=5_000))
        assert result.speed_kmh == 0.0

    def test_negative_device_speed_falls_back_to_derived(self, processor):
        result = processor.process(raw(lat=41.001, speed=-1.0, t=10_000), point(t=0))
        assert result.speed_kmh > 30


class TestNoiseFloor:
    def test_slow_device_speed_clamped(self, processor):
        """0.2 m/s is 0.72 km/h, below the floor."""
        result = processor.process(raw(lat=41.0005, speed=0.2, t=1_000), point(t=0))
        assert result.speed_kmh == 0.0
        assert result.distance_increment_m == 0.0

    def test_above_floor_is_kept(self, processor):
        result = processor.process(raw(lat=41.00001, speed=0.5, t=1_000), point(t=0))
        assert result.speed_kmh == pytest.approx(1.8)
        assert result.distance_increment_m > 0

    def test_custom_floor(self):
        result = SampleProcessor(noise_floor_kmh=5.0).process(raw(speed=1.0), None)
        assert result.speed_kmh == 0.0


class TestMalformedInput:
    def test_nan_coordinates(self, processor):
        result = processor.process(raw(lat=math.nan, speed=10.0), point())
        assert result.speed_kmh == 0.0
        assert result.distance_increment_m == 0.0

    def test_nan_previous_point_adds_no_distance(self, processor):
        result = processor.process(raw(lat=41.001, speed=10.0, t=1_000), point(lat=math.nan))
        assert result.speed_kmh == pytest.approx(36.0)
        assert result.distance_increment_m == 0.0

    def test_has_valid_fix(self):
        assert SampleProcessor.has_valid_fix(raw())
        assert not SampleProcessor.has_valid_fix(raw(lon=math.inf))

    def test_nan_device_speed_uses_derived(self, processor):
        result = processor.process(raw(lat=41.001, speed=math.nan, t=10_000), point(t=0))
        assert result.speed_kmh > 30


class TestPoints:
    def test_to_point_copies_fields(self):
        sample = RawSample(
            latitude=41.0,
            longitude=29.0,
            altitude=12.5,
            horizontal_accuracy=4.0,
            captured_at_ms=123,
        )
        p = SampleProcessor.to_point(7, sample, 18.0)
        assert p.trip_id == 7
        assert p.speed_kmh == 18.0
        assert p.altitude == 12.5
        assert p.accuracy == 4.0
        assert p.captured_at_ms == 123

    def test_recompute_totals(self, processor):
        points = [
            point(lat=41.0, speed=0.0, t=0),
            point(lat=41.001, speed=40.0, t=10_000),
            point(lat=41.0011, speed=0.0, t=20_000),  # jitter, not counted
            point(lat=41.002, speed=32.0, t=30_000),
        ]
        totals = processor.recompute_totals(points)
        expected = calculate_distance(41.0, 29.0, 41.001, 29.0) + calculate_distance(
            41.0011, 29.0, 41.002, 29.0
        )
        assert totals.points_count == 4
        assert totals.max_speed_kmh == 40.0
        assert totals.total_distance_meters == pytest.approx(expected, rel=1e-9)

    def test_recompute_empty(self, processor):
        totals = processor.recompute_totals([])
        assert totals.points_count == 0
        assert totals.total_distance_meters == 0.0
