"""
Trip Aggregate Unit Tests
=========================

Running totals, restore after restart and completion.
"""

import math

import pytest

from gpsmeter.core.aggregate import TripAccumulator, average_speed_kmh
from gpsmeter.core.errors import TripCompletedError
from gpsmeter.domain.models import TripStatus

T0 = 1_700_000_000_000


@pytest.fixture
def acc():
    accumulator = TripAccumulator()
    accumulator.start(trip_id=1, started_at_ms=T0)
    return accumulator


def test_average_speed_zero_elapsed():
    assert average_speed_kmh(500, T0, T0) == 0.0
    assert average_speed_kmh(500, T0, T0 - 1) == 0.0


def test_start_has_zero_totals(acc):
    trip = acc.trip
    assert trip.total_distance_meters == 0.0
    assert trip.max_speed_kmh == 0.0
    assert trip.status == TripStatus.ACTIVE


def test_apply_accumulates(acc):
    acc.apply(speed_kmh=20.0, increment_m=100.0, now_ms=T0 + 60_000)
    trip = acc.apply(speed_kmh=10.0, increment_m=50.0, now_ms=T0 + 120_000)
    assert trip.total_distance_meters == pytest.approx(150.0)
    assert trip.max_speed_kmh == 20.0
    # 0.15 km in 2 minutes
    assert trip.avg_speed_kmh == pytest.approx(4.5)


def test_totals_never_decrease(acc):
    samples = [(5.0, 10.0), (0.0, 0.0), (30.0, 80.0), (12.0, 5.0), (0.0, 0.0)]
    last_distance, last_max = 0.0, 0.0
    for i, (speed, inc) in enumerate(samples, start=1):
        trip = acc.apply(speed, inc, T0 + i * 1000)
        assert trip.total_distance_meters >= last_distance
        assert trip.max_speed_kmh >= last_max
        last_distance, last_max = trip.total_distance_meters, trip.max_speed_kmh


def test_rejects_negative_increment(acc):
    with pytest.raises(ValueError):
        acc.apply(10.0, -1.0, T0 + 1000)


def test_rejects_non_finite_increment(acc):
    with pytest.raises(ValueError):
        acc.apply(10.0, math.inf, T0 + 1000)


def test_refresh_average_decays_over_time(acc):
    acc.apply(36.0, 1000.0, T0 + 100_000)
    first = acc.trip.avg_speed_kmh
    second = acc.refresh_average(T0 + 200_000)
    assert second < first


def test_restore_recomputes_average():
    acc = TripAccumulator()
    trip = acc.restore(
        trip_id=9,
        started_at_ms=T0,
        total_distance=500.0,
        max_speed=12.0,
        avg_speed=99.0,
        now_ms=T0 + 600_000,
    )
    assert acc.elapsed_seconds(T0 + 600_000) == 600
    assert trip.avg_speed_kmh == pytest.approx(3.0)
    assert trip.max_speed_kmh == 12.0
    assert trip.status == TripStatus.ACTIVE


def test_restore_keeps_stored_average_without_elapsed_time():
    acc = TripAccumulator()
    trip = acc.restore(1, T0, 500.0, 12.0, 4.2, now_ms=T0)
    assert trip.avg_speed_kmh == 4.2


def test_round_trip_through_restore(acc):
    for i, (speed, inc) in enumerate([(10.0, 30.0), (25.0, 70.0), (8.0, 20.0)], start=1):
        acc.apply(speed, inc, T0 + i * 10_000)
    saved = acc.trip.model_copy()

    restored = TripAccumulator().restore(
        saved.id,
        saved.started_at_ms,
        saved.total_distance_meters,
        saved.max_speed_kmh,
        saved.avg_speed_kmh,
        now_ms=T0 + 60_000,
    )
    assert restored.total_distance_meters == saved.total_distance_meters
    assert restored.max_speed_kmh == saved.max_speed_kmh


def test_pause_and_resume_status(acc):
    acc.pause()
    assert acc.trip.status == TripStatus.PAUSED
    acc.resume()
    assert acc.trip.status == TripStatus.ACTIVE


def test_complete_freezes_trip(acc):
    acc.apply(18.0, 300.0, T0 + 60_000)
    trip = acc.complete(T0 + 120_000)
    assert trip.status == TripStatus.COMPLETED
    assert trip.ended_at_ms == T0 + 120_000
    assert trip.duration_seconds == 120
    assert acc.elapsed_seconds(T0 + 999_000) == 120

    with pytest.raises(TripCompletedError) as exc_info:
        acc.apply(20.0, 10.0, T0 + 130_000)
    assert exc_info.value.trip_id == 1


def test_no_trip_loaded():
    acc = TripAccumulator()
    assert acc.elapsed_seconds(T0) == 0
    with pytest.raises(RuntimeError):
        acc.apply(1.0, 1.0, T0)
