"""
GPS Location Source Unit Tests
==============================

TPV parsing, subscription against a local fake gpsd, and the mock source.
"""

import asyncio
import json

import pytest

from gpsmeter.config import GPSConfig
from gpsmeter.core.errors import LocationUnavailableError
from gpsmeter.infrastructure.gps import AsyncGPSClient, MockGPSClient, parse_gps_time

TPV = {
    "class": "TPV",
    "mode": 3,
    "time": "2024-05-01T12:00:00.500Z",
    "lat": 41.0082,
    "lon": 28.9784,
    "alt": 42.0,
    "speed": 5.5,
    "eph": 3.2,
}


class TestParseTpv:
    def test_full_fix(self):
        sample = AsyncGPSClient().parse_tpv(TPV)
        assert sample.latitude == 41.0082
        assert sample.longitude == 28.9784
        assert sample.instant_speed == 5.5
        assert sample.altitude == 42.0
        assert sample.horizontal_accuracy == 3.2
        assert sample.captured_at_ms == 1714564800500

    def test_no_fix_mode(self):
        assert AsyncGPSClient().parse_tpv({**TPV, "mode": 1}) is None

    def test_missing_position(self):
        data = {k: v for k, v in TPV.items() if k != "lat"}
        assert AsyncGPSClient().parse_tpv(data) is None

    def test_optional_fields_absent(self):
        data = {"class": "TPV", "mode": 2, "lat": 1.0, "lon": 2.0}
        sample = AsyncGPSClient().parse_tpv(data)
        assert sample.instant_speed is None
        assert sample.altitude is None
        assert sample.horizontal_accuracy is None
        assert sample.captured_at_ms > 0

    def test_accuracy_from_epx_epy(self):
        data = {**TPV, "epx": 4.0, "epy": 6.0}
        del data["eph"]
        assert AsyncGPSClient().parse_tpv(data).horizontal_accuracy == 6.0

    def test_garbage_values(self):
        assert AsyncGPSClient().parse_tpv({**TPV, "lat": "north"}) is None


def test_parse_gps_time():
    assert parse_gps_time("1970-01-01T00:00:01.000Z") == 1000
    assert parse_gps_time(None) is None
    assert parse_gps_time("yesterday") is None


@pytest.mark.asyncio
async def test_subscribe_raises_when_gpsd_unreachable(monkeypatch):
    client = AsyncGPSClient()

    async def refuse():
        return False

    monkeypatch.setattr(client, "connect", refuse)

    with pytest.raises(LocationUnavailableError):
        await client.subscribe(lambda sample: None)


@pytest.mark.asyncio
async def test_subscribe_streams_from_gpsd():
    watch_commands = []

    async def fake_gpsd(reader, writer):
        watch_commands.append(await reader.readline())
        writer.write(json.dumps({"class": "VERSION", "release": "3.25"}).encode() + b"\n")
        writer.write(json.dumps({"class": "SKY", "satellites": [{}, {}, {}]}).encode() + b"\n")
        writer.write(json.dumps(TPV).encode() + b"\n")
        await writer.drain()
        await reader.read()  # until the client hangs up
        writer.close()

    server = await asyncio.start_server(fake_gpsd, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]

    client = AsyncGPSClient(GPSConfig(host="127.0.0.1", port=port, timeout=2.0))
    received = []
    handle = await client.subscribe(received.append)

    for _ in range(100):
        if received:
            break
        await asyncio.sleep(0.02)

    await client.unsubscribe(handle)
    server.close()
    await server.wait_closed()

    assert b"WATCH" in watch_commands[0]
    assert len(received) == 1
    assert received[0].instant_speed == 5.5
    assert client.state.satellites == 3
    assert client.state.fix_count == 1
    assert client.is_connected is False


class TestMockGPSClient:
    def test_moves_then_stops(self):
        client = MockGPSClient(interval=1.0, moving_secs=3, stopped_secs=2, speed_mps=2.0)
        samples = [client.next_sample() for _ in range(6)]

        assert [s.instant_speed for s in samples] == [2.0, 2.0, 2.0, 0.0, 0.0, 2.0]
        assert (samples[1].latitude, samples[1].longitude) != (
            samples[0].latitude,
            samples[0].longitude,
        )
        assert (samples[4].latitude, samples[4].longitude) == (
            samples[3].latitude,
            samples[3].longitude,
        )

    def test_rejects_non_positive_interval(self):
        with pytest.raises(ValueError):
            MockGPSClient(interval=0)

    def test_from_config(self):
        cfg = GPSConfig(mock_lat=10.0, mock_lon=20.0, mock_speed_mps=3.0)
        sample = MockGPSClient.from_config(cfg).next_sample()
        assert sample.instant_speed == 3.0
        assert sample.latitude == pytest.approx(10.0, abs=0.001)

    @pytest.mark.asyncio
    async def test_subscribe_delivers_samples(self):
        client = MockGPSClient(interval=0.01)
        received = []

        handle = await client.subscribe(received.append)
        await asyncio.sleep(0.1)
        await client.unsubscribe(handle)
        count = len(received)
        await asyncio.sleep(0.05)

        assert count >= 3
        assert len(received) == count
