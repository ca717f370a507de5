"""Async gpsd location source with auto-reconnect and graceful degradation."""

from __future__ import annotations

import asyncio
import json
import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator, Callable, Optional

from ...config import GPSConfig
from ...core.errors import LocationUnavailableError
from ...domain.models import RawSample

logger = logging.getLogger(__name__)

SampleCallback = Callable[[RawSample], None]

METERS_PER_DEGREE_LAT = 111_320.0


@dataclass
class GPSState:
    """Internal GPS state tracking."""

    connected: bool = False
    fix_count: int = 0
    error_count: int = 0
    last_fix_ms: Optional[int] = None
    satellites: int = 0


@dataclass
class SubscriptionHandle:
    """Returned by subscribe(); pass back to unsubscribe()."""

    task: asyncio.Task
    callback: SampleCallback


def _now_ms() -> int:
    return int(time.time() * 1000)


def parse_gps_time(value: str | None) -> Optional[int]:
    """gpsd ISO-8601 UTC time to epoch milliseconds."""
    if not value:
        return None
    try:
        return int(datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp() * 1000)
    except ValueError:
        logger.debug("Unparseable gpsd time: %s", value)
        return None


class AsyncGPSClient:
    """
    Async gpsd client with auto-reconnect.

    Features:
    - Non-blocking async connection
    - Automatic reconnection on disconnect
    - Callback subscription used by the tracker
    - Graceful degradation when GPS unavailable

    Usage:
        client = AsyncGPSClient(cfg.gps)

        async for sample in client.stream_samples():
            print(f"Lat: {sample.latitude}, Lon: {sample.longitude}")
    """

    def __init__(self, config: GPSConfig | None = None) -> None:
        self.config = config or GPSConfig()
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._running = False
        self._last_sample: Optional[RawSample] = None
        self._callbacks: list[SampleCallback] = []
        self._state = GPSState()
        self._reconnect_attempts = 0

    @property
    def last_sample(self) -> Optional[RawSample]:
        return self._last_sample

    @property
    def is_connected(self) -> bool:
        """Check if connected to gpsd."""
        return self._state.connected

    @property
    def state(self) -> GPSState:
        """Get internal state for diagnostics."""
        return self._state

    # =========================================================================
    # Location source interface
    # =========================================================================

    async def subscribe(self, on_sample: SampleCallback) -> SubscriptionHandle:
        """
        Connect and start delivering samples to ``on_sample``.

        Raises:
            LocationUnavailableError: gpsd could not be reached
        """
        if not self.is_connected and not await self.connect():
            raise LocationUnavailableError(
                f"gpsd not reachable at {self.config.host}:{self.config.port}"
            )

        self._callbacks.append(on_sample)
        task = asyncio.create_task(self._pump(), name="gpsmeter-gps-stream")
        return SubscriptionHandle(task=task, callback=on_sample)

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        if handle.callback in self._callbacks:
            self._callbacks.remove(handle.callback)
        handle.task.cancel()
        try:
            await handle.task
        except asyncio.CancelledError:
            pass
        await self.stop()

    async def _pump(self) -> None:
        async for _ in self.stream_samples():
            pass

    def _notify(self, sample: RawSample) -> None:
        for cb in list(self._callbacks):
            try:
                cb(sample)
            except Exception as e:
                logger.error("GPS callback error: %s", e)

    # =========================================================================
    # Connection
    # =========================================================================

    async def connect(self) -> bool:
        """
        Connect to gpsd daemon.

        Returns:
            True if connected successfully, False otherwise.
        """
        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(self.config.host, self.config.port),
                timeout=self.config.timeout,
            )

            # Enable JSON streaming mode
            self._writer.write(b'?WATCH={"enable":true,"json":true}\n')
            await self._writer.drain()

            self._state.connected = True
            self._reconnect_attempts = 0
            logger.info("Connected to gpsd at %s:%d", self.config.host, self.config.port)
            return True

        except asyncio.TimeoutError:
            logger.warning("GPS connection timeout to %s:%d", self.config.host, self.config.port)
        except ConnectionRefusedError:
            logger.warning("GPS connection refused - is gpsd running?")
        except OSError as e:
            logger.warning("GPS connection failed: %s", e)

        self._state.error_count += 1
        return False

    async def disconnect(self) -> None:
        """Disconnect from gpsd gracefully."""
        if self._writer:
            try:
                self._writer.write(b'?WATCH={"enable":false}\n')
                await self._writer.drain()
                self._writer.close()
                await self._writer.wait_closed()
            except (ConnectionError, OSError) as e:
                logger.debug("GPS disconnect error: %s", e)

        self._reader = None
        self._writer = None
        self._state.connected = False

    async def stop(self) -> None:
        """Stop streaming and disconnect."""
        self._running = False
        await self.disconnect()

    # =========================================================================
    # Streaming
    # =========================================================================

    async def stream_samples(self) -> AsyncIterator[RawSample]:
        """
        Async generator that yields samples as gpsd reports fixes.

        Handles reconnection automatically. Never raises - logs errors and
        retries until stop() or the reconnect limit.
        """
        self._running = True

        while self._running:
            if not self._reader:
                if not await self.connect():
                    self._reconnect_attempts += 1

                    if (
                        self.config.max_reconnect_attempts > 0
                        and self._reconnect_attempts >= self.config.max_reconnect_attempts
                    ):
                        logger.error("GPS max reconnect attempts reached, stopping")
                        break

                    await asyncio.sleep(self.config.reconnect_delay)
                    continue

            try:
                line = await asyncio.wait_for(
                    self._reader.readline(),  # type: ignore[union-attr]
                    timeout=self.config.timeout,
                )

                if not line:
                    raise ConnectionError("GPS connection closed by server")

                data = json.loads(line.decode("utf-8"))

                # TPV (Time-Position-Velocity) carries the fix
                if data.get("class") == "TPV":
                    sample = self.parse_tpv(data)
                    if sample:
                        self._last_sample = sample
                        self._state.fix_count += 1
                        self._state.last_fix_ms = _now_ms()
                        self._notify(sample)
                        yield sample

                elif data.get("class") == "SKY":
                    self._state.satellites = len(data.get("satellites", []))

            except asyncio.TimeoutError:
                logger.debug("GPS read timeout, connection still alive")

            except json.JSONDecodeError as e:
                logger.warning("GPS JSON parse error: %s", e)

            except (ConnectionError, OSError) as e:
                logger.warning("GPS stream error: %s, reconnecting...", e)
                self._state.error_count += 1
                await self.disconnect()
                await asyncio.sleep(self.config.reconnect_delay)

    def parse_tpv(self, data: dict) -> Optional[RawSample]:
        """
        Parse TPV (Time-Position-Velocity) message from gpsd.

        Args:
            data: JSON dict from gpsd TPV message

        Returns:
            RawSample for a 2D/3D fix with lat/lon, None otherwise
        """
        try:
            if "lat" not in data or "lon" not in data:
                return None

            # Mode: 0=unknown, 1=no fix, 2=2D, 3=3D
            if data.get("mode", 0) < 2:
                return None

            accuracy = data.get("eph")
            if accuracy is None and "epx" in data and "epy" in data:
                accuracy = max(float(data["epx"]), float(data["epy"]))

            speed = data.get("speed")
            altitude = data.get("altMSL", data.get("alt"))

            return RawSample(
                latitude=float(data["lat"]),
                longitude=float(data["lon"]),
                instant_speed=float(speed) if speed is not None else None,
                altitude=float(altitude) if altitude is not None else None,
                horizontal_accuracy=float(accuracy) if accuracy is not None else None,
                captured_at_ms=parse_gps_time(data.get("time")) or _now_ms(),
            )

        except (KeyError, ValueError, TypeError) as e:
            logger.error("TPV parse error: %s - data: %s", e, data)
            return None


class MockGPSClient(AsyncGPSClient):
    """
    Mock location source for development and tests.

    Moves along a slowly turning path at ``speed_mps`` and stops for a
    while every ``moving_secs``, so auto-pause and noise handling can be
    seen without a receiver.
    """

    def __init__(
        self,
        start_lat: float = 41.0082,  # Istanbul
        start_lon: float = 28.9784,
        speed_mps: float = 1.4,
        interval: float = 1.0,
        moving_secs: int = 30,
        stopped_secs: int = 10,
    ) -> None:
        super().__init__()
        self._lat = start_lat
        self._lon = start_lon
        self._speed = speed_mps
        self._interval = interval
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._moving_steps = max(1, round(moving_secs / interval))
        self._stopped_steps = max(0, round(stopped_secs / interval))
        self._step = 0

    @classmethod
    def from_config(cls, config: GPSConfig) -> MockGPSClient:
        return cls(
            start_lat=config.mock_lat,
            start_lon=config.mock_lon,
            speed_mps=config.mock_speed_mps,
        )

    async def connect(self) -> bool:
        """Mock always connects."""
        self._state.connected = True
        logger.info("Mock GPS connected (simulated)")
        return True

    async def disconnect(self) -> None:
        self._state.connected = False

    def next_sample(self) -> RawSample:
        """Advance the simulated position by one step."""
        cycle = self._moving_steps + self._stopped_steps
        moving = (self._step % cycle) < self._moving_steps
        speed = self._speed if moving else 0.0

        if moving:
            heading = math.radians(self._step * 3 % 360)
            meters = speed * self._interval
            self._lat += meters * math.cos(heading) / METERS_PER_DEGREE_LAT
            self._lon += meters * math.sin(heading) / (
                METERS_PER_DEGREE_LAT * math.cos(math.radians(self._lat))
            )

        self._step += 1
        return RawSample(
            latitude=self._lat,
            longitude=self._lon,
            instant_speed=speed,
            altitude=50.0,
            horizontal_accuracy=5.0,
            captured_at_ms=_now_ms(),
        )

    async def stream_samples(self) -> AsyncIterator[RawSample]:
        self._running = True

        while self._running:
            sample = self.next_sample()
            self._last_sample = sample
            self._state.fix_count += 1
            self._notify(sample)
            yield sample
            await asyncio.sleep(self._interval)
