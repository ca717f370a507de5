"""GPS infrastructure - gpsd location source and mock source."""

from .gpsd_client import AsyncGPSClient, GPSState, MockGPSClient, SubscriptionHandle, parse_gps_time

__all__ = [
    "AsyncGPSClient",
    "GPSState",
    "MockGPSClient",
    "SubscriptionHandle",
    "parse_gps_time",
]
