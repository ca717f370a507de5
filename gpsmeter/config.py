from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .domain.models import SpeedUnit


class TrackingConfig(BaseModel):
    """Tracker tuning: noise floor, watchdogs and auto-pause."""

    unit: SpeedUnit = Field(SpeedUnit.KMH)
    auto_pause_enabled: bool = Field(False)
    auto_pause_threshold: float = Field(2.0, gt=0, le=50)  # in `unit`
    auto_pause_duration_secs: float = Field(5.0, gt=0, le=600)
    noise_floor_kmh: float = Field(1.0, ge=0, le=20)
    speed_decay_secs: float = Field(3.0, gt=0)
    gps_loss_secs: float = Field(10.0, gt=0)
    tick_interval_secs: float = Field(1.0, gt=0, le=60)
    gps_loss_check_interval_secs: float = Field(5.0, gt=0, le=300)


class GPSConfig(BaseModel):
    """GPS daemon configuration."""

    host: str = Field("localhost")
    port: int = Field(2947, ge=1, le=65535)
    timeout: float = Field(10.0, ge=1.0)
    reconnect_delay: float = Field(5.0, ge=0.1)
    max_reconnect_attempts: int = Field(0, ge=0)  # 0 = infinite
    mock_mode: bool = Field(False)
    mock_lat: float = Field(41.0082, ge=-90, le=90)
    mock_lon: float = Field(28.9784, ge=-180, le=180)
    mock_speed_mps: float = Field(1.4, ge=0)

    @field_validator("host")
    @classmethod
    def _validate_host(cls, value: str) -> str:
        if not value or any(c.isspace() for c in value):
            raise ValueError("host must be a valid hostname or IP")
        return value


class DatabaseConfig(BaseModel):
    path: Path = Field(Path("data/gps_speed_meter.db"))

    @field_validator("path")
    @classmethod
    def _expand_path(cls, value: Path) -> Path:
        return value.expanduser()


class LoggingConfig(BaseModel):
    level: str = Field("INFO")
    file: Path | None = Field(None)  # JSON lines, disabled when unset

    @field_validator("level")
    @classmethod
    def _validate_level(cls, value: str) -> str:
        level = value.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"invalid log level: {value}")
        return level


class GpsMeterConfig(BaseModel):
    tracking: TrackingConfig = Field(default_factory=TrackingConfig)
    gps: GPSConfig = Field(default_factory=GPSConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(path: Path) -> GpsMeterConfig:
    with Path(path).expanduser().open("r", encoding="utf-8") as fp:
        raw = yaml.safe_load(fp) or {}
    try:
        return GpsMeterConfig.model_validate(raw)
    except ValidationError as exc:  # pragma: no cover - formatting
        raise ValueError(str(exc)) from exc


def load_config_or_default(path: Path | None) -> GpsMeterConfig:
    """Load the resolved config file, falling back to defaults when absent."""
    resolved = resolve_config_path(path)
    if not resolved.exists():
        return GpsMeterConfig()
    return load_config(resolved)


def resolve_config_path(cli_path: Path | None) -> Path:
    """Resolve config path by priority: CLI, env, /etc/gpsmeter, repo configs."""
    candidates: list[Path] = []
    if cli_path:
        p = Path(cli_path).expanduser()
        if p.exists():
            return p.resolve()
        candidates.append(p)
    env = os.environ.get("GPSMETER_CONFIG")
    if env:
        p = Path(env).expanduser()
        if p.exists():
            return p.resolve()
        candidates.append(p)
    for p in [Path("/etc/gpsmeter/gpsmeter.yml"), Path("configs/gpsmeter.yml")]:
        if p.exists():
            return p.resolve()
        candidates.append(p)
    # Fall back to the first candidate so callers report a consistent path
    return candidates[0] if candidates else Path("configs/gpsmeter.yml").resolve()
