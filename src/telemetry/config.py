"""Configuration loading and validation.

This module is responsible for:

- Loading `.env` into the process environment (without overriding existing vars).
- Converting environment variables into strongly-typed Pydantic models.
- Validating fields and providing actionable error messages.
"""

import os
from pathlib import Path
from typing import Literal, TypeVar

import dotenv
from pydantic import BaseModel, Field, field_validator

_T = TypeVar("_T", int, float)

SinkKind = Literal["file", "console", "memory", "duckdb"]


def _get_env_str(name: str, default: str) -> str:
    """Read a string env var with a default (blank counts as unset)."""
    value = os.getenv(name, "").strip()
    return value or default


def _get_env_number(name: str, default: _T, cast: type[_T]) -> _T:
    """Read an int/float env var with a default."""
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be a {cast.__name__}. Got: {raw!r}") from exc


def _get_env_optional_float(name: str) -> float | None:
    """Read an optional float env var (unset or blank -> None)."""
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a float. Got: {raw!r}") from exc


class TelemetryConfig(BaseModel):
    """Configuration for the default collector."""

    source: str = Field(default="telemetry", description="Source identifier stamped on every event")
    sink: SinkKind = Field(default="file", description="Destination kind")
    events_path: Path = Field(default=Path("_state/metrics/events.jsonl"), description="NDJSON event log")
    max_buffer_size: int = Field(default=100, description="Events buffered before an automatic file flush")
    duckdb_path: Path = Field(default=Path("_state/metrics/events.duckdb"), description="DuckDB database file")
    sink_timeout_s: float | None = Field(default=None, description="Per-operation sink timeout (seconds)")
    log_level: str = Field(default="INFO", description="Logging level for the CLI")

    @field_validator("source")
    def validate_source(cls, v: str) -> str:
        """Validate source is set."""
        if not v.strip():
            raise ValueError("TELEMETRY_SOURCE must not be empty.")
        return v

    @field_validator("max_buffer_size")
    def validate_max_buffer_size(cls, v: int) -> int:
        """Validate buffer size is positive."""
        if v < 1:
            raise ValueError(f"TELEMETRY_MAX_BUFFER_SIZE must be >= 1. Got: {v}")
        return v

    @field_validator("sink_timeout_s")
    def validate_sink_timeout(cls, v: float | None) -> float | None:
        """Validate the timeout is positive when set."""
        if v is not None and v <= 0:
            raise ValueError(f"TELEMETRY_SINK_TIMEOUT_S must be > 0. Got: {v}")
        return v

    @field_validator("log_level")
    def validate_log_level(cls, v: str) -> str:
        """Normalize and validate the logging level name."""
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"TELEMETRY_LOG_LEVEL must be a logging level name. Got: {v!r}")
        return level


class Config(BaseModel):
    """Top-level application configuration."""

    telemetry: TelemetryConfig = Field(default_factory=TelemetryConfig, description="Telemetry configuration")


def load_config() -> Config:
    """Load application configuration from environment variables.

    Notes:
    - Calls `dotenv.load_dotenv()` so local `.env` values are visible to the process.
    - Raises `ValueError` with actionable messages for malformed values.
    """
    # Load variables from `.env` into the process environment (without overriding
    # already-set env vars).
    dotenv.load_dotenv()

    telemetry = TelemetryConfig(
        source=_get_env_str("TELEMETRY_SOURCE", "telemetry"),
        sink=_get_env_str("TELEMETRY_SINK", "file").lower(),
        events_path=Path(_get_env_str("TELEMETRY_EVENTS_PATH", "_state/metrics/events.jsonl")),
        max_buffer_size=_get_env_number("TELEMETRY_MAX_BUFFER_SIZE", 100, int),
        duckdb_path=Path(_get_env_str("TELEMETRY_DUCKDB_PATH", "_state/metrics/events.duckdb")),
        sink_timeout_s=_get_env_optional_float("TELEMETRY_SINK_TIMEOUT_S"),
        log_level=_get_env_str("TELEMETRY_LOG_LEVEL", "INFO"),
    )
    return Config(telemetry=telemetry)
