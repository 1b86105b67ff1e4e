"""Telemetry event model.

Events are designed to be:
- Immutable once built (the collector hands the same instance to every sink).
- Easy to link across an end-to-end flow via correlation identifiers.
- Serializable to one compact JSON line (the file sink's on-disk format).
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Annotated, Any, Literal, TypeAlias

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator

EventType = Literal[
    "command.started",
    "command.completed",
    "command.failed",
    "budget.threshold_crossed",
    "api.request",
    "router.decision",
    "alert.triggered",
    "integration.dispatch",
    "applicationPoint.resolved",
    "selector.invoked",
    "binding.applied",
    "routing.failed",
]

# Classification codes: a family prefix followed by a number (e.g. "SY18", "P1").
TRANSFORMATION_CODE_PATTERN = r"^(P|IN|CO|DE|RE|SY)\d+$"

TransformationCode: TypeAlias = Annotated[str, StringConstraints(pattern=TRANSFORMATION_CODE_PATTERN)]


def utc_now() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(tz=timezone.utc)


def new_correlation_id() -> str:
    """Return a fresh random correlation id."""
    return str(uuid.uuid4())


class MetricsEvent(BaseModel):
    """One telemetry event, as written to every sink."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    # Always set by the collector.
    timestamp: datetime
    event_type: EventType
    source: str = Field(min_length=1)
    correlation_id: str = Field(min_length=1)

    # Optional, populated per event type by convention.
    duration_ms: float | None = None
    exit_code: int | None = None
    cost_usd: float | None = None
    transformation: TransformationCode | None = None
    tags: dict[str, str] | None = None
    metadata: dict[str, Any] | None = None

    @field_validator("timestamp")
    def normalize_timestamp(cls, v: datetime) -> datetime:
        """Require a timezone and store UTC so serialized timestamps sort as text."""
        if v.tzinfo is None or v.utcoffset() is None:
            raise ValueError("timestamp must be timezone-aware")
        return v.astimezone(timezone.utc)

    def to_json(self) -> str:
        """Serialize as a single compact JSON line (unset optional fields omitted)."""
        return self.model_dump_json(exclude_none=True)

    @classmethod
    def from_json(cls, line: str) -> MetricsEvent:
        """Parse one line produced by `to_json`."""
        return cls.model_validate_json(line)
