"""Data shapes for downstream consumers of the event stream.

Rollup aggregation and alert evaluation live outside this package. These
models only pin the shapes those consumers read and produce, so they can be
built against the same vocabulary as the emitted `MetricsEvent`s.
"""

from __future__ import annotations

import datetime as dt
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

Severity = Literal["info", "warning", "critical"]
ComparisonOperator = Literal["<", "<=", ">", ">=", "==", "!="]


class _Model(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class HistogramData(_Model):
    count: int = Field(ge=0)
    sum: float
    min: float
    max: float
    p50: float
    p95: float
    p99: float


class HourlyRollup(_Model):
    """Counters, gauges and histograms for one hour of events."""

    # Start of the hour (UTC).
    hour: dt.datetime
    counters: dict[str, float] = Field(default_factory=dict)
    gauges: dict[str, float] = Field(default_factory=dict)
    histograms: dict[str, HistogramData] = Field(default_factory=dict)
    event_count: int = Field(default=0, ge=0)


class DailyRollup(_Model):
    date: dt.date
    totals: dict[str, float] = Field(default_factory=dict)
    peaks: dict[str, float] = Field(default_factory=dict)
    # Ratios in [0, 1] keyed by metric name.
    success_rates: dict[str, float] = Field(default_factory=dict)
    hourly_breakdown: list[HourlyRollup] = Field(default_factory=list)


class AlertCondition(_Model):
    type: Literal["threshold"] = "threshold"
    metric: str
    operator: ComparisonOperator
    value: float
    # Evaluation window, e.g. "5m" or "1h".
    window: str | None = None


class AlertAction(_Model):
    type: Literal["console", "file", "webhook"]
    config: dict[str, Any] | None = None


class FatigueConfig(_Model):
    """Suppression settings applied after an alert fires."""

    cooldown_seconds: float = Field(ge=0)
    dedup_key: str | None = None
    max_per_window: int | None = Field(default=None, ge=1)


class AlertRule(_Model):
    id: str
    name: str
    enabled: bool = True
    condition: AlertCondition
    severity: Severity
    actions: list[AlertAction] = Field(default_factory=list)
    fatigue: FatigueConfig


class TriggeredAlert(_Model):
    timestamp: dt.datetime
    rule_id: str
    rule_name: str
    severity: Severity
    metric_value: float
    threshold_value: float
    dedup_key: str
