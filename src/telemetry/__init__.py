"""Event telemetry emission.

This package provides:
- A canonical, immutable `MetricsEvent` record.
- Pluggable async sinks (memory, console, buffered NDJSON file, DuckDB).
- A `MetricsCollector` that shapes calls into events and fans them out to every
  sink concurrently, with explicit flush/close.

Rollup and alert consumers are out of scope; `telemetry.schemas` only declares
the shapes they work with.

Example:
    collector = create_file_collector("_state/metrics/events.jsonl", "my-service")
    await collector.command_started("git", ["status"])
    await collector.command_completed("git status", 150, 0)
    await collector.close()
"""

from .collector import MetricsCollector, create_collector, create_console_collector, create_file_collector
from .errors import SinkDispatchError, SinkTimeoutError, TelemetryError
from .models import EventType, MetricsEvent, TransformationCode
from .sinks import ConsoleSink, DuckDBSink, FileSink, MemorySink, Sink, TimeoutSink

__all__ = [
    "ConsoleSink",
    "DuckDBSink",
    "EventType",
    "FileSink",
    "MemorySink",
    "MetricsCollector",
    "MetricsEvent",
    "Sink",
    "SinkDispatchError",
    "SinkTimeoutError",
    "TelemetryError",
    "TimeoutSink",
    "TransformationCode",
    "create_collector",
    "create_console_collector",
    "create_file_collector",
]
