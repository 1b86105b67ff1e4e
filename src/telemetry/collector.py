"""Metrics collector: shapes calls into events and fans them out to sinks.

The collector owns a fixed `source` and a fixed, ordered tuple of sinks. Every
fan-out (write, flush, close) launches the operation on all sinks at once and
waits for all of them; a failing sink never cancels its siblings, and the
failure is reported afterwards as a `SinkDispatchError`.

Overlapping `emit` calls that are not awaited one after another have no
per-sink ordering guarantee. Callers that need strict ordering serialize
their own emits.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .errors import SinkDispatchError
from .models import EventType, MetricsEvent, TransformationCode, new_correlation_id, utc_now
from .sinks import DEFAULT_MAX_BUFFER_SIZE, ConsoleSink, DuckDBSink, FileSink, MemorySink, Sink, TimeoutSink

if TYPE_CHECKING:
    from .config import TelemetryConfig

logger = logging.getLogger(__name__)

# Always set by the collector; callers cannot override them.
_RESERVED_FIELDS = frozenset({"timestamp", "event_type", "source"})


class MetricsCollector:
    """Builds `MetricsEvent`s for a single source and dispatches them to sinks."""

    def __init__(
        self,
        source: str,
        sinks: Iterable[Sink],
        *,
        id_factory: Callable[[], str] = new_correlation_id,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Create a collector.

        Args:
            source: Identifier of the emitting process/component.
            sinks: Destinations every event is written to.
            id_factory: Generates correlation ids when the caller supplies none.
            clock: Returns the (timezone-aware) emission instant.
        """
        if not source:
            raise ValueError("source must be a non-empty string")
        self._source = source
        self._sinks: tuple[Sink, ...] = tuple(sinks)
        self._id_factory = id_factory
        self._clock = clock

    @property
    def source(self) -> str:
        return self._source

    @property
    def sinks(self) -> tuple[Sink, ...]:
        return self._sinks

    async def __aenter__(self) -> MetricsCollector:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def emit(self, event_type: EventType, /, **fields: Any) -> MetricsEvent:
        """Build an event and write it to every sink concurrently.

        Optional fields left as `None` are treated as absent.

        Raises:
        - `SinkDispatchError` if any sink failed to accept the event (other sinks
          still received it).
        - `TypeError` for keyword names that are not event fields.
        - `pydantic.ValidationError` for malformed field values.
        """
        unknown = set(fields).difference(MetricsEvent.model_fields)
        if unknown:
            raise TypeError(f"Unknown event field(s) for {event_type}: {sorted(unknown)}")
        reserved = _RESERVED_FIELDS.intersection(fields)
        if reserved:
            logger.warning("Ignoring collector-controlled field(s) %s for %s", sorted(reserved), event_type)
        data = {k: v for k, v in fields.items() if k not in _RESERVED_FIELDS and v is not None}
        data["correlation_id"] = data.get("correlation_id") or self._id_factory()

        event = MetricsEvent(
            timestamp=self._clock(),
            event_type=event_type,
            source=self._source,
            **data,
        )
        await self._fan_out("write", lambda sink: sink.write(event))
        return event

    async def command_started(
        self,
        command: str,
        args: Sequence[str],
        *,
        correlation_id: str | None = None,
        transformation: TransformationCode | None = None,
    ) -> MetricsEvent:
        return await self.emit(
            "command.started",
            correlation_id=correlation_id,
            transformation=transformation,
            metadata={"command": command, "args": list(args)},
        )

    async def command_completed(
        self,
        command: str,
        duration_ms: float,
        exit_code: int,
        *,
        correlation_id: str | None = None,
        transformation: TransformationCode | None = None,
    ) -> MetricsEvent:
        return await self.emit(
            "command.completed",
            correlation_id=correlation_id,
            transformation=transformation,
            duration_ms=duration_ms,
            exit_code=exit_code,
            metadata={"command": command},
        )

    async def command_failed(
        self,
        command: str,
        exit_code: int,
        error_message: str,
        *,
        correlation_id: str | None = None,
        duration_ms: float | None = None,
    ) -> MetricsEvent:
        return await self.emit(
            "command.failed",
            correlation_id=correlation_id,
            duration_ms=duration_ms,
            exit_code=exit_code,
            metadata={"command": command, "error_message": error_message},
        )

    async def api_request(
        self,
        endpoint: str,
        status_code: int,
        duration_ms: float,
        cost_usd: float | None = None,
    ) -> MetricsEvent:
        return await self.emit(
            "api.request",
            duration_ms=duration_ms,
            cost_usd=cost_usd,
            metadata={"endpoint": endpoint, "status_code": status_code},
        )

    async def budget_threshold_crossed(
        self,
        threshold_name: str,
        previous_cost: float,
        current_cost: float,
    ) -> MetricsEvent:
        return await self.emit(
            "budget.threshold_crossed",
            cost_usd=current_cost,
            metadata={"threshold_name": threshold_name, "previous_cost": previous_cost},
        )

    async def flush(self) -> None:
        """Flush every sink concurrently."""
        await self._fan_out("flush", lambda sink: sink.flush())

    async def close(self) -> None:
        """Close every sink concurrently (each sink flushes first)."""
        await self._fan_out("close", lambda sink: sink.close())

    async def _fan_out(self, operation: str, call: Callable[[Sink], Awaitable[None]]) -> None:
        """Run `call` on all sinks at once, wait for all, then report failures."""
        results = await asyncio.gather(*(call(sink) for sink in self._sinks), return_exceptions=True)
        failures: list[tuple[Sink, BaseException]] = []
        for sink, result in zip(self._sinks, results):
            if isinstance(result, BaseException):
                logger.warning("Sink %s failed during %s: %r", type(sink).__name__, operation, result)
                failures.append((sink, result))
        if failures:
            raise SinkDispatchError(operation, failures) from failures[0][1]


def create_file_collector(
    path: str | Path,
    source: str,
    *,
    max_buffer_size: int = DEFAULT_MAX_BUFFER_SIZE,
) -> MetricsCollector:
    """Collector writing NDJSON events to `path`."""
    return MetricsCollector(source, [FileSink(path, max_buffer_size=max_buffer_size)])


def create_console_collector(source: str) -> MetricsCollector:
    """Collector printing one JSON line per event to stdout."""
    return MetricsCollector(source, [ConsoleSink()])


def create_collector(config: TelemetryConfig) -> MetricsCollector:
    """Build a collector from `TelemetryConfig` (see `telemetry.config.load_config`)."""
    sink: Sink
    if config.sink == "file":
        sink = FileSink(config.events_path, max_buffer_size=config.max_buffer_size)
    elif config.sink == "console":
        sink = ConsoleSink()
    elif config.sink == "duckdb":
        sink = DuckDBSink(path=config.duckdb_path)
    else:
        sink = MemorySink()

    if config.sink_timeout_s is not None:
        sink = TimeoutSink(sink, config.sink_timeout_s)
    return MetricsCollector(config.source, [sink])
