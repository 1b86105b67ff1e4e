"""Telemetry sinks (event destinations)."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, TextIO

import duckdb

from .errors import SinkTimeoutError
from .models import MetricsEvent

logger = logging.getLogger(__name__)

DEFAULT_MAX_BUFFER_SIZE = 100


class Sink(Protocol):
    """An async destination for telemetry events.

    A sink may buffer on `write`, but an event must not be lost once `write`
    returns successfully. `close` implies a final `flush`.
    """

    async def write(self, event: MetricsEvent) -> None:
        """Accept a single event."""

    async def flush(self) -> None:
        """Persist any buffered events (no-op when nothing is buffered)."""

    async def close(self) -> None:
        """Flush and release any underlying resources."""


class MemorySink:
    """In-memory sink for tests and local inspection."""

    def __init__(self) -> None:
        """Create an empty in-memory sink."""
        self.events: list[MetricsEvent] = []

    async def write(self, event: MetricsEvent) -> None:
        """Append an event, preserving write order."""
        self.events.append(event)

    async def flush(self) -> None:  # noqa: D401 - keep interface consistent
        """No-op."""

    async def close(self) -> None:  # noqa: D401 - keep interface consistent
        """No-op."""

    def snapshot(self) -> Sequence[MetricsEvent]:
        """Return a point-in-time copy of all recorded events."""
        return list(self.events)

    def clear(self) -> None:
        """Discard all recorded events."""
        self.events = []


class ConsoleSink:
    """Writes one JSON line per event to standard output, unbuffered."""

    def __init__(self, stream: TextIO | None = None) -> None:
        """Create a console sink.

        Args:
            stream: Alternate text stream. Defaults to `sys.stdout`, looked up on
                every write so redirection after construction is honored.
        """
        self._stream = stream

    async def write(self, event: MetricsEvent) -> None:
        """Emit the event immediately; stream errors propagate."""
        stream = self._stream if self._stream is not None else sys.stdout
        stream.write(event.to_json() + "\n")

    async def flush(self) -> None:  # noqa: D401 - keep interface consistent
        """No-op."""

    async def close(self) -> None:  # noqa: D401 - keep interface consistent
        """No-op."""


class FileSink:
    """Buffered, append-only NDJSON file sink.

    Events are serialized on `write` and held in memory until the buffer reaches
    `max_buffer_size` (auto-flush) or `flush`/`close` is called. A batch stays
    buffered until its append succeeds, so a failed append loses nothing and is
    retried by the next flush.

    Blocking file-system calls run via `asyncio.to_thread` to keep the event
    loop unblocked.
    """

    def __init__(self, path: str | Path, max_buffer_size: int = DEFAULT_MAX_BUFFER_SIZE) -> None:
        """Create a file sink targeting `path` (created lazily on first flush)."""
        if max_buffer_size < 1:
            raise ValueError(f"max_buffer_size must be >= 1. Got: {max_buffer_size}")
        self.path = Path(path)
        self.max_buffer_size = max_buffer_size
        self._buffer: list[str] = []
        self._flush_lock = asyncio.Lock()
        # Append still running in a worker thread after its flush was cancelled.
        self._in_flight: asyncio.Task[None] | None = None

    @property
    def buffered(self) -> int:
        """Number of events written but not yet persisted."""
        return len(self._buffer)

    async def write(self, event: MetricsEvent) -> None:
        """Buffer an event, flushing once the buffer is full."""
        self._buffer.append(event.to_json())
        if len(self._buffer) >= self.max_buffer_size:
            await self.flush()

    async def flush(self) -> None:
        """Append every buffered event to the target file.

        Raises:
        - `OSError` when the directory cannot be created or the append fails; the
          batch is kept in the buffer.

        Cancelling a flush (e.g. from `TimeoutSink`) does not stop an append that
        already started; the batch is dropped from the buffer once that append
        completes, and the next flush waits for it first.
        """
        async with self._flush_lock:
            if self._in_flight is not None and not self._in_flight.done():
                await asyncio.wait({self._in_flight})
            self._in_flight = None
            if not self._buffer:
                return
            count = len(self._buffer)
            data = "\n".join(self._buffer) + "\n"
            append = asyncio.create_task(asyncio.to_thread(self._append, data), name="file-sink-append")
            append.add_done_callback(lambda task: self._on_appended(task, count))
            self._in_flight = append
            await asyncio.shield(append)

    def _on_appended(self, task: asyncio.Task[None], count: int) -> None:
        if task.cancelled() or task.exception() is not None:
            return
        # Writes that landed while the append was in flight stay buffered.
        del self._buffer[:count]
        logger.debug("Flushed %d event(s) to %s", count, self.path)

    async def close(self) -> None:
        """Flush remaining events."""
        await self.flush()

    def _append(self, data: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(data)


@dataclass(frozen=True)
class DuckDBOptions:
    path: Path
    table: str = "metrics_events"


class DuckDBSink:
    """DuckDB sink for durable, queryable local persistence.

    Writes go straight to the embedded database (no buffer), so `flush` is a
    no-op and `close` only releases the connection.
    """

    def __init__(self, *, path: str | Path, table: str = "metrics_events") -> None:
        """Create (or open) a DuckDB-backed sink at the given path."""
        self._opts = DuckDBOptions(path=Path(path), table=table)
        self._opts.path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = duckdb.connect(str(self._opts.path))
        self._ensure_schema()
        logger.debug("Opened DuckDB sink at %s (table=%s)", self._opts.path, table)

    def _ensure_schema(self) -> None:
        """Create the backing table if it does not exist yet."""
        create_sql = f"""
        create table if not exists {self._opts.table} (
          event_ts timestamptz not null,
          event_type varchar not null,
          source varchar not null,
          correlation_id varchar not null,
          duration_ms double,
          exit_code integer,
          cost_usd double,
          transformation varchar,
          tags_json varchar,
          metadata_json varchar
        )
        """
        self._conn.execute(create_sql)

    async def write(self, event: MetricsEvent) -> None:
        """Insert a single event row."""
        await asyncio.to_thread(self._insert, event)

    def _insert(self, event: MetricsEvent) -> None:
        # Mappings are stored as stable JSON.
        tags_json = None if event.tags is None else json.dumps(event.tags, sort_keys=True)
        metadata_json = (
            None if event.metadata is None else json.dumps(event.metadata, sort_keys=True, default=str)
        )
        insert_sql = f"""
        insert into {self._opts.table}
        (event_ts, event_type, source, correlation_id, duration_ms, exit_code, cost_usd,
         transformation, tags_json, metadata_json)
        values (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        self._conn.execute(
            insert_sql,
            [
                event.timestamp,
                event.event_type,
                event.source,
                event.correlation_id,
                event.duration_ms,
                event.exit_code,
                event.cost_usd,
                event.transformation,
                tags_json,
                metadata_json,
            ],
        )

    async def flush(self) -> None:  # noqa: D401 - keep interface consistent
        """No-op."""

    async def close(self) -> None:
        """Close the underlying DuckDB connection."""
        await asyncio.to_thread(self._conn.close)

    def rows(self) -> list[tuple[Any, ...]]:
        """Return all stored rows ordered by timestamp (timestamp rendered as text)."""
        select_sql = f"""
        select cast(event_ts as varchar), event_type, source, correlation_id, duration_ms, exit_code,
               cost_usd, transformation, tags_json, metadata_json
        from {self._opts.table}
        order by event_ts
        """
        return self._conn.execute(select_sql).fetchall()


class TimeoutSink:
    """Bounds every operation of a wrapped sink with a timeout.

    Core sinks never time out on their own; wrap one in this to turn a hung
    I/O call into a `SinkTimeoutError`.
    """

    def __init__(self, inner: Sink, timeout_s: float) -> None:
        if timeout_s <= 0:
            raise ValueError(f"timeout_s must be > 0. Got: {timeout_s}")
        self.inner = inner
        self.timeout_s = timeout_s

    async def _bounded(self, operation: str, awaitable: Any) -> None:
        try:
            await asyncio.wait_for(awaitable, timeout=self.timeout_s)
        except TimeoutError as exc:
            raise SinkTimeoutError(
                f"{type(self.inner).__name__}.{operation} did not complete within {self.timeout_s}s"
            ) from exc

    async def write(self, event: MetricsEvent) -> None:
        await self._bounded("write", self.inner.write(event))

    async def flush(self) -> None:
        await self._bounded("flush", self.inner.flush())

    async def close(self) -> None:
        await self._bounded("close", self.inner.close())
