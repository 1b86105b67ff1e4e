from __future__ import annotations

import asyncio
import io
import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from telemetry.errors import SinkTimeoutError
from telemetry.models import MetricsEvent
from telemetry.sinks import ConsoleSink, DuckDBSink, FileSink, MemorySink, TimeoutSink


def _event(i: int, **overrides) -> MetricsEvent:  # noqa: ANN003
    fields = {
        "timestamp": datetime(2026, 1, 1, 0, 0, i, tzinfo=timezone.utc),
        "event_type": "command.completed",
        "source": "svc-a",
        "correlation_id": f"corr-{i}",
        "duration_ms": 10.0 * i,
        "exit_code": 0,
        "metadata": {"command": f"cmd {i}"},
    }
    fields.update(overrides)
    return MetricsEvent(**fields)


def _read_events(path: Path) -> list[MetricsEvent]:
    return [MetricsEvent.from_json(line) for line in path.read_text(encoding="utf-8").splitlines()]


@pytest.mark.asyncio
async def test_memory_sink_keeps_write_order_and_clears() -> None:
    sink = MemorySink()
    events = [_event(i) for i in range(5)]
    for event in events:
        await sink.write(event)
    await sink.flush()
    await sink.close()

    assert sink.snapshot() == events
    sink.clear()
    assert sink.events == []


@pytest.mark.asyncio
async def test_console_sink_writes_one_json_line_per_event(capsys: pytest.CaptureFixture[str]) -> None:
    sink = ConsoleSink()
    await sink.write(_event(1))
    await sink.write(_event(2))

    lines = capsys.readouterr().out.splitlines()
    assert [json.loads(line)["correlation_id"] for line in lines] == ["corr-1", "corr-2"]


@pytest.mark.asyncio
async def test_console_sink_propagates_stream_errors() -> None:
    stream = io.StringIO()
    stream.close()
    sink = ConsoleSink(stream=stream)

    with pytest.raises(ValueError):
        await sink.write(_event(1))


@pytest.mark.asyncio
async def test_file_sink_buffers_below_max_and_creates_directories_on_flush(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "dir" / "events.jsonl"
    sink = FileSink(path, max_buffer_size=5)

    for i in range(4):
        await sink.write(_event(i))
    assert not path.exists()
    assert sink.buffered == 4

    await sink.flush()
    assert len(_read_events(path)) == 4
    assert sink.buffered == 0


@pytest.mark.asyncio
async def test_file_sink_auto_flushes_exactly_max_buffer_size_lines(tmp_path: Path) -> None:
    path = tmp_path / "events.jsonl"
    sink = FileSink(path, max_buffer_size=3)

    for i in range(3):
        await sink.write(_event(i))

    content = path.read_text(encoding="utf-8")
    assert content.endswith("\n")
    assert len(content.splitlines()) == 3
    assert sink.buffered == 0

    await sink.write(_event(3))
    assert len(path.read_text(encoding="utf-8").splitlines()) == 3


@pytest.mark.asyncio
async def test_file_sink_round_trip_and_append_only(tmp_path: Path) -> None:
    path = tmp_path / "events.jsonl"
    path.write_text(_event(99).to_json() + "\n", encoding="utf-8")
    sink = FileSink(path)

    events = [
        _event(0),
        _event(1, event_type="api.request", cost_usd=0.25, tags={"region": "eu"}, transformation="SY18"),
        _event(2, event_type="command.failed", exit_code=2, metadata={"command": "make", "error_message": "boom"}),
    ]
    for event in events:
        await sink.write(event)
    await sink.close()

    assert _read_events(path) == [_event(99), *events]


@pytest.mark.asyncio
async def test_file_sink_flush_is_noop_when_empty(tmp_path: Path) -> None:
    path = tmp_path / "events.jsonl"
    sink = FileSink(path)

    await sink.flush()
    await sink.close()

    assert not path.exists()


@pytest.mark.asyncio
async def test_file_sink_keeps_batch_when_append_fails(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "events.jsonl"
    sink = FileSink(path, max_buffer_size=10)
    for i in range(2):
        await sink.write(_event(i))

    real_append = sink._append

    def failing_append(data: str) -> None:
        raise OSError("disk full")

    monkeypatch.setattr(sink, "_append", failing_append)
    with pytest.raises(OSError, match="disk full"):
        await sink.flush()
    assert sink.buffered == 2

    monkeypatch.setattr(sink, "_append", real_append)
    await sink.close()
    assert [e.correlation_id for e in _read_events(path)] == ["corr-0", "corr-1"]


@pytest.mark.asyncio
async def test_file_sink_propagates_directory_errors(tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("", encoding="utf-8")
    sink = FileSink(blocker / "events.jsonl")
    await sink.write(_event(0))

    with pytest.raises(OSError):
        await sink.flush()


def test_file_sink_rejects_non_positive_buffer(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        FileSink(tmp_path / "events.jsonl", max_buffer_size=0)


@pytest.mark.asyncio
async def test_duckdb_sink_persists_rows(tmp_path: Path) -> None:
    sink = DuckDBSink(path=tmp_path / "db" / "events.duckdb")
    await sink.write(_event(1, tags={"env": "dev"}))
    await sink.write(_event(2, event_type="api.request", cost_usd=1.5, metadata=None))
    await sink.flush()

    rows = sink.rows()
    await sink.close()

    assert [(r[1], r[3]) for r in rows] == [("command.completed", "corr-1"), ("api.request", "corr-2")]
    assert json.loads(rows[0][8]) == {"env": "dev"}
    assert json.loads(rows[0][9]) == {"command": "cmd 1"}
    assert rows[1][6] == 1.5
    assert rows[1][9] is None


class _HangingSink(MemorySink):
    async def write(self, event: MetricsEvent) -> None:
        await asyncio.sleep(10)


@pytest.mark.asyncio
async def test_timeout_sink_bounds_hung_operations() -> None:
    sink = TimeoutSink(_HangingSink(), timeout_s=0.01)

    with pytest.raises(SinkTimeoutError):
        await sink.write(_event(1))
    await sink.close()


@pytest.mark.asyncio
async def test_timeout_sink_passes_through_fast_operations() -> None:
    inner = MemorySink()
    sink = TimeoutSink(inner, timeout_s=1.0)

    await sink.write(_event(1))
    await sink.flush()

    assert inner.events == [_event(1)]


def test_timeout_sink_rejects_non_positive_timeout() -> None:
    with pytest.raises(ValueError):
        TimeoutSink(MemorySink(), timeout_s=0)
