"""Command runner that reports a command's lifecycle as telemetry events.

Runs a command as a subprocess and emits:

- `command.started` before launching it.
- `command.completed` when it exits with status 0.
- `command.failed` otherwise (with the tail of its stderr as the error message).

All three share one correlation id. The process exits with the command's exit
code, so it can wrap existing scripts transparently:

    telemetry-run --source ci -- pytest -q
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import shlex
import sys
from collections.abc import Sequence

from .collector import MetricsCollector, create_collector, create_console_collector, create_file_collector
from .config import TelemetryConfig, load_config
from .models import new_correlation_id

logger = logging.getLogger(__name__)

# Exit code reported when the command cannot be launched (shell convention).
COMMAND_NOT_FOUND = 127
ERROR_TAIL_CHARS = 2000


async def run_command(collector: MetricsCollector, argv: Sequence[str]) -> int:
    """Run `argv`, emitting lifecycle events on `collector`; return the exit code."""
    command = shlex.join(argv)
    correlation_id = new_correlation_id()
    logger.debug("Running %s (correlation_id=%s)", command, correlation_id)
    await collector.command_started(argv[0], list(argv[1:]), correlation_id=correlation_id)

    loop = asyncio.get_running_loop()
    started = loop.time()
    try:
        proc = await asyncio.create_subprocess_exec(*argv, stderr=asyncio.subprocess.PIPE)
    except OSError as exc:
        await collector.command_failed(
            command,
            COMMAND_NOT_FOUND,
            str(exc),
            correlation_id=correlation_id,
            duration_ms=(loop.time() - started) * 1000.0,
        )
        return COMMAND_NOT_FOUND

    _, stderr = await proc.communicate()
    duration_ms = (loop.time() - started) * 1000.0
    exit_code = proc.returncode if proc.returncode is not None else 1

    if stderr:
        # Pass through what the command wrote so wrapping stays transparent.
        sys.stderr.write(stderr.decode("utf-8", errors="replace"))

    if exit_code == 0:
        await collector.command_completed(command, duration_ms, exit_code, correlation_id=correlation_id)
    else:
        error_message = stderr.decode("utf-8", errors="replace")[-ERROR_TAIL_CHARS:].strip()
        await collector.command_failed(
            command,
            exit_code,
            error_message or f"exited with status {exit_code}",
            correlation_id=correlation_id,
            duration_ms=duration_ms,
        )
    return exit_code


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="telemetry-run",
        description="Run a command and record its lifecycle as telemetry events.",
    )
    parser.add_argument("--source", help="Source identifier (default: TELEMETRY_SOURCE)")
    target = parser.add_mutually_exclusive_group()
    target.add_argument("--path", help="NDJSON event log to append to")
    target.add_argument("--console", action="store_true", help="Print events to stdout instead")
    parser.add_argument("command", nargs=argparse.REMAINDER, help="Command to run (prefix with --)")
    return parser


async def _run(args: argparse.Namespace, cfg: TelemetryConfig) -> int:
    source = args.source or cfg.source

    if args.console:
        collector = create_console_collector(source)
    elif args.path:
        collector = create_file_collector(args.path, source, max_buffer_size=cfg.max_buffer_size)
    else:
        collector = create_collector(cfg.model_copy(update={"source": source}))

    async with collector:
        return await run_command(collector, args.command)


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entrypoint (`telemetry-run` / `python -m telemetry.cli`)."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    if args.command and args.command[0] == "--":
        args.command = args.command[1:]
    if not args.command:
        parser.error("a command to run is required")

    cfg = load_config().telemetry
    logging.basicConfig(level=cfg.log_level, format="%(levelname)s %(name)s: %(message)s")
    return asyncio.run(_run(args, cfg))


if __name__ == "__main__":
    sys.exit(main())
