"""Exceptions raised by the telemetry package."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any


class TelemetryError(Exception):
    """Base class for telemetry errors."""


class SinkDispatchError(TelemetryError):
    """One or more sinks failed during a collector fan-out.

    Sibling sinks are not cancelled or rolled back, so healthy sinks keep the
    side effects of the operation even though the call as a whole failed.
    """

    def __init__(self, operation: str, failures: Sequence[tuple[Any, BaseException]]) -> None:
        self.operation = operation
        self.failures = list(failures)
        details = ", ".join(f"{type(sink).__name__}: {exc!r}" for sink, exc in self.failures)
        super().__init__(f"{operation} failed for {len(self.failures)} sink(s): {details}")


class SinkTimeoutError(TelemetryError, TimeoutError):
    """A sink operation did not complete within its time limit."""
