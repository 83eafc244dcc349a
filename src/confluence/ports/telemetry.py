from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Protocol


class TelemetryLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"

    @classmethod
    def coerce(cls, value: str | "TelemetryLevel") -> "TelemetryLevel":
        if isinstance(value, TelemetryLevel):
            return value
        v = (value or "INFO").upper().strip()
        if v == "WARNING":
            v = "WARN"
        try:
            return TelemetryLevel(v)
        except ValueError:
            return TelemetryLevel.INFO

    def rank(self) -> int:
        return _RANKS[self]

    def allows(self, level: str | "TelemetryLevel") -> bool:
        """True when `level` is at or above this minimum level."""
        return TelemetryLevel.coerce(level).rank() >= self.rank()


_RANKS = {
    TelemetryLevel.DEBUG: 10,
    TelemetryLevel.INFO: 20,
    TelemetryLevel.WARN: 30,
    TelemetryLevel.ERROR: 40,
}


@dataclass(frozen=True, slots=True)
class TelemetryEvent:
    """Small structured event envelope.

    `run_id` identifies the evaluation cycle (or "engine" for events outside one).
    `scope` and `payload` must be JSON-serialisable.
    """

    ts_utc: datetime
    run_id: str
    name: str
    level: TelemetryLevel
    channel: str
    scope: Mapping[str, Any] | None
    payload: Mapping[str, Any]
    schema_version: int = 1


class TelemetrySink(Protocol):
    """Adapter-side sink. `enabled` filters by channel and level before `emit`."""

    def enabled(self, channel: str, level: TelemetryLevel, name: str | None = None) -> bool: ...

    def emit(self, event: TelemetryEvent) -> None: ...


class TelemetryPort(Protocol):
    """Application-facing telemetry API, implemented by the fan-out hub."""

    def emit(self, event: TelemetryEvent) -> None: ...
