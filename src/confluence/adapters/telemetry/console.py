from __future__ import annotations

import sys
from dataclasses import dataclass, field
from typing import Any

from confluence.ports.telemetry import TelemetryEvent, TelemetryLevel, TelemetrySink


_SCOPE_KEYS = ("symbol", "module", "component")
_PAYLOAD_KEYS = (
    "action",
    "direction",
    "confidence",
    "overall_score",
    "valid",
    "modules_ok",
    "modules_failed",
    "failure",
    "reason",
    "trend",
    "duration_ms",
)


def _short(v: Any, limit: int = 40) -> str:
    s = str(v)
    return s if len(s) <= limit else (s[: limit - 1] + "…")


def _summarize(event: TelemetryEvent) -> str:
    scope = dict(event.scope or {})
    payload = dict(event.payload or {})

    parts: list[str] = []
    for k in _SCOPE_KEYS:
        if scope.get(k) not in (None, ""):
            parts.append(f"{k}={_short(scope[k])}")
    for k in _PAYLOAD_KEYS:
        if k in payload:
            v = payload[k]
            if isinstance(v, float):
                v = f"{v:.2f}"
            parts.append(f"{k}={_short(v)}")

    if not parts and payload:
        parts.append(f"payload_keys={list(payload.keys())[:8]}")

    return " ".join(parts)


@dataclass(slots=True)
class ConsoleTelemetrySink(TelemetrySink):
    """One grep-friendly line per event. Disabled unless configured."""

    enabled_flag: bool = False
    channels: set[str] = field(default_factory=lambda: {"ops"})
    min_level: TelemetryLevel = TelemetryLevel.INFO
    stream: Any = sys.stdout

    def enabled(self, channel: str, level: TelemetryLevel, name: str | None = None) -> bool:
        _ = name
        if not self.enabled_flag or channel not in self.channels:
            return False
        return TelemetryLevel.coerce(self.min_level).allows(level)

    def emit(self, event: TelemetryEvent) -> None:
        msg = f"[{event.level.value}][{event.channel}][{event.run_id}] {event.name}"
        summary = _summarize(event)
        if summary:
            msg = f"{msg} {summary}"
        try:
            self.stream.write(msg + "\n")
            self.stream.flush()
        except Exception:
            return
