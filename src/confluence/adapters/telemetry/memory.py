from __future__ import annotations

from dataclasses import dataclass, field

from confluence.ports.telemetry import TelemetryEvent, TelemetryLevel, TelemetrySink


@dataclass(slots=True)
class InMemoryTelemetrySink(TelemetrySink):
    """Keeps events in a list so tests can assert on them."""

    enabled_flag: bool = True
    channels: set[str] = field(default_factory=lambda: {"audit", "ops"})
    min_level: TelemetryLevel = TelemetryLevel.INFO
    events: list[TelemetryEvent] = field(default_factory=list)

    def enabled(self, channel: str, level: TelemetryLevel, name: str | None = None) -> bool:
        _ = name
        if not self.enabled_flag or channel not in self.channels:
            return False
        return TelemetryLevel.coerce(self.min_level).allows(level)

    def emit(self, event: TelemetryEvent) -> None:
        self.events.append(event)

    def named(self, name: str) -> list[TelemetryEvent]:
        return [e for e in self.events if e.name == name]
