from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from confluence.ports.telemetry import TelemetryEvent, TelemetryPort, TelemetrySink


@dataclass(slots=True)
class TelemetryHub(TelemetryPort):
    """Fan-out hub.

    Receives TelemetryEvent envelopes, merges its base scope into them and
    forwards them to every sink that accepts the channel/level.
    """

    sinks: list[TelemetrySink]
    base_scope: Mapping[str, Any] | None = None

    def emit(self, event: TelemetryEvent) -> None:
        scope = dict(self.base_scope or {})
        scope.update(dict(event.scope or {}))
        merged = TelemetryEvent(
            ts_utc=event.ts_utc,
            run_id=event.run_id,
            name=event.name,
            level=event.level,
            channel=event.channel,
            scope=scope,
            payload=dict(event.payload or {}),
            schema_version=event.schema_version,
        )

        for sink in list(self.sinks):
            try:
                if sink.enabled(merged.channel, merged.level, merged.name):
                    sink.emit(merged)
            except Exception:
                # a broken sink must not break a decision cycle
                continue

    def _each(self, method: str) -> None:
        for sink in list(self.sinks):
            fn = getattr(sink, method, None)
            if callable(fn):
                try:
                    fn()
                except Exception:
                    continue

    def flush(self) -> None:
        self._each("flush")

    def close(self) -> None:
        self._each("close")
