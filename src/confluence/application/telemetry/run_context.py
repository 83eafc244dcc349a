from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping

from confluence.application.telemetry.event_factory import make_event
from confluence.ports.telemetry import TelemetryLevel, TelemetryPort


@dataclass(slots=True)
class RunTelemetry:
    """Scoped wrapper producing consistent events for one run_id.

    A missing port turns every call into a no-op.
    """

    port: TelemetryPort | None
    run_id: str
    base_scope: Mapping[str, Any] | None = None

    def emit(
        self,
        *,
        name: str,
        channel: str,
        level: str | TelemetryLevel = TelemetryLevel.INFO,
        scope: Mapping[str, Any] | None = None,
        payload: Mapping[str, Any] | None = None,
        ts_utc: datetime | None = None,
    ) -> None:
        if self.port is None:
            return

        merged_scope = dict(self.base_scope or {})
        if scope:
            merged_scope.update(dict(scope))

        try:
            self.port.emit(
                make_event(
                    run_id=self.run_id,
                    name=name,
                    level=level,
                    channel=channel,
                    scope=merged_scope,
                    payload=payload,
                    ts_utc=ts_utc,
                )
            )
        except Exception:
            return

    def exception(self, exc: BaseException, *, stage: str, scope: Mapping[str, Any] | None = None) -> None:
        self.emit(
            name="error.exception",
            channel="ops",
            level=TelemetryLevel.ERROR,
            scope=scope,
            payload={"exception_type": type(exc).__name__, "message": str(exc), "stage": stage},
        )

