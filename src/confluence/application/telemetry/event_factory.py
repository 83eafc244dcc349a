from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

from confluence.ports.telemetry import TelemetryEvent, TelemetryLevel


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _jsonable(value: Any) -> Any:
    """Reduce enums, datetimes and containers to JSON-friendly values."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(v) for v in value]
    return value


def make_event(
    *,
    run_id: str,
    name: str,
    level: str | TelemetryLevel,
    channel: str,
    scope: Mapping[str, Any] | None = None,
    payload: Mapping[str, Any] | None = None,
    ts_utc: datetime | None = None,
    schema_version: int = 1,
) -> TelemetryEvent:
    return TelemetryEvent(
        ts_utc=ts_utc or now_utc(),
        run_id=str(run_id),
        name=str(name),
        level=TelemetryLevel.coerce(level),
        channel=str(channel),
        scope=_jsonable(dict(scope or {})),
        payload=_jsonable(dict(payload or {})),
        schema_version=int(schema_version),
    )
