from .event_factory import make_event, now_utc
from .hub import TelemetryHub
from .run_context import RunTelemetry

__all__ = [
    "make_event",
    "now_utc",
    "TelemetryHub",
    "RunTelemetry",
]
