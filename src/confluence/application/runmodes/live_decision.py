from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional, Union

from confluence.application.services.aggregator import ConfidenceAggregator
from confluence.application.services.decision_engine import DecisionEngine
from confluence.application.services.config import TrendConfig
from confluence.application.services.trend_tracker import ConfidenceTrendTracker
from confluence.application.telemetry.event_factory import now_utc
from confluence.application.telemetry.run_context import RunTelemetry
from confluence.domain.decision.entities import DecisionAction
from confluence.ports.telemetry import TelemetryLevel, TelemetryPort
from confluence.shared.config import ScheduleCfg


@dataclass(frozen=True, slots=True)
class TickEvent:
    symbol: str
    time: datetime


@dataclass(frozen=True, slots=True)
class TimerEvent:
    time: datetime


@dataclass(frozen=True, slots=True)
class TradeCompletedEvent:
    symbol: str
    profit: float
    execution_id: Optional[int] = None


LoopEvent = Union[TickEvent, TimerEvent, TradeCompletedEvent]


@dataclass
class DecisionLoop:
    """Single consumer of host notifications.

    Ticks evaluate their symbol (the aggregator cache absorbs repeated ticks
    inside one bar), timers evaluate every symbol, completed trades feed
    the engine's accuracy metric and drop the symbol's cached package.
    """

    aggregator: ConfidenceAggregator
    engine: DecisionEngine
    symbols: list[str]
    trend_config: TrendConfig | None = None
    annotate: bool = True
    telemetry: TelemetryPort | None = None

    _trackers: Dict[str, ConfidenceTrendTracker] = field(default_factory=dict, init=False, repr=False)

    def tracker(self, symbol: str) -> Optional[ConfidenceTrendTracker]:
        """Per-symbol trend tracker, created on first use; None when trend tracking is off."""
        if self.trend_config is None:
            return None
        tr = self._trackers.get(symbol)
        if tr is None:
            tr = ConfidenceTrendTracker(self.trend_config, telemetry=self.telemetry)
            self._trackers[symbol] = tr
        return tr

    def handle(self, event: LoopEvent, run_id: str | None = None) -> Dict[str, DecisionAction]:
        if isinstance(event, TickEvent):
            if event.symbol not in self.symbols:
                return {}
            return {event.symbol: self.evaluate(event.symbol, run_id=run_id)}
        if isinstance(event, TimerEvent):
            return {s: self.evaluate(s, run_id=run_id) for s in self.symbols}
        if isinstance(event, TradeCompletedEvent):
            self.engine.record_outcome(event.symbol, event.profit)
            self.aggregator.invalidate(event.symbol)
            return {}
        raise TypeError(f"Unsupported event: {type(event).__name__}")

    def evaluate(self, symbol: str, force_update: bool = False, run_id: str | None = None) -> DecisionAction:
        rid = run_id or "loop"
        package = self.aggregator.evaluate(symbol, force_update=force_update, run_id=rid)
        tracker = self.tracker(symbol)
        if tracker is not None:
            if package.trigger != "cached":
                tracker.record_package(package)
            if self.annotate:
                package = tracker.annotate(package)
        return self.engine.process_package(package, run_id=rid)


def run_decision_loop(
    loop: DecisionLoop,
    schedule: ScheduleCfg,
    telemetry: TelemetryPort | None = None,
) -> None:
    """Drive the loop with timer events, once or forever on an interval."""

    def step_once() -> None:
        run_id = str(uuid.uuid4())
        t = RunTelemetry(port=telemetry, run_id=run_id, base_scope={"component": "runmode"})
        start_t = time.perf_counter()
        t.emit(
            name="run.cycle_started",
            channel="ops",
            payload={"symbols_count": len(loop.symbols)},
        )

        actions = loop.handle(TimerEvent(time=now_utc()), run_id=run_id)

        t.emit(
            name="run.cycle_finished",
            channel="ops",
            payload={
                "actions": {s: a.value for s, a in actions.items()},
                "actionable": sum(1 for a in actions.values() if a.is_actionable),
                "duration_ms": int((time.perf_counter() - start_t) * 1000),
            },
        )

        flush = getattr(telemetry, "flush", None)
        if callable(flush):
            try:
                flush()
            except Exception:
                pass

    if not schedule.run_forever:
        step_once()
        return

    while True:
        try:
            step_once()
            time.sleep(max(1, schedule.interval_seconds))
        except KeyboardInterrupt:
            RunTelemetry(port=telemetry, run_id="bootstrap", base_scope={"component": "runmode"}).emit(
                name="run.stopped",
                channel="ops",
                payload={"reason": "KeyboardInterrupt"},
            )
            break
        except Exception as e:
            RunTelemetry(port=telemetry, run_id="bootstrap", base_scope={"component": "runmode"}).emit(
                name="error.exception",
                channel="ops",
                level=TelemetryLevel.ERROR,
                payload={"exception_type": type(e).__name__, "message": str(e)},
            )
            time.sleep(3)
