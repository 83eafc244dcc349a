from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, Mapping, Optional

from confluence.adapters.metrics.noop import NoopMeter
from confluence.application.services.config import AggregatorConfig
from confluence.application.telemetry.event_factory import now_utc
from confluence.application.telemetry.run_context import RunTelemetry
from confluence.domain.signals.entities import ComponentSignal, DecisionPackage, Direction
from confluence.ports.analyzer import AnalyzerPort
from confluence.ports.market_data import BarClockPort
from confluence.ports.metrics import MeterPort
from confluence.ports.telemetry import TelemetryLevel, TelemetryPort
from confluence.shared.types import Clock

NOT_INITIALIZED_MESSAGE = "Aggregator not initialized"
CONFLICT_PCT = 40.0


@dataclass
class ModuleStats:
    success: int = 0
    failure: int = 0
    last_error: str = ""


@dataclass
class _CachedPackage:
    package: DecisionPackage
    updated_at: datetime
    bar_time: Optional[datetime]


@dataclass
class ConfidenceAggregator:
    """Polls every configured analyzer once per cycle and folds the answers into a DecisionPackage.

    A module that raises, is missing or returns nothing is skipped; the cycle
    goes on with the remaining ones. Packages are cached per symbol until the
    update interval elapses, a new bar forms, or the caller forces an update.
    """

    analyzers: Mapping[str, AnalyzerPort]
    config: AggregatorConfig
    bar_clock: BarClockPort | None = None
    telemetry: TelemetryPort | None = None
    meter: MeterPort | None = None
    clock: Clock = now_utc

    _cache: Dict[str, _CachedPackage] = field(default_factory=dict, init=False, repr=False)
    _stats: Dict[str, ModuleStats] = field(default_factory=dict, init=False, repr=False)
    _cycles: int = field(default=0, init=False, repr=False)
    _avg_ms: float = field(default=0.0, init=False, repr=False)

    def __post_init__(self) -> None:
        meter = self.meter or NoopMeter()
        self._ok_counter = meter.create_counter(
            "confluence.analyzer.success", unit="1", description="Analyzer modules that produced a signal"
        )
        self._fail_counter = meter.create_counter(
            "confluence.analyzer.failure", unit="1", description="Analyzer modules skipped in a cycle"
        )
        self._stats = {m: ModuleStats() for m in self.config.weights}

    @property
    def is_initialized(self) -> bool:
        return bool(self.analyzers) and bool(self.config.weights)

    def evaluate(self, symbol: str, force_update: bool = False, run_id: str = "aggregator") -> DecisionPackage:
        now = self.clock()
        if not self.is_initialized:
            return DecisionPackage(
                symbol=symbol,
                timestamp=now,
                is_valid=False,
                validation_message=NOT_INITIALIZED_MESSAGE,
            )

        t = RunTelemetry(port=self.telemetry, run_id=run_id, base_scope={"component": "aggregator"})
        bar_time = self._last_bar_time(symbol, t)
        trigger = self._update_trigger(symbol, now, bar_time, force_update)
        if trigger is None:
            return replace(self._cache[symbol].package, trigger="cached")

        package = self._aggregate(symbol, now, trigger, t)
        self._cache[symbol] = _CachedPackage(package=package, updated_at=now, bar_time=bar_time)
        return package

    def invalidate(self, symbol: str | None = None) -> None:
        if symbol is None:
            self._cache.clear()
        else:
            self._cache.pop(symbol, None)

    def module_stats(self) -> Dict[str, ModuleStats]:
        return {m: replace(s) for m, s in self._stats.items()}

    @property
    def average_processing_ms(self) -> float:
        return self._avg_ms

    # --- update triggers ---------------------------------------------------

    def _last_bar_time(self, symbol: str, t: RunTelemetry) -> Optional[datetime]:
        if self.bar_clock is None:
            return None
        try:
            return self.bar_clock.last_bar_time(symbol, self.config.timeframe)
        except Exception as e:
            t.exception(e, stage="bar_clock", scope={"symbol": symbol})
            return None

    def _update_trigger(
        self,
        symbol: str,
        now: datetime,
        bar_time: Optional[datetime],
        force_update: bool,
    ) -> Optional[str]:
        if force_update:
            return "forced"
        cached = self._cache.get(symbol)
        if cached is None:
            return "initial"
        if bar_time is not None and bar_time != cached.bar_time:
            return "new_bar"
        if (now - cached.updated_at).total_seconds() >= self.config.min_update_seconds:
            return "interval"
        return None

    # --- aggregation ---------------------------------------------------------

    def _collect(self, symbol: str, module: str, t: RunTelemetry) -> Optional[ComponentSignal]:
        analyzer = self.analyzers.get(module)
        if analyzer is None:
            self._record_failure(module, "not_available")
            return None
        try:
            result = analyzer.analyze(symbol)
            signal = result.to_signal() if result is not None else None
        except Exception as e:
            t.exception(e, stage="analyzer", scope={"symbol": symbol, "module": module})
            self._record_failure(module, f"{type(e).__name__}: {e}")
            return None
        if signal is None:
            self._record_failure(module, "no_data")
            return None

        stats = self._stats.setdefault(module, ModuleStats())
        stats.success += 1
        self._ok_counter.add(1, {"module": module})
        return replace(signal, module=module)

    def _record_failure(self, module: str, reason: str) -> None:
        stats = self._stats.setdefault(module, ModuleStats())
        stats.failure += 1
        stats.last_error = reason
        self._fail_counter.add(1, {"module": module})

    def _aggregate(self, symbol: str, now: datetime, trigger: str, t: RunTelemetry) -> DecisionPackage:
        started = time.perf_counter()

        signals: Dict[str, ComponentSignal] = {}
        used: Dict[str, float] = {}
        acc = {Direction.BULLISH: 0.0, Direction.BEARISH: 0.0, Direction.NEUTRAL: 0.0}
        failed: list[str] = []

        for module, weight in self.config.weights.items():
            signal = self._collect(symbol, module, t)
            if signal is None:
                failed.append(module)
                continue
            signals[module] = signal
            used[module] = float(weight)
            acc[signal.direction] += signal.confidence * (float(weight) / 100.0)

        weight_sum = sum(used.values())
        weights = {m: (100.0 * w / weight_sum) for m, w in used.items()} if weight_sum > 0 else dict(used)

        ok = len(signals)
        if ok < self.config.min_modules:
            package = DecisionPackage(
                symbol=symbol,
                timestamp=now,
                signals=signals,
                weights=weights,
                is_valid=False,
                validation_message=(
                    f"Insufficient modules: {ok}/{self.config.min_modules}"
                    + (f" (failed: {', '.join(failed)})" if failed else "")
                ),
                modules_ok=ok,
                modules_failed=len(failed),
                trigger=trigger,
            )
            self._finish(package, started, t)
            return package

        total = sum(acc.values())
        if total > 0:
            pct = {d: 100.0 * v / total for d, v in acc.items()}
        else:
            pct = {Direction.BULLISH: 0.0, Direction.BEARISH: 0.0, Direction.NEUTRAL: 100.0}

        ranked = sorted(pct.items(), key=lambda kv: kv[1], reverse=True)
        direction = ranked[0][0] if ranked[0][1] > ranked[1][1] else Direction.NEUTRAL
        confidence = pct[direction]

        overall_score = (
            sum(signals[m].score * used[m] for m in signals) / weight_sum if weight_sum > 0 else 0.0
        )

        is_valid = confidence >= self.config.min_confidence
        message = (
            "OK"
            if is_valid
            else f"Confidence {confidence:.1f} below minimum {self.config.min_confidence:.1f}"
        )

        package = DecisionPackage(
            symbol=symbol,
            timestamp=now,
            signals=signals,
            weights=weights,
            overall_score=overall_score,
            confidence=confidence,
            direction=direction,
            bullish_pct=pct[Direction.BULLISH],
            bearish_pct=pct[Direction.BEARISH],
            neutral_pct=pct[Direction.NEUTRAL],
            conflict=(pct[Direction.BULLISH] >= CONFLICT_PCT and pct[Direction.BEARISH] >= CONFLICT_PCT),
            is_valid=is_valid,
            validation_message=message,
            below_floor=not is_valid,
            modules_ok=ok,
            modules_failed=len(failed),
            trigger=trigger,
        )
        self._finish(package, started, t)
        return package

    def _finish(self, package: DecisionPackage, started: float, t: RunTelemetry) -> None:
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        self._cycles += 1
        self._avg_ms += (elapsed_ms - self._avg_ms) / self._cycles

        t.emit(
            name="aggregator.package_built",
            channel="audit",
            level=TelemetryLevel.INFO if package.is_valid else TelemetryLevel.WARN,
            scope={"symbol": package.symbol},
            payload={
                "trigger": package.trigger,
                "valid": package.is_valid,
                "direction": package.direction.value,
                "confidence": float(package.confidence),
                "overall_score": float(package.overall_score),
                "modules_ok": package.modules_ok,
                "modules_failed": package.modules_failed,
                "conflict": package.conflict,
                "reason": package.validation_message,
                "duration_ms": round(elapsed_ms, 3),
            },
        )
