from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from confluence.application.services.config import TrendConfig
from confluence.application.telemetry.run_context import RunTelemetry
from confluence.domain.confidence.history import ConfidenceHistory
from confluence.domain.signals.entities import DecisionPackage
from confluence.ports.telemetry import TelemetryLevel, TelemetryPort

MIN_TREND_POINTS = 3
SLOPE_EPSILON = 0.01
EMA_ALPHA = 0.33
NEUTRAL_STABILITY = 0.5


class TrendDirection(str, Enum):
    UP = "UP"
    DOWN = "DOWN"
    FLAT = "FLAT"
    VOLATILE = "VOLATILE"


class PredictionMethod(int, Enum):
    SMA = 0
    EMA = 1
    LINEAR = 2


_MOMENTUM = {
    TrendDirection.UP: 1.1,
    TrendDirection.DOWN: 0.9,
    TrendDirection.VOLATILE: 0.8,
    TrendDirection.FLAT: 1.0,
}


@dataclass(frozen=True, slots=True)
class TrendReading:
    direction: TrendDirection
    slope: float
    volatility: float
    points: int


@dataclass(frozen=True, slots=True)
class DegradationReading:
    degrading: bool
    ratio: float
    short_avg: float
    long_avg: float


class ConfidenceTrendTracker:
    """Analytics over a rolling history of confidence scores in [0, 1].

    Usable standalone for diagnostics or fed from the decision loop, where it
    annotates packages with a momentum-adjusted confidence and a stability score.
    """

    def __init__(
        self,
        config: TrendConfig | None = None,
        telemetry: TelemetryPort | None = None,
    ) -> None:
        self.config = config or TrendConfig()
        self.history = ConfidenceHistory(self.config.capacity)
        self._t = RunTelemetry(port=telemetry, run_id="trend", base_scope={"component": "trend_tracker"})
        self._was_degrading = False

    def record(
        self,
        score: float,
        source: str = "",
        weight: float = 1.0,
        timestamp: Optional[datetime] = None,
    ) -> None:
        self.history.record(score, source=source, weight=weight, timestamp=timestamp)
        self._watch_degradation(source)

    def record_package(self, package: DecisionPackage) -> None:
        """Record a package's overall confidence (percent) as a [0, 1] sample."""
        if not package.is_valid:
            return
        self.record(package.confidence / 100.0, source=package.symbol, timestamp=package.timestamp)

    def moving_average(self, periods: int, weighted: bool = False) -> float:
        return self.history.moving_average(periods, weighted)

    def trend(self, lookback: int | None = None) -> TrendReading:
        lookback = int(lookback or self.config.lookback)
        fit = self.history.regression(lookback)
        if fit is None or fit.points < MIN_TREND_POINTS:
            return TrendReading(TrendDirection.FLAT, 0.0, 0.0, fit.points if fit else 0)

        if fit.volatility > self.config.volatility_threshold:
            direction = TrendDirection.VOLATILE
        elif fit.slope > SLOPE_EPSILON:
            direction = TrendDirection.UP
        elif fit.slope < -SLOPE_EPSILON:
            direction = TrendDirection.DOWN
        else:
            direction = TrendDirection.FLAT
        return TrendReading(direction, fit.slope, fit.volatility, fit.points)

    def detect_degradation(
        self,
        short_periods: int | None = None,
        long_periods: int | None = None,
    ) -> DegradationReading:
        short_periods = int(short_periods or self.config.short_periods)
        long_periods = int(long_periods or self.config.long_periods)
        if self.history.valid_count() < long_periods:
            return DegradationReading(False, 0.0, 0.0, 0.0)

        short_avg = self.history.moving_average(short_periods)
        long_avg = self.history.moving_average(long_periods)
        if long_avg <= 0:
            return DegradationReading(False, 0.0, short_avg, long_avg)
        ratio = (long_avg - short_avg) / long_avg
        # small tolerance so an exact threshold hit is not lost to float noise
        degrading = ratio >= self.config.degradation_threshold - 1e-9
        return DegradationReading(degrading, ratio, short_avg, long_avg)

    def momentum_adjusted(self) -> float:
        short_avg = self.history.moving_average(self.config.short_periods)
        m = _MOMENTUM[self.trend().direction]
        return max(0.0, min(1.0, short_avg * m))

    def stability_score(self, periods: int | None = None) -> float:
        periods = int(periods or self.config.lookback)
        if len(self.history.valid(periods)) < MIN_TREND_POINTS:
            return NEUTRAL_STABILITY
        sd = self.history.stdev(periods)
        return max(0.0, 1.0 - min(2.0 * sd, 1.0))

    def predict_next(self, method: int | PredictionMethod = PredictionMethod.SMA) -> float:
        method = PredictionMethod(int(method))
        lookback = self.config.lookback
        if method is PredictionMethod.SMA:
            return self.history.moving_average(lookback)

        if method is PredictionMethod.EMA:
            scores = self.history.scores(lookback)
            if scores.empty:
                return 0.0
            seed_n = min(self.config.short_periods, len(scores))
            ema = float(scores.iloc[:seed_n].mean())
            for v in scores.iloc[seed_n:]:
                ema = EMA_ALPHA * float(v) + (1.0 - EMA_ALPHA) * ema
            return ema

        fit = self.history.regression(lookback)
        if fit is None or fit.points < MIN_TREND_POINTS:
            return self.history.moving_average(lookback)
        return max(0.0, min(1.0, fit.value_at(fit.points)))

    def annotate(self, package: DecisionPackage) -> DecisionPackage:
        reading = self.trend()
        notes: Dict[str, float | str] = dict(package.annotations)
        notes.update(
            {
                "trend": reading.direction.value,
                "trend_slope": round(reading.slope, 6),
                "momentum_confidence": round(100.0 * self.momentum_adjusted(), 4),
                "stability": round(self.stability_score(), 4),
                "degrading": "yes" if self.detect_degradation().degrading else "no",
            }
        )
        return replace(package, annotations=notes)

    def snapshot(self) -> Dict[str, float | str | int]:
        reading = self.trend()
        deg = self.detect_degradation()
        return {
            "samples": self.history.valid_count(),
            "short_avg": self.history.moving_average(self.config.short_periods),
            "long_avg": self.history.moving_average(self.config.long_periods),
            "trend": reading.direction.value,
            "slope": reading.slope,
            "volatility": reading.volatility,
            "degrading": int(deg.degrading),
            "stability": self.stability_score(),
            "momentum_adjusted": self.momentum_adjusted(),
        }

    def _watch_degradation(self, source: str) -> None:
        deg = self.detect_degradation()
        if deg.degrading and not self._was_degrading:
            self._t.emit(
                name="confidence.degradation",
                channel="ops",
                level=TelemetryLevel.WARN,
                scope={"symbol": source} if source else None,
                payload={
                    "ratio": round(deg.ratio, 4),
                    "short_avg": round(deg.short_avg, 4),
                    "long_avg": round(deg.long_avg, 4),
                },
            )
        self._was_degrading = deg.degrading
