from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Mapping, Protocol, Union


Detail = Union[float, str]


class Direction(str, Enum):
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    NEUTRAL = "NEUTRAL"

    @classmethod
    def coerce(cls, value: str | "Direction" | None) -> "Direction":
        """Map the vocabulary used by the analyzer modules onto a direction.

        Anything not recognised is NEUTRAL.
        """
        if isinstance(value, Direction):
            return value
        v = (value or "").upper().strip()
        if v in _BULLISH_WORDS:
            return Direction.BULLISH
        if v in _BEARISH_WORDS:
            return Direction.BEARISH
        return Direction.NEUTRAL

    def opposite(self) -> "Direction":
        if self is Direction.BULLISH:
            return Direction.BEARISH
        if self is Direction.BEARISH:
            return Direction.BULLISH
        return Direction.NEUTRAL


_BULLISH_WORDS = frozenset(
    {
        "BULLISH", "BULL", "BUY", "LONG", "UP",
        "OVERSOLD", "DEMAND", "ACCUMULATION", "BULLISH_CROSS",
    }
)
_BEARISH_WORDS = frozenset(
    {
        "BEARISH", "BEAR", "SELL", "SHORT", "DOWN",
        "OVERBOUGHT", "SUPPLY", "DISTRIBUTION", "BEARISH_CROSS",
    }
)


def clamp_pct(value: float | None) -> float:
    v = float(value or 0.0)
    return max(0.0, min(100.0, v))


@dataclass(frozen=True, slots=True)
class ComponentSignal:
    """Normalised output of one analyzer module for one evaluation.

    score and confidence are percentages in [0, 100].
    """

    module: str
    direction: Direction
    score: float
    confidence: float
    details: Mapping[str, Detail] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        module: str,
        direction: str | Direction | None,
        score: float | None,
        confidence: float | None,
        details: Mapping[str, Detail] | None = None,
    ) -> "ComponentSignal":
        return cls(
            module=str(module),
            direction=Direction.coerce(direction),
            score=clamp_pct(score),
            confidence=clamp_pct(confidence),
            details=dict(details or {}),
        )


class ModuleResult(Protocol):
    """Anything an analyzer returns: a module-specific record that can normalise itself."""

    def to_signal(self) -> ComponentSignal: ...


# --- module-specific records ------------------------------------------------


@dataclass
class MTFScore:
    """Multi-timeframe trend alignment."""

    bias: str
    alignment: float
    confidence: float
    timeframe_bias: Dict[str, str] = field(default_factory=dict)

    def to_signal(self) -> ComponentSignal:
        details: Dict[str, Detail] = {f"tf_{k}": str(v) for k, v in self.timeframe_bias.items()}
        details["alignment"] = float(self.alignment)
        return ComponentSignal.build("mtf", self.bias, self.alignment, self.confidence, details)


@dataclass
class POISignal:
    """Point-of-interest (supply/demand zone) proximity."""

    zone_type: str  # "DEMAND" | "SUPPLY" | "NONE"
    distance_pips: float
    strength: float
    confidence: float

    def to_signal(self) -> ComponentSignal:
        return ComponentSignal.build(
            "poi",
            self.zone_type,
            self.strength,
            self.confidence,
            {"zone_type": self.zone_type, "distance_pips": float(self.distance_pips)},
        )


@dataclass
class VolumeSignal:
    bias: str  # "ACCUMULATION" | "DISTRIBUTION" | "NEUTRAL"
    volume_ratio: float
    score: float
    confidence: float

    def to_signal(self) -> ComponentSignal:
        return ComponentSignal.build(
            "volume",
            self.bias,
            self.score,
            self.confidence,
            {"volume_ratio": float(self.volume_ratio)},
        )


@dataclass
class RSISignal:
    value: float
    state: str  # "OVERSOLD" | "OVERBOUGHT" | "NEUTRAL"
    score: float
    confidence: float

    def to_signal(self) -> ComponentSignal:
        return ComponentSignal.build(
            "rsi",
            self.state,
            self.score,
            self.confidence,
            {"rsi": float(self.value), "state": self.state},
        )


@dataclass
class MACDSignal:
    macd: float
    signal: float
    histogram: float
    bias: str
    score: float
    confidence: float

    def to_signal(self) -> ComponentSignal:
        return ComponentSignal.build(
            "macd",
            self.bias,
            self.score,
            self.confidence,
            {
                "macd": float(self.macd),
                "signal": float(self.signal),
                "histogram": float(self.histogram),
            },
        )


@dataclass
class PatternSignal:
    """Candlestick pattern recognition."""

    pattern: str
    bias: str
    strength: float
    confidence: float

    def to_signal(self) -> ComponentSignal:
        return ComponentSignal.build(
            "pattern",
            self.bias,
            self.strength,
            self.confidence,
            {"pattern": self.pattern},
        )


# --- aggregated package ------------------------------------------------------


@dataclass(frozen=True, slots=True)
class DecisionPackage:
    """Aggregated confidence package handed to the decision engine.

    weights are percentages over the collected modules (sum 100), and
    bullish_pct + bearish_pct + neutral_pct == 100 for any package that got
    past the module-count check.
    """

    symbol: str
    timestamp: datetime
    signals: Mapping[str, ComponentSignal] = field(default_factory=dict)
    weights: Mapping[str, float] = field(default_factory=dict)
    overall_score: float = 0.0
    confidence: float = 0.0
    direction: Direction = Direction.NEUTRAL
    bullish_pct: float = 0.0
    bearish_pct: float = 0.0
    neutral_pct: float = 100.0
    conflict: bool = False
    is_valid: bool = False
    validation_message: str = ""
    # enough modules reported but confidence fell under the validity floor
    below_floor: bool = False
    modules_ok: int = 0
    modules_failed: int = 0
    trigger: str = "forced"
    annotations: Mapping[str, Detail] = field(default_factory=dict)

    def age_seconds(self, now: datetime) -> float:
        return (now - self.timestamp).total_seconds()
