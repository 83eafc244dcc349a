from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Mapping

from confluence.domain.decision.entities import DecisionParams
from confluence.shared.config import AppConfig


@dataclass(frozen=True, slots=True)
class AggregatorConfig:
    """Normalised aggregator configuration.

    weights always sum to 100 across the configured modules.
    """

    weights: Mapping[str, float]
    min_modules: int = 3
    min_confidence: float = 50.0
    min_update_seconds: int = 60
    timeframe: str = "M15"


@dataclass(frozen=True, slots=True)
class DecisionConfig:
    default_params: DecisionParams = field(default_factory=DecisionParams)
    allow_multiple_positions: bool = False
    enforce_cooldown: bool = True
    use_risk_management: bool = True
    max_package_age_seconds: int = 300
    base_magic: int = 401


@dataclass(frozen=True, slots=True)
class TrendConfig:
    capacity: int = 100
    lookback: int = 10
    volatility_threshold: float = 0.1
    degradation_threshold: float = 0.15
    short_periods: int = 5
    long_periods: int = 20


def normalize_weights(weights: Mapping[str, float]) -> Dict[str, float]:
    """Scale weights so they sum to 100. Raises on an empty or all-zero mapping."""
    total = sum(float(w) for w in weights.values())
    if not weights or total <= 0:
        raise ValueError("Aggregator weights must contain at least one positive weight.")
    return {str(k): 100.0 * float(w) / total for k, w in weights.items()}


def build_aggregator_config(cfg: AppConfig) -> AggregatorConfig:
    return AggregatorConfig(
        weights=normalize_weights(cfg.aggregator.weights),
        min_modules=int(cfg.aggregator.min_modules),
        min_confidence=float(cfg.aggregator.min_confidence),
        min_update_seconds=int(cfg.aggregator.min_update_seconds),
        timeframe=str(cfg.timeframe),
    )


def build_decision_config(cfg: AppConfig) -> DecisionConfig:
    d = cfg.decision
    return DecisionConfig(
        default_params=DecisionParams(
            buy_threshold=float(d.buy_threshold),
            sell_threshold=float(d.sell_threshold),
            close_threshold=float(d.close_threshold),
            close_all_threshold=float(d.close_all_threshold),
            cooldown_minutes=int(d.cooldown_minutes),
            max_positions=int(d.max_positions),
            risk_percent=float(d.risk_percent),
            min_risk_reward=float(d.min_risk_reward),
        ),
        allow_multiple_positions=bool(d.allow_multiple_positions),
        enforce_cooldown=bool(d.enforce_cooldown),
        use_risk_management=bool(d.use_risk_management),
        max_package_age_seconds=int(d.max_package_age_seconds),
        base_magic=int(d.base_magic),
    )


def build_trend_config(cfg: AppConfig) -> TrendConfig:
    t = cfg.trend
    return TrendConfig(
        capacity=int(t.capacity),
        lookback=int(t.lookback),
        volatility_threshold=float(t.volatility_threshold),
        degradation_threshold=float(t.degradation_threshold),
        short_periods=int(t.short_periods),
        long_periods=int(t.long_periods),
    )
