from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from confluence.domain.signals.entities import DecisionPackage, Direction


class DecisionAction(str, Enum):
    NONE = "NONE"
    OPEN_BUY = "OPEN_BUY"
    OPEN_SELL = "OPEN_SELL"
    CLOSE_BUY = "CLOSE_BUY"
    CLOSE_SELL = "CLOSE_SELL"
    CLOSE_ALL = "CLOSE_ALL"
    HOLD = "HOLD"
    WAITING_FOR_PACKAGE = "WAITING_FOR_PACKAGE"

    @property
    def is_actionable(self) -> bool:
        return self not in (
            DecisionAction.NONE,
            DecisionAction.HOLD,
            DecisionAction.WAITING_FOR_PACKAGE,
        )

    @property
    def is_open(self) -> bool:
        return self in (DecisionAction.OPEN_BUY, DecisionAction.OPEN_SELL)

    @property
    def is_close(self) -> bool:
        return self in (
            DecisionAction.CLOSE_BUY,
            DecisionAction.CLOSE_SELL,
            DecisionAction.CLOSE_ALL,
        )


class PositionState(str, Enum):
    NO_POSITION = "NO_POSITION"
    HAS_BUY = "HAS_BUY"
    HAS_SELL = "HAS_SELL"
    HAS_BOTH = "HAS_BOTH"


class DecisionReason(str, Enum):
    """Why the engine ended on a given action. Never raised, only recorded."""

    NOT_INITIALIZED = "not_initialized"
    INVALID_PACKAGE = "invalid_package"
    STALE_PACKAGE = "stale_package"
    BELOW_CLOSE_ALL = "below_close_all_threshold"
    BELOW_OPEN_THRESHOLD = "below_open_threshold"
    BELOW_CLOSE_THRESHOLD = "below_close_threshold"
    NEUTRAL_DIRECTION = "neutral_direction"
    NO_CONFLICT = "no_conflicting_position"
    OPEN = "open"
    ADD = "add_to_position"
    CLOSE = "close_opposing"
    VALIDATION_FAILED = "validation_failed"
    EXECUTED = "executed"
    EXECUTION_FAILED = "execution_failed"
    POSITIONS_UNAVAILABLE = "positions_unavailable"


class ValidationFailure(str, Enum):
    CONFIDENCE = "confidence"
    DIRECTION = "direction"
    SESSION = "session"
    COOLDOWN = "cooldown"
    POSITION_LIMIT = "position_limit"


@dataclass(frozen=True, slots=True)
class DecisionParams:
    """Per-symbol thresholds. Confidence thresholds are percentages."""

    buy_threshold: float = 70.0
    sell_threshold: float = 70.0
    close_threshold: float = 70.0
    close_all_threshold: float = 20.0
    cooldown_minutes: int = 15
    max_positions: int = 1
    risk_percent: float = 1.0
    min_risk_reward: float = 1.5

    def open_threshold(self, direction: Direction) -> float:
        if direction is Direction.BULLISH:
            return self.buy_threshold
        if direction is Direction.BEARISH:
            return self.sell_threshold
        return float("inf")

    def add_threshold(self) -> float:
        return 1.2 * max(self.buy_threshold, self.sell_threshold)

    def adjusted_close_threshold(self, profit: float) -> float:
        """Close threshold scaled by the profit of the side that would be closed.

        Winners need more evidence to be dislodged, losers less.
        """
        if profit > 0:
            factor = 0.9
        elif profit < -50:
            factor = 0.7
        else:
            factor = 0.8
        return self.close_threshold * factor


@dataclass(frozen=True, slots=True)
class RiskSpec:
    risk_percent: float
    min_risk_reward: float


@dataclass
class CooldownRecord:
    last_buy_at: Optional[datetime] = None
    last_sell_at: Optional[datetime] = None
    buy_count: int = 0
    sell_count: int = 0

    def last_for(self, direction: Direction) -> Optional[datetime]:
        if direction is Direction.BULLISH:
            return self.last_buy_at
        if direction is Direction.BEARISH:
            return self.last_sell_at
        return None

    def remaining(self, direction: Direction, now: datetime, minutes: int) -> timedelta:
        last = self.last_for(direction)
        if last is None or minutes <= 0:
            return timedelta(0)
        left = timedelta(minutes=int(minutes)) - (now - last)
        return left if left > timedelta(0) else timedelta(0)

    def is_active(self, direction: Direction, now: datetime, minutes: int) -> bool:
        return self.remaining(direction, now, minutes) > timedelta(0)


@dataclass(frozen=True, slots=True)
class PositionSummary:
    """Positions held for one symbol under one execution identifier."""

    buy_count: int = 0
    sell_count: int = 0
    buy_profit: float = 0.0
    sell_profit: float = 0.0
    buy_volume: float = 0.0
    sell_volume: float = 0.0

    @property
    def total_profit(self) -> float:
        return float(self.buy_profit) + float(self.sell_profit)

    @property
    def total_volume(self) -> float:
        return float(self.buy_volume) + float(self.sell_volume)

    @property
    def state(self) -> PositionState:
        if self.buy_count > 0 and self.sell_count > 0:
            return PositionState.HAS_BOTH
        if self.buy_count > 0:
            return PositionState.HAS_BUY
        if self.sell_count > 0:
            return PositionState.HAS_SELL
        return PositionState.NO_POSITION

    def count_for(self, direction: Direction) -> int:
        if direction is Direction.BULLISH:
            return int(self.buy_count)
        if direction is Direction.BEARISH:
            return int(self.sell_count)
        return 0

    def profit_for(self, direction: Direction) -> float:
        if direction is Direction.BULLISH:
            return float(self.buy_profit)
        if direction is Direction.BEARISH:
            return float(self.sell_profit)
        return self.total_profit


@dataclass(frozen=True, slots=True)
class Decision:
    action: DecisionAction
    direction: Direction
    confidence: float
    reason: str
    timestamp: datetime
    executed: bool = False
    failure: Optional[ValidationFailure] = None


@dataclass
class DecisionMetrics:
    started_at: datetime
    total_decisions: int = 0
    profitable_decisions: int = 0
    outcomes_recorded: int = 0
    executions_failed: int = 0
    average_confidence: float = 0.0

    @property
    def accuracy(self) -> float:
        """Profitable decisions over all terminal decisions, in percent."""
        if self.total_decisions <= 0:
            return 0.0
        return 100.0 * self.profitable_decisions / self.total_decisions

    def record_decision(self, confidence: float) -> None:
        self.total_decisions += 1
        n = self.total_decisions
        self.average_confidence += (float(confidence) - self.average_confidence) / n

    def record_outcome(self, profit: float) -> None:
        self.outcomes_recorded += 1
        if profit > 0:
            self.profitable_decisions += 1


@dataclass
class SymbolState:
    """Mutable per-symbol record owned by the decision engine."""

    symbol: str
    params: DecisionParams
    execution_id: int
    cooldown: CooldownRecord = field(default_factory=CooldownRecord)
    last_package: Optional[DecisionPackage] = None
    last_package_at: Optional[datetime] = None
    last_decision: Optional[Decision] = None
    last_decision_at: Optional[datetime] = None
