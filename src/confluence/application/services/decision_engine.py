from __future__ import annotations

import zlib
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from confluence.adapters.metrics.noop import NoopMeter
from confluence.application.services.config import DecisionConfig
from confluence.application.telemetry.event_factory import now_utc
from confluence.application.telemetry.run_context import RunTelemetry
from confluence.domain.decision.entities import (
    CooldownRecord,
    Decision,
    DecisionAction,
    DecisionMetrics,
    DecisionParams,
    DecisionReason,
    PositionState,
    PositionSummary,
    RiskSpec,
    SymbolState,
    ValidationFailure,
)
from confluence.domain.signals.entities import DecisionPackage, Direction
from confluence.ports.metrics import MeterPort
from confluence.ports.positions import PositionInventoryPort
from confluence.ports.session import SessionPort
from confluence.ports.telemetry import TelemetryLevel, TelemetryPort
from confluence.ports.trading import CloseSide, ExecutionPort
from confluence.shared.types import Clock


_OPEN_ACTION = {
    Direction.BULLISH: DecisionAction.OPEN_BUY,
    Direction.BEARISH: DecisionAction.OPEN_SELL,
}
# closing the side that holds `direction`
_CLOSE_ACTION = {
    Direction.BULLISH: DecisionAction.CLOSE_BUY,
    Direction.BEARISH: DecisionAction.CLOSE_SELL,
}
# direction an incoming package must point to for the action to make sense
_REQUIRED_DIRECTION = {
    DecisionAction.OPEN_BUY: Direction.BULLISH,
    DecisionAction.OPEN_SELL: Direction.BEARISH,
    DecisionAction.CLOSE_BUY: Direction.BEARISH,
    DecisionAction.CLOSE_SELL: Direction.BULLISH,
}
_CLOSE_SIDE = {
    DecisionAction.CLOSE_BUY: CloseSide.BUY,
    DecisionAction.CLOSE_SELL: CloseSide.SELL,
    DecisionAction.CLOSE_ALL: CloseSide.ALL,
}


def execution_id_for(symbol: str, base_magic: int) -> int:
    """Stable integer tag for orders placed by this engine on `symbol`."""
    return int(base_magic) * 100_000 + zlib.crc32(symbol.encode("utf-8")) % 100_000


@dataclass(frozen=True, slots=True)
class _Proposal:
    action: DecisionAction
    reason: DecisionReason
    threshold: float = 0.0
    failure: Optional[ValidationFailure] = None


@dataclass
class DecisionEngine:
    """Turns decision packages plus live position state into trading actions.

    Every call returns a concrete action; collaborator failures and rule
    violations end in NONE / WAITING_FOR_PACKAGE / HOLD and are reported
    through telemetry, never raised. Evaluations for one symbol are assumed
    to run one at a time; callers that parallelise across symbols must
    serialise per symbol.
    """

    positions: PositionInventoryPort
    execution: ExecutionPort
    session: SessionPort | None = None
    config: DecisionConfig = field(default_factory=DecisionConfig)
    telemetry: TelemetryPort | None = None
    meter: MeterPort | None = None
    clock: Clock = now_utc

    _states: Dict[str, SymbolState] = field(default_factory=dict, init=False, repr=False)
    _initialized: bool = field(default=False, init=False, repr=False)

    def __post_init__(self) -> None:
        self._metrics = DecisionMetrics(started_at=self.clock())
        meter = self.meter or NoopMeter()
        self._decision_counter = meter.create_counter(
            "confluence.decisions", unit="1", description="Decisions by final action"
        )
        self._t = RunTelemetry(port=self.telemetry, run_id="engine", base_scope={"component": "decision_engine"})

    # --- lifecycle ---------------------------------------------------------

    def initialize(self) -> bool:
        if self.positions is None or self.execution is None:
            self._t.emit(
                name="engine.initialize_failed",
                channel="ops",
                level=TelemetryLevel.ERROR,
                payload={"reason": "missing position inventory or execution port"},
            )
            return False
        self._metrics = DecisionMetrics(started_at=self.clock())
        self._initialized = True
        self._t.emit(
            name="engine.initialized",
            channel="ops",
            payload={
                "max_package_age_seconds": self.config.max_package_age_seconds,
                "enforce_cooldown": self.config.enforce_cooldown,
                "allow_multiple_positions": self.config.allow_multiple_positions,
            },
        )
        return True

    def deinitialize(self) -> None:
        self._initialized = False
        self._t.emit(name="engine.deinitialized", channel="ops", payload={"symbols": len(self._states)})

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    # --- symbol registry ---------------------------------------------------

    def register_symbol(self, symbol: str, params: DecisionParams | None = None) -> SymbolState:
        state = self._states.get(symbol)
        if state is not None:
            return state
        state = SymbolState(
            symbol=symbol,
            params=params or self.config.default_params,
            execution_id=execution_id_for(symbol, self.config.base_magic),
        )
        self._states[symbol] = state
        self._t.emit(
            name="engine.symbol_registered",
            channel="ops",
            scope={"symbol": symbol},
            payload={"execution_id": state.execution_id, "default_params": params is None},
        )
        return state

    def unregister_symbol(self, symbol: str) -> bool:
        removed = self._states.pop(symbol, None) is not None
        if removed:
            self._t.emit(name="engine.symbol_unregistered", channel="ops", scope={"symbol": symbol})
        return removed

    def update_symbol_params(self, symbol: str, params: DecisionParams) -> bool:
        state = self._states.get(symbol)
        if state is None:
            return False
        state.params = params
        return True

    def symbols(self) -> List[str]:
        return list(self._states.keys())

    def state_of(self, symbol: str) -> Optional[SymbolState]:
        return self._states.get(symbol)

    def last_decision(self, symbol: str) -> Optional[Decision]:
        state = self._states.get(symbol)
        return state.last_decision if state else None

    def last_package(self, symbol: str) -> Optional[DecisionPackage]:
        state = self._states.get(symbol)
        return state.last_package if state else None

    def metrics(self) -> DecisionMetrics:
        return replace(self._metrics)

    def record_outcome(self, symbol: str, profit: float) -> None:
        """Feed back the realised profit of a closed trade for the accuracy metric."""
        self._metrics.record_outcome(float(profit))
        self._t.emit(
            name="engine.outcome_recorded",
            channel="audit",
            scope={"symbol": symbol},
            payload={"profit": float(profit), "accuracy": round(self._metrics.accuracy, 4)},
        )

    # --- evaluation --------------------------------------------------------

    def process_packages(self, packages: Iterable[DecisionPackage], run_id: str | None = None) -> int:
        """Evaluate each package independently; returns how many produced an actionable decision."""
        return sum(1 for p in packages if self.process_package(p, run_id=run_id).is_actionable)

    def process_package(self, package: DecisionPackage, run_id: str | None = None) -> DecisionAction:
        now = self.clock()
        t = RunTelemetry(
            port=self.telemetry,
            run_id=run_id or "engine",
            base_scope={"component": "decision_engine", "symbol": package.symbol},
        )

        if not self._initialized:
            t.emit(
                name="decision.skipped",
                channel="ops",
                level=TelemetryLevel.WARN,
                payload={"reason": DecisionReason.NOT_INITIALIZED.value},
            )
            return DecisionAction.NONE

        state = self._states.get(package.symbol) or self.register_symbol(package.symbol)
        state.last_package = package
        state.last_package_at = now

        if not package.is_valid and not self._close_all_below_floor(state, package):
            return self._conclude(
                state, package, now, t,
                _Proposal(DecisionAction.NONE, DecisionReason.INVALID_PACKAGE),
                detail=package.validation_message,
            )

        age = package.age_seconds(now)
        if age > self.config.max_package_age_seconds:
            return self._conclude(
                state, package, now, t,
                _Proposal(DecisionAction.WAITING_FOR_PACKAGE, DecisionReason.STALE_PACKAGE),
                detail=f"age {age:.0f}s > {self.config.max_package_age_seconds}s",
            )

        try:
            summary = self.positions.query_positions(package.symbol, state.execution_id)
        except Exception as e:
            t.exception(e, stage="query_positions")
            return self._conclude(
                state, package, now, t,
                _Proposal(DecisionAction.HOLD, DecisionReason.POSITIONS_UNAVAILABLE),
            )

        proposal = self._propose(state, package, summary, now)
        if not proposal.action.is_actionable:
            return self._conclude(state, package, now, t, proposal)

        failure = self._validate(state, package, summary, proposal, now, t)
        if failure is not None:
            return self._conclude(
                state, package, now, t,
                _Proposal(DecisionAction.HOLD, DecisionReason.VALIDATION_FAILED, proposal.threshold, failure),
                detail=f"{proposal.action.value} rejected",
            )

        executed = self._execute(state, package, proposal.action, t)
        if executed:
            self._stamp_cooldown(state.cooldown, proposal.action, now)
        else:
            state.cooldown = CooldownRecord()
            self._metrics.executions_failed += 1
        self._metrics.record_decision(package.confidence)

        return self._conclude(
            state, package, now, t,
            replace(
                proposal,
                reason=DecisionReason.EXECUTED if executed else DecisionReason.EXECUTION_FAILED,
            ),
            executed=executed,
            detail=proposal.reason.value,
        )

    # --- state machine -----------------------------------------------------

    @staticmethod
    def _close_all_below_floor(state: SymbolState, package: DecisionPackage) -> bool:
        # a package rejected only by the confidence floor still carries the exit signal
        return package.below_floor and float(package.confidence) < state.params.close_all_threshold

    def _propose(
        self,
        state: SymbolState,
        package: DecisionPackage,
        summary: PositionSummary,
        now: datetime,
    ) -> _Proposal:
        p = state.params
        confidence = float(package.confidence)
        direction = package.direction

        if confidence < p.close_all_threshold:
            return _Proposal(DecisionAction.CLOSE_ALL, DecisionReason.BELOW_CLOSE_ALL, p.close_all_threshold)

        if summary.state is PositionState.NO_POSITION:
            if direction is Direction.NEUTRAL:
                return _Proposal(DecisionAction.HOLD, DecisionReason.NEUTRAL_DIRECTION)
            threshold = p.open_threshold(direction)
            if confidence < threshold:
                return _Proposal(DecisionAction.HOLD, DecisionReason.BELOW_OPEN_THRESHOLD, threshold)
            return self._gate_open(
                state, summary, now,
                _Proposal(_OPEN_ACTION[direction], DecisionReason.OPEN, threshold),
            )

        if direction is Direction.NEUTRAL:
            return _Proposal(DecisionAction.HOLD, DecisionReason.NEUTRAL_DIRECTION)

        if confidence >= p.add_threshold() and summary.count_for(direction) > 0:
            return self._gate_open(
                state, summary, now,
                _Proposal(_OPEN_ACTION[direction], DecisionReason.ADD, p.add_threshold()),
            )

        opposing = direction.opposite()
        if summary.count_for(opposing) == 0:
            return _Proposal(DecisionAction.HOLD, DecisionReason.NO_CONFLICT)

        threshold = p.adjusted_close_threshold(summary.profit_for(opposing))
        if confidence < threshold:
            return _Proposal(DecisionAction.HOLD, DecisionReason.BELOW_CLOSE_THRESHOLD, threshold)
        return _Proposal(_CLOSE_ACTION[opposing], DecisionReason.CLOSE, threshold)

    def _gate_open(
        self,
        state: SymbolState,
        summary: PositionSummary,
        now: datetime,
        proposal: _Proposal,
    ) -> _Proposal:
        direction = _REQUIRED_DIRECTION[proposal.action]
        failure = self._cooldown_failure(state, direction, now) or self._limit_failure(state, summary, direction)
        if failure is None:
            return proposal
        return _Proposal(DecisionAction.HOLD, DecisionReason.VALIDATION_FAILED, proposal.threshold, failure)

    def _cooldown_failure(self, state: SymbolState, direction: Direction, now: datetime) -> Optional[ValidationFailure]:
        if not self.config.enforce_cooldown:
            return None
        if state.cooldown.is_active(direction, now, state.params.cooldown_minutes):
            return ValidationFailure.COOLDOWN
        return None

    def _limit_failure(
        self,
        state: SymbolState,
        summary: PositionSummary,
        direction: Direction,
    ) -> Optional[ValidationFailure]:
        if not self.config.allow_multiple_positions:
            # one position per symbol; a reversal has to close the other side first
            if summary.buy_count + summary.sell_count > 0:
                return ValidationFailure.POSITION_LIMIT
            return None
        if summary.count_for(direction) >= state.params.max_positions:
            return ValidationFailure.POSITION_LIMIT
        return None

    def _validate(
        self,
        state: SymbolState,
        package: DecisionPackage,
        summary: PositionSummary,
        proposal: _Proposal,
        now: datetime,
        t: RunTelemetry,
    ) -> Optional[ValidationFailure]:
        """Independent re-check of an actionable proposal right before execution."""
        action = proposal.action
        confidence = float(package.confidence)

        if action is DecisionAction.CLOSE_ALL:
            if confidence >= state.params.close_all_threshold:
                return ValidationFailure.CONFIDENCE
        elif confidence < proposal.threshold:
            return ValidationFailure.CONFIDENCE

        required = _REQUIRED_DIRECTION.get(action)
        if required is not None and package.direction is not required:
            return ValidationFailure.DIRECTION

        if not self._in_session(package.symbol, t):
            return ValidationFailure.SESSION

        if action.is_open:
            return self._cooldown_failure(state, required, now) or self._limit_failure(state, summary, required)
        return None

    def _in_session(self, symbol: str, t: RunTelemetry) -> bool:
        if self.session is None:
            return True
        try:
            return bool(self.session.is_trading_session(symbol))
        except Exception as e:
            t.exception(e, stage="session_gate")
            return False

    # --- execution ---------------------------------------------------------

    def _execute(self, state: SymbolState, package: DecisionPackage, action: DecisionAction, t: RunTelemetry) -> bool:
        try:
            if action.is_open:
                risk = (
                    RiskSpec(state.params.risk_percent, state.params.min_risk_reward)
                    if self.config.use_risk_management
                    else None
                )
                direction = _REQUIRED_DIRECTION[action]
                return bool(self.execution.open(state.symbol, direction, package, state.execution_id, risk))
            if action.is_close:
                return bool(self.execution.close(state.symbol, state.execution_id, _CLOSE_SIDE[action]))
            return False
        except Exception as e:
            t.exception(e, stage="execution")
            return False

    @staticmethod
    def _stamp_cooldown(cooldown: CooldownRecord, action: DecisionAction, now: datetime) -> None:
        if action is DecisionAction.OPEN_BUY:
            cooldown.last_buy_at = now
            cooldown.buy_count += 1
        elif action is DecisionAction.OPEN_SELL:
            cooldown.last_sell_at = now
            cooldown.sell_count += 1
        elif action is DecisionAction.CLOSE_BUY:
            cooldown.last_buy_at = now
        elif action is DecisionAction.CLOSE_SELL:
            cooldown.last_sell_at = now
        elif action is DecisionAction.CLOSE_ALL:
            cooldown.last_buy_at = now
            cooldown.last_sell_at = now

    def _conclude(
        self,
        state: SymbolState,
        package: DecisionPackage,
        now: datetime,
        t: RunTelemetry,
        proposal: _Proposal,
        executed: bool = False,
        detail: str = "",
    ) -> DecisionAction:
        decision = Decision(
            action=proposal.action,
            direction=package.direction,
            confidence=float(package.confidence),
            reason=proposal.reason.value,
            timestamp=now,
            executed=executed,
            failure=proposal.failure,
        )
        state.last_decision = decision
        state.last_decision_at = now
        self._decision_counter.add(1, {"action": proposal.action.value})

        level = TelemetryLevel.INFO
        if proposal.reason in (DecisionReason.EXECUTION_FAILED, DecisionReason.POSITIONS_UNAVAILABLE):
            level = TelemetryLevel.ERROR
        elif proposal.failure is not None or proposal.reason is DecisionReason.INVALID_PACKAGE:
            level = TelemetryLevel.WARN

        payload = {
            "action": proposal.action.value,
            "direction": package.direction.value,
            "confidence": float(package.confidence),
            "reason": proposal.reason.value,
            "executed": executed,
        }
        if proposal.failure is not None:
            payload["failure"] = proposal.failure.value
        if proposal.threshold:
            payload["threshold"] = round(float(proposal.threshold), 4)
        if detail:
            payload["detail"] = detail
        t.emit(name="decision.made", channel="audit", level=level, payload=payload)
        return proposal.action
