from __future__ import annotations

import unittest
from dataclasses import replace
from datetime import timedelta

from fakes import (
    FakeClock,
    FakeExecution,
    FakePositions,
    FakeSession,
    make_package,
)

from confluence.adapters.telemetry.memory import InMemoryTelemetrySink
from confluence.application.services.config import DecisionConfig
from confluence.application.services.decision_engine import DecisionEngine, execution_id_for
from confluence.application.telemetry.hub import TelemetryHub
from confluence.domain.decision.entities import (
    CooldownRecord,
    DecisionAction,
    DecisionParams,
    PositionState,
    PositionSummary,
    RiskSpec,
    ValidationFailure,
)
from confluence.domain.signals.entities import Direction
from confluence.ports.trading import CloseSide


def _engine(
    summary: PositionSummary | None = None,
    *,
    config: DecisionConfig | None = None,
    execution: FakeExecution | None = None,
    session: FakeSession | None = None,
    positions: FakePositions | None = None,
    clock: FakeClock | None = None,
    telemetry=None,
    initialize: bool = True,
):
    clock = clock or FakeClock()
    positions = positions or FakePositions(summary)
    execution = execution or FakeExecution()
    engine = DecisionEngine(
        positions=positions,
        execution=execution,
        session=session or FakeSession(True),
        config=config or DecisionConfig(),
        telemetry=telemetry,
        clock=clock,
    )
    if initialize:
        engine.initialize()
    return engine, positions, execution, clock


class TestLifecycle(unittest.TestCase):
    def test_not_initialized_returns_none_without_touching_collaborators(self) -> None:
        engine, positions, execution, _ = _engine(initialize=False)

        action = engine.process_package(make_package(confidence=95.0))

        self.assertEqual(DecisionAction.NONE, action)
        self.assertEqual([], positions.calls)
        self.assertEqual([], execution.opens)
        self.assertEqual([], engine.symbols())

    def test_deinitialize_stops_processing(self) -> None:
        engine, _, execution, _ = _engine()
        engine.deinitialize()

        self.assertEqual(DecisionAction.NONE, engine.process_package(make_package()))
        self.assertEqual([], execution.opens)

    def test_unknown_symbol_is_auto_registered_with_defaults(self) -> None:
        engine, positions, _, _ = _engine()

        engine.process_package(make_package(symbol="GBPUSD", confidence=50.0))

        state = engine.state_of("GBPUSD")
        self.assertIsNotNone(state)
        self.assertEqual(DecisionParams(), state.params)
        self.assertEqual(execution_id_for("GBPUSD", 401), state.execution_id)
        self.assertEqual([("GBPUSD", state.execution_id)], positions.calls)

    def test_execution_ids_are_stable_and_distinct_per_symbol(self) -> None:
        a = execution_id_for("EURUSD", 401)
        self.assertEqual(a, execution_id_for("EURUSD", 401))
        self.assertNotEqual(a, execution_id_for("USDJPY", 401))
        self.assertEqual(401, a // 100_000)

    def test_register_update_unregister(self) -> None:
        engine, _, _, _ = _engine()
        strict = DecisionParams(buy_threshold=85.0)

        self.assertFalse(engine.update_symbol_params("EURUSD", strict))
        engine.register_symbol("EURUSD")
        self.assertTrue(engine.update_symbol_params("EURUSD", strict))
        self.assertEqual(DecisionAction.HOLD, engine.process_package(make_package(confidence=80.0)))

        self.assertTrue(engine.unregister_symbol("EURUSD"))
        self.assertFalse(engine.unregister_symbol("EURUSD"))
        self.assertIsNone(engine.last_decision("EURUSD"))

    def test_register_twice_keeps_existing_state(self) -> None:
        engine, _, _, _ = _engine()
        first = engine.register_symbol("EURUSD", DecisionParams(buy_threshold=60.0))
        second = engine.register_symbol("EURUSD")
        self.assertIs(first, second)
        self.assertEqual(60.0, second.params.buy_threshold)


class TestPackageGates(unittest.TestCase):
    def test_invalid_package_gives_none(self) -> None:
        engine, positions, _, _ = _engine()
        pkg = make_package(confidence=90.0, valid=False)

        self.assertEqual(DecisionAction.NONE, engine.process_package(pkg))
        self.assertEqual([], positions.calls)
        self.assertIs(pkg, engine.last_package("EURUSD"))
        self.assertEqual("invalid_package", engine.last_decision("EURUSD").reason)

    def test_low_confidence_with_too_few_modules_gives_none(self) -> None:
        engine, positions, execution, _ = _engine(PositionSummary(buy_count=1, buy_profit=500.0))
        pkg = make_package(confidence=10.0, direction=Direction.NEUTRAL, valid=False)

        self.assertEqual(DecisionAction.NONE, engine.process_package(pkg))
        self.assertEqual([], positions.calls)
        self.assertEqual([], execution.closes)

    def test_package_below_floor_still_reaches_close_all(self) -> None:
        engine, _, execution, _ = _engine(PositionSummary(buy_count=1, buy_profit=500.0))
        pkg = replace(make_package(confidence=12.0, direction=Direction.NEUTRAL, valid=False), below_floor=True)

        self.assertEqual(DecisionAction.CLOSE_ALL, engine.process_package(pkg))
        self.assertEqual([("EURUSD", engine.state_of("EURUSD").execution_id, CloseSide.ALL)], execution.closes)
        self.assertEqual("executed", engine.last_decision("EURUSD").reason)

    def test_package_below_floor_above_close_all_gives_none(self) -> None:
        engine, positions, _, _ = _engine(PositionSummary(buy_count=1, buy_profit=500.0))
        pkg = replace(make_package(confidence=40.0, valid=False), below_floor=True)

        self.assertEqual(DecisionAction.NONE, engine.process_package(pkg))
        self.assertEqual([], positions.calls)
        self.assertEqual("invalid_package", engine.last_decision("EURUSD").reason)

    def test_stale_package_waits_regardless_of_confidence(self) -> None:
        engine, positions, execution, clock = _engine()
        pkg = make_package(confidence=99.0, timestamp=clock.now - timedelta(seconds=301))

        self.assertEqual(DecisionAction.WAITING_FOR_PACKAGE, engine.process_package(pkg))
        self.assertEqual([], positions.calls)
        self.assertEqual([], execution.opens)

    def test_package_at_max_age_is_still_fresh(self) -> None:
        engine, _, _, clock = _engine()
        pkg = make_package(confidence=80.0, timestamp=clock.now - timedelta(seconds=300))
        self.assertEqual(DecisionAction.OPEN_BUY, engine.process_package(pkg))

    def test_position_query_failure_holds(self) -> None:
        engine, _, execution, _ = _engine(positions=FakePositions(error=RuntimeError("terminal down")))

        self.assertEqual(DecisionAction.HOLD, engine.process_package(make_package(confidence=90.0)))
        self.assertEqual([], execution.opens)
        self.assertEqual("positions_unavailable", engine.last_decision("EURUSD").reason)


class TestStateMachine(unittest.TestCase):
    def test_action_kinds(self) -> None:
        closes = {a for a in DecisionAction if a.is_close}
        opens = {a for a in DecisionAction if a.is_open}

        self.assertEqual({DecisionAction.CLOSE_BUY, DecisionAction.CLOSE_SELL, DecisionAction.CLOSE_ALL}, closes)
        self.assertEqual(set(), closes & opens)
        self.assertEqual({a for a in DecisionAction if a.is_actionable}, closes | opens)

    def test_scenario_a_open_buy(self) -> None:
        engine, _, execution, _ = _engine()

        action = engine.process_package(make_package(confidence=80.0, direction=Direction.BULLISH))

        self.assertEqual(DecisionAction.OPEN_BUY, action)
        self.assertEqual(1, len(execution.opens))
        symbol, direction, exec_id, risk = execution.opens[0]
        self.assertEqual(("EURUSD", Direction.BULLISH), (symbol, direction))
        self.assertEqual(engine.state_of("EURUSD").execution_id, exec_id)
        self.assertEqual(RiskSpec(1.0, 1.5), risk)
        self.assertTrue(engine.last_decision("EURUSD").executed)

    def test_open_sell_and_risk_spec_omitted_without_risk_management(self) -> None:
        engine, _, execution, _ = _engine(config=DecisionConfig(use_risk_management=False))

        action = engine.process_package(make_package(confidence=75.0, direction=Direction.BEARISH))

        self.assertEqual(DecisionAction.OPEN_SELL, action)
        self.assertIsNone(execution.opens[0][3])

    def test_below_open_threshold_holds(self) -> None:
        engine, _, execution, _ = _engine()
        self.assertEqual(DecisionAction.HOLD, engine.process_package(make_package(confidence=69.9)))
        self.assertEqual([], execution.opens)

    def test_neutral_direction_without_position_holds(self) -> None:
        engine, _, _, _ = _engine()
        pkg = make_package(confidence=90.0, direction=Direction.NEUTRAL)
        self.assertEqual(DecisionAction.HOLD, engine.process_package(pkg))

    def test_scenario_b_close_all_overrides_profitable_position(self) -> None:
        engine, _, execution, _ = _engine(PositionSummary(buy_count=1, buy_profit=500.0))

        action = engine.process_package(make_package(confidence=15.0, direction=Direction.BULLISH))

        self.assertEqual(DecisionAction.CLOSE_ALL, action)
        self.assertEqual([("EURUSD", engine.state_of("EURUSD").execution_id, CloseSide.ALL)], execution.closes)

    def test_close_all_without_positions(self) -> None:
        engine, _, _, _ = _engine()
        pkg = make_package(confidence=10.0, direction=Direction.BEARISH)
        self.assertEqual(DecisionAction.CLOSE_ALL, engine.process_package(pkg))

    def test_scenario_c_close_buy_on_profitable_position(self) -> None:
        summary = PositionSummary(buy_count=1, buy_profit=30.0)
        self.assertEqual(PositionState.HAS_BUY, summary.state)
        self.assertAlmostEqual(63.0, DecisionParams(close_threshold=70.0).adjusted_close_threshold(30.0))
        engine, _, execution, _ = _engine(summary)

        action = engine.process_package(make_package(confidence=65.0, direction=Direction.BEARISH))

        self.assertEqual(DecisionAction.CLOSE_BUY, action)
        self.assertEqual(CloseSide.BUY, execution.closes[0][2])

    def test_scenario_d_losing_position_exits_faster(self) -> None:
        self.assertAlmostEqual(49.0, DecisionParams(close_threshold=70.0).adjusted_close_threshold(-60.0))

        losing, _, _, _ = _engine(PositionSummary(buy_count=1, buy_profit=-60.0))
        winning, _, _, _ = _engine(PositionSummary(buy_count=1, buy_profit=30.0))
        pkg = make_package(confidence=55.0, direction=Direction.BEARISH)

        self.assertEqual(DecisionAction.CLOSE_BUY, losing.process_package(pkg))
        self.assertEqual(DecisionAction.HOLD, winning.process_package(pkg))

    def test_small_loss_uses_middle_factor(self) -> None:
        self.assertAlmostEqual(56.0, DecisionParams(close_threshold=70.0).adjusted_close_threshold(-10.0))
        self.assertAlmostEqual(56.0, DecisionParams(close_threshold=70.0).adjusted_close_threshold(0.0))

    def test_close_sell_when_bullish_against_short(self) -> None:
        engine, _, execution, _ = _engine(PositionSummary(sell_count=2, sell_profit=-80.0))
        action = engine.process_package(make_package(confidence=50.0, direction=Direction.BULLISH))
        self.assertEqual(DecisionAction.CLOSE_SELL, action)
        self.assertEqual(CloseSide.SELL, execution.closes[0][2])

    def test_has_both_closes_side_opposing_incoming_direction(self) -> None:
        summary = PositionSummary(buy_count=1, sell_count=1, buy_profit=40.0, sell_profit=10.0)
        engine, _, execution, _ = _engine(summary)

        action = engine.process_package(make_package(confidence=70.0, direction=Direction.BULLISH))

        self.assertEqual(DecisionAction.CLOSE_SELL, action)
        self.assertEqual(CloseSide.SELL, execution.closes[0][2])

    def test_same_direction_position_below_add_threshold_holds(self) -> None:
        engine, _, execution, _ = _engine(PositionSummary(buy_count=1, buy_profit=5.0))
        action = engine.process_package(make_package(confidence=80.0, direction=Direction.BULLISH))
        self.assertEqual(DecisionAction.HOLD, action)
        self.assertEqual("no_conflicting_position", engine.last_decision("EURUSD").reason)
        self.assertEqual([], execution.opens + execution.closes)

    def test_add_rejected_when_multiple_positions_disallowed(self) -> None:
        engine, _, execution, _ = _engine(PositionSummary(buy_count=1))

        action = engine.process_package(make_package(confidence=90.0, direction=Direction.BULLISH))

        self.assertEqual(DecisionAction.HOLD, action)
        self.assertEqual(ValidationFailure.POSITION_LIMIT, engine.last_decision("EURUSD").failure)
        self.assertEqual([], execution.opens)

    def test_add_allowed_until_max_positions(self) -> None:
        cfg = DecisionConfig(
            default_params=DecisionParams(max_positions=2),
            allow_multiple_positions=True,
        )
        engine, positions, _, _ = _engine(PositionSummary(buy_count=1), config=cfg)
        pkg = make_package(confidence=90.0, direction=Direction.BULLISH)

        self.assertEqual(DecisionAction.OPEN_BUY, engine.process_package(pkg))

        positions.summary = PositionSummary(buy_count=2)
        engine.state_of("EURUSD").cooldown = CooldownRecord()
        self.assertEqual(DecisionAction.HOLD, engine.process_package(pkg))
        self.assertEqual(ValidationFailure.POSITION_LIMIT, engine.last_decision("EURUSD").failure)


class TestCooldownAndValidation(unittest.TestCase):
    def test_second_open_within_cooldown_is_rejected(self) -> None:
        engine, _, execution, clock = _engine()

        self.assertEqual(DecisionAction.OPEN_BUY, engine.process_package(make_package(confidence=80.0)))

        clock.advance(minutes=5)
        second = engine.process_package(make_package(confidence=80.0, timestamp=clock.now))
        self.assertEqual(DecisionAction.HOLD, second)
        self.assertEqual(ValidationFailure.COOLDOWN, engine.last_decision("EURUSD").failure)
        self.assertEqual(1, len(execution.opens))

        clock.advance(minutes=11)
        third = engine.process_package(make_package(confidence=80.0, timestamp=clock.now))
        self.assertEqual(DecisionAction.OPEN_BUY, third)
        self.assertEqual(2, engine.state_of("EURUSD").cooldown.buy_count)

    def test_cooldown_is_per_direction(self) -> None:
        engine, _, _, clock = _engine()
        engine.process_package(make_package(confidence=80.0))
        clock.advance(minutes=1)
        pkg = make_package(confidence=80.0, direction=Direction.BEARISH, timestamp=clock.now)
        self.assertEqual(DecisionAction.OPEN_SELL, engine.process_package(pkg))

    def test_cooldown_not_enforced_when_disabled(self) -> None:
        engine, _, execution, clock = _engine(config=DecisionConfig(enforce_cooldown=False))
        engine.process_package(make_package(confidence=80.0))
        clock.advance(minutes=1)
        self.assertEqual(
            DecisionAction.OPEN_BUY,
            engine.process_package(make_package(confidence=80.0, timestamp=clock.now)),
        )
        self.assertEqual(2, len(execution.opens))

    def test_close_stamps_the_closed_side(self) -> None:
        engine, _, _, clock = _engine(PositionSummary(buy_count=1, buy_profit=30.0))
        engine.process_package(make_package(confidence=65.0, direction=Direction.BEARISH))
        cooldown = engine.state_of("EURUSD").cooldown
        self.assertEqual(clock.now, cooldown.last_buy_at)
        self.assertIsNone(cooldown.last_sell_at)
        self.assertEqual(0, cooldown.buy_count)

    def test_closed_session_downgrades_to_hold(self) -> None:
        engine, _, execution, _ = _engine(session=FakeSession(False))

        self.assertEqual(DecisionAction.HOLD, engine.process_package(make_package(confidence=80.0)))
        self.assertEqual(ValidationFailure.SESSION, engine.last_decision("EURUSD").failure)
        self.assertEqual([], execution.opens)

    def test_engine_without_session_gate_trades(self) -> None:
        engine = DecisionEngine(positions=FakePositions(), execution=FakeExecution(), clock=FakeClock())
        engine.initialize()
        self.assertEqual(DecisionAction.OPEN_BUY, engine.process_package(make_package(confidence=80.0)))


class TestExecutionAndMetrics(unittest.TestCase):
    def test_execution_failure_resets_cooldown_and_counts_raw_decision(self) -> None:
        engine, _, _, clock = _engine(execution=FakeExecution(ok=False))
        state = engine.register_symbol("EURUSD")
        state.cooldown.last_sell_at = clock.now - timedelta(minutes=1)
        state.cooldown.sell_count = 3

        action = engine.process_package(make_package(confidence=80.0))

        self.assertEqual(DecisionAction.OPEN_BUY, action)
        self.assertEqual(CooldownRecord(), state.cooldown)
        decision = engine.last_decision("EURUSD")
        self.assertFalse(decision.executed)
        self.assertEqual("execution_failed", decision.reason)
        metrics = engine.metrics()
        self.assertEqual(1, metrics.total_decisions)
        self.assertEqual(1, metrics.executions_failed)
        self.assertEqual(0, metrics.profitable_decisions)

    def test_failed_execution_does_not_block_next_attempt(self) -> None:
        execution = FakeExecution(ok=False)
        engine, _, _, clock = _engine(execution=execution)
        engine.process_package(make_package(confidence=80.0))

        execution.ok = True
        clock.advance(seconds=30)
        self.assertEqual(
            DecisionAction.OPEN_BUY,
            engine.process_package(make_package(confidence=80.0, timestamp=clock.now)),
        )
        self.assertTrue(engine.last_decision("EURUSD").executed)

    def test_execution_exception_is_an_execution_failure(self) -> None:
        engine, _, _, _ = _engine(execution=FakeExecution(error=ConnectionError("broker")))
        self.assertEqual(DecisionAction.OPEN_BUY, engine.process_package(make_package(confidence=80.0)))
        self.assertFalse(engine.last_decision("EURUSD").executed)
        self.assertEqual(1, engine.metrics().executions_failed)

    def test_metrics_track_terminal_decisions_only(self) -> None:
        engine, _, _, clock = _engine()
        engine.process_package(make_package(confidence=80.0))
        engine.process_package(make_package(confidence=50.0))  # HOLD
        clock.advance(minutes=1)
        engine.process_package(make_package(confidence=90.0, direction=Direction.BEARISH, timestamp=clock.now))

        metrics = engine.metrics()
        self.assertEqual(2, metrics.total_decisions)
        self.assertAlmostEqual(85.0, metrics.average_confidence)

        engine.record_outcome("EURUSD", 12.5)
        engine.record_outcome("EURUSD", -3.0)
        metrics = engine.metrics()
        self.assertEqual(1, metrics.profitable_decisions)
        self.assertEqual(2, metrics.outcomes_recorded)
        self.assertAlmostEqual(50.0, metrics.accuracy)

    def test_batch_counts_actionable_decisions(self) -> None:
        engine, _, _, clock = _engine()
        packages = [
            make_package(symbol="EURUSD", confidence=80.0),
            make_package(symbol="GBPUSD", confidence=80.0, valid=False),
            make_package(symbol="USDJPY", confidence=90.0, timestamp=clock.now - timedelta(hours=1)),
            make_package(symbol="AUDUSD", confidence=75.0, direction=Direction.BEARISH),
            make_package(symbol="NZDUSD", confidence=40.0),
        ]

        self.assertEqual(2, engine.process_packages(packages))
        self.assertEqual(
            ["EURUSD", "GBPUSD", "USDJPY", "AUDUSD", "NZDUSD"],
            engine.symbols(),
        )

    def test_decisions_are_reported_through_telemetry(self) -> None:
        sink = InMemoryTelemetrySink(channels={"audit", "ops"})
        engine, _, _, _ = _engine(session=FakeSession(False), telemetry=TelemetryHub(sinks=[sink]))

        engine.process_package(make_package(confidence=80.0), run_id="cycle-1")

        events = sink.named("decision.made")
        self.assertEqual(1, len(events))
        ev = events[0]
        self.assertEqual("cycle-1", ev.run_id)
        self.assertEqual("EURUSD", ev.scope["symbol"])
        self.assertEqual("HOLD", ev.payload["action"])
        self.assertEqual("session", ev.payload["failure"])
        self.assertEqual("WARN", ev.level.value)


if __name__ == "__main__":
    unittest.main()
