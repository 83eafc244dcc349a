from __future__ import annotations

import logging

import MetaTrader5 as mt5

from confluence.shared.config import load_config, AppConfig
from confluence.adapters.mt5.market_data_mt5 import MT5MarketData
from confluence.adapters.mt5.positions_mt5 import MT5PositionInventory
from confluence.adapters.mt5.session_mt5 import MT5SessionGate
from confluence.adapters.mt5.trading_mt5 import MT5Trader

from confluence.adapters.metrics.noop import NoopMeter
from confluence.adapters.metrics.otel_metrics import OtelMeter, build_meter_provider, install_meter_provider
from confluence.adapters.telemetry.console import ConsoleTelemetrySink
from confluence.application.telemetry.hub import TelemetryHub

from confluence.application.plugins import registry as _registry
from confluence.application.services.aggregator import ConfidenceAggregator
from confluence.application.services.bars_analyzer import build_bar_analyzers
from confluence.application.services.config import (
    build_aggregator_config,
    build_decision_config,
    build_trend_config,
)
from confluence.application.services.decision_engine import DecisionEngine
from confluence.application.runmodes.live_decision import DecisionLoop, run_decision_loop


def _ensure_initialized(cfg: AppConfig) -> None:
    if not mt5.initialize(path=cfg.mt5.terminal_path or None):
        raise SystemExit(f"MT5 initialize failed: {mt5.last_error()}")
    if cfg.mt5.login and cfg.mt5.password and cfg.mt5.server:
        if not mt5.login(
            login=int(cfg.mt5.login),
            password=cfg.mt5.password,
            server=cfg.mt5.server,
        ):
            raise SystemExit(f"MT5 login failed: {mt5.last_error()}")


def _assert_account_ok(cfg: AppConfig) -> None:
    ai = mt5.account_info()
    if ai is None:
        raise SystemExit("No MT5 account logged in. Open the Terminal and login to DEMO.")
    if cfg.trading.require_demo and ai.trade_mode != mt5.ACCOUNT_TRADE_MODE_DEMO:
        raise SystemExit("Blocked: not a DEMO account. Enable DEMO or set require_demo=false.")


def _build_telemetry(cfg: AppConfig) -> TelemetryHub:
    sinks = []
    if bool(cfg.telemetry.console_enabled):
        sinks.append(
            ConsoleTelemetrySink(
                enabled_flag=True,
                channels=set(cfg.telemetry.console_channels or ["ops"]),
                min_level=cfg.telemetry.console_min_level,
            )
        )
    return TelemetryHub(sinks=sinks)


def run_app(config_path: str) -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    cfg = load_config(config_path)

    # available before plugin discovery so import failures are reported
    telemetry = _build_telemetry(cfg)
    meter_provider = None
    meter = NoopMeter()
    if cfg.telemetry.otel_metrics_enabled:
        meter_provider = build_meter_provider(export_interval_ms=cfg.telemetry.otel_export_interval_ms)
        install_meter_provider(meter_provider)
        meter = OtelMeter(provider=meter_provider)

    _registry.auto_discover(telemetry)

    _ensure_initialized(cfg)
    engine: DecisionEngine | None = None
    try:
        _assert_account_ok(cfg)
        market_data = MT5MarketData()
        aggregator_cfg = build_aggregator_config(cfg)

        analyzers = build_bar_analyzers(
            aggregator_cfg.weights.keys(),
            market_data,
            timeframe=cfg.timeframe,
            lookback_days=cfg.lookback_days,
            picker=_registry.pick_analyzer_for,
        )
        aggregator = ConfidenceAggregator(
            analyzers=analyzers,
            config=aggregator_cfg,
            bar_clock=market_data,
            telemetry=telemetry,
            meter=meter,
        )
        engine = DecisionEngine(
            positions=MT5PositionInventory(),
            execution=MT5Trader(
                dry_run=cfg.trading.dry_run,
                require_demo=cfg.trading.require_demo,
                deviation_points=cfg.trading.deviation_points,
                volume_mode=cfg.trading.volume_mode,
                fixed_volume=cfg.trading.fixed_volume,
                stop_loss_points=cfg.trading.stop_loss_points,
            ),
            session=MT5SessionGate(),
            config=build_decision_config(cfg),
            telemetry=telemetry,
            meter=meter,
        )
        if not engine.initialize():
            raise SystemExit("Decision engine failed to initialize.")
        for symbol in cfg.symbols:
            engine.register_symbol(symbol)

        loop = DecisionLoop(
            aggregator=aggregator,
            engine=engine,
            symbols=list(dict.fromkeys(cfg.symbols)),
            trend_config=build_trend_config(cfg),
            annotate=cfg.trend.annotate_packages,
            telemetry=telemetry,
        )
        run_decision_loop(loop, cfg.schedule, telemetry=telemetry)
    finally:
        if engine is not None:
            engine.deinitialize()
        try:
            telemetry.close()
        except Exception:
            pass
        if meter_provider is not None:
            try:
                meter_provider.shutdown()
            except Exception:
                pass
        mt5.shutdown()
