from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, Iterable, Optional

from confluence.application.telemetry.event_factory import now_utc
from confluence.domain.signals.analyzers.base import BaseAnalyzer
from confluence.domain.signals.entities import ModuleResult
from confluence.ports.analyzer import AnalyzerPort
from confluence.ports.market_data import MarketDataPort
from confluence.shared.types import Clock


@dataclass(slots=True)
class BarsAnalyzer(AnalyzerPort):
    """AnalyzerPort that feeds a bar-based plugin from a market data port.

    Too few bars means "no data" (None); market data errors propagate so the
    aggregator records them as module failures.
    """

    market_data: MarketDataPort
    analyzer: BaseAnalyzer
    timeframe: str
    lookback_days: int
    clock: Clock = now_utc

    def analyze(self, symbol: str) -> Optional[ModuleResult]:
        end = self.clock()
        start = end - timedelta(days=int(self.lookback_days))
        df = self.market_data.get_bars(symbol, self.timeframe, start, end)
        if df is None or df.empty or len(df) < self.analyzer.min_bars:
            return None
        return self.analyzer.compute(df.copy())


def build_bar_analyzers(
    modules: Iterable[str],
    market_data: MarketDataPort,
    timeframe: str,
    lookback_days: int,
    picker,
) -> Dict[str, AnalyzerPort]:
    """Wire one BarsAnalyzer per module that has a registered plugin.

    Modules without a plugin are left out; the aggregator counts them as failures.
    """
    out: Dict[str, AnalyzerPort] = {}
    for module in modules:
        try:
            plugin = picker(module)
        except KeyError:
            continue
        out[module] = BarsAnalyzer(
            market_data=market_data,
            analyzer=plugin,
            timeframe=timeframe,
            lookback_days=lookback_days,
        )
    return out
