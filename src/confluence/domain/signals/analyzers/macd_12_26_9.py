from __future__ import annotations

from typing import Optional

import pandas as pd

from confluence.application.plugins.registry import register_analyzer
from confluence.domain.signals.analyzers.base import BaseAnalyzer
from confluence.domain.signals.entities import MACDSignal


@register_analyzer(module="macd", method="12_26_9", tags={"default"})
class MACD12269(BaseAnalyzer):
    fast = 12
    slow = 26
    signal_n = 9
    scale_n = 20
    min_bars = slow + signal_n

    def compute(self, df: pd.DataFrame) -> Optional[MACDSignal]:
        if df.empty or len(df) < self.min_bars:
            return None
        close = df["close"].astype(float)
        macd = close.ewm(span=self.fast, adjust=False).mean() - close.ewm(span=self.slow, adjust=False).mean()
        signal = macd.ewm(span=self.signal_n, adjust=False).mean()
        hist = macd - signal

        h_now, h_prev = float(hist.iloc[-1]), float(hist.iloc[-2])
        if h_now > 0:
            bias = "BULLISH_CROSS" if h_prev <= 0 else "BULLISH"
        elif h_now < 0:
            bias = "BEARISH_CROSS" if h_prev >= 0 else "BEARISH"
        else:
            bias = "NEUTRAL"

        # histogram relative to recent price dispersion
        scale = float(close.tail(self.scale_n).std(ddof=0)) or 1e-9
        score = min(100.0, 100.0 * abs(h_now) / scale)
        confidence = 55.0
        if bias.endswith("_CROSS"):
            confidence += 20.0
        if (float(macd.iloc[-1]) > 0) == (h_now > 0):
            confidence += 10.0
        return MACDSignal(
            macd=float(macd.iloc[-1]),
            signal=float(signal.iloc[-1]),
            histogram=h_now,
            bias=bias,
            score=score,
            confidence=confidence,
        )
