from __future__ import annotations

from typing import Optional

import pandas as pd

from confluence.application.plugins.registry import register_analyzer
from confluence.domain.signals.analyzers.base import BaseAnalyzer
from confluence.domain.signals.entities import RSISignal


@register_analyzer(module="rsi", method="wilder_14", tags={"default"})
class RSIWilder14(BaseAnalyzer):
    period = 14
    oversold = 30.0
    overbought = 70.0
    min_bars = period + 1

    def compute(self, df: pd.DataFrame) -> Optional[RSISignal]:
        if df.empty or len(df) < self.min_bars:
            return None
        close = df["close"].astype(float)
        delta = close.diff()
        gain = delta.clip(lower=0.0).ewm(alpha=1.0 / self.period, adjust=False).mean()
        loss = (-delta.clip(upper=0.0)).ewm(alpha=1.0 / self.period, adjust=False).mean()
        g, l = float(gain.iloc[-1]), float(loss.iloc[-1])
        if l <= 0:
            rsi = 100.0 if g > 0 else 50.0
        else:
            rsi = 100.0 - 100.0 / (1.0 + g / l)

        distance = abs(rsi - 50.0)
        if rsi <= self.oversold:
            state = "OVERSOLD"
        elif rsi >= self.overbought:
            state = "OVERBOUGHT"
        else:
            state = "NEUTRAL"
        confidence = min(100.0, 40.0 + 1.2 * distance) if state != "NEUTRAL" else 50.0
        return RSISignal(value=rsi, state=state, score=min(100.0, 2.0 * distance), confidence=confidence)
