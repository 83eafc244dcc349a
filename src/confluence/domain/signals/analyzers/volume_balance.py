from __future__ import annotations

from typing import Optional

import pandas as pd

from confluence.application.plugins.registry import register_analyzer
from confluence.domain.signals.analyzers.base import BaseAnalyzer
from confluence.domain.signals.entities import VolumeSignal


@register_analyzer(module="volume", method="up_down_20", tags={"default"})
class VolumeBalance20(BaseAnalyzer):
    """Share of tick volume on up bars vs down bars over the window."""

    window = 20
    min_bars = window

    def compute(self, df: pd.DataFrame) -> Optional[VolumeSignal]:
        if df.empty or len(df) < self.min_bars or "tick_volume" not in df.columns:
            return None
        tail = df.tail(self.window)
        vol = tail["tick_volume"].astype(float)
        body = tail["close"].astype(float) - tail["open"].astype(float)
        up = float(vol[body > 0].sum())
        down = float(vol[body < 0].sum())
        if up + down <= 0:
            return None

        share = up / (up + down)
        if share > 0.6:
            bias = "ACCUMULATION"
        elif share < 0.4:
            bias = "DISTRIBUTION"
        else:
            bias = "NEUTRAL"
        mean_vol = float(vol.mean()) or 1e-9
        ratio = float(vol.iloc[-1]) / mean_vol
        confidence = max(20.0, min(100.0, 50.0 + 25.0 * (ratio - 1.0)))
        return VolumeSignal(
            bias=bias,
            volume_ratio=ratio,
            score=min(100.0, 200.0 * abs(share - 0.5)),
            confidence=confidence,
        )
