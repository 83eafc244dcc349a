from __future__ import annotations
from datetime import datetime, timezone
from typing import Dict, Optional
import pandas as pd
import MetaTrader5 as mt5
from confluence.ports.market_data import BarClockPort, MarketDataPort

_TF_MAP: Dict[str, int] = {
    "M1": mt5.TIMEFRAME_M1,
    "M5": mt5.TIMEFRAME_M5,
    "M15": mt5.TIMEFRAME_M15,
    "M30": mt5.TIMEFRAME_M30,
    "H1": mt5.TIMEFRAME_H1,
    "H4": mt5.TIMEFRAME_H4,
    "D1": mt5.TIMEFRAME_D1,
}

def _timeframe(timeframe: str) -> int:
    tf = _TF_MAP.get(timeframe.upper())
    if tf is None:
        raise ValueError(f"Unsupported timeframe: {timeframe}")
    return tf

class MT5MarketData(MarketDataPort, BarClockPort):
    def get_bars(self, symbol: str, timeframe: str, start: datetime, end: datetime) -> pd.DataFrame:
        rates = mt5.copy_rates_range(
            symbol, _timeframe(timeframe),
            start.astimezone(timezone.utc),
            end.astimezone(timezone.utc)
        )
        if rates is None or len(rates) == 0:
            return pd.DataFrame(columns=["time","open","high","low","close","tick_volume","spread","real_volume"])
        df = pd.DataFrame(rates)
        df["time"] = pd.to_datetime(df["time"], unit="s", utc=True)
        return df

    def last_bar_time(self, symbol: str, timeframe: str) -> Optional[datetime]:
        rates = mt5.copy_rates_from_pos(symbol, _timeframe(timeframe), 0, 1)
        if rates is None or len(rates) == 0:
            return None
        return datetime.fromtimestamp(int(rates[0]["time"]), tz=timezone.utc)
