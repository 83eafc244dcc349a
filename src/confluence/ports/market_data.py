from __future__ import annotations
from typing import Optional, Protocol
from datetime import datetime
import pandas as pd

class MarketDataPort(Protocol):
    def get_bars(self, symbol: str, timeframe: str, start: datetime, end: datetime) -> pd.DataFrame: ...

class BarClockPort(Protocol):
    """Open time of the most recent bar, used to detect that a new bar has formed."""

    def last_bar_time(self, symbol: str, timeframe: str) -> Optional[datetime]: ...
