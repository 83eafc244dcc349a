from __future__ import annotations

import time
from dataclasses import dataclass

import MetaTrader5 as mt5

from confluence.ports.session import SessionPort


@dataclass
class MT5SessionGate(SessionPort):
    """Open for trading when the symbol allows trades and its last quote is recent.

    Tick times are broker server time; `server_utc_offset_hours` aligns them with UTC.
    """

    max_quote_age_seconds: int = 300
    server_utc_offset_hours: float = 0.0

    def is_trading_session(self, symbol: str) -> bool:
        info = mt5.symbol_info(symbol)
        if info is None or info.trade_mode == mt5.SYMBOL_TRADE_MODE_DISABLED:
            return False
        tick = mt5.symbol_info_tick(symbol)
        if not tick:
            return False
        quote_utc = float(tick.time) - self.server_utc_offset_hours * 3600.0
        return (time.time() - quote_utc) <= self.max_quote_age_seconds
