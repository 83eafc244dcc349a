from __future__ import annotations

import MetaTrader5 as mt5

from confluence.domain.decision.entities import PositionSummary
from confluence.ports.positions import PositionInventoryPort
from confluence.shared.decorators import logged


class MT5PositionInventory(PositionInventoryPort):
    """Positions on `symbol` carrying the engine's magic number; manual trades are ignored."""

    @logged
    def query_positions(self, symbol: str, execution_id: int) -> PositionSummary:
        poss = mt5.positions_get(symbol=symbol)
        if poss is None:
            raise RuntimeError(f"positions_get failed for {symbol}: {mt5.last_error()}")

        buy_n = sell_n = 0
        buy_p = sell_p = buy_v = sell_v = 0.0
        for p in poss:
            if int(getattr(p, "magic", 0)) != int(execution_id):
                continue
            profit = float(getattr(p, "profit", 0.0) or 0.0) + float(getattr(p, "swap", 0.0) or 0.0)
            volume = float(getattr(p, "volume", 0.0) or 0.0)
            if p.type == mt5.POSITION_TYPE_BUY:
                buy_n += 1
                buy_p += profit
                buy_v += volume
            elif p.type == mt5.POSITION_TYPE_SELL:
                sell_n += 1
                sell_p += profit
                sell_v += volume
        return PositionSummary(
            buy_count=buy_n,
            sell_count=sell_n,
            buy_profit=buy_p,
            sell_profit=sell_p,
            buy_volume=buy_v,
            sell_volume=sell_v,
        )
