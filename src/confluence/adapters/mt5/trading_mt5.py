from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Optional
import logging
import MetaTrader5 as mt5
from confluence.domain.decision.entities import RiskSpec
from confluence.domain.signals.entities import DecisionPackage, Direction
from confluence.ports.trading import CloseSide, ExecutionPort
from confluence.adapters.mt5.guards import demo_only
from confluence.adapters.mt5.sizer import resolve_volume, volume_from_risk
from confluence.shared.decorators import logged

_log = logging.getLogger(__name__)
_OK_RETCODES = (mt5.TRADE_RETCODE_DONE, mt5.TRADE_RETCODE_PLACED)

@dataclass
class MT5Trader(ExecutionPort):
    dry_run: bool = True
    require_demo: bool = True
    deviation_points: int = 10
    volume_mode: str = "min"
    fixed_volume: float = 0.01
    stop_loss_points: int = 300

    def _send(self, request: dict[str, Any]) -> bool:
        check = mt5.order_check(request)
        # order_check reports success with retcode 0
        if not check or check.retcode not in (0, mt5.TRADE_RETCODE_DONE):
            _log.warning("order_check failed for %s: %s", request.get("symbol"), check)
            return False
        res = mt5.order_send(request)
        ok = bool(res and res.retcode in _OK_RETCODES)
        if not ok:
            _log.warning("order_send failed for %s: %s", request.get("symbol"), res)
        return ok

    @logged
    @demo_only
    def open(
        self,
        symbol: str,
        direction: Direction,
        package: DecisionPackage,
        execution_id: int,
        risk: Optional[RiskSpec] = None,
    ) -> bool:
        if direction is Direction.NEUTRAL:
            return False
        if self.dry_run:
            _log.info("DRY_RUN: open %s %s skipped (confidence %.1f)", direction.value, symbol, package.confidence)
            return True
        if not mt5.symbol_select(symbol, True):
            return False
        tick = mt5.symbol_info_tick(symbol)
        info = mt5.symbol_info(symbol)
        if not tick or not info:
            return False

        is_buy = direction is Direction.BULLISH
        price = tick.ask if is_buy else tick.bid
        request: dict[str, Any] = {
            "action": mt5.TRADE_ACTION_DEAL,
            "symbol": symbol,
            "type": mt5.ORDER_TYPE_BUY if is_buy else mt5.ORDER_TYPE_SELL,
            "price": price,
            "deviation": self.deviation_points,
            "type_time": mt5.ORDER_TIME_GTC,
            "type_filling": mt5.ORDER_FILLING_RETURN,
            "magic": int(execution_id),
            "comment": f"cf-{direction.value[:4].lower()}-{int(package.confidence)}",
        }
        if risk is not None:
            ai = mt5.account_info()
            equity = float(getattr(ai, "equity", 0.0) or 0.0)
            request["volume"] = volume_from_risk(symbol, equity, risk.risk_percent, self.stop_loss_points)
            sl_dist = self.stop_loss_points * info.point
            tp_dist = sl_dist * float(risk.min_risk_reward)
            request["sl"] = price - sl_dist if is_buy else price + sl_dist
            request["tp"] = price + tp_dist if is_buy else price - tp_dist
        else:
            request["volume"] = resolve_volume(symbol, self.volume_mode, self.fixed_volume)
        if request["volume"] <= 0:
            return False
        return self._send(request)

    @logged
    @demo_only
    def close(self, symbol: str, execution_id: int, side: CloseSide) -> bool:
        if self.dry_run:
            _log.info("DRY_RUN: close %s %s skipped", side.value, symbol)
            return True
        poss = mt5.positions_get(symbol=symbol)
        if poss is None:
            return False
        tick = mt5.symbol_info_tick(symbol)
        if not tick:
            return False

        ok = True
        for p in poss:
            if int(getattr(p, "magic", 0)) != int(execution_id):
                continue
            is_buy = p.type == mt5.POSITION_TYPE_BUY
            if side is CloseSide.BUY and not is_buy:
                continue
            if side is CloseSide.SELL and is_buy:
                continue
            request = {
                "action": mt5.TRADE_ACTION_DEAL,
                "symbol": symbol,
                "position": p.ticket,
                "type": mt5.ORDER_TYPE_SELL if is_buy else mt5.ORDER_TYPE_BUY,
                "volume": float(p.volume),
                "price": tick.bid if is_buy else tick.ask,
                "deviation": self.deviation_points,
                "type_time": mt5.ORDER_TIME_GTC,
                "type_filling": mt5.ORDER_FILLING_RETURN,
                "magic": int(execution_id),
                "comment": f"cf-close-{side.value.lower()}",
            }
            ok = self._send(request) and ok
        return ok
