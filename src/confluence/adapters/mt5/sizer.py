from __future__ import annotations
import math
import MetaTrader5 as mt5

def symbol_min_volume(symbol: str) -> float:
    info = mt5.symbol_info(symbol)
    if not info:
        return 0.0
    v = max(info.volume_min, info.volume_step)
    steps = round(v / info.volume_step)
    return steps * info.volume_step

def normalize_volume(symbol: str, volume: float) -> float:
    """Floor to the symbol's volume step and clamp to [volume_min, volume_max]."""
    info = mt5.symbol_info(symbol)
    if not info:
        return 0.0
    step = info.volume_step or 0.01
    vol = math.floor(float(volume) / step) * step
    return round(max(info.volume_min, min(info.volume_max, vol)), 8)

def volume_from_risk(symbol: str, equity: float, risk_percent: float, stop_points: int) -> float:
    """
    Lots such that hitting a stop `stop_points` away loses `risk_percent` of equity.
    Falls back to the minimum volume when tick data is unavailable.
    """
    info = mt5.symbol_info(symbol)
    if not info or stop_points <= 0 or not info.trade_tick_size:
        return symbol_min_volume(symbol)
    money_at_risk = float(equity) * float(risk_percent) / 100.0
    loss_per_lot = stop_points * info.point / info.trade_tick_size * info.trade_tick_value
    if loss_per_lot <= 0:
        return symbol_min_volume(symbol)
    return normalize_volume(symbol, money_at_risk / loss_per_lot)

def resolve_volume(symbol: str, mode: str, fixed_volume: float) -> float:
    """
    Volume when no risk spec is given:

     - 'fixed': fixed_volume, normalised to the symbol's step.

     - 'min' (default): the symbol's minimum volume.
    """
    if mode == 'fixed':
        return normalize_volume(symbol, fixed_volume)
    return symbol_min_volume(symbol)
