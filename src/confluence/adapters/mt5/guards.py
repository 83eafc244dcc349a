from __future__ import annotations
from functools import wraps
import MetaTrader5 as mt5

def demo_only(fn):
    """Refuse to touch a live account unless the adapter was built with require_demo=False."""
    @wraps(fn)
    def wrapper(self, *args, **kwargs):
        require = getattr(self, "require_demo", True)
        if require:
            ai = mt5.account_info()
            if not ai or ai.trade_mode != mt5.ACCOUNT_TRADE_MODE_DEMO:
                raise RuntimeError("Blocked: only allowed in DEMO account.")
        return fn(self, *args, **kwargs)
    return wrapper
