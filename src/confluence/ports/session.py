from __future__ import annotations

from typing import Protocol


class SessionPort(Protocol):
    def is_trading_session(self, symbol: str) -> bool: ...
