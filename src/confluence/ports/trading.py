from __future__ import annotations

from enum import Enum
from typing import Optional, Protocol

from confluence.domain.decision.entities import RiskSpec
from confluence.domain.signals.entities import DecisionPackage, Direction


class CloseSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    ALL = "ALL"


class ExecutionPort(Protocol):
    """Blocking execution requests. Returns True when the broker accepted the request."""

    def open(
        self,
        symbol: str,
        direction: Direction,
        package: DecisionPackage,
        execution_id: int,
        risk: Optional[RiskSpec] = None,
    ) -> bool: ...

    def close(self, symbol: str, execution_id: int, side: CloseSide) -> bool: ...
