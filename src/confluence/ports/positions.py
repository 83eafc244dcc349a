from __future__ import annotations

from typing import Protocol

from confluence.domain.decision.entities import PositionSummary


class PositionInventoryPort(Protocol):
    def query_positions(self, symbol: str, execution_id: int) -> PositionSummary: ...
