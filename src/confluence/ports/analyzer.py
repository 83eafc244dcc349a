from __future__ import annotations

from typing import Optional, Protocol

from confluence.domain.signals.entities import ModuleResult


class AnalyzerPort(Protocol):
    """One market-analysis module.

    Returns its module-specific record, or None when it has nothing to say
    this cycle. May raise; the aggregator treats both as a module failure.
    """

    def analyze(self, symbol: str) -> Optional[ModuleResult]: ...
