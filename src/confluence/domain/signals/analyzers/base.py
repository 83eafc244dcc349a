from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

import pandas as pd

from confluence.domain.signals.entities import ModuleResult


class BaseAnalyzer(ABC):
    """Abstract base class for bar-based analyzer plugins."""

    # Set by decorator
    module: str = ""
    method: str = ""
    tags: set[str] = set()

    min_bars: int = 1

    @abstractmethod
    def compute(self, df: pd.DataFrame) -> Optional[ModuleResult]:
        raise NotImplementedError
