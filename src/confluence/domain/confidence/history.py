from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Deque, List, Optional

import pandas as pd


INVALID_SCORE = -1.0
MIN_WEIGHT = 0.1
MAX_WEIGHT = 2.0


@dataclass(frozen=True, slots=True)
class ConfidenceSample:
    """One observed confidence score in [0, 1]. A negative score marks an unset slot."""

    score: float
    timestamp: datetime
    source: str = ""
    weight: float = 1.0

    @property
    def is_valid(self) -> bool:
        return self.score >= 0.0


@dataclass(frozen=True, slots=True)
class Regression:
    """Least-squares fit of score against chronological sample index."""

    slope: float
    intercept: float
    volatility: float
    points: int

    def value_at(self, x: float) -> float:
        return self.intercept + self.slope * x


class ConfidenceHistory:
    """Fixed-capacity ring of confidence samples, most recent first.

    Recording into a full ring drops the oldest sample.
    """

    def __init__(self, capacity: int = 100) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = int(capacity)
        self._samples: Deque[ConfidenceSample] = deque(maxlen=self.capacity)

    def __len__(self) -> int:
        return len(self._samples)

    def record(
        self,
        score: float,
        source: str = "",
        weight: float = 1.0,
        timestamp: Optional[datetime] = None,
    ) -> ConfidenceSample:
        sample = ConfidenceSample(
            score=max(0.0, min(1.0, float(score))),
            timestamp=timestamp or datetime.now(timezone.utc),
            source=str(source),
            weight=max(MIN_WEIGHT, min(MAX_WEIGHT, float(weight))),
        )
        self._samples.appendleft(sample)
        return sample

    def clear(self) -> None:
        self._samples.clear()

    def samples(self) -> List[ConfidenceSample]:
        return list(self._samples)

    def latest(self) -> Optional[ConfidenceSample]:
        for s in self._samples:
            if s.is_valid:
                return s
        return None

    def valid(self, periods: Optional[int] = None) -> List[ConfidenceSample]:
        """Valid samples, most recent first, at most `periods` of them."""
        out: List[ConfidenceSample] = []
        for s in self._samples:
            if not s.is_valid:
                continue
            out.append(s)
            if periods is not None and len(out) >= periods:
                break
        return out

    def valid_count(self) -> int:
        return sum(1 for s in self._samples if s.is_valid)

    def scores(self, periods: Optional[int] = None) -> pd.Series:
        """Scores of the most recent valid samples in chronological order (oldest first)."""
        window = self.valid(periods)
        return pd.Series([s.score for s in reversed(window)], dtype=float)

    def moving_average(self, periods: int, weighted: bool = False) -> float:
        window = self.valid(periods)
        if not window:
            return 0.0
        scores = pd.Series([s.score for s in window], dtype=float)
        if not weighted:
            return float(scores.mean())
        weights = pd.Series([s.weight for s in window], dtype=float)
        total = float(weights.sum())
        if total <= 0:
            return float(scores.mean())
        return float((scores * weights).sum() / total)

    def stdev(self, periods: int) -> float:
        """Population standard deviation over the window; 0 when empty."""
        scores = self.scores(periods)
        if scores.empty:
            return 0.0
        return float(scores.std(ddof=0))

    def regression(self, lookback: int) -> Optional[Regression]:
        scores = self.scores(lookback)
        n = int(len(scores))
        if n < 2:
            return None
        x = pd.Series(range(n), dtype=float)
        var_x = float(x.var(ddof=0))
        slope = float(((x - x.mean()) * (scores - scores.mean())).sum() / (n * var_x))
        intercept = float(scores.mean()) - slope * float(x.mean())
        return Regression(
            slope=slope,
            intercept=intercept,
            volatility=float(scores.std(ddof=0)),
            points=n,
        )
