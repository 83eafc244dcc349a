from __future__ import annotations

import unittest

from fakes import make_package

from confluence.adapters.telemetry.memory import InMemoryTelemetrySink
from confluence.application.services.config import TrendConfig
from confluence.application.services.trend_tracker import (
    ConfidenceTrendTracker,
    PredictionMethod,
    TrendDirection,
)
from confluence.application.telemetry.hub import TelemetryHub


RISING = [0.40, 0.42, 0.44, 0.46, 0.48, 0.50, 0.52, 0.54, 0.56, 0.58]
FALLING = [round(0.60 - 0.03 * i, 2) for i in range(10)]


def _tracker(scores, telemetry=None) -> ConfidenceTrendTracker:
    tr = ConfidenceTrendTracker(TrendConfig(), telemetry=telemetry)
    for s in scores:
        tr.record(s)
    return tr


class TestTrend(unittest.TestCase):
    def test_rising_scores_trend_up(self) -> None:
        reading = _tracker(RISING).trend()
        self.assertEqual(TrendDirection.UP, reading.direction)
        self.assertAlmostEqual(0.02, reading.slope)
        self.assertEqual(10, reading.points)
        self.assertLess(reading.volatility, 0.1)

    def test_falling_scores_trend_down(self) -> None:
        reading = _tracker(list(reversed(RISING))).trend()
        self.assertEqual(TrendDirection.DOWN, reading.direction)
        self.assertAlmostEqual(-0.02, reading.slope)

    def test_alternating_scores_are_volatile(self) -> None:
        reading = _tracker([0.2, 0.8] * 5).trend()
        self.assertEqual(TrendDirection.VOLATILE, reading.direction)
        self.assertAlmostEqual(0.3, reading.volatility)

    def test_alternation_over_a_quarter_of_the_range_is_volatile(self) -> None:
        reading = _tracker([0.35, 0.65] * 5).trend()
        self.assertEqual(TrendDirection.VOLATILE, reading.direction)
        self.assertAlmostEqual(0.15, reading.volatility)

        narrow = _tracker([0.40, 0.66] * 5).trend()
        self.assertEqual(TrendDirection.VOLATILE, narrow.direction)
        self.assertAlmostEqual(0.13, narrow.volatility)

    def test_flat_when_too_few_points_or_constant(self) -> None:
        self.assertEqual(TrendDirection.FLAT, _tracker([0.1, 0.9]).trend().direction)
        self.assertEqual(TrendDirection.FLAT, _tracker([]).trend().direction)
        self.assertEqual(TrendDirection.FLAT, _tracker([0.6] * 8).trend().direction)

    def test_lookback_limits_the_fit(self) -> None:
        tr = _tracker(FALLING + [0.35, 0.38, 0.41])
        self.assertEqual(TrendDirection.DOWN, tr.trend(10).direction)
        self.assertEqual(TrendDirection.UP, tr.trend(3).direction)


class TestDegradation(unittest.TestCase):
    def test_short_average_drop_is_degradation(self) -> None:
        reading = _tracker([0.8] * 15 + [0.6] * 5).detect_degradation()
        self.assertTrue(reading.degrading)
        self.assertAlmostEqual(0.2, reading.ratio)
        self.assertAlmostEqual(0.6, reading.short_avg)
        self.assertAlmostEqual(0.75, reading.long_avg)

    def test_not_degrading_without_enough_samples(self) -> None:
        reading = _tracker([0.8] * 10 + [0.1] * 5).detect_degradation()
        self.assertFalse(reading.degrading)

    def test_steady_scores_do_not_degrade(self) -> None:
        self.assertFalse(_tracker([0.7] * 25).detect_degradation().degrading)

    def test_degradation_is_reported_once_on_transition(self) -> None:
        sink = InMemoryTelemetrySink(channels={"ops"})
        tr = _tracker([0.8] * 15 + [0.6] * 8, telemetry=TelemetryHub(sinks=[sink]))

        events = sink.named("confidence.degradation")
        self.assertEqual(1, len(events))
        self.assertEqual("WARN", events[0].level.value)
        self.assertTrue(tr.detect_degradation().degrading)


class TestScores(unittest.TestCase):
    def test_momentum_boosts_rising_trend(self) -> None:
        # average of the last five (0.54) scaled by the UP multiplier
        self.assertAlmostEqual(0.594, _tracker(RISING).momentum_adjusted())

    def test_momentum_is_capped_at_one(self) -> None:
        tr = _tracker([0.90, 0.93, 0.96, 0.99, 1.0])
        self.assertLessEqual(tr.momentum_adjusted(), 1.0)

    def test_stability(self) -> None:
        self.assertAlmostEqual(1.0, _tracker([0.6] * 10).stability_score())
        self.assertAlmostEqual(0.4, _tracker([0.2, 0.8] * 5).stability_score())
        self.assertAlmostEqual(0.5, _tracker([0.3, 0.9]).stability_score())

    def test_predictions(self) -> None:
        tr = _tracker(RISING)
        self.assertAlmostEqual(0.49, tr.predict_next(PredictionMethod.SMA))
        self.assertAlmostEqual(0.60, tr.predict_next(PredictionMethod.LINEAR))
        self.assertAlmostEqual(0.60, tr.predict_next(2))

        ema = tr.predict_next(PredictionMethod.EMA)
        self.assertAlmostEqual(0.5395, ema, places=3)
        self.assertGreater(ema, 0.49)
        self.assertLess(ema, 0.58)

    def test_prediction_on_empty_history(self) -> None:
        tr = _tracker([])
        self.assertEqual(0.0, tr.predict_next(PredictionMethod.SMA))
        self.assertEqual(0.0, tr.predict_next(PredictionMethod.EMA))
        self.assertEqual(0.0, tr.predict_next(PredictionMethod.LINEAR))

    def test_linear_prediction_is_clamped(self) -> None:
        tr = _tracker([0.7, 0.8, 0.9, 1.0])
        self.assertEqual(1.0, tr.predict_next(PredictionMethod.LINEAR))


class TestPackages(unittest.TestCase):
    def test_only_valid_packages_are_recorded(self) -> None:
        tr = ConfidenceTrendTracker()
        tr.record_package(make_package(confidence=80.0))
        tr.record_package(make_package(confidence=95.0, valid=False))

        self.assertEqual(1, tr.history.valid_count())
        self.assertAlmostEqual(0.8, tr.history.latest().score)
        self.assertEqual("EURUSD", tr.history.latest().source)

    def test_annotate_adds_trend_fields(self) -> None:
        tr = _tracker(RISING)
        pkg = make_package(confidence=85.0)

        annotated = tr.annotate(pkg)

        self.assertEqual({}, dict(pkg.annotations))
        self.assertEqual("UP", annotated.annotations["trend"])
        self.assertAlmostEqual(59.4, annotated.annotations["momentum_confidence"])
        self.assertEqual("no", annotated.annotations["degrading"])
        self.assertIn("stability", annotated.annotations)
        self.assertEqual(pkg.confidence, annotated.confidence)

    def test_snapshot(self) -> None:
        snap = _tracker(RISING).snapshot()
        self.assertEqual(10, snap["samples"])
        self.assertEqual("UP", snap["trend"])
        self.assertEqual(0, snap["degrading"])


if __name__ == "__main__":
    unittest.main()
