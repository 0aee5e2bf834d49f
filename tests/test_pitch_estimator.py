import unittest
from unittest import mock

import numpy as np

from config import Config
from pitch_estimator import PitchEstimate, PitchEstimator, normalized_autocorrelation


def periodic_envelope(period_samples: float, length: int = 245) -> np.ndarray:
    n = np.arange(length)
    return 1.0 + np.cos(2.0 * np.pi * n / period_samples)


class TestNormalizedAutocorrelation(unittest.TestCase):
    def test_zero_signal_is_guarded(self):
        self.assertEqual(normalized_autocorrelation(np.zeros(100), 10), 0.0)

    def test_lag_outside_overlap(self):
        signal = np.ones(10)
        self.assertEqual(normalized_autocorrelation(signal, 0), 0.0)
        self.assertEqual(normalized_autocorrelation(signal, 10), 0.0)

    def test_period_lag_correlates_fully(self):
        self.assertAlmostEqual(normalized_autocorrelation(periodic_envelope(49), 49), 1.0, places=9)


class TestPitchEstimator(unittest.TestCase):
    def setUp(self):
        self.estimator = PitchEstimator(Config())

    def test_lag_range_from_config(self):
        self.assertEqual(self.estimator.min_lag, 24)
        self.assertEqual(self.estimator.max_lag, 98)
        self.assertEqual(self.estimator.search_range(), (24, 98))

    def test_short_envelope_has_no_candidate(self):
        estimate = self.estimator.estimate(periodic_envelope(49, length=98))
        self.assertEqual(estimate, PitchEstimate.none())
        self.assertFalse(estimate.found)

    def test_silence_has_no_candidate(self):
        self.assertFalse(self.estimator.estimate(np.zeros(245)).found)
        self.assertEqual(self.estimator.last_lag, 0)

    def test_full_range_search_finds_period(self):
        estimate = self.estimator.estimate(periodic_envelope(49))
        self.assertEqual(estimate.lag_samples, 49)
        self.assertAlmostEqual(estimate.frequency_hz, 20.0, places=9)
        self.assertGreater(estimate.correlation, 0.6)
        self.assertEqual(self.estimator.last_lag, 49)

    def test_window_follows_last_accepted_lag(self):
        self.estimator.estimate(periodic_envelope(49))
        self.assertEqual(self.estimator.search_range(), (39, 59))

        estimate = self.estimator.estimate(periodic_envelope(55))
        self.assertEqual(estimate.lag_samples, 55)
        self.assertEqual(self.estimator.search_range(), (45, 65))

    def test_window_is_clipped_to_valid_lags(self):
        self.estimator.last_lag = 30
        self.assertEqual(self.estimator.search_range(), (24, 40))
        self.estimator.last_lag = 95
        self.assertEqual(self.estimator.search_range(), (85, 98))

    def test_rejection_keeps_prediction_centre(self):
        self.estimator.estimate(periodic_envelope(49))
        self.assertFalse(self.estimator.estimate(np.zeros(245)).found)
        self.assertEqual(self.estimator.last_lag, 49)

    def test_reset_clears_prediction(self):
        self.estimator.estimate(periodic_envelope(49))
        self.estimator.reset()
        self.assertEqual(self.estimator.last_lag, 0)
        self.assertEqual(self.estimator.search_range(), (24, 98))

    def test_correlation_threshold_is_strict(self):
        config = Config()
        config.pitch.min_correlation = 1.5
        estimator = PitchEstimator(config)
        self.assertFalse(estimator.estimate(periodic_envelope(49)).found)

    def test_logs_candidate_at_debug(self):
        with mock.patch("pitch_estimator.log_event") as log_event_mock:
            self.estimator.estimate(periodic_envelope(49))
        args, kwargs = log_event_mock.call_args
        self.assertEqual(args[:3], ("DEBUG", "Pitch", "Candidate"))
        self.assertEqual(kwargs["lag"], 49)


if __name__ == "__main__":
    unittest.main()
