"""
pepmonitor - Pitch Estimator
Adaptive two-resolution normalized autocorrelation over the energy envelope.

The search remembers the last accepted lag. While a lag is remembered only
a +/- radius window around it is searched; otherwise the whole 10-40 Hz lag
range is. Each search runs a coarse pass first, then refines at unit stride
around the coarse maximum.
"""

from dataclasses import dataclass

import numpy as np

from config import Config
from logging_utils import log_event


@dataclass(frozen=True)
class PitchEstimate:
    """Raw per-chunk pitch candidate. frequency_hz == 0 means no candidate."""
    frequency_hz: float
    correlation: float
    lag_samples: int

    @classmethod
    def none(cls) -> "PitchEstimate":
        return cls(0.0, 0.0, 0)

    @property
    def found(self) -> bool:
        return self.frequency_hz > 0.0


def normalized_autocorrelation(signal: np.ndarray, lag: int) -> float:
    """sum(x[i] * x[i+lag]) / sqrt(sum x[i]^2 * sum x[i+lag]^2) over the overlap; 0 if a norm is 0."""
    if lag <= 0 or lag >= len(signal):
        return 0.0
    head = signal[:-lag]
    tail = signal[lag:]
    denominator = np.sqrt(float(np.dot(head, head)) * float(np.dot(tail, tail)))
    if denominator <= 0.0:
        return 0.0
    return float(np.dot(head, tail)) / denominator


class PitchEstimator:
    def __init__(self, config: Config):
        self.downsampled_rate = config.downsampled_rate
        self.min_lag = int(self.downsampled_rate / config.pitch.max_freq)
        self.max_lag = int(self.downsampled_rate / config.pitch.min_freq)
        self.min_correlation = config.pitch.min_correlation
        self.window_radius = int(config.pitch.search_window_radius)
        self.coarse_divisions = max(1, int(config.pitch.coarse_divisions))
        self.last_lag = 0   # 0 = no accepted detection to predict from

    @property
    def min_envelope_length(self) -> int:
        """Shortest envelope that can hold the longest (lowest-pitch) lag."""
        return self.max_lag + 1

    def reset(self) -> None:
        self.last_lag = 0

    def search_range(self) -> tuple[int, int]:
        """Inclusive lag window for the next search."""
        if self.last_lag > 0:
            center = self.last_lag   # one period ahead of the previous detection
            start = max(self.min_lag, center - self.window_radius)
            end = min(self.max_lag, center + self.window_radius)
            if start <= end:
                return start, end
        return self.min_lag, self.max_lag

    def estimate(self, envelope: np.ndarray) -> PitchEstimate:
        """Return the accepted pitch candidate for one envelope, or PitchEstimate.none()."""
        envelope = np.asarray(envelope, dtype=np.float64)
        if len(envelope) <= self.max_lag:
            return PitchEstimate.none()

        start, end = self.search_range()

        # Coarse pass
        coarse_step = max(1, (end - start) // self.coarse_divisions)
        best_lag = start
        best_corr = 0.0
        for lag in range(start, end + 1, coarse_step):
            corr = normalized_autocorrelation(envelope, lag)
            if corr > best_corr:
                best_corr = corr
                best_lag = lag

        # Fine pass around the coarse maximum
        fine_start = max(start, best_lag - coarse_step)
        fine_end = min(end, best_lag + coarse_step)
        for lag in range(fine_start, fine_end + 1):
            corr = normalized_autocorrelation(envelope, lag)
            if corr > best_corr:
                best_corr = corr
                best_lag = lag

        if best_corr <= self.min_correlation:
            log_event("DEBUG", "Pitch", "No candidate",
                      window=f"{start}-{end}", best_corr=f"{best_corr:.3f}")
            return PitchEstimate.none()

        self.last_lag = best_lag
        frequency = self.downsampled_rate / best_lag
        log_event("DEBUG", "Pitch", "Candidate",
                  lag=best_lag, freq_hz=f"{frequency:.2f}", corr=f"{best_corr:.3f}")
        return PitchEstimate(frequency, best_corr, best_lag)
