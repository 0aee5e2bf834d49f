"""
pepmonitor - Chunk Preprocessor
Turns a raw audio chunk into a smoothed, downsampled energy envelope.

Stages:
  1. formant-scale moving-average baseline (edge windows shrink)
  2. baseline subtraction (high-pass)
  3. squaring (rectification to energy)
  4. block-average downsampling, trailing partial block dropped
  5. Gaussian smoothing renormalized by the in-range kernel mass
"""

import numpy as np
from scipy.signal import convolve

from config import Config


def moving_average_baseline(signal: np.ndarray, window: int) -> np.ndarray:
    """Centered moving average; windows at the edges shrink instead of zero-padding."""
    n = len(signal)
    if n == 0:
        return np.zeros(0, dtype=np.float64)
    half = max(0, int(window)) // 2
    csum = np.concatenate(([0.0], np.cumsum(signal, dtype=np.float64)))
    idx = np.arange(n)
    starts = np.maximum(idx - half, 0)
    ends = np.minimum(idx + half, n - 1) + 1
    return (csum[ends] - csum[starts]) / (ends - starts)


def block_average(signal: np.ndarray, factor: int) -> np.ndarray:
    """Mean of contiguous, non-overlapping blocks of `factor` samples."""
    n_out = len(signal) // factor
    if n_out == 0:
        return np.zeros(0, dtype=np.float64)
    return signal[:n_out * factor].reshape(n_out, factor).mean(axis=1)


def gaussian_kernel(sigma: float) -> np.ndarray:
    """Normalized Gaussian kernel spanning +/-3 sigma, at least 3 taps.
    Taps sit at offsets i - len // 2."""
    size = max(3, int(sigma * 6.0))
    x = np.arange(size, dtype=np.float64) - size // 2
    kernel = np.exp(-(x * x) / (2.0 * sigma * sigma))
    return kernel / kernel.sum()


def gaussian_smooth(signal: np.ndarray, sigma: float) -> np.ndarray:
    """Gaussian smoothing that divides each output by the kernel mass actually overlapped."""
    n = len(signal)
    if n == 0 or sigma <= 0:
        return np.array(signal, dtype=np.float64, copy=True)

    kernel = gaussian_kernel(sigma)
    size = len(kernel)
    # out[i] = sum_j signal[i + j - size//2] * kernel[j]
    flipped = kernel[::-1]
    first = size - 1 - size // 2
    weighted = convolve(signal, flipped, mode="full", method="direct")[first:first + n]
    mass = convolve(np.ones(n), flipped, mode="full", method="direct")[first:first + n]
    out = np.zeros(n, dtype=np.float64)
    np.divide(weighted, mass, out=out, where=mass > 0)
    return out


class ChunkPreprocessor:
    """Pure chunk -> energy envelope transform with constants fixed at construction."""

    def __init__(self, config: Config):
        sample_rate = float(config.audio.sample_rate)
        pre = config.preprocess
        self.baseline_window = int(sample_rate / pre.lower_formant_freq)
        self.downsample_factor = int(pre.downsample_factor)
        self.sigma = (pre.sigma_scale * pre.downsample_factor * config.pitch.max_freq
                      / sample_rate) * pre.sigma_fine_tune

    def envelope_length(self, chunk_length: int) -> int:
        return chunk_length // self.downsample_factor

    def process(self, samples: np.ndarray) -> np.ndarray:
        """Run the five conditioning stages over one chunk."""
        samples = np.asarray(samples, dtype=np.float64)
        baseline = moving_average_baseline(samples, self.baseline_window)
        energy = np.square(samples - baseline)
        downsampled = block_average(energy, self.downsample_factor)
        return gaussian_smooth(downsampled, self.sigma)

    @staticmethod
    def chunk_energy(envelope: np.ndarray) -> float:
        """Mean envelope value, recorded once per chunk for time registration."""
        if len(envelope) == 0:
            return 0.0
        return float(np.mean(envelope))
