"""
pepmonitor - Pitch Session
One explicit estimation session: chunk -> envelope -> raw pitch -> stabilized
pitch -> pressure, plus time registration against an external pressure sensor.

Any number of sessions can run side by side; each owns its own estimator
state. process_chunk() and reset() serialize on the session lock so a chunk
never sees a half-reset session. Pressure readings go straight to the
registration engine, which has its own lock.
"""

import math
import threading
import time
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from chunk_preprocessor import ChunkPreprocessor
from config import Config, PressureZone
from exceptions import InvalidInputError
from logging_utils import log_event
from pitch_estimator import PitchEstimator
from pressure_mapper import PressureMapper
from stability_tracker import StabilityTracker
from time_registration import TimeRegistration, TimeRegistrationEngine


@dataclass(frozen=True)
class PitchReading:
    """Immutable per-chunk result. All zero means no reading yet."""
    pitch_hz: float = 0.0              # stabilized pitch, 0 = no lock
    pressure_cmh2o: float = 0.0
    run_length: int = 0
    raw_pitch_hz: float = 0.0          # this chunk's candidate, 0 = none
    correlation: float = 0.0
    timestamp_s: float = 0.0
    zone: PressureZone = PressureZone.NONE
    lock_run_length: int = field(default=5, repr=False)

    @property
    def locked(self) -> bool:
        return self.run_length >= self.lock_run_length


@dataclass(frozen=True)
class ThroughputStats:
    chunks: int = 0
    audio_seconds: float = 0.0
    processing_seconds: float = 0.0
    max_processing_ratio: float = 0.05

    @property
    def ratio(self) -> float:
        """Processing seconds per second of audio."""
        if self.audio_seconds <= 0.0:
            return 0.0
        return self.processing_seconds / self.audio_seconds

    @property
    def within_budget(self) -> bool:
        return self.ratio <= self.max_processing_ratio


def _coerce_chunk(samples, count: Optional[int]) -> np.ndarray:
    try:
        chunk = np.asarray(samples, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise InvalidInputError("samples must be numeric", error=str(e)) from e
    if chunk.ndim != 1:
        raise InvalidInputError("samples must be one-dimensional", shape=chunk.shape)
    if chunk.size == 0:
        raise InvalidInputError("chunk is empty")
    if count is not None and int(count) != chunk.size:
        raise InvalidInputError("count does not match buffer length", count=count, length=chunk.size)
    if not np.all(np.isfinite(chunk)):
        raise InvalidInputError("samples must be finite")
    return chunk


def _check_timestamp(timestamp) -> Optional[float]:
    if timestamp is None:
        return None
    try:
        timestamp = float(timestamp)
    except (TypeError, ValueError) as e:
        raise InvalidInputError("timestamp must be a number", timestamp=timestamp) from e
    if not math.isfinite(timestamp):
        raise InvalidInputError("timestamp must be finite", timestamp=timestamp)
    return timestamp


class PitchSession:
    def __init__(self, config: Optional[Config] = None):
        self.config = config if config is not None else Config()
        self.config.validate()

        self.sample_rate = float(self.config.audio.sample_rate)
        self.preprocessor = ChunkPreprocessor(self.config)
        self.estimator = PitchEstimator(self.config)
        self.tracker = StabilityTracker(self.config)
        self.mapper = PressureMapper(self.config)
        self.registration_engine = TimeRegistrationEngine(self.config)

        self._lock = threading.Lock()
        self._last_reading = self._empty_reading()
        self._reset_session_stats()

        log_event("DEBUG", "Session", "Created",
                  sample_rate=int(self.sample_rate),
                  lags=f"{self.estimator.min_lag}-{self.estimator.max_lag}",
                  calibration=self.mapper.calibration_name)

    def _empty_reading(self) -> PitchReading:
        return PitchReading(lock_run_length=self.tracker.max_run_length)

    def _reset_session_stats(self) -> None:
        self._chunks = 0
        self._audio_seconds = 0.0
        self._processing_seconds = 0.0
        self._window_audio_seconds = 0.0
        self._window_processing_seconds = 0.0
        self._window_chunks = 0
        self._locked_chunks = 0
        self._pitch_sum = 0.0
        self._pitch_min: Optional[float] = None
        self._pitch_max: Optional[float] = None
        self._started_at = time.time()

    # ------------------------------------------------------------------
    # Snapshot accessors
    # ------------------------------------------------------------------

    @property
    def last_reading(self) -> PitchReading:
        return self._last_reading

    @property
    def pitch_hz(self) -> float:
        return self._last_reading.pitch_hz

    @property
    def pressure_cmh2o(self) -> float:
        return self._last_reading.pressure_cmh2o

    @property
    def run_length(self) -> int:
        return self._last_reading.run_length

    @property
    def registration(self) -> TimeRegistration:
        return self.registration_engine.registration

    def throughput(self) -> ThroughputStats:
        with self._lock:
            return ThroughputStats(
                chunks=self._chunks,
                audio_seconds=self._audio_seconds,
                processing_seconds=self._processing_seconds,
                max_processing_ratio=self.config.performance.max_processing_ratio,
            )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Return the session to its freshly constructed state."""
        with self._lock:
            self.tracker.reset()
            self.estimator.reset()
            self.registration_engine.reset()
            self._last_reading = self._empty_reading()
            self._reset_session_stats()
        log_event("INFO", "Session", "Reset")

    def process_chunk(self, samples, count: Optional[int] = None, timestamp=None) -> PitchReading:
        """Estimate pitch and pressure for one chunk of mono audio.

        timestamp is the capture time in seconds used for time registration;
        wall-clock time is used when omitted.
        """
        chunk = _coerce_chunk(samples, count)
        timestamp = _check_timestamp(timestamp)

        with self._lock:
            started = time.perf_counter()
            latest = self.registration_engine.latest_energy_timestamp()
            if timestamp is None:
                timestamp = time.time()
                if latest is not None and timestamp < latest:
                    timestamp = latest
            elif latest is not None and timestamp < latest:
                raise InvalidInputError("chunk timestamps must be non-decreasing",
                                        timestamp=timestamp, latest=latest)

            # Squaring can overflow for finite samples; reject before any state moves
            with np.errstate(over="ignore", invalid="ignore"):
                envelope = self.preprocessor.process(chunk)
                energy = self.preprocessor.chunk_energy(envelope)
            if not (math.isfinite(energy) and np.all(np.isfinite(envelope))):
                raise InvalidInputError("sample energy overflows", peak=float(np.max(np.abs(chunk))))

            estimate = self.estimator.estimate(envelope)
            pitch = self.tracker.update(estimate)
            pressure = self.mapper.map(pitch)
            self.registration_engine.record_energy(timestamp, energy)

            reading = PitchReading(
                pitch_hz=pitch,
                pressure_cmh2o=pressure,
                run_length=self.tracker.run_length,
                raw_pitch_hz=estimate.frequency_hz,
                correlation=estimate.correlation,
                timestamp_s=timestamp,
                zone=self.mapper.classify(pressure),
                lock_run_length=self.tracker.max_run_length,
            )
            self._last_reading = reading
            self._account(reading, chunk.size / self.sample_rate, time.perf_counter() - started)
        return reading

    def record_pressure_reading(self, value: float, timestamp=None) -> TimeRegistration:
        """Feed one external pressure sensor reading (cmH2O)."""
        timestamp = _check_timestamp(timestamp)
        if timestamp is None:
            timestamp = time.time()
        return self.registration_engine.record_pressure(timestamp, value)

    # ------------------------------------------------------------------
    # Accounting
    # ------------------------------------------------------------------

    def _account(self, reading: PitchReading, audio_s: float, processing_s: float) -> None:
        self._chunks += 1
        self._audio_seconds += audio_s
        self._processing_seconds += processing_s
        if reading.locked:
            self._locked_chunks += 1
            self._pitch_sum += reading.pitch_hz
            self._pitch_min = reading.pitch_hz if self._pitch_min is None else min(self._pitch_min, reading.pitch_hz)
            self._pitch_max = reading.pitch_hz if self._pitch_max is None else max(self._pitch_max, reading.pitch_hz)

        self._window_chunks += 1
        self._window_audio_seconds += audio_s
        self._window_processing_seconds += processing_s
        if self._window_audio_seconds >= self.config.performance.report_every_audio_s:
            ratio = self._window_processing_seconds / self._window_audio_seconds
            level = "INFO" if ratio <= self.config.performance.max_processing_ratio else "WARN"
            log_event(level, "Session", "Throughput",
                      chunks=self._window_chunks,
                      audio_s=f"{self._window_audio_seconds:.1f}",
                      processing_ms=f"{self._window_processing_seconds * 1000.0:.1f}",
                      ms_per_audio_s=f"{ratio * 1000.0:.3f}")
            self._window_chunks = 0
            self._window_audio_seconds = 0.0
            self._window_processing_seconds = 0.0

    def log_summary(self) -> None:
        """Log a one-line summary of everything processed since the last reset."""
        with self._lock:
            if self._chunks <= 0:
                return
            stats = ThroughputStats(self._chunks, self._audio_seconds, self._processing_seconds,
                                    self.config.performance.max_processing_ratio)
            locked = self._locked_chunks
            pitch_mean = self._pitch_sum / locked if locked else 0.0
            pitch_min = float(self._pitch_min or 0.0)
            pitch_max = float(self._pitch_max or 0.0)
            elapsed_s = max(0.0, time.time() - self._started_at)

        registration = self.registration
        log_event(
            "INFO",
            "Session",
            "Session summary",
            chunks=stats.chunks,
            seconds=f"{elapsed_s:.1f}",
            audio_s=f"{stats.audio_seconds:.1f}",
            locked_chunks=locked,
            locked_pct=f"{100.0 * locked / stats.chunks:.1f}",
            pitch_min=f"{pitch_min:.2f}",
            pitch_max=f"{pitch_max:.2f}",
            pitch_mean=f"{pitch_mean:.2f}",
            offset_s=f"{registration.offset_s:+.2f}",
            offset_confidence=f"{registration.confidence:.3f}",
            ms_per_audio_s=f"{stats.ratio * 1000.0:.3f}",
            within_budget=stats.within_budget,
        )
