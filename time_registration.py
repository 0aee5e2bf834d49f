"""
pepmonitor - Time Registration
Aligns the per-chunk audio energy with independently timestamped pressure
sensor readings.

Both histories keep only the most recent max_history_s seconds. Once both
hold enough points, every pressure insert triggers a search over candidate
offsets: each energy point is shifted by the offset, paired with the nearest
pressure reading (if within the match tolerance), and the offset with the
highest mean sqrt(energy) * pressure wins. A winning score at or below the
acceptance threshold leaves the previous registration untouched.
"""

import math
import threading
from collections import deque
from dataclasses import dataclass
from typing import Optional

import numpy as np

from config import Config
from exceptions import InvalidInputError
from logging_utils import log_event


@dataclass(frozen=True)
class EnergyHistoryPoint:
    timestamp_s: float
    energy: float


@dataclass(frozen=True)
class PressureReading:
    timestamp_s: float
    value_cmh2o: float


@dataclass(frozen=True)
class TimeRegistration:
    """Offset to add to audio timestamps to line them up with pressure timestamps."""
    offset_s: float = 0.0
    confidence: float = 0.0


def offset_grid(search_range_s: float, step_s: float) -> np.ndarray:
    """Offsets -range .. +range inclusive, computed by index to avoid float drift."""
    n_steps = int(round(2.0 * search_range_s / step_s))
    return -search_range_s + np.arange(n_steps + 1, dtype=np.float64) * step_s


def score_offsets(
    energy_times: np.ndarray,
    energies: np.ndarray,
    pressure_times: np.ndarray,
    pressures: np.ndarray,
    offsets: np.ndarray,
    tolerance_s: float,
) -> np.ndarray:
    """Mean sqrt(energy) * nearest-pressure product per candidate offset (0 when nothing matches)."""
    if len(energy_times) == 0 or len(pressure_times) == 0:
        return np.zeros(len(offsets), dtype=np.float64)

    last = len(pressure_times) - 1
    adjusted = energy_times[np.newaxis, :] + offsets[:, np.newaxis]
    idx = np.searchsorted(pressure_times, adjusted, side="left")
    left = np.clip(idx - 1, 0, last)
    right = np.clip(idx, 0, last)
    left_dist = np.abs(adjusted - pressure_times[left])
    right_dist = np.abs(pressure_times[right] - adjusted)
    # Ties go to the earlier reading
    nearest = np.where(left_dist <= right_dist, left, right)
    distance = np.minimum(left_dist, right_dist)

    matched = distance < tolerance_s
    root_energy = np.sqrt(np.maximum(energies, 0.0))
    products = np.where(matched, root_energy[np.newaxis, :] * pressures[nearest], 0.0)
    counts = matched.sum(axis=1)
    sums = products.sum(axis=1)
    scores = np.zeros(len(offsets), dtype=np.float64)
    np.divide(sums, counts, out=scores, where=counts > 0)
    return scores


class TimeRegistrationEngine:
    def __init__(self, config: Config):
        reg = config.registration
        self.max_history_s = float(reg.max_history_s)
        self.min_history_points = int(reg.min_history_points)
        self.match_tolerance_s = float(reg.match_tolerance_s)
        self.min_score = float(reg.min_score)
        self.search_interval_s = float(reg.search_interval_s)
        self.offsets = offset_grid(reg.search_range_s, reg.search_step_s)

        self._lock = threading.Lock()
        self._energy: deque[EnergyHistoryPoint] = deque()
        self._pressure: deque[PressureReading] = deque()
        self._registration = TimeRegistration()
        self._generation = 0              # bumped by reset(); stale searches must not commit
        self._last_search_at: Optional[float] = None
        self.search_count = 0

    # ------------------------------------------------------------------
    # Accessors (snapshots)
    # ------------------------------------------------------------------

    @property
    def registration(self) -> TimeRegistration:
        with self._lock:
            return self._registration

    @property
    def energy_history(self) -> tuple[EnergyHistoryPoint, ...]:
        with self._lock:
            return tuple(self._energy)

    @property
    def pressure_history(self) -> tuple[PressureReading, ...]:
        with self._lock:
            return tuple(self._pressure)

    def latest_energy_timestamp(self) -> Optional[float]:
        with self._lock:
            return self._energy[-1].timestamp_s if self._energy else None

    # ------------------------------------------------------------------
    # Inserts
    # ------------------------------------------------------------------

    def _append(self, history: deque, point, timestamp: float, kind: str) -> None:
        if not math.isfinite(timestamp):
            raise InvalidInputError(f"{kind} timestamp must be finite", timestamp=timestamp)
        if history and timestamp < history[-1].timestamp_s:
            raise InvalidInputError(
                f"{kind} timestamps must be non-decreasing",
                timestamp=timestamp, latest=history[-1].timestamp_s,
            )
        history.append(point)
        cutoff = timestamp - self.max_history_s
        while history and history[0].timestamp_s <= cutoff:
            history.popleft()

    def record_energy(self, timestamp: float, energy: float) -> None:
        """Append one per-chunk energy point and prune old history."""
        timestamp = float(timestamp)
        energy = float(energy)
        if not math.isfinite(energy):
            raise InvalidInputError("energy must be finite", energy=energy)
        with self._lock:
            self._append(self._energy, EnergyHistoryPoint(timestamp, energy), timestamp, "energy")

    def record_pressure(self, timestamp: float, value: float) -> TimeRegistration:
        """Append a sensor reading; search for a new offset once enough history exists."""
        timestamp = float(timestamp)
        value = float(value)
        if not math.isfinite(value):
            raise InvalidInputError("pressure value must be finite", value=value)
        with self._lock:
            self._append(self._pressure, PressureReading(timestamp, value), timestamp, "pressure")
            ready = (len(self._energy) > self.min_history_points
                     and len(self._pressure) > self.min_history_points)
            if ready and self.search_interval_s > 0 and self._last_search_at is not None:
                ready = timestamp - self._last_search_at >= self.search_interval_s
            if ready:
                self._last_search_at = timestamp

        if ready:
            return self.update_registration()
        return self.registration

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def _snapshot_arrays(self):
        energy_times = np.fromiter((p.timestamp_s for p in self._energy), dtype=np.float64, count=len(self._energy))
        energies = np.fromiter((p.energy for p in self._energy), dtype=np.float64, count=len(self._energy))
        pressure_times = np.fromiter((p.timestamp_s for p in self._pressure), dtype=np.float64, count=len(self._pressure))
        pressures = np.fromiter((p.value_cmh2o for p in self._pressure), dtype=np.float64, count=len(self._pressure))
        return energy_times, energies, pressure_times, pressures

    def search(self) -> tuple[float, float]:
        """Best (offset_s, score) for the current histories, without committing it."""
        with self._lock:
            arrays = self._snapshot_arrays()
        return self._best_offset(*arrays)

    def _best_offset(self, energy_times, energies, pressure_times, pressures) -> tuple[float, float]:
        scores = score_offsets(energy_times, energies, pressure_times, pressures,
                               self.offsets, self.match_tolerance_s)
        best = int(np.argmax(scores))
        return float(self.offsets[best]), float(scores[best])

    def update_registration(self) -> TimeRegistration:
        """Run a search on a history snapshot and commit it if it beats the threshold."""
        with self._lock:
            generation = self._generation
            arrays = self._snapshot_arrays()

        offset, score = self._best_offset(*arrays)

        with self._lock:
            self.search_count += 1
            if generation != self._generation:
                # reset() ran while searching
                return self._registration
            if score > self.min_score:
                previous = self._registration
                self._registration = TimeRegistration(offset, score)
                if previous.offset_s != offset:
                    log_event("INFO", "Registration", "Offset updated",
                              offset_s=f"{offset:+.2f}", score=f"{score:.3f}",
                              previous_s=f"{previous.offset_s:+.2f}")
            else:
                log_event("DEBUG", "Registration", "Search below threshold, keeping offset",
                          best_offset_s=f"{offset:+.2f}", score=f"{score:.3f}",
                          kept_s=f"{self._registration.offset_s:+.2f}")
            return self._registration

    def reset(self) -> None:
        with self._lock:
            self._energy.clear()
            self._pressure.clear()
            self._registration = TimeRegistration()
            self._generation += 1
            self._last_search_at = None
            self.search_count = 0
