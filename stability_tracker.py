"""
pepmonitor - Stability Tracker
Run-length pitch lock with exponential moving averages.

Each chunk's raw candidate either extends the run (and is blended into the
moving averages), is missing (run shrinks by 1), or is an implausible jump
from the last accepted pitch (run shrinks by the jump penalty). The reported
pitch is 1 / moving-average period while the run is non-zero, so a lost lock
fades out over up to max_run_length chunks instead of snapping to zero.
"""

from dataclasses import dataclass

from config import Config
from logging_utils import log_event
from pitch_estimator import PitchEstimate


@dataclass
class StabilityState:
    """Mutable per-session tracking state. All zero means no history."""
    run_length: int = 0
    moving_average_period: float = 0.0      # seconds
    moving_average_amplitude: float = 0.0   # Hz
    last_accepted_pitch: float = 0.0        # Hz, 0 = none yet


class StabilityTracker:
    __slots__ = ('decay_rate', 'max_run_length', 'min_ratio', 'max_ratio',
                 'jump_penalty', 'state')

    def __init__(self, config: Config):
        stab = config.stability
        self.decay_rate = stab.decay_rate
        self.max_run_length = int(stab.max_run_length)
        self.min_ratio = stab.min_pitch_ratio
        self.max_ratio = stab.max_pitch_ratio
        self.jump_penalty = int(stab.jump_penalty)
        self.state = StabilityState()

    @property
    def run_length(self) -> int:
        return self.state.run_length

    @property
    def locked(self) -> bool:
        return self.state.run_length >= self.max_run_length

    def reset(self) -> None:
        """Clear all state for a fresh start."""
        self.state = StabilityState()

    def update(self, estimate: PitchEstimate) -> float:
        """Feed one raw estimate. Returns the stabilized pitch (0 = no lock)."""
        state = self.state
        was_locked = self.locked
        pitch = estimate.frequency_hz

        if pitch <= 0.0:
            state.run_length = max(0, state.run_length - 1)
        elif state.last_accepted_pitch > 0.0 and not (
                self.min_ratio <= pitch / state.last_accepted_pitch <= self.max_ratio):
            log_event("DEBUG", "Stability", "Implausible pitch jump rejected",
                      pitch=f"{pitch:.2f}", previous=f"{state.last_accepted_pitch:.2f}")
            state.run_length = max(0, state.run_length - self.jump_penalty)
        else:
            state.run_length = min(state.run_length + 1, self.max_run_length)
            mix = min(self.decay_rate, 1.0 - 1.0 / max(state.run_length, 1))
            state.moving_average_period = state.moving_average_period * mix + (1.0 / pitch) * (1.0 - mix)
            state.moving_average_amplitude = state.moving_average_amplitude * mix + pitch * (1.0 - mix)
            state.last_accepted_pitch = pitch

        final_pitch = self.final_pitch()
        if self.locked and not was_locked:
            log_event("INFO", "Stability", "Pitch lock acquired", pitch_hz=f"{final_pitch:.2f}")
        elif was_locked and not self.locked:
            log_event("INFO", "Stability", "Pitch lock lost", run_length=state.run_length)
        return final_pitch

    def final_pitch(self) -> float:
        state = self.state
        if state.run_length > 0 and state.moving_average_period > 0.0:
            return 1.0 / state.moving_average_period
        return 0.0
