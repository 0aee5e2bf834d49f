# pepmonitor Configuration
# All default values and constants

from dataclasses import dataclass, field, is_dataclass
from enum import IntEnum

from exceptions import ConfigError
from logging_utils import log_event


CURRENT_CONFIG_VERSION = 1


class PressureZone(IntEnum):
    """Where an estimated pressure sits relative to the therapy band"""
    NONE = 0       # No reading (no pitch lock or pitch outside the mapped range)
    TARGET = 1     # Inside the prescribed band
    OUTSIDE = 2    # Reading present but outside the band


# Two coefficient sets exist for the pitch -> pressure line. Neither is
# confirmed as authoritative, so both are selectable by name.
CALIBRATION_PRESETS: dict[str, tuple[float, float]] = {
    "figure4_regression": (0.68, -1.2),   # Regression read off the published pitch/pressure scatter
    "initial_estimate": (0.6, 4.0),       # Earlier hand estimate of the same relationship
}
DEFAULT_CALIBRATION = "figure4_regression"


@dataclass
class AudioConfig:
    """Audio capture settings"""
    sample_rate: int = 44100
    # One chunk must hold more than sample_rate / min_freq samples (4455 at defaults)
    # before the 10 Hz lag fits; 0.25 s blocks leave room for ~2.5 periods.
    chunk_size: int = 11025
    channels: int = 1
    device_index: int | None = None   # None means use system default


@dataclass
class PreprocessConfig:
    """Energy-envelope conditioning"""
    lower_formant_freq: float = 250.0   # Baseline window = sample_rate / this (176 samples)
    downsample_factor: int = 45         # Block-average factor (44100 -> 980 Hz)
    sigma_scale: float = 0.2            # Gaussian sigma = scale * factor * max_freq / sample_rate
    sigma_fine_tune: float = 1.1        # Extra multiplier on sigma


@dataclass
class PitchConfig:
    """Autocorrelation pitch search"""
    min_freq: float = 10.0            # Lowest expiratory pitch (Hz)
    max_freq: float = 40.0            # Highest expiratory pitch (Hz)
    min_correlation: float = 0.6      # Normalized ACF must exceed this to accept
    search_window_radius: int = 10    # +/- lags around the last accepted lag
    coarse_divisions: int = 20        # Coarse stride = window length / this


@dataclass
class StabilityConfig:
    """Run-length lock and moving averages"""
    decay_rate: float = 0.8           # Upper bound on the EMA mix factor
    max_run_length: int = 5           # Run length at which pitch counts as locked
    min_pitch_ratio: float = 0.5      # new/previous below this is an implausible jump
    max_pitch_ratio: float = 2.0      # new/previous above this is an implausible jump
    jump_penalty: int = 2             # Run-length decrement for an implausible jump


@dataclass
class PressureCalibrationConfig:
    """Linear pitch -> pressure calibration (cmH2O = slope * Hz + intercept)"""
    name: str = DEFAULT_CALIBRATION
    slope: float = CALIBRATION_PRESETS[DEFAULT_CALIBRATION][0]
    intercept: float = CALIBRATION_PRESETS[DEFAULT_CALIBRATION][1]

    @classmethod
    def from_preset(cls, name: str) -> "PressureCalibrationConfig":
        try:
            slope, intercept = CALIBRATION_PRESETS[name]
        except KeyError:
            raise ConfigError("pressure.name", name, f"unknown preset, expected one of {sorted(CALIBRATION_PRESETS)}") from None
        return cls(name=name, slope=slope, intercept=intercept)


@dataclass
class PressureZoneConfig:
    """Therapy band shown to the patient"""
    target_min: float = 10.0          # cmH2O
    target_max: float = 20.0          # cmH2O


@dataclass
class RegistrationConfig:
    """Audio-energy / pressure-sensor time registration"""
    max_history_s: float = 30.0       # Keep this much history per signal
    min_history_points: int = 100     # Both histories must exceed this before searching
    search_range_s: float = 5.0       # Offsets searched in [-range, +range]
    search_step_s: float = 0.01       # 10 ms offset grid
    match_tolerance_s: float = 0.1    # Nearest pressure point must be closer than this
    min_score: float = 0.3            # Winning score must exceed this to replace the offset
    search_interval_s: float = 0.0    # Min pressure-time between searches (0 = every insert)


@dataclass
class PerformanceConfig:
    """Throughput accounting"""
    max_processing_ratio: float = 0.05   # Processing seconds per audio second
    report_every_audio_s: float = 20.0   # Log a throughput line after this much audio


@dataclass
class Config:
    """Master configuration"""
    version: int = 1                  # Schema version for persisted configs
    audio: AudioConfig = field(default_factory=AudioConfig)
    preprocess: PreprocessConfig = field(default_factory=PreprocessConfig)
    pitch: PitchConfig = field(default_factory=PitchConfig)
    stability: StabilityConfig = field(default_factory=StabilityConfig)
    pressure: PressureCalibrationConfig = field(default_factory=PressureCalibrationConfig)
    zones: PressureZoneConfig = field(default_factory=PressureZoneConfig)
    registration: RegistrationConfig = field(default_factory=RegistrationConfig)
    performance: PerformanceConfig = field(default_factory=PerformanceConfig)

    log_level: str = "INFO"           # Logging level (DEBUG/INFO/WARNING/ERROR)

    @property
    def downsampled_rate(self) -> float:
        return self.audio.sample_rate / self.preprocess.downsample_factor

    def validate(self) -> None:
        """Raise ConfigError for values that make estimation impossible."""
        if self.audio.sample_rate <= 0:
            raise ConfigError("audio.sample_rate", self.audio.sample_rate, "must be positive")
        if self.preprocess.downsample_factor < 1:
            raise ConfigError("preprocess.downsample_factor", self.preprocess.downsample_factor, "must be >= 1")
        if self.preprocess.lower_formant_freq <= 0:
            raise ConfigError("preprocess.lower_formant_freq", self.preprocess.lower_formant_freq, "must be positive")
        if not 0 < self.pitch.min_freq < self.pitch.max_freq:
            raise ConfigError("pitch.min_freq", self.pitch.min_freq, "must satisfy 0 < min_freq < max_freq")
        if int(self.downsampled_rate / self.pitch.max_freq) < 1:
            raise ConfigError("pitch.max_freq", self.pitch.max_freq, "shortest lag rounds to zero samples")
        if not 0.0 < self.stability.decay_rate < 1.0:
            raise ConfigError("stability.decay_rate", self.stability.decay_rate, "must be in (0, 1)")
        if self.stability.max_run_length < 1:
            raise ConfigError("stability.max_run_length", self.stability.max_run_length, "must be >= 1")
        if self.registration.search_step_s <= 0:
            raise ConfigError("registration.search_step_s", self.registration.search_step_s, "must be positive")
        if self.registration.max_history_s <= 0:
            raise ConfigError("registration.max_history_s", self.registration.max_history_s, "must be positive")


def apply_dict_to_dataclass(target, data) -> None:
    """Recursively apply values from a dict onto a dataclass instance.
    Unknown keys are ignored; nested sections are merged, not replaced."""
    if not isinstance(data, dict):
        return

    for key, value in data.items():
        if not hasattr(target, key):
            continue

        current = getattr(target, key)

        if is_dataclass(current) and isinstance(value, dict):
            apply_dict_to_dataclass(current, value)
            continue

        setattr(target, key, value)


def _clamped_float(value, default: float, low: float, high: float) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        value = default
    return max(low, min(high, value))


def migrate_config(config: Config, loaded_version) -> None:
    """Upgrade older config structures to the current schema.
    Replaces missing values with defaults, clamps ranges and bumps version."""
    try:
        version = int(loaded_version) if loaded_version is not None else 0
    except (TypeError, ValueError):
        version = 0

    defaults = PressureCalibrationConfig()
    if getattr(config.pressure, 'slope', None) is None:
        config.pressure.slope = defaults.slope
    if getattr(config.pressure, 'intercept', None) is None:
        config.pressure.intercept = defaults.intercept
    if getattr(config.registration, 'search_interval_s', None) is None:
        config.registration.search_interval_s = 0.0
    if getattr(config, 'log_level', None) is None:
        config.log_level = "INFO"

    if version < 1:
        # Pre-v1 files stored only slope/intercept; recover the preset name from the pair
        pair = (config.pressure.slope, config.pressure.intercept)
        match = [name for name, preset in CALIBRATION_PRESETS.items() if preset == pair]
        config.pressure.name = match[0] if match else "custom"

    config.pitch.min_correlation = _clamped_float(config.pitch.min_correlation, 0.6, 0.0, 1.0)
    config.stability.decay_rate = _clamped_float(config.stability.decay_rate, 0.8, 0.01, 0.99)
    config.registration.min_score = _clamped_float(config.registration.min_score, 0.3, 0.0, 1e9)

    config.version = CURRENT_CONFIG_VERSION
