"""
pepmonitor - Pressure Mapper
Clamped linear pitch -> back-pressure estimate.
"""

from config import Config, PressureZone


class PressureMapper:
    """cmH2O = max(0, slope * pitch + intercept) inside [min_freq, max_freq], else 0."""

    def __init__(self, config: Config):
        self.min_freq = config.pitch.min_freq
        self.max_freq = config.pitch.max_freq
        self.calibration_name = config.pressure.name
        self.slope = config.pressure.slope
        self.intercept = config.pressure.intercept
        self.target_min = config.zones.target_min
        self.target_max = config.zones.target_max

    def map(self, pitch_hz: float) -> float:
        if not self.min_freq <= pitch_hz <= self.max_freq:
            return 0.0
        return max(0.0, self.slope * pitch_hz + self.intercept)

    def classify(self, pressure_cmh2o: float) -> PressureZone:
        """Place a pressure estimate relative to the therapy band."""
        if pressure_cmh2o <= 0.0:
            return PressureZone.NONE
        if self.target_min <= pressure_cmh2o <= self.target_max:
            return PressureZone.TARGET
        return PressureZone.OUTSIDE
