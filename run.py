#!/usr/bin/env python3
"""
pepmonitor - PEP expiratory pitch monitor

Listens to the microphone (or replays a WAV recording), estimates the
oscillation pitch produced on a PEP device and converts it to an estimated
back-pressure in cmH2O.
"""

import argparse
import cProfile
import sys
import time

import numpy as np

from audio_capture import MicrophoneCapture, list_input_devices, to_mono
from config import CALIBRATION_PRESETS, Config, PressureCalibrationConfig
from config_persistence import load_config
from exceptions import PepMonitorError
from logging_utils import log_event, set_log_level
from pitch_session import PitchReading, PitchSession


def report_reading(reading: PitchReading) -> None:
    if reading.locked:
        log_event("INFO", "Session", "Reading",
                  t=f"{reading.timestamp_s:.2f}",
                  pitch_hz=f"{reading.pitch_hz:.2f}",
                  pressure_cmh2o=f"{reading.pressure_cmh2o:.1f}",
                  zone=reading.zone.name)
    else:
        log_event("DEBUG", "Session", "No lock",
                  t=f"{reading.timestamp_s:.2f}", run_length=reading.run_length,
                  raw_hz=f"{reading.raw_pitch_hz:.2f}")


def wav_to_float(data: np.ndarray) -> np.ndarray:
    """Scale integer PCM to [-1, 1); float data passes through."""
    if data.dtype == np.uint8:
        return (data.astype(np.float64) - 128.0) / 128.0
    if np.issubdtype(data.dtype, np.integer):
        return data.astype(np.float64) / float(np.iinfo(data.dtype).max + 1)
    return data.astype(np.float64)


def use_file_rate(config: Config, rate: int) -> None:
    """Switch to the file's sample rate, keeping the chunk duration."""
    chunk_s = config.audio.chunk_size / config.audio.sample_rate
    config.audio.sample_rate = rate
    config.audio.chunk_size = max(1, int(round(chunk_s * rate)))


def replay_wav(config: Config, path: str) -> int:
    """Run a recording through a session chunk by chunk, timestamped from the file start."""
    from scipy.io import wavfile

    try:
        rate, data = wavfile.read(path)
    except (OSError, ValueError) as e:
        log_event("ERROR", "Capture", "Could not read WAV file", path=path, error=e)
        return 1

    use_file_rate(config, int(rate))
    session = PitchSession(config)
    samples = to_mono(wav_to_float(data))
    chunk_size = config.audio.chunk_size
    log_event("INFO", "Capture", "Replaying", path=path, sample_rate=rate,
              seconds=f"{len(samples) / rate:.1f}")

    for start in range(0, len(samples) - chunk_size + 1, chunk_size):
        reading = session.process_chunk(samples[start:start + chunk_size], timestamp=start / rate)
        report_reading(reading)

    session.log_summary()
    return 0


def run_live(config: Config, seconds: float | None) -> int:
    session = PitchSession(config)
    capture = MicrophoneCapture(session, config, on_reading=report_reading)
    if not capture.start():
        return 1

    try:
        if seconds is not None:
            time.sleep(max(0.0, seconds))
        else:
            while True:
                time.sleep(0.5)
    except KeyboardInterrupt:
        log_event("INFO", "Capture", "Interrupted")
    finally:
        capture.stop()
    return 0


def run_monitor(config: Config, args: argparse.Namespace) -> int:
    try:
        if args.replay:
            return replay_wav(config, args.replay)
        return run_live(config, args.seconds)
    except PepMonitorError as e:
        log_event("ERROR", "Session", "Cannot run", error=e, code=e.error_code)
        return 2


def print_input_devices() -> int:
    print("Available input devices:\n")
    for device in list_input_devices():
        print(f"[{device['index']}] {device['name']}")
        print(f"    Input: {device['channels']} channels, Default SR: {device['default_samplerate']} Hz")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Run pepmonitor")
    parser.add_argument(
        "--list-devices",
        action="store_true",
        help="List audio input devices and exit",
    )
    parser.add_argument(
        "--device",
        type=int,
        default=None,
        help="Input device index (default: system default input)",
    )
    parser.add_argument(
        "--seconds",
        type=float,
        default=None,
        help="Stop live capture after this many seconds (default: run until Ctrl+C)",
    )
    parser.add_argument(
        "--replay",
        default=None,
        metavar="WAV",
        help="Process a WAV recording instead of the microphone",
    )
    parser.add_argument(
        "--calibration",
        choices=sorted(CALIBRATION_PRESETS),
        default=None,
        help="Pitch -> pressure calibration preset (default: from config)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="DEBUG/INFO/WARNING/ERROR (default: from config)",
    )
    parser.add_argument(
        "--profile",
        action="store_true",
        help="Enable cProfile and save stats to --profile-out",
    )
    parser.add_argument(
        "--profile-out",
        default="profile.prof",
        help="Path to save cProfile stats (default: profile.prof)",
    )
    args = parser.parse_args()

    config = load_config()
    set_log_level(args.log_level or config.log_level)
    if args.calibration:
        config.pressure = PressureCalibrationConfig.from_preset(args.calibration)
    if args.device is not None:
        config.audio.device_index = args.device

    if args.list_devices:
        sys.exit(print_input_devices())

    if args.profile:
        profiler = cProfile.Profile()
        profiler.enable()
        exit_code = run_monitor(config, args)
        profiler.disable()
        profiler.dump_stats(args.profile_out)
    else:
        exit_code = run_monitor(config, args)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
