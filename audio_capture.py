"""
pepmonitor - Audio Capture
Feeds microphone blocks from a sounddevice input stream into a PitchSession.

sounddevice is imported on demand so the estimation modules never require
PortAudio to be installed.
"""

from typing import Callable, Optional

import numpy as np

from config import Config
from exceptions import PepMonitorError
from logging_utils import log_event


def list_input_devices() -> list[dict]:
    """Devices with at least one input channel, as plain dicts."""
    import sounddevice as sd

    devices = []
    for index, device in enumerate(sd.query_devices()):
        if device['max_input_channels'] <= 0:
            continue
        devices.append({
            'index': index,
            'name': device['name'],
            'channels': device['max_input_channels'],
            'default_samplerate': device['default_samplerate'],
        })
    return devices


def to_mono(block: np.ndarray) -> np.ndarray:
    """Average the channels of a (frames, channels) block."""
    block = np.asarray(block)
    if block.ndim == 1:
        return block
    if block.shape[1] > 1:
        return np.mean(block, axis=1)
    return block[:, 0]


class MicrophoneCapture:
    def __init__(self, session, config: Optional[Config] = None,
                 on_reading: Optional[Callable] = None):
        self.session = session
        self.config = config if config is not None else session.config
        self.on_reading = on_reading
        self.stream = None
        self.running = False
        self.skipped_chunks = 0

    def start(self) -> bool:
        """Reset the session, then open and start the input stream.
        Returns False (and stays stopped) on failure."""
        if self.running:
            return True

        # Each recording starts from a clean lock and empty histories
        self.session.reset()
        self.skipped_chunks = 0

        audio = self.config.audio
        try:
            import sounddevice as sd

            self.stream = sd.InputStream(
                samplerate=audio.sample_rate,
                blocksize=audio.chunk_size,
                channels=audio.channels,
                dtype='float32',
                device=audio.device_index,
                callback=self._audio_callback,
            )
            self.running = True
            self.stream.start()
        except Exception as e:
            log_event("ERROR", "Capture", "Failed to start", error=e, device=audio.device_index)
            self.running = False
            self._close_stream()
            return False

        log_event("INFO", "Capture", "Input capture started",
                  device=audio.device_index if audio.device_index is not None else "default",
                  sample_rate=audio.sample_rate, block=audio.chunk_size, channels=audio.channels)
        return True

    def stop(self) -> None:
        """Stop capture and log the session summary."""
        was_running = self.running
        self.running = False
        self._close_stream()
        if was_running:
            self.session.log_summary()
            log_event("INFO", "Capture", "Stopped", skipped_chunks=self.skipped_chunks)

    def _close_stream(self) -> None:
        if self.stream is None:
            return
        stream, self.stream = self.stream, None
        try:
            stream.stop()
        finally:
            stream.close()

    def _audio_callback(self, indata, frames, time_info, status) -> None:
        """sounddevice callback - one block in, one reading out"""
        if status:
            log_event("WARN", "Capture", "Stream status", status=status)
        if not self.running:
            return

        mono = to_mono(indata)
        try:
            reading = self.session.process_chunk(mono, count=frames)
        except PepMonitorError as e:
            # Skip the block, keep the stream alive
            self.skipped_chunks += 1
            log_event("WARN", "Capture", "Chunk skipped", error=e, code=e.error_code)
            return

        if self.on_reading is not None:
            self.on_reading(reading)
