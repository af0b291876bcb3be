"""
bpmkey - WAV Frame Sampler
Plays a WAV file through the analysis engine one tick at a time.
"""

from pathlib import Path
from typing import Optional

import numpy as np
from scipy.io import wavfile

from analysis_session import TickInput
from config import AudioConfig
from logging_utils import log_event


def to_float_mono(data: np.ndarray) -> np.ndarray:
    """Convert integer or float PCM (any channel count) to mono float in [-1, 1]."""
    data = np.asarray(data)
    if np.issubdtype(data.dtype, np.integer):
        if data.dtype == np.uint8:
            samples = (data.astype(np.float64) - 128.0) / 128.0
        else:
            samples = data.astype(np.float64) / float(np.iinfo(data.dtype).max)
    else:
        samples = data.astype(np.float64)
    if samples.ndim > 1:
        samples = samples.mean(axis=1)
    return np.nan_to_num(samples, nan=0.0, posinf=0.0, neginf=0.0)


class WavFrameSampler:
    """
    Frame sampler backed by a WAV file.

    Each ``read_tick()`` advances by one tick interval and returns the
    time-domain window together with its Hann-windowed magnitude spectrum,
    reported as dB above ``floor_db`` (``fft_size // 2`` bins).  Past the end
    of the file the source reports that it is no longer playing.
    """

    def __init__(self, path, audio: AudioConfig, tick_ms: float = 50.0, start_s: float = 0.0,
                 pitch_offset: float = 0.0, transpose: bool = True, playback_rate: float = 1.0):
        self.path = Path(path)
        self.sample_rate, raw = wavfile.read(str(self.path))
        self.samples = to_float_mono(raw)
        self.fft_size = int(audio.fft_size)
        self.floor_db = float(audio.floor_db)
        self.hop = max(1, int(round(self.sample_rate * tick_ms / 1000.0)))
        self.position = max(0, int(round(start_s * self.sample_rate)))
        self.pitch_offset = pitch_offset
        self.transpose = transpose
        self.playback_rate = playback_rate
        self._window = np.hanning(self.fft_size)
        # Full-scale sine peaks at sum(window) / 2 in the magnitude spectrum
        self._reference = float(np.sum(self._window)) / 2.0
        log_event("INFO", "Sampler", "Opened WAV file", path=self.path.name,
                  sample_rate=self.sample_rate, seconds=self.duration_s)

    @property
    def duration_s(self) -> float:
        return len(self.samples) / float(self.sample_rate) if self.sample_rate else 0.0

    def spectrum_db(self, frame: np.ndarray) -> np.ndarray:
        """Magnitude spectrum of *frame* as non-negative dB above the floor."""
        magnitude = np.abs(np.fft.rfft(frame * self._window))[:self.fft_size // 2]
        db = 20.0 * np.log10(np.maximum(magnitude / self._reference, 1e-12))
        return np.maximum(db - self.floor_db, 0.0)

    def read_tick(self) -> Optional[TickInput]:
        end = self.position + self.fft_size
        if end > len(self.samples):
            return TickInput(frequency_frame=np.zeros(self.fft_size // 2), time_frame=np.zeros(0),
                             is_playing=False, position_s=self.position / float(self.sample_rate),
                             duration_s=self.duration_s)

        frame = self.samples[self.position:end]
        tick = TickInput(
            frequency_frame=self.spectrum_db(frame),
            time_frame=frame,
            position_s=self.position / float(self.sample_rate),
            duration_s=self.duration_s,
            pitch_offset=self.pitch_offset,
            transpose=self.transpose,
            playback_rate=self.playback_rate,
        )
        self.position += self.hop
        return tick
