"""
bpmkey - Flux Tracker
Turns successive frequency frames into smoothed per-band spectral flux.
"""

from collections import deque
from typing import Optional

import numpy as np

from config import BANDS, FluxConfig
from frequency_utils import bin_frequencies


class FluxTracker:
    """
    Tracks positive spectral change over the lowest sub-band of the spectrum.

    Each frame contributes one smoothed scalar per band (low / mid / high
    thirds of the sub-band, plus their combined total).  Running absolute
    energy per third is kept so the session can later pick a primary band.
    The last ``history_frames`` full frames are kept for key detection.
    """

    def __init__(self, config: FluxConfig, sample_rate: int, fft_size: int,
                 history_frames: int = 100):
        self.config = config
        self.sample_rate = sample_rate
        self.fft_size = fft_size
        self.series: dict[str, list[float]] = {band: [] for band in BANDS}
        self.frames: deque = deque(maxlen=max(1, int(history_frames)))
        self.low_energy = 0.0
        self.mid_energy = 0.0
        self.high_energy = 0.0
        self.frame_count = 0
        self.prev_frame: Optional[np.ndarray] = None
        # Per-bin layout, built on the first frame once the length is known
        self._band_size = 0
        self._freqs: Optional[np.ndarray] = None
        self._low_mask: Optional[np.ndarray] = None
        self._mid_mask: Optional[np.ndarray] = None
        self._high_mask: Optional[np.ndarray] = None

    def reset(self) -> None:
        """Clear all state for a fresh session."""
        for band in BANDS:
            self.series[band].clear()
        self.frames.clear()
        self.low_energy = 0.0
        self.mid_energy = 0.0
        self.high_energy = 0.0
        self.frame_count = 0
        self.prev_frame = None
        self._band_size = 0
        self._freqs = None

    def _build_layout(self, length: int) -> None:
        band_size = max(1, length // max(1, self.config.sub_band_divisor))
        self._band_size = band_size
        self._freqs = bin_frequencies(band_size, self.sample_rate, self.fft_size)
        idx = np.arange(band_size)
        self._low_mask = idx < band_size / 3
        self._mid_mask = (~self._low_mask) & (idx < 2 * band_size / 3)
        self._high_mask = ~(self._low_mask | self._mid_mask)

    @property
    def total_energy(self) -> float:
        return self.low_energy + self.mid_energy + self.high_energy

    def is_bass_heavy(self) -> bool:
        total = self.total_energy or 1.0
        return self.low_energy / total > self.config.bass_heavy_ratio

    def _bin_weights(self) -> np.ndarray:
        cfg = self.config
        freqs = self._freqs
        weights = np.ones_like(freqs)
        weights[(freqs >= cfg.vocal_low_hz) & (freqs <= cfg.vocal_high_hz)] = cfg.vocal_weight
        if self.is_bass_heavy():
            weights[freqs < min(cfg.bass_cutoff_hz, cfg.vocal_low_hz)] = cfg.bass_boost
        return weights

    def update(self, frame) -> float:
        """Feed one frequency frame. Returns the raw combined flux for this frame."""
        current = np.nan_to_num(np.asarray(frame, dtype=np.float64).ravel(), nan=0.0,
                                posinf=0.0, neginf=0.0)
        if current.size == 0:
            # Missing frame: treat as silence of the previous length
            length = len(self.prev_frame) if self.prev_frame is not None else self.config.sub_band_divisor
            current = np.zeros(max(1, length))

        if self._freqs is None or self.prev_frame is None or len(self.prev_frame) != len(current):
            self._build_layout(len(current))
            prev = None
        else:
            prev = self.prev_frame

        sub = current[:self._band_size]
        if prev is None:
            # No previous frame to compare with: zero flux
            diff = np.zeros_like(sub)
        else:
            diff = np.maximum(sub - prev[:self._band_size], 0.0)

        weighted = diff * diff * self._bin_weights()
        raw = {
            'low': float(np.sum(weighted[self._low_mask])),
            'mid': float(np.sum(weighted[self._mid_mask])),
            'high': float(np.sum(weighted[self._high_mask])),
        }
        raw['combined'] = raw['low'] + raw['mid'] + raw['high']

        magnitude = np.abs(sub)
        self.low_energy += float(np.sum(magnitude[self._low_mask]))
        self.mid_energy += float(np.sum(magnitude[self._mid_mask]))
        self.high_energy += float(np.sum(magnitude[self._high_mask]))

        if self.mid_energy > self.low_energy and self.mid_energy > self.high_energy:
            alpha = self.config.alpha_mid_dominant
        else:
            alpha = self.config.alpha_default

        for band in BANDS:
            history = self.series[band]
            previous = history[-1] if history else 0.0
            history.append(float(np.sqrt(raw[band])) * alpha + previous * (1.0 - alpha))

        self.prev_frame = current
        self.frames.append(current)
        self.frame_count += 1
        return raw['combined']

    def band_shares(self) -> dict[str, float]:
        """Fraction of cumulative energy held by each third of the sub-band."""
        total = self.total_energy or 1.0
        return {
            'low': self.low_energy / total,
            'mid': self.mid_energy / total,
            'high': self.high_energy / total,
        }

    def primary_band(self, balanced_mid_ratio: float = 0.4) -> str:
        """Band used for estimation: low when bass-heavy, mid when balanced, else combined."""
        shares = self.band_shares()
        if shares['low'] > self.config.bass_heavy_ratio:
            return 'low'
        if shares['mid'] > balanced_mid_ratio:
            return 'mid'
        return 'combined'
