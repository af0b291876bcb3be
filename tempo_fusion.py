"""
bpmkey - Tempo Fusion
Merges histogram and autocorrelation candidates, smooths them with a 1-D
Kalman filter and maps the result back to the untransformed track tempo.
"""

import math
from typing import Optional

from config import FusionConfig
from logging_utils import log_event


class KalmanTempoFilter:
    """
    Scalar Kalman filter over successive BPM measurements.

    The first finite measurement initialises the estimate; afterwards each
    measurement is blended in with a gain derived from the tracked variance.
    Non-finite measurements leave the state untouched.
    """
    __slots__ = ('process_noise', 'measurement_noise', 'initial_variance',
                 'estimate', 'variance')

    def __init__(self, process_noise: float = 0.002, measurement_noise: float = 0.3,
                 initial_variance: float = 4.0):
        self.process_noise = process_noise
        self.measurement_noise = measurement_noise
        self.initial_variance = initial_variance
        self.estimate: Optional[float] = None
        self.variance: float = initial_variance

    @classmethod
    def from_config(cls, cfg: FusionConfig) -> "KalmanTempoFilter":
        return cls(cfg.process_noise, cfg.measurement_noise, cfg.initial_variance)

    def update(self, measurement: Optional[float]) -> Optional[float]:
        """Feed one measurement. Returns the current estimate."""
        if measurement is None or not math.isfinite(measurement):
            return self.estimate
        if self.estimate is None:
            self.estimate = float(measurement)
            return self.estimate
        self.variance += self.process_noise
        gain = self.variance / (self.variance + self.measurement_noise)
        self.estimate = self.estimate + gain * (measurement - self.estimate)
        self.variance *= (1.0 - gain)
        return self.estimate

    def reset(self) -> None:
        """Clear all state for a fresh start."""
        self.estimate = None
        self.variance = self.initial_variance


def fuse_candidates(histogram_bpm: Optional[float], histogram_confidence: float,
                    acf_bpm: Optional[float], cfg: FusionConfig,
                    onset_supported: bool = True) -> tuple[Optional[float], float]:
    """Combine the two tempo candidates into (bpm, confidence).

    Without onset support an autocorrelation-only tempo is reported at the
    fallback confidence.
    """
    if histogram_bpm is None or histogram_confidence < cfg.trusted_confidence:
        if acf_bpm is not None and not onset_supported:
            return acf_bpm, cfg.fallback_confidence
        if acf_bpm is not None:
            confidence = cfg.acf_confidence
            for reference in cfg.reference_tempos:
                if abs(acf_bpm - reference) < cfg.reference_window_bpm:
                    confidence = cfg.reference_confidence
                    break
            return acf_bpm, confidence
        return histogram_bpm, cfg.fallback_confidence

    if acf_bpm is not None and abs(histogram_bpm - acf_bpm) < cfg.agreement_bpm:
        # Cross-validated: weighted mean, confidence nudged up
        bpm = histogram_bpm * histogram_confidence + acf_bpm * (1.0 - histogram_confidence)
        return bpm, min(cfg.max_confidence, histogram_confidence * cfg.agreement_boost)

    return histogram_bpm, histogram_confidence


def adjust_bpm(bpm: Optional[float], confidence: float, min_bpm: float = 50.0,
               max_bpm: float = 200.0, halve_below_confidence: float = 0.95) -> Optional[int]:
    """Fold a tempo back into [min_bpm, max_bpm] by octave steps and round it."""
    if bpm is None or not math.isfinite(bpm) or bpm <= 0:
        return None
    adjusted = float(bpm)
    while adjusted > max_bpm and confidence < halve_below_confidence:
        adjusted /= 2.0
    while adjusted < min_bpm:
        adjusted *= 2.0
    return int(round(adjusted))


def pitch_factor(pitch_offset: float, transpose: bool) -> float:
    """Tempo ratio introduced by the playback pitch transform."""
    if not math.isfinite(pitch_offset):
        return 1.0
    if transpose:
        return 2.0 ** (min(max(pitch_offset, -12.0), 12.0) / 12.0)
    return 1.0 + min(max(pitch_offset, -0.5), 0.5)


def back_correct_bpm(bpm: Optional[float], pitch_offset: float = 0.0, transpose: bool = True,
                     playback_rate: float = 1.0) -> Optional[int]:
    """Remove the pitch and playback-rate transforms from a detected tempo."""
    if bpm is None or not math.isfinite(bpm):
        return None
    if not math.isfinite(playback_rate):
        playback_rate = 1.0
    rate = max(0.5, min(playback_rate, 2.0))
    corrected = bpm / pitch_factor(pitch_offset, transpose) / rate
    if corrected != bpm:
        log_event("DEBUG", "Tempo", "Back-corrected tempo",
                  detected=bpm, corrected=corrected, pitch=pitch_offset, rate=rate)
    return int(round(corrected))
