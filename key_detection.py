"""
bpmkey - Key Detection
Chroma profile of recent frequency frames matched against several
major/minor key templates.
"""

import math
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from config import KeyConfig
from frequency_utils import bin_frequencies, extract_dominant_freq, pitch_class
from logging_utils import get_log_level, log_event

NOTE_NAMES = ('C', 'C#', 'D', 'D#', 'E', 'F', 'F#', 'G', 'G#', 'A', 'A#', 'B')


@dataclass(frozen=True)
class KeyTemplate:
    """Expected pitch-class distribution of a key with its tonic at index 0"""
    name: str
    profile: tuple
    is_minor: bool


def _normalized(values) -> tuple:
    total = float(sum(values))
    return tuple(v / total for v in values)


KEY_TEMPLATES = (
    KeyTemplate('krumhansl_major', _normalized(
        [6.35, 2.23, 3.48, 2.33, 4.38, 4.09, 2.52, 5.19, 2.39, 3.66, 2.29, 2.88]), False),
    KeyTemplate('krumhansl_minor', _normalized(
        [6.33, 2.68, 3.52, 5.38, 2.60, 3.53, 2.54, 4.75, 3.98, 2.69, 3.34, 3.17]), True),
    KeyTemplate('temperley_major', _normalized(
        [0.748, 0.060, 0.488, 0.082, 0.670, 0.460, 0.096, 0.715, 0.104, 0.366, 0.057, 0.400]), False),
    KeyTemplate('temperley_minor', _normalized(
        [0.712, 0.084, 0.474, 0.618, 0.049, 0.460, 0.105, 0.747, 0.404, 0.067, 0.133, 0.330]), True),
    KeyTemplate('signature_major', _normalized(
        [1.0, 0.2, 0.8, 0.3, 0.9, 0.6, 0.4, 1.0, 0.3, 0.7, 0.2, 0.6]), False),
    KeyTemplate('signature_minor', _normalized(
        [1.0, 0.2, 0.8, 0.9, 0.3, 0.6, 0.4, 1.0, 0.8, 0.3, 0.6, 0.2]), True),
)


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    denom = float(np.linalg.norm(a) * np.linalg.norm(b))
    if denom <= 0:
        return 0.0
    return float(np.dot(a, b)) / denom


def pearson_correlation(a: np.ndarray, b: np.ndarray) -> float:
    da = a - np.mean(a)
    db = b - np.mean(b)
    denom = math.sqrt(float(np.sum(da * da)) * float(np.sum(db * db)))
    if denom <= 0:
        return 0.0
    return float(np.sum(da * db)) / denom


def linear_magnitude(frames_db: np.ndarray, floor_db: float) -> np.ndarray:
    """dB-above-floor values to linear amplitude (full scale = 1). Bins at the floor are 0."""
    frames_db = np.asarray(frames_db, dtype=np.float64)
    return np.where(frames_db > 0.0, 10.0 ** ((frames_db + floor_db) / 20.0), 0.0)


def build_chroma(frames: Sequence[Sequence[float]], sample_rate: int, fft_size: int,
                 cfg: KeyConfig, floor_db: float = -100.0) -> np.ndarray:
    """Average weighted linear bin magnitudes of *frames* into 12 pitch-class bins.

    Frames hold dB above *floor_db*, as the frame samplers report them.
    """
    chroma = np.zeros(12)
    if len(frames) == 0:
        return chroma
    length = min(len(f) for f in frames)
    if length == 0:
        return chroma
    stack = np.nan_to_num(np.array([np.asarray(f, dtype=np.float64)[:length] for f in frames]),
                          nan=0.0, posinf=0.0, neginf=0.0)
    magnitude = linear_magnitude(np.maximum(stack, 0.0), floor_db).mean(axis=0)
    freqs = bin_frequencies(length, sample_rate, fft_size)

    # Mid-band weight drops when the mid range dominates, to avoid vocal bias
    low = float(np.sum(magnitude[freqs < 200.0]))
    mid = float(np.sum(magnitude[(freqs >= 200.0) & (freqs <= 2000.0)]))
    high = float(np.sum(magnitude[freqs > 2000.0]))
    total = (low + mid + high) or 1.0
    mid_weight = cfg.mid_weight_dominant if mid / total > cfg.mid_dominant_ratio else cfg.mid_weight_default

    usable = (freqs >= max(cfg.min_freq_hz, 1e-6)) & (freqs <= cfg.max_freq_hz)
    if not np.any(usable):
        return chroma
    f = freqs[usable]

    harmonic = np.zeros(len(f), dtype=bool)
    for ref in cfg.harmonic_refs_hz:
        harmonic |= np.mod(f, ref) < cfg.harmonic_tolerance_hz
    weight = (np.where(harmonic, cfg.harmonic_boost, 1.0)
              * np.where((f >= 200.0) & (f <= 2000.0), mid_weight, 1.0)
              * (1.0 - np.abs(f - cfg.taper_center_hz) / cfg.taper_span_hz))

    chroma = np.bincount(pitch_class(f), weights=magnitude[usable] * weight, minlength=12)
    if get_log_level() == "DEBUG":
        log_event("DEBUG", "Key", "Chroma accumulated", frames=len(frames),
                  dominant_hz=extract_dominant_freq(magnitude, sample_rate, fft_size,
                                                    cfg.min_freq_hz, cfg.max_freq_hz))
    return chroma


def smooth_chroma(chroma: np.ndarray, center_weight: float) -> np.ndarray:
    """Blend each pitch class with its two circular neighbours."""
    side = (1.0 - center_weight) / 2.0
    chroma = np.asarray(chroma, dtype=np.float64)
    return chroma * center_weight + np.roll(chroma, 1) * side + np.roll(chroma, -1) * side


def match_key(profile: np.ndarray, primary_band: str = 'mid',
              cfg: Optional[KeyConfig] = None) -> tuple[int, bool, float]:
    """Vote every template at every tonic; returns (tonic index, is_minor, vote)."""
    profile = np.asarray(profile, dtype=np.float64)
    minor_bias = cfg.low_band_minor_bias if cfg is not None and primary_band == 'low' else 1.0
    votes: dict[tuple[int, bool], float] = {}
    for template in KEY_TEMPLATES:
        reference = np.asarray(template.profile)
        for shift in range(12):
            shifted = np.roll(reference, shift)
            score = (cosine_similarity(profile, shifted) + pearson_correlation(profile, shifted)) / 2.0
            if template.is_minor:
                score *= minor_bias
            key = (shift, template.is_minor)
            votes[key] = votes.get(key, 0.0) + score

    best_key = (0, False)
    best_vote = -math.inf
    for key, vote in votes.items():
        if vote > best_vote:
            best_vote = vote
            best_key = key
    return best_key[0], best_key[1], best_vote


def transpose_key_index(index: int, pitch_offset: float, transpose: bool,
                        ratio_shift_scale: float = 0.6) -> int:
    """Shift a tonic index by the pitch transform applied to the audio."""
    if not math.isfinite(pitch_offset) or pitch_offset == 0:
        return index % 12
    if transpose:
        return (index + int(round(pitch_offset))) % 12
    semitones = 12.0 * math.log2(1.0 + min(max(pitch_offset, -0.5), 0.5))
    return (index + int(round(semitones * ratio_shift_scale))) % 12


def key_name(index: int, is_minor: bool) -> str:
    return f"{NOTE_NAMES[index % 12]} {'Minor' if is_minor else 'Major'}"


def classify_chroma(chroma: np.ndarray, cfg: KeyConfig,
                    primary_band: str = 'mid') -> Optional[tuple[int, bool]]:
    """Smooth, gate and match a raw chroma vector. None when the signal is too weak."""
    center = cfg.smoothing_primary_mid if primary_band == 'mid' else cfg.smoothing_default
    smoothed = smooth_chroma(chroma, center)
    peak = float(np.max(smoothed)) if len(smoothed) else 0.0
    if not math.isfinite(peak) or peak < cfg.min_level:
        log_event("DEBUG", "Key", "Chroma signal too weak", peak=peak, band=primary_band)
        return None
    mean = float(np.mean(smoothed))
    if mean > 0 and peak / mean < cfg.min_contrast:
        log_event("DEBUG", "Key", "Chroma has no tonal centre", contrast=peak / mean, band=primary_band)
        return None

    normalized = smoothed / peak
    profile = normalized / (float(np.sum(normalized)) or 1.0)
    index, is_minor, vote = match_key(profile, primary_band, cfg)
    log_event("DEBUG", "Key", "Template vote", tonic=NOTE_NAMES[index],
              minor=is_minor, score=vote / len(KEY_TEMPLATES))
    return index, is_minor


def classify_key(frames: Sequence[Sequence[float]], sample_rate: int, fft_size: int,
                 cfg: KeyConfig, primary_band: str = 'mid', pitch_offset: float = 0.0,
                 transpose: bool = True, floor_db: float = -100.0) -> Optional[str]:
    """Key name such as "A Minor" for the last frames, or None when unresolved."""
    recent = list(frames)[-cfg.history_frames:]
    if len(recent) < cfg.min_frames:
        log_event("DEBUG", "Key", "Not enough frames for key detection",
                  frames=len(recent), required=cfg.min_frames)
        return None

    chroma = build_chroma(recent, sample_rate, fft_size, cfg, floor_db)
    match = classify_chroma(chroma, cfg, primary_band)
    if match is None:
        return None
    index, is_minor = match
    adjusted = transpose_key_index(index, pitch_offset, transpose, cfg.ratio_shift_scale)
    return key_name(adjusted, is_minor)
