"""
bpmkey - Tempo Histogram
Weighted inter-onset-interval voting with half/double tempo correction.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from config import TempoConfig
from logging_utils import log_event


@dataclass(frozen=True)
class TempoCandidate:
    """A tempo hypothesis for one tick's decision"""
    bpm: float
    score: float


def onset_intervals(onsets: Sequence[float]) -> np.ndarray:
    """Successive differences of the onset times (ms)."""
    times = np.asarray(onsets, dtype=np.float64)
    if len(times) < 2:
        return np.zeros(0)
    return np.diff(times)


def octave_matches(bpm: float, intervals: np.ndarray, tolerance: float) -> int:
    """Count intervals within *tolerance* of the beat period, its half or its double."""
    if not np.isfinite(bpm) or bpm <= 0 or len(intervals) == 0:
        return 0
    expected = 60000.0 / bpm
    ratio = intervals / expected
    error = np.minimum(np.abs(ratio - 1.0), np.minimum(np.abs(ratio - 0.5), np.abs(ratio - 2.0)))
    return int(np.count_nonzero(error < tolerance))


def _vote_weight(bpm: float, primary_band: str, cfg: TempoConfig) -> float:
    weight = 1.0
    if cfg.popular_low_bpm <= bpm <= cfg.popular_high_bpm:
        weight *= cfg.popular_boost
    if primary_band == 'mid' and cfg.mid_band_low_bpm <= bpm <= cfg.mid_band_high_bpm:
        weight *= cfg.mid_band_boost
    return weight


def histogram_winner(intervals: np.ndarray, primary_band: str,
                     cfg: TempoConfig) -> Optional[TempoCandidate]:
    """Bucket instantaneous BPMs and return the bucket with the highest weighted vote."""
    valid = intervals[np.isfinite(intervals) & (intervals > 0)]
    if len(valid) == 0:
        return None
    bpms = 60000.0 / valid
    bpms = bpms[(bpms >= cfg.min_bpm) & (bpms <= cfg.max_bpm)]
    if len(bpms) == 0:
        return None

    buckets = np.round(bpms / cfg.resolution_bpm) * cfg.resolution_bpm
    values, counts = np.unique(buckets, return_counts=True)

    best: Optional[TempoCandidate] = None
    for bpm, count in zip(values, counts):
        score = float(count) * _vote_weight(float(bpm), primary_band, cfg)
        if best is None or score > best.score:
            best = TempoCandidate(bpm=float(bpm), score=score)
    return best


def resolve_octave(bpm: float, intervals: np.ndarray, cfg: TempoConfig) -> float:
    """Pick among bpm, 2x bpm and bpm/2 the one most intervals agree with."""
    candidates = [c for c in (bpm, bpm * 2.0, bpm / 2.0) if cfg.min_bpm <= c <= cfg.max_bpm]
    best_bpm = bpm
    best_score = 0
    for candidate in candidates:
        score = octave_matches(candidate, intervals, cfg.octave_tolerance)
        if score > best_score:
            best_score = score
            best_bpm = candidate
    return best_bpm


def estimate_bpm_from_onsets(onsets: Sequence[float], primary_band: str,
                             cfg: TempoConfig) -> Optional[TempoCandidate]:
    """Histogram tempo estimate, or None when there are too few onsets."""
    if onsets is None or len(onsets) < cfg.min_onsets:
        return None

    intervals = onset_intervals(onsets)
    winner = histogram_winner(intervals, primary_band, cfg)
    if winner is None:
        return None

    bpm = resolve_octave(winner.bpm, intervals, cfg)
    if bpm != winner.bpm:
        log_event("DEBUG", "Tempo", "Octave corrected",
                  histogram=winner.bpm, corrected=bpm)
    return TempoCandidate(bpm=bpm, score=winner.score)
