"""
bpmkey - Confidence Scorer
How well onset spacing agrees with a candidate tempo.
"""

import math
from typing import Optional, Sequence

import numpy as np

from config import ConfidenceConfig
from tempo_histogram import octave_matches


def calculate_confidence(bpm: Optional[float], onsets: Sequence[float],
                         cfg: ConfidenceConfig, min_onsets: int = 10,
                         popular_range: tuple[float, float] = (80.0, 140.0)) -> float:
    """Score how well onset spacing agrees with *bpm*, clamped to [floor, ceiling].

    Stability (share of intervals on the beat period, its half or double),
    interval coverage and a flat bonus for popular tempos are blended.
    Too few onsets or an unusable tempo give the floor value.
    """
    if bpm is None or not math.isfinite(bpm) or bpm <= 0:
        return cfg.floor
    if onsets is None or len(onsets) < min_onsets:
        return cfg.floor

    expected = 60000.0 / bpm
    intervals = np.diff(np.asarray(onsets, dtype=np.float64))
    if len(intervals) == 0:
        return cfg.floor

    stability = octave_matches(bpm, intervals, cfg.tolerance) / len(intervals)
    energy_score = min(1.0, float(np.sum(intervals)) / (expected * len(intervals)))
    range_score = cfg.range_bonus if popular_range[0] <= bpm <= popular_range[1] else 0.0

    confidence = (stability * cfg.stability_weight
                  + energy_score * cfg.energy_weight
                  + range_score * cfg.range_weight)
    if not math.isfinite(confidence):
        return cfg.floor
    return min(cfg.ceiling, max(cfg.floor, confidence))
