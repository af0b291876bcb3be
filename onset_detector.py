"""
bpmkey - Onset Detector
Adaptive-threshold peak picking over smoothed spectral flux series.
"""

from dataclasses import dataclass
from typing import Mapping, Sequence

import numpy as np

from config import BANDS, OnsetConfig
from logging_utils import log_event


@dataclass(frozen=True)
class OnsetEvent:
    """A detected onset"""
    time: float       # Milliseconds since session start
    strength: float   # Positive flux difference that crossed the threshold
    band: str         # Which flux band fired


def _smooth(data: np.ndarray, center: float, cfg: OnsetConfig) -> np.ndarray:
    """Symmetric 5-tap smoothing; the two samples at each edge are left as-is."""
    smoothed = data.copy()
    if len(data) > 4:
        smoothed[2:-2] = (
            data[:-4] * cfg.kernel_outer
            + data[1:-3] * cfg.kernel_inner
            + data[2:-2] * center
            + data[3:-1] * cfg.kernel_inner
            + data[4:] * cfg.kernel_outer
        )
    return smoothed


def _adaptive_threshold(diff: np.ndarray, floor: float, cfg: OnsetConfig) -> np.ndarray:
    """Local mean + k * std over a +/- window, computed with running sums, never below *floor*."""
    n = len(diff)
    idx = np.arange(n)
    start = np.maximum(0, idx - cfg.window_size)
    end = np.minimum(n, idx + cfg.window_size + 1)
    count = (end - start).astype(np.float64)

    csum = np.concatenate(([0.0], np.cumsum(diff)))
    csum_sq = np.concatenate(([0.0], np.cumsum(diff * diff)))
    mean = (csum[end] - csum[start]) / count
    var = np.maximum((csum_sq[end] - csum_sq[start]) / count - mean * mean, 0.0)
    std = np.sqrt(var)
    std[std <= 1e-12] = 1.0
    return np.maximum(mean + cfg.threshold_k * std, floor)


def detect_band_onsets(series: Sequence[float], band: str, tick_ms: float,
                       center: float, cfg: OnsetConfig) -> list[OnsetEvent]:
    """Onsets for a single flux band, honouring the per-band minimum interval."""
    data = np.nan_to_num(np.asarray(series, dtype=np.float64), nan=0.0, posinf=0.0, neginf=0.0)
    if len(data) < 2:
        return []

    smoothed = _smooth(data, center, cfg)
    diff = np.zeros_like(smoothed)
    diff[1:] = np.maximum(np.diff(smoothed), 0.0)
    # A rise must clear a share of the band's mean level as well as the absolute floor
    floor = max(cfg.min_threshold, cfg.relative_floor * float(np.mean(np.abs(data))))
    thresholds = _adaptive_threshold(diff, floor, cfg)

    events: list[OnsetEvent] = []
    last_onset = -float(cfg.min_interval_ms)
    for i in np.flatnonzero(diff > thresholds):
        time_ms = float(i) * tick_ms
        if time_ms - last_onset >= cfg.min_interval_ms:
            events.append(OnsetEvent(time=time_ms, strength=float(diff[i]), band=band))
            last_onset = time_ms
    return events


def merge_onsets(events: Sequence[OnsetEvent], merge_window_ms: float) -> list[OnsetEvent]:
    """Time-sort pooled onsets and collapse entries within *merge_window_ms*, keeping the earliest."""
    merged: list[OnsetEvent] = []
    for event in sorted(events, key=lambda e: e.time):
        if merged and event.time - merged[-1].time <= merge_window_ms:
            continue
        merged.append(event)
    return merged


def detect_onset_events(flux_series: Mapping[str, Sequence[float]], tick_ms: float,
                        primary_band: str, cfg: OnsetConfig) -> list[OnsetEvent]:
    """Detect onsets on every band, then pool and deduplicate them."""
    if not isinstance(flux_series, Mapping) or any(band not in flux_series for band in BANDS):
        log_event("WARNING", "Onset", "Flux history missing or malformed")
        return []

    pooled: list[OnsetEvent] = []
    for band in BANDS:
        try:
            series = flux_series[band]
            if series is None or len(series) == 0:
                continue
            center = cfg.center_weight_primary if band == primary_band else cfg.center_weight_default
            pooled.extend(detect_band_onsets(series, band, tick_ms, center, cfg))
        except (TypeError, ValueError) as e:
            log_event("WARNING", "Onset", "Skipping unreadable flux band", band=band, error=e)
    return merge_onsets(pooled, cfg.merge_window_ms)


def detect_onsets(flux_series: Mapping[str, Sequence[float]], tick_ms: float,
                  primary_band: str, cfg: OnsetConfig) -> list[float]:
    """Ascending onset times (ms) pooled across all bands."""
    return [event.time for event in detect_onset_events(flux_series, tick_ms, primary_band, cfg)]
