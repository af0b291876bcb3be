"""
bpmkey - Autocorrelation Tempo
Tempo estimate taken directly from a time-domain buffer, independent of onsets.
"""

from typing import Optional, Sequence

import numpy as np

from config import AutocorrConfig
from logging_utils import log_event


def amplitude_envelope(frames: Sequence[Sequence[float]]) -> np.ndarray:
    """RMS level of each time-domain frame, one sample per frame."""
    levels = []
    for frame in frames:
        data = np.asarray(frame, dtype=np.float64)
        if data.size == 0:
            levels.append(0.0)
            continue
        data = np.nan_to_num(data, nan=0.0, posinf=0.0, neginf=0.0)
        levels.append(float(np.sqrt(np.mean(data ** 2))))
    return np.asarray(levels, dtype=np.float64)


def autocorrelate(data: Sequence[float], sample_rate: float, cfg: AutocorrConfig,
                  min_std: Optional[float] = None,
                  min_variation: Optional[float] = None) -> Optional[float]:
    """Estimate BPM from the strongest autocorrelation lag of *data*.

    *sample_rate* is the rate of *data* in samples per second.  Returns None
    when the buffer is too weak or no lag clears the dynamic threshold.
    *min_std* overrides the configured level floor; with *min_variation* the
    buffer must also vary by at least that share of its mean (envelopes of
    steady tones or noise do not).
    """
    signal = np.nan_to_num(np.asarray(data, dtype=np.float64), nan=0.0, posinf=0.0, neginf=0.0)
    n = len(signal)
    if n < 3 or sample_rate <= 0:
        return None

    std = float(np.std(signal))
    floor = cfg.min_std if min_std is None else min_std
    if std < floor:
        log_event("DEBUG", "ACF", "Signal too weak", std=std, length=n)
        return None
    if min_variation is not None:
        mean = float(np.mean(np.abs(signal)))
        if mean > 0 and std / mean < min_variation:
            log_event("DEBUG", "ACF", "Signal too steady", variation=std / mean, length=n)
            return None

    # Zero mean / unit variance, Hann window, then 3-point moving average
    normalized = (signal - np.mean(signal)) / std
    windowed = normalized * np.hanning(n)
    filtered = windowed.copy()
    filtered[1:-1] = (windowed[:-2] + windowed[1:-1] + windowed[2:]) / 3.0

    # Autocorrelation via FFT, normalised to the zero-lag energy
    n_fft = 1
    while n_fft < 2 * n:
        n_fft *= 2
    spectrum = np.fft.rfft(filtered, n=n_fft)
    acf = np.fft.irfft(spectrum * np.conj(spectrum), n=n_fft)[:n]
    if acf[0] <= 0:
        return None
    acf = acf / acf[0]

    min_lag = max(1, int(np.ceil(sample_rate * 60.0 / cfg.max_bpm)))
    max_lag = min(n - 2, int(np.floor(sample_rate * 60.0 / cfg.min_bpm)))
    if min_lag > max_lag:
        log_event("DEBUG", "ACF", "Buffer shorter than the slowest tempo lag",
                  length=n, min_lag=min_lag)
        return None

    threshold = float(np.clip(std * cfg.threshold_scale, cfg.threshold_min, cfg.threshold_max))
    search = acf[min_lag:max_lag + 1]
    peak_idx = int(np.argmax(search))
    peak_value = float(search[peak_idx])
    if peak_value <= threshold:
        log_event("DEBUG", "ACF", "No lag above threshold",
                  peak=peak_value, threshold=threshold)
        return None

    # Parabolic interpolation for sub-sample precision
    lag = min_lag + peak_idx
    refined_lag = float(lag)
    if 0 < peak_idx < len(search) - 1:
        alpha = float(search[peak_idx - 1])
        beta = float(search[peak_idx])
        gamma = float(search[peak_idx + 1])
        denom = alpha - 2.0 * beta + gamma
        if abs(denom) > 1e-10:
            refined_lag = lag + 0.5 * (alpha - gamma) / denom

    bpm = 60.0 * sample_rate / refined_lag
    if not np.isfinite(bpm) or bpm < cfg.min_bpm or bpm > cfg.max_bpm:
        return None

    bpm = round(bpm, 1)
    log_event("DEBUG", "ACF", "Autocorrelation tempo",
              bpm=bpm, correlation=peak_value, threshold=threshold, lag=refined_lag)
    return bpm
