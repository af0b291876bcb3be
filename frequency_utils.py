import numpy as np


def bin_frequencies(n_bins: int, sample_rate: int, fft_size: int) -> np.ndarray:
    """Centre frequency (Hz) of each of the first *n_bins* FFT bins."""
    if n_bins <= 0 or fft_size <= 0:
        return np.zeros(0)
    return np.arange(n_bins, dtype=np.float64) * (sample_rate / fft_size)


def pitch_class(freq: np.ndarray) -> np.ndarray:
    """Map frequencies (Hz, > 0) to pitch classes 0..11 with C = 0 (A4 = 440 Hz = MIDI 69)."""
    freq = np.asarray(freq, dtype=np.float64)
    midi = np.round(12.0 * np.log2(freq / 440.0) + 69.0).astype(np.int64)
    return np.mod(midi, 12)


def extract_dominant_freq(
    spectrum: np.ndarray | None,
    sample_rate: int,
    fft_size: int,
    freq_low: float,
    freq_high: float,
) -> float:
    """Extract dominant frequency from a specific Hz range of the spectrum."""
    if spectrum is None or len(spectrum) == 0 or fft_size <= 0:
        return 0.0

    freq_per_bin = sample_rate / fft_size
    if freq_per_bin <= 0:
        return 0.0

    low_bin = max(0, int(np.ceil(freq_low / freq_per_bin)))
    high_bin = min(len(spectrum) - 1, int(freq_high / freq_per_bin))
    if low_bin >= high_bin:
        return 0.0

    band = np.asarray(spectrum[low_bin:high_bin + 1], dtype=np.float64)
    peak_bin = low_bin + int(np.argmax(band))
    return peak_bin * freq_per_bin
