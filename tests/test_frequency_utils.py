import unittest

import numpy as np

from frequency_utils import bin_frequencies, extract_dominant_freq, pitch_class


class TestFrequencyUtils(unittest.TestCase):
    def test_extract_dominant_freq_basic_peak(self):
        # sample_rate=1000, fft_size=20 => freq_per_bin=50Hz
        spectrum = np.zeros(10)
        spectrum[4] = 10.0

        freq = extract_dominant_freq(spectrum, sample_rate=1000, fft_size=20,
                                     freq_low=100.0, freq_high=300.0)
        self.assertAlmostEqual(freq, 200.0, places=6)

    def test_extract_dominant_freq_empty_or_none(self):
        self.assertEqual(extract_dominant_freq(None, 1000, 20, 10.0, 200.0), 0.0)
        self.assertEqual(extract_dominant_freq(np.array([]), 1000, 20, 10.0, 200.0), 0.0)

    def test_extract_dominant_freq_invalid_band(self):
        spectrum = np.ones(10)
        freq = extract_dominant_freq(spectrum, sample_rate=1000, fft_size=20,
                                     freq_low=400.0, freq_high=200.0)
        self.assertEqual(freq, 0.0)

    def test_bin_frequencies_resolution(self):
        freqs = bin_frequencies(4, sample_rate=44100, fft_size=2048)
        np.testing.assert_allclose(freqs, [0.0, 21.533203125, 43.06640625, 64.599609375])
        self.assertEqual(len(bin_frequencies(0, 44100, 2048)), 0)

    def test_pitch_class_reference_notes(self):
        # A4, C4 (261.63 Hz), E5 (659.26 Hz), A2
        classes = pitch_class(np.array([440.0, 261.63, 659.26, 110.0]))
        self.assertEqual(classes.tolist(), [9, 0, 4, 9])


if __name__ == "__main__":
    unittest.main()
