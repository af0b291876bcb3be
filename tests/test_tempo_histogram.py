import unittest

import numpy as np

from config import TempoConfig
from tempo_histogram import (
    estimate_bpm_from_onsets,
    histogram_winner,
    octave_matches,
    onset_intervals,
    resolve_octave,
)


def onsets_from_intervals(intervals) -> list[float]:
    return [0.0] + list(np.cumsum(intervals))


class TestTempoHistogram(unittest.TestCase):
    def setUp(self):
        self.cfg = TempoConfig()

    def test_requires_ten_onsets(self):
        onsets = [i * 500.0 for i in range(9)]
        self.assertIsNone(estimate_bpm_from_onsets(onsets, 'combined', self.cfg))
        self.assertIsNone(estimate_bpm_from_onsets(None, 'combined', self.cfg))
        self.assertIsNone(estimate_bpm_from_onsets([], 'combined', self.cfg))

    def test_steady_click_gives_its_tempo(self):
        onsets = [i * 500.0 for i in range(20)]
        candidate = estimate_bpm_from_onsets(onsets, 'combined', self.cfg)
        self.assertIsNotNone(candidate)
        self.assertEqual(candidate.bpm, 120.0)

    def test_double_tempo_winner_is_corrected_to_half(self):
        # Naive winner 120 (popular-range boost) but every interval fits 60
        onsets = onsets_from_intervals([500.0, 500.0, 1000.0, 2000.0] * 3)
        intervals = onset_intervals(onsets)
        self.assertEqual(histogram_winner(intervals, 'combined', self.cfg).bpm, 120.0)

        candidate = estimate_bpm_from_onsets(onsets, 'combined', self.cfg)
        self.assertEqual(candidate.bpm, 60.0)

    def test_half_tempo_winner_is_corrected_to_double(self):
        # Naive winner 80 but 160 explains more intervals
        onsets = onsets_from_intervals([750.0, 750.0, 375.0, 187.5, 187.5] * 3)
        intervals = onset_intervals(onsets)
        self.assertEqual(histogram_winner(intervals, 'combined', self.cfg).bpm, 80.0)

        candidate = estimate_bpm_from_onsets(onsets, 'combined', self.cfg)
        self.assertEqual(candidate.bpm, 160.0)

    def test_octave_tie_keeps_histogram_winner(self):
        intervals = np.full(12, 500.0)
        self.assertEqual(resolve_octave(120.0, intervals, self.cfg), 120.0)

    def test_out_of_range_intervals_are_ignored(self):
        self.assertIsNone(histogram_winner(np.array([100.0, 2000.0, 0.0, -5.0]), 'mid', self.cfg))

    def test_popular_range_boost_outvotes_raw_count(self):
        # 4 votes at 150 BPM (400 ms) vs 2 votes at 120 BPM boosted x2.5
        intervals = np.array([400.0] * 4 + [500.0] * 2)
        self.assertEqual(histogram_winner(intervals, 'low', self.cfg).bpm, 120.0)

    def test_mid_band_boost_breaks_near_tie(self):
        # 90 BPM and 120 BPM both popular; the mid-band boost favours 100-140
        intervals = np.array([666.6667] * 3 + [500.0] * 3)
        self.assertEqual(histogram_winner(intervals, 'mid', self.cfg).bpm, 120.0)
        self.assertEqual(histogram_winner(intervals, 'low', self.cfg).bpm, 90.0)

    def test_octave_matches_counts_half_and_double(self):
        intervals = np.array([500.0, 250.0, 1000.0, 700.0])
        self.assertEqual(octave_matches(120.0, intervals, 0.01), 3)
        self.assertEqual(octave_matches(float('nan'), intervals, 0.01), 0)


if __name__ == "__main__":
    unittest.main()
