import unittest

import numpy as np

from autocorrelation import amplitude_envelope, autocorrelate
from config import AutocorrConfig


class TestAutocorrelation(unittest.TestCase):
    def setUp(self):
        self.cfg = AutocorrConfig()

    def test_pulse_train_tempo(self):
        # 20 samples/s, one pulse every 10 samples = 2 beats/s = 120 BPM
        data = np.zeros(200)
        data[::10] = 1.0
        bpm = autocorrelate(data, 20.0, self.cfg)
        self.assertIsNotNone(bpm)
        self.assertAlmostEqual(bpm, 120.0, delta=2.0)

    def test_slower_pulse_train_tempo(self):
        data = np.zeros(300)
        data[::15] = 1.0
        bpm = autocorrelate(data, 20.0, self.cfg)
        self.assertAlmostEqual(bpm, 80.0, delta=2.0)

    def test_silence_is_rejected(self):
        self.assertIsNone(autocorrelate(np.zeros(200), 20.0, self.cfg))
        self.assertIsNone(autocorrelate(np.full(200, 0.5), 20.0, self.cfg))

    def test_near_silence_is_rejected(self):
        rng = np.random.default_rng(0)
        self.assertIsNone(autocorrelate(rng.normal(0.0, 0.001, 200), 20.0, self.cfg))

    def test_envelope_floor_overrides_sample_floor(self):
        # Quiet per-tick RMS envelope: 2 beats/s at 20 ticks/s
        envelope = np.full(200, 0.002)
        envelope[::10] = 0.02
        self.assertIsNone(autocorrelate(envelope, 20.0, self.cfg))
        bpm = autocorrelate(envelope, 20.0, self.cfg, min_std=self.cfg.envelope_min_std)
        self.assertAlmostEqual(bpm, 120.0, delta=2.0)

    def test_steady_envelope_is_rejected(self):
        rng = np.random.default_rng(1)
        t = np.arange(200)
        steady = 0.3 + 0.005 * np.sin(2.0 * np.pi * t / 9.0) + rng.normal(0.0, 0.002, 200)
        self.assertIsNone(autocorrelate(steady, 20.0, self.cfg, min_std=self.cfg.envelope_min_std,
                                        min_variation=self.cfg.envelope_min_variation))

        pulsing = 0.3 * (1.0 + 0.3 * np.sin(2.0 * np.pi * t / 9.0))
        bpm = autocorrelate(pulsing, 20.0, self.cfg, min_std=self.cfg.envelope_min_std,
                            min_variation=self.cfg.envelope_min_variation)
        self.assertAlmostEqual(bpm, 133.3, delta=2.0)

    def test_short_or_invalid_buffers(self):
        self.assertIsNone(autocorrelate([], 20.0, self.cfg))
        self.assertIsNone(autocorrelate([1.0, 0.0], 20.0, self.cfg))
        self.assertIsNone(autocorrelate(np.ones(50), 0.0, self.cfg))
        # Shorter than the fastest tempo lag
        self.assertIsNone(autocorrelate([0.0, 1.0, 0.0, 1.0], 20.0, self.cfg))

    def test_non_finite_samples_are_ignored(self):
        data = np.zeros(200)
        data[::10] = 1.0
        data[3] = np.nan
        data[7] = np.inf
        bpm = autocorrelate(data, 20.0, self.cfg)
        self.assertAlmostEqual(bpm, 120.0, delta=2.0)

    def test_amplitude_envelope_is_rms(self):
        frames = [np.array([0.5, -0.5, 0.5, -0.5]), np.zeros(4), [], [np.nan, 1.0]]
        envelope = amplitude_envelope(frames)
        np.testing.assert_allclose(envelope, [0.5, 0.0, 0.0, np.sqrt(0.5)])


if __name__ == "__main__":
    unittest.main()
