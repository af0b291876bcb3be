import unittest
from unittest import mock

import numpy as np

from analysis_session import (
    ERROR_ADVERTISEMENT,
    ERROR_IN_PROGRESS,
    ERROR_INSUFFICIENT,
    ERROR_INTRO_OUTRO,
    ERROR_STOPPED,
    UNKNOWN_KEY,
    AnalysisResult,
    AnalysisSession,
    SessionState,
    TickInput,
)
from config import Config

SAMPLE_RATE = 44100
FFT_SIZE = 2048
BURST = 0.5 * np.sin(2.0 * np.pi * np.arange(256) / 16.0)


def click_tick(i: int, ticks_per_beat: int = 10, **kwargs) -> TickInput:
    """Click track: full-level low bins and a time-domain burst on every beat tick."""
    freq = np.zeros(FFT_SIZE // 2)
    samples = np.zeros(256)
    if i % ticks_per_beat == 0:
        freq[:128] = 60.0
        samples = BURST
    return TickInput(frequency_frame=freq, time_frame=samples, **kwargs)


def silent_tick(i: int, **kwargs) -> TickInput:
    return TickInput(frequency_frame=np.zeros(FFT_SIZE // 2), time_frame=np.zeros(256), **kwargs)


def run_session(session: AnalysisSession, make_tick, limit: int = 1000) -> AnalysisResult:
    for i in range(limit):
        result = session.step(make_tick(i))
        if result is not None:
            return result
    raise AssertionError("session did not finish")


class TestAnalysisSession(unittest.TestCase):
    def setUp(self):
        self.config = Config()

    def new_session(self, **kwargs) -> AnalysisSession:
        return AnalysisSession(self.config, SAMPLE_RATE, FFT_SIZE, **kwargs)

    def test_click_track_tempo(self):
        result = run_session(self.new_session(), click_tick)

        self.assertIsNone(result.error)
        self.assertIsNotNone(result.bpm)
        self.assertAlmostEqual(result.bpm, 120, delta=2)
        self.assertGreaterEqual(result.confidence, 0.9)
        self.assertLessEqual(result.confidence, 0.98)

    def test_session_ends_by_the_ceiling(self):
        session = self.new_session()
        run_session(session, click_tick)
        self.assertLessEqual(session.elapsed_ms, self.config.session.max_duration_ms)
        self.assertEqual(session.state, SessionState.DONE)

    def test_silence_is_unknown_without_tempo(self):
        session = self.new_session()
        result = run_session(session, silent_tick)

        self.assertIsNone(result.bpm)
        self.assertEqual(result.key, UNKNOWN_KEY)
        self.assertEqual(result.confidence, 0.8)
        self.assertEqual(result.error, ERROR_INSUFFICIENT)
        self.assertEqual(session.elapsed_ms, self.config.session.max_duration_ms)

    def test_near_silent_noise_is_unknown_without_tempo(self):
        rng = np.random.default_rng(0)

        def faint_tick(i):
            return TickInput(frequency_frame=rng.uniform(0.0, 0.05, FFT_SIZE // 2),
                             time_frame=rng.uniform(-1e-3, 1e-3, 256))

        result = run_session(self.new_session(), faint_tick)
        self.assertIsNone(result.bpm)
        self.assertEqual(result.key, UNKNOWN_KEY)
        self.assertEqual(result.error, ERROR_INSUFFICIENT)

    def test_level_swell_without_onsets_keeps_floor_confidence(self):
        # Steady spectrum; loudness swells every 9 ticks (~133 BPM) with no attacks
        freq = np.zeros(FFT_SIZE // 2)
        freq[10:40] = 60.0

        def swell_tick(i):
            level = 0.2 * (1.0 + 0.3 * np.sin(2.0 * np.pi * i / 9.0))
            return TickInput(frequency_frame=freq, time_frame=level * BURST / 0.5)

        result = run_session(self.new_session(), swell_tick)
        self.assertIsNotNone(result.bpm)
        self.assertAlmostEqual(result.bpm, 133, delta=3)
        self.assertEqual(result.confidence, 0.8)

    def test_silence_uses_fallback_key(self):
        result = run_session(self.new_session(fallback_key="D Minor"), silent_tick)
        self.assertIsNone(result.bpm)
        self.assertEqual(result.key, "D Minor")
        self.assertIsNone(result.error)

    def test_identical_input_gives_identical_results(self):
        first = run_session(self.new_session(), click_tick)
        second = run_session(self.new_session(), click_tick)
        self.assertEqual(first, second)

        session = self.new_session()
        run_session(session, silent_tick)
        session.start()
        self.assertEqual(run_session(session, click_tick), first)

    def test_steps_after_completion_return_same_result(self):
        session = self.new_session()
        result = run_session(session, silent_tick)
        self.assertIs(session.step(click_tick(0)), result)

    def test_stopped_playback_aborts(self):
        session = self.new_session()
        for i in range(20):
            self.assertIsNone(session.step(click_tick(i)))
        result = session.step(click_tick(20, is_playing=False))

        self.assertEqual(result, AnalysisResult(bpm=None, key=UNKNOWN_KEY, confidence=0.0,
                                                error=ERROR_STOPPED))
        self.assertEqual(session.state, SessionState.ABORTED)

    def test_advertisement_aborts(self):
        result = self.new_session().step(click_tick(0, ad_showing=True))
        self.assertEqual(result.error, ERROR_ADVERTISEMENT)
        self.assertEqual(result.confidence, 0.0)

    def test_intro_and_outro_windows_abort(self):
        intro = self.new_session().step(click_tick(0, position_s=3.0, duration_s=200.0))
        outro = self.new_session().step(click_tick(0, position_s=195.0, duration_s=200.0))
        inside = self.new_session().step(click_tick(0, position_s=60.0, duration_s=200.0))

        self.assertEqual(intro.error, ERROR_INTRO_OUTRO)
        self.assertEqual(outro.error, ERROR_INTRO_OUTRO)
        self.assertIsNone(inside)

    def test_transient_ticks_can_be_skipped(self):
        self.config.session.abort_on_transient = False
        session = self.new_session()
        for i in range(5):
            self.assertIsNone(session.step(click_tick(i, ad_showing=True)))
        self.assertEqual(session.elapsed_ms, 0.0)
        self.assertEqual(session.skipped_ticks, 5)

        session.step(click_tick(0))
        self.assertEqual(session.elapsed_ms, 50.0)
        self.assertEqual(session.skipped_ticks, 0)

    def test_too_many_skipped_ticks_abort(self):
        self.config.session.abort_on_transient = False
        self.config.session.max_skipped_ticks = 3
        session = self.new_session()
        self.assertIsNone(session.step(click_tick(0, ad_showing=True)))
        self.assertIsNone(session.step(click_tick(1, ad_showing=True)))
        result = session.step(click_tick(2, ad_showing=True))
        self.assertEqual(result.error, ERROR_ADVERTISEMENT)

    def test_confident_estimate_exits_early(self):
        session = self.new_session()
        with mock.patch.object(session, "_early_check", return_value=0.99):
            result = run_session(session, click_tick)

        self.assertEqual(session.elapsed_ms, self.config.session.early_check_ms)
        self.assertIsNotNone(result.bpm)
        self.assertAlmostEqual(result.bpm, 120, delta=2)

    def test_no_estimate_before_early_check(self):
        session = self.new_session()
        with mock.patch.object(session, "_early_check", return_value=0.0) as early:
            for i in range(59):
                session.step(click_tick(i))
            early.assert_not_called()
            session.step(click_tick(59))
            early.assert_called_once()

    def test_pitch_transpose_is_removed_from_tempo(self):
        plain = run_session(self.new_session(), click_tick)
        shifted = run_session(self.new_session(),
                              lambda i: click_tick(i, pitch_offset=12.0, transpose=True))
        self.assertEqual(shifted.bpm, int(round(plain.bpm / 2.0)))

    def test_partial_result_while_running(self):
        session = self.new_session()
        for i in range(10):
            session.step(click_tick(i))
        partial = session.partial_result()
        self.assertEqual(partial.error, ERROR_IN_PROGRESS)
        self.assertTrue(session.active)

    def test_malformed_frames_do_not_raise(self):
        session = self.new_session()

        def make_tick(i):
            freq = [float('nan')] * 1024 if i % 3 == 0 else []
            return TickInput(frequency_frame=freq, time_frame=[float('inf')] * 4)

        result = run_session(session, make_tick)
        self.assertIsNone(result.bpm)
        self.assertEqual(result.key, UNKNOWN_KEY)


if __name__ == "__main__":
    unittest.main()
