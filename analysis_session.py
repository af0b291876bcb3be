"""
bpmkey - Analysis Session
Tick-driven state machine that runs flux, onset, tempo and key analysis
for one audio source and decides when to emit a result.
"""

import math
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Optional, Sequence

import numpy as np

from autocorrelation import amplitude_envelope, autocorrelate
from confidence import calculate_confidence
from config import Config
from flux_tracker import FluxTracker
from key_detection import classify_key
from logging_utils import log_event
from onset_detector import detect_onsets
from tempo_fusion import KalmanTempoFilter, adjust_bpm, back_correct_bpm, fuse_candidates
from tempo_histogram import estimate_bpm_from_onsets

UNKNOWN_KEY = "Unknown"

ERROR_IN_PROGRESS = "Calculation in progress"
ERROR_STOPPED = "Playback stopped during analysis"
ERROR_ADVERTISEMENT = "Advertisement detected"
ERROR_INTRO_OUTRO = "Skipping intro or outro"
ERROR_DEPENDENCIES = "System dependencies missing"
ERROR_NO_SOURCE = "No active source or analyser not ready"
ERROR_INSUFFICIENT = "Insufficient signal"


class SessionState(Enum):
    IDLE = "idle"
    SAMPLING = "sampling"
    EARLY_CHECK = "early_check"
    FINALIZING = "finalizing"
    DONE = "done"
    ABORTED = "aborted"


@dataclass(frozen=True)
class TickInput:
    """One tick of sampler output plus the playback transform in effect"""
    frequency_frame: Sequence[float]
    time_frame: Sequence[float]
    is_playing: bool = True
    position_s: Optional[float] = None
    duration_s: Optional[float] = None
    ad_showing: bool = False
    pitch_offset: float = 0.0        # Semitones when transpose is True, else playback ratio offset
    transpose: bool = True
    playback_rate: float = 1.0


@dataclass(frozen=True)
class AnalysisResult:
    """The only object handed back across the engine boundary"""
    bpm: Optional[int]
    key: str
    confidence: float
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


class AnalysisSession:
    """
    Owns every piece of mutable analysis state for one run.

    Drive it with ``step()`` once per tick; it returns None while sampling
    and an ``AnalysisResult`` once the session is done or aborted.  After
    that further steps return the same result.  ``start()`` resets
    everything, so no state leaks from one run into the next.
    """

    def __init__(self, config: Config, sample_rate: int, fft_size: int,
                 fallback_key: Optional[str] = None):
        self.config = config
        self.sample_rate = sample_rate
        self.fft_size = fft_size
        self.fallback_key = fallback_key if fallback_key and fallback_key != UNKNOWN_KEY else None
        self.tracker = FluxTracker(config.flux, sample_rate, fft_size,
                                   history_frames=config.key.history_frames)
        self.kalman = KalmanTempoFilter.from_config(config.fusion)
        self.envelope: list[float] = []
        self.state = SessionState.IDLE
        self.tick_count = 0
        self.skipped_ticks = 0
        self.result: Optional[AnalysisResult] = None
        self._latest_bpm: Optional[float] = None
        self._latest_confidence = config.confidence.floor

    @property
    def tick_ms(self) -> float:
        return float(self.config.session.tick_interval_ms)

    @property
    def elapsed_ms(self) -> float:
        return self.tick_count * self.tick_ms

    @property
    def active(self) -> bool:
        return self.state not in (SessionState.IDLE, SessionState.DONE, SessionState.ABORTED)

    def start(self) -> None:
        """Reset all per-session state and begin sampling."""
        self.tracker.reset()
        self.kalman.reset()
        self.envelope.clear()
        self.tick_count = 0
        self.skipped_ticks = 0
        self.result = None
        self._latest_bpm = None
        self._latest_confidence = self.config.confidence.floor
        self.state = SessionState.SAMPLING
        log_event("DEBUG", "Session", "Session started",
                  sample_rate=self.sample_rate, fft_size=self.fft_size)

    def abort(self, error: str) -> AnalysisResult:
        """Finish the session with a transient-condition result."""
        self.state = SessionState.ABORTED
        self.result = AnalysisResult(bpm=None, key=UNKNOWN_KEY, confidence=0.0, error=error)
        log_event("INFO", "Session", "Session aborted", reason=error, elapsed_ms=self.elapsed_ms)
        return self.result

    def _transient_condition(self, tick: TickInput) -> Optional[str]:
        if tick.ad_showing:
            return ERROR_ADVERTISEMENT
        session = self.config.session
        position = tick.position_s
        duration = tick.duration_s
        if position is not None and duration is not None and duration > 0:
            if position < session.intro_skip_s or position > duration - session.outro_skip_s:
                return ERROR_INTRO_OUTRO
        return None

    def step(self, tick: TickInput) -> Optional[AnalysisResult]:
        """Advance one tick. Returns the final result once the session has ended."""
        if self.state in (SessionState.DONE, SessionState.ABORTED):
            return self.result
        if self.state == SessionState.IDLE:
            self.start()

        if not tick.is_playing:
            return self.abort(ERROR_STOPPED)

        transient = self._transient_condition(tick)
        if transient is not None:
            if self.config.session.abort_on_transient:
                return self.abort(transient)
            self.skipped_ticks += 1
            if self.skipped_ticks >= self.config.session.max_skipped_ticks:
                return self.abort(transient)
            return None
        self.skipped_ticks = 0

        self.tracker.update(tick.frequency_frame)
        self.envelope.append(float(amplitude_envelope([tick.time_frame])[0]))
        self.tick_count += 1

        session = self.config.session
        if self.elapsed_ms >= session.early_check_ms:
            self.state = SessionState.EARLY_CHECK
            if self._early_check() > session.early_exit_confidence:
                log_event("INFO", "Session", "Confident early estimate",
                          elapsed_ms=self.elapsed_ms, bpm=self.kalman.estimate)
                return self._finalize(tick)
            self.state = SessionState.SAMPLING

        if self.elapsed_ms >= session.max_duration_ms:
            return self._finalize(tick)
        return None

    def _early_check(self) -> float:
        """Estimate tempo from everything gathered so far; feeds the Kalman filter."""
        cfg = self.config
        band = self.tracker.primary_band(cfg.session.balanced_mid_ratio)
        onsets = detect_onsets(self.tracker.series, self.tick_ms, band, cfg.onset)
        candidate = estimate_bpm_from_onsets(onsets, band, cfg.tempo)
        if candidate is None:
            return 0.0

        confidence = calculate_confidence(candidate.bpm, onsets, cfg.confidence,
                                          cfg.tempo.min_onsets,
                                          (cfg.tempo.popular_low_bpm, cfg.tempo.popular_high_bpm))
        acf_bpm = autocorrelate(self.envelope, 1000.0 / self.tick_ms, cfg.autocorr,
                                cfg.autocorr.envelope_min_std, cfg.autocorr.envelope_min_variation)
        fused_bpm, fused_confidence = fuse_candidates(candidate.bpm, confidence, acf_bpm, cfg.fusion)
        if fused_bpm is None:
            return 0.0

        self.kalman.update(fused_bpm)
        self._latest_bpm = fused_bpm
        self._latest_confidence = fused_confidence
        log_event("DEBUG", "Kalman", "Tempo measurement", band=band, onsets=len(onsets),
                  histogram=candidate.bpm, acf=acf_bpm, fused=fused_bpm,
                  confidence=fused_confidence, estimate=self.kalman.estimate)
        return fused_confidence

    def _finalize(self, tick: TickInput) -> AnalysisResult:
        self.state = SessionState.FINALIZING
        cfg = self.config

        if self._latest_bpm is None:
            # No histogram estimate was ever available: autocorrelation alone
            acf_bpm = autocorrelate(self.envelope, 1000.0 / self.tick_ms, cfg.autocorr,
                                    cfg.autocorr.envelope_min_std, cfg.autocorr.envelope_min_variation)
            fused_bpm, fused_confidence = fuse_candidates(None, cfg.confidence.floor, acf_bpm, cfg.fusion,
                                                          onset_supported=False)
            self.kalman.update(fused_bpm)
            self._latest_bpm = fused_bpm
            self._latest_confidence = fused_confidence

        confidence = self._latest_confidence
        if not math.isfinite(confidence):
            confidence = cfg.confidence.floor
        confidence = min(cfg.confidence.ceiling, max(0.0, confidence))

        bpm = adjust_bpm(self.kalman.estimate, confidence, cfg.tempo.min_bpm, cfg.tempo.max_bpm,
                         cfg.fusion.halve_below_confidence)
        bpm = back_correct_bpm(bpm, tick.pitch_offset, tick.transpose, tick.playback_rate)

        band = self.tracker.primary_band(cfg.session.balanced_mid_ratio)
        key = classify_key(self.tracker.frames, self.sample_rate, self.fft_size, cfg.key,
                           band, tick.pitch_offset, tick.transpose, cfg.audio.floor_db)
        if key is None:
            key = self.fallback_key or UNKNOWN_KEY

        error = None
        if bpm is None:
            confidence = cfg.confidence.floor
            if key == UNKNOWN_KEY:
                error = ERROR_INSUFFICIENT

        self.state = SessionState.DONE
        self.result = AnalysisResult(bpm=bpm, key=key, confidence=float(confidence), error=error)
        log_event("INFO", "Session", "Analysis finished", bpm=bpm, key=key,
                  confidence=confidence, elapsed_ms=self.elapsed_ms, band=band)
        return self.result

    def partial_result(self) -> AnalysisResult:
        """Best currently-known values, for callers asking while the session runs."""
        if self.result is not None:
            return self.result
        estimate = self.kalman.estimate
        bpm = int(round(estimate)) if estimate is not None and np.isfinite(estimate) else None
        return AnalysisResult(bpm=bpm, key=self.fallback_key or UNKNOWN_KEY,
                              confidence=0.0, error=ERROR_IN_PROGRESS)
