"""
bpmkey - Analysis Engine
Engine boundary: concurrency guard, cache fast path, status channel and
the tick loop that drives one AnalysisSession per request.
"""

import time
from typing import Any, Callable, Optional

from analysis_session import (
    ERROR_DEPENDENCIES,
    ERROR_IN_PROGRESS,
    ERROR_NO_SOURCE,
    UNKNOWN_KEY,
    AnalysisResult,
    AnalysisSession,
)
from config import Config
from logging_utils import log_event


class AnalysisEngine:
    """
    Runs BPM/key analysis sessions against a frame sampler.

    A sampler is any object with ``read_tick()`` returning a ``TickInput``
    (or None when the analyser is not ready) and optional ``sample_rate`` /
    ``fft_size`` attributes.  Only one session runs at a time; a request
    made while one is active gets the in-flight values back instead.
    """

    def __init__(self, config: Config,
                 status_callback: Optional[Callable[[str], None]] = None,
                 cache=None, history=None,
                 sleep: Callable[[float], None] = time.sleep):
        self.config = config
        self.status_callback = status_callback
        self.cache = cache
        self.history = history
        self._sleep = sleep

        self.in_progress = False
        self.current_bpm: Optional[int] = None
        self.current_key: str = UNKNOWN_KEY
        self.current_confidence = 0.0
        self._session: Optional[AnalysisSession] = None

    def get_state(self) -> dict[str, Any]:
        """Snapshot of the engine for status displays."""
        session = self._session
        return {
            'in_progress': self.in_progress,
            'bpm': self.current_bpm,
            'key': self.current_key,
            'confidence': self.current_confidence,
            'session_state': session.state.value if session is not None else None,
            'elapsed_ms': session.elapsed_ms if session is not None else 0.0,
        }

    def _emit_status(self, message: str) -> None:
        if self.status_callback is None:
            return
        try:
            self.status_callback(message)
        except Exception as e:
            log_event("WARNING", "Engine", "Status delivery failed", error=e)

    def _cached_result(self, content_id: Optional[str]) -> tuple[Optional[AnalysisResult], Optional[str]]:
        """Cache fast path. Returns (hit, trusted cached key for fallback)."""
        if self.cache is None or not content_id:
            return None, None
        try:
            entry = self.cache.get(content_id)
        except Exception as e:
            log_event("WARNING", "Cache", "Cache read failed", content_id=content_id, error=e)
            return None, None
        if not entry:
            return None, None

        threshold = self.config.session.cache_confidence
        try:
            confidence = float(entry.get('confidence') or 0.0)
        except (TypeError, ValueError):
            return None, None
        key = entry.get('key')
        trusted_key = key if key and key != UNKNOWN_KEY and confidence > threshold else None
        if entry.get('bpm') is not None and trusted_key:
            return AnalysisResult(bpm=int(entry['bpm']), key=key, confidence=confidence), trusted_key
        return None, trusted_key

    def _store_result(self, content_id: Optional[str], title: Optional[str],
                      result: AnalysisResult) -> None:
        if (self.cache is not None and content_id and result.bpm is not None
                and result.key != UNKNOWN_KEY
                and result.confidence > self.config.session.cache_confidence):
            try:
                self.cache.set(content_id, bpm=result.bpm, key=result.key,
                               confidence=result.confidence)
            except Exception as e:
                log_event("WARNING", "Cache", "Cache write failed", content_id=content_id, error=e)

        if self.history is not None and self.config.history_enabled and result.bpm is not None:
            try:
                self.history.record(content_id, result.bpm, result.key, result.confidence, title=title)
            except Exception as e:
                log_event("WARNING", "History", "History write failed", error=e)

    def analyze(self, sampler, content_id: Optional[str] = None, title: Optional[str] = None,
                realtime: bool = True) -> AnalysisResult:
        """Run one analysis session and return its result. Never raises."""
        if self.in_progress:
            log_event("WARNING", "Engine", "Analysis already running, returning partial state")
            bpm = self.current_bpm
            if self._session is not None and self._session.partial_result().bpm is not None:
                bpm = self._session.partial_result().bpm
            return AnalysisResult(bpm=bpm, key=self.current_key, confidence=0.0, error=ERROR_IN_PROGRESS)

        if sampler is None:
            return AnalysisResult(bpm=None, key=UNKNOWN_KEY, confidence=0.0, error=ERROR_NO_SOURCE)
        if not callable(getattr(sampler, 'read_tick', None)):
            log_event("ERROR", "Engine", "Sampler cannot supply frames", sampler=type(sampler).__name__)
            return AnalysisResult(bpm=None, key=UNKNOWN_KEY, confidence=0.0, error=ERROR_DEPENDENCIES)

        cached, cached_key = self._cached_result(content_id)
        if cached is not None:
            log_event("INFO", "Cache", "Using cached analysis", content_id=content_id,
                      bpm=cached.bpm, key=cached.key)
            self.current_bpm = cached.bpm
            self.current_key = cached.key
            self.current_confidence = cached.confidence
            return cached

        fallback_key = cached_key or (self.current_key if self.current_key != UNKNOWN_KEY else None)
        sample_rate = getattr(sampler, 'sample_rate', None) or self.config.audio.sample_rate
        fft_size = getattr(sampler, 'fft_size', None) or self.config.audio.fft_size

        self.in_progress = True
        try:
            session = AnalysisSession(self.config, sample_rate, fft_size, fallback_key=fallback_key)
            self._session = session
            result = self._run_session(session, sampler, realtime)
            if result.bpm is not None:
                self.current_bpm = result.bpm
            if result.key != UNKNOWN_KEY:
                self.current_key = result.key
            self.current_confidence = result.confidence
            if result.error is None:
                self._store_result(content_id, title, result)
            return result
        except Exception as e:
            log_event("ERROR", "Engine", "Analysis failed", error=e)
            return AnalysisResult(bpm=None, key=UNKNOWN_KEY, confidence=0.0, error=str(e))
        finally:
            self.in_progress = False
            self._session = None

    def _run_session(self, session: AnalysisSession, sampler, realtime: bool) -> AnalysisResult:
        session_cfg = self.config.session
        interval_s = session_cfg.tick_interval_ms / 1000.0
        status_interval = max(1, int(session_cfg.status_interval_ms))
        last_status = 0

        session.start()
        while True:
            tick = sampler.read_tick()
            if tick is None:
                return session.abort(ERROR_NO_SOURCE)

            result = session.step(tick)
            if result is not None:
                return result

            announced = int(session.elapsed_ms // status_interval)
            if announced > last_status:
                last_status = announced
                self._emit_status(f"Analyzing ({session.elapsed_ms / 1000.0:.1f}s)...")

            if realtime:
                self._sleep(interval_s)
