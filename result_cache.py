"""JSON-file result cache keyed by content identity.

Entries are stored under ``bpm_key_<content id>`` as
``{bpm, key, confidence, timestamp}``.  There is no eviction or TTL; the
analysis engine decides what is worth writing.

Usage::

    cache = JsonResultCache(Path.home() / ".bpmkey" / "cache.json")
    hit = cache.get("track-42")
    if hit is None:
        ...  # run analysis
        cache.set("track-42", bpm=120, key="A Minor", confidence=0.98)
"""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any

from logging_utils import log_event

_NS = "bpm_key_"


def make_key(content_id: str) -> str:
    """Namespaced cache key for a content identifier."""
    return f"{_NS}{content_id}"


class JsonResultCache:
    """Key-value store persisted as one JSON object on disk.

    Args:
        path: JSON file to read and write. Created on first ``set``.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return data if isinstance(data, dict) else {}

    def get(self, content_id: str) -> dict[str, Any] | None:
        """Return the cached entry or None on miss.

        Raises:
            OSError, ValueError: the cache file cannot be read or parsed.
        """
        entry = self._load().get(make_key(content_id))
        if not isinstance(entry, dict):
            return None
        log_event("DEBUG", "Cache", "Cache hit", content_id=content_id)
        return entry

    def set(self, content_id: str, *, bpm: int | None, key: str, confidence: float) -> None:
        """Store a result, replacing any previous entry for the same content."""
        data = self._load()
        data[make_key(content_id)] = {
            "bpm": bpm,
            "key": key,
            "confidence": float(confidence),
            "timestamp": time.time(),
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        log_event("DEBUG", "Cache", "Cached result", content_id=content_id, bpm=bpm, key=key)
