import csv
import json
import time
from datetime import datetime, timezone
from pathlib import Path


class AnalysisHistory:
    """Persists finished analyses to bounded JSON and CSV reports."""

    FIELDNAMES = ["timestamp", "content_id", "title", "bpm", "key", "confidence"]

    def __init__(self, report_dir: Path, max_entries: int = 100):
        self.report_dir = Path(report_dir)
        self.report_dir.mkdir(parents=True, exist_ok=True)
        self.json_path = self.report_dir / "analysis_history.json"
        self.csv_path = self.report_dir / "analysis_history.csv"
        self.max_entries = max(1, int(max_entries))

    def load(self) -> list[dict]:
        if not self.json_path.exists():
            return []
        try:
            with open(self.json_path, "r", encoding="utf-8") as f:
                payload = json.load(f)
        except (OSError, ValueError):
            return []
        entries = payload.get("entries", []) if isinstance(payload, dict) else []
        return entries if isinstance(entries, list) else []

    def _to_builtin(self, value):
        if isinstance(value, dict):
            return {str(k): self._to_builtin(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [self._to_builtin(v) for v in value]

        # numpy scalars
        item = getattr(value, "item", None)
        if callable(item):
            try:
                return self._to_builtin(item())
            except (TypeError, ValueError):
                pass

        return value

    def record(self, content_id, bpm, key: str, confidence: float, title=None) -> dict:
        entry = self._to_builtin({
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "content_id": content_id,
            "title": title,
            "bpm": bpm,
            "key": key,
            "confidence": round(float(confidence), 4),
        })
        entries = self.load()
        entries.append(entry)
        if len(entries) > self.max_entries:
            entries = entries[-self.max_entries:]

        payload = {
            "generated_at": time.time(),
            "entry_count": len(entries),
            "latest": entries[-1],
            "entries": entries,
        }

        with open(self.json_path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)

        with open(self.csv_path, "w", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=self.FIELDNAMES)
            writer.writeheader()
            for row in entries:
                writer.writerow({name: row.get(name, "") for name in self.FIELDNAMES})
        return entry
