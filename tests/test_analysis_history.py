import csv
import json
import tempfile
import unittest
from pathlib import Path

import numpy as np

from analysis_history import AnalysisHistory


class TestAnalysisHistory(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.report_dir = Path(self._tmp.name) / "reports"

    def tearDown(self):
        self._tmp.cleanup()

    def test_record_writes_json_and_csv(self):
        history = AnalysisHistory(self.report_dir)
        entry = history.record("id-1", 120, "A Minor", 0.98123, title="Song")

        self.assertEqual(entry["bpm"], 120)
        self.assertEqual(entry["confidence"], 0.9812)

        with open(history.json_path, "r", encoding="utf-8") as f:
            payload = json.load(f)
        self.assertEqual(payload["entry_count"], 1)
        self.assertEqual(payload["latest"]["title"], "Song")

        with open(history.csv_path, "r", newline="", encoding="utf-8") as f:
            rows = list(csv.DictReader(f))
        self.assertEqual(list(rows[0].keys()), AnalysisHistory.FIELDNAMES)
        self.assertEqual(rows[0]["key"], "A Minor")

    def test_numpy_values_are_serialisable(self):
        history = AnalysisHistory(self.report_dir)
        entry = history.record(None, np.int64(98), "C Major", np.float64(0.9))
        self.assertIsInstance(entry["bpm"], int)
        self.assertEqual(history.load()[0]["bpm"], 98)

    def test_history_is_bounded(self):
        history = AnalysisHistory(self.report_dir, max_entries=3)
        for bpm in range(100, 106):
            history.record("id", bpm, "C Major", 0.9)

        entries = history.load()
        self.assertEqual([e["bpm"] for e in entries], [103, 104, 105])

    def test_corrupted_history_starts_over(self):
        history = AnalysisHistory(self.report_dir)
        history.json_path.write_text("[broken", encoding="utf-8")
        self.assertEqual(history.load(), [])

        history.record("id", 110, "E Minor", 0.85)
        self.assertEqual(len(history.load()), 1)


if __name__ == "__main__":
    unittest.main()
