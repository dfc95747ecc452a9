import csv
import io
import json
import tempfile
import threading
import time
import unittest
from contextlib import redirect_stdout
from datetime import datetime
from pathlib import Path
from unittest import mock

import numpy as np

from DAPR_Analysis.reporting import build_summary, find_similar_sketches, today_date_str, write_scores_csv
from DAPR_Analysis.runner import main
from DAPR_Analysis.scoring import calculate_dapr_score
from DAPR_Analysis.store import JsonSketchStore, MemorySketchStore
from sketch_kit.runtime import SketchDetector
from sketch_kit.types import make_detection


def _person(h: float = 200.0):
    return make_detection("person", (100, 300, 220, 300 + h), source="model")


class TestReporting(unittest.TestCase):
    def _store(self) -> MemorySketchStore:
        store = MemorySketchStore()
        # totals: -2 (empty page), 1 (person in dry weather), 2 (person plus an umbrella)
        umbrella = make_detection("umbrella", (0, 0, 50, 50), source="model")
        for dets in ([], [_person()], [_person(250), umbrella]):
            rec = store.create_sketch("x.png")
            store.save_analysis(rec.sketch_id, dets, lambda stored: calculate_dapr_score(stored, 400, 600))
        store.create_sketch("pending.png")
        return store

    def test_summary(self) -> None:
        summary = build_summary(self._store(), date="2024-05-01")
        self.assertEqual(summary.total_sketches, 4)
        self.assertEqual(summary.analyzed_sketches, 3)
        self.assertEqual(summary.avg_total_score, 0.33)
        self.assertEqual(summary.band_counts["STRESS_EXCEEDS"], 1)
        self.assertEqual(summary.band_counts["RESOURCES_EXCEED"], 2)
        self.assertEqual(sum(summary.band_counts.values()), 3)

    def test_summary_of_empty_store(self) -> None:
        summary = build_summary(MemorySketchStore(), date="2024-05-01")
        self.assertEqual(summary.avg_total_score, 0.0)
        self.assertEqual(summary.analyzed_sketches, 0)

    def test_similar_sketches(self) -> None:
        store = self._store()
        self.assertEqual([r.sketch_id for r in find_similar_sketches(store, 2)], [1, 3])
        self.assertEqual([r.sketch_id for r in find_similar_sketches(store, 2, window=1)], [3])
        self.assertEqual(find_similar_sketches(store, 4), [])

    def test_scores_csv(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        path = write_scores_csv(out_dir=Path(tmpdir.name), date="2024-05-01", store=self._store())
        with path.open("r", encoding="utf-8", newline="") as f:
            rows = list(csv.DictReader(f))
        self.assertEqual(len(rows), 4)
        self.assertEqual(rows[0]["total_score"], "-2")
        self.assertEqual(rows[0]["triggered"], "no_rain no_person")
        self.assertEqual(rows[3]["total_score"], "")

    def test_today_date_str(self) -> None:
        self.assertEqual(today_date_str(datetime(2024, 1, 2, 3, 4)), "2024-01-02")


class TestRunner(unittest.TestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.root = Path(tmpdir.name)
        self.store_dir = self.root / "store"
        self.out_dir = self.root / "out"

    def _run(self, *argv: str) -> int:
        buf = io.StringIO()
        with redirect_stdout(buf):
            code = main([*argv, "--store", str(self.store_dir), "--out-dir", str(self.out_dir)])
        self.output = buf.getvalue()
        return code

    def _image(self) -> Path:
        import cv2

        img = np.full((600, 400, 3), 255, dtype=np.uint8)
        img[300:500, 100:220] = 0
        path = self.root / "sketch.png"
        self.assertTrue(cv2.imwrite(str(path), img))
        return path

    def test_analyze_edit_and_report(self) -> None:
        image = self._image()
        self.assertEqual(self._run("analyze", str(image), "--placeholder", "--seed", "1", "--save-annotated"), 0)
        self.assertIn("placeholder", self.output)

        store = JsonSketchStore(self.store_dir)
        (record,) = store.list_sketches()
        self.assertTrue(record.analyzed)
        self.assertEqual(record.title, "sketch")
        stored = store.get_detections(record.sketch_id)
        self.assertTrue(all(d.detection.is_placeholder for d in stored))

        date = today_date_str()
        sketch_dir = self.out_dir / "sketches" / date / f"sketch_{record.sketch_id:06d}"
        payload = json.loads((sketch_dir / "analysis.json").read_text(encoding="utf-8"))
        self.assertTrue(payload["used_placeholder"])
        self.assertTrue((sketch_dir / "annotated.png").exists())
        self.assertTrue((self.out_dir / "reports" / date / "run_config.json").exists())

        sid = str(record.sketch_id)
        self.assertEqual(self._run("add", sid, "umbrella", "90", "260", "230", "360"), 0)
        added = JsonSketchStore(self.store_dir).get_detections(record.sketch_id)[-1]
        self.assertEqual(added.detection.source, "manual")

        self.assertEqual(self._run("remove", sid, str(added.detection_id)), 0)
        self.assertEqual(self._run("rescore", sid), 0)
        self.assertIn(f"sketch {sid}:", self.output)

        self.assertEqual(self._run("show", sid), 0)
        self.assertEqual(json.loads(self.output)["sketch_id"], record.sketch_id)

        self.assertEqual(self._run("report", "--similar-to", sid), 0)
        self.assertIn("Average total score", self.output)
        self.assertTrue((self.out_dir / "reports" / date / "summary.json").exists())
        self.assertTrue((self.out_dir / "reports" / date / "scores.csv").exists())

    def test_run_config_applies(self) -> None:
        image = self._image()
        config = self.root / "run.json"
        config.write_text(json.dumps({"placeholder": True, "seed": 4, "conf": 0.4}), encoding="utf-8")
        self.assertEqual(self._run("analyze", str(image), "--config", str(config)), 0)
        run_config = json.loads(
            (self.out_dir / "reports" / today_date_str() / "run_config.json").read_text(encoding="utf-8")
        )
        self.assertEqual(run_config["profile"]["conf_threshold"], 0.4)
        self.assertFalse(run_config["profile"]["use_model"])

    def test_missing_image_counts_as_failure(self) -> None:
        image = self._image()
        self.assertEqual(self._run("analyze", str(self.root / "nope.png"), str(image), "--placeholder"), 1)
        (record,) = JsonSketchStore(self.store_dir).list_sketches()
        self.assertEqual(record.title, "sketch")
        self.assertTrue(record.analyzed)
        with (self.out_dir / "reports" / today_date_str() / "scores.csv").open("r", encoding="utf-8") as f:
            rows = list(csv.DictReader(f))
        self.assertEqual([r["title"] for r in rows], ["sketch"])

    def test_timeout_bounds_hung_inference(self) -> None:
        image = self._image()
        model = self.root / "model.onnx"
        model.write_bytes(b"weights")
        release = threading.Event()
        self.addCleanup(release.set)

        class _HungSession:
            def infer(self, tensor):
                release.wait(5.0)
                raise RuntimeError("released")

            def close(self) -> None:
                pass

        with mock.patch("DAPR_Analysis.runner.load_detector", lambda *a, **kw: SketchDetector(_HungSession())):
            started = time.monotonic()
            code = self._run("analyze", str(image), str(image), "--model", str(model), "--timeout", "0.1")
            elapsed = time.monotonic() - started
        self.assertEqual(code, 0)
        self.assertLess(elapsed, 2.0)
        self.assertEqual(self.output.count("placeholder detections"), 2)

    def test_unknown_sketch(self) -> None:
        self.assertEqual(self._run("rescore", "42"), 2)


if __name__ == "__main__":
    unittest.main()
