import argparse
import json
import tempfile
import unittest
from pathlib import Path

from DAPR_Analysis.config import DetectionProfile, load_detection_profile
from DAPR_Analysis.run_config import apply_run_config, collect_cli_dests, load_run_config


class TestDetectionProfile(unittest.TestCase):
    def _write_json(self, payload: dict, name: str = "profile.json") -> Path:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        path = Path(tmpdir.name) / name
        path.write_text(json.dumps(payload), encoding="utf-8")
        return path

    def test_load_ok(self) -> None:
        path = self._write_json(
            {
                "schema_version": 1,
                "conf_threshold": 0.4,
                "class_thresholds": {"rain": 0.3},
                "iou_threshold": 0.5,
                "min_area": 250,
                "ink_filter": False,
                "notes": "test",
            }
        )
        profile = load_detection_profile(path)
        self.assertIsInstance(profile, DetectionProfile)
        self.assertEqual(profile.conf_threshold, 0.4)
        self.assertEqual(dict(profile.class_thresholds), {"rain": 0.3})
        self.assertEqual(profile.min_area, 250.0)
        self.assertFalse(profile.ink_filter)
        self.assertEqual(profile.min_ink_ratio, 0.05)
        self.assertEqual(profile.notes, "test")

        cfg = profile.to_detector_config()
        self.assertEqual(cfg.decoder.conf_threshold, 0.4)
        self.assertEqual(cfg.nms.iou_threshold, 0.5)
        self.assertEqual(cfg.filters.min_area, 250.0)
        self.assertFalse(cfg.filters.ink_filter)

    def test_unknown_keys_rejected(self) -> None:
        path = self._write_json({"schema_version": 1, "extra": 123})
        with self.assertRaises(ValueError):
            load_detection_profile(path)

    def test_schema_version_required(self) -> None:
        with self.assertRaises(ValueError):
            load_detection_profile(self._write_json({"conf_threshold": 0.5}))
        with self.assertRaises(ValueError):
            load_detection_profile(self._write_json({"schema_version": 2}))

    def test_invalid_values_rejected(self) -> None:
        for payload in (
            {"schema_version": 1, "conf_threshold": 1.5},
            {"schema_version": 1, "conf_threshold": "high"},
            {"schema_version": 1, "class_thresholds": {"tree": 0.5}},
            {"schema_version": 1, "class_thresholds": {"rain": True}},
            {"schema_version": 1, "ink_filter": "yes"},
            {"schema_version": 1, "input_size": 0},
        ):
            with self.subTest(payload=payload):
                with self.assertRaises(ValueError):
                    load_detection_profile(self._write_json(payload))

    def test_missing_file(self) -> None:
        with self.assertRaises(FileNotFoundError):
            load_detection_profile(Path("does/not/exist.json"))


class TestRunConfig(unittest.TestCase):
    def _parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser()
        parser.add_argument("--config", default=None)
        parser.add_argument("--model", default="Models/dapr_sketch.onnx")
        parser.add_argument("--conf", type=float, default=None)
        parser.add_argument("--imgsz", type=int, default=None)
        parser.add_argument("--placeholder", action="store_true")
        parser.add_argument("--onnx-providers", default=None)
        return parser

    def test_cli_flags_win(self) -> None:
        parser = self._parser()
        argv = ["--conf", "0.3"]
        args = parser.parse_args(argv)
        payload = {"conf": 0.6, "imgsz": 320, "placeholder": True, "onnx_providers": ["CPUExecutionProvider"]}
        apply_run_config(args=args, payload=payload, cli_dests=collect_cli_dests(parser, argv), parser=parser)
        self.assertEqual(args.conf, 0.3)
        self.assertEqual(args.imgsz, 320)
        self.assertTrue(args.placeholder)
        self.assertEqual(args.onnx_providers, "CPUExecutionProvider")

    def test_bad_keys_rejected(self) -> None:
        parser = self._parser()
        args = parser.parse_args([])
        for payload in ({"video": "x.mp4"}, {"config": "other.json"}, {"imgsz": 1.5}, {"placeholder": 1}):
            with self.subTest(payload=payload):
                with self.assertRaises(ValueError):
                    apply_run_config(args=args, payload=payload, cli_dests=set(), parser=parser)

    def test_load_run_config_requires_object(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        path = Path(tmpdir.name) / "run.json"
        path.write_text("[1, 2]", encoding="utf-8")
        with self.assertRaises(ValueError):
            load_run_config(path)


if __name__ == "__main__":
    unittest.main()
