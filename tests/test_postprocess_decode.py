import unittest

import numpy as np

from sketch_kit.errors import MalformedOutputError
from sketch_kit.postprocess import DecoderConfig, DetectionDecoder, output_dims
from sketch_kit.types import LetterboxTransform

IDENTITY = LetterboxTransform(scale=1.0, pad_x=0.0, pad_y=0.0, orig_width=640, orig_height=640)


def _preds(columns) -> np.ndarray:
    """
    columns: list of (cx, cy, w, h, [6 class scores]) -> (1, 10, N) feature-major.
    """

    rows = [[c[0], c[1], c[2], c[3], *c[4]] for c in columns]
    return np.asarray(rows, dtype=np.float32).T[None, ...]


class TestDetectionDecoder(unittest.TestCase):
    def test_feature_major_layout(self) -> None:
        p = _preds(
            [
                (100, 100, 20, 40, [0.9, 0.1, 0.0, 0.0, 0.0, 0.0]),
                (300, 200, 10, 10, [0.1, 0.2, 0.0, 0.0, 0.0, 0.0]),
            ]
        )
        out = DetectionDecoder(DecoderConfig()).decode(p, IDENTITY)
        self.assertEqual(len(out), 1)
        c = out[0]
        self.assertEqual(c.class_id, 0)
        self.assertAlmostEqual(c.score, 0.9, places=6)
        self.assertEqual(c.as_xyxy(), (90.0, 80.0, 110.0, 120.0))

    def test_tie_goes_to_lowest_class(self) -> None:
        p = _preds([(50, 50, 10, 10, [0.0, 0.7, 0.0, 0.7, 0.0, 0.0])])
        out = DetectionDecoder().decode(p, IDENTITY)
        self.assertEqual([c.class_id for c in out], [1])

    def test_score_equal_to_threshold_is_discarded(self) -> None:
        p = _preds(
            [
                (50, 50, 10, 10, [0.5, 0.0, 0.0, 0.0, 0.0, 0.0]),
                (80, 80, 10, 10, [0.0, 0.0, 0.0, 0.0, 0.0, 0.51]),
            ]
        )
        out = DetectionDecoder(DecoderConfig(conf_threshold=0.5)).decode(p, IDENTITY)
        self.assertEqual([c.class_id for c in out], [5])

    def test_per_class_threshold_override(self) -> None:
        p = _preds(
            [
                (50, 50, 10, 10, [0.7, 0.0, 0.0, 0.0, 0.0, 0.0]),
                (80, 80, 10, 10, [0.0, 0.7, 0.0, 0.0, 0.0, 0.0]),
                (90, 90, 10, 10, [0.0, 0.0, 0.0, 0.0, 0.3, 0.0]),
            ]
        )
        cfg = DecoderConfig(conf_threshold=0.5, class_thresholds={"rain": 0.8, 4: 0.25})
        out = DetectionDecoder(cfg).decode(p, IDENTITY)
        self.assertEqual([c.class_id for c in out], [0, 4])

    def test_inverse_letterbox(self) -> None:
        t = LetterboxTransform(scale=0.5, pad_x=10.0, pad_y=20.0, orig_width=1000, orig_height=1000)
        p = _preds([(60, 70, 20, 20, [0.0, 0.0, 0.9, 0.0, 0.0, 0.0])])
        (c,) = DetectionDecoder().decode(p, t)
        self.assertEqual(c.as_xyxy(), (80.0, 80.0, 120.0, 120.0))
        self.assertEqual(c.class_id, 2)

    def test_non_positive_size_is_dropped(self) -> None:
        p = _preds(
            [
                (100, 100, -20, 40, [0.9, 0.0, 0.0, 0.0, 0.0, 0.0]),
                (100, 100, 20, 0, [0.9, 0.0, 0.0, 0.0, 0.0, 0.0]),
                (200, 200, 10, 10, [0.0, 0.9, 0.0, 0.0, 0.0, 0.0]),
            ]
        )
        out = DetectionDecoder().decode(p, IDENTITY)
        self.assertEqual([c.class_id for c in out], [1])
        self.assertTrue(all(c.x1 < c.x2 and c.y1 < c.y2 for c in out))

    def test_boxes_clipped_to_image(self) -> None:
        # 400x600 image on 640: scale 640/600, pad_x 107.
        t = LetterboxTransform(scale=640 / 600, pad_x=107.0, pad_y=0.0, orig_width=400, orig_height=600)
        p = _preds(
            [
                (110, 50, 40, 40, [0.9, 0.0, 0.0, 0.0, 0.0, 0.0]),
                (50, 50, 40, 40, [0.0, 0.9, 0.0, 0.0, 0.0, 0.0]),
                (600, 630, 200, 40, [0.0, 0.0, 0.9, 0.0, 0.0, 0.0]),
            ]
        )
        out = DetectionDecoder().decode(p, t)
        # The box on the left padding only collapses and is dropped.
        self.assertEqual([c.class_id for c in out], [0, 2])
        person, umbrella = out
        self.assertEqual(person.x1, 0.0)
        self.assertEqual(umbrella.x2, 400.0)
        self.assertEqual(umbrella.y2, 600.0)
        for c in out:
            self.assertTrue(0.0 <= c.x1 < c.x2 <= 400.0)
            self.assertTrue(0.0 <= c.y1 < c.y2 <= 600.0)

    def test_flat_buffer_with_dims(self) -> None:
        p = _preds(
            [
                (100, 100, 20, 40, [0.9, 0.1, 0.0, 0.0, 0.0, 0.0]),
                (300, 200, 10, 10, [0.0, 0.0, 0.0, 0.0, 0.95, 0.0]),
            ]
        )
        dec = DetectionDecoder()
        a = dec.decode(p, IDENTITY)
        b = dec.decode(p.ravel(), IDENTITY, dims=p.shape)
        self.assertEqual(a, b)

    def test_nothing_above_threshold(self) -> None:
        p = _preds([(50, 50, 10, 10, [0.1, 0.1, 0.1, 0.1, 0.1, 0.1])])
        self.assertEqual(DetectionDecoder().decode(p, IDENTITY), [])

    def test_malformed_output(self) -> None:
        dec = DetectionDecoder()
        with self.assertRaises(MalformedOutputError):
            dec.decode(np.zeros((1, 9, 5), dtype=np.float32), IDENTITY)
        with self.assertRaises(MalformedOutputError):
            dec.decode(np.zeros((2, 10, 5), dtype=np.float32), IDENTITY)
        with self.assertRaises(MalformedOutputError):
            dec.decode(np.zeros((10, 5), dtype=np.float32), IDENTITY)
        with self.assertRaises(MalformedOutputError):
            dec.decode(np.zeros((1, 10, 0), dtype=np.float32), IDENTITY)
        with self.assertRaises(MalformedOutputError):
            dec.decode(np.zeros(49, dtype=np.float32), IDENTITY, dims=(1, 10, 5))
        bad = np.zeros((1, 10, 5), dtype=np.float32)
        bad[0, 4, 2] = np.nan
        with self.assertRaises(MalformedOutputError):
            dec.decode(bad, IDENTITY)

    def test_invalid_thresholds_rejected(self) -> None:
        with self.assertRaises(ValueError):
            DecoderConfig(conf_threshold=1.5)
        with self.assertRaises(ValueError):
            DetectionDecoder(DecoderConfig(class_thresholds={"tree": 0.5}))

    def test_output_dims(self) -> None:
        self.assertEqual(output_dims(), (1, 10, 8400))


if __name__ == "__main__":
    unittest.main()
