import unittest

import numpy as np

from sketch_kit.nms import NMSConfig, box_iou, nms, suppress
from sketch_kit.types import Candidate


def _cand(box, score, class_id=0) -> Candidate:
    return Candidate(x1=box[0], y1=box[1], x2=box[2], y2=box[3], score=score, class_id=class_id)


class TestNms(unittest.TestCase):
    def test_box_iou(self) -> None:
        self.assertEqual(box_iou((0, 0, 10, 10), (20, 20, 30, 30)), 0.0)
        self.assertAlmostEqual(box_iou((0, 0, 10, 10), (0, 0, 10, 5)), 0.5)
        self.assertAlmostEqual(box_iou((0, 0, 10, 10), (0, 0, 10, 10)), 1.0)

    def test_iou_equal_to_threshold_is_kept(self) -> None:
        cands = [_cand((0, 0, 10, 10), 0.9), _cand((0, 0, 10, 5), 0.8)]
        self.assertEqual(len(suppress(cands, NMSConfig(iou_threshold=0.5))), 2)
        self.assertEqual(suppress(cands, NMSConfig(iou_threshold=0.45)), [cands[0]])

    def test_classes_do_not_suppress_each_other(self) -> None:
        cands = [_cand((0, 0, 10, 10), 0.9, 0), _cand((0, 0, 10, 10), 0.8, 1)]
        self.assertEqual(suppress(cands), cands)

    def test_highest_score_kept_first(self) -> None:
        cands = [
            _cand((0, 0, 10, 10), 0.6),
            _cand((1, 1, 11, 11), 0.9),
            _cand((50, 50, 60, 60), 0.7),
        ]
        kept = suppress(cands)
        self.assertEqual([c.score for c in kept], [0.9, 0.7])

    def test_ties_keep_input_order(self) -> None:
        cands = [_cand((0, 0, 10, 10), 0.8), _cand((0, 0, 10, 10), 0.8)]
        kept = suppress(cands)
        self.assertEqual(len(kept), 1)
        self.assertIs(kept[0], cands[0])

    def test_idempotent(self) -> None:
        rng = np.random.default_rng(7)
        cands = []
        for _ in range(40):
            x, y = rng.uniform(0, 100, size=2)
            w, h = rng.uniform(5, 40, size=2)
            cands.append(_cand((x, y, x + w, y + h), float(rng.uniform(0.1, 1.0)), int(rng.integers(0, 3))))
        once = suppress(cands)
        self.assertEqual(suppress(once), once)

    def test_max_detections(self) -> None:
        boxes = np.array([[0, 0, 1, 1], [10, 10, 11, 11], [20, 20, 21, 21]], dtype=np.float64)
        keep = nms(boxes, np.array([0.5, 0.9, 0.7]), np.zeros(3, dtype=np.int64), NMSConfig(max_detections=2))
        self.assertEqual(keep.tolist(), [1, 2])

    def test_empty(self) -> None:
        self.assertEqual(suppress([]), [])


if __name__ == "__main__":
    unittest.main()
