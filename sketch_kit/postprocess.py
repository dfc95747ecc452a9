from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from .errors import MalformedOutputError
from .types import Candidate, LetterboxTransform
from .vocabulary import NUM_CLASSES, class_id_for

DEFAULT_NUM_POSITIONS = 8400


@dataclass(frozen=True)
class DecoderConfig:
    """
    Decoding thresholds.

    class_thresholds overrides conf_threshold for the listed classes; keys may
    be class ids or category names.
    """

    conf_threshold: float = 0.5
    class_thresholds: Mapping[Union[int, str], float] = field(default_factory=dict)
    num_classes: int = NUM_CLASSES

    def __post_init__(self) -> None:
        if not (0.0 <= self.conf_threshold <= 1.0):
            raise ValueError("conf_threshold must be within [0, 1]")
        for key, value in self.class_thresholds.items():
            if not (0.0 <= float(value) <= 1.0):
                raise ValueError(f"class threshold for {key!r} must be within [0, 1]")
        if self.num_classes <= 0:
            raise ValueError("num_classes must be > 0")

    def threshold_table(self) -> np.ndarray:
        table = np.full((self.num_classes,), float(self.conf_threshold), dtype=np.float64)
        for key, value in self.class_thresholds.items():
            cid = class_id_for(key) if isinstance(key, str) else int(key)
            if not 0 <= cid < self.num_classes:
                raise ValueError(f"class threshold key {key!r} outside vocabulary")
            table[cid] = float(value)
        return table


class DetectionDecoder:
    """
    Decode a raw (1, 4 + C, N) prediction into candidates.

    Layout is feature-major: row 0..3 hold cx, cy, w, h for all N positions,
    rows 4.. hold one class score row per class. Coordinates come out in
    original image pixels.
    """

    def __init__(self, cfg: DecoderConfig = DecoderConfig()):
        self.cfg = cfg
        self._thresholds = cfg.threshold_table()

    def decode(
        self,
        preds: np.ndarray,
        transform: LetterboxTransform,
        dims: Optional[Sequence[int]] = None,
    ) -> List[Candidate]:
        p = self._as_feature_rows(preds, dims)
        boxes = p[0:4, :]
        class_scores = p[4:, :]

        # argmax keeps the first maximum, i.e. the lowest class id on ties.
        class_ids = np.argmax(class_scores, axis=0)
        scores = class_scores[class_ids, np.arange(class_scores.shape[1])]

        # A score equal to its threshold does not pass.
        keep = scores > self._thresholds.astype(scores.dtype)[class_ids]
        keep &= (boxes[2] > 0) & (boxes[3] > 0)
        if not np.any(keep):
            return []

        cx, cy, w, h = boxes[:, keep]
        scores = scores[keep]
        class_ids = class_ids[keep]

        x1, y1, x2, y2 = transform.box_to_original(cx - w / 2, cy - h / 2, cx + w / 2, cy + h / 2)

        # Boxes entirely on the padding collapse when clipped.
        inside = (x2 > x1) & (y2 > y1)
        x1, y1, x2, y2 = x1[inside], y1[inside], x2[inside], y2[inside]
        scores = scores[inside]
        class_ids = class_ids[inside]

        return [
            Candidate(
                x1=float(a),
                y1=float(b),
                x2=float(c),
                y2=float(d),
                score=float(s),
                class_id=int(k),
            )
            for a, b, c, d, s, k in zip(x1, y1, x2, y2, scores, class_ids)
        ]

    def _as_feature_rows(self, preds: np.ndarray, dims: Optional[Sequence[int]]) -> np.ndarray:
        p = np.asarray(preds)
        if not np.issubdtype(p.dtype, np.floating):
            p = p.astype(np.float64)
        if dims is not None:
            expected = int(np.prod(dims))
            if p.size != expected:
                raise MalformedOutputError(f"Output has {p.size} values, dims {tuple(dims)} need {expected}.")
            p = p.reshape(tuple(int(d) for d in dims))

        if p.ndim != 3:
            raise MalformedOutputError(f"Expected output shape (1, 4 + C, N), got {p.shape}.")
        if p.shape[0] != 1:
            raise MalformedOutputError(f"Batch > 1 is not supported (got shape {p.shape}). Pass one image at a time.")
        features = 4 + self.cfg.num_classes
        if p.shape[1] != features:
            raise MalformedOutputError(
                f"Expected {features} feature rows (4 box + {self.cfg.num_classes} classes), got shape {p.shape}."
            )
        if p.shape[2] == 0:
            raise MalformedOutputError("Output has no candidate positions.")
        if not np.all(np.isfinite(p)):
            raise MalformedOutputError("Output contains NaN or infinite values.")
        return p[0]


def output_dims(num_classes: int = NUM_CLASSES, num_positions: int = DEFAULT_NUM_POSITIONS) -> Tuple[int, int, int]:
    return 1, 4 + num_classes, num_positions
