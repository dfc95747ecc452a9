from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Sequence

import numpy as np

from .letterbox import as_bgr_image
from .types import SOURCE_MODEL, Candidate, Detection
from .vocabulary import class_name_for

MIN_DETECTION_AREA = 400.0
MIN_INK_RATIO = 0.05
WHITE_LEVEL = 240
INK_SAMPLE_STRIDE = 2


@dataclass(frozen=True)
class FilterConfig:
    min_area: float = MIN_DETECTION_AREA
    ink_filter: bool = True
    min_ink_ratio: float = MIN_INK_RATIO
    white_level: int = WHITE_LEVEL
    sample_stride: int = INK_SAMPLE_STRIDE

    def __post_init__(self) -> None:
        if self.min_area < 0:
            raise ValueError("min_area must be >= 0")
        if not (0.0 <= self.min_ink_ratio <= 1.0):
            raise ValueError("min_ink_ratio must be within [0, 1]")
        if not (0 < self.white_level <= 256):
            raise ValueError("white_level must be within (0, 256]")
        if self.sample_stride < 1:
            raise ValueError("sample_stride must be >= 1")


def filter_min_area(candidates: Sequence[Candidate], min_area: float = MIN_DETECTION_AREA) -> List[Candidate]:
    return [c for c in candidates if c.area >= min_area]


def ink_ratio(
    image_bgr: np.ndarray,
    box: Sequence[float],
    *,
    white_level: int = WHITE_LEVEL,
    stride: int = INK_SAMPLE_STRIDE,
) -> float:
    """
    Share of sampled pixels inside `box` that are not near-white.

    Every `stride`-th pixel is sampled in both axes; a pixel is ink when any
    channel is below `white_level`. Boxes are clipped to the image, and a box
    with nothing left to sample has ratio 0.
    """

    h, w = image_bgr.shape[:2]
    x0 = max(0, int(math.floor(box[0])))
    y0 = max(0, int(math.floor(box[1])))
    x1 = min(w, int(math.ceil(box[2])))
    y1 = min(h, int(math.ceil(box[3])))
    if x1 <= x0 or y1 <= y0:
        return 0.0

    samples = image_bgr[y0:y1:stride, x0:x1:stride, :3]
    total = samples.shape[0] * samples.shape[1]
    if total == 0:
        return 0.0
    ink = np.any(samples < white_level, axis=2)
    return float(np.count_nonzero(ink)) / float(total)


def filter_ink_content(
    candidates: Sequence[Candidate],
    image: np.ndarray,
    *,
    min_ink_ratio: float = MIN_INK_RATIO,
    white_level: int = WHITE_LEVEL,
    stride: int = INK_SAMPLE_STRIDE,
) -> List[Candidate]:
    """
    Drop candidates sitting on blank canvas. `image` is the original,
    unresized raster the candidates' coordinates refer to.
    """

    img = as_bgr_image(image)
    return [
        c
        for c in candidates
        if ink_ratio(img, c.as_xyxy(), white_level=white_level, stride=stride) >= min_ink_ratio
    ]


def apply_filters(candidates: Sequence[Candidate], image: np.ndarray, cfg: FilterConfig) -> List[Candidate]:
    kept = filter_min_area(candidates, cfg.min_area)
    if cfg.ink_filter and kept:
        kept = filter_ink_content(
            kept,
            image,
            min_ink_ratio=cfg.min_ink_ratio,
            white_level=cfg.white_level,
            stride=cfg.sample_stride,
        )
    return kept


def finalize(candidates: Sequence[Candidate], *, source: str = SOURCE_MODEL) -> List[Detection]:
    """
    Candidates -> Detections. The only place boxes and scores get rounded.
    """

    return [
        Detection(
            category=class_name_for(c.class_id),
            x1=round(c.x1, 2),
            y1=round(c.y1, 2),
            x2=round(c.x2, 2),
            y2=round(c.y2, 2),
            confidence=round(c.score, 3),
            class_id=int(c.class_id),
            source=source,
        )
        for c in candidates
    ]
