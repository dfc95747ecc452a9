"""
Box geometry shared by the scoring rules.

Boxes are read as (x, y, width, height) from a Detection's xyxy corners.
"""

from __future__ import annotations

import math
from typing import Sequence, Tuple

from sketch_kit.nms import box_iou
from sketch_kit.types import Detection

PIXELS_PER_INCH = 96.0
OVERLAP_IOU = 0.05


def center(det: Detection) -> Tuple[float, float]:
    return det.x1 + det.width / 2, det.y1 + det.height / 2


def area(det: Detection) -> float:
    return det.width * det.height


def distance(a: Detection, b: Detection) -> float:
    (ax, ay), (bx, by) = center(a), center(b)
    return math.hypot(ax - bx, ay - by)


def iou(a: Detection, b: Detection) -> float:
    return box_iou(a.as_xyxy(), b.as_xyxy())


def overlaps(a: Detection, b: Detection) -> bool:
    return iou(a, b) > OVERLAP_IOU


def pixels_to_inches(pixels: float) -> float:
    return pixels / PIXELS_PER_INCH


def largest(dets: Sequence[Detection]) -> Detection:
    """
    Largest box by area; the first one wins on ties.
    """

    best = dets[0]
    for d in dets[1:]:
        if area(d) > area(best):
            best = d
    return best


def figure_height_inches(persons: Sequence[Detection]) -> float:
    if not persons:
        return 0.0
    return pixels_to_inches(largest(persons).height)
