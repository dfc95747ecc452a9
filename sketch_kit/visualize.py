from __future__ import annotations

from typing import Iterable, Tuple

import numpy as np

from .types import Detection

# BGR, one per vocabulary entry.
_PALETTE: Tuple[Tuple[int, int, int], ...] = (
    (56, 56, 255),
    (255, 157, 31),
    (29, 178, 255),
    (0, 212, 255),
    (168, 153, 44),
    (147, 69, 52),
)
_PLACEHOLDER_COLOR = (160, 160, 160)


def color_for(det: Detection) -> Tuple[int, int, int]:
    if det.is_placeholder:
        return _PLACEHOLDER_COLOR
    if 0 <= det.class_id < len(_PALETTE):
        return _PALETTE[det.class_id]
    return (0, 255, 255)


def label_for(det: Detection, *, show_score: bool = True) -> str:
    label = det.category
    if show_score:
        label = f"{label} {det.confidence:.2f}"
    if det.is_placeholder:
        label = f"{label} (placeholder)"
    return label


def draw_detections(
    image_bgr: np.ndarray,
    detections: Iterable[Detection],
    *,
    show_score: bool = True,
    box_thickness: int = 2,
    font_scale: float = 0.5,
    font_thickness: int = 1,
) -> np.ndarray:
    """
    Draw boxes + labels on a BGR image and return a copy.
    """

    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for draw_detections(). Install with `pip install opencv-python`.") from e

    if image_bgr is None or not hasattr(image_bgr, "shape"):
        raise TypeError("image_bgr must be a NumPy array (BGR).")
    if image_bgr.ndim != 3 or image_bgr.shape[2] != 3:
        raise ValueError(f"Expected image shape (H, W, 3), got {getattr(image_bgr, 'shape', None)}")

    out = image_bgr.copy()
    h, w = out.shape[:2]

    for det in detections:
        x1i = int(np.clip(round(det.x1), 0, w - 1))
        y1i = int(np.clip(round(det.y1), 0, h - 1))
        x2i = int(np.clip(round(det.x2), 0, w - 1))
        y2i = int(np.clip(round(det.y2), 0, h - 1))

        color = color_for(det)
        cv2.rectangle(out, (x1i, y1i), (x2i, y2i), color, thickness=box_thickness)

        label = label_for(det, show_score=show_score)
        (tw, th), baseline = cv2.getTextSize(label, cv2.FONT_HERSHEY_SIMPLEX, font_scale, font_thickness)
        y_text_top = y1i - th - baseline
        if y_text_top < 0:
            y_text_top = y1i

        x_text_right = min(x1i + tw, w - 1)
        y_text_bottom = min(y_text_top + th + baseline, h - 1)

        cv2.rectangle(out, (x1i, y_text_top), (x_text_right, y_text_bottom), color, thickness=-1)
        cv2.putText(
            out,
            label,
            (x1i, min(y_text_top + th, h - 1)),
            cv2.FONT_HERSHEY_SIMPLEX,
            font_scale,
            (255, 255, 255),
            thickness=font_thickness,
            lineType=cv2.LINE_AA,
        )

    return out
