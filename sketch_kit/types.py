from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Tuple

import numpy as np

from .vocabulary import class_id_for, class_name_for

SOURCE_MODEL = "model"
SOURCE_PLACEHOLDER = "placeholder"
SOURCE_MANUAL = "manual"


@dataclass(frozen=True)
class LetterboxTransform:
    """
    Mapping between original image pixels and the square model canvas.

    scale is model-space / image-space (same for both axes); pad_x / pad_y are
    the canvas offsets of the resized image.
    """

    scale: float
    pad_x: float
    pad_y: float
    orig_width: int
    orig_height: int
    size: int = 640

    def to_original(self, x: float, y: float) -> Tuple[float, float]:
        return (x - self.pad_x) / self.scale, (y - self.pad_y) / self.scale

    def to_model(self, x: float, y: float) -> Tuple[float, float]:
        return x * self.scale + self.pad_x, y * self.scale + self.pad_y

    def box_to_original(self, x1, y1, x2, y2):
        """
        Model-space xyxy -> image xyxy clipped to [0, W] x [0, H]. Works on
        scalars and NumPy arrays.
        """

        ox1, oy1 = self.to_original(x1, y1)
        ox2, oy2 = self.to_original(x2, y2)
        w, h = self.orig_width, self.orig_height
        return np.clip(ox1, 0, w), np.clip(oy1, 0, h), np.clip(ox2, 0, w), np.clip(oy2, 0, h)


@dataclass(frozen=True)
class Candidate:
    """
    Pre-suppression detection hypothesis in original image coordinates.
    """

    x1: float
    y1: float
    x2: float
    y2: float
    score: float
    class_id: int

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return self.x1, self.y1, self.x2, self.y2

    @property
    def area(self) -> float:
        return max(0.0, self.x2 - self.x1) * max(0.0, self.y2 - self.y1)


@dataclass(frozen=True)
class Detection:
    """
    Final detection handed to scoring and persistence.

    `source` tells model output apart from placeholder and manual boxes so a
    placeholder can never pass for a model detection.
    """

    category: str
    x1: float
    y1: float
    x2: float
    y2: float
    confidence: float
    class_id: int
    source: str = SOURCE_MODEL

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return self.x1, self.y1, self.x2, self.y2

    @property
    def width(self) -> float:
        return self.x2 - self.x1

    @property
    def height(self) -> float:
        return self.y2 - self.y1

    @property
    def area(self) -> float:
        return max(0.0, self.width) * max(0.0, self.height)

    @property
    def is_placeholder(self) -> bool:
        return self.source == SOURCE_PLACEHOLDER

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "bbox": [self.x1, self.y1, self.x2, self.y2],
            "confidence": self.confidence,
            "class_id": self.class_id,
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Detection":
        bbox = payload.get("bbox")
        if not isinstance(bbox, (list, tuple)) or len(bbox) != 4:
            raise ValueError(f"Detection bbox must be [x1, y1, x2, y2], got {bbox!r}")
        category = payload.get("category")
        class_id = payload.get("class_id")
        if category is None and class_id is None:
            raise ValueError("Detection needs a category or a class_id")
        if class_id is None:
            class_id = class_id_for(str(category))
        if category is None:
            category = class_name_for(int(class_id))
        return cls(
            category=str(category),
            x1=float(bbox[0]),
            y1=float(bbox[1]),
            x2=float(bbox[2]),
            y2=float(bbox[3]),
            confidence=float(payload.get("confidence", 1.0)),
            class_id=int(class_id),
            source=str(payload.get("source", SOURCE_MODEL)),
        )


def make_detection(
    category: str,
    bbox: Tuple[float, float, float, float],
    *,
    confidence: float = 1.0,
    source: str = SOURCE_MANUAL,
) -> Detection:
    """
    Build a validated Detection from a category name and an xyxy box.
    """

    x1, y1, x2, y2 = (float(v) for v in bbox)
    if not (x1 < x2 and y1 < y2):
        raise ValueError(f"bbox must satisfy x1 < x2 and y1 < y2, got {bbox!r}")
    if not (0.0 <= confidence <= 1.0):
        raise ValueError("confidence must be within [0, 1]")
    class_id = class_id_for(category)
    return Detection(
        category=class_name_for(class_id),
        x1=x1,
        y1=y1,
        x2=x2,
        y2=y2,
        confidence=float(confidence),
        class_id=class_id,
        source=source,
    )
