"""
Random stand-in detections so the app stays usable without a model.

These boxes carry no evidence about the drawing. Every one is tagged
`source="placeholder"`.
"""

from __future__ import annotations

from typing import List, Optional, Protocol, Tuple

import numpy as np

from .types import SOURCE_PLACEHOLDER, Detection
from .vocabulary import class_id_for


class DetectionSource(Protocol):
    def generate(self, width: int, height: int) -> List[Detection]:
        ...


class PlaceholderGenerator:
    def __init__(self, seed: Optional[int] = None):
        self._rng = np.random.default_rng(seed)

    def _conf(self) -> float:
        return 0.6 + float(self._rng.random()) * 0.35

    def _det(self, category: str, box: Tuple[float, float, float, float]) -> Detection:
        x1, y1, x2, y2 = box
        return Detection(
            category=category,
            x1=round(x1, 2),
            y1=round(y1, 2),
            x2=round(x2, 2),
            y2=round(y2, 2),
            confidence=round(self._conf(), 3),
            class_id=class_id_for(category),
            source=SOURCE_PLACEHOLDER,
        )

    def generate(self, width: int, height: int) -> List[Detection]:
        rnd = self._rng.random
        out: List[Detection] = []

        # Person: centered-ish, 40-60% of the image height, near the bottom.
        person_h = height * (0.4 + rnd() * 0.2)
        person_w = person_h * (0.3 + rnd() * 0.15)
        person_x = (width - person_w) / 2 + (rnd() - 0.5) * width * 0.1
        person_y = height - person_h - height * 0.05
        out.append(self._det("person", (person_x, person_y, person_x + person_w, person_y + person_h)))

        # 3-8 rain drops in the upper 40%.
        for _ in range(3 + int(self._rng.integers(0, 6))):
            rx = rnd() * width * 0.9
            ry = rnd() * height * 0.4
            rw = width * (0.02 + rnd() * 0.03)
            rh = height * (0.03 + rnd() * 0.05)
            out.append(self._det("rain", (rx, ry, rx + rw, ry + rh)))

        if rnd() < 0.5:
            umb_w = person_w * 1.2
            umb_h = height * 0.15
            umb_x = person_x - (umb_w - person_w) / 2
            umb_y = person_y - umb_h - height * 0.02
            out.append(self._det("umbrella", (umb_x, umb_y, umb_x + umb_w, umb_y + umb_h)))

        if rnd() < 0.2:
            cw = width * (0.2 + rnd() * 0.2)
            ch = height * (0.1 + rnd() * 0.1)
            cx = rnd() * (width - cw)
            cy = rnd() * height * 0.15
            out.append(self._det("cloud", (cx, cy, cx + cw, cy + ch)))

        if rnd() < 0.1:
            lw = width * 0.05
            lh = height * 0.3
            lx = width * (0.2 + rnd() * 0.6)
            ly = height * 0.05
            out.append(self._det("lightning", (lx, ly, lx + lw, ly + lh)))

        if rnd() < 0.1:
            pw = width * (0.2 + rnd() * 0.3)
            ph = height * (0.05 + rnd() * 0.05)
            px = rnd() * (width - pw)
            py = height - ph - height * 0.02
            out.append(self._det("puddle", (px, py, px + pw, py + ph)))

        return out
