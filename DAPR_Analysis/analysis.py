"""
Analysis pipeline: raster -> detections -> persisted set -> DAPR score.

Scores are always computed from the detection set that gets stored, so a
score can be reproduced from storage alone. Manual edits rescore without
touching the model.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Union

import numpy as np

from sketch_kit.runtime import SketchDetector
from sketch_kit.types import SOURCE_MANUAL, Detection, make_detection

from .errors import SketchImageMissingError
from .scoring import DAPRScore, calculate_dapr_score
from .store import SketchRecord, SketchStore, StoredDetection

logger = logging.getLogger(__name__)

ImageLoader = Callable[[str], np.ndarray]


def read_image(path: str) -> np.ndarray:
    import cv2  # type: ignore

    p = Path(path)
    if not p.exists():
        raise SketchImageMissingError(f"Sketch image not found: {p}")
    image = cv2.imread(str(p), cv2.IMREAD_COLOR)
    if image is None:
        raise SketchImageMissingError(f"Sketch image could not be decoded: {p}")
    return image


@dataclass(frozen=True)
class AnalysisResult:
    sketch_id: int
    detections: Tuple[StoredDetection, ...]
    score: Optional[DAPRScore]
    image_width: int = 0
    image_height: int = 0
    used_placeholder: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sketch_id": self.sketch_id,
            "image_width": self.image_width,
            "image_height": self.image_height,
            "used_placeholder": self.used_placeholder,
            "detections": [d.to_dict() for d in self.detections],
            "score": None if self.score is None else self.score.to_dict(),
        }


class ResultAggregator:
    """
    Runs the detector for a stored sketch and keeps detections and score in
    step. One pipeline run per sketch at a time: the async entry point
    serialises runs per sketch id, sync callers must do so themselves.
    """

    def __init__(
        self,
        store: SketchStore,
        detector: SketchDetector,
        *,
        image_loader: ImageLoader = read_image,
    ):
        self.store = store
        self.detector = detector
        self.image_loader = image_loader
        self._locks: Dict[int, asyncio.Lock] = {}
        self._lock_users: Dict[int, int] = {}

    def _load_image(self, record: SketchRecord) -> np.ndarray:
        if not record.image_path:
            raise SketchImageMissingError(f"Sketch {record.sketch_id} has no image")
        image = self.image_loader(record.image_path)
        if image is None:
            raise SketchImageMissingError(f"Sketch image could not be read: {record.image_path}")
        return image

    def _image_size(self, sketch_id: int) -> Tuple[int, int]:
        image = self._load_image(self.store.get_sketch(sketch_id))
        h, w = image.shape[:2]
        return int(w), int(h)

    def _persist(
        self, sketch_id: int, detections: Tuple[Detection, ...], width: int, height: int, placeholder: bool
    ) -> AnalysisResult:
        stored, score = self.store.save_analysis(
            sketch_id, detections, lambda dets: calculate_dapr_score(dets, width, height)
        )
        logger.info(
            "Sketch %s analyzed: %d detections, total score %d%s",
            sketch_id,
            len(stored),
            score.total_score,
            " (placeholder)" if placeholder else "",
        )
        return AnalysisResult(
            sketch_id=sketch_id,
            detections=stored,
            score=score,
            image_width=width,
            image_height=height,
            used_placeholder=placeholder,
        )

    def run_analysis(self, sketch_id: int) -> AnalysisResult:
        record = self.store.get_sketch(sketch_id)
        image = self._load_image(record)
        result = self.detector.detect(image)
        return self._persist(record.sketch_id, result.detections, result.width, result.height, result.used_placeholder)

    async def run_analysis_async(self, sketch_id: int, *, timeout: Optional[float] = None) -> AnalysisResult:
        key = int(sketch_id)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                record = self.store.get_sketch(sketch_id)
                image = await asyncio.to_thread(self._load_image, record)
                result = await self.detector.detect_async(image, timeout=timeout)
                return self._persist(
                    record.sketch_id, result.detections, result.width, result.height, result.used_placeholder
                )
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    def _rescore(
        self, sketch_id: int, *, add: Tuple[Detection, ...] = (), remove: Tuple[int, ...] = ()
    ) -> AnalysisResult:
        # Image size first: a missing image must fail before anything is written.
        width, height = self._image_size(sketch_id)
        stored, score = self.store.apply_edit(
            sketch_id,
            lambda dets: calculate_dapr_score(dets, width, height),
            add=add,
            remove=remove,
        )
        return AnalysisResult(
            sketch_id=int(sketch_id),
            detections=stored,
            score=score,
            image_width=width,
            image_height=height,
        )

    def recalculate_score(self, sketch_id: int) -> AnalysisResult:
        return self._rescore(sketch_id)

    def remove_detection(self, sketch_id: int, detection_id: int) -> AnalysisResult:
        return self._rescore(sketch_id, remove=(int(detection_id),))

    def add_manual_detection(
        self, sketch_id: int, detection: Union[Detection, Mapping[str, Any]]
    ) -> AnalysisResult:
        if isinstance(detection, Detection):
            det = detection
        else:
            bbox = detection.get("bbox")
            if not isinstance(bbox, (list, tuple)) or len(bbox) != 4:
                raise ValueError(f"Manual detection bbox must be [x1, y1, x2, y2], got {bbox!r}")
            det = make_detection(
                str(detection["category"]),
                (bbox[0], bbox[1], bbox[2], bbox[3]),
                confidence=float(detection.get("confidence", 1.0)),
                source=SOURCE_MANUAL,
            )
        return self._rescore(sketch_id, add=(det,))

    def get_analysis_results(self, sketch_id: int) -> AnalysisResult:
        record = self.store.get_sketch(sketch_id)
        return AnalysisResult(
            sketch_id=record.sketch_id,
            detections=self.store.get_detections(sketch_id),
            score=self.store.get_score(sketch_id),
        )
