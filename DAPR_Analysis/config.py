from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from sketch_kit.filters import FilterConfig
from sketch_kit.nms import NMSConfig
from sketch_kit.postprocess import DecoderConfig
from sketch_kit.runtime import DetectorConfig
from sketch_kit.vocabulary import CLASS_NAMES


@dataclass(frozen=True)
class DetectionProfile:
    """
    Tunable detection parameters, usually loaded from a JSON profile.
    """

    schema_version: int = 1
    conf_threshold: float = 0.5
    class_thresholds: Mapping[str, float] = field(default_factory=dict)
    iou_threshold: float = 0.45
    min_area: float = 400.0
    min_ink_ratio: float = 0.05
    ink_filter: bool = True
    input_size: int = 640
    use_model: bool = True
    notes: Optional[str] = None

    def __post_init__(self) -> None:
        if self.schema_version != 1:
            raise ValueError("detection profile schema_version must be 1")
        if not (0.0 <= self.conf_threshold <= 1.0):
            raise ValueError("conf_threshold must be within [0, 1]")
        for name, value in self.class_thresholds.items():
            if name not in CLASS_NAMES:
                raise ValueError(f"class_thresholds has unknown category {name!r}")
            if not (0.0 <= float(value) <= 1.0):
                raise ValueError(f"class_thresholds[{name!r}] must be within [0, 1]")
        if not (0.0 <= self.iou_threshold <= 1.0):
            raise ValueError("iou_threshold must be within [0, 1]")
        if self.min_area < 0:
            raise ValueError("min_area must be >= 0")
        if not (0.0 <= self.min_ink_ratio <= 1.0):
            raise ValueError("min_ink_ratio must be within [0, 1]")
        if self.input_size <= 0:
            raise ValueError("input_size must be > 0")

    def to_detector_config(self) -> DetectorConfig:
        return DetectorConfig(
            input_size=self.input_size,
            decoder=DecoderConfig(conf_threshold=self.conf_threshold, class_thresholds=dict(self.class_thresholds)),
            nms=NMSConfig(iou_threshold=self.iou_threshold),
            filters=FilterConfig(
                min_area=self.min_area,
                ink_filter=self.ink_filter,
                min_ink_ratio=self.min_ink_ratio,
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "conf_threshold": self.conf_threshold,
            "class_thresholds": dict(self.class_thresholds),
            "iou_threshold": self.iou_threshold,
            "min_area": self.min_area,
            "min_ink_ratio": self.min_ink_ratio,
            "ink_filter": self.ink_filter,
            "input_size": self.input_size,
            "use_model": self.use_model,
            "notes": self.notes,
        }


def _require_int(payload: Dict[str, Any], key: str) -> int:
    if key not in payload:
        raise ValueError(f"Missing required key: {key}")
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer")
    return int(value)


def _optional_number(payload: Dict[str, Any], key: str, default: float) -> float:
    value = payload.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be a number")
    return float(value)


def _optional_bool(payload: Dict[str, Any], key: str, default: bool) -> bool:
    value = payload.get(key, default)
    if not isinstance(value, bool):
        raise ValueError(f"{key} must be a boolean")
    return value


def load_detection_profile(path: Path) -> DetectionProfile:
    if not path.exists():
        raise FileNotFoundError(f"Detection profile not found: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid detection profile JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise ValueError("Detection profile must be a JSON object")

    allowed = {
        "schema_version",
        "conf_threshold",
        "class_thresholds",
        "iou_threshold",
        "min_area",
        "min_ink_ratio",
        "ink_filter",
        "input_size",
        "use_model",
        "notes",
    }
    unknown = sorted(set(payload.keys()) - allowed)
    if unknown:
        raise ValueError(f"Unknown detection profile keys: {unknown}")

    class_thresholds = payload.get("class_thresholds", {})
    if not isinstance(class_thresholds, dict):
        raise ValueError("class_thresholds must be an object of category -> threshold")
    for name, value in class_thresholds.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"class_thresholds[{name!r}] must be a number")

    input_size = payload.get("input_size", 640)
    if isinstance(input_size, bool) or not isinstance(input_size, int):
        raise ValueError("input_size must be an integer")

    notes = payload.get("notes")
    if notes is not None and not isinstance(notes, str):
        raise ValueError("notes must be a string if provided")

    return DetectionProfile(
        schema_version=_require_int(payload, "schema_version"),
        conf_threshold=_optional_number(payload, "conf_threshold", 0.5),
        class_thresholds={str(k): float(v) for k, v in class_thresholds.items()},
        iou_threshold=_optional_number(payload, "iou_threshold", 0.45),
        min_area=_optional_number(payload, "min_area", 400.0),
        min_ink_ratio=_optional_number(payload, "min_ink_ratio", 0.05),
        ink_filter=_optional_bool(payload, "ink_filter", True),
        input_size=int(input_size),
        use_model=_optional_bool(payload, "use_model", True),
        notes=notes,
    )
