"""
Detection runtime for DAPR sketches.

Letterbox preprocessing, decoding of (1, 4 + C, N) detector output, per-class
NMS and raster post filters over NumPy arrays. Inference runtimes are optional
and live under `sketch_kit.backends`.
"""

from .errors import BackendUnavailableError, InferenceError, InvalidRasterError, MalformedOutputError, SketchKitError
from .filters import FilterConfig, apply_filters, filter_ink_content, filter_min_area, finalize, ink_ratio
from .letterbox import NormalizedInput, compute_transform, letterbox, normalize_image, to_planar_tensor
from .nms import NMSConfig, box_iou, nms, suppress
from .placeholder import DetectionSource, PlaceholderGenerator
from .postprocess import DecoderConfig, DetectionDecoder
from .runtime import DetectionResult, DetectorConfig, SketchDetector, find_project_root, load_detector, resolve_path
from .session import BackendProvider, InferenceAdapter, ModelSession, default_providers
from .types import Candidate, Detection, LetterboxTransform, make_detection
from .visualize import draw_detections
from .vocabulary import CLASS_NAMES, class_id_for, class_name_for, load_class_names

__all__ = [
    "BackendUnavailableError",
    "InferenceError",
    "InvalidRasterError",
    "MalformedOutputError",
    "SketchKitError",
    "FilterConfig",
    "apply_filters",
    "filter_ink_content",
    "filter_min_area",
    "finalize",
    "ink_ratio",
    "NormalizedInput",
    "compute_transform",
    "letterbox",
    "normalize_image",
    "to_planar_tensor",
    "NMSConfig",
    "box_iou",
    "nms",
    "suppress",
    "DetectionSource",
    "PlaceholderGenerator",
    "DecoderConfig",
    "DetectionDecoder",
    "DetectionResult",
    "DetectorConfig",
    "SketchDetector",
    "find_project_root",
    "load_detector",
    "resolve_path",
    "BackendProvider",
    "InferenceAdapter",
    "ModelSession",
    "default_providers",
    "Candidate",
    "Detection",
    "LetterboxTransform",
    "make_detection",
    "draw_detections",
    "CLASS_NAMES",
    "class_id_for",
    "class_name_for",
    "load_class_names",
]
