"""
DAPR (Draw-A-Person-in-the-Rain) scoring layer built on top of `sketch_kit`.

Detection stays in `sketch_kit`; this package covers
- geometry over detections and the fixed 35-item rule table
- the analysis pipeline keeping detections and score in step
- sketch persistence (memory / JSON files)
- reports and the command line runner
"""

from __future__ import annotations

from .analysis import AnalysisResult, ResultAggregator, read_image
from .config import DetectionProfile, load_detection_profile
from .errors import DetectionNotFoundError, SketchImageMissingError, SketchNotFoundError
from .reporting import (
    ScoreSummary,
    build_summary,
    find_similar_sketches,
    score_to_dict,
    today_date_str,
    write_analysis_artifacts,
    write_run_config,
    write_scores_csv,
    write_summary_report,
)
from .scoring import (
    RESOURCE_ITEMS,
    STRESS_ITEMS,
    DAPRScore,
    InterpretationBand,
    ScoreItem,
    calculate_dapr_score,
    get_interpretation,
    interpretation_band,
)
from .store import JsonSketchStore, MemorySketchStore, SketchRecord, SketchStore, StoredDetection

__all__ = [
    "AnalysisResult",
    "ResultAggregator",
    "read_image",
    "DetectionProfile",
    "load_detection_profile",
    "DetectionNotFoundError",
    "SketchImageMissingError",
    "SketchNotFoundError",
    "ScoreSummary",
    "build_summary",
    "find_similar_sketches",
    "score_to_dict",
    "today_date_str",
    "write_analysis_artifacts",
    "write_run_config",
    "write_scores_csv",
    "write_summary_report",
    "RESOURCE_ITEMS",
    "STRESS_ITEMS",
    "DAPRScore",
    "InterpretationBand",
    "ScoreItem",
    "calculate_dapr_score",
    "get_interpretation",
    "interpretation_band",
    "JsonSketchStore",
    "MemorySketchStore",
    "SketchRecord",
    "SketchStore",
    "StoredDetection",
]
