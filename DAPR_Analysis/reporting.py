"""
Report files for analyzed sketches: per-sketch JSON, a score CSV and a
summary with counts per interpretation band.
"""

from __future__ import annotations

import csv
import json
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .analysis import AnalysisResult
from .scoring import DAPRScore, InterpretationBand
from .store import SketchRecord, SketchStore

SIMILAR_SCORE_WINDOW = 10


@dataclass(frozen=True)
class ScoreSummary:
    date: str
    total_sketches: int
    analyzed_sketches: int
    avg_total_score: float
    band_counts: Dict[str, int] = field(default_factory=dict)


def score_to_dict(score: Optional[DAPRScore]) -> Optional[Dict[str, Any]]:
    return None if score is None else score.to_dict()


def iter_band_counts(scores: Iterable[DAPRScore]) -> Dict[str, int]:
    counts = {band.value: 0 for band in InterpretationBand}
    for s in scores:
        counts[s.band.value] += 1
    return counts


def build_summary(store: SketchStore, *, date: str) -> ScoreSummary:
    sketches = store.list_sketches()
    analyzed_ids = {s.sketch_id for s in sketches if s.analyzed}
    scores = [score for sid, score in store.all_scores().items() if sid in analyzed_ids]
    avg = sum(s.total_score for s in scores) / len(scores) if scores else 0.0
    return ScoreSummary(
        date=date,
        total_sketches=len(sketches),
        analyzed_sketches=len(analyzed_ids),
        avg_total_score=round(avg, 2),
        band_counts=iter_band_counts(scores),
    )


def find_similar_sketches(
    store: SketchStore, sketch_id: int, *, window: int = SIMILAR_SCORE_WINDOW
) -> List[SketchRecord]:
    """
    Other sketches whose total score is within `window` of this one's.
    """

    scores = store.all_scores()
    own = scores.get(int(sketch_id))
    if own is None:
        return []
    similar_ids = [
        sid for sid, s in scores.items() if sid != int(sketch_id) and abs(s.total_score - own.total_score) <= window
    ]
    return [r for r in (store.find_sketch(sid) for sid in similar_ids) if r is not None]


def write_analysis_artifacts(*, out_dir: Path, date: str, result: AnalysisResult) -> Path:
    sketch_dir = out_dir / "sketches" / date / f"sketch_{result.sketch_id:06d}"
    sketch_dir.mkdir(parents=True, exist_ok=True)
    path = sketch_dir / "analysis.json"
    path.write_text(json.dumps(result.to_dict(), indent=2, sort_keys=True), encoding="utf-8")
    return path


def write_run_config(*, out_dir: Path, date: str, run_config: Dict[str, Any]) -> Path:
    report_dir = out_dir / "reports" / date
    report_dir.mkdir(parents=True, exist_ok=True)
    path = report_dir / "run_config.json"
    path.write_text(json.dumps(run_config, indent=2, sort_keys=True), encoding="utf-8")
    return path


def write_summary_report(*, out_dir: Path, summary: ScoreSummary) -> Path:
    report_dir = out_dir / "reports" / summary.date
    report_dir.mkdir(parents=True, exist_ok=True)
    path = report_dir / "summary.json"
    path.write_text(json.dumps(asdict(summary), indent=2, sort_keys=True), encoding="utf-8")
    return path


def score_rows(store: SketchStore) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    scores = store.all_scores()
    for record in store.list_sketches():
        score = scores.get(record.sketch_id)
        rows.append(
            {
                "sketch_id": record.sketch_id,
                "title": record.title,
                "analyzed": record.analyzed,
                "detections": len(store.get_detections(record.sketch_id)),
                "stress_score": None if score is None else score.stress_score,
                "resource_score": None if score is None else score.resource_score,
                "total_score": None if score is None else score.total_score,
                "band": None if score is None else score.band.value,
                "triggered": "" if score is None else " ".join(score.triggered()),
            }
        )
    return rows


def write_scores_csv(*, out_dir: Path, date: str, store: SketchStore) -> Path:
    """
    One row per stored sketch with its current score.
    """

    rows = score_rows(store)
    report_dir = out_dir / "reports" / date
    report_dir.mkdir(parents=True, exist_ok=True)
    path = report_dir / "scores.csv"
    if not rows:
        path.write_text("", encoding="utf-8")
        return path

    fieldnames = list(rows[0].keys())
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        writer.writerows(rows)
    return path


def today_date_str(now: Optional[datetime] = None) -> str:
    dt = now or datetime.now()
    return dt.strftime("%Y-%m-%d")
