from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence

try:
    from tqdm import tqdm  # type: ignore
except ModuleNotFoundError:
    tqdm = None  # type: ignore[assignment]

from DAPR_Analysis.analysis import AnalysisResult, ResultAggregator, read_image
from DAPR_Analysis.config import DetectionProfile, load_detection_profile
from DAPR_Analysis.errors import DetectionNotFoundError, SketchImageMissingError, SketchNotFoundError
from DAPR_Analysis.reporting import (
    build_summary,
    find_similar_sketches,
    today_date_str,
    write_analysis_artifacts,
    write_run_config,
    write_scores_csv,
    write_summary_report,
)
from DAPR_Analysis.run_config import apply_run_config, collect_cli_dests, load_run_config
from DAPR_Analysis.scoring import DAPRScore
from DAPR_Analysis.store import JsonSketchStore, SketchStore
from sketch_kit import InvalidRasterError, PlaceholderGenerator, SketchDetector, draw_detections, load_detector
from sketch_kit.session import BackendProvider, file_sha256, onnx_provider
from sketch_kit.vocabulary import check_class_names, load_class_names

logger = logging.getLogger("DAPR_Analysis.runner")

DEFAULT_MODEL = "Models/dapr_sketch.onnx"
DEFAULT_STORE = "data/store"
DEFAULT_OUT_DIR = "data"


def _sanitize_ort_provider_name(name: str) -> str:
    # Shell line continuations and copy/paste can leave stray backticks/quotes.
    return str(name).strip().strip("'\"`")


def _parse_ort_providers(raw: Optional[str]) -> Optional[List[str]]:
    if raw is None:
        return None
    parts: List[str] = []
    for p in str(raw).split(","):
        cleaned = _sanitize_ort_provider_name(p)
        if cleaned:
            parts.append(cleaned)
    return parts or None


def _file_metadata(path: Path) -> Dict[str, object]:
    payload: Dict[str, object] = {"path": str(path)}
    if not path.exists():
        payload["exists"] = False
        return payload
    st = path.stat()
    payload.update(
        {
            "exists": True,
            "size_bytes": int(st.st_size),
            "mtime": float(st.st_mtime),
            "sha256": file_sha256(path),
        }
    )
    return payload


def resolve_profile(args: argparse.Namespace) -> DetectionProfile:
    """
    Profile file values, overridden by any detection flag that was set.
    """

    profile = load_detection_profile(Path(args.profile)) if args.profile else DetectionProfile()
    overrides: Dict[str, object] = {}
    if args.conf is not None:
        overrides["conf_threshold"] = float(args.conf)
    if args.iou is not None:
        overrides["iou_threshold"] = float(args.iou)
    if args.min_area is not None:
        overrides["min_area"] = float(args.min_area)
    if args.min_ink is not None:
        overrides["min_ink_ratio"] = float(args.min_ink)
    if args.no_ink_filter:
        overrides["ink_filter"] = False
    if args.imgsz is not None:
        overrides["input_size"] = int(args.imgsz)
    if args.placeholder:
        overrides["use_model"] = False
    # replace() re-runs validation on the merged values.
    return replace(profile, **overrides) if overrides else profile


def build_detector(args: argparse.Namespace, profile: DetectionProfile) -> SketchDetector:
    placeholder = PlaceholderGenerator(seed=args.seed)
    cfg = profile.to_detector_config()
    if not profile.use_model:
        logger.info("Model disabled, using placeholder detections")
        return load_detector(None, cfg=cfg, placeholder=placeholder)

    model_path = Path(args.model)
    if not model_path.exists():
        logger.warning("Model not found at %s, using placeholder detections", model_path)
        return load_detector(None, cfg=cfg, placeholder=placeholder)

    if args.metadata:
        check_class_names(load_class_names(args.metadata))

    providers: Optional[List[BackendProvider]] = None
    onnx_providers = _parse_ort_providers(args.onnx_providers)
    if onnx_providers:
        if model_path.suffix.lower() != ".onnx":
            raise ValueError("--onnx-providers only applies to .onnx models")
        providers = [onnx_provider(onnx_providers)]
    return load_detector(model_path, cfg=cfg, providers=providers, warm_up=bool(args.warm_up), placeholder=placeholder)


def _print_score(sketch_id: int, score: Optional[DAPRScore]) -> None:
    if score is None:
        print(f"sketch {sketch_id}: not scored")
        return
    print(
        f"sketch {sketch_id}: stress={score.stress_score} resource={score.resource_score} "
        f"total={score.total_score} band={score.band.value}"
    )
    triggered = score.triggered()
    if triggered:
        print(f"  triggered: {', '.join(triggered)}")


def _save_annotated(result: AnalysisResult, image_path: str, analysis_path: Path) -> Optional[Path]:
    import cv2  # type: ignore

    image = read_image(image_path)
    drawn = draw_detections(image, [d.detection for d in result.detections])
    out_path = analysis_path.parent / "annotated.png"
    if not cv2.imwrite(str(out_path), drawn):
        logger.warning("Could not write annotated image %s", out_path)
        return None
    return out_path


def cmd_analyze(args: argparse.Namespace, store: SketchStore, *, run_config: Dict[str, object]) -> int:
    profile = resolve_profile(args)
    detector = build_detector(args, profile)
    aggregator = ResultAggregator(store, detector)
    out_dir = Path(args.out_dir)
    date = today_date_str()

    run_config["profile"] = profile.to_dict()
    run_config["model"] = None if detector.session is None else _file_metadata(Path(args.model))

    images: Sequence[str] = args.images
    iterator = images
    pbar = None
    if args.progress and tqdm is not None and len(images) > 1:
        pbar = tqdm(images, unit="sketch", desc="dapr")
        iterator = pbar

    failures = 0
    analyzed: List[int] = []
    try:
        for image_path in iterator:
            record = store.create_sketch(image_path, title=args.title or Path(image_path).stem)
            try:
                if args.timeout is not None:
                    result = asyncio.run(aggregator.run_analysis_async(record.sketch_id, timeout=args.timeout))
                else:
                    result = aggregator.run_analysis(record.sketch_id)
            except (SketchImageMissingError, InvalidRasterError) as exc:
                logger.error("Skipping %s: %s", image_path, exc)
                store.delete_sketch(record.sketch_id)
                failures += 1
                continue

            analysis_path = write_analysis_artifacts(out_dir=out_dir, date=date, result=result)
            if args.save_annotated:
                _save_annotated(result, image_path, analysis_path)
            analyzed.append(record.sketch_id)
            _print_score(record.sketch_id, result.score)
            if result.used_placeholder:
                print("  (placeholder detections, not evidence about the drawing)")
    finally:
        if pbar is not None:
            pbar.close()
        if detector.session is not None and hasattr(detector.session, "close"):
            detector.session.close()

    run_config["analyzed_sketch_ids"] = analyzed
    run_config["failures"] = failures
    csv_path = write_scores_csv(out_dir=out_dir, date=date, store=store)
    run_config_path = write_run_config(out_dir=out_dir, date=date, run_config=run_config)
    print(f"Wrote scores CSV: {csv_path}")
    print(f"Wrote run config: {run_config_path}")
    print(f"Analyzed: {len(analyzed)} failed: {failures}")
    return 1 if failures else 0


def _offline_aggregator(store: SketchStore) -> ResultAggregator:
    return ResultAggregator(store, load_detector(None))


def cmd_rescore(args: argparse.Namespace, store: SketchStore) -> int:
    result = _offline_aggregator(store).recalculate_score(args.sketch_id)
    _print_score(result.sketch_id, result.score)
    return 0


def cmd_remove(args: argparse.Namespace, store: SketchStore) -> int:
    result = _offline_aggregator(store).remove_detection(args.sketch_id, args.detection_id)
    print(f"Removed detection {args.detection_id}; {len(result.detections)} remaining")
    _print_score(result.sketch_id, result.score)
    return 0


def cmd_add(args: argparse.Namespace, store: SketchStore) -> int:
    result = _offline_aggregator(store).add_manual_detection(
        args.sketch_id,
        {
            "category": args.category,
            "bbox": [args.x1, args.y1, args.x2, args.y2],
            "confidence": args.confidence,
        },
    )
    added = result.detections[-1]
    print(f"Added detection {added.detection_id} ({added.detection.category})")
    _print_score(result.sketch_id, result.score)
    return 0


def cmd_show(args: argparse.Namespace, store: SketchStore) -> int:
    result = _offline_aggregator(store).get_analysis_results(args.sketch_id)
    print(json.dumps(result.to_dict(), indent=2, sort_keys=True))
    return 0


def cmd_report(args: argparse.Namespace, store: SketchStore) -> int:
    out_dir = Path(args.out_dir)
    date = today_date_str()
    summary = build_summary(store, date=date)
    summary_path = write_summary_report(out_dir=out_dir, summary=summary)
    csv_path = write_scores_csv(out_dir=out_dir, date=date, store=store)
    print(f"Sketches: {summary.total_sketches} analyzed: {summary.analyzed_sketches}")
    print(f"Average total score: {summary.avg_total_score:.2f}")
    for band, count in summary.band_counts.items():
        print(f"  {band}: {count}")
    if args.similar_to is not None:
        similar = find_similar_sketches(store, args.similar_to)
        ids = ", ".join(str(r.sketch_id) for r in similar) or "none"
        print(f"Similar to sketch {args.similar_to}: {ids}")
    print(f"Wrote summary: {summary_path}")
    print(f"Wrote scores CSV: {csv_path}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--store", default=DEFAULT_STORE, help="Sketch store directory (JSON state files).")
    common.add_argument("--config", default=None, help="Run config JSON; explicit CLI flags win over its values.")
    common.add_argument("--out-dir", default=DEFAULT_OUT_DIR, help="Root output directory for reports.")
    common.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING, ...).")

    parser = argparse.ArgumentParser(description="DAPR sketch analysis: detection, scoring and reports.")
    sub = parser.add_subparsers(dest="command", required=True)

    analyze = sub.add_parser("analyze", parents=[common], help="Register and analyze sketch images.")
    analyze.add_argument("images", nargs="+", help="Sketch image files.")
    analyze.add_argument("--title", default=None, help="Title for the new sketches (default: file stem).")
    analyze.add_argument("--profile", default=None, help="Detection profile JSON.")
    analyze.add_argument("--model", default=DEFAULT_MODEL, help="Path to detector (.onnx/.pt/.torchscript).")
    analyze.add_argument("--metadata", default=None, help="Model metadata.yaml to check class names against.")
    analyze.add_argument("--placeholder", action="store_true", help="Skip the model and use placeholder detections.")
    analyze.add_argument("--seed", type=int, default=None, help="Seed for placeholder detections.")
    analyze.add_argument("--conf", type=float, default=None, help="Confidence threshold.")
    analyze.add_argument("--iou", type=float, default=None, help="IoU threshold for NMS.")
    analyze.add_argument("--min-area", type=float, default=None, help="Minimum box area in pixels.")
    analyze.add_argument("--min-ink", type=float, default=None, help="Minimum ink ratio inside a box.")
    analyze.add_argument("--no-ink-filter", action="store_true", help="Disable the ink content filter.")
    analyze.add_argument("--imgsz", type=int, default=None, help="Letterbox input size (e.g., 640).")
    analyze.add_argument(
        "--onnx-providers",
        default=None,
        help='Comma-separated ORT providers, e.g. "CUDAExecutionProvider,CPUExecutionProvider".',
    )
    analyze.add_argument("--warm-up", action="store_true", help="Load the model and run one dummy inference first.")
    analyze.add_argument("--timeout", type=float, default=None, help="Per-sketch inference timeout (seconds).")
    analyze.add_argument("--save-annotated", action="store_true", help="Save an annotated PNG per sketch.")
    analyze.add_argument("--progress", action="store_true", help="Show a progress bar (needs tqdm).")

    rescore = sub.add_parser("rescore", parents=[common], help="Recompute the score from stored detections.")
    rescore.add_argument("sketch_id", type=int)

    remove = sub.add_parser("remove", parents=[common], help="Remove a detection and rescore.")
    remove.add_argument("sketch_id", type=int)
    remove.add_argument("detection_id", type=int)

    add = sub.add_parser("add", parents=[common], help="Add a manual detection and rescore.")
    add.add_argument("sketch_id", type=int)
    add.add_argument("category")
    add.add_argument("x1", type=float)
    add.add_argument("y1", type=float)
    add.add_argument("x2", type=float)
    add.add_argument("y2", type=float)
    add.add_argument("--confidence", type=float, default=1.0)

    show = sub.add_parser("show", parents=[common], help="Print stored detections and score as JSON.")
    show.add_argument("sketch_id", type=int)

    report = sub.add_parser("report", parents=[common], help="Write summary and score CSV for the store.")
    report.add_argument("--similar-to", type=int, default=None, help="List sketches with a similar total score.")

    return parser


def _subparser_for(parser: argparse.ArgumentParser, command: str) -> argparse.ArgumentParser:
    for action in parser._actions:
        if isinstance(action, argparse._SubParsersAction):
            return action.choices[command]
    raise ValueError(f"Unknown command: {command}")


COMMANDS = {
    "rescore": cmd_rescore,
    "remove": cmd_remove,
    "add": cmd_add,
    "show": cmd_show,
    "report": cmd_report,
}


def main(argv: Optional[Sequence[str]] = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    parser = build_parser()
    args = parser.parse_args(argv)

    config_path = Path(args.config) if args.config else None
    config_payload: Optional[Dict[str, object]] = None
    if config_path is not None:
        subparser = _subparser_for(parser, args.command)
        config_payload = load_run_config(config_path)
        apply_run_config(
            args=args,
            payload=config_payload,
            cli_dests=collect_cli_dests(subparser, argv),
            parser=subparser,
        )

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    store = JsonSketchStore(Path(args.store))
    try:
        if args.command == "analyze":
            run_config: Dict[str, object] = {
                "started_at": datetime.now().isoformat(timespec="seconds"),
                "args": {k: v for k, v in vars(args).items()},
                "config": {"path": None if config_path is None else str(config_path), "payload": config_payload},
            }
            return cmd_analyze(args, store, run_config=run_config)
        return COMMANDS[args.command](args, store)
    except (SketchNotFoundError, DetectionNotFoundError, SketchImageMissingError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
