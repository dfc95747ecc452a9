import argparse

import cv2

from sketch_kit import (
    DecoderConfig,
    DetectorConfig,
    FilterConfig,
    NMSConfig,
    PlaceholderGenerator,
    draw_detections,
    load_detector,
)


def main() -> int:
    parser = argparse.ArgumentParser(description="Run sketch detection on one image and draw boxes + labels.")
    parser.add_argument("image", help="Path to a sketch image.")
    parser.add_argument("--model", default="Models/dapr_sketch.onnx", help="Path to a model (.onnx/.pt/.torchscript).")
    parser.add_argument("--placeholder", action="store_true", help="Skip the model and draw placeholder detections.")
    parser.add_argument("--seed", type=int, default=None, help="Seed for placeholder detections.")
    parser.add_argument("--imgsz", type=int, default=640, help="Letterbox input size (e.g., 640).")
    parser.add_argument("--conf", type=float, default=0.5, help="Confidence threshold.")
    parser.add_argument("--iou", type=float, default=0.45, help="IoU threshold for NMS.")
    parser.add_argument("--no-ink-filter", action="store_true", help="Disable the ink content filter.")
    parser.add_argument("--show", action="store_true", help="Show a window with visualized detections.")
    parser.add_argument("--out", default=None, help="Optional output image path for the visualization.")
    args = parser.parse_args()

    if args.imgsz < 32:
        raise ValueError("--imgsz must be >= 32")

    cfg = DetectorConfig(
        input_size=int(args.imgsz),
        decoder=DecoderConfig(conf_threshold=args.conf),
        nms=NMSConfig(iou_threshold=args.iou),
        filters=FilterConfig(ink_filter=not bool(args.no_ink_filter)),
    )
    detector = load_detector(
        None if args.placeholder else args.model,
        cfg=cfg,
        placeholder=PlaceholderGenerator(seed=args.seed),
    )

    img = cv2.imread(args.image)
    if img is None:
        raise FileNotFoundError(f"Could not read image at path: {args.image}")

    result = detector.detect(img)
    vis = draw_detections(img, result.detections, show_score=True)
    if args.out:
        ok = cv2.imwrite(args.out, vis)
        if not ok:
            raise RuntimeError(f"Failed to write output image: {args.out}")

    if args.show:
        cv2.imshow("detections", vis)
        cv2.waitKey(0)
        cv2.destroyAllWindows()

    if result.used_placeholder:
        print(f"placeholder detections (error: {result.error})")
    for det in result.detections:
        print(det.category, det.confidence, det.as_xyxy())

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
