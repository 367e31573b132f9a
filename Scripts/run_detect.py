import argparse
import json
import logging

import cv2

from detect_kit import ModelKind, load_detector_profile, load_pipeline


def _result_dict(result) -> dict:
    if hasattr(result, "to_dict"):
        return result.to_dict()
    return {"label": result.label, "confidence": result.confidence}


def main() -> int:
    parser = argparse.ArgumentParser(description="Run an SSD / YOLOv2 / classifier model on an image or video.")
    src = parser.add_mutually_exclusive_group(required=True)
    src.add_argument("--image", default=None, help="Path to an input image.")
    src.add_argument("--video", default=None, help="Path to an input video file.")
    parser.add_argument("--profile", required=True, help="Path to a detector profile (JSON).")
    parser.add_argument("--backend", default=None, help="Force backend: onnxruntime / torchscript.")
    parser.add_argument("--threshold", type=float, default=None, help="Override the profile threshold.")
    parser.add_argument("--max-per-class", type=int, default=None, help="Override the per-class result cap.")
    parser.add_argument("--every", type=int, default=1, help="Process every Nth frame for video.")
    parser.add_argument("--max-frames", type=int, default=0, help="Stop after N frames (0 = no limit).")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.every < 1:
        raise ValueError("--every must be >= 1")
    if args.max_frames < 0:
        raise ValueError("--max-frames must be >= 0")

    profile = load_detector_profile(args.profile)
    overrides = {}
    if args.threshold is not None:
        overrides["threshold"] = args.threshold
    if args.max_per_class is not None:
        if profile.model is ModelKind.CLASSIFIER:
            overrides["num_results"] = args.max_per_class
        else:
            overrides["max_per_class"] = args.max_per_class

    with load_pipeline(profile, backend=args.backend) as pipeline:
        if args.image is not None:
            img = cv2.imread(args.image)
            if img is None:
                raise FileNotFoundError(f"Could not read image at path: {args.image}")
            results = pipeline.detect(img, **overrides)
            print(json.dumps([_result_dict(r) for r in results], indent=2))
            return 0

        cap = cv2.VideoCapture(args.video)
        if not cap.isOpened():
            raise FileNotFoundError(f"Could not open video: {args.video}")
        frame_idx = 0
        processed = 0
        try:
            while True:
                ok, frame = cap.read()
                if not ok:
                    break
                frame_idx += 1
                if (frame_idx - 1) % args.every:
                    continue
                results = pipeline.detect(frame, **overrides)
                print(json.dumps({"frame": frame_idx, "results": [_result_dict(r) for r in results]}))
                processed += 1
                if args.max_frames and processed >= args.max_frames:
                    break
        finally:
            cap.release()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
