"""Decode a captured IMX500 output tensor buffer and print the detections.

The input file holds the raw bytes of one output tensor frame, as taken
from the camera's output tensor metadata.

Usage:
    python -m libreimx500.decode_dump frame.bin --size 2028 1520 --labels coco.txt
    python -m libreimx500.decode_dump frame.bin --config imx500_mobilenet.json --json
    python -m libreimx500.decode_dump demo.bin --synthetic
"""

import argparse
import json
import logging
import sys

import numpy as np

from ._constants import DEFAULT_STRIDE, DEFAULT_THRESHOLD, SSD_TOTAL_DETECTIONS
from .config import PostProcessConfig, load_config, load_labels
from .errors import DecodeError
from .mobilenet import MobileNetSSD
from .schema_builder import build_ssd_frame


def _write_synthetic(path, stride):
    """Write a demo frame with two confident detections."""
    boxes = np.zeros((SSD_TOTAL_DETECTIONS, 4))
    boxes[0] = [0.1, 0.2, 0.5, 0.6]
    boxes[1] = [0.4, 0.4, 0.9, 0.8]
    classes = np.zeros(SSD_TOTAL_DETECTIONS)
    classes[:2] = [0, 2]
    scores = np.zeros(SSD_TOTAL_DETECTIONS)
    scores[:2] = [0.9, 0.7]
    frame = build_ssd_frame(boxes, classes, scores, num_detections=2, stride=stride)
    with open(path, "wb") as f:
        f.write(frame)
    print(f"  Saved: {path} ({len(frame)} bytes)")


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Decode an IMX500 SSD MobileNet output tensor dump",
    )
    parser.add_argument("file", help="Raw output tensor file")
    parser.add_argument(
        "--stride", type=int, default=DEFAULT_STRIDE,
        help=f"Bytes per line (default: {DEFAULT_STRIDE})",
    )
    parser.add_argument(
        "--size", type=int, nargs=2, default=[640, 480], metavar=("W", "H"),
        help="Image size for pixel coordinates (default: 640 480)",
    )
    parser.add_argument(
        "--config", type=str, default=None,
        help="Post-processing JSON with an imx500_mobilenet section",
    )
    parser.add_argument(
        "--max-detections", type=int, default=None,
        help=f"Maximum detections (default: {SSD_TOTAL_DETECTIONS} without --config)",
    )
    parser.add_argument(
        "--threshold", type=float, default=None,
        help=f"Score threshold (default: {DEFAULT_THRESHOLD} without --config)",
    )
    parser.add_argument("--labels", type=str, default=None, help="Class label file")
    parser.add_argument("--json", action="store_true", help="Print detections as JSON")
    parser.add_argument("--synthetic", action="store_true",
                        help="Write a synthetic demo frame to FILE and exit")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.synthetic:
        _write_synthetic(args.file, args.stride)
        return 0

    labels = load_labels(args.labels) if args.labels else None
    if args.config:
        cfg = load_config(args.config, labels=labels)
    else:
        cfg = PostProcessConfig(max_detections=SSD_TOTAL_DETECTIONS,
                                labels=tuple(labels or ()))
    cfg = PostProcessConfig(
        max_detections=cfg.max_detections if args.max_detections is None else args.max_detections,
        threshold=cfg.threshold if args.threshold is None else args.threshold,
        labels=cfg.labels,
    )

    with open(args.file, "rb") as f:
        raw = f.read()

    ssd = MobileNetSSD(cfg, stride=args.stride)
    try:
        result = ssd.decode(raw, tuple(args.size))
    except DecodeError as e:
        print(f"Decode failed: {type(e).__name__}: {e}", file=sys.stderr)
        return 1

    rows = []
    for cls, score, box in zip(result.class_ids, result.scores, result.boxes):
        label = cfg.labels[cls] if cls < len(cfg.labels) else str(cls)
        rows.append({"class_id": cls, "label": label, "score": round(score, 4),
                     "box": list(box)})

    if args.json:
        json.dump(rows, sys.stdout, indent=2)
        sys.stdout.write("\n")
    else:
        print(f"{len(rows)} detection(s)")
        for row in rows:
            x, y, w, h = row["box"]
            print(f"  {row['label']:>16s}  {row['score']:.3f}  x={x} y={y} w={w} h={h}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
