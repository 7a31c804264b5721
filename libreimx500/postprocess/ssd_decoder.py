"""SSD post-processing for libreimx500.

Interprets the 61-element output of the on-sensor SSD MobileNet V1
post-processing layer as a fixed record of 10 candidate detections::

    y_min[10] x_min[10] y_max[10] x_max[10] class[10] score[10] count

then filters by score, caps the count, and converts normalized box
corners to pixel coordinates.  Everything is done in NumPy.
"""

import logging
import math
import warnings
from dataclasses import dataclass, field
from typing import List, NamedTuple, Tuple

import numpy as np

from .._constants import SSD_OUTPUT_TENSOR_SIZE, SSD_TOTAL_DETECTIONS
from ..errors import UnexpectedSize

__all__ = ["interpret_ssd", "split_ssd_record", "SsdRecord", "DetectionSet", "Box"]

log = logging.getLogger(__name__)


class Box(NamedTuple):
    """Pixel-space box as (x, y, width, height)."""
    x: int
    y: int
    width: int
    height: int


@dataclass
class DetectionSet:
    boxes: List[Box] = field(default_factory=list)
    scores: List[float] = field(default_factory=list)
    class_ids: List[int] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.class_ids)

    def __len__(self):
        return self.count


class SsdRecord(NamedTuple):
    """Raw (normalized) SSD record, one array per field."""
    y_min: np.ndarray
    x_min: np.ndarray
    y_max: np.ndarray
    x_max: np.ndarray
    classes: np.ndarray
    scores: np.ndarray
    num_detections: int


def _clamped_count(value: float, total: int) -> int:
    """Sensor-reported detection count, limited to the record capacity."""
    if not math.isfinite(value) or value < 0:
        warnings.warn(
            f"Unexpected value for numDetections: {value}, setting it to 0",
            RuntimeWarning,
            stacklevel=3,
        )
        return 0
    count = int(value)
    if count > total:
        warnings.warn(
            f"Unexpected value for numDetections: {count}, setting it to {total}",
            RuntimeWarning,
            stacklevel=3,
        )
        count = total
    return count


def split_ssd_record(output, total_detections: int = SSD_TOTAL_DETECTIONS) -> SsdRecord:
    """Split the flat decoder output into the SSD record fields.

    Raises:
        UnexpectedSize: *output* does not hold exactly 61 values.
    """
    data = np.asarray(output, dtype=np.float32).ravel()
    if data.size != SSD_OUTPUT_TENSOR_SIZE:
        raise UnexpectedSize(
            f"Invalid total size {data.size}, expected {SSD_OUTPUT_TENSOR_SIZE}"
        )
    n = total_detections
    fields = data[:6 * n].reshape(6, n)
    return SsdRecord(
        y_min=fields[0],
        x_min=fields[1],
        y_max=fields[2],
        x_max=fields[3],
        classes=fields[4],
        scores=fields[5],
        num_detections=_clamped_count(float(data[6 * n]), n),
    )


def _to_pixels(normalized: np.ndarray, extent: int) -> np.ndarray:
    # Half-away-from-zero rounding, like C round().
    scaled = np.nan_to_num(normalized.astype(np.float64)) * (extent - 1)
    scaled = np.clip(scaled, -(2 ** 31), 2 ** 31 - 1)
    return (np.sign(scaled) * np.floor(np.abs(scaled) + 0.5)).astype(np.int64)


def _class_ids(classes: np.ndarray) -> np.ndarray:
    ids = np.nan_to_num(np.trunc(classes.astype(np.float64)))
    return np.clip(ids, -(2 ** 31), 2 ** 31 - 1).astype(np.int64)


def interpret_ssd(output, max_detections: int, threshold: float,
                  image_size: Tuple[int, int]) -> DetectionSet:
    """Filter and rescale the SSD record into pixel-space detections.

    Args:
        output: Flat float array of 61 values from the tensor decoder.
        max_detections: Maximum number of detections to keep.  Excess
            detections are dropped in array order, not by score.
        threshold: Minimum score; candidates with ``score < threshold``
            are discarded.
        image_size: (width, height) of the target image in pixels.

    Returns:
        DetectionSet with boxes as (x, y, width, height).

    Raises:
        UnexpectedSize: *output* does not hold exactly 61 values.
    """
    width, height = image_size
    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid image size {image_size}")

    rec = split_ssd_record(output)
    n = rec.num_detections

    keep = np.flatnonzero(~(rec.scores[:n] < threshold))
    keep = keep[:max(int(max_detections), 0)]

    x0 = _to_pixels(rec.x_min[keep], width)
    y0 = _to_pixels(rec.y_min[keep], height)
    x1 = _to_pixels(rec.x_max[keep], width)
    y1 = _to_pixels(rec.y_max[keep], height)

    result = DetectionSet(
        boxes=[Box(int(a), int(b), int(c - a), int(d - b))
               for a, b, c, d in zip(x0, y0, x1, y1)],
        scores=[float(s) for s in rec.scores[keep]],
        class_ids=[int(c) & 0xFF for c in _class_ids(rec.classes[keep])],
    )

    log.debug("Number of detections: %d", result.count)
    for i, (box, score, cls) in enumerate(zip(result.boxes, result.scores, result.class_ids)):
        log.debug("[%d] = [%d, %d, %d, %d], score %.4f, class %d",
                  i, box.x, box.y, box.width, box.height, score, cls)

    return result
