"""Post-processing options and class label loading.

Options follow the rpicam post-processing JSON layout, one object per
stage::

    {
        "imx500_mobilenet": {
            "max_detections": 5,
            "threshold": 0.6,
            "class_file": "coco_labels.txt"
        }
    }
"""

import json
import os
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence, Tuple, Union

from ._constants import DEFAULT_THRESHOLD

__all__ = ["PostProcessConfig", "load_config", "load_labels", "STAGE_NAME"]

STAGE_NAME = "imx500_mobilenet"


@dataclass(frozen=True)
class PostProcessConfig:
    max_detections: int
    threshold: float = DEFAULT_THRESHOLD
    labels: Tuple[str, ...] = ()

    def __post_init__(self):
        if self.max_detections < 0:
            raise ValueError(f"max_detections must be >= 0, got {self.max_detections}")
        if not 0.0 <= self.threshold <= 1.0:
            raise ValueError(f"threshold must be in [0, 1], got {self.threshold}")


def load_labels(path: str) -> Tuple[str, ...]:
    """Read one class label per line.  Line index is the class id."""
    with open(path, "r", encoding="utf-8") as f:
        return tuple(line.rstrip("\r\n") for line in f)


def load_config(source: Union[str, Mapping], stage: str = STAGE_NAME,
                labels: Optional[Sequence[str]] = None) -> PostProcessConfig:
    """Build a PostProcessConfig from a JSON file path or a mapping.

    The mapping may be the stage's own options or a whole post-processing
    file containing a *stage* entry.  A relative ``class_file`` is resolved
    against the JSON file's directory.  Explicit *labels* override
    ``class_file``.

    Raises:
        ValueError: missing ``max_detections`` or out-of-range values.
        FileNotFoundError: config or class file does not exist.
    """
    base_dir = ""
    if isinstance(source, (str, os.PathLike)):
        base_dir = os.path.dirname(os.path.abspath(source))
        with open(source, "r", encoding="utf-8") as f:
            source = json.load(f)

    params = source.get(stage, source)
    if "max_detections" not in params:
        raise ValueError(f"Config for {stage!r} has no 'max_detections'")

    if labels is None:
        labels = ()
        class_file = params.get("class_file")
        if class_file:
            if not os.path.isabs(class_file) and base_dir:
                class_file = os.path.join(base_dir, class_file)
            labels = load_labels(class_file)

    return PostProcessConfig(
        max_detections=int(params["max_detections"]),
        threshold=float(params.get("threshold", DEFAULT_THRESHOLD)),
        labels=tuple(labels),
    )
