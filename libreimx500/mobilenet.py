"""MobileNetSSD: decode IMX500 SSD MobileNet output tensors into detections.

Usage:
    cfg = load_config("imx500_mobilenet.json")
    ssd = MobileNetSSD(cfg)
    detections = ssd.process(raw_tensor_bytes, image_size=(2028, 1520))
    for det in detections:
        print(det.label, det.score, det.box)
"""

import logging
import threading
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from ._constants import DEFAULT_STRIDE
from .config import PostProcessConfig
from .errors import DecodeError
from .header import DnnHeader, body_offset, parse_header
from .layout import plan_layout
from .postprocess.ssd_decoder import Box, DetectionSet, interpret_ssd
from .schema_parser import TensorDescriptor, parse_schema
from .tensor_decoder import decode_tensors

__all__ = ["MobileNetSSD", "Detection", "decode_output_tensor"]

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Detection:
    class_id: int
    label: str
    score: float
    box: Box  # (x, y, width, height) in pixels


def decode_output_tensor(raw, stride: int = DEFAULT_STRIDE,
                         descriptors: Optional[List[TensorDescriptor]] = None,
                         max_workers: Optional[int] = None
                         ) -> Tuple[DnnHeader, List[TensorDescriptor], np.ndarray]:
    """Decode a raw output tensor buffer into the flat float array.

    Runs header parsing, schema parsing (skipped when *descriptors* is
    given), layout planning and the tensor body decode.

    Returns:
        (header, descriptors, output) where output has 61 float32 values.

    Raises:
        DecodeError: any structural mismatch; no partial output.
    """
    header, schema = parse_header(raw, stride)
    if descriptors is None:
        descriptors = parse_schema(schema, header.network_id)
    return header, descriptors, _decode_body(raw, stride, header, descriptors, max_workers)


def _decode_body(raw, stride, header, descriptors, max_workers):
    plan = plan_layout(descriptors, header.max_line_len)
    return decode_tensors(raw, body_offset(header, stride), stride,
                          header.max_line_len, descriptors, plan,
                          max_workers=max_workers)


class MobileNetSSD:
    """SSD MobileNet V1 post-processing for IMX500 output tensors.

    Owns the configured limits and labels.  The schema parse result is
    cached and reused while frames keep carrying the same schema blob.
    """

    def __init__(self, config: PostProcessConfig, stride: int = DEFAULT_STRIDE,
                 max_workers: Optional[int] = None) -> None:
        if stride <= 0:
            raise ValueError(f"stride must be > 0, got {stride}")
        self.config = config
        self.stride = stride
        self.max_workers = max_workers
        self._schema_key: Optional[Tuple[int, bytes]] = None
        self._descriptors: List[TensorDescriptor] = []
        self._cache_lock = threading.Lock()

    def _descriptors_for(self, header: DnnHeader, schema: bytes) -> List[TensorDescriptor]:
        key = (header.network_id, schema)
        with self._cache_lock:
            if key != self._schema_key:
                self._descriptors = parse_schema(schema, header.network_id)
                self._schema_key = key
            return self._descriptors

    def decode(self, raw, image_size: Tuple[int, int],
               stride: Optional[int] = None) -> DetectionSet:
        """Decode one frame.  Raises DecodeError on any malformed input."""
        stride = self.stride if stride is None else stride
        header, schema = parse_header(raw, stride)
        descriptors = self._descriptors_for(header, schema)
        output = _decode_body(raw, stride, header, descriptors, self.max_workers)
        return interpret_ssd(output, self.config.max_detections,
                             self.config.threshold, image_size)

    def process(self, raw, image_size: Tuple[int, int],
                stride: Optional[int] = None) -> List[Detection]:
        """Decode one frame and attach labels.

        A frame that fails to decode is logged and yields no detections.
        Class ids must index the configured labels; anything else is a
        configuration error and raises IndexError.
        """
        try:
            result = self.decode(raw, image_size, stride)
        except DecodeError as e:
            log.error("Output tensor decode failed: %s: %s", type(e).__name__, e)
            return []

        labels = self.config.labels
        detections = []
        for cls, score, box in zip(result.class_ids, result.scores, result.boxes):
            if cls >= len(labels):
                raise IndexError(
                    f"Class id {cls} has no label ({len(labels)} labels configured)"
                )
            detections.append(Detection(class_id=cls, label=labels[cls],
                                        score=score, box=box))
        return detections
