"""libreimx500: Pure-Python IMX500 output tensor decoder. No libcamera required."""

from .config import PostProcessConfig, load_config, load_labels
from .errors import (
    DecodeError, InvalidFrame, InvalidSchema, LayoutOverflow, EmptyLayout,
    UnexpectedSize, UnsupportedElementWidth, UnsupportedRank, TruncatedBuffer,
)
from .mobilenet import MobileNetSSD, Detection, decode_output_tensor

__all__ = ["MobileNetSSD", "Detection", "decode_output_tensor",
           "PostProcessConfig", "load_config", "load_labels",
           "DecodeError", "InvalidFrame", "InvalidSchema", "LayoutOverflow",
           "EmptyLayout", "UnexpectedSize", "UnsupportedElementWidth",
           "UnsupportedRank", "TruncatedBuffer"]
