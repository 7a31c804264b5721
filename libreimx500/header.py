"""DNN header parsing and schema de-striping.

The IMX500 output tensor stream is delivered as an image-like buffer of
fixed-width lines (``stride`` bytes each).  Line 0 starts with a 12-byte
header followed by the serialized schema blob, which may continue onto
the following lines.  Tensor bodies start on the first whole line after
the schema.

Header layout (little-endian)::

    offset  size  field
    0       1     frame_valid
    1       1     frame_count
    2       2     max_line_len
    4       2     schema_size
    6       2     network_id
    8       1     tensor_type (0 = signed, 1 = unsigned)
    9       3     reserved
"""

import logging
import struct
from dataclasses import dataclass
from typing import Tuple

from ._constants import DNN_HEADER_SIZE, TYPE_SIGNED
from .errors import InvalidFrame, TruncatedBuffer

__all__ = ["DnnHeader", "parse_header", "read_header", "body_offset"]

log = logging.getLogger(__name__)

_HEADER = struct.Struct("<BBHHHB")


@dataclass(frozen=True)
class DnnHeader:
    frame_valid: bool
    frame_count: int
    max_line_len: int
    schema_size: int
    network_id: int
    tensor_type: int

    @property
    def signed(self) -> bool:
        return self.tensor_type == TYPE_SIGNED


def _as_view(raw) -> memoryview:
    view = memoryview(raw)
    if view.ndim != 1 or view.itemsize != 1:
        view = view.cast("B")
    return view


def read_header(raw) -> DnnHeader:
    """Extract the header fields without validating them."""
    view = _as_view(raw)
    if len(view) < DNN_HEADER_SIZE:
        raise InvalidFrame(
            f"Buffer too short for DNN header: {len(view)} < {DNN_HEADER_SIZE} bytes"
        )
    valid, count, max_line_len, schema_size, network_id, tensor_type = \
        _HEADER.unpack_from(view, 0)
    return DnnHeader(
        frame_valid=bool(valid),
        frame_count=count,
        max_line_len=max_line_len,
        schema_size=schema_size,
        network_id=network_id,
        tensor_type=tensor_type,
    )


def parse_header(raw, stride: int) -> Tuple[DnnHeader, bytes]:
    """Parse the header and copy out the (de-striped) schema blob.

    Schema bytes are read from offset 12 of line 0.  Whenever the in-line
    cursor reaches *stride* it resets to 0 and reading continues at the
    start of the next line.  ``stride == 0`` disables wrapping.

    Returns:
        (header, schema_bytes)

    Raises:
        InvalidFrame: header missing or frame_valid flag clear.
        TruncatedBuffer: schema extends past the end of *raw*.
    """
    if stride < 0:
        raise ValueError(f"stride must be >= 0, got {stride}")

    view = _as_view(raw)
    header = read_header(view)

    log.debug(
        "Header: valid %s count %d max len %d schema size %d network id %d tensor type %d",
        header.frame_valid, header.frame_count, header.max_line_len,
        header.schema_size, header.network_id, header.tensor_type,
    )

    if not header.frame_valid:
        raise InvalidFrame(f"Frame {header.frame_count} flagged invalid by sensor")

    size = header.schema_size
    if not stride:
        end = DNN_HEADER_SIZE + size
        if end > len(view):
            raise TruncatedBuffer(
                f"Schema needs bytes up to {end}, buffer has {len(view)}"
            )
        return header, bytes(view[DNN_HEADER_SIZE:end])

    out = bytearray()
    line_start = 0
    cursor = DNN_HEADER_SIZE
    while len(out) < size:
        take = min(max(stride - cursor, 0), size - len(out))
        start = line_start + cursor
        chunk = view[start:start + take]
        if len(chunk) < take:
            raise TruncatedBuffer(
                f"Schema needs bytes up to {start + take}, buffer has {len(view)}"
            )
        out += chunk
        line_start += stride
        cursor = 0

    return header, bytes(out)


def body_offset(header: DnnHeader, stride: int) -> int:
    """Byte offset of the first tensor-body line.

    The body starts on the first whole line after the header and schema,
    which is line 1 whenever the schema fits in line 0.
    """
    if stride <= 0:
        raise ValueError(f"stride must be > 0 to locate tensor data, got {stride}")
    used = DNN_HEADER_SIZE + header.schema_size
    lines = max(1, -(-used // stride))
    return lines * stride
