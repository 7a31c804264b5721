"""Tensor body decoding: de-striping, de-quantization and dimension reorder.

Each output tensor occupies ``line_count`` consecutive stride lines, of
which only the first ``max_line_len`` bytes carry data.  Tensors follow
each other in schema order.  Elements are stored in serialization order
(dimension with serialization index 0 varies fastest) and are permuted
back to ordinal order after de-quantization.

Tensors are decoded concurrently; each task writes a disjoint slice of the
shared output array, so the only synchronization is the final join.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from ._constants import DIMENSION_MAX
from ._quantize import dequantize
from .errors import TruncatedBuffer, UnsupportedElementWidth, UnsupportedRank
from .layout import LayoutPlan, TensorLayout
from .schema_parser import TensorDescriptor

__all__ = [
    "decode_tensors",
    "decode_tensor",
    "reorder",
    "reorder_indices",
    "assemble_16bit",
    "bytes_to_uint16",
    "bytes_to_int16",
]

log = logging.getLogger(__name__)


# ── 16-bit assembly (low byte first) ─────────────────────────────────────────

def bytes_to_uint16(lsb: int, msb: int) -> int:
    return ((msb & 0xFF) << 8) | (lsb & 0xFF)


def bytes_to_int16(lsb: int, msb: int) -> int:
    value = bytes_to_uint16(lsb, msb)
    return value - 0x10000 if value & 0x8000 else value


def assemble_16bit(raw: np.ndarray, signed: bool) -> np.ndarray:
    """Assemble consecutive (low, high) byte pairs into 16-bit integers."""
    raw = np.asarray(raw, dtype=np.uint8)
    if raw.size % 2:
        raise ValueError(f"Odd number of bytes ({raw.size}) for 16-bit data")
    values = raw[0::2].astype(np.uint16) | (raw[1::2].astype(np.uint16) << 8)
    return values.view(np.int16) if signed else values


# ── Reorder ──────────────────────────────────────────────────────────────────

def reorder_indices(descriptor: TensorDescriptor) -> np.ndarray:
    """Ordinal (destination) index of every serialized position.

    For serialized coordinates (i, j, k), slowest to fastest, the
    destination is ``coef[2]*i + coef[1]*j + coef[0]*k`` where ``coef[s]``
    is the product of the sizes of all ordinal dimensions preceding the
    one serialized at position ``s``.

    Raises:
        UnsupportedRank: more than 3 dimensions.
    """
    dims = descriptor.dims
    if len(dims) > DIMENSION_MAX:
        raise UnsupportedRank(
            f"Tensor {descriptor.name!r} needs a reorder of {len(dims)} "
            f"dimensions; at most {DIMENSION_MAX} are supported"
        )

    loop = [1] * DIMENSION_MAX
    coef = [1] * DIMENSION_MAX
    for position, dim in enumerate(dims):
        s = dim.serialization_index
        loop[s] = dim.size
        for preceding in dims[:position]:
            coef[s] *= preceding.size

    i, j, k = np.indices((loop[2], loop[1], loop[0]))
    return (coef[2] * i + coef[1] * j + coef[0] * k).ravel()


def reorder(values: np.ndarray, descriptor: TensorDescriptor) -> np.ndarray:
    """Permute values from serialization order into ordinal order."""
    out = np.empty_like(values)
    out[reorder_indices(descriptor)] = values
    return out


# ── Per-tensor decode ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class _TensorTask:
    """Everything one worker needs; nothing else is shared."""
    index: int
    descriptor: TensorDescriptor
    layout: TensorLayout
    src_offset: int


def _gather_lines(data: np.ndarray, src_offset: int, stride: int,
                  line_bytes: int, line_count: int, byte_count: int,
                  name: str) -> np.ndarray:
    """Concatenate the payload bytes of *line_count* stride lines."""
    rows = [data[start:start + line_bytes]
            for start in range(src_offset, src_offset + line_count * stride, stride)]
    payload = np.concatenate(rows) if rows else data[:0]
    if payload.size < byte_count:
        raise TruncatedBuffer(
            f"Tensor {name!r} needs {byte_count} bytes over {line_count} lines "
            f"from offset {src_offset}, buffer has {data.size}"
        )
    return payload[:byte_count]


def decode_tensor(data: np.ndarray, src_offset: int, stride: int,
                  max_line_len: int, descriptor: TensorDescriptor,
                  layout: TensorLayout) -> np.ndarray:
    """Decode one tensor body into float32 values in ordinal order.

    Args:
        data: Whole raw buffer as a uint8 array.
        src_offset: Byte offset of the tensor's first line.
        stride: Bytes per line.
        max_line_len: Payload bytes per line.
        descriptor: Tensor descriptor from the schema.
        layout: Element/line counts from the layout plan.

    Raises:
        UnsupportedElementWidth: width is not 8 or 16 bits.
        UnsupportedRank: reorder of more than 3 dimensions.
        TruncatedBuffer: body extends past the end of *data*.
    """
    bits = descriptor.bits_per_element
    if bits not in (8, 16):
        raise UnsupportedElementWidth(
            f"Invalid bitsPerElement value = {bits} for tensor {descriptor.name!r}"
        )
    width = bits // 8

    # Whole elements per line; an odd line length still yields a full pair.
    line_bytes = -(-max_line_len // width) * width
    raw = _gather_lines(data, src_offset, stride, line_bytes,
                        layout.line_count, layout.byte_count, descriptor.name)

    if bits == 8:
        samples = raw.view(np.int8) if descriptor.signed else raw
    else:
        samples = assemble_16bit(raw, descriptor.signed)

    values = dequantize(samples, descriptor.scale, descriptor.shift)

    if descriptor.needs_reorder:
        values = reorder(values, descriptor)
    return values


def _run_task(task: _TensorTask, data: np.ndarray, out: np.ndarray,
              stride: int, max_line_len: int) -> None:
    layout = task.layout
    values = decode_tensor(data, task.src_offset, stride, max_line_len,
                           task.descriptor, layout)
    out[layout.offset:layout.offset + layout.element_count] = values


def decode_tensors(raw, body_offset: int, stride: int, max_line_len: int,
                   descriptors: Sequence[TensorDescriptor], plan: LayoutPlan,
                   max_workers: Optional[int] = None) -> np.ndarray:
    """Decode all tensor bodies into one concatenated float32 array.

    Tensors are submitted largest first (see ``LayoutPlan.schedule``).
    All tasks run to completion before an error is reported; the first
    failure in submission order is re-raised and no output is returned.

    Args:
        raw: Whole raw buffer (bytes-like).
        body_offset: Byte offset of the first tensor line.
        stride: Bytes per line.
        max_line_len: Payload bytes per line.
        descriptors: Tensor descriptors, in schema order.
        plan: Layout plan for *descriptors*.
        max_workers: Thread pool size (default: one per tensor).

    Returns:
        float32 array of length ``plan.total_elements``.
    """
    if stride <= 0:
        raise ValueError(f"stride must be > 0, got {stride}")
    if len(descriptors) != len(plan.tensors):
        raise ValueError(
            f"{len(descriptors)} descriptors but {len(plan.tensors)} planned tensors"
        )

    data = np.frombuffer(raw, dtype=np.uint8)
    out = np.zeros(plan.total_elements, dtype=np.float32)

    tasks: List[_TensorTask] = []
    src = body_offset
    for idx, (desc, layout) in enumerate(zip(descriptors, plan.tensors)):
        tasks.append(_TensorTask(index=idx, descriptor=desc, layout=layout, src_offset=src))
        src += layout.line_count * stride

    order = plan.schedule()
    workers = max_workers or len(tasks)
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="imx500-tensor") as pool:
        futures = [
            pool.submit(_run_task, tasks[i], data, out, stride, max_line_len)
            for i in order
        ]
    # Leaving the with-block joined every task.

    for i, fut in zip(order, futures):
        err = fut.exception()
        if err is not None:
            log.debug("Tensor %d (%s) failed: %s", i, tasks[i].descriptor.name, err)
            raise err

    return out
