"""Output layout planning.

Turns the schema's tensor descriptors into a flat output plan: how many
elements each tensor decodes to, where it lands in the concatenated
float array, and how many stride lines its body occupies.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from ._constants import SSD_OUTPUT_TENSOR_SIZE, UINT32_MAX
from .errors import EmptyLayout, InvalidFrame, LayoutOverflow, UnexpectedSize
from .schema_parser import TensorDescriptor

__all__ = ["plan_layout", "element_count", "LayoutPlan", "TensorLayout"]

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class TensorLayout:
    element_count: int
    offset: int       # first element in the output array
    line_count: int   # stride lines occupied by the tensor body
    byte_count: int   # element_count * bytes per element


@dataclass(frozen=True)
class LayoutPlan:
    total_elements: int
    tensors: List[TensorLayout]

    def schedule(self) -> List[int]:
        """Tensor indices, longest body (most lines) first.

        Ties keep descriptor order.
        """
        return sorted(range(len(self.tensors)),
                      key=lambda i: self.tensors[i].line_count, reverse=True)


def element_count(descriptor: TensorDescriptor) -> int:
    """Product of the dimension sizes, checked against 32-bit overflow."""
    count = 1
    for dim in descriptor.dims:
        if dim.size and count > UINT32_MAX // dim.size:
            raise LayoutOverflow(
                f"Element count of tensor {descriptor.name!r} overflows "
                f"({count} * {dim.size} > {UINT32_MAX})"
            )
        count *= dim.size
    return count


def plan_layout(descriptors: Sequence[TensorDescriptor], max_line_len: int,
                expected_total: Optional[int] = SSD_OUTPUT_TENSOR_SIZE) -> LayoutPlan:
    """Compute per-tensor element counts, offsets and line counts.

    Args:
        descriptors: Output tensor descriptors, in schema order.
        max_line_len: Payload bytes per stride line (from the header).
        expected_total: Required total element count, or None to accept
            any non-zero total.

    Raises:
        LayoutOverflow: element count or running total overflows.
        EmptyLayout: no descriptors, or zero elements in total.
        UnexpectedSize: total differs from *expected_total*.
        InvalidFrame: *max_line_len* is zero.
    """
    if not descriptors:
        raise EmptyLayout("No output tensors for the active network")
    if max_line_len <= 0:
        raise InvalidFrame(f"Invalid max line length {max_line_len}")

    counts = [element_count(d) for d in descriptors]

    total = 0
    for count in counts:
        if total > UINT32_MAX - count:
            raise LayoutOverflow(f"Total output size overflows ({total} + {count})")
        total += count

    if total == 0:
        raise EmptyLayout("Invalid output tensor info (total size is 0)")

    log.debug("Final output size: %d", total)

    if expected_total is not None and total != expected_total:
        raise UnexpectedSize(
            f"Output tensor size {total} does not match expected {expected_total}"
        )

    tensors = []
    offset = 0
    for desc, count in zip(descriptors, counts):
        byte_count = count * (desc.bits_per_element // 8)
        tensors.append(TensorLayout(
            element_count=count,
            offset=offset,
            line_count=-(-byte_count // max_line_len),
            byte_count=byte_count,
        ))
        offset += count

    return LayoutPlan(total_elements=total, tensors=tensors)
