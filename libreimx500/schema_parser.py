"""Minimal FlatBuffer reader for the IMX500 schema blob using only struct.

The schema ("AP params") embedded in each frame is a FlatBuffer with the
table tree::

    ApParams      { networks: [Network] }
    Network       { id: ushort, type: string,
                    input_tensors: [InputTensor], output_tensors: [OutputTensor] }
    OutputTensor  { id: ubyte, name: string, num_dimensions: ubyte,
                    dimensions: [Dimension], bits_per_element: ubyte,
                    shift: ushort, scale: float, format: ubyte }
    Dimension     { id: ubyte, size: ushort, serialization_index: ubyte,
                    padding: ubyte }

The blob arrives with untrusted sensor data, so every offset is bounds
checked and any malformed structure raises InvalidSchema.
"""

import logging
import struct
from dataclasses import dataclass, field
from typing import List, Tuple

from ._constants import TYPE_SIGNED
from .errors import InvalidSchema

__all__ = [
    "parse_schema",
    "parse_networks",
    "NetworkInfo",
    "TensorDescriptor",
    "DimensionDescriptor",
]

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class DimensionDescriptor:
    ordinal: int
    size: int
    serialization_index: int
    padding: int = 0


@dataclass(frozen=True)
class TensorDescriptor:
    id: int
    name: str
    dims: Tuple[DimensionDescriptor, ...]
    bits_per_element: int
    sign: int  # TYPE_SIGNED / TYPE_UNSIGNED
    shift: int
    scale: float

    @property
    def signed(self) -> bool:
        return self.sign == TYPE_SIGNED

    @property
    def shape(self) -> Tuple[int, ...]:
        """Dimension sizes in ordinal order."""
        return tuple(d.size for d in self.dims)

    @property
    def needs_reorder(self) -> bool:
        return any(d.serialization_index != d.ordinal for d in self.dims)


@dataclass
class NetworkInfo:
    id: int
    type: str
    num_inputs: int
    outputs: List[TensorDescriptor] = field(default_factory=list)


# ── FlatBuffer primitives ────────────────────────────────────────────────────
#
# A table is handled as a (vtable_pos, table_pos) pair.  Fields are
# addressed by slot number, in declaration order.

_U8 = struct.Struct("<B")
_U16 = struct.Struct("<H")
_U32 = struct.Struct("<I")
_I32 = struct.Struct("<i")
_F32 = struct.Struct("<f")


def _require(buf, off, size):
    if off < 0 or off + size > len(buf):
        raise InvalidSchema(
            f"Schema access [{off}, {off + size}) outside blob of {len(buf)} bytes"
        )


def _unpack(fmt, buf, off):
    _require(buf, off, fmt.size)
    return fmt.unpack_from(buf, off)[0]


def _table(buf, pos):
    vtable = pos - _unpack(_I32, buf, pos)
    vt_size = _unpack(_U16, buf, vtable)
    if vt_size < 4 or vt_size % 2:
        raise InvalidSchema(f"Bad vtable length {vt_size} at {vtable}")
    _require(buf, vtable, vt_size)
    return vtable, pos


def _field(buf, table, slot):
    """Absolute position of field *slot*, or None when the field is absent."""
    vtable, pos = table
    entry = 4 + 2 * slot  # vtable starts with its own size and the table size
    if entry + 2 > _unpack(_U16, buf, vtable):
        return None
    rel = _unpack(_U16, buf, vtable + entry)
    return pos + rel if rel else None


def _deref(buf, pos):
    return pos + _unpack(_U32, buf, pos)


def _vector(buf, pos, elem_size=4):
    """(count, first element position) of the vector referenced at *pos*."""
    start = _deref(buf, pos)
    count = _unpack(_U32, buf, start)
    _require(buf, start + 4, count * elem_size)
    return count, start + 4


def _string(buf, table, slot):
    pos = _field(buf, table, slot)
    if pos is None:
        return ""
    count, start = _vector(buf, pos, elem_size=1)
    try:
        return bytes(buf[start:start + count]).decode("utf-8")
    except UnicodeDecodeError as e:
        raise InvalidSchema(f"Non UTF-8 string in schema: {e}") from None


def _tables(buf, table, slot):
    """Yield every table of a vector-of-tables field."""
    pos = _field(buf, table, slot)
    if pos is None:
        return
    count, start = _vector(buf, pos)
    for i in range(count):
        yield _table(buf, _deref(buf, start + 4 * i))


def _scalar(buf, table, slot, fmt, default=0):
    pos = _field(buf, table, slot)
    return default if pos is None else _unpack(fmt, buf, pos)


# ── Schema navigation ────────────────────────────────────────────────────────

def _parse_dimension(buf, table, position, tensor_name):
    dim = DimensionDescriptor(
        ordinal=_scalar(buf, table, 0, _U8),
        size=_scalar(buf, table, 1, _U16),
        serialization_index=_scalar(buf, table, 2, _U8),
        padding=_scalar(buf, table, 3, _U8),
    )
    if dim.padding != 0:
        raise InvalidSchema(
            f"Non-zero padding ({dim.padding}) for dimension {position} "
            f"of tensor {tensor_name!r}"
        )
    return dim


def _parse_output_tensor(buf, table) -> TensorDescriptor:
    name = _string(buf, table, 1)
    dims = tuple(
        _parse_dimension(buf, dim_table, k, name)
        for k, dim_table in enumerate(_tables(buf, table, 3))
    )

    declared = _scalar(buf, table, 2, _U8, default=None)
    if declared is not None and declared != len(dims):
        raise InvalidSchema(
            f"Tensor {name!r} declares {declared} dimensions but carries {len(dims)}"
        )

    order = sorted(d.serialization_index for d in dims)
    if order != list(range(len(dims))):
        raise InvalidSchema(
            f"Serialization indices of tensor {name!r} are not a permutation "
            f"of 0..{len(dims) - 1}: {[d.serialization_index for d in dims]}"
        )

    return TensorDescriptor(
        id=_scalar(buf, table, 0, _U8),
        name=name,
        dims=dims,
        bits_per_element=_scalar(buf, table, 4, _U8),
        shift=_scalar(buf, table, 5, _U16),
        scale=_scalar(buf, table, 6, _F32, 0.0),
        sign=_scalar(buf, table, 7, _U8, TYPE_SIGNED),
    )


def _parse_network(buf, table) -> NetworkInfo:
    inputs = _field(buf, table, 2)
    return NetworkInfo(
        id=_scalar(buf, table, 0, _U16),
        type=_string(buf, table, 1),
        num_inputs=0 if inputs is None else _vector(buf, inputs)[0],
        outputs=[_parse_output_tensor(buf, t) for t in _tables(buf, table, 3)],
    )


def _networks(schema_bytes):
    buf = schema_bytes if isinstance(schema_bytes, (bytes, bytearray)) else bytes(schema_bytes)
    if len(buf) < 8:
        raise InvalidSchema(f"Schema blob too short ({len(buf)} bytes)")
    root = _table(buf, _unpack(_U32, buf, 0))
    return buf, list(_tables(buf, root, 0))


def parse_networks(schema_bytes) -> List[NetworkInfo]:
    """Parse every network in the schema blob, with output descriptors."""
    buf, tables = _networks(schema_bytes)
    return [_parse_network(buf, t) for t in tables]


def parse_schema(schema_bytes, network_id: int) -> List[TensorDescriptor]:
    """Return the output tensor descriptors of network *network_id*.

    Only the first network whose id matches is decoded; the others are
    skipped without inspecting their tensors.  No match returns an empty
    list, which the layout planner rejects.

    Raises:
        InvalidSchema: malformed blob, non-zero dimension padding, or
            serialization indices that are not a permutation.
    """
    buf, tables = _networks(schema_bytes)
    log.debug("Networks size: %d", len(tables))

    for table in tables:
        if _scalar(buf, table, 0, _U16) != network_id:
            continue
        net = _parse_network(buf, table)
        log.debug("Network: %s, i/p size: %d, o/p size: %d",
                  net.type, net.num_inputs, len(net.outputs))
        return net.outputs

    log.debug("No network with id %d in schema", network_id)
    return []
