"""Synthetic IMX500 output tensor frames.

Uses the `flatbuffers` library to build schema blobs and lays out complete
striped frames (header, schema, tensor bodies) exactly as the sensor
emits them.  Meant for tests, demos and replaying known detections
through the decoder without hardware.

FlatBuffer construction is bottom-up: leaves first, root last.  Each
helper returns an offset that callers embed into parent tables.
"""

import struct
from typing import List, Optional, Sequence, Tuple

import flatbuffers
import numpy as np

from ._constants import (
    DNN_HEADER_SIZE, DEFAULT_STRIDE, SSD_TOTAL_DETECTIONS,
    TYPE_SIGNED, TYPE_UNSIGNED,
)
from ._quantize import quantize
from .header import DnnHeader, body_offset
from .schema_parser import DimensionDescriptor, NetworkInfo, TensorDescriptor
from .tensor_decoder import reorder_indices

__all__ = [
    "build_schema",
    "build_header",
    "build_frame",
    "build_ssd_frame",
    "serialize_tensor",
    "ssd_mobilenet_descriptors",
    "SSD_NETWORK_ID",
]

SSD_NETWORK_ID = 1

# Filler for the unused tail of each line; the decoder must never read it.
_LINE_FILL = 0xA5


# ── Schema tables ────────────────────────────────────────────────────────────

def _build_vector(builder, offsets):
    builder.StartVector(4, len(offsets), 4)
    for off in reversed(offsets):
        builder.PrependUOffsetTRelative(off)
    return builder.EndVector()


def _build_dimension(builder, dim: DimensionDescriptor):
    # Dimension table:
    #   field 0: id (ubyte)
    #   field 1: size (ushort)
    #   field 2: serialization_index (ubyte)
    #   field 3: padding (ubyte)
    builder.StartObject(4)
    builder.PrependUint8Slot(0, dim.ordinal, 0)
    builder.PrependUint16Slot(1, dim.size, 0)
    builder.PrependUint8Slot(2, dim.serialization_index, 0)
    builder.PrependUint8Slot(3, dim.padding, 0)
    return builder.EndObject()


def _build_output_tensor(builder, desc: TensorDescriptor):
    name_off = builder.CreateString(desc.name)
    dims_vec = _build_vector(builder, [_build_dimension(builder, d) for d in desc.dims])

    # OutputTensor table:
    #   field 0: id (ubyte)
    #   field 1: name (string)
    #   field 2: num_dimensions (ubyte)
    #   field 3: dimensions (vector of Dimension)
    #   field 4: bits_per_element (ubyte)
    #   field 5: shift (ushort)
    #   field 6: scale (float)
    #   field 7: format (ubyte, 0 = signed, 1 = unsigned)
    builder.StartObject(8)
    builder.PrependUint8Slot(0, desc.id, 0)
    builder.PrependUOffsetTRelativeSlot(1, name_off, 0)
    builder.PrependUint8Slot(2, len(desc.dims), 0)
    builder.PrependUOffsetTRelativeSlot(3, dims_vec, 0)
    builder.PrependUint8Slot(4, desc.bits_per_element, 0)
    builder.PrependUint16Slot(5, desc.shift, 0)
    builder.PrependFloat32Slot(6, desc.scale, 0.0)
    builder.PrependUint8Slot(7, desc.sign, TYPE_SIGNED)
    return builder.EndObject()


def _build_input_tensor(builder, index):
    # InputTensor table, field 0: id (ubyte).  Only counted by the decoder.
    builder.StartObject(1)
    builder.PrependUint8Slot(0, index, 0)
    return builder.EndObject()


def _build_network(builder, net: NetworkInfo):
    type_off = builder.CreateString(net.type)
    inputs_vec = _build_vector(
        builder, [_build_input_tensor(builder, i) for i in range(net.num_inputs)])
    outputs_vec = _build_vector(
        builder, [_build_output_tensor(builder, d) for d in net.outputs])

    # Network table:
    #   field 0: id (ushort)
    #   field 1: type (string)
    #   field 2: input_tensors (vector of InputTensor)
    #   field 3: output_tensors (vector of OutputTensor)
    builder.StartObject(4)
    builder.PrependUint16Slot(0, net.id, 0)
    builder.PrependUOffsetTRelativeSlot(1, type_off, 0)
    builder.PrependUOffsetTRelativeSlot(2, inputs_vec, 0)
    builder.PrependUOffsetTRelativeSlot(3, outputs_vec, 0)
    return builder.EndObject()


def build_schema(networks: Sequence[NetworkInfo]) -> bytes:
    """Serialize *networks* into a schema blob."""
    builder = flatbuffers.Builder(1024)
    nets_vec = _build_vector(builder, [_build_network(builder, n) for n in networks])

    # ApParams table, field 0: networks (vector of Network)
    builder.StartObject(1)
    builder.PrependUOffsetTRelativeSlot(0, nets_vec, 0)
    builder.Finish(builder.EndObject())
    return bytes(builder.Output())


# ── Frame layout ─────────────────────────────────────────────────────────────

def build_header(header: DnnHeader) -> bytes:
    """Pack a 12-byte DNN header (3 reserved bytes zeroed)."""
    packed = struct.pack(
        "<BBHHHB", int(header.frame_valid), header.frame_count,
        header.max_line_len, header.schema_size, header.network_id,
        header.tensor_type,
    )
    return packed.ljust(DNN_HEADER_SIZE, b"\x00")


def serialize_tensor(values, descriptor: TensorDescriptor) -> bytes:
    """Quantize ordinal-order values and emit them in serialization order.

    Integer arrays are taken as already-quantized samples; anything else
    is quantized with the descriptor's scale and shift.  16-bit samples
    are written low byte first.
    """
    values = np.asarray(values).ravel()
    bits = descriptor.bits_per_element
    if np.issubdtype(values.dtype, np.integer):
        samples = values
    else:
        samples = quantize(values, descriptor.scale, descriptor.shift,
                           bits=bits, signed=descriptor.signed)

    if descriptor.needs_reorder:
        samples = samples[reorder_indices(descriptor)]

    if bits == 8:
        dtype = "i1" if descriptor.signed else "u1"
    elif bits == 16:
        dtype = "<i2" if descriptor.signed else "<u2"
    else:
        raise ValueError(f"Unsupported element width: {bits} bits")
    return samples.astype(dtype).tobytes()


def build_frame(tensors: Sequence[Tuple[TensorDescriptor, object]],
                stride: int = DEFAULT_STRIDE, max_line_len: Optional[int] = None,
                network_id: int = SSD_NETWORK_ID, network_type: str = "ssd_mobilenet_v1",
                frame_valid: bool = True, frame_count: int = 0,
                tensor_type: int = TYPE_UNSIGNED,
                extra_networks: Sequence[NetworkInfo] = ()) -> bytes:
    """Lay out a complete raw output tensor frame.

    Args:
        tensors: (descriptor, values) pairs in schema order.  Values are in
            ordinal order; see serialize_tensor().
        stride: Bytes per line.
        max_line_len: Payload bytes per line (default: *stride*).
        network_id: Id written to the header and the schema network.
        network_type: Network type string in the schema.
        frame_valid: Header validity flag.
        frame_count: Header frame counter.
        tensor_type: Header tensor type.
        extra_networks: Networks placed in the schema before the active one.

    Returns:
        Frame bytes, a whole number of lines long.
    """
    if max_line_len is None:
        max_line_len = stride
    if not 0 < max_line_len <= stride:
        raise ValueError(f"max_line_len must be in (0, {stride}], got {max_line_len}")

    descriptors = [d for d, _ in tensors]
    net = NetworkInfo(id=network_id, type=network_type, num_inputs=1, outputs=descriptors)
    schema = build_schema(list(extra_networks) + [net])

    header = DnnHeader(
        frame_valid=frame_valid, frame_count=frame_count,
        max_line_len=max_line_len, schema_size=len(schema),
        network_id=network_id, tensor_type=tensor_type,
    )

    lines: List[bytes] = []
    for desc, values in tensors:
        body = serialize_tensor(values, desc)
        width = max(desc.bits_per_element // 8, 1)
        line_bytes = -(-max_line_len // width) * width
        n_lines = -(-len(body) // max_line_len)
        for i in range(n_lines):
            chunk = body[i * line_bytes:(i + 1) * line_bytes]
            lines.append(chunk.ljust(stride, bytes([_LINE_FILL])))

    head = build_header(header) + schema
    start = body_offset(header, stride)
    return head.ljust(start, b"\x00") + b"".join(lines)


# ── SSD MobileNet V1 topology ────────────────────────────────────────────────

def _dims(*specs):
    return tuple(DimensionDescriptor(ordinal=i, size=size, serialization_index=ser)
                 for i, (size, ser) in enumerate(specs))


def ssd_mobilenet_descriptors(bits: int = 8) -> List[TensorDescriptor]:
    """Descriptors of the four SSD output tensors (61 elements in total).

    Boxes are declared detection-major in ordinal order but serialized
    coordinate-fastest, so decoding them exercises the reorder path.
    """
    n = SSD_TOTAL_DETECTIONS
    full = (1 << bits) - 1
    return [
        TensorDescriptor(id=0, name="boxes", dims=_dims((n, 1), (4, 0)),
                         bits_per_element=bits, sign=TYPE_UNSIGNED,
                         shift=0, scale=1.0 / full),
        TensorDescriptor(id=1, name="classes", dims=_dims((n, 0)),
                         bits_per_element=bits, sign=TYPE_UNSIGNED,
                         shift=0, scale=1.0),
        TensorDescriptor(id=2, name="scores", dims=_dims((n, 0)),
                         bits_per_element=bits, sign=TYPE_UNSIGNED,
                         shift=0, scale=1.0 / full),
        TensorDescriptor(id=3, name="num_detections", dims=_dims((1, 0)),
                         bits_per_element=bits, sign=TYPE_UNSIGNED,
                         shift=0, scale=1.0),
    ]


def build_ssd_frame(boxes, classes, scores, num_detections: int,
                    bits: int = 8, **kwargs) -> bytes:
    """Build a frame carrying one SSD detection record.

    Args:
        boxes: (10, 4) normalized [y_min, x_min, y_max, x_max] per candidate.
        classes: 10 class ids.
        scores: 10 scores in [0, 1].
        num_detections: Reported detection count.
        bits: Element width for all four tensors.
        **kwargs: Passed to build_frame().
    """
    boxes = np.asarray(boxes, dtype=np.float64).reshape(SSD_TOTAL_DETECTIONS, 4)
    desc = ssd_mobilenet_descriptors(bits)
    return build_frame([
        (desc[0], boxes.T.ravel()),
        (desc[1], np.asarray(classes, dtype=np.float64)),
        (desc[2], np.asarray(scores, dtype=np.float64)),
        (desc[3], np.array([num_detections], dtype=np.float64)),
    ], **kwargs)
