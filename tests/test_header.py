#!/usr/bin/env python3
"""Tests for DNN header parsing and schema de-striping.

All tests are offline and use hand-built buffers.
"""

import struct

import pytest

from libreimx500.errors import InvalidFrame, TruncatedBuffer
from libreimx500.header import body_offset, parse_header, read_header


def _header(valid=1, count=0, max_line_len=64, schema_size=0, network_id=1, tensor_type=1):
    return struct.pack("<BBHHHB", valid, count, max_line_len, schema_size,
                       network_id, tensor_type) + b"\x00" * 3


def _frame(stride, lines, schema_size, **kw):
    """Buffer of *lines* lines where byte i holds (i * 7) & 0xFF."""
    buf = bytearray((i * 7) & 0xFF for i in range(stride * lines))
    buf[:12] = _header(schema_size=schema_size, **kw)
    return bytes(buf)


class TestHeaderFields:

    def test_little_endian_fields(self):
        raw = bytes([0x01, 0x07, 0x00, 0x10, 0x05, 0x00, 0x34, 0x12, 0x01, 0, 0, 0])
        hdr = read_header(raw)
        assert hdr.frame_valid is True
        assert hdr.frame_count == 7
        assert hdr.max_line_len == 0x1000
        assert hdr.schema_size == 5
        assert hdr.network_id == 0x1234
        assert hdr.tensor_type == 1
        assert not hdr.signed

    def test_signed_tensor_type(self):
        hdr = read_header(_header(tensor_type=0))
        assert hdr.signed

    def test_nonzero_valid_byte_is_valid(self):
        hdr, _ = parse_header(_header(valid=0xFF) + b"\x00" * 52, 64)
        assert hdr.frame_valid

    def test_accepts_memoryview_and_bytearray(self):
        raw = _frame(64, 2, 10)
        for src in (bytearray(raw), memoryview(raw)):
            hdr, schema = parse_header(src, 64)
            assert schema == raw[12:22]
            assert hdr.schema_size == 10


class TestDestripe:

    def test_schema_within_first_line(self):
        stride = 128
        raw = _frame(stride, 2, 40)
        _, schema = parse_header(raw, stride)
        assert schema == raw[12:52]

    def test_round_trip_known_blob(self):
        stride = 64
        blob = bytes(range(200, 240))
        raw = bytearray(stride * 2)
        raw[:12] = _header(schema_size=len(blob))
        raw[12:12 + len(blob)] = blob
        _, schema = parse_header(bytes(raw), stride)
        assert schema == blob

    def test_wrap_reads_next_line_from_offset_zero(self):
        stride = 32
        raw = _frame(stride, 4, 60)
        _, schema = parse_header(raw, stride)
        assert len(schema) == 60
        # 20 bytes from line 0, then line 1 from its first byte.
        assert schema[:20] == raw[12:32]
        assert schema[20:52] == raw[32:64]
        assert schema[20:32] != raw[44:56]
        assert schema[52:] == raw[64:72]

    def test_stride_zero_disables_wrapping(self):
        raw = _frame(16, 8, 50)
        _, schema = parse_header(raw, 0)
        assert schema == raw[12:62]

    def test_empty_schema(self):
        _, schema = parse_header(_frame(64, 1, 0), 64)
        assert schema == b""


class TestHeaderErrors:

    def test_invalid_frame_raises(self):
        raw = _frame(64, 2, 10, valid=0)
        with pytest.raises(InvalidFrame, match="flagged invalid"):
            parse_header(raw, 64)

    def test_short_buffer_raises(self):
        with pytest.raises(InvalidFrame, match="too short"):
            parse_header(b"\x01\x00\x40", 64)

    def test_schema_past_end_raises(self):
        raw = _frame(32, 2, 100)
        with pytest.raises(TruncatedBuffer):
            parse_header(raw, 32)

    def test_schema_past_end_unstriped_raises(self):
        raw = _frame(32, 1, 100)
        with pytest.raises(TruncatedBuffer):
            parse_header(raw, 0)

    def test_negative_stride_raises(self):
        with pytest.raises(ValueError, match="stride"):
            parse_header(_frame(32, 1, 0), -1)


class TestBodyOffset:

    @pytest.mark.parametrize("stride, schema_size, expected_lines", [
        (64, 0, 1), (64, 20, 1), (64, 52, 1), (64, 53, 2), (32, 60, 3),
    ])
    def test_first_line_after_schema(self, stride, schema_size, expected_lines):
        hdr = read_header(_header(schema_size=schema_size))
        assert body_offset(hdr, stride) == expected_lines * stride

    def test_requires_positive_stride(self):
        hdr = read_header(_header())
        with pytest.raises(ValueError):
            body_offset(hdr, 0)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
