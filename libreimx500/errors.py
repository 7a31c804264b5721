"""Decode failures.

Every failure here is a structural mismatch between the assumed and the
actual binary layout.  They all derive from ValueError so callers that
already guard parsers with ``except ValueError`` keep working.
"""

__all__ = [
    "DecodeError",
    "InvalidFrame",
    "InvalidSchema",
    "LayoutOverflow",
    "EmptyLayout",
    "UnexpectedSize",
    "UnsupportedElementWidth",
    "UnsupportedRank",
    "TruncatedBuffer",
]


class DecodeError(ValueError):
    """Base class: the frame cannot be decoded."""


class InvalidFrame(DecodeError):
    """Header says the frame is not valid, or the header itself is unusable."""


class InvalidSchema(DecodeError):
    """Schema blob is malformed or violates a descriptor invariant."""


class LayoutOverflow(DecodeError):
    """Element counts overflow a 32-bit unsigned accumulator."""


class EmptyLayout(DecodeError):
    """No output tensors, or all of them are empty."""


class UnexpectedSize(DecodeError):
    """Total output size does not match the supported topology."""


class UnsupportedElementWidth(DecodeError):
    """Element width other than 8 or 16 bits."""


class UnsupportedRank(DecodeError):
    """Dimension reorder requested for more than 3 dimensions."""


class TruncatedBuffer(DecodeError):
    """Raw buffer ends before the data the header/schema describe."""
