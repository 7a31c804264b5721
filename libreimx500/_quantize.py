"""Shared quantization/dequantization utilities.

Centralizes the sensor's affine formula, ``value = (raw - shift) * scale``,
so the decoder and the synthetic frame builder cannot drift apart.
"""

import numpy as np

from ._constants import QUANT_EPSILON

_RANGES = {
    (8, True): (-128, 127, np.int8),
    (8, False): (0, 255, np.uint8),
    (16, True): (-32768, 32767, np.int16),
    (16, False): (0, 65535, np.uint16),
}


def _safe_scale(scale):
    """Return a safe positive scale value, raising on negative scales."""
    if scale < 0:
        raise ValueError(f"Invalid quantization scale: {scale} (must be >= 0)")
    return max(scale, QUANT_EPSILON)


def quantize(array, scale, shift, bits=8, signed=False):
    """Quantize float data to the sensor's integer representation.

    q = clamp(round(value / scale + shift), lo, hi)

    Args:
        array: Input data (will be cast to float64).
        scale: Quantization scale. Must be >= 0; zero is replaced by epsilon.
        shift: Quantization shift (zero point).
        bits: Element width, 8 or 16.
        signed: Signed or unsigned integer range.

    Returns:
        numpy int8/uint8/int16/uint16 array.

    Raises:
        ValueError: If scale is negative or the width is not 8/16.
    """
    try:
        lo, hi, dtype = _RANGES[(bits, bool(signed))]
    except KeyError:
        raise ValueError(f"Unsupported element width: {bits} bits") from None
    return np.clip(
        np.round(np.asarray(array, dtype=np.float64) / _safe_scale(scale) + shift),
        lo, hi,
    ).astype(dtype)


def dequantize(array, scale, shift):
    """Dequantize integer samples to float32.

    value = (q - shift) * scale

    The subtraction is done in integer arithmetic so that 16-bit samples
    and shifts above 255 cannot wrap.

    Args:
        array: Quantized data (any integer dtype).
        scale: Quantization scale (float).
        shift: Quantization shift (int).

    Returns:
        numpy float32 array.
    """
    centered = np.asarray(array).astype(np.int64) - int(shift)
    return centered.astype(np.float32) * np.float32(scale)
