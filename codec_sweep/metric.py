"""Fidelity metric.

PSNR is always computed against an 8-bit full-scale peak (255), whatever
the bit depth of the original source file.
"""

import math

import numpy as np

PEAK = 255.0


def _as_samples(buffer: bytes | bytearray | memoryview | np.ndarray) -> np.ndarray:
    if isinstance(buffer, (bytes, bytearray, memoryview)):
        return np.frombuffer(buffer, dtype=np.uint8)
    return np.asarray(buffer).ravel()


def measure_psnr(
    a: bytes | bytearray | memoryview | np.ndarray,
    b: bytes | bytearray | memoryview | np.ndarray,
    width: int,
    height: int,
) -> float:
    """Compute PSNR in dB between two RGB buffers of the same geometry.

    Args:
        a: First buffer with ``width * height * 3`` samples
        b: Second buffer with the same sample count and channel order
        width: Image width in pixels
        height: Image height in pixels

    Returns:
        PSNR in dB, or ``math.inf`` for bit-identical buffers

    Raises:
        ValueError: If a buffer does not hold ``width * height * 3`` samples
    """
    expected = width * height * 3
    x = _as_samples(a)
    y = _as_samples(b)
    if x.size != expected or y.size != expected:
        msg = (
            f"Expected {expected} samples for {width}x{height} RGB, "
            f"got {x.size} and {y.size}"
        )
        raise ValueError(msg)
    if expected == 0:
        return math.inf

    diff = x.astype(np.float64) - y.astype(np.float64)
    mse = float(np.mean(diff * diff))
    if mse == 0.0:
        return math.inf
    return 10.0 * math.log10(PEAK * PEAK / mse)
