"""Image negation effect."""

from __future__ import annotations

_INVERT = bytes(255 - value for value in range(256))


def negate(buffer: bytes | bytearray | memoryview) -> bytes:
    """Return the buffer with every bit inverted.

    The buffer length must be a multiple of four bytes.
    """
    data = bytes(buffer)
    if len(data) % 4:
        raise ValueError("buffer length must be a multiple of 4 bytes")
    return data.translate(_INVERT)