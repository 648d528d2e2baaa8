"""Saving of normalised network input tensors and firmware upload progress text."""

from __future__ import annotations

import threading
from collections.abc import Sequence
from pathlib import Path

import numpy as np


def _wrap16(value: int) -> int:
    return ((value + 0x8000) & 0xFFFF) - 0x8000


def conv_reg_signed(reg: int) -> int:
    """Interpret the low 9 bits of a normalisation register as a signed value."""
    reg = _wrap16(int(reg))
    if not (reg >> 8) & 1:
        return reg
    return -((-reg) & 0x01FF)


def _per_channel(values: Sequence[int], name: str) -> list[int]:
    if len(values) < 3:
        raise ValueError(f"{name} needs a value for each of 3 channels")
    return [int(v) for v in values[:3]]


def normalise_tensor(
    data: bytes | bytearray | memoryview,
    norm_val: Sequence[int] = (0, 0, 0, 0),
    norm_shift: Sequence[int] = (0, 0, 0, 0),
    div_val: Sequence[int] = (1, 1, 1, 1),
    div_shift: int = 0,
) -> bytes:
    """Apply the sensor's input normalisation to interleaved RGB int8 samples."""
    samples = np.frombuffer(bytes(data), dtype=np.int8).astype(np.int64)
    channels = np.arange(samples.size) % 3
    offsets = np.array([conv_reg_signed(v) for v in _per_channel(norm_val, "norm_val")])[channels]
    shifts = np.array([v & 0xFF for v in _per_channel(norm_shift, "norm_shift")])[channels]
    divisors = np.array([_wrap16(v) for v in _per_channel(div_val, "div_val")])[channels]
    if np.any(divisors == 0):
        raise ValueError("div_val must not be zero")

    shifted = ((samples << shifts) - offsets).astype(np.int16).astype(np.int64)
    numerator = shifted << int(div_shift)
    quotient = (np.abs(numerator) // np.abs(divisors)) * np.sign(numerator) * np.sign(divisors)
    return (quotient & 0xFF).astype(np.uint8).tobytes()


def _parse_ints(text: str) -> list[int]:
    values = []
    for token in text.split():
        if not token.isdigit():
            break
        values.append(int(token))
    return values


def format_progress(fw_progress: str | Sequence[int], block_progress: int) -> str | None:
    """Progress line for a firmware upload, or None when no upload is in progress.

    fw_progress holds the firmware state, bytes sent and total bytes.
    """
    values = _parse_ints(fw_progress) if isinstance(fw_progress, str) else [int(v) for v in fw_progress]
    if len(values) != 3 or values[0] != 2 or values[2] == 0:
        return None
    total = values[2]
    current = values[1] + int(block_progress)
    return (
        f"Network Firmware Upload: {current * 100 // total}% "
        f"({current // 1024}/{total // 1024} KB)"
    )


class InputTensorSaver:
    """Writes a fixed number of normalised input tensors to a binary file."""

    def __init__(
        self,
        path: str | Path,
        num_tensors: int = 1,
        norm_val: Sequence[int] = (0, 0, 0, 0),
        norm_shift: Sequence[int] = (0, 0, 0, 0),
        div_val: Sequence[int] = (1, 1, 1, 1),
        div_shift: int = 0,
    ) -> None:
        self.norm_val = list(norm_val)
        self.norm_shift = list(norm_shift)
        self.div_val = list(div_val)
        self.div_shift = div_shift
        self._remaining = num_tensors
        self._lock = threading.Lock()
        self._file = open(path, "wb")

    @property
    def closed(self) -> bool:
        return self._file.closed

    def write(self, data: bytes | bytearray | memoryview) -> bool:
        """Append one tensor; returns False once the file has been closed."""
        with self._lock:
            if self._file.closed:
                return False
            self._file.write(
                normalise_tensor(data, self.norm_val, self.norm_shift, self.div_val, self.div_shift)
            )
            self._remaining -= 1
            if self._remaining == 0:
                self._file.close()
            return True

    def close(self) -> None:
        with self._lock:
            self._file.close()

    def __enter__(self) -> InputTensorSaver:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()