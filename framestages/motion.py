"""Simple frame-differencing motion detector on a low resolution luma plane."""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class MotionDetectConfig:
    """Detector settings; ROI dimensions are fractions of the image size."""

    roi_x: float = 0.0
    roi_y: float = 0.0
    roi_width: float = 1.0
    roi_height: float = 1.0
    hskip: int = 1
    vskip: int = 1
    difference_m: float = 0.1
    difference_c: int = 10
    region_threshold: float = 0.005
    frame_period: int = 5
    verbose: bool = False
    region_name: str = ""

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> MotionDetectConfig:
        defaults = cls()
        return cls(
            roi_x=float(params.get("roi_x", defaults.roi_x)),
            roi_y=float(params.get("roi_y", defaults.roi_y)),
            roi_width=float(params.get("roi_width", defaults.roi_width)),
            roi_height=float(params.get("roi_height", defaults.roi_height)),
            hskip=int(params.get("hskip", defaults.hskip)),
            vskip=int(params.get("vskip", defaults.vskip)),
            difference_m=float(params.get("difference_m", defaults.difference_m)),
            difference_c=int(params.get("difference_c", defaults.difference_c)),
            region_threshold=float(params.get("region_threshold", defaults.region_threshold)),
            frame_period=int(params.get("frame_period", defaults.frame_period)),
            verbose=bool(int(params.get("verbose", 0))),
            region_name=str(params.get("region_name", defaults.region_name)),
        )


def _to_unsigned(value: float) -> int:
    return max(int(value), 0)


class MotionDetector:
    """Counts changed pixels in a region of interest between successive frames."""

    def __init__(self, config: MotionDetectConfig, width: int, height: int, stride: int) -> None:
        self.config = config
        self._hskip = max(config.hskip, 1)
        self._vskip = max(config.vskip, 1)
        width //= self._hskip
        height //= self._vskip
        self._stride = stride * self._vskip

        roi_x = _to_unsigned(config.roi_x * width)
        roi_y = _to_unsigned(config.roi_y * height)
        roi_width = _to_unsigned(config.roi_width * width)
        roi_height = _to_unsigned(config.roi_height * height)
        threshold = _to_unsigned(config.region_threshold * roi_width * roi_height)

        self.roi_x = min(roi_x, width)
        self.roi_y = min(roi_y, height)
        self.roi_width = min(roi_width, width - self.roi_x)
        self.roi_height = min(roi_height, height - self.roi_y)
        self.region_threshold = min(threshold, self.roi_width * self.roi_height)

        if config.verbose:
            logger.info(
                "Lores: %dx%d roi: (%d,%d) %dx%d threshold: %d",
                width, height, self.roi_x, self.roi_y, self.roi_width, self.roi_height,
                self.region_threshold,
            )

        self.motion_detected = False
        self._previous: np.ndarray | None = None
        self._lock = threading.Lock()

    def _extract_roi(self, image: Any) -> np.ndarray:
        buffer = np.frombuffer(image, dtype=np.uint8)
        rows = (self.roi_y + np.arange(self.roi_height)) * self._stride
        cols = (self.roi_x + np.arange(self.roi_width)) * self._hskip
        indices = rows[:, None] + cols[None, :]
        if indices.size and indices.max() >= buffer.size:
            raise ValueError("image buffer is too small for the configured region")
        return buffer[indices].copy()

    def process(self, image: Any, sequence: int) -> bool | None:
        """Process one frame; returns the motion result, or None if the frame is skipped."""
        period = self.config.frame_period
        if period and sequence % period:
            return None

        roi = self._extract_roi(image)
        with self._lock:
            if self._previous is None:
                self._previous = roi
                return self.motion_detected

            old = self._previous.astype(np.int64)
            new = roi.astype(np.int64)
            self._previous = roi
            changed = np.abs(new - old) > self.config.difference_m * old + self.config.difference_c
            regions = int(np.count_nonzero(changed))
            detected = roi.size > 0 and regions >= self.region_threshold

            if self.config.verbose and detected != self.motion_detected:
                suffix = f" in region {self.config.region_name}" if self.config.region_name else ""
                logger.info("Motion %s%s", "detected" if detected else "stopped", suffix)

            self.motion_detected = detected
            return detected