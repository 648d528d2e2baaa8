"""Temporal filtering of object detections across frames."""

from __future__ import annotations

import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import Any

from framestages.geometry import Rectangle, Size


@dataclass
class Detection:
    """One detected object with its box in output image pixels."""

    category: int
    name: str
    confidence: float
    box: Rectangle = field(default_factory=Rectangle)

    def __str__(self) -> str:
        box = self.box
        return (
            f"{self.name}[{self.category}] ({self.confidence:.2f}) "
            f"@ {box.x},{box.y} {box.width}x{box.height}"
        )


@dataclass
class TemporalFilterConfig:
    """Settings for matching and smoothing detections over frames."""

    tolerance: float = 0.05
    factor: float = 0.2
    visible_frames: int = 5
    hidden_frames: int = 2

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> TemporalFilterConfig:
        """Build from the ``temporal_filter`` section of a stage's parameters."""
        defaults = cls()
        return cls(
            tolerance=float(params.get("tolerance", defaults.tolerance)),
            factor=float(params.get("factor", defaults.factor)),
            visible_frames=int(params.get("visible_frames", defaults.visible_frames)),
            hidden_frames=int(params.get("hidden_frames", defaults.hidden_frames)),
        )


@dataclass
class _Tracked:
    params: Detection
    visible: int
    hidden: int
    matched: bool = True


class DetectionTracker:
    """Keeps a long term list of detections, smoothing boxes and hiding new arrivals.

    With ``reveal_first`` set, objects found while the list is empty are shown
    at once instead of staying hidden for ``hidden_frames`` frames.
    """

    def __init__(self, config: TemporalFilterConfig, reveal_first: bool = False) -> None:
        self.config = config
        self.reveal_first = reveal_first
        self._tracked: list[_Tracked] = []
        self._lock = threading.Lock()

    def _matches(self, obj: Detection, tracked: Detection, size: Size) -> bool:
        tol_x = self.config.tolerance * size.width
        tol_y = self.config.tolerance * size.height
        a, b = obj.box, tracked.box
        return (
            obj.category == tracked.category
            and abs(a.x - b.x) < tol_x
            and abs(a.y - b.y) < tol_y
            and abs(a.width - b.width) < tol_x
            and abs(a.height - b.height) < tol_y
        )

    def _blend(self, tracked: Detection, obj: Detection) -> None:
        f = self.config.factor
        a, b = obj.box, tracked.box
        tracked.confidence = obj.confidence
        tracked.box = Rectangle(
            int(f * a.x + (1 - f) * b.x),
            int(f * a.y + (1 - f) * b.y),
            int(f * a.width + (1 - f) * b.width),
            int(f * a.height + (1 - f) * b.height),
        )

    def update(self, objects: Sequence[Detection], isp_output_size: Size) -> list[Detection]:
        """Fold one frame's detections into the long term list; return the visible ones."""
        config = self.config
        with self._lock:
            started_empty = not self._tracked
            for tracked in self._tracked:
                tracked.matched = False

            for obj in objects:
                for tracked in self._tracked:
                    if self._matches(obj, tracked.params, isp_output_size):
                        tracked.matched = True
                        self._blend(tracked.params, obj)
                        tracked.visible = config.visible_frames
                        tracked.hidden = max(0, tracked.hidden - 1)
                        break
                else:
                    hidden = 0 if (self.reveal_first and started_empty) else config.hidden_frames
                    self._tracked.append(_Tracked(replace(obj), config.visible_frames, hidden))

            for tracked in self._tracked:
                if not tracked.matched:
                    # Still-hidden objects must be matched again for hidden_frames in a row.
                    if tracked.hidden:
                        tracked.visible = 0
                    else:
                        tracked.visible -= 1

            self._tracked = [t for t in self._tracked if t.matched or t.visible]
            return self._visible()

    def _visible(self) -> list[Detection]:
        return [replace(t.params) for t in self._tracked if not t.hidden]

    def visible(self) -> list[Detection]:
        """Tracked detections that are no longer hidden."""
        with self._lock:
            return self._visible()

    def clear(self) -> None:
        with self._lock:
            self._tracked.clear()