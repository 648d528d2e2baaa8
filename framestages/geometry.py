"""Integer image geometry and inference-to-output coordinate mapping."""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass

logger = logging.getLogger(__name__)


def _tdiv(a: int, b: int) -> int:
    """Integer division truncating toward zero."""
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b > 0) else -q


def _round(value: float) -> int:
    """Round half away from zero."""
    if value >= 0:
        return int(math.floor(value + 0.5))
    return -int(math.floor(-value + 0.5))


@dataclass(frozen=True)
class Point:
    """A point with integer coordinates."""

    x: int = 0
    y: int = 0

    def __neg__(self) -> Point:
        return Point(-self.x, -self.y)


@dataclass(frozen=True)
class Size:
    """A width and height."""

    width: int = 0
    height: int = 0

    def bounded_to_aspect_ratio(self, ratio: Size) -> Size:
        """Shrink one dimension so the size matches the aspect ratio of ``ratio``."""
        if not ratio.width or not ratio.height:
            raise ValueError("aspect ratio must have non-zero width and height")
        ratio1 = self.width * ratio.height
        ratio2 = ratio.width * self.height
        if ratio1 > ratio2:
            return Size(ratio2 // ratio.height, self.height)
        return Size(self.width, ratio1 // ratio.width)

    def centered_to(self, center: Point) -> Rectangle:
        """Return a rectangle of this size centred on ``center``."""
        return Rectangle(center.x - self.width // 2, center.y - self.height // 2, self.width, self.height)


@dataclass(frozen=True)
class Rectangle:
    """An axis-aligned rectangle with integer position and size."""

    x: int = 0
    y: int = 0
    width: int = 0
    height: int = 0

    def size(self) -> Size:
        return Size(self.width, self.height)

    def top_left(self) -> Point:
        return Point(self.x, self.y)

    def center(self) -> Point:
        return Point(self.x + self.width // 2, self.y + self.height // 2)

    def translated_by(self, point: Point) -> Rectangle:
        return Rectangle(self.x + point.x, self.y + point.y, self.width, self.height)

    def bounded_to(self, other: Rectangle) -> Rectangle:
        """Return the intersection with ``other``; empty intersections have zero size."""
        left = max(self.x, other.x)
        top = max(self.y, other.y)
        right = min(self.x + self.width, other.x + other.width)
        bottom = min(self.y + self.height, other.y + other.height)
        return Rectangle(left, top, max(right - left, 0), max(bottom - top, 0))

    def enclosed_in(self, other: Rectangle) -> Rectangle:
        """Shrink and move this rectangle so that it lies inside ``other``."""
        width = min(other.width, self.width)
        height = min(other.height, self.height)
        x = min(max(self.x, other.x), other.x + other.width - width)
        y = min(max(self.y, other.y), other.y + other.height - height)
        return Rectangle(x, y, width, height)

    def scaled_by(self, numerator: Size, denominator: Size) -> Rectangle:
        """Scale position and size by numerator / denominator, truncating."""
        return Rectangle(
            _tdiv(self.x * numerator.width, denominator.width),
            _tdiv(self.y * numerator.height, denominator.height),
            _tdiv(self.width * numerator.width, denominator.width),
            _tdiv(self.height * numerator.height, denominator.height),
        )


FULL_SENSOR_RESOLUTION = Rectangle(0, 0, 4056, 3040)


def convert_inference_coordinates(
    coords: Sequence[float],
    scaler_crop: Rectangle,
    sensor_output_size: Size,
    isp_output_size: Size,
    full_sensor_resolution: Rectangle = FULL_SENSOR_RESOLUTION,
) -> Rectangle:
    """Map normalised (x, y, w, h) inference coordinates onto the ISP output image.

    Returns an empty rectangle unless exactly four coordinates are given.
    """
    full_size = full_sensor_resolution.size()
    sensor_crop = scaler_crop.scaled_by(sensor_output_size, full_size)
    if len(coords) != 4:
        return Rectangle()

    x, y, w, h = coords
    max_x = full_sensor_resolution.width - 1
    max_y = full_sensor_resolution.height - 1
    obj = Rectangle(_round(x * max_x), _round(y * max_y), _round(w * max_x), _round(h * max_y))

    obj_sensor = obj.scaled_by(sensor_output_size, full_size)
    obj_bound = obj_sensor.bounded_to(sensor_crop)
    obj_translated = obj_bound.translated_by(-sensor_crop.top_left())
    obj_scaled = obj_translated.scaled_by(isp_output_size, sensor_crop.size())

    logger.debug(
        "%s -> (sensor) %s -> (bound) %s -> (translate) %s -> (scaled) %s",
        obj, obj_sensor, obj_bound, obj_translated, obj_scaled,
    )
    return obj_scaled


def inference_roi_auto(full_sensor_resolution: Rectangle, width: int, height: int) -> Rectangle:
    """Largest centred region of the sensor with the aspect ratio width:height."""
    size = full_sensor_resolution.size().bounded_to_aspect_ratio(Size(width, height))
    roi = size.centered_to(full_sensor_resolution.center()).enclosed_in(full_sensor_resolution)
    return roi.bounded_to(full_sensor_resolution)