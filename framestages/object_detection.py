"""Decoding of SSD-style object detection output tensors."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from framestages.geometry import Rectangle
from framestages.tracking import Detection, TemporalFilterConfig

logger = logging.getLogger(__name__)

Converter = Callable[[Sequence[float]], Rectangle]


@dataclass
class BoundingBox:
    """Box corners in normalised inference image coordinates."""

    x0: float
    y0: float
    x1: float
    y1: float


@dataclass
class ObjectDetectionOutput:
    """Detections unpacked from the output tensor."""

    num_detections: int = 0
    bboxes: list[BoundingBox] = field(default_factory=list)
    scores: list[float] = field(default_factory=list)
    classes: list[float] = field(default_factory=list)


@dataclass
class ObjectDetectionConfig:
    """Object detection stage settings."""

    max_detections: int
    threshold: float = 0.5
    classes: list[str] = field(default_factory=list)
    temporal_filter: TemporalFilterConfig | None = None

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> ObjectDetectionConfig:
        temporal = params.get("temporal_filter")
        return cls(
            max_detections=int(params["max_detections"]),
            threshold=float(params.get("threshold", 0.5)),
            classes=[str(c) for c in params.get("classes", [])],
            temporal_filter=None if temporal is None else TemporalFilterConfig.from_params(temporal),
        )


def parse_detection_tensor(data: Sequence[float], total_detections: int) -> ObjectDetectionOutput:
    """Unpack boxes, scores, classes and the detection count from a flat tensor.

    The tensor holds y0, x0, y1, x1 blocks of ``total_detections`` values,
    then the scores, the classes and finally the number of detections.
    """
    values = np.asarray(data, dtype=np.float32).ravel().tolist()
    n = total_detections
    needed = 6 * n + 1
    if len(values) < needed:
        raise IndexError(f"tensor holds {len(values)} values, expected at least {needed}")

    bboxes = [
        BoundingBox(x0=values[i + n], y0=values[i], x1=values[i + 3 * n], y1=values[i + 2 * n])
        for i in range(n)
    ]
    scores = values[4 * n:5 * n]
    classes = values[5 * n:6 * n]

    num_detections = max(int(values[6 * n]), 0)
    if num_detections > n:
        logger.info("Unexpected value for num_detections: %d, setting it to %d", num_detections, n)
        num_detections = n
    return ObjectDetectionOutput(num_detections, bboxes, scores, classes)


def process_output_tensor(
    output_tensor: Sequence[float],
    num_tensors: int,
    tensor_data_num: int,
    config: ObjectDetectionConfig,
    convert: Converter,
) -> list[Detection]:
    """Turn the network output into detections in output image coordinates.

    ``convert`` maps normalised (x, y, w, h) coordinates to a rectangle.
    """
    if num_tensors != 4:
        raise ValueError(f"invalid number of tensors {num_tensors}, expected 4")
    total_detections = tensor_data_num // 4
    expected = 6 * total_detections + 1
    if len(output_tensor) != expected:
        raise ValueError(f"invalid tensor size {len(output_tensor)}, expected {expected}")

    output = parse_detection_tensor(output_tensor, total_detections)
    objects = []
    for i in range(min(output.num_detections, config.max_detections)):
        class_index = int(output.classes[i]) & 0xFF
        score = output.scores[i]
        if score < config.threshold or class_index >= len(config.classes):
            continue
        box = output.bboxes[i]
        rect = convert([box.x0, box.y0, box.x1 - box.x0, box.y1 - box.y0])
        objects.append(Detection(class_index, config.classes[class_index], score, rect))

    logger.debug("Number of objects detected: %d", len(objects))
    for i, obj in enumerate(objects):
        logger.debug("[%d] : %s", i, obj)
    return objects