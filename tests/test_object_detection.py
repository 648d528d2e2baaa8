import pytest

from framestages.geometry import Rectangle
from framestages.object_detection import (
    BoundingBox,
    ObjectDetectionConfig,
    parse_detection_tensor,
    process_output_tensor,
)
from framestages.tracking import TemporalFilterConfig


def make_tensor(boxes, scores, classes, count):
    """boxes are (x0, y0, x1, y1); packed in the tensor's y0, x0, y1, x1 block order."""
    data = [b[1] for b in boxes] + [b[0] for b in boxes] + [b[3] for b in boxes] + [b[2] for b in boxes]
    return data + list(scores) + list(classes) + [count]


def convert(coords):
    return Rectangle(*(int(c * 1000) for c in coords))


BOXES = [(0.25, 0.5, 0.75, 1.0), (0.0, 0.25, 0.5, 0.5)]


def test_parse_tensor_layout():
    out = parse_detection_tensor(make_tensor(BOXES, [0.75, 0.5], [1, 0], 2), 2)
    assert out.num_detections == 2
    assert out.bboxes[0] == BoundingBox(0.25, 0.5, 0.75, 1.0)
    assert out.bboxes[1] == BoundingBox(0.0, 0.25, 0.5, 0.5)
    assert out.scores == [0.75, 0.5]
    assert out.classes == [1.0, 0.0]


def test_parse_clips_detection_count():
    out = parse_detection_tensor(make_tensor(BOXES, [0.75, 0.5], [1, 0], 9), 2)
    assert out.num_detections == 2


def test_parse_short_tensor_raises():
    with pytest.raises(IndexError):
        parse_detection_tensor([0.0] * 12, 2)


def test_process_converts_boxes():
    config = ObjectDetectionConfig(max_detections=10, threshold=0.5, classes=["person", "cat"])
    objects = process_output_tensor(make_tensor(BOXES, [0.75, 0.5], [1, 0], 2), 4, 8, config, convert)
    assert [(o.category, o.name) for o in objects] == [(1, "cat"), (0, "person")]
    assert objects[0].box == Rectangle(250, 500, 500, 500)
    assert objects[0].confidence == 0.75


def test_process_filters_by_threshold():
    config = ObjectDetectionConfig(max_detections=10, threshold=0.6, classes=["person", "cat"])
    objects = process_output_tensor(make_tensor(BOXES, [0.75, 0.5], [1, 0], 2), 4, 8, config, convert)
    assert [o.name for o in objects] == ["cat"]


def test_process_skips_unknown_class():
    config = ObjectDetectionConfig(max_detections=10, threshold=0.0, classes=["person"])
    objects = process_output_tensor(make_tensor(BOXES, [0.75, 0.5], [1, 0], 2), 4, 8, config, convert)
    assert [o.name for o in objects] == ["person"]


def test_process_limits_detections():
    config = ObjectDetectionConfig(max_detections=1, threshold=0.0, classes=["person", "cat"])
    objects = process_output_tensor(make_tensor(BOXES, [0.75, 0.5], [1, 0], 2), 4, 8, config, convert)
    assert len(objects) == 1


def test_process_respects_detection_count():
    config = ObjectDetectionConfig(max_detections=10, threshold=0.0, classes=["person", "cat"])
    objects = process_output_tensor(make_tensor(BOXES, [0.75, 0.5], [1, 0], 0), 4, 8, config, convert)
    assert objects == []


def test_process_wrong_tensor_count():
    config = ObjectDetectionConfig(max_detections=10, classes=["a"])
    with pytest.raises(ValueError):
        process_output_tensor(make_tensor(BOXES, [0.75, 0.5], [0, 0], 2), 3, 8, config, convert)


def test_process_wrong_size():
    config = ObjectDetectionConfig(max_detections=10, classes=["a"])
    with pytest.raises(ValueError):
        process_output_tensor(make_tensor(BOXES, [0.75, 0.5], [0, 0], 2), 4, 12, config, convert)


def test_config_requires_max_detections():
    with pytest.raises(KeyError):
        ObjectDetectionConfig.from_params({"threshold": 0.3})


def test_config_from_params():
    config = ObjectDetectionConfig.from_params(
        {"max_detections": 5, "classes": ["a", "b"], "temporal_filter": {"factor": 0.5}}
    )
    assert config.max_detections == 5
    assert config.threshold == 0.5
    assert config.classes == ["a", "b"]
    assert config.temporal_filter == TemporalFilterConfig(factor=0.5)


def test_config_without_temporal_filter():
    config = ObjectDetectionConfig.from_params({"max_detections": 3})
    assert config.temporal_filter is None
    assert config.classes == []