# framestages

Building blocks for post-processing camera frames and the outputs of
on-sensor neural networks. Every stage works on in-memory data (bytes,
sequences of numbers or NumPy arrays) and plain configuration
dictionaries, so it runs the same on a desktop as inside a capture
pipeline.

## Installation

```
pip install .
```

For the test suite:

```
pip install .[test]
pytest
```

## Modules

| Module | Purpose |
| --- | --- |
| `framestages.geometry` | `Point`, `Size` and `Rectangle` with integer geometry; `convert_inference_coordinates` maps normalised inference coordinates onto the output image, `inference_roi_auto` picks the largest centred sensor region of a given aspect ratio |
| `framestages.negate` | `negate(buffer)` inverts every bit of a frame whose length is a multiple of four bytes |
| `framestages.motion` | `MotionDetectConfig` and `MotionDetector`, which count changed pixels in a region of a low-resolution luma plane against the previous frame |
| `framestages.classify` | `ClassifyConfig`, `Classifier` (top-N results with hysteresis between frames), `read_labels` and `format_annotation` |
| `framestages.posenet_graph` | The pose graph (`KeypointType`, `build_adjacency_list`), tensor reordering and bilinear sampling, the keypoint candidate queue and single-pose decoding |
| `framestages.posenet` | `decode_all_poses`, `perform_soft_keypoint_nms`, `translate_coordinates`, `PoseTracker` and `PoseNetDecoder`, which turns a raw output tensor into pose metadata |
| `framestages.object_detection` | `parse_detection_tensor` and `process_output_tensor` for SSD-style output tensors, with `ObjectDetectionConfig` |
| `framestages.tracking` | `Detection`, `TemporalFilterConfig` and `DetectionTracker`, which match, smooth and hide or reveal detections over frames |
| `framestages.input_tensor` | `InputTensorSaver` and `normalise_tensor` for writing normalised input tensors, `conv_reg_signed`, and `format_progress` for firmware upload progress text |

Diagnostics go through the standard `logging` module under each module's name.

## Examples

Negating a frame:

```python
from framestages.negate import negate

inverted = negate(bytes([0, 255, 16, 32]))   # b"\xff\x00\xef\xdf"
```

Motion detection on 128x96 greyscale frames:

```python
from framestages.motion import MotionDetectConfig, MotionDetector

config = MotionDetectConfig.from_params({"frame_period": 1, "difference_c": 10})
detector = MotionDetector(config, width=128, height=96, stride=128)
for sequence, frame in enumerate(frames):
    moving = detector.process(frame, sequence)   # None for frames skipped by frame_period
```

Classification with labels read from a file:

```python
from framestages.classify import ClassifyConfig, Classifier, read_labels

classifier = Classifier(ClassifyConfig(), read_labels("labels.txt"))
results = classifier.interpret(prediction)   # one 0..255 value per label
entries = classifier.metadata(results)       # "object_classify.results", "annotate.text"
```

Mapping inference coordinates and decoding object detections:

```python
from functools import partial

from framestages.geometry import Rectangle, Size, convert_inference_coordinates
from framestages.object_detection import ObjectDetectionConfig, process_output_tensor

convert = partial(
    convert_inference_coordinates,
    scaler_crop=Rectangle(0, 0, 4056, 3040),
    sensor_output_size=Size(2028, 1520),
    isp_output_size=Size(1920, 1080),
)
config = ObjectDetectionConfig.from_params({"max_detections": 5, "classes": ["person", "car"]})
detections = process_output_tensor(tensor, 4, tensor_data_num, config, convert)
```

Tracking detections across frames:

```python
from framestages.geometry import Size
from framestages.tracking import DetectionTracker, TemporalFilterConfig

tracker = DetectionTracker(TemporalFilterConfig(), reveal_first=True)
shown = tracker.update(detections, Size(1920, 1080))
```

Decoding poses from a PoseNet output tensor:

```python
from framestages.posenet import PoseNetConfig, PoseNetDecoder

decoder = PoseNetDecoder(PoseNetConfig.from_params({"threshold": 0.4}))
entries = decoder.process(tensor, convert, Size(1920, 1080))
# {"pose_estimation.locations": [...], "pose_estimation.confidences": [...]} or {}
```

Saving normalised input tensors:

```python
from framestages.input_tensor import InputTensorSaver

with InputTensorSaver("tensors.bin", num_tensors=2) as saver:
    saver.write(input_tensor_bytes)
```

## What it does not do

The package does not capture frames, talk to a camera or sensor, load
network firmware or run neural networks: it works only on frames and
output tensors handed to it. It has no command-line program. There is no
HDR accumulation or tone mapping, no histogram statistics, and no support
for buffer allocation, display queues or other helpers for external
inference accelerators.