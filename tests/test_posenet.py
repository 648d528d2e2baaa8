import numpy as np
import pytest

from framestages.geometry import Point, Rectangle, Size
from framestages.posenet import (
    PoseNetConfig,
    PoseNetDecoder,
    PoseResult,
    PoseTracker,
    decode_all_poses,
    perform_soft_keypoint_nms,
    translate_coordinates,
)
from framestages.posenet_graph import (
    INPUT_TENSOR_HEIGHT,
    INPUT_TENSOR_WIDTH,
    MAP_HEIGHT,
    MAP_WIDTH,
    NUM_HEATMAPS,
    NUM_KEYPOINTS,
    NUM_MID_OFFSETS,
    NUM_SHORT_OFFSETS,
    STRIDE,
    sigmoid,
)

PEAK_Y, PEAK_X = 5, 5


def _formatted_scores():
    scores = np.full((MAP_HEIGHT, MAP_WIDTH, NUM_KEYPOINTS), -5.0, dtype=np.float32)
    scores[PEAK_Y, PEAK_X, :] = 5.0
    return scores.ravel()


def _raw_tensor():
    scores = np.full((NUM_KEYPOINTS, MAP_WIDTH, MAP_HEIGHT), -5.0, dtype=np.float32)
    scores[:, PEAK_X, PEAK_Y] = 5.0
    rest = np.zeros(NUM_SHORT_OFFSETS + NUM_MID_OFFSETS, dtype=np.float32)
    return np.concatenate([scores.ravel(), rest])


def _identity_convert(coords):
    return Rectangle(
        round(coords[0] * (INPUT_TENSOR_WIDTH - 1)),
        round(coords[1] * (INPUT_TENSOR_HEIGHT - 1)),
        0,
        0,
    )


def _pose(y, x, score=0.9):
    return PoseResult(score, [(y, x)] * NUM_KEYPOINTS, [score] * NUM_KEYPOINTS)


def test_config_defaults():
    config = PoseNetConfig.from_params({})
    assert config.max_detections == 10
    assert config.nms_radius == pytest.approx(10 / STRIDE)
    assert config.temporal_filtering is False


def test_config_temporal_filter():
    config = PoseNetConfig.from_params({"temporal_filter": {"hidden_frames": 3}, "nms_radius": 32})
    assert config.temporal_filtering is True
    assert config.hidden_frames == 3
    assert config.visible_frames == 5
    assert config.nms_radius == pytest.approx(32 / STRIDE)


def test_decode_no_candidates():
    scores = np.full(NUM_HEATMAPS, -5.0, dtype=np.float32)
    short = np.zeros(NUM_SHORT_OFFSETS, dtype=np.float32)
    mid = np.zeros(NUM_MID_OFFSETS, dtype=np.float32)
    assert decode_all_poses(scores, short, mid, 0.5) == []


def test_decode_single_pose():
    short = np.zeros(NUM_SHORT_OFFSETS, dtype=np.float32)
    mid = np.zeros(NUM_MID_OFFSETS, dtype=np.float32)
    results = decode_all_poses(_formatted_scores(), short, mid, 0.5)
    assert len(results) == 1
    pose = results[0]
    assert all(p == (PEAK_Y * STRIDE, PEAK_X * STRIDE) for p in pose.pose_keypoints)
    assert pose.pose_keypoint_scores[0] == pytest.approx(sigmoid(-5.0), rel=1e-5)
    assert pose.pose_keypoint_scores[1:] == pytest.approx([sigmoid(5.0)] * 16, rel=1e-5)
    assert pose.pose_score == pytest.approx(sum(pose.pose_keypoint_scores) / NUM_KEYPOINTS)


def test_decode_respects_max_detections():
    short = np.zeros(NUM_SHORT_OFFSETS, dtype=np.float32)
    mid = np.zeros(NUM_MID_OFFSETS, dtype=np.float32)
    assert decode_all_poses(_formatted_scores(), short, mid, 0.5, max_detections=0) == []


def test_soft_nms_suppresses_overlapping_pose():
    coords = [[(1.0, 1.0)] * NUM_KEYPOINTS, [(1.0, 1.0)] * NUM_KEYPOINTS]
    scores = [[1.0] * NUM_KEYPOINTS, [1.0] * NUM_KEYPOINTS]
    rescored = perform_soft_keypoint_nms([0, 1], coords, scores, 0.25)
    assert rescored == pytest.approx([1.0, 0.0])


def test_soft_nms_keeps_distant_poses():
    coords = [[(1.0, 1.0)] * NUM_KEYPOINTS, [(10.0, 10.0)] * NUM_KEYPOINTS]
    scores = [[0.8] * NUM_KEYPOINTS, [0.6] * NUM_KEYPOINTS]
    rescored = perform_soft_keypoint_nms([0, 1], coords, scores, 0.25)
    assert rescored == pytest.approx([0.8, 0.6])


def test_translate_coordinates_passes_normalised_coords():
    seen = []

    def convert(coords):
        seen.append(list(coords))
        return Rectangle(7, 9, 0, 0)

    out = translate_coordinates([_pose(176.0, 240.0)], convert)
    assert seen[0] == pytest.approx([240.0 / (INPUT_TENSOR_WIDTH - 1), 176.0 / (INPUT_TENSOR_HEIGHT - 1), 0, 0])
    assert out[0].pose_keypoints[0] == (9.0, 7.0)
    assert len(seen) == NUM_KEYPOINTS


def test_tracker_hides_new_pose_until_seen_again():
    tracker = PoseTracker(0.05, 0.2, 5, 2)
    size = Size(640, 480)
    assert tracker.update([_pose(100, 100)], size) == []
    assert tracker.update([_pose(101, 101)], size) == []
    visible = tracker.update([_pose(100, 100)], size)
    assert len(visible) == 1


def test_tracker_drops_hidden_pose_when_missing():
    tracker = PoseTracker(0.05, 0.2, 5, 2)
    size = Size(640, 480)
    tracker.update([_pose(100, 100)], size)
    tracker.update([], size)
    assert tracker.update([_pose(100, 100)], size) == []
    assert tracker.update([_pose(100, 100)], size) == []


def test_tracker_visible_frames_countdown():
    tracker = PoseTracker(0.05, 0.5, 2, 0)
    size = Size(640, 480)
    assert len(tracker.update([_pose(100, 100)], size)) == 1
    assert len(tracker.update([], size)) == 1
    assert tracker.update([], size) == []


def test_tracker_blends_positions():
    tracker = PoseTracker(0.1, 0.5, 5, 0)
    size = Size(640, 480)
    tracker.update([_pose(100.0, 100.0)], size)
    visible = tracker.update([_pose(110.0, 120.0)], size)
    assert visible[0].pose_keypoints[0] == pytest.approx((105.0, 110.0))
    tracker.clear()
    assert tracker.visible() == []


def test_decoder_produces_metadata():
    decoder = PoseNetDecoder(PoseNetConfig())
    meta = decoder.process(_raw_tensor(), _identity_convert, Size(640, 480))
    locations = meta["pose_estimation.locations"]
    confidences = meta["pose_estimation.confidences"]
    assert len(locations) == len(confidences) == 1
    assert locations[0] == [Point(PEAK_X * STRIDE, PEAK_Y * STRIDE)] * NUM_KEYPOINTS
    assert len(confidences[0]) == NUM_KEYPOINTS


def test_decoder_with_temporal_filter():
    decoder = PoseNetDecoder(PoseNetConfig.from_params({"temporal_filter": {}}))
    size = Size(640, 480)
    assert decoder.process(_raw_tensor(), _identity_convert, size) == {}
    assert decoder.process(_raw_tensor(), _identity_convert, size) == {}
    meta = decoder.process(_raw_tensor(), _identity_convert, size)
    assert len(meta["pose_estimation.locations"]) == 1


def test_decoder_rejects_short_tensor():
    decoder = PoseNetDecoder(PoseNetConfig())
    with pytest.raises(ValueError):
        decoder.process(np.zeros(100), _identity_convert, Size(640, 480))