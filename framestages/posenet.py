"""Multi-person pose decoding, rescoring and temporal filtering for PoseNet outputs."""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from framestages.geometry import Point, Rectangle, Size
from framestages.posenet_graph import (
    INPUT_TENSOR_HEIGHT,
    INPUT_TENSOR_WIDTH,
    NUM_HEATMAPS,
    NUM_KEYPOINTS,
    NUM_MID_OFFSETS,
    NUM_SHORT_OFFSETS,
    STRIDE,
    PointYX,
    backtrack_decode_pose,
    build_adjacency_list,
    build_keypoint_queue,
    decreasing_arg_sort,
    format_tensor,
    log_odds,
    sigmoid,
    squared_distance,
)

Converter = Callable[[Sequence[float]], Rectangle]


@dataclass
class PoseResult:
    """One decoded pose; keypoints are (y, x) pairs."""

    pose_score: float
    pose_keypoints: list[PointYX]
    pose_keypoint_scores: list[float]


@dataclass
class PoseNetConfig:
    """PoseNet decoder settings; nms_radius is in map units."""

    threshold: float = 0.5
    max_detections: int = 10
    offset_refinement_steps: int = 5
    nms_radius: float = 10 / STRIDE
    temporal_filtering: bool = False
    tolerance: float = 0.05
    factor: float = 0.2
    visible_frames: int = 5
    hidden_frames: int = 2

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> PoseNetConfig:
        defaults = cls()
        config = cls(
            threshold=float(params.get("threshold", defaults.threshold)),
            max_detections=int(params.get("max_detections", defaults.max_detections)),
            offset_refinement_steps=int(
                params.get("offset_refinement_steps", defaults.offset_refinement_steps)
            ),
            nms_radius=float(params.get("nms_radius", 10)) / STRIDE,
        )
        temporal = params.get("temporal_filter")
        if temporal is not None:
            config.temporal_filtering = True
            config.tolerance = float(temporal.get("tolerance", defaults.tolerance))
            config.factor = float(temporal.get("factor", defaults.factor))
            config.visible_frames = int(temporal.get("visible_frames", defaults.visible_frames))
            config.hidden_frames = int(temporal.get("hidden_frames", defaults.hidden_frames))
        return config


def _probability(logit: float) -> float:
    try:
        return sigmoid(logit)
    except OverflowError:
        return 0.0


def _mean_score(scores: Sequence[float], skip: Sequence[bool] | None = None) -> float:
    """Average of keypoint scores, summed from highest to lowest, leaving out skipped ones."""
    total = sum(scores[k] for k in decreasing_arg_sort(scores) if not (skip and skip[k]))
    return total / NUM_KEYPOINTS


def perform_soft_keypoint_nms(
    decreasing_indices: Sequence[int],
    all_keypoint_coords: Sequence[Sequence[PointYX]],
    all_keypoint_scores: Sequence[Sequence[float]],
    squared_nms_radius: float,
) -> list[float]:
    """Rescore instances, ignoring keypoints that overlap those of higher-scoring instances.

    Returns the new instance scores indexed like the inputs.
    """
    instance_scores = [0.0] * len(decreasing_indices)
    for i, current in enumerate(decreasing_indices):
        coords = all_keypoint_coords[current]
        earlier = decreasing_indices[:i]
        occluded = [
            any(
                squared_distance(point, all_keypoint_coords[previous][k]) <= squared_nms_radius
                for previous in earlier
            )
            for k, point in enumerate(coords[:NUM_KEYPOINTS])
        ]
        instance_scores[current] = _mean_score(all_keypoint_scores[current], occluded)
    return instance_scores


def decode_all_poses(
    scores: Sequence[float],
    short_offsets: Sequence[float],
    mid_offsets: Sequence[float],
    threshold: float,
    max_detections: int = 10,
    offset_refinement_steps: int = 5,
    nms_radius: float = 10 / STRIDE,
) -> list[PoseResult]:
    """Decode up to max_detections poses; keypoints come back in input pixel units."""
    queue = build_keypoint_queue(scores, short_offsets, log_odds(threshold))
    graph = build_adjacency_list()
    squared_radius = nms_radius * nms_radius

    poses: list[list[PointYX]] = []
    keypoint_scores: list[list[float]] = []
    instance_scores: list[float] = []

    for root in queue:
        if len(poses) >= max_detections:
            break
        # Reject roots lying close to the same part of an already found pose.
        if any(squared_distance(root.point, pose[root.id]) <= squared_radius for pose in poses):
            continue
        pose, logits = backtrack_decode_pose(
            scores, short_offsets, mid_offsets, root, graph, offset_refinement_steps
        )
        probabilities = [_probability(v) for v in logits]
        instance_score = _mean_score(probabilities)
        if instance_score >= threshold:
            poses.append(pose)
            keypoint_scores.append(probabilities)
            instance_scores.append(instance_score)

    order = decreasing_arg_sort(instance_scores)
    rescored = perform_soft_keypoint_nms(order, poses, keypoint_scores, squared_radius)
    order = decreasing_arg_sort(rescored)

    results = []
    for index in order:
        if rescored[index] < threshold:
            break
        results.append(
            PoseResult(
                pose_score=rescored[index],
                pose_keypoints=[(y * STRIDE, x * STRIDE) for y, x in poses[index]],
                pose_keypoint_scores=list(keypoint_scores[index]),
            )
        )
    return results


def translate_coordinates(results: Sequence[PoseResult], convert: Converter) -> list[PoseResult]:
    """Map keypoints from input tensor pixels to output image pixels using convert."""
    translated = []
    for result in results:
        keypoints = []
        for y, x in result.pose_keypoints:
            rect = convert([x / (INPUT_TENSOR_WIDTH - 1), y / (INPUT_TENSOR_HEIGHT - 1), 0.0, 0.0])
            keypoints.append((float(rect.y), float(rect.x)))
        translated.append(PoseResult(result.pose_score, keypoints, list(result.pose_keypoint_scores)))
    return translated


@dataclass
class _Tracked:
    result: PoseResult
    visible: int
    hidden: int
    matched: bool = field(default=True)


class PoseTracker:
    """Smooths poses over frames and hides poses until seen for several frames."""

    def __init__(self, tolerance: float, factor: float, visible_frames: int, hidden_frames: int) -> None:
        self.tolerance = tolerance
        self.factor = factor
        self.visible_frames = visible_frames
        self.hidden_frames = hidden_frames
        self._tracked: list[_Tracked] = []

    def _matches(self, tracked: PoseResult, result: PoseResult, size: Size) -> bool:
        tol_x = self.tolerance * size.width
        tol_y = self.tolerance * size.height
        return all(
            abs(ty - ry) <= tol_y and abs(tx - rx) <= tol_x
            for (ty, tx), (ry, rx) in zip(tracked.pose_keypoints, result.pose_keypoints)
        )

    def _blend(self, tracked: PoseResult, result: PoseResult) -> None:
        f = self.factor
        tracked.pose_score = result.pose_score
        tracked.pose_keypoint_scores = [
            f * new + (1 - f) * old
            for new, old in zip(result.pose_keypoint_scores, tracked.pose_keypoint_scores)
        ]
        tracked.pose_keypoints = [
            (f * ry + (1 - f) * ty, f * rx + (1 - f) * tx)
            for (ry, rx), (ty, tx) in zip(result.pose_keypoints, tracked.pose_keypoints)
        ]

    def update(self, results: Sequence[PoseResult], isp_output_size: Size) -> list[PoseResult]:
        """Fold one frame's poses into the long term list and return the visible ones."""
        for tracked in self._tracked:
            tracked.matched = False

        for result in results:
            for tracked in self._tracked:
                if self._matches(tracked.result, result, isp_output_size):
                    tracked.matched = True
                    self._blend(tracked.result, result)
                    tracked.visible = self.visible_frames
                    tracked.hidden = max(0, tracked.hidden - 1)
                    break
            else:
                copy = PoseResult(
                    result.pose_score, list(result.pose_keypoints), list(result.pose_keypoint_scores)
                )
                self._tracked.append(_Tracked(copy, self.visible_frames, self.hidden_frames))

        for tracked in self._tracked:
            if not tracked.matched:
                # Still-hidden poses must be matched again for hidden_frames in a row.
                if tracked.hidden:
                    tracked.visible = 0
                else:
                    tracked.visible -= 1

        self._tracked = [t for t in self._tracked if t.matched or t.visible]
        return self.visible()

    def visible(self) -> list[PoseResult]:
        """Tracked poses that are no longer hidden."""
        return [t.result for t in self._tracked if not t.hidden]

    def clear(self) -> None:
        self._tracked.clear()


class PoseNetDecoder:
    """Turns a raw PoseNet output tensor into pose metadata."""

    def __init__(self, config: PoseNetConfig) -> None:
        self.config = config
        self.tracker = (
            PoseTracker(config.tolerance, config.factor, config.visible_frames, config.hidden_frames)
            if config.temporal_filtering
            else None
        )
        self._lock = threading.Lock()

    def process(
        self, output_tensor: Sequence[float], convert: Converter, isp_output_size: Size
    ) -> dict[str, Any]:
        """Decode one frame; returns metadata entries, empty when there are no poses."""
        data = np.asarray(output_tensor, dtype=np.float32).ravel()
        needed = NUM_HEATMAPS + NUM_SHORT_OFFSETS + NUM_MID_OFFSETS
        if data.size < needed:
            raise ValueError(f"unexpected output tensor size: {data.size}")

        mid_start = NUM_HEATMAPS + NUM_SHORT_OFFSETS
        scores = format_tensor(data[:NUM_HEATMAPS], NUM_KEYPOINTS, 1)
        short_offsets = format_tensor(data[NUM_HEATMAPS:mid_start], 2 * NUM_KEYPOINTS, STRIDE)
        mid_offsets = format_tensor(data[mid_start:needed], 64, STRIDE)

        config = self.config
        results = decode_all_poses(
            scores,
            short_offsets,
            mid_offsets,
            config.threshold,
            config.max_detections,
            config.offset_refinement_steps,
            config.nms_radius,
        )
        results = translate_coordinates(results, convert)

        if self.tracker is not None:
            with self._lock:
                results = self.tracker.update(results, isp_output_size)

        if not results:
            return {}
        locations = [[Point(int(x), int(y)) for y, x in r.pose_keypoints] for r in results]
        confidences = [list(r.pose_keypoint_scores) for r in results]
        return {
            "pose_estimation.locations": locations,
            "pose_estimation.confidences": confidences,
        }