"""Pose graph, tensor sampling and single-pose decoding for PoseNet outputs."""

from __future__ import annotations

import heapq
import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import IntEnum
from itertools import count

import numpy as np

INPUT_TENSOR_WIDTH = 481
INPUT_TENSOR_HEIGHT = 353
MAP_WIDTH = 31
MAP_HEIGHT = 23
NUM_KEYPOINTS = 17
NUM_EDGES = 16
STRIDE = 16
NUM_HEATMAPS = NUM_KEYPOINTS * MAP_WIDTH * MAP_HEIGHT
NUM_SHORT_OFFSETS = 2 * NUM_KEYPOINTS * MAP_WIDTH * MAP_HEIGHT
NUM_MID_OFFSETS = 64 * MAP_WIDTH * MAP_HEIGHT

PointYX = tuple[float, float]


class KeypointType(IntEnum):
    """Body keypoints in network output order."""

    NOSE = 0
    LEFT_EYE = 1
    RIGHT_EYE = 2
    LEFT_EAR = 3
    RIGHT_EAR = 4
    LEFT_SHOULDER = 5
    RIGHT_SHOULDER = 6
    LEFT_ELBOW = 7
    RIGHT_ELBOW = 8
    LEFT_WRIST = 9
    RIGHT_WRIST = 10
    LEFT_HIP = 11
    RIGHT_HIP = 12
    LEFT_KNEE = 13
    RIGHT_KNEE = 14
    LEFT_ANKLE = 15
    RIGHT_ANKLE = 16


_K = KeypointType
_FORWARD_EDGES = (
    (_K.NOSE, _K.LEFT_EYE),
    (_K.LEFT_EYE, _K.LEFT_EAR),
    (_K.NOSE, _K.RIGHT_EYE),
    (_K.RIGHT_EYE, _K.RIGHT_EAR),
    (_K.NOSE, _K.LEFT_SHOULDER),
    (_K.LEFT_SHOULDER, _K.LEFT_ELBOW),
    (_K.LEFT_ELBOW, _K.LEFT_WRIST),
    (_K.LEFT_SHOULDER, _K.LEFT_HIP),
    (_K.LEFT_HIP, _K.LEFT_KNEE),
    (_K.LEFT_KNEE, _K.LEFT_ANKLE),
    (_K.NOSE, _K.RIGHT_SHOULDER),
    (_K.RIGHT_SHOULDER, _K.RIGHT_ELBOW),
    (_K.RIGHT_ELBOW, _K.RIGHT_WRIST),
    (_K.RIGHT_SHOULDER, _K.RIGHT_HIP),
    (_K.RIGHT_HIP, _K.RIGHT_KNEE),
    (_K.RIGHT_KNEE, _K.RIGHT_ANKLE),
)
EDGE_LIST: tuple[tuple[KeypointType, KeypointType], ...] = _FORWARD_EDGES + tuple(
    (child, parent) for parent, child in _FORWARD_EDGES
)


@dataclass(frozen=True)
class KeypointWithScore:
    """A keypoint position in map coordinates (y, x), its type and score."""

    point: PointYX
    id: int
    score: float


@dataclass
class AdjacencyList:
    """Children and edge ids of each node of the directed pose graph."""

    child_ids: list[list[int]] = field(default_factory=list)
    edge_ids: list[list[int]] = field(default_factory=list)


def sigmoid(x: float) -> float:
    return 1.0 / (1.0 + math.exp(-x))


def log_odds(x: float) -> float:
    return -math.log(1.0 / (x + 1e-6) - 1.0)


def squared_distance(a: PointYX, b: PointYX) -> float:
    """Squared distance between two (y, x) points."""
    dy = b[0] - a[0]
    dx = b[1] - a[1]
    return dy * dy + dx * dx


def format_tensor(data: Sequence[float], size: int, div: float) -> np.ndarray:
    """Reorder channel-major [size, width, height] data to [height, width, size], dividing by div."""
    needed = size * MAP_WIDTH * MAP_HEIGHT
    values = np.asarray(data, dtype=np.float32).ravel()
    if values.size < needed:
        raise ValueError(f"tensor holds {values.size} values, expected at least {needed}")
    block = values[:needed].reshape(size, MAP_WIDTH, MAP_HEIGHT)
    return (block.transpose(2, 1, 0).ravel() / np.float32(div)).astype(np.float32)


def build_adjacency_list() -> AdjacencyList:
    """Adjacency list of the pose graph built from EDGE_LIST."""
    graph = AdjacencyList(
        child_ids=[[] for _ in range(NUM_KEYPOINTS)],
        edge_ids=[[] for _ in range(NUM_KEYPOINTS)],
    )
    for edge_id, (parent, child) in enumerate(EDGE_LIST):
        graph.child_ids[parent].append(int(child))
        graph.edge_ids[parent].append(edge_id)
    return graph


def decreasing_arg_sort(scores: Sequence[float]) -> list[int]:
    """Indices that order the scores from highest to lowest."""
    values = list(scores)
    return sorted(range(len(values)), key=lambda i: -values[i])


def _linear_interpolation(x: float, n: int) -> tuple[int, int, float]:
    x_proj = min(max(x, 0.0), n - 1.0)
    x_floor = math.floor(x_proj)
    x_ceil = math.ceil(x_proj)
    return x_floor, x_ceil, x - x_floor


def sample_tensor(
    tensor: Sequence[float], point: PointYX, channels: Sequence[int], num_channels: int
) -> list[float]:
    """Bilinearly sample a [height, width, num_channels] tensor at (y, x) for each channel."""
    y_floor, y_ceil, y_lerp = _linear_interpolation(point[0], MAP_HEIGHT)
    x_floor, x_ceil, x_lerp = _linear_interpolation(point[1], MAP_WIDTH)
    top_left = (y_floor * MAP_WIDTH + x_floor) * num_channels
    top_right = (y_floor * MAP_WIDTH + x_ceil) * num_channels
    bottom_left = (y_ceil * MAP_WIDTH + x_floor) * num_channels
    bottom_right = (y_ceil * MAP_WIDTH + x_ceil) * num_channels
    result = []
    for c in channels:
        top = (1 - x_lerp) * float(tensor[top_left + c]) + x_lerp * float(tensor[top_right + c])
        bottom = (1 - x_lerp) * float(tensor[bottom_left + c]) + x_lerp * float(tensor[bottom_right + c])
        result.append((1 - y_lerp) * top + y_lerp * bottom)
    return result


def _sample_single(tensor: Sequence[float], point: PointYX, num_channels: int, channel: int) -> float:
    return sample_tensor(tensor, point, (channel,), num_channels)[0]


def build_keypoint_queue(
    scores: Sequence[float], short_offsets: Sequence[float], score_threshold: float
) -> list[KeypointWithScore]:
    """Local-maximum keypoint candidates above the threshold, highest score first."""
    s = np.asarray(scores, dtype=np.float64).ravel()[:NUM_HEATMAPS]
    if s.size < NUM_HEATMAPS:
        raise ValueError("score tensor is too small")
    s = s.reshape(MAP_HEIGHT, MAP_WIDTH, NUM_KEYPOINTS)
    offsets = np.asarray(short_offsets, dtype=np.float64).ravel()[:NUM_SHORT_OFFSETS]
    if offsets.size < NUM_SHORT_OFFSETS:
        raise ValueError("short offset tensor is too small")
    offsets = offsets.reshape(MAP_HEIGHT, MAP_WIDTH, 2 * NUM_KEYPOINTS)

    padded = np.pad(s, ((1, 1), (1, 1), (0, 0)), constant_values=-np.inf)
    neighbourhood = np.full_like(s, -np.inf)
    for dy in range(3):
        for dx in range(3):
            neighbourhood = np.maximum(neighbourhood, padded[dy:dy + MAP_HEIGHT, dx:dx + MAP_WIDTH])
    candidates = (s >= score_threshold) & ~(neighbourhood > s)

    queue = []
    for y, x, j in np.argwhere(candidates):
        dy = offsets[y, x, j]
        dx = offsets[y, x, j + NUM_KEYPOINTS]
        y_refined = min(max(y + dy, 0.0), MAP_HEIGHT - 1.0)
        x_refined = min(max(x + dx, 0.0), MAP_WIDTH - 1.0)
        queue.append(KeypointWithScore((float(y_refined), float(x_refined)), int(j), float(s[y, x, j])))
    queue.sort(key=lambda kp: -kp.score)
    return queue


def find_displaced_position(
    short_offsets: Sequence[float],
    mid_offsets: Sequence[float],
    source: PointYX,
    edge_id: int,
    target_id: int,
    offset_refinement_steps: int,
) -> PointYX:
    """Follow the mid-range offsets along an edge, then refine with short-range offsets."""
    offsets = sample_tensor(mid_offsets, source, (edge_id, NUM_EDGES + edge_id), 2 * 2 * NUM_EDGES)
    y = min(max(source[0] + offsets[0], 0.0), MAP_HEIGHT - 1.0)
    x = min(max(source[1] + offsets[1], 0.0), MAP_WIDTH - 1.0)
    channels = (target_id, NUM_KEYPOINTS + target_id)
    for _ in range(offset_refinement_steps):
        offsets = sample_tensor(short_offsets, (y, x), channels, 2 * NUM_KEYPOINTS)
        y = min(max(y + offsets[0], 0.0), MAP_HEIGHT - 1.0)
        x = min(max(x + offsets[1], 0.0), MAP_WIDTH - 1.0)
    return (y, x)


def backtrack_decode_pose(
    scores: Sequence[float],
    short_offsets: Sequence[float],
    mid_offsets: Sequence[float],
    root: KeypointWithScore,
    adjacency_list: AdjacencyList,
    offset_refinement_steps: int,
) -> tuple[list[PointYX], list[float]]:
    """Decode one pose outward from a root keypoint.

    Returns keypoint positions (y, x) in map units and their log-odds scores;
    keypoints never reached stay at (-1, -1) with a score of -1e5.
    """
    pose: list[PointYX] = [(-1.0, -1.0)] * NUM_KEYPOINTS
    keypoint_scores = [-1e5] * NUM_KEYPOINTS

    root_score = _sample_single(scores, root.point, root.id, NUM_KEYPOINTS)
    tie = count()
    heap = [(-root_score, next(tie), KeypointWithScore(root.point, root.id, root_score))]
    decoded = [False] * NUM_KEYPOINTS

    while heap:
        _, _, current = heapq.heappop(heap)
        if decoded[current.id]:
            continue
        pose[current.id] = current.point
        keypoint_scores[current.id] = current.score
        decoded[current.id] = True

        children = zip(adjacency_list.child_ids[current.id], adjacency_list.edge_ids[current.id])
        for child_id, edge_id in children:
            if decoded[child_id]:
                continue
            # Mid offsets hold [fwd y][fwd x][bwd y][bwd x] blocks of NUM_EDGES each.
            if edge_id > NUM_EDGES:
                edge_id += NUM_EDGES
            child_point = find_displaced_position(
                short_offsets, mid_offsets, current.point, edge_id, child_id, offset_refinement_steps
            )
            child_score = _sample_single(scores, child_point, NUM_KEYPOINTS, child_id)
            heapq.heappush(heap, (-child_score, next(tie), KeypointWithScore(child_point, child_id, child_score)))

    return pose, keypoint_scores