"""Top-N image classification results with hysteresis between frames."""

from __future__ import annotations

import heapq
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_LABEL_PADDING = 16


@dataclass
class ClassifyConfig:
    """Classifier settings."""

    number_of_results: int = 3
    threshold_high: float = 0.2
    threshold_low: float = 0.1
    display_labels: bool = True
    labels_file: str = "/home/pi/models/labels.txt"
    verbose: bool = False

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> ClassifyConfig:
        defaults = cls()
        return cls(
            number_of_results=int(params.get("number_of_results", defaults.number_of_results)),
            threshold_high=float(params.get("threshold_high", defaults.threshold_high)),
            threshold_low=float(params.get("threshold_low", defaults.threshold_low)),
            display_labels=bool(int(params.get("display_labels", 1))),
            labels_file=str(params.get("labels_file", defaults.labels_file)),
            verbose=bool(int(params.get("verbose", 0))),
        )


def read_labels(path: str | Path) -> list[str]:
    """Read one label per line."""
    try:
        with open(path, encoding="utf-8", newline="") as handle:
            text = handle.read()
    except OSError as exc:
        raise OSError(f"failed to load labels file {path}") from exc
    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return lines


def _short_label(name: str) -> str:
    """The part of a label after ':' and before ','."""
    colon = name.find(":")
    comma = name.find(",")
    start = colon + 1 if colon >= 0 else 0
    if comma >= start:
        return name[start:comma]
    return name[start:]


def format_annotation(results: Sequence[tuple[str, float]]) -> str:
    """Annotation text such as 'Detected: cat 0.75, dog 0.12'."""
    parts = [f"{_short_label(label)} {confidence:.2g}" for label, confidence in results]
    return "Detected: " + ", ".join(parts)


class Classifier:
    """Turns per-class 8-bit confidences into the most likely labels."""

    def __init__(self, config: ClassifyConfig, labels: Sequence[str]) -> None:
        self.config = config
        self.label_count = len(labels)
        padded = list(labels)
        padded.extend([""] * (-len(padded) % _LABEL_PADDING))
        self.labels = padded
        self._top_results: list[tuple[float, int]] = []

    def top_results(self, prediction: Sequence[int]) -> list[tuple[float, int]]:
        """(confidence, index) pairs, best first.

        Entries need the high threshold, or the low one if they were among the
        previous frame's results.
        """
        previous = {index for _, index in self._top_results}
        limit = max(self.config.number_of_results, 0)
        heap: list[tuple[float, int]] = []
        for index, value in enumerate(prediction):
            confidence = value / 255.0
            if confidence < self.config.threshold_low:
                continue
            if confidence >= self.config.threshold_high or index in previous:
                heapq.heappush(heap, (confidence, index))
                if len(heap) > limit:
                    heapq.heappop(heap)
        self._top_results = sorted(heap, reverse=True)
        return list(self._top_results)

    def interpret(self, prediction: Sequence[int]) -> list[tuple[str, float]]:
        """Labelled results for one network output."""
        if len(prediction) != self.label_count:
            raise ValueError(
                f"label count mismatch: {self.label_count} labels for {len(prediction)} outputs"
            )
        results = [(self.labels[index], confidence) for confidence, index in self.top_results(prediction)]
        if self.config.verbose:
            for label, confidence in results:
                logger.info("%s : %f", label, confidence)
        return results

    def metadata(self, results: Sequence[tuple[str, float]]) -> dict[str, Any]:
        """Metadata entries to attach to a frame."""
        entries: dict[str, Any] = {"object_classify.results": list(results)}
        if self.config.display_labels:
            entries["annotate.text"] = format_annotation(results)
        return entries