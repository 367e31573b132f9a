import logging
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Protocol, Tuple

import numpy as np

from .activations import sigmoid, softmax_rows
from .capping import cap_per_class, sort_by_confidence
from .errors import ConfigurationError, DecodeError
from .labels import LabelTable
from .types import Classification, Detection, NormalizedRect

LOGGER = logging.getLogger(__name__)

# Tiny YOLOv2 (VOC) priors, in grid-cell units: (w0, h0, w1, h1, ...).
DEFAULT_ANCHORS: Tuple[float, ...] = (
    0.57273,
    0.677385,
    1.87446,
    2.06253,
    3.33843,
    5.47434,
    7.88282,
    3.52778,
    9.77052,
    9.16828,
)

SSD_OUTPUT_NAMES: Tuple[str, str, str, str] = (
    "detection_boxes",
    "detection_classes",
    "detection_scores",
    "num_detections",
)


def _check_threshold(value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise ConfigurationError(f"threshold must be within [0, 1] (got {value}).")


def _check_max_per_class(value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigurationError(f"max_per_class must be an integer >= 1 (got {value!r}).")


def _check_num_results(value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigurationError(f"num_results must be an integer >= 1 (got {value!r}).")


def _check_labels(labels: LabelTable) -> None:
    if len(labels) == 0:
        raise ConfigurationError("Label table is empty.")


@dataclass(frozen=True)
class SsdDecodeConfig:
    """
    Settings for SSD-style heads (TensorFlow object detection API exports).
    """

    threshold: float = 0.2
    max_per_class: int = 1

    def __post_init__(self) -> None:
        _check_threshold(self.threshold)
        _check_max_per_class(self.max_per_class)


@dataclass(frozen=True)
class GridAnchorConfig:
    """
    Settings for YOLOv2-style grid heads.

    The grid is square: `input_width // block_size` cells per side.
    """

    threshold: float = 0.2
    max_per_class: int = 1
    input_width: int = 416
    input_height: int = 416
    block_size: int = 32
    num_boxes_per_block: int = 5
    anchors: Tuple[float, ...] = DEFAULT_ANCHORS

    def __post_init__(self) -> None:
        _check_threshold(self.threshold)
        _check_max_per_class(self.max_per_class)
        for name in ("input_width", "input_height", "block_size", "num_boxes_per_block"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ConfigurationError(f"{name} must be a positive integer (got {value!r}).")
        if self.grid_size < 1:
            raise ConfigurationError(
                f"input_width {self.input_width} is smaller than block_size {self.block_size}."
            )
        # Lists from JSON are normalized so the config stays hashable.
        object.__setattr__(self, "anchors", tuple(float(a) for a in self.anchors))
        if len(self.anchors) != 2 * self.num_boxes_per_block:
            raise ConfigurationError(
                f"Expected {2 * self.num_boxes_per_block} anchor values for "
                f"{self.num_boxes_per_block} boxes per block, got {len(self.anchors)}."
            )

    @property
    def grid_size(self) -> int:
        return self.input_width // self.block_size


@dataclass(frozen=True)
class ClassifierConfig:
    threshold: float = 0.1
    num_results: int = 5

    def __post_init__(self) -> None:
        _check_threshold(self.threshold)
        _check_num_results(self.num_results)


@dataclass(frozen=True)
class SsdOutputs:
    """
    The four SSD output tensors, each still carrying the batch=1 axis.
    """

    boxes: np.ndarray
    classes: np.ndarray
    scores: np.ndarray
    count: np.ndarray

    @classmethod
    def coerce(cls, outputs: Any) -> "SsdOutputs":
        """
        Accept SsdOutputs, a mapping keyed by the detection API names, or a
        4-sequence ordered (boxes, classes, scores, count).
        """

        if isinstance(outputs, SsdOutputs):
            return outputs
        if isinstance(outputs, Mapping):
            missing = [n for n in SSD_OUTPUT_NAMES if n not in outputs]
            if missing:
                raise DecodeError(f"Missing SSD outputs: {missing}")
            return cls(*(np.asarray(outputs[n]) for n in SSD_OUTPUT_NAMES))
        if isinstance(outputs, (list, tuple)) and len(outputs) == 4:
            return cls(*(np.asarray(o) for o in outputs))
        raise DecodeError(f"Cannot interpret SSD outputs of type {type(outputs).__name__}.")


class Decoder(Protocol):
    """
    Anything that turns raw model outputs into detections.
    """

    labels: LabelTable
    output_names: Tuple[str, ...]

    def decode(
        self,
        outputs: Any,
        *,
        threshold: Optional[float] = None,
        max_per_class: Optional[int] = None,
    ) -> List[Detection]:
        ...


def _drop_batch(arr: np.ndarray, ndim: int, name: str) -> np.ndarray:
    if arr.ndim == ndim + 1:
        if arr.shape[0] != 1:
            raise DecodeError(f"Batch > 1 is not supported ({name} shape {arr.shape}).")
        arr = arr[0]
    if arr.ndim != ndim:
        raise DecodeError(f"Unexpected {name} shape {arr.shape}.")
    return arr


def _class_index(value: float) -> int:
    if not np.isfinite(value):
        raise DecodeError(f"Non-finite class index {value}.")
    return int(value)


class SsdDecoder:
    """
    Decoder for SSD-style heads.

    Entries are visited in tensor order and capped per class in that same
    order; there is no confidence sort.
    """

    output_names: Tuple[str, ...] = SSD_OUTPUT_NAMES

    def __init__(self, labels: LabelTable, cfg: SsdDecodeConfig = SsdDecodeConfig()):
        _check_labels(labels)
        self.labels = labels
        self.cfg = cfg

    def decode(
        self,
        outputs: Any,
        *,
        threshold: Optional[float] = None,
        max_per_class: Optional[int] = None,
    ) -> List[Detection]:
        threshold = self.cfg.threshold if threshold is None else threshold
        max_per_class = self.cfg.max_per_class if max_per_class is None else max_per_class
        _check_threshold(threshold)
        _check_max_per_class(max_per_class)

        raw = SsdOutputs.coerce(outputs)
        boxes = _drop_batch(np.asarray(raw.boxes), 2, "boxes")
        classes = _drop_batch(np.asarray(raw.classes), 1, "classes")
        scores = _drop_batch(np.asarray(raw.scores), 1, "scores")
        count_arr = np.asarray(raw.count).reshape(-1)
        if count_arr.size == 0:
            raise DecodeError("num_detections tensor is empty.")

        count = int(count_arr[0])
        capacity = min(boxes.shape[0], classes.shape[0], scores.shape[0])
        if count < 0 or count > capacity:
            raise DecodeError(f"num_detections={count} outside [0, {capacity}].")
        if boxes.shape[1] != 4:
            raise DecodeError(f"Expected 4 box coordinates, got boxes shape {boxes.shape}.")

        candidates: List[Detection] = []
        for i in range(count):
            # Compared at tensor precision so a float32 score equal to the
            # threshold is kept.
            if np.float32(scores[i]) < np.float32(threshold):
                continue
            score = float(scores[i])

            detected_class = self.labels.resolve(_class_index(float(classes[i])))

            ymin = max(0.0, float(boxes[i, 0]))
            xmin = max(0.0, float(boxes[i, 1]))
            ymax = float(boxes[i, 2])
            xmax = float(boxes[i, 3])

            rect = NormalizedRect(
                x=xmin,
                y=ymin,
                w=min(1.0 - xmin, xmax - xmin),
                h=min(1.0 - ymin, ymax - ymin),
            )
            candidates.append(Detection(detected_class=detected_class, confidence=score, box=rect))

        results = cap_per_class(candidates, max_per_class)
        LOGGER.debug("SSD decode: %d entries, %d above threshold, %d kept", count, len(candidates), len(results))
        return results


class GridAnchorDecoder:
    """
    Decoder for YOLOv2-style grid heads, laid out as
    (1, S, S, B * (C + 5)) with per-slot [tx, ty, tw, th, obj, class logits...].

    Candidates are sorted by confidence (stable) before the per-class cap, so
    each class keeps its highest-scoring boxes.
    """

    output_names: Tuple[str, ...] = ("output",)

    def __init__(self, labels: LabelTable, cfg: GridAnchorConfig = GridAnchorConfig()):
        _check_labels(labels)
        self.labels = labels
        self.cfg = cfg

    @property
    def num_classes(self) -> int:
        return len(self.labels)

    def decode(
        self,
        outputs: Any,
        *,
        threshold: Optional[float] = None,
        max_per_class: Optional[int] = None,
    ) -> List[Detection]:
        threshold = self.cfg.threshold if threshold is None else threshold
        max_per_class = self.cfg.max_per_class if max_per_class is None else max_per_class
        _check_threshold(threshold)
        _check_max_per_class(max_per_class)

        grid = self._grid_from(outputs)
        candidates = self._candidates(grid, threshold)
        results = cap_per_class(sort_by_confidence(candidates), max_per_class)
        LOGGER.debug("Grid decode: %d candidates above threshold, %d kept", len(candidates), len(results))
        return results

    # ------------------------------------------------------------------ #
    # Helper internal
    # ------------------------------------------------------------------ #
    def _grid_from(self, outputs: Any) -> np.ndarray:
        if isinstance(outputs, Mapping):
            if len(outputs) != 1 and "output" not in outputs:
                raise DecodeError(f"Ambiguous grid outputs: {sorted(outputs)}")
            outputs = outputs["output"] if "output" in outputs else next(iter(outputs.values()))
        elif isinstance(outputs, (list, tuple)):
            if len(outputs) != 1:
                raise DecodeError(f"Expected a single grid output, got {len(outputs)}.")
            outputs = outputs[0]

        grid = _drop_batch(np.asarray(outputs, dtype=np.float64), 3, "grid")
        s = self.cfg.grid_size
        depth = self.cfg.num_boxes_per_block * (self.num_classes + 5)
        if grid.shape != (s, s, depth):
            raise DecodeError(f"Expected grid shape {(s, s, depth)}, got {grid.shape}.")
        return grid

    def _candidates(self, grid: np.ndarray, threshold: float) -> List[Detection]:
        cfg = self.cfg
        s = cfg.grid_size
        nb = cfg.num_boxes_per_block
        nc = self.num_classes

        # (y, x, b, C + 5); flattening in C order walks y, then x, then b.
        slots = grid.reshape(s, s, nb, nc + 5)
        objectness = sigmoid(slots[..., 4])
        probs, valid = softmax_rows(slots[..., 5:])

        degenerate = int(np.count_nonzero(~valid))
        if degenerate:
            LOGGER.debug("Skipping %d anchor slots with degenerate class logits", degenerate)

        class_idx = np.argmax(np.where(valid[..., None], probs, 0.0), axis=-1)
        max_prob = np.take_along_axis(probs, class_idx[..., None], axis=-1)[..., 0]
        confidence = np.where(valid, max_prob * objectness, 0.0)

        ys, xs, bs = np.nonzero(confidence > threshold)
        if ys.size == 0:
            return []

        block = float(cfg.block_size)
        anchors = np.asarray(cfg.anchors, dtype=np.float64)
        picked = slots[ys, xs, bs]
        x_pos = (xs + sigmoid(picked[:, 0])) * block
        y_pos = (ys + sigmoid(picked[:, 1])) * block
        with np.errstate(over="ignore"):
            w = np.exp(picked[:, 2]) * anchors[2 * bs] * block
            h = np.exp(picked[:, 3]) * anchors[2 * bs + 1] * block

        xmin = np.maximum(0.0, (x_pos - w / 2) / cfg.input_width)
        ymin = np.maximum(0.0, (y_pos - h / 2) / cfg.input_height)
        wn = np.minimum(1.0 - xmin, w / cfg.input_width)
        hn = np.minimum(1.0 - ymin, h / cfg.input_height)

        conf = confidence[ys, xs, bs]
        cls = class_idx[ys, xs, bs]
        return [
            Detection(
                detected_class=self.labels[int(c)],
                confidence=float(p),
                box=NormalizedRect(x=float(x0), y=float(y0), w=float(bw), h=float(bh)),
            )
            for c, p, x0, y0, bw, bh in zip(cls, conf, xmin, ymin, wn, hn)
        ]


class ClassifierDecoder:
    """
    Image classifier head: one probability row (1, C) -> top-N labels whose
    probability reaches the threshold, highest first.
    """

    output_names: Tuple[str, ...] = ("output",)

    def __init__(self, labels: LabelTable, cfg: ClassifierConfig = ClassifierConfig()):
        _check_labels(labels)
        self.labels = labels
        self.cfg = cfg

    def decode(
        self,
        outputs: Any,
        *,
        threshold: Optional[float] = None,
        num_results: Optional[int] = None,
    ) -> List[Classification]:
        threshold = self.cfg.threshold if threshold is None else threshold
        num_results = self.cfg.num_results if num_results is None else num_results
        _check_threshold(threshold)
        _check_num_results(num_results)

        if isinstance(outputs, Mapping):
            outputs = outputs["output"] if "output" in outputs else next(iter(outputs.values()))
        elif isinstance(outputs, (list, tuple)) and len(outputs) == 1:
            outputs = outputs[0]

        probs = _drop_batch(np.asarray(outputs), 1, "probabilities")
        if probs.shape[0] != len(self.labels):
            raise DecodeError(f"Expected {len(self.labels)} class scores, got {probs.shape[0]}.")

        kept = [
            Classification(label=label, confidence=float(p))
            for label, p in zip(self.labels, probs)
            if p >= threshold
        ]
        kept.sort(key=lambda c: c.confidence, reverse=True)
        return kept[:num_results]

