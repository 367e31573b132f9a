from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .errors import ConfigurationError
from .postprocess import DEFAULT_ANCHORS, ClassifierConfig, GridAnchorConfig, SsdDecodeConfig
from .preprocess import Flip, tensor_dtype


class ModelKind(Enum):
    SSD = "ssd"
    YOLO = "yolo"
    CLASSIFIER = "classifier"


@dataclass(frozen=True)
class DetectorProfile:
    """
    Everything needed to build a pipeline for one model file.

    Relative paths are resolved against the profile file's directory by
    `load_detector_profile`.
    """

    schema_version: int
    model: ModelKind
    model_path: Path
    labels_path: Path
    threshold: float = 0.2
    max_per_class: int = 1
    input_width: int = 300
    input_height: int = 300
    mean: float = 127.5
    std: float = 127.5
    block_size: int = 32
    num_boxes_per_block: int = 5
    anchors: Tuple[float, ...] = DEFAULT_ANCHORS
    angle: float = 0.0
    flip: Flip = Flip.NONE
    input_dtype: Optional[str] = None
    num_results: int = 5

    def __post_init__(self) -> None:
        if self.schema_version != 1:
            raise ConfigurationError("detector profile schema_version must be 1")
        if self.input_width <= 0 or self.input_height <= 0:
            raise ConfigurationError("input_width and input_height must be > 0")
        if self.std == 0:
            raise ConfigurationError("std must be non-zero")
        if self.input_dtype is not None:
            tensor_dtype(self.input_dtype)
        # Build the decoder settings eagerly so bad values fail at load time.
        self.decoder_config()

    def decoder_config(self) -> Any:
        if self.model is ModelKind.SSD:
            return SsdDecodeConfig(threshold=self.threshold, max_per_class=self.max_per_class)
        if self.model is ModelKind.YOLO:
            return GridAnchorConfig(
                threshold=self.threshold,
                max_per_class=self.max_per_class,
                input_width=self.input_width,
                input_height=self.input_height,
                block_size=self.block_size,
                num_boxes_per_block=self.num_boxes_per_block,
                anchors=tuple(self.anchors),
            )
        return ClassifierConfig(threshold=self.threshold, num_results=self.num_results)


def _require_number(payload: Dict[str, Any], key: str, default: Optional[float] = None) -> float:
    if key not in payload:
        if default is None:
            raise ConfigurationError(f"Missing required key: {key}")
        return default
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(f"{key} must be a number")
    return float(value)


def _require_int(payload: Dict[str, Any], key: str, default: Optional[int] = None) -> int:
    if key not in payload:
        if default is None:
            raise ConfigurationError(f"Missing required key: {key}")
        return default
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"{key} must be an integer")
    return int(value)


def _require_str(payload: Dict[str, Any], key: str) -> str:
    if key not in payload:
        raise ConfigurationError(f"Missing required key: {key}")
    value = payload[key]
    if not isinstance(value, str) or not value:
        raise ConfigurationError(f"{key} must be a non-empty string")
    return value


def _enum_value(enum_cls: Any, raw: Any, key: str) -> Any:
    try:
        return enum_cls(str(raw).lower())
    except ValueError as exc:
        allowed = [m.value for m in enum_cls]
        raise ConfigurationError(f"{key} must be one of {allowed} (got {raw!r})") from exc


_ALLOWED_KEYS = {
    "schema_version",
    "model",
    "model_path",
    "labels_path",
    "threshold",
    "max_per_class",
    "input_width",
    "input_height",
    "mean",
    "std",
    "block_size",
    "num_boxes_per_block",
    "anchors",
    "angle",
    "flip",
    "input_dtype",
    "num_results",
}


def parse_detector_profile(payload: Dict[str, Any], base_dir: Optional[Path] = None) -> DetectorProfile:
    if not isinstance(payload, dict):
        raise ConfigurationError("Detector profile must be a JSON object")

    unknown = sorted(set(payload.keys()) - _ALLOWED_KEYS)
    if unknown:
        raise ConfigurationError(f"Unknown detector profile keys: {unknown}")

    def _path(key: str) -> Path:
        p = Path(_require_str(payload, key))
        if not p.is_absolute() and base_dir is not None:
            p = (base_dir / p).resolve()
        return p

    anchors_raw = payload.get("anchors", list(DEFAULT_ANCHORS))
    if not isinstance(anchors_raw, list) or any(
        isinstance(a, bool) or not isinstance(a, (int, float)) for a in anchors_raw
    ):
        raise ConfigurationError("anchors must be a list of numbers")

    input_dtype = payload.get("input_dtype")
    if input_dtype is not None and not isinstance(input_dtype, str):
        raise ConfigurationError("input_dtype must be a string if provided")

    return DetectorProfile(
        schema_version=_require_int(payload, "schema_version"),
        model=_enum_value(ModelKind, _require_str(payload, "model"), "model"),
        model_path=_path("model_path"),
        labels_path=_path("labels_path"),
        threshold=_require_number(payload, "threshold", 0.2),
        max_per_class=_require_int(payload, "max_per_class", 1),
        input_width=_require_int(payload, "input_width", 300),
        input_height=_require_int(payload, "input_height", 300),
        mean=_require_number(payload, "mean", 127.5),
        std=_require_number(payload, "std", 127.5),
        block_size=_require_int(payload, "block_size", 32),
        num_boxes_per_block=_require_int(payload, "num_boxes_per_block", 5),
        anchors=tuple(float(a) for a in anchors_raw),
        angle=_require_number(payload, "angle", 0.0),
        flip=_enum_value(Flip, payload.get("flip", "none"), "flip"),
        input_dtype=input_dtype,
        num_results=_require_int(payload, "num_results", 5),
    )


def load_detector_profile(path: Path) -> DetectorProfile:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Detector profile not found: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Invalid detector profile JSON: {path}") from exc
    return parse_detector_profile(payload, base_dir=path.parent.resolve())
