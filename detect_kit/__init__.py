"""
Post-processing for TensorFlow-style object detectors.

Turns raw output tensors from SSD heads and YOLOv2 grid heads into normalized,
per-class-capped `Detection` lists. Decoding needs only NumPy; OpenCV is used
for frame preparation and the inference runtimes are optional.
"""

from .types import Classification, Detection, NormalizedRect
from .errors import (
    ConfigurationError,
    DecodeError,
    DegenerateSoftmaxError,
    DetectKitError,
    LabelIndexError,
    UnsupportedTensorTypeError,
)
from .activations import sigmoid, softmax, softmax_rows
from .capping import cap_per_class, sort_by_confidence
from .labels import LabelTable, load_labels
from .postprocess import (
    DEFAULT_ANCHORS,
    ClassifierConfig,
    ClassifierDecoder,
    Decoder,
    GridAnchorConfig,
    GridAnchorDecoder,
    SsdDecodeConfig,
    SsdDecoder,
    SsdOutputs,
)
from .preprocess import Flip, prepare_frame, to_input_tensor
from .config import DetectorProfile, ModelKind, load_detector_profile, parse_detector_profile
from .runtime import DetectorPipeline, build_decoder, load_pipeline

__all__ = [
    "Classification",
    "Detection",
    "NormalizedRect",
    "ConfigurationError",
    "DecodeError",
    "DegenerateSoftmaxError",
    "DetectKitError",
    "LabelIndexError",
    "UnsupportedTensorTypeError",
    "sigmoid",
    "softmax",
    "softmax_rows",
    "cap_per_class",
    "sort_by_confidence",
    "LabelTable",
    "load_labels",
    "DEFAULT_ANCHORS",
    "ClassifierConfig",
    "ClassifierDecoder",
    "Decoder",
    "GridAnchorConfig",
    "GridAnchorDecoder",
    "SsdDecodeConfig",
    "SsdDecoder",
    "SsdOutputs",
    "Flip",
    "prepare_frame",
    "to_input_tensor",
    "DetectorProfile",
    "ModelKind",
    "load_detector_profile",
    "parse_detector_profile",
    "DetectorPipeline",
    "build_decoder",
    "load_pipeline",
]
