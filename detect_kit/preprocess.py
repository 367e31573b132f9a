from __future__ import annotations

from enum import Enum
from typing import Any, Tuple

import numpy as np

from .errors import UnsupportedTensorTypeError

SUPPORTED_DTYPES = (np.dtype(np.float32), np.dtype(np.uint8))

# ONNX Runtime reports element types as strings.
_ORT_TYPE_NAMES = {
    "tensor(float)": np.dtype(np.float32),
    "tensor(uint8)": np.dtype(np.uint8),
}


# Counter-clockwise quarter turns -> cv2.rotate codes.
_QUARTER_TURNS = {
    90: "ROTATE_90_COUNTERCLOCKWISE",
    180: "ROTATE_180",
    270: "ROTATE_90_CLOCKWISE",
}


class Flip(Enum):
    NONE = "none"
    VERTICAL = "vertical"
    HORIZONTAL = "horizontal"


def tensor_dtype(value: Any) -> np.dtype:
    """
    Normalize a dtype (NumPy dtype, "float32"/"uint8", or an ORT type
    string) and reject anything but float32/uint8.
    """

    if isinstance(value, str) and value in _ORT_TYPE_NAMES:
        return _ORT_TYPE_NAMES[value]
    try:
        dt = np.dtype(value)
    except TypeError as exc:
        raise UnsupportedTensorTypeError(f"Tensor type {value!r} is not supported.") from exc
    if dt not in SUPPORTED_DTYPES:
        raise UnsupportedTensorTypeError(f"Tensor type {dt} is not supported (float32 or uint8 only).")
    return dt


def prepare_frame(
    image_bgr: np.ndarray,
    size: Tuple[int, int],
    angle: float = 0.0,
    flip: Flip = Flip.NONE,
) -> np.ndarray:
    """
    Flip, rotate and resize an OpenCV BGR frame to `size` (width, height).

    `angle` is in degrees, counter-clockwise. Multiples of 90 turn the frame
    losslessly (width and height swap before the resize); other angles rotate
    about the center at the frame's own size with black fill. Returns an RGB
    uint8 image shaped (height, width, 3).
    """

    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for prepare_frame(). Install with `pip install opencv-python`.") from e

    if image_bgr is None or not hasattr(image_bgr, "shape"):
        raise TypeError("image_bgr must be a NumPy array (BGR).")
    if image_bgr.ndim != 3 or image_bgr.shape[2] != 3:
        raise ValueError(f"Expected image shape (H, W, 3), got {getattr(image_bgr, 'shape', None)}")

    img = image_bgr
    if flip is Flip.VERTICAL:
        img = cv2.flip(img, 0)
    elif flip is Flip.HORIZONTAL:
        img = cv2.flip(img, 1)

    turn = angle % 360
    if turn in _QUARTER_TURNS:
        img = cv2.rotate(img, getattr(cv2, _QUARTER_TURNS[turn]))
    elif turn:
        h, w = img.shape[:2]
        m = cv2.getRotationMatrix2D((w / 2, h / 2), turn, 1.0)
        img = cv2.warpAffine(img, m, (w, h), flags=cv2.INTER_LINEAR, borderValue=(0, 0, 0))

    width, height = size
    h, w = img.shape[:2]
    if (w, h) != (width, height):
        img = cv2.resize(img, (width, height), interpolation=cv2.INTER_LINEAR)

    return np.ascontiguousarray(img[:, :, ::-1])


def to_input_tensor(image_rgb: np.ndarray, dtype: Any = np.float32, mean: float = 127.5, std: float = 127.5) -> np.ndarray:
    """
    NHWC batch of one. float32 inputs are normalized with (pixel - mean) / std;
    uint8 inputs carry the raw pixels.
    """

    dt = tensor_dtype(dtype)
    if dt == np.uint8:
        blob = np.asarray(image_rgb, dtype=np.uint8)
    else:
        if std == 0:
            raise ValueError("std must be non-zero.")
        blob = (np.asarray(image_rgb, dtype=np.float32) - np.float32(mean)) / np.float32(std)
    return blob[None, ...]


def as_float_output(arr: Any, name: str = "output") -> np.ndarray:
    """
    Model outputs are decoded as float32; uint8 outputs are widened.
    """

    a = np.asarray(arr)
    try:
        tensor_dtype(a.dtype)
    except UnsupportedTensorTypeError as exc:
        raise UnsupportedTensorTypeError(f"Output {name!r} has unsupported type {a.dtype}.") from exc
    return a.astype(np.float32, copy=False)
