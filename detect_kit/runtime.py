from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

import numpy as np

from .config import DetectorProfile, ModelKind, load_detector_profile
from .errors import DecodeError
from .labels import LabelTable, load_labels
from .postprocess import ClassifierDecoder, GridAnchorDecoder, SsdDecoder
from .preprocess import Flip, as_float_output, prepare_frame, tensor_dtype, to_input_tensor

PathLike = Union[str, Path]
InferFn = Callable[[np.ndarray], Any]

LOGGER = logging.getLogger(__name__)


class DetectorPipeline:
    """
    Plug-and-play pipeline: prepare frame -> inference -> decode.

    The pipeline owns its inference callable and decoder. Calls are serialized
    with a lock because the backend session is not assumed to be reentrant.
    Frames are OpenCV-style BGR `np.ndarray`s; results use normalized
    coordinates.
    """

    def __init__(
        self,
        infer_fn: InferFn,
        decoder: Any,
        *,
        backend: Optional[object] = None,
        backend_name: Optional[str] = None,
        input_size: Tuple[int, int] = (300, 300),
        input_dtype: Any = np.float32,
        mean: float = 127.5,
        std: float = 127.5,
        angle: float = 0.0,
        flip: Flip = Flip.NONE,
    ):
        self._infer_fn: Optional[InferFn] = infer_fn
        self.decoder = decoder
        self.backend = backend
        self.backend_name = backend_name
        self.input_size = input_size
        self.input_dtype = tensor_dtype(input_dtype)
        self.mean = mean
        self.std = std
        self.angle = angle
        self.flip = flip
        self._lock = threading.Lock()
        self._closed = False

    @property
    def labels(self) -> LabelTable:
        self._check_open()
        return self.decoder.labels

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("DetectorPipeline is closed.")

    def preprocess(self, image_bgr: np.ndarray, *, angle: Optional[float] = None, flip: Optional[Flip] = None) -> np.ndarray:
        frame = prepare_frame(
            image_bgr,
            self.input_size,
            angle=self.angle if angle is None else angle,
            flip=self.flip if flip is None else flip,
        )
        return to_input_tensor(frame, self.input_dtype, self.mean, self.std)

    def select_outputs(self, raw: Any) -> Dict[str, np.ndarray]:
        """
        Map whatever the inference callable returned onto the decoder's output
        names: by name when all are present, otherwise by position.
        """

        names = tuple(self.decoder.output_names)
        if isinstance(raw, Mapping):
            if all(n in raw for n in names):
                items = [(n, raw[n]) for n in names]
            elif len(raw) == len(names):
                items = list(zip(names, raw.values()))
            else:
                raise DecodeError(f"Expected outputs {list(names)}, got {list(raw)}.")
        elif isinstance(raw, (list, tuple)):
            if len(raw) != len(names):
                raise DecodeError(f"Expected {len(names)} outputs, got {len(raw)}.")
            items = list(zip(names, raw))
        else:
            if len(names) != 1:
                raise DecodeError(f"Expected {len(names)} outputs, got a single tensor.")
            items = [(names[0], raw)]
        return {n: as_float_output(v, n) for n, v in items}

    def decode(self, raw: Any, **decode_kwargs: Any) -> List[Any]:
        self._check_open()
        return self.decoder.decode(self.select_outputs(raw), **decode_kwargs)

    def detect(
        self,
        image_bgr: np.ndarray,
        *,
        angle: Optional[float] = None,
        flip: Optional[Flip] = None,
        **decode_kwargs: Any,
    ) -> List[Any]:
        """
        Run one frame end to end. `decode_kwargs` are per-call decoder
        overrides such as `threshold` and `max_per_class`.
        """

        with self._lock:
            self._check_open()
            blob = self.preprocess(image_bgr, angle=angle, flip=flip)
            raw = self._infer_fn(blob)
            results = self.decode(raw, **decode_kwargs)
        LOGGER.debug("Detected %d objects", len(results))
        return results

    def __call__(self, image_bgr: np.ndarray) -> List[Any]:
        return self.detect(image_bgr)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            close = getattr(self.backend, "close", None)
            if callable(close):
                close()
            self.backend = None
            self._infer_fn = None
            self.decoder = None
            self._closed = True

    def __enter__(self) -> "DetectorPipeline":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()


def build_decoder(profile: DetectorProfile, labels: LabelTable) -> Any:
    cfg = profile.decoder_config()
    if profile.model is ModelKind.SSD:
        return SsdDecoder(labels, cfg)
    if profile.model is ModelKind.YOLO:
        return GridAnchorDecoder(labels, cfg)
    return ClassifierDecoder(labels, cfg)


def _infer_backend(model_path: Path) -> str:
    suffix = model_path.suffix.lower()
    if suffix == ".onnx":
        return "onnxruntime"
    if suffix in {".torchscript", ".ts", ".pt"}:
        return "torchscript"
    raise ValueError(f"Could not infer backend from extension '{suffix}'. Pass backend=... explicitly.")


def load_pipeline(
    profile: Union[DetectorProfile, PathLike],
    *,
    backend: Optional[str] = None,
    onnx_providers: Optional[Tuple[str, ...]] = ("CPUExecutionProvider",),
    torch_device: str = "cpu",
) -> DetectorPipeline:
    """
    Build a pipeline from a detector profile (object or JSON path).

    Typical usage:
        with load_pipeline("Models/ssd_mobilenet.json") as pipe:
            detections = pipe(frame_bgr)
    """

    if not isinstance(profile, DetectorProfile):
        profile = load_detector_profile(Path(profile))

    labels = load_labels(profile.labels_path)
    decoder = build_decoder(profile, labels)
    chosen = (backend or _infer_backend(profile.model_path)).lower()

    if chosen == "onnxruntime":
        from .backends.onnxruntime_backend import OnnxRuntimeBackend, OnnxRuntimeBackendConfig

        runner = OnnxRuntimeBackend(profile.model_path, OnnxRuntimeBackendConfig(providers=onnx_providers))
        input_dtype = profile.input_dtype or runner.input_type
    elif chosen == "torchscript":
        from .backends.torchscript_backend import TorchScriptBackend, TorchScriptBackendConfig

        input_dtype = profile.input_dtype or "float32"
        runner = TorchScriptBackend(
            profile.model_path,
            TorchScriptBackendConfig(
                device=torch_device,
                output_names=decoder.output_names,
                input_dtype=input_dtype,
            ),
        )
    else:
        raise ValueError(f"Unsupported backend: {backend!r}")

    try:
        pipeline = DetectorPipeline(
            runner.infer,
            decoder,
            backend=runner,
            backend_name=chosen,
            input_size=(profile.input_width, profile.input_height),
            input_dtype=input_dtype,
            mean=profile.mean,
            std=profile.std,
            angle=profile.angle,
            flip=profile.flip,
        )
    except Exception:
        runner.close()
        raise
    LOGGER.info("Loaded %s pipeline (%s, %d labels)", profile.model.value, chosen, len(labels))
    return pipeline
