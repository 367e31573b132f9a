from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Sequence, Union

import numpy as np

PathLike = Union[str, Path]

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class OnnxRuntimeBackendConfig:
    """
    Configuration for ONNX Runtime inference.

    - providers: ORT execution providers (defaults to CPU)
    - input_name: override the auto-selected input
    - output_names: fetch only these outputs, in this order (default: all)
    """

    providers: Optional[Sequence[str]] = ("CPUExecutionProvider",)
    input_name: Optional[str] = None
    output_names: Optional[Sequence[str]] = None


class OnnxRuntimeBackend:
    """
    ONNX Runtime session owned by a single pipeline.

    Expects an NHWC blob shaped (1, H, W, 3) and returns every requested output
    keyed by name.
    """

    def __init__(self, model_path: PathLike, cfg: OnnxRuntimeBackendConfig = OnnxRuntimeBackendConfig()):
        try:
            import onnxruntime as ort  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError(
                "onnxruntime is required for the ONNX backend. Install it with `pip install onnxruntime`."
            ) from e

        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise FileNotFoundError(str(self.model_path))

        LOGGER.info("Loading ONNX model from %s", self.model_path)
        sess_opts = ort.SessionOptions()
        providers = list(cfg.providers) if cfg.providers is not None else None
        self.session = ort.InferenceSession(str(self.model_path), sess_options=sess_opts, providers=providers)

        inputs = self.session.get_inputs()
        self.input_name = cfg.input_name or inputs[0].name
        by_name = {i.name: i for i in inputs}
        if self.input_name not in by_name:
            raise ValueError(f"Input name {self.input_name!r} not found. Available: {sorted(by_name)}")
        self._input_type = by_name[self.input_name].type

        available = [o.name for o in self.session.get_outputs()]
        self.output_names = list(cfg.output_names) if cfg.output_names is not None else available
        missing = [n for n in self.output_names if n not in available]
        if missing:
            raise ValueError(f"Output names {missing} not found. Available: {available}")

    @property
    def input_type(self) -> str:
        # e.g. "tensor(float)" or "tensor(uint8)"
        return self._input_type

    def infer(self, blob: np.ndarray) -> Dict[str, np.ndarray]:
        if self.session is None:
            raise RuntimeError("OnnxRuntimeBackend is closed.")
        outputs = self.session.run(self.output_names, {self.input_name: blob})
        return OrderedDict(zip(self.output_names, outputs))

    def close(self) -> None:
        self.session = None
