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
class TorchScriptBackendConfig:
    """
    Configuration for TorchScript inference.

    - device: "cpu" or "cuda" (if available)
    - output_names: names given to the model's outputs, in order; unnamed
      outputs are keyed "output_<i>" (a single unnamed output is "output")
    - input_dtype: dtype the scripted model expects ("float32" or "uint8")
    """

    device: str = "cpu"
    output_names: Optional[Sequence[str]] = None
    input_dtype: str = "float32"


class TorchScriptBackend:
    """
    TorchScript backend using `torch.jit.load`.
    """

    def __init__(self, model_path: PathLike, cfg: TorchScriptBackendConfig = TorchScriptBackendConfig()):
        try:
            import torch  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError("torch is required for the TorchScript backend. Install with `pip install torch`.") from e

        self._torch = torch
        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise FileNotFoundError(str(self.model_path))

        self.device = torch.device(cfg.device)
        self.output_names = list(cfg.output_names) if cfg.output_names is not None else None
        self.input_type = cfg.input_dtype

        LOGGER.info("Loading TorchScript model from %s on %s", self.model_path, self.device)
        model = torch.jit.load(str(self.model_path), map_location=self.device)
        model.eval()
        self.model = model

    def _names_for(self, count: int) -> Sequence[str]:
        if self.output_names is not None:
            if len(self.output_names) != count:
                raise ValueError(f"Model returned {count} outputs but {len(self.output_names)} names are configured.")
            return self.output_names
        if count == 1:
            return ["output"]
        return [f"output_{i}" for i in range(count)]

    def infer(self, blob: np.ndarray) -> Dict[str, np.ndarray]:
        if self.model is None:
            raise RuntimeError("TorchScriptBackend is closed.")
        torch = self._torch
        x = torch.as_tensor(np.ascontiguousarray(blob), device=self.device)

        with torch.no_grad():
            y = self.model(x)

        if isinstance(y, dict):
            items = list(y.values())
            names = list(y.keys()) if self.output_names is None else self._names_for(len(items))
        else:
            items = list(y) if isinstance(y, (tuple, list)) else [y]
            names = self._names_for(len(items))

        out: Dict[str, np.ndarray] = OrderedDict()
        for name, t in zip(names, items):
            if hasattr(t, "detach"):
                t = t.detach()
            out[name] = t.to("cpu").numpy()
        return out

    def close(self) -> None:
        self.model = None
