from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Tuple, Union

import numpy as np

from ..errors import BackendUnavailableError, InferenceError, MalformedOutputError

PathLike = Union[str, Path]


@dataclass(frozen=True)
class OnnxRuntimeBackendConfig:
    """
    Configuration for ONNX Runtime inference.

    - providers: ORT execution providers in priority order
    - require_provider: refuse to open unless this provider is available;
      ORT otherwise falls back to CPU silently
    """

    providers: Optional[Sequence[str]] = None
    require_provider: Optional[str] = None
    input_name: Optional[str] = None
    output_name: Optional[str] = None


class OnnxRuntimeBackend:
    """
    Expects an NCHW float32 blob shaped (1, 3, S, S) and returns the primary
    output, which must be a (1, 4 + C, N) array.
    """

    def __init__(self, model_path: PathLike, cfg: OnnxRuntimeBackendConfig = OnnxRuntimeBackendConfig()):
        try:
            import onnxruntime as ort  # type: ignore
        except Exception as e:  # pragma: no cover
            raise BackendUnavailableError(
                "onnxruntime is required for the ONNX backend. Install it with `pip install onnxruntime` "
                "(or `onnxruntime-gpu`)."
            ) from e

        self._ort = ort
        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise FileNotFoundError(str(self.model_path))

        if cfg.require_provider and cfg.require_provider not in ort.get_available_providers():
            raise BackendUnavailableError(f"{cfg.require_provider} is not available in this onnxruntime build.")

        sess_opts = ort.SessionOptions()
        providers = list(cfg.providers) if cfg.providers is not None else None
        self.session = ort.InferenceSession(str(self.model_path), sess_options=sess_opts, providers=providers)

        self.input_name = cfg.input_name or self.session.get_inputs()[0].name
        self.output_name = cfg.output_name or self.session.get_outputs()[0].name

    @property
    def providers_in_use(self) -> Sequence[str]:
        return tuple(self.session.get_providers())

    @property
    def input_shape(self) -> Tuple[object, ...]:
        return tuple(self.session.get_inputs()[0].shape)

    def infer(self, blob: np.ndarray) -> np.ndarray:
        if self.session is None:
            raise InferenceError("ONNX Runtime session is closed.")
        try:
            outputs = self.session.run([self.output_name], {self.input_name: np.asarray(blob, dtype=np.float32)})
        except Exception as e:
            raise InferenceError(f"ONNX Runtime inference failed: {e}") from e
        out = np.asarray(outputs[0])
        if out.ndim != 3 or out.shape[0] != 1:
            raise MalformedOutputError(f"Expected model output (1, 4 + C, N), got {out.shape}.")
        return out

    def close(self) -> None:
        self.session = None
