"""
Model session lifecycle.

Opening a model is expensive, so a `ModelSession` is created once and passed
explicitly to whoever runs inference. It tries an ordered list of capability
providers (GPU first, CPU after) and keeps the first one that opens. Every
provider is a scoped acquisition: the backend it yields is released when the
session closes or reloads, and immediately if opening fails half-way.
"""

from __future__ import annotations

import hashlib
import logging
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterator, List, Optional, Protocol, Sequence, Tuple, Union

import numpy as np

from .errors import BackendUnavailableError
from .letterbox import DEFAULT_INPUT_SIZE

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class InferenceAdapter(Protocol):
    def infer(self, tensor: np.ndarray) -> np.ndarray:
        ...


@dataclass(frozen=True)
class BackendProvider:
    """
    A named way of opening a model. `factory(model_path)` must return an
    object with `infer(blob)` and `close()`.
    """

    name: str
    factory: Callable[[Path], Any]

    @contextmanager
    def open(self, model_path: Path) -> Iterator[Any]:
        backend = self.factory(model_path)
        try:
            yield backend
        finally:
            backend.close()


def onnx_provider(execution_providers: Sequence[str], *, require: Optional[str] = None) -> BackendProvider:
    from .backends.onnxruntime_backend import OnnxRuntimeBackend, OnnxRuntimeBackendConfig

    cfg = OnnxRuntimeBackendConfig(providers=tuple(execution_providers), require_provider=require)
    label = require or (execution_providers[0] if execution_providers else "default")
    return BackendProvider(name=f"onnxruntime[{label}]", factory=lambda path: OnnxRuntimeBackend(path, cfg))


def torchscript_provider(device: str = "cpu") -> BackendProvider:
    from .backends.torchscript_backend import TorchScriptBackend, TorchScriptBackendConfig

    cfg = TorchScriptBackendConfig(device=device)
    return BackendProvider(name=f"torchscript[{device}]", factory=lambda path: TorchScriptBackend(path, cfg))


def default_providers(model_path: PathLike) -> List[BackendProvider]:
    """
    GPU then CPU for the model's format.
    """

    suffix = Path(model_path).suffix.lower()
    if suffix == ".onnx":
        return [
            onnx_provider(["CUDAExecutionProvider", "CPUExecutionProvider"], require="CUDAExecutionProvider"),
            onnx_provider(["CPUExecutionProvider"]),
        ]
    if suffix in {".torchscript", ".ts", ".pt"}:
        return [torchscript_provider("cuda"), torchscript_provider("cpu")]
    raise ValueError(f"Could not infer backend from extension '{suffix}'. Pass providers=... explicitly.")


def file_sha256(path: PathLike) -> Optional[str]:
    p = Path(path)
    if not p.exists():
        return None
    h = hashlib.sha256()
    with p.open("rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


class ModelSession:
    """
    Explicit, memoized handle on a loaded model.

    Opens lazily on first `infer()`; `warm_up()` opens and runs one dummy
    input; `ensure_current()` reopens when the model file changed on disk.
    """

    def __init__(
        self,
        model_path: PathLike,
        providers: Optional[Sequence[BackendProvider]] = None,
        *,
        input_size: int = DEFAULT_INPUT_SIZE,
    ):
        self.model_path = Path(model_path)
        self.providers: Tuple[BackendProvider, ...] = tuple(
            providers if providers is not None else default_providers(self.model_path)
        )
        if not self.providers:
            raise ValueError("At least one backend provider is required.")
        self.input_size = int(input_size)
        self._stack: Optional[ExitStack] = None
        self._backend: Any = None
        self.provider_name: Optional[str] = None
        self.checksum: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self._backend is not None

    def open(self) -> "ModelSession":
        if self.is_open:
            return self
        if not self.model_path.exists():
            raise FileNotFoundError(str(self.model_path))

        failures: List[str] = []
        for provider in self.providers:
            stack = ExitStack()
            try:
                backend = stack.enter_context(provider.open(self.model_path))
            except Exception as exc:
                stack.close()
                failures.append(f"{provider.name}: {exc}")
                logger.info("Provider %s unavailable for %s: %s", provider.name, self.model_path, exc)
                continue
            self._stack = stack
            self._backend = backend
            self.provider_name = provider.name
            self.checksum = file_sha256(self.model_path)
            logger.info("Opened %s with %s", self.model_path, provider.name)
            return self

        raise BackendUnavailableError(f"No provider could open {self.model_path}: {failures}")

    def close(self) -> None:
        stack, self._stack = self._stack, None
        self._backend = None
        self.provider_name = None
        if stack is not None:
            stack.close()

    def reload(self) -> "ModelSession":
        self.close()
        return self.open()

    def ensure_current(self) -> bool:
        """
        Reopen if the model file's checksum changed. Returns True on reload.
        """

        if not self.is_open:
            self.open()
            return False
        current = file_sha256(self.model_path)
        if current != self.checksum:
            logger.info("Model %s changed on disk, reloading", self.model_path)
            self.reload()
            return True
        return False

    def warm_up(self) -> None:
        dummy = np.zeros((1, 3, self.input_size, self.input_size), dtype=np.float32)
        self.infer(dummy)

    def infer(self, tensor: np.ndarray) -> np.ndarray:
        if not self.is_open:
            self.open()
        return self._backend.infer(tensor)

    def __enter__(self) -> "ModelSession":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
