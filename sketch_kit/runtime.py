from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional, Sequence, Tuple, Union

import numpy as np

from .filters import FilterConfig, apply_filters, finalize
from .letterbox import DEFAULT_INPUT_SIZE, NormalizedInput, as_bgr_image, normalize_image
from .nms import NMSConfig, suppress
from .placeholder import DetectionSource, PlaceholderGenerator
from .postprocess import DecoderConfig, DetectionDecoder
from .session import BackendProvider, InferenceAdapter, ModelSession
from .types import Detection

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def find_project_root(
    start: Optional[PathLike] = None,
    markers: Sequence[str] = ("pyproject.toml", ".git"),
) -> Path:
    """
    Best-effort project root discovery, used to resolve relative model paths.
    """

    p = Path(start) if start is not None else Path.cwd()
    p = p.resolve()
    if p.is_file():
        p = p.parent

    for parent in (p, *p.parents):
        for m in markers:
            if (parent / m).exists():
                return parent
    return p


def resolve_path(path: PathLike, root: Optional[PathLike] = "auto") -> Path:
    p = Path(path)
    if p.is_absolute():
        return p
    base = find_project_root() if root in ("auto", None) else Path(root).resolve()
    return (base / p).resolve()


def run_in_daemon_thread(fn: Callable[..., Any], *args: Any) -> "asyncio.Future[Any]":
    """
    Run `fn(*args)` on a fresh daemon thread and return a future for it on
    the running loop.

    Nothing joins the thread at loop shutdown. A result that arrives after
    the caller stopped waiting is dropped.
    """

    loop = asyncio.get_running_loop()
    future = loop.create_future()

    def _settle(value: Any, exc: Optional[BaseException]) -> None:
        if future.done():
            return
        if exc is not None:
            future.set_exception(exc)
        else:
            future.set_result(value)

    def _worker() -> None:
        value, exc = None, None
        try:
            value = fn(*args)
        except Exception as e:
            exc = e
        try:
            loop.call_soon_threadsafe(_settle, value, exc)
        except RuntimeError:
            logger.debug("Event loop closed before %s returned; result dropped", getattr(fn, "__name__", fn))

    threading.Thread(target=_worker, name="sketch-infer", daemon=True).start()
    return future


@dataclass(frozen=True)
class DetectorConfig:
    input_size: int = DEFAULT_INPUT_SIZE
    decoder: DecoderConfig = field(default_factory=DecoderConfig)
    nms: NMSConfig = field(default_factory=NMSConfig)
    filters: FilterConfig = field(default_factory=FilterConfig)

    def __post_init__(self) -> None:
        if self.input_size <= 0:
            raise ValueError("input_size must be > 0")


@dataclass(frozen=True)
class DetectionResult:
    detections: Tuple[Detection, ...]
    width: int
    height: int
    used_placeholder: bool = False
    error: Optional[str] = None


class SketchDetector:
    """
    Pipeline: letterbox -> inference -> decode -> per-class NMS -> filters.

    Raster problems raise `InvalidRasterError`. Anything that goes wrong in
    or after the inference call is logged and answered with placeholder
    detections instead. Without a session the placeholder is used directly.
    """

    def __init__(
        self,
        session: Optional[InferenceAdapter] = None,
        cfg: DetectorConfig = DetectorConfig(),
        *,
        placeholder: Optional[DetectionSource] = None,
    ):
        self.session = session
        self.cfg = cfg
        self.decoder = DetectionDecoder(cfg.decoder)
        self.placeholder = placeholder if placeholder is not None else PlaceholderGenerator()
        # Serialises session.infer, including calls abandoned after a timeout.
        self._infer_lock = threading.Lock()

    def preprocess(self, image: np.ndarray) -> Tuple[np.ndarray, NormalizedInput]:
        img = as_bgr_image(image)
        return img, normalize_image(img, size=self.cfg.input_size)

    def postprocess(self, preds: np.ndarray, prep: NormalizedInput, image: np.ndarray) -> Tuple[Detection, ...]:
        candidates = self.decoder.decode(preds, prep.transform)
        kept = suppress(candidates, self.cfg.nms)
        kept = apply_filters(kept, image, self.cfg.filters)
        return tuple(finalize(kept))

    def _infer(self, tensor: np.ndarray) -> np.ndarray:
        with self._infer_lock:
            return self.session.infer(tensor)

    def _fallback(self, width: int, height: int, error: Optional[str]) -> DetectionResult:
        return DetectionResult(
            detections=tuple(self.placeholder.generate(width, height)),
            width=width,
            height=height,
            used_placeholder=True,
            error=error,
        )

    def detect(self, image: np.ndarray) -> DetectionResult:
        img = as_bgr_image(image)
        h, w = img.shape[:2]
        if self.session is None:
            return self._fallback(w, h, None)

        _, prep = self.preprocess(img)
        try:
            preds = self._infer(prep.tensor)
            detections = self.postprocess(preds, prep, img)
        except Exception as exc:
            logger.warning("Inference failed, using placeholder detections: %s", exc, exc_info=True)
            return self._fallback(w, h, f"{type(exc).__name__}: {exc}")
        return DetectionResult(detections=detections, width=w, height=h)

    async def detect_async(self, image: np.ndarray, *, timeout: Optional[float] = None) -> DetectionResult:
        """
        Same as `detect`, but the inference call runs on a daemon thread and
        is the only await point. On timeout or cancel the caller returns at
        once; the abandoned call keeps the session busy until it finishes.
        """

        img = as_bgr_image(image)
        h, w = img.shape[:2]
        if self.session is None:
            return self._fallback(w, h, None)

        _, prep = self.preprocess(img)
        try:
            preds = await asyncio.wait_for(run_in_daemon_thread(self._infer, prep.tensor), timeout)
            detections = self.postprocess(preds, prep, img)
        except asyncio.TimeoutError:
            logger.warning("Inference timed out after %ss, using placeholder detections", timeout)
            return self._fallback(w, h, f"TimeoutError: inference exceeded {timeout}s")
        except Exception as exc:
            logger.warning("Inference failed, using placeholder detections: %s", exc, exc_info=True)
            return self._fallback(w, h, f"{type(exc).__name__}: {exc}")
        return DetectionResult(detections=detections, width=w, height=h)


def load_detector(
    model_path: Optional[PathLike],
    *,
    cfg: DetectorConfig = DetectorConfig(),
    providers: Optional[Sequence[BackendProvider]] = None,
    root: Optional[PathLike] = "auto",
    warm_up: bool = False,
    placeholder: Optional[DetectionSource] = None,
) -> SketchDetector:
    """
    Build a detector for a model on disk; `model_path=None` gives a
    placeholder-only detector.
    """

    if model_path is None:
        return SketchDetector(None, cfg, placeholder=placeholder)

    session = ModelSession(resolve_path(model_path, root=root), providers, input_size=cfg.input_size)
    if warm_up:
        session.warm_up()
    return SketchDetector(session, cfg, placeholder=placeholder)
