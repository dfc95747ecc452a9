from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Tuple

import numpy as np

from .errors import InvalidRasterError
from .types import LetterboxTransform

DEFAULT_INPUT_SIZE = 640
PAD_COLOR: Tuple[int, int, int] = (114, 114, 114)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def resized_size(width: int, height: int, scale: float) -> Tuple[int, int]:
    """
    Size of the image on the canvas. Never below 1px, so a 1x10000 strip
    still gets a column; its inverse is wider than the source and decoded
    boxes are clipped back to the image.
    """

    return max(1, _round_half_up(width * scale)), max(1, _round_half_up(height * scale))


def as_bgr_image(image: np.ndarray) -> np.ndarray:
    """
    Validate a raster and return it as an (H, W, 3) uint8 BGR array.

    Grayscale is expanded, an alpha channel is dropped.
    """

    if image is None or not hasattr(image, "shape"):
        raise InvalidRasterError("image must be a NumPy array (BGR).")
    arr = np.asarray(image)
    if arr.ndim == 2:
        arr = np.repeat(arr[:, :, None], 3, axis=2)
    if arr.ndim != 3 or arr.shape[2] not in (3, 4):
        raise InvalidRasterError(f"Expected image shape (H, W, 3), got {arr.shape}")
    h, w = arr.shape[:2]
    if h <= 0 or w <= 0:
        raise InvalidRasterError(f"Image has zero size: width={w}, height={h}")
    if arr.shape[2] == 4:
        arr = arr[:, :, :3]
    if arr.dtype != np.uint8:
        arr = np.clip(arr, 0, 255).astype(np.uint8)
    return arr


def compute_transform(width: int, height: int, size: int = DEFAULT_INPUT_SIZE) -> LetterboxTransform:
    """
    Letterbox geometry for a (width, height) image on a size x size canvas.
    """

    if width <= 0 or height <= 0:
        raise InvalidRasterError(f"Image has zero size: width={width}, height={height}")
    if size <= 0:
        raise ValueError("size must be > 0")

    scale = min(size / width, size / height)
    new_w, new_h = resized_size(width, height, scale)
    pad_x = _round_half_up((size - new_w) / 2)
    pad_y = _round_half_up((size - new_h) / 2)
    return LetterboxTransform(
        scale=scale,
        pad_x=float(pad_x),
        pad_y=float(pad_y),
        orig_width=int(width),
        orig_height=int(height),
        size=int(size),
    )


def letterbox(
    image: np.ndarray,
    size: int = DEFAULT_INPUT_SIZE,
    color: Tuple[int, int, int] = PAD_COLOR,
) -> Tuple[np.ndarray, LetterboxTransform]:
    """
    Resize (aspect preserved) and pad an image onto a square canvas.

    Returns:
        canvas: (size, size, 3) uint8, padded with `color`
        transform: the LetterboxTransform used, valid for this image only
    """
    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for letterbox(). Install with `pip install opencv-python`.") from e

    img = as_bgr_image(image)
    h, w = img.shape[:2]
    transform = compute_transform(w, h, size)

    new_w, new_h = resized_size(w, h, transform.scale)
    if (w, h) != (new_w, new_h):
        img = cv2.resize(img, (new_w, new_h), interpolation=cv2.INTER_LINEAR)

    canvas = np.empty((size, size, 3), dtype=np.uint8)
    canvas[:, :] = np.asarray(color, dtype=np.uint8)
    x0 = int(transform.pad_x)
    y0 = int(transform.pad_y)
    canvas[y0 : y0 + new_h, x0 : x0 + new_w] = img
    return canvas, transform


def to_planar_tensor(canvas_bgr: np.ndarray) -> np.ndarray:
    """
    BGR HWC uint8 -> (1, 3, H, W) float32 in [0, 1], planes ordered R, G, B.
    """

    rgb = canvas_bgr[:, :, ::-1].astype(np.float32) / 255.0
    return np.ascontiguousarray(np.transpose(rgb, (2, 0, 1))[None, ...])


@dataclass(frozen=True)
class NormalizedInput:
    tensor: np.ndarray
    transform: LetterboxTransform
    orig_size: Tuple[int, int]


def normalize_image(image: np.ndarray, size: int = DEFAULT_INPUT_SIZE) -> NormalizedInput:
    canvas, transform = letterbox(image, size=size)
    return NormalizedInput(
        tensor=to_planar_tensor(canvas),
        transform=transform,
        orig_size=(transform.orig_width, transform.orig_height),
    )
