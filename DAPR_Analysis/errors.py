from __future__ import annotations


class SketchNotFoundError(LookupError):
    """No sketch is stored under the requested id."""


class DetectionNotFoundError(LookupError):
    """No detection is stored under the requested id."""


class SketchImageMissingError(FileNotFoundError):
    """The sketch exists but its raster cannot be read."""
