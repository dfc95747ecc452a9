from __future__ import annotations


class SketchKitError(Exception):
    """Base class for errors raised by `sketch_kit`."""


class InvalidRasterError(SketchKitError, ValueError):
    """The source image cannot be normalised (not an image, or zero-sized)."""


class MalformedOutputError(SketchKitError, ValueError):
    """The model returned a tensor that does not match the expected layout."""


class InferenceError(SketchKitError, RuntimeError):
    """The inference backend failed or timed out."""


class BackendUnavailableError(SketchKitError, RuntimeError):
    """No capability provider could open the model."""
