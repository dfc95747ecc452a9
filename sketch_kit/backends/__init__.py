"""
Inference backends for sketch_kit.

Backends live in their own package so the pre/post-processing core can be
used (and tested) without installing an inference runtime.
"""

from __future__ import annotations

__all__ = []
