"""
Cover/contain geometry shared by the export pipelines and the zoom assist.

Every function here is pure: it only looks at sizes and aspect ratios.
"""

from __future__ import annotations

from typing import Iterable

from slicestitch.models.compose import DrawSize

MIN_OUTPUT_WIDTH = 1080
MAX_OUTPUT_WIDTH = 8192


def cover_fit(img_w: float, img_h: float, box_w: float, box_h: float) -> DrawSize:
    """
    Size at which an image covers a ``box_w x box_h`` box with no letterboxing.

    The image keeps its aspect ratio and is meant to be drawn centered, so the
    excess on one axis is cropped, like CSS ``object-fit: cover``.
    """
    if img_w <= 0 or img_h <= 0:
        raise ValueError(f"Image dimensions must be positive, got {img_w}x{img_h}.")
    if box_w <= 0 or box_h <= 0:
        raise ValueError(f"Box dimensions must be positive, got {box_w}x{box_h}.")

    img_aspect = img_w / img_h
    box_aspect = box_w / box_h
    if img_aspect > box_aspect:
        # Wider than the box: height is the constraint.
        return DrawSize(width=box_h * img_aspect, height=box_h)
    return DrawSize(width=box_w, height=box_w / img_aspect)


def contain_scale(image_aspect: float, slot_aspect: float) -> float:
    """
    Zoom, relative to cover fit, at which the whole image fits in the slot.

    Cover is 1.0 by definition, so the result is always <= 1.0.
    """
    if image_aspect <= 0 or slot_aspect <= 0:
        raise ValueError("Aspect ratios must be positive.")
    if image_aspect > slot_aspect:
        return slot_aspect / image_aspect
    return image_aspect / slot_aspect


def optimal_output_width(widths: Iterable[int]) -> int:
    """Keep the widest source's resolution, within [1080, 8192]."""
    widest = max(widths, default=0)
    return min(max(widest, MIN_OUTPUT_WIDTH), MAX_OUTPUT_WIDTH)
