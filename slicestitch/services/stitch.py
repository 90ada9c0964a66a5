from __future__ import annotations

import asyncio
import logging
import math
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Sequence

from slicestitch.models.compose import EncodedImage, RasterHandle, Region, StitchConfig, StitchItem
from slicestitch.services.canvas import Canvas
from slicestitch.services.compositor import composite
from slicestitch.services.errors import EncodeError
from slicestitch.services.loader import ImageRef, load_images
from slicestitch.services.projection import optimal_output_width


logger = logging.getLogger(__name__)

# Upper bound on physical output area; larger layouts are scaled down.
MAX_AREA = 50_000_000
# Physical area above which the PNG is streamed to disk instead of memory.
INLINE_ENCODE_LIMIT = int(os.getenv("SLICESTITCH_INLINE_ENCODE_LIMIT", str(4096 * 4096)))


@dataclass(slots=True)
class StitchLayout:
    """
    Logical layout of a stitch plus the physical size it is rasterized at.

    Slots and spacings are in logical pixels; only `physical_width` and
    `physical_height` account for the safety downscale.
    """

    output_width: float
    content_width: float
    slots: List[Region] = field(default_factory=list)
    spacings: List[float] = field(default_factory=list)
    total_height: float = 0.0
    final_scale: float = 1.0
    physical_width: int = 0
    physical_height: int = 0


def safety_scale(width: float, height: float, max_area: float = MAX_AREA) -> float:
    """Uniform scale that brings ``width * height`` down to `max_area`, or 1.0."""
    area = width * height
    if area <= max_area:
        return 1.0
    return math.sqrt(max_area / area)


def slot_height(item: StitchItem, image_aspect: float, content_width: float) -> float:
    """Height of an item's slot: the image's own shape for `original`, else the ratio."""
    return content_width / item.slot_aspect(image_aspect)


def plan_stitch_layout(
    image_aspects: Sequence[float],
    items: Sequence[StitchItem],
    config: StitchConfig,
    output_width: float,
) -> StitchLayout:
    """Stack item slots top to bottom and size the surface around them."""
    if not items:
        raise ValueError("A stitch needs at least one item.")
    if len(image_aspects) != len(items):
        raise ValueError("Every item needs exactly one image.")

    content_width = output_width - 2 * config.outer_padding
    if content_width <= 0:
        raise ValueError(
            f"Outer padding {config.outer_padding} leaves no room in a {output_width}px wide output."
        )

    layout = StitchLayout(output_width=output_width, content_width=content_width)
    current_y = config.outer_padding
    last = len(items) - 1
    for index, (item, aspect) in enumerate(zip(items, image_aspects)):
        height = slot_height(item, aspect, content_width)
        spacing = config.inner_spacing if index < last else 0.0
        layout.slots.append(Region(config.outer_padding, current_y, content_width, height))
        layout.spacings.append(spacing)
        current_y += height + spacing

    # The last slot carries no trailing spacing, so this is the slot sum,
    # the gaps between slots and both paddings.
    layout.total_height = current_y + config.outer_padding
    layout.final_scale = safety_scale(output_width, layout.total_height, MAX_AREA)
    layout.physical_width = max(1, math.floor(output_width * layout.final_scale))
    layout.physical_height = max(1, math.floor(layout.total_height * layout.final_scale))
    return layout


def compose_stitch(
    rasters: Sequence[RasterHandle],
    items: Sequence[StitchItem],
    config: StitchConfig,
    output_width: float,
) -> tuple[Canvas, StitchLayout]:
    """Draw every item into its slot on a single surface."""
    layout = plan_stitch_layout([r.aspect for r in rasters], items, config, output_width)
    if layout.final_scale < 1.0:
        logger.warning(
            "Stitch layout %.0fx%.0f exceeds %d px; downscaling by %.4f to %dx%d",
            output_width,
            layout.total_height,
            MAX_AREA,
            layout.final_scale,
            layout.physical_width,
            layout.physical_height,
        )

    canvas = Canvas(layout.physical_width, layout.physical_height)
    # Everything below is drawn in logical coordinates.
    canvas.scale(layout.final_scale)
    canvas.fill_rect(0, 0, output_width, layout.total_height, config.background_color)

    for raster, item, slot in zip(rasters, items, layout.slots):
        canvas.save()
        canvas.clip_rect(slot.x, slot.y, slot.width, slot.height)
        # Shows through transparent pixels and zoomed-out margins.
        canvas.fill_rect(slot.x, slot.y, slot.width, slot.height, config.background_color)
        composite(canvas, raster, slot, item.pan(), item.scale)
        canvas.restore()
    return canvas, layout


def encode_surface(canvas: Canvas, inline_limit: int = INLINE_ENCODE_LIMIT) -> EncodedImage:
    """
    Encode a finished surface as PNG.

    Surfaces larger than `inline_limit` pixels are streamed into a temporary
    file; the caller owns that file.
    """
    if canvas.width * canvas.height <= inline_limit:
        return EncodedImage(width=canvas.width, height=canvas.height, data=canvas.encode_png())

    handle = tempfile.NamedTemporaryFile(prefix="stitch_", suffix=".png", delete=False)
    path = Path(handle.name)
    try:
        with handle:
            canvas.write_png(handle)
    except EncodeError:
        path.unlink(missing_ok=True)
        raise
    if path.stat().st_size == 0:
        path.unlink(missing_ok=True)
        raise EncodeError("PNG encoder produced no data.")
    return EncodedImage(width=canvas.width, height=canvas.height, path=path)


def render_stitched_image(
    rasters: Sequence[RasterHandle],
    items: Sequence[StitchItem],
    config: StitchConfig,
    output_width: float = 1080,
) -> EncodedImage:
    """Compose and encode a vertical stitch from already loaded images."""
    canvas, layout = compose_stitch(rasters, items, config, output_width)
    encoded = encode_surface(canvas)
    encoded.scale = layout.final_scale
    logger.info(
        "Stitched %d images into %dx%d (%s)",
        len(items),
        encoded.width,
        encoded.height,
        "streamed" if encoded.path else "inline",
    )
    return encoded


async def generate_stitched_image(
    refs: Sequence[ImageRef],
    items: Sequence[StitchItem],
    config: StitchConfig,
    output_width: float | None = None,
) -> EncodedImage:
    """
    Load every item's image in parallel and stitch them.

    `refs[i]` is the image of `items[i]`. Without an explicit `output_width`
    the widest source decides it (see optimal_output_width).
    """
    if len(refs) != len(items):
        raise ValueError("Every item needs exactly one image reference.")
    rasters = await load_images(refs)
    if output_width is None:
        output_width = optimal_output_width(r.width for r in rasters)
    return await asyncio.to_thread(render_stitched_image, rasters, items, config, output_width)
