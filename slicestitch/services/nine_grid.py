from __future__ import annotations

import asyncio
import logging
from typing import List

from slicestitch.models.compose import CropArea, EncodedImage, RasterHandle, Region
from slicestitch.services.canvas import Canvas
from slicestitch.services.compositor import composite
from slicestitch.services.loader import ImageRef, load_image


logger = logging.getLogger(__name__)

MIN_GRID_SIZE = 1080
GRID_BASE_COLOR = "#ffffff"
GRID_DIVISIONS = 3


def nine_grid_output_size(img_w: int, img_h: int) -> int:
    """
    Side of the square composite for a source of the given size.

    Never smaller than the source's shorter side, so nothing is downsampled,
    and never smaller than 1080 px.
    """
    return max(MIN_GRID_SIZE, min(img_w, img_h))


def tile_boxes(output_size: int) -> List[tuple[int, int, int]]:
    """
    Row-major ``(x, y, side)`` boxes of the 3x3 tiles.

    Tiles are whole pixels; when the size is not divisible by 3 the remainder
    pixels between tiles are dropped.
    """
    side = output_size // GRID_DIVISIONS
    boxes = []
    for row in range(GRID_DIVISIONS):
        for col in range(GRID_DIVISIONS):
            x = col * output_size // GRID_DIVISIONS
            y = row * output_size // GRID_DIVISIONS
            boxes.append((x, y, side))
    return boxes


def compose_nine_grid(raster: RasterHandle, crop: CropArea, ui_container_size: float) -> Canvas:
    """Render the full square composite before it is cut into tiles."""
    if ui_container_size <= 0:
        raise ValueError("ui_container_size must be positive.")

    output_size = nine_grid_output_size(raster.width, raster.height)
    canvas = Canvas(output_size, output_size)
    canvas.fill_rect(0, 0, output_size, output_size, GRID_BASE_COLOR)

    region = Region(0, 0, output_size, output_size)
    composite(canvas, raster, region, crop.pan(ui_container_size), crop.scale)
    return canvas


def render_nine_grid(raster: RasterHandle, crop: CropArea, ui_container_size: float) -> List[EncodedImage]:
    """
    Produce the nine PNG tiles for a loaded source image.

    Tiles are returned row-major (index = row * 3 + col). Any failure aborts
    before a single tile is returned.
    """
    canvas = compose_nine_grid(raster, crop, ui_container_size)

    tiles: List[EncodedImage] = []
    for x, y, side in tile_boxes(canvas.width):
        tile = canvas.crop(x, y, side, side)
        tiles.append(EncodedImage(width=side, height=side, data=tile.encode_png()))

    logger.info(
        "Sliced %s into %d tiles of %dpx (composite %dpx, zoom %.2f)",
        raster.source or "image",
        len(tiles),
        tiles[0].width,
        canvas.width,
        crop.scale,
    )
    return tiles


async def generate_nine_grid(ref: ImageRef, crop: CropArea, ui_container_size: float) -> List[EncodedImage]:
    """Load `ref` and slice it into nine tiles."""
    raster = await asyncio.to_thread(load_image, ref)
    return await asyncio.to_thread(render_nine_grid, raster, crop, ui_container_size)
