"""
Per-tile stories.

After a nine-grid export every tile can open its own vertical stitch: the tile
is pinned as the first, square item and further photos are stacked below it.
"""

from __future__ import annotations

import asyncio
from typing import List, Sequence

from slicestitch.api.v1.schemas import AspectRatio
from slicestitch.models.compose import EncodedImage, RasterHandle, StitchConfig, StitchItem
from slicestitch.services.loader import ImageRef, load_images
from slicestitch.services.projection import optimal_output_width
from slicestitch.services.stitch import render_stitched_image


def anchor_item(tile_index: int) -> StitchItem:
    """The fixed first item of a tile's story."""
    return StitchItem(id=f"anchor-{tile_index}", ratio=AspectRatio.SQUARE, locked=True)


def story_items(tile_index: int, extras: Sequence[StitchItem]) -> List[StitchItem]:
    """Anchor first, then the user's items in order."""
    anchor = anchor_item(tile_index)
    if any(item.id == anchor.id for item in extras):
        raise ValueError(f"Item id {anchor.id!r} is reserved for the tile.")
    return [anchor, *extras]


def render_moment_story(
    tile_index: int,
    tile: RasterHandle,
    extra_rasters: Sequence[RasterHandle],
    extras: Sequence[StitchItem],
    config: StitchConfig,
    output_width: float | None = None,
) -> EncodedImage:
    if len(extra_rasters) != len(extras):
        raise ValueError("Every story item needs exactly one image.")
    items = story_items(tile_index, extras)
    rasters = [tile, *extra_rasters]
    if output_width is None:
        output_width = optimal_output_width(r.width for r in rasters)
    return render_stitched_image(rasters, items, config, output_width)


async def generate_moment_story(
    tile_index: int,
    tile_ref: ImageRef,
    extra_refs: Sequence[ImageRef],
    extras: Sequence[StitchItem],
    config: StitchConfig,
    output_width: float | None = None,
) -> EncodedImage:
    """Load the tile and every extra image in parallel, then stitch the story."""
    tile, *extra_rasters = await load_images([tile_ref, *extra_refs])
    return await asyncio.to_thread(
        render_moment_story, tile_index, tile, extra_rasters, extras, config, output_width
    )
