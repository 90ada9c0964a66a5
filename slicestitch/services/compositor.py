from __future__ import annotations

from typing import Protocol, Union

from slicestitch.models.compose import DrawSize, PercentPan, RasterHandle, Region, UiPan
from slicestitch.services.projection import cover_fit

Pan = Union[UiPan, PercentPan]


class RasterSurface(Protocol):
    """Drawing capabilities the export pipelines need from a surface."""

    def save(self) -> None: ...

    def restore(self) -> None: ...

    def translate(self, dx: float, dy: float) -> None: ...

    def scale(self, sx: float, sy: float | None = None) -> None: ...

    def clip_rect(self, x: float, y: float, w: float, h: float) -> None: ...

    def fill_rect(self, x: float, y: float, w: float, h: float, color: str) -> None: ...

    def draw_image(self, image: RasterHandle, dx: float, dy: float, dw: float, dh: float) -> None: ...


def composite(
    surface: RasterSurface,
    image: RasterHandle,
    region: Region,
    pan: Pan,
    zoom: float,
) -> DrawSize:
    """
    Draw `image` into `region` with the user's pan and zoom applied.

    The image is cover-fitted to the region, then positioned by moving the
    origin to the region center, panning, and zooming about that point, in
    that order, so pan distances are never multiplied by the zoom. Nothing is
    drawn outside `region`.
    """
    draw = cover_fit(image.width, image.height, region.width, region.height)
    offset = pan.to_output(region, draw)
    cx, cy = region.center

    surface.save()
    try:
        surface.clip_rect(region.x, region.y, region.width, region.height)
        surface.translate(cx, cy)
        surface.translate(offset.dx, offset.dy)
        surface.scale(zoom)
        surface.draw_image(image, -draw.width / 2, -draw.height / 2, draw.width, draw.height)
    finally:
        surface.restore()
    return draw
