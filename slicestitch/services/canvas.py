"""
In-memory raster surface with a 2D-context style drawing state.

The surface stores RGBA pixels in a numpy array. Drawing commands are given in
logical coordinates and mapped through the current transform, which only ever
holds translations and positive scales. A pixel belongs to a rectangle when
its center lies inside it, so fills, clips and image draws agree on edges.
"""

from __future__ import annotations

import logging
import math
from io import BytesIO
from typing import BinaryIO, List, Tuple

import cv2
import numpy as np
from PIL import Image, ImageColor

from slicestitch.models.compose import RasterHandle
from slicestitch.services.errors import EncodeError, SurfaceError


logger = logging.getLogger(__name__)

# Rows blended per step; bounds the float32 scratch memory on tall stitches.
_BLEND_ROWS = 512
# Below this effective scale the source is pre-shrunk with area averaging,
# since bilinear sampling alone would alias.
_PRESHRINK_BELOW = 0.5
# Largest device tile resampled in one warpAffine call.
_WARP_TILE = 4096

Box = Tuple[int, int, int, int]


def parse_color(color: str) -> Tuple[int, int, int, int]:
    """Parse any CSS-like color Pillow understands into an RGBA tuple."""
    rgba = ImageColor.getrgb(color)
    if len(rgba) == 3:
        return (*rgba, 255)
    return tuple(rgba)  # type: ignore[return-value]


def _span(start: float, end: float) -> Tuple[int, int]:
    """Pixel indices whose centers fall in ``[start, end)``."""
    return math.ceil(start - 0.5), math.ceil(end - 0.5)


def _translation(dx: float, dy: float) -> np.ndarray:
    return np.array([[1.0, 0.0, dx], [0.0, 1.0, dy], [0.0, 0.0, 1.0]])


def _scaling(sx: float, sy: float) -> np.ndarray:
    return np.array([[sx, 0.0, 0.0], [0.0, sy, 0.0], [0.0, 0.0, 1.0]])


class Canvas:
    """RGBA drawing surface implementing the RasterSurface protocol."""

    def __init__(self, width: int, height: int) -> None:
        if width <= 0 or height <= 0:
            raise SurfaceError(f"Cannot create a {width}x{height} surface.")
        try:
            self._pixels = np.zeros((height, width, 4), dtype=np.uint8)
        except MemoryError as exc:
            raise SurfaceError(f"Not enough memory for a {width}x{height} surface.") from exc
        self._matrix = np.identity(3)
        self._clip: Box = (0, 0, width, height)
        self._stack: List[Tuple[np.ndarray, Box]] = []

    @property
    def width(self) -> int:
        return self._pixels.shape[1]

    @property
    def height(self) -> int:
        return self._pixels.shape[0]

    @property
    def pixels(self) -> np.ndarray:
        return self._pixels

    # -- state -------------------------------------------------------------

    def save(self) -> None:
        self._stack.append((self._matrix.copy(), self._clip))

    def restore(self) -> None:
        if self._stack:
            self._matrix, self._clip = self._stack.pop()

    def translate(self, dx: float, dy: float) -> None:
        self._matrix = self._matrix @ _translation(dx, dy)

    def scale(self, sx: float, sy: float | None = None) -> None:
        self._matrix = self._matrix @ _scaling(sx, sx if sy is None else sy)

    def clip_rect(self, x: float, y: float, w: float, h: float) -> None:
        self._clip = self._intersect(self._device_box(x, y, w, h), self._clip)

    # -- drawing -----------------------------------------------------------

    def fill_rect(self, x: float, y: float, w: float, h: float, color: str) -> None:
        x0, y0, x1, y1 = self._intersect(self._device_box(x, y, w, h), self._clip)
        if x1 <= x0 or y1 <= y0:
            return
        rgba = np.array(parse_color(color), dtype=np.uint8)
        patch = np.broadcast_to(rgba, (y1 - y0, x1 - x0, 4))
        self._blend(patch, x0, y0)

    def draw_image(self, image: RasterHandle, dx: float, dy: float, dw: float, dh: float) -> None:
        """Draw `image` stretched onto the logical rectangle ``(dx, dy, dw, dh)``."""
        if dw <= 0 or dh <= 0:
            return
        src = image.pixels
        src_h, src_w = src.shape[:2]
        matrix = self._matrix @ np.array(
            [[dw / src_w, 0.0, dx], [0.0, dh / src_h, dy], [0.0, 0.0, 1.0]]
        )

        bounds = self._device_box_for(matrix, 0, 0, src_w, src_h)
        x0, y0, x1, y1 = self._intersect(bounds, self._clip)
        if x1 <= x0 or y1 <= y0:
            return

        if matrix[0, 0] < _PRESHRINK_BELOW or matrix[1, 1] < _PRESHRINK_BELOW:
            new_w = max(1, round(src_w * matrix[0, 0]))
            new_h = max(1, round(src_h * matrix[1, 1]))
            logger.debug("Pre-shrinking %dx%d source to %dx%d", src_w, src_h, new_w, new_h)
            src = cv2.resize(src, (new_w, new_h), interpolation=cv2.INTER_AREA)
            matrix = matrix @ _scaling(src_w / new_w, src_h / new_h)

        for ty0 in range(y0, y1, _WARP_TILE):
            for tx0 in range(x0, x1, _WARP_TILE):
                tile = (tx0, ty0, min(tx0 + _WARP_TILE, x1), min(ty0 + _WARP_TILE, y1))
                self._warp_tile(src, matrix, tile)

    def _warp_tile(self, src: np.ndarray, matrix: np.ndarray, tile: Box) -> None:
        """
        Resample the part of `src` that lands on one device tile.

        OpenCV maps integer coordinates onto integer coordinates, so the
        offsets are shifted to map pixel centers onto pixel centers. Only the
        source window the tile needs is handed to warpAffine, which keeps both
        images under OpenCV's per-dimension size limit.
        """
        tx0, ty0, tx1, ty1 = tile
        sx, sy = matrix[0, 0], matrix[1, 1]
        ox, oy = matrix[0, 2], matrix[1, 2]
        src_h, src_w = src.shape[:2]

        u0 = max(0, math.floor((tx0 + 0.5 - ox) / sx - 0.5) - 1)
        u1 = min(src_w, math.floor((tx1 - 0.5 - ox) / sx - 0.5) + 3)
        v0 = max(0, math.floor((ty0 + 0.5 - oy) / sy - 0.5) - 1)
        v1 = min(src_h, math.floor((ty1 - 0.5 - oy) / sy - 0.5) + 3)
        if u1 <= u0 or v1 <= v0:
            return
        window = np.ascontiguousarray(src[v0:v1, u0:u1])

        affine = np.array(
            [
                [sx, 0.0, sx * (u0 + 0.5) + ox - tx0 - 0.5],
                [0.0, sy, sy * (v0 + 0.5) + oy - ty0 - 0.5],
            ]
        )
        warped = cv2.warpAffine(
            window,
            affine,
            (tx1 - tx0, ty1 - ty0),
            flags=cv2.INTER_LINEAR,
            borderMode=cv2.BORDER_REPLICATE,
        )
        self._blend(warped, tx0, ty0)

    def crop(self, x: int, y: int, w: int, h: int) -> Canvas:
        """Copy a device-space rectangle into a new surface."""
        tile = Canvas(w, h)
        tile._pixels[:] = self._pixels[y : y + h, x : x + w]
        return tile

    # -- encoding ----------------------------------------------------------

    def to_image(self) -> Image.Image:
        return Image.fromarray(self._pixels)

    def encode_png(self) -> bytes:
        """Encode the surface as PNG bytes."""
        buffer = BytesIO()
        self.write_png(buffer)
        data = buffer.getvalue()
        if not data:
            raise EncodeError("PNG encoder produced no data.")
        return data

    def write_png(self, fp: BinaryIO) -> None:
        """Stream the surface as PNG into an open binary file."""
        try:
            self.to_image().save(fp, format="PNG")
        except (OSError, ValueError) as exc:
            raise EncodeError(f"PNG encoding failed: {exc}") from exc

    # -- helpers -----------------------------------------------------------

    def _device_box(self, x: float, y: float, w: float, h: float) -> Box:
        return self._device_box_for(self._matrix, x, y, w, h)

    @staticmethod
    def _device_box_for(matrix: np.ndarray, x: float, y: float, w: float, h: float) -> Box:
        corners = matrix @ np.array([[x, x + w], [y, y + h], [1.0, 1.0]])
        x0, x1 = _span(corners[0].min(), corners[0].max())
        y0, y1 = _span(corners[1].min(), corners[1].max())
        return (x0, y0, x1, y1)

    def _intersect(self, a: Box, b: Box) -> Box:
        x0 = max(a[0], b[0], 0)
        y0 = max(a[1], b[1], 0)
        x1 = min(a[2], b[2], self.width)
        y1 = min(a[3], b[3], self.height)
        return (x0, y0, max(x0, x1), max(y0, y1))

    def _blend(self, patch: np.ndarray, x0: int, y0: int) -> None:
        """Source-over composite `patch` onto the surface at ``(x0, y0)``."""
        h, w = patch.shape[:2]
        target = self._pixels[y0 : y0 + h, x0 : x0 + w]
        for start in range(0, h, _BLEND_ROWS):
            src = patch[start : start + _BLEND_ROWS]
            dst = target[start : start + _BLEND_ROWS]
            if (src[..., 3] == 255).all():
                dst[:] = src
                continue
            s = src.astype(np.float32)
            d = dst.astype(np.float32)
            sa = s[..., 3:4] / 255.0
            da = d[..., 3:4] / 255.0
            out_a = sa + da * (1.0 - sa)
            out_rgb = (s[..., :3] * sa + d[..., :3] * da * (1.0 - sa)) / np.maximum(out_a, 1e-6)
            dst[..., :3] = np.clip(np.rint(out_rgb), 0, 255).astype(np.uint8)
            dst[..., 3:4] = np.clip(np.rint(out_a * 255.0), 0, 255).astype(np.uint8)
