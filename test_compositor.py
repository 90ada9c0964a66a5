"""
Tests for the raster surface and the pan/zoom compositor.

The compositor is first checked against a recording fake, so the order of
drawing operations is visible, then against the real numpy/OpenCV canvas.
"""

from io import BytesIO

import numpy as np
import pytest
from PIL import Image

from slicestitch.models.compose import PercentPan, RasterHandle, Region, UiPan
from slicestitch.services.canvas import Canvas, parse_color
from slicestitch.services.compositor import composite
from slicestitch.services.errors import SurfaceError

WHITE = (255, 255, 255, 255)
BLUE = (0, 0, 255, 255)


class RecordingSurface:
    """Fake surface that only records what the compositor asks for."""

    def __init__(self):
        self.calls = []

    def save(self):
        self.calls.append(("save",))

    def restore(self):
        self.calls.append(("restore",))

    def translate(self, dx, dy):
        self.calls.append(("translate", dx, dy))

    def scale(self, sx, sy=None):
        self.calls.append(("scale", sx))

    def clip_rect(self, x, y, w, h):
        self.calls.append(("clip_rect", x, y, w, h))

    def fill_rect(self, x, y, w, h, color):
        self.calls.append(("fill_rect", x, y, w, h, color))

    def draw_image(self, image, dx, dy, dw, dh):
        self.calls.append(("draw_image", dx, dy, dw, dh))


def _solid(width, height, color):
    pixels = np.empty((height, width, 4), dtype=np.uint8)
    pixels[:] = color
    return RasterHandle(pixels=pixels, source="solid")


def _white_canvas(width, height):
    canvas = Canvas(width, height)
    canvas.fill_rect(0, 0, width, height, "#ffffff")
    return canvas


def test_composite_operation_order_for_grid_pan():
    """Clip, center, pan (scaled by K), zoom, then draw centered."""
    surface = RecordingSurface()
    image = _solid(200, 100, BLUE)

    draw = composite(surface, image, Region(0, 0, 1080, 1080), UiPan(10, -5, 360), 1.5)

    assert (draw.width, draw.height) == (2160, 1080)
    assert surface.calls == [
        ("save",),
        ("clip_rect", 0, 0, 1080, 1080),
        ("translate", 540, 540),
        ("translate", 30, -15),
        ("scale", 1.5),
        ("draw_image", -1080, -540, 2160, 1080),
        ("restore",),
    ]


def test_composite_percent_pan_uses_drawn_size():
    surface = RecordingSurface()
    image = _solid(100, 100, BLUE)

    composite(surface, image, Region(20, 100, 400, 300), PercentPan(10, -25), 1.0)

    # Square image in a 4:3 slot is drawn 400x400.
    assert ("translate", 220, 250) in surface.calls
    assert ("translate", 40, -100) in surface.calls
    assert ("draw_image", -200, -200, 400, 400) in surface.calls


def test_zoomed_out_image_leaves_base_visible():
    canvas = _white_canvas(100, 100)
    composite(canvas, _solid(100, 100, BLUE), Region(0, 0, 100, 100), UiPan(0, 0, 100), 0.5)

    pixels = canvas.pixels
    assert tuple(pixels[50, 50]) == BLUE
    assert tuple(pixels[25, 25]) == BLUE
    assert tuple(pixels[74, 74]) == BLUE
    assert tuple(pixels[24, 24]) == WHITE
    assert tuple(pixels[75, 75]) == WHITE


def test_pan_is_not_multiplied_by_zoom():
    canvas = _white_canvas(100, 100)
    composite(canvas, _solid(100, 100, BLUE), Region(0, 0, 100, 100), UiPan(20, 0, 100), 0.5)

    # 50 (center) + 20 (pan) - 25 (half of the zoomed image) = 45.
    row = canvas.pixels[50]
    assert tuple(row[44]) == WHITE
    assert tuple(row[45]) == BLUE
    assert tuple(row[94]) == BLUE
    assert tuple(row[95]) == WHITE


def test_composite_never_bleeds_outside_region():
    canvas = _white_canvas(300, 100)
    region = Region(100, 0, 100, 100)
    composite(canvas, _solid(50, 50, BLUE), region, PercentPan(40, 0), 2.5)

    pixels = canvas.pixels
    assert (pixels[:, :100] == 255).all()
    assert (pixels[:, 200:] == 255).all()
    assert tuple(pixels[50, 150]) == BLUE


def test_identity_draw_copies_pixels_exactly():
    rng = np.random.default_rng(3)
    pixels = rng.integers(0, 256, size=(40, 60, 4), dtype=np.uint8)
    pixels[..., 3] = 255
    canvas = Canvas(60, 40)

    canvas.draw_image(RasterHandle(pixels=pixels), 0, 0, 60, 40)

    assert np.array_equal(canvas.pixels, pixels)


def test_scaled_context_maps_logical_to_physical():
    canvas = Canvas(50, 50)
    canvas.scale(0.5)
    canvas.fill_rect(0, 0, 20, 20, "red")

    assert tuple(canvas.pixels[9, 9]) == (255, 0, 0, 255)
    assert tuple(canvas.pixels[10, 10]) == (0, 0, 0, 0)


def test_clip_is_restored():
    canvas = Canvas(20, 20)
    canvas.save()
    canvas.clip_rect(0, 0, 10, 10)
    canvas.fill_rect(0, 0, 20, 20, "#000000")
    canvas.restore()
    canvas.fill_rect(15, 15, 5, 5, "#000000")

    assert canvas.pixels[5, 5, 3] == 255
    assert canvas.pixels[12, 12, 3] == 0
    assert canvas.pixels[17, 17, 3] == 255


def test_translucent_pixels_blend_over_base():
    canvas = _white_canvas(4, 4)
    half_red = _solid(4, 4, (255, 0, 0, 128))

    canvas.draw_image(half_red, 0, 0, 4, 4)

    r, g, b, a = (int(v) for v in canvas.pixels[1, 1])
    assert r == 255
    assert abs(g - 127) <= 1 and abs(b - 127) <= 1
    assert a == 255


def test_large_downscale_stays_solid():
    canvas = Canvas(30, 30)
    canvas.draw_image(_solid(3000, 3000, BLUE), 0, 0, 30, 30)

    assert (canvas.pixels == np.array(BLUE, dtype=np.uint8)).all()


def test_png_encoding_is_lossless():
    rng = np.random.default_rng(11)
    pixels = rng.integers(0, 256, size=(16, 24, 4), dtype=np.uint8)
    canvas = Canvas(24, 16)
    canvas.pixels[:] = pixels

    data = canvas.encode_png()

    assert data.startswith(b"\x89PNG")
    decoded = np.array(Image.open(BytesIO(data)).convert("RGBA"))
    assert np.array_equal(decoded, pixels)


def test_crop_copies_region():
    canvas = _white_canvas(9, 9)
    canvas.fill_rect(3, 3, 3, 3, "#0000ff")

    tile = canvas.crop(3, 3, 3, 3)

    assert (tile.width, tile.height) == (3, 3)
    assert (tile.pixels == np.array(BLUE, dtype=np.uint8)).all()


def test_invalid_surface_size_raises():
    with pytest.raises(SurfaceError):
        Canvas(0, 10)


def test_parse_color_accepts_css_forms():
    assert parse_color("#fff") == WHITE
    assert parse_color("rgb(0, 0, 255)") == BLUE
    assert parse_color("#ff000080") == (255, 0, 0, 128)
    with pytest.raises(ValueError):
        parse_color("not-a-color")
