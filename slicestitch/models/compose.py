from __future__ import annotations

import base64
from dataclasses import dataclass, field, replace
from pathlib import Path

import numpy as np

from slicestitch.api.v1.schemas import AspectRatio


@dataclass(slots=True, frozen=True)
class Region:
    """
    Axis-aligned rectangle on an output surface, in logical pixels.

    Coordinates are floats because stitch slot heights are derived from
    aspect ratios and rarely land on whole pixels.
    """

    x: float
    y: float
    width: float
    height: float

    @property
    def center(self) -> tuple[float, float]:
        return (self.x + self.width / 2, self.y + self.height / 2)

    @property
    def aspect(self) -> float:
        return self.width / self.height


@dataclass(slots=True, frozen=True)
class DrawSize:
    """Size an image is drawn at before the user zoom is applied."""

    width: float
    height: float


@dataclass(slots=True, frozen=True)
class OutputPan:
    """Pan distance in output pixels, ready for the compositor."""

    dx: float
    dy: float


@dataclass(slots=True, frozen=True)
class UiPan:
    """
    Pan captured in preview-box pixels.

    The preview box is `container_size` pixels wide; the same pan on an
    output region is scaled by ``K = region.width / container_size``.
    """

    x: float
    y: float
    container_size: float

    def to_output(self, region: Region, draw: DrawSize) -> OutputPan:
        k = region.width / self.container_size
        return OutputPan(self.x * k, self.y * k)


@dataclass(slots=True, frozen=True)
class PercentPan:
    """Pan as a percentage of the image's own cover-fit size."""

    x: float
    y: float

    def to_output(self, region: Region, draw: DrawSize) -> OutputPan:
        return OutputPan(self.x / 100 * draw.width, self.y / 100 * draw.height)


@dataclass(slots=True)
class CropArea:
    """Pan and zoom of a nine-grid source image."""

    x: float = 0.0
    y: float = 0.0
    # Zoom factor, [0.2, 3.0].
    scale: float = 1.0

    def pan(self, container_size: float) -> UiPan:
        return UiPan(self.x, self.y, container_size)


@dataclass(slots=True)
class StitchItem:
    """
    One image slot in a vertical stitch.

    `x` and `y` are percentages of the image's rendered cover-fit size;
    `scale` is relative to cover fit (1.0 == cover).
    """

    id: str
    ratio: AspectRatio = AspectRatio.ORIGINAL
    scale: float = 1.0
    x: float = 0.0
    y: float = 0.0
    # Anchored items (story tiles) are never moved, rescaled or reordered.
    locked: bool = False

    def with_ratio(self, ratio: AspectRatio) -> StitchItem:
        """Return a copy using `ratio`; transforms from the old shape are dropped."""
        return replace(self, ratio=AspectRatio(ratio), scale=1.0, x=0.0, y=0.0)

    def slot_aspect(self, image_aspect: float) -> float:
        fixed = self.ratio.value_ratio()
        return image_aspect if fixed is None else fixed

    def pan(self) -> PercentPan:
        return PercentPan(self.x, self.y)


@dataclass(slots=True)
class StitchConfig:
    """Spacing and colors for one stitch composite."""

    outer_padding: float = 0.0
    inner_spacing: float = 0.0
    background_color: str = "#ffffff"

    def __post_init__(self) -> None:
        if self.outer_padding < 0 or self.inner_spacing < 0:
            raise ValueError("Padding and spacing must be non-negative.")


@dataclass(slots=True)
class RasterHandle:
    """Decoded image as an RGBA ``uint8`` array of shape (height, width, 4)."""

    pixels: np.ndarray
    source: str = ""
    width: int = field(init=False)
    height: int = field(init=False)

    def __post_init__(self) -> None:
        self.height, self.width = (int(v) for v in self.pixels.shape[:2])

    @property
    def aspect(self) -> float:
        return self.width / self.height


@dataclass(slots=True)
class EncodedImage:
    """
    Losslessly encoded PNG output.

    Small results are held in `data`; large ones are streamed to `path` so
    they never have to exist as one in-memory string.
    """

    width: int
    height: int
    mime_type: str = "image/png"
    data: bytes | None = None
    path: Path | None = None
    # Physical/logical size ratio; below 1.0 after a safety downscale.
    scale: float = 1.0

    def read_bytes(self) -> bytes:
        if self.data is not None:
            return self.data
        if self.path is not None:
            return self.path.read_bytes()
        raise ValueError("Encoded image has neither data nor a backing file.")

    def to_data_url(self) -> str:
        payload = base64.b64encode(self.read_bytes()).decode("ascii")
        return f"data:{self.mime_type};base64,{payload}"
