from enum import Enum
from typing import List

from pydantic import BaseModel, ConfigDict, Field, PositiveFloat, PositiveInt, model_validator


class AspectRatio(str, Enum):
    """Slot shapes a stitch item can be cropped to."""

    ORIGINAL = "original"
    SQUARE = "1:1"
    LANDSCAPE_4_3 = "4:3"
    PORTRAIT_3_4 = "3:4"
    WIDE_16_9 = "16:9"
    TALL_9_16 = "9:16"

    def value_ratio(self) -> float | None:
        """Return ``w / h`` for fixed ratios, or None for ``original``."""
        if self is AspectRatio.ORIGINAL:
            return None
        w, h = (float(part) for part in self.value.split(":"))
        return w / h


class ExportKind(str, Enum):
    """Which pipeline produced an export."""

    NINE_GRID = "nine-grid"
    STITCH = "stitch"
    STORY = "story"


class CropAreaIn(BaseModel):
    """Pan/zoom of the nine-grid source, as captured in the preview box."""

    x: float = Field(default=0.0, description="Horizontal pan in preview pixels.")
    y: float = Field(default=0.0, description="Vertical pan in preview pixels.")
    scale: float = Field(default=1.0, ge=0.2, le=3.0, description="Zoom factor.")


class StitchItemIn(BaseModel):
    """One image in a vertical stitch, in stacking order."""

    id: str = Field(..., min_length=1, description="Client-side unique identifier.")
    ratio: AspectRatio = Field(default=AspectRatio.ORIGINAL, description="Slot aspect ratio.")
    scale: float = Field(default=1.0, ge=0.01, le=5.0, description="Zoom relative to cover fit.")
    x: float = Field(default=0.0, description="Pan as a percentage of the rendered image width.")
    y: float = Field(default=0.0, description="Pan as a percentage of the rendered image height.")
    upload_index: int | None = Field(
        default=None,
        ge=0,
        description="Index into the uploaded `images` files.",
    )
    url: str | None = Field(default=None, description="Remote or data: URL of the image.")

    @model_validator(mode="after")
    def _exactly_one_source(self) -> "StitchItemIn":
        if (self.upload_index is None) == (self.url is None):
            raise ValueError("Each item needs exactly one of `upload_index` or `url`.")
        return self


class StitchConfigIn(BaseModel):
    """Spacing and background applied uniformly to one stitch."""

    outer_padding: float = Field(default=0.0, ge=0.0, description="Border around all items, in output pixels.")
    inner_spacing: float = Field(default=0.0, ge=0.0, description="Gap between consecutive items.")
    background_color: str = Field(default="#ffffff", description="Any CSS-style color Pillow understands.")


class ExportFile(BaseModel):
    """A single encoded PNG belonging to an export."""

    index: int = Field(..., description="Position of the file within the export (row-major for tiles).")
    width: PositiveInt = Field(..., description="Pixel width.")
    height: PositiveInt = Field(..., description="Pixel height.")
    url: str = Field(..., description="Download path for the PNG.")


class ExportSummary(BaseModel):
    """Lightweight view of an export suitable for listings."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Unique export identifier.")
    kind: ExportKind = Field(..., description="Pipeline that produced the export.")


class ExportDetail(BaseModel):
    """Detailed view of a finished export."""

    id: str = Field(..., description="Unique export identifier.")
    kind: ExportKind = Field(..., description="Pipeline that produced the export.")
    files: List[ExportFile] = Field(default_factory=list, description="Encoded outputs in order.")
    scale: float = Field(
        default=1.0,
        description="Physical/logical scale applied by the safety downscale (1.0 when untouched).",
    )
    created_at: str = Field(..., description="Creation timestamp in ISO 8601 format (UTC).")


class SnapRequest(BaseModel):
    """Zoom step for one stitch item."""

    scale: float = Field(..., ge=0.01, le=5.0, description="Current item scale.")
    delta: float = Field(..., description="Requested change in scale.")
    image_aspect: PositiveFloat = Field(..., description="Intrinsic width / height of the image.")
    ratio: AspectRatio = Field(default=AspectRatio.ORIGINAL, description="Slot aspect ratio of the item.")
    x: float = Field(default=0.0, description="Current horizontal pan (percent).")
    y: float = Field(default=0.0, description="Current vertical pan (percent).")


class SnapResponse(BaseModel):
    """Result of a snap-assisted zoom step."""

    scale: float = Field(..., description="Scale after clamping and snapping.")
    x: float = Field(..., description="Horizontal pan, reset to 0 when snapped.")
    y: float = Field(..., description="Vertical pan, reset to 0 when snapped.")
    target: str | None = Field(default=None, description="'cover', 'contain' or null.")
    did_snap: bool = Field(..., description="Whether the scale was pulled onto a fit value.")
    pulse: bool = Field(
        ...,
        description="Whether this step moved onto a snap point (clients debounce their own feedback).",
    )
    state: str | None = Field(
        default=None,
        description="Fit the resulting item rests on with centered pan: 'cover', 'contain' or null.",
    )
