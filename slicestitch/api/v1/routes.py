from pathlib import Path
from typing import Awaitable, List, TypeVar
from uuid import uuid4

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from fastapi.responses import FileResponse
from pydantic import BaseModel, TypeAdapter, ValidationError

from slicestitch.api.v1.schemas import (
    CropAreaIn,
    ExportDetail,
    ExportFile,
    ExportKind,
    ExportSummary,
    SnapRequest,
    SnapResponse,
    StitchConfigIn,
    StitchItemIn,
)
from slicestitch.models.compose import CropArea, StitchConfig, StitchItem
from slicestitch.models.exports import Export
from slicestitch.services.errors import DecodeError, EncodeError, SurfaceError
from slicestitch.services.exports import ExportStorageError, ExportStore, get_export_store
from slicestitch.services.loader import ImageRef, LocalHandle
from slicestitch.services.moments import generate_moment_story
from slicestitch.services.nine_grid import generate_nine_grid
from slicestitch.services.snap import decide_snap, snap_state
from slicestitch.services.stitch import generate_stitched_image

router = APIRouter(prefix="/api/v1")

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

_ITEMS_ADAPTER = TypeAdapter(List[StitchItemIn])


def _invalid(detail: str) -> HTTPException:
    return HTTPException(status_code=422, detail=detail)


def _first_error(exc: ValidationError) -> str:
    error = exc.errors(include_url=False)[0]
    location = ".".join(str(part) for part in error["loc"])
    return f"{location}: {error['msg']}" if location else error["msg"]


def _parse_form_json(model: type[M], raw: str, field: str) -> M:
    try:
        return model.model_validate_json(raw)
    except ValidationError as exc:
        raise _invalid(f"Invalid `{field}` payload: {_first_error(exc)}") from exc


def _parse_items(raw: str, allow_empty: bool = False) -> List[StitchItemIn]:
    try:
        items = _ITEMS_ADAPTER.validate_json(raw)
    except ValidationError as exc:
        raise _invalid(f"Invalid `items` payload: {_first_error(exc)}") from exc
    if not items and not allow_empty:
        raise _invalid("At least one item is required.")
    if len({item.id for item in items}) != len(items):
        raise _invalid("Item ids must be unique.")
    return items


def _to_config(config: StitchConfigIn) -> StitchConfig:
    return StitchConfig(
        outer_padding=config.outer_padding,
        inner_spacing=config.inner_spacing,
        background_color=config.background_color,
    )


def _to_item(item: StitchItemIn) -> StitchItem:
    return StitchItem(id=item.id, ratio=item.ratio, scale=item.scale, x=item.x, y=item.y)


async def _item_refs(items: List[StitchItemIn], uploads: List[UploadFile]) -> List[ImageRef]:
    """Resolve each item to an uploaded file or its URL."""
    handles = [
        LocalHandle(data=await upload.read(), name=upload.filename or f"upload_{index}")
        for index, upload in enumerate(uploads)
    ]
    refs: List[ImageRef] = []
    for item in items:
        if item.upload_index is None:
            refs.append(item.url)
            continue
        if item.upload_index >= len(handles):
            raise _invalid(f"Item {item.id!r} references missing upload #{item.upload_index}.")
        refs.append(handles[item.upload_index])
    return refs


async def _run_export(work: Awaitable[T]) -> T:
    """Await an export pipeline and translate its failures into HTTP errors."""
    try:
        return await work
    except DecodeError as exc:
        raise _invalid(f"Could not read image {exc.reference!r}: {exc.reason}") from exc
    except SurfaceError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Could not allocate the output surface.",
        ) from exc
    except EncodeError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Encoding the output image failed.",
        ) from exc
    except ExportStorageError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to persist export files.",
        ) from exc
    except ValueError as exc:
        raise _invalid(str(exc)) from exc


def _to_detail(export: Export) -> ExportDetail:
    return ExportDetail(
        id=export.id,
        kind=export.kind,
        files=[
            ExportFile(
                index=index,
                width=file.width,
                height=file.height,
                url=f"{router.prefix}/exports/{export.id}/files/{index}",
            )
            for index, file in enumerate(export.files)
        ],
        scale=export.scale,
        created_at=export.created_at.isoformat(),
    )


async def _require_export(store: ExportStore, export_id: str) -> Export:
    export = await store.get_export(export_id)
    if export is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Export not found.",
        )
    return export


@router.get("/health", tags=["health"])
async def health_check() -> dict:
    """API v1 health check endpoint."""
    return {"status": "ok", "api_version": "v1"}


@router.post(
    "/nine-grid",
    response_model=ExportDetail,
    status_code=status.HTTP_201_CREATED,
    tags=["nine-grid"],
    summary="Slice one image into a 3x3 tile set",
)
async def create_nine_grid(
    source: UploadFile | None = File(default=None, description="Source photo."),
    source_url: str | None = Form(default=None, description="Remote or data: URL, instead of an upload."),
    crop: str = Form(
        default="{}",
        description="JSON-encoded crop, e.g. {\"x\": 12, \"y\": -40, \"scale\": 1.2}.",
    ),
    ui_container_size: float = Form(..., gt=0, description="Width of the preview box the crop was made in."),
    store: ExportStore = Depends(get_export_store),
) -> ExportDetail:
    """
    Render the cropped source into a square and cut it into nine PNG tiles.

    `crop.x`/`crop.y` are pan offsets in preview pixels; they are scaled to
    the output with `ui_container_size`. Tiles are listed row-major.
    """
    if (source is None) == (source_url is None):
        raise _invalid("Provide exactly one of `source` or `source_url`.")
    crop_in = _parse_form_json(CropAreaIn, crop, "crop")

    ref: ImageRef
    if source is not None:
        ref = LocalHandle(data=await source.read(), name=source.filename or "source")
    else:
        ref = source_url

    crop_area = CropArea(x=crop_in.x, y=crop_in.y, scale=crop_in.scale)
    tiles = await _run_export(generate_nine_grid(ref, crop_area, ui_container_size))
    export = await _run_export(store.save_export(str(uuid4()), ExportKind.NINE_GRID, tiles))
    return _to_detail(export)


@router.post(
    "/stitch",
    response_model=ExportDetail,
    status_code=status.HTTP_201_CREATED,
    tags=["stitch"],
    summary="Stack images vertically into one long image",
)
async def create_stitch(
    images: list[UploadFile] | None = File(default=None, description="Uploaded images, referenced by index."),
    items: str = Form(
        ...,
        description=(
            "JSON-encoded list of items in stacking order, e.g. "
            "[{\"id\":\"a\",\"ratio\":\"4:3\",\"scale\":1.1,\"x\":5,\"y\":0,\"upload_index\":0}]."
        ),
    ),
    config: str = Form(default="{}", description="JSON-encoded padding, spacing and background color."),
    output_width: int | None = Form(
        default=None,
        gt=0,
        description="Output width in pixels; defaults to the widest source within [1080, 8192].",
    ),
    store: ExportStore = Depends(get_export_store),
) -> ExportDetail:
    """
    Compose every item into its own slot, top to bottom.

    Slot height follows each item's ratio (or its image for `original`); the
    image is cover-fitted, panned by `x`/`y` percent of its rendered size and
    zoomed by `scale`. Very tall results are scaled down to stay within
    50 megapixels; `scale` in the response reports that factor.
    """
    parsed_items = _parse_items(items)
    stitch_config = _to_config(_parse_form_json(StitchConfigIn, config, "config"))
    refs = await _item_refs(parsed_items, images or [])

    encoded = await _run_export(
        generate_stitched_image(refs, [_to_item(item) for item in parsed_items], stitch_config, output_width)
    )
    export = await _run_export(
        store.save_export(str(uuid4()), ExportKind.STITCH, [encoded], scale=encoded.scale)
    )
    return _to_detail(export)


@router.post(
    "/exports/{export_id}/tiles/{index}/story",
    response_model=ExportDetail,
    status_code=status.HTTP_201_CREATED,
    tags=["stitch"],
    summary="Build a story that starts with one nine-grid tile",
)
async def create_tile_story(
    export_id: str,
    index: int,
    images: list[UploadFile] | None = File(default=None, description="Uploaded images, referenced by index."),
    items: str = Form(default="[]", description="JSON-encoded items stacked below the tile."),
    config: str = Form(default="{}", description="JSON-encoded padding, spacing and background color."),
    output_width: int | None = Form(default=None, gt=0, description="Output width in pixels."),
    store: ExportStore = Depends(get_export_store),
) -> ExportDetail:
    """
    Stitch a tile of a previous nine-grid export with further images.

    The tile always comes first as a centered square slot; only the items
    below it can be cropped, moved or zoomed.
    """
    export = await _require_export(store, export_id)
    if export.kind is not ExportKind.NINE_GRID or not 0 <= index < len(export.files):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Tile not found.",
        )

    parsed_items = _parse_items(items, allow_empty=True)
    stitch_config = _to_config(_parse_form_json(StitchConfigIn, config, "config"))
    refs = await _item_refs(parsed_items, images or [])

    encoded = await _run_export(
        generate_moment_story(
            index,
            Path(export.files[index].path),
            refs,
            [_to_item(item) for item in parsed_items],
            stitch_config,
            output_width,
        )
    )
    story = await _run_export(
        store.save_export(
            str(uuid4()),
            ExportKind.STORY,
            [encoded],
            scale=encoded.scale,
            parent_id=export.id,
            tile_index=index,
        )
    )
    return _to_detail(story)


@router.get(
    "/exports",
    response_model=list[ExportSummary],
    tags=["exports"],
    summary="List exports (development use)",
)
async def list_exports(store: ExportStore = Depends(get_export_store)) -> list[ExportSummary]:
    """List all exports made since the service started."""
    exports = await store.list_exports()
    return [ExportSummary.model_validate(export) for export in exports]


@router.get(
    "/exports/{export_id}",
    response_model=ExportDetail,
    tags=["exports"],
    summary="Get details for a specific export",
)
async def get_export(export_id: str, store: ExportStore = Depends(get_export_store)) -> ExportDetail:
    """Return the files of an export; file paths on disk are never exposed."""
    return _to_detail(await _require_export(store, export_id))


@router.get(
    "/exports/{export_id}/files/{index}",
    response_class=FileResponse,
    tags=["exports"],
    summary="Download one PNG of an export",
)
async def download_export_file(
    export_id: str,
    index: int,
    store: ExportStore = Depends(get_export_store),
) -> FileResponse:
    export = await _require_export(store, export_id)
    if not 0 <= index < len(export.files):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="File not found.",
        )
    path = Path(export.files[index].path)
    return FileResponse(path, media_type="image/png", filename=f"{export.kind.value}_{index + 1}.png")


@router.post(
    "/snap",
    response_model=SnapResponse,
    tags=["stitch"],
    summary="Apply one snap-assisted zoom step",
)
async def snap_zoom(request: SnapRequest) -> SnapResponse:
    """
    Clamp `scale + delta` and snap it onto cover (1.0) or contain when close.

    Stateless: `pulse` marks steps that land on a new snap point, and clients
    debounce their own feedback. `state` tells whether the resulting item
    rests on cover or contain.
    """
    slot_aspect = request.ratio.value_ratio() or request.image_aspect
    decision = decide_snap(request.scale, request.delta, request.image_aspect, slot_aspect)
    result = StitchItem(
        id="snap",
        ratio=request.ratio,
        scale=decision.scale,
        x=0.0 if decision.did_snap else request.x,
        y=0.0 if decision.did_snap else request.y,
    )
    return SnapResponse(
        scale=result.scale,
        x=result.x,
        y=result.y,
        target=decision.target,
        did_snap=decision.did_snap,
        pulse=decision.did_snap and decision.changed,
        state=snap_state(result, request.image_aspect),
    )

