from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import os
import struct
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import List, Sequence, Union

import numpy as np
import requests
from PIL import Image, ImageOps, UnidentifiedImageError
from psd_tools import PSDImage

from slicestitch.models.compose import RasterHandle
from slicestitch.services.errors import DecodeError


logger = logging.getLogger(__name__)

REMOTE_TIMEOUT = float(os.getenv("SLICESTITCH_REMOTE_TIMEOUT", "15"))
# Largest remote body accepted, in bytes.
REMOTE_MAX_BYTES = int(os.getenv("SLICESTITCH_REMOTE_MAX_BYTES", str(50 * 1024 * 1024)))

_DOWNLOAD_CHUNK = 64 * 1024

_PSD_SIGNATURE = b"8BPS"


@dataclass(slots=True, frozen=True)
class LocalHandle:
    """Bytes that are already local to the process, e.g. an uploaded file."""

    data: bytes
    name: str = "upload"


ImageRef = Union[LocalHandle, str, Path]


def describe_ref(ref: ImageRef) -> str:
    """Short, log-safe description of a reference (data URLs are truncated)."""
    if isinstance(ref, LocalHandle):
        return ref.name
    text = str(ref)
    if text.startswith("data:"):
        return text[:32] + "..."
    return text


def _decode_data_url(url: str) -> bytes:
    header, _, payload = url.partition(",")
    if not header.endswith(";base64"):
        raise DecodeError(describe_ref(url), "only base64 data URLs are supported")
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecodeError(describe_ref(url), "malformed base64 payload") from exc


def _fetch_remote(url: str) -> bytes:
    """
    Download a remote image anonymously.

    A fresh session is used for every fetch, so no cookies or credentials
    from other requests are ever attached, and the result stays exportable.
    """
    chunks: List[bytes] = []
    with requests.Session() as session:
        session.trust_env = False
        try:
            with session.get(url, timeout=REMOTE_TIMEOUT, stream=True) as response:
                response.raise_for_status()
                declared = response.headers.get("Content-Length", "")
                if declared.isdigit() and int(declared) > REMOTE_MAX_BYTES:
                    raise DecodeError(url, f"remote image is larger than {REMOTE_MAX_BYTES} bytes")
                received = 0
                for chunk in response.iter_content(chunk_size=_DOWNLOAD_CHUNK):
                    received += len(chunk)
                    if received > REMOTE_MAX_BYTES:
                        raise DecodeError(url, f"remote image is larger than {REMOTE_MAX_BYTES} bytes")
                    chunks.append(chunk)
        except requests.RequestException as exc:
            raise DecodeError(url, f"download failed ({exc})") from exc
    return b"".join(chunks)


def _read_bytes(ref: ImageRef) -> bytes:
    """
    Fetch the encoded bytes behind a reference.

    Strings are client supplied and must be ``data:`` or ``http(s)`` URLs;
    only `Path` objects, which the service builds itself, are read from disk.
    """
    if isinstance(ref, LocalHandle):
        return ref.data
    if isinstance(ref, Path):
        try:
            return ref.read_bytes()
        except OSError as exc:
            raise DecodeError(str(ref), f"cannot read file ({exc.strerror or exc})") from exc
    if ref.startswith("data:"):
        return _decode_data_url(ref)
    if ref.startswith(("http://", "https://")):
        return _fetch_remote(ref)
    raise DecodeError(describe_ref(ref), "only data: and http(s) URLs are accepted")


def _open_image(data: bytes) -> Image.Image:
    if data.startswith(_PSD_SIGNATURE):
        try:
            psd = PSDImage.open(BytesIO(data))
        except AssertionError as exc:
            # psd-tools validates section sizes with assert statements.
            raise ValueError(f"malformed PSD document ({exc})") from exc
        composite = psd.composite()
        if composite is None:
            raise ValueError("PSD document has no visible pixels")
        return composite
    image = Image.open(BytesIO(data))
    image.load()
    # Browsers honour EXIF orientation when displaying photos; match that.
    return ImageOps.exif_transpose(image)


def decode_image(data: bytes, source: str = "") -> RasterHandle:
    """Decode encoded image bytes into an RGBA raster."""
    if not data:
        raise DecodeError(source, "empty payload")
    try:
        image = _open_image(data)
        rgba = image.convert("RGBA")
    except (UnidentifiedImageError, Image.DecompressionBombError) as exc:
        raise DecodeError(source, str(exc) or "unsupported format") from exc
    except (OSError, ValueError, SyntaxError, EOFError, struct.error) as exc:
        # Pillow reports truncated and corrupt files through these.
        raise DecodeError(source, f"corrupt image data ({exc})") from exc

    if rgba.width <= 0 or rgba.height <= 0:
        raise DecodeError(source, "image has zero width or height")

    pixels = np.array(rgba, dtype=np.uint8)
    return RasterHandle(pixels=pixels, source=source)


def load_image(ref: ImageRef) -> RasterHandle:
    """
    Resolve a reference to a decoded raster with known intrinsic size.

    Raises DecodeError for network failures, missing files and data Pillow
    cannot decode; the caller must abandon the whole export.
    """
    source = describe_ref(ref)
    try:
        raster = decode_image(_read_bytes(ref), source=source)
    except DecodeError:
        logger.error("Failed to load image from %s", source)
        raise
    logger.debug("Loaded %s (%dx%d)", source, raster.width, raster.height)
    return raster


async def load_images(refs: Sequence[ImageRef]) -> List[RasterHandle]:
    """
    Decode every reference concurrently.

    Results keep the order of `refs`; the first failure fails the whole batch.
    """
    return list(await asyncio.gather(*(asyncio.to_thread(load_image, ref) for ref in refs)))
