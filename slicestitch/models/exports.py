from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List

from slicestitch.api.v1.schemas import ExportKind


def utcnow() -> datetime:
    """Return an explicit, timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class ExportedFile:
    """One PNG written to disk for an export."""

    path: str
    width: int
    height: int


@dataclass(slots=True)
class Export:
    """
    Internal record of a finished export.

    Kept separate from the API schemas so storage details (file paths) never
    leak into responses.
    """

    id: str
    kind: ExportKind
    files: List[ExportedFile] = field(default_factory=list)
    # Physical/logical scale of the output; below 1.0 after a safety downscale.
    scale: float = 1.0
    # For stories: which export and tile the anchor came from.
    parent_id: str | None = None
    tile_index: int | None = None
    created_at: datetime = field(default_factory=utcnow)
