from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import Dict, List, Sequence

from slicestitch.api.v1.schemas import ExportKind
from slicestitch.models.compose import EncodedImage
from slicestitch.models.exports import Export, ExportedFile


class ExportStorageError(RuntimeError):
    """Raised when an export cannot be written to disk."""


class ExportStore:
    """
    Simple in-memory export registry with filesystem-backed PNG storage.

    Nothing survives a restart; exports exist so clients can download the
    files of a single session.
    """

    def __init__(self, base_dir: Path) -> None:
        self._base_dir = base_dir
        self._exports: Dict[str, Export] = {}
        self._base_dir.mkdir(parents=True, exist_ok=True)

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    async def save_export(
        self,
        export_id: str,
        kind: ExportKind,
        images: Sequence[EncodedImage],
        scale: float = 1.0,
        parent_id: str | None = None,
        tile_index: int | None = None,
    ) -> Export:
        """
        Persist encoded images under `<base_dir>/<export_id>/` and register them.

        Streamed images are moved rather than copied; on failure any streamed
        file that was not moved yet is deleted.
        """
        export_dir = self._base_dir / export_id

        files: List[ExportedFile] = []
        try:
            export_dir.mkdir(parents=True, exist_ok=True)
            for index, image in enumerate(images):
                target = export_dir / f"{kind.value}_{index}.png"
                if image.path is not None:
                    shutil.move(str(image.path), target)
                else:
                    target.write_bytes(image.read_bytes())
                files.append(ExportedFile(path=str(target), width=image.width, height=image.height))
        except OSError as exc:
            for image in images:
                if image.path is not None:
                    image.path.unlink(missing_ok=True)
            raise ExportStorageError("Failed to persist export files to disk.") from exc

        export = Export(
            id=export_id,
            kind=kind,
            files=files,
            scale=scale,
            parent_id=parent_id,
            tile_index=tile_index,
        )
        self._exports[export.id] = export
        return export

    async def get_export(self, export_id: str) -> Export | None:
        """Retrieve an export by its identifier, if it exists."""
        return self._exports.get(export_id)

    async def list_exports(self) -> List[Export]:
        """Return all known exports. Intended for debugging."""
        return list(self._exports.values())


_default_store: ExportStore | None = None


def get_export_store() -> ExportStore:
    """
    Return the process-wide export store, creating it on first use.

    Tests replace it through FastAPI's dependency overrides.
    """
    global _default_store
    if _default_store is None:
        _default_store = ExportStore(base_dir=Path(os.getenv("SLICESTITCH_STORAGE_DIR", "storage/exports")))
    return _default_store
