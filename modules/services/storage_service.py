"""File storage helpers for exported artifacts."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from modules.errors import UserCancelledError
from modules.services.export_service import Artifact

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SaveReceipt:
    """Where an artifact ended up."""

    path: Path
    used_fallback: bool = False


def _write(directory: Path, artifact: Artifact) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    target = directory / artifact.name
    target.write_bytes(artifact.data)
    return target


class StorageService:
    """Save artifacts to a granted directory, falling back to the download folder.

    The download folder is the hand-off point to the user-facing save
    mechanism; the UI serves files from there as downloads.
    """

    def __init__(self, download_dir: Path, export_dir: Optional[Path] = None) -> None:
        self.download_dir = Path(download_dir)
        self.export_dir: Optional[Path] = Path(export_dir) if export_dir else None

    def select_directory(self, selection: Optional[str | Path]) -> Path:
        """Grant write access to ``selection``; ``None`` means the user cancelled."""
        if selection is None or str(selection).strip() == "":
            raise UserCancelledError("Directory selection cancelled")
        directory = Path(selection).expanduser()
        if not directory.is_dir():
            raise NotADirectoryError(f"Not a directory: {directory}")
        if not os.access(directory, os.W_OK):
            self.export_dir = None
            raise PermissionError(f"Permission to write to {directory} was denied.")
        self.export_dir = directory
        logger.info("Exports will be written to %s", directory)
        return directory

    def clear_directory(self) -> None:
        self.export_dir = None

    async def save(self, artifact: Artifact) -> SaveReceipt:
        """Write ``artifact``; a denied persistent location falls back to downloads."""
        if self.export_dir is not None:
            try:
                path = await asyncio.to_thread(_write, self.export_dir, artifact)
            except PermissionError as exc:
                logger.warning(
                    "Error saving %s to %s, falling back to the download folder: %s",
                    artifact.name,
                    self.export_dir,
                    exc,
                )
            else:
                return SaveReceipt(path=path)
        path = await asyncio.to_thread(_write, self.download_dir, artifact)
        return SaveReceipt(path=path, used_fallback=self.export_dir is not None)
