"""Ingested items and the display handles derived from them."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Tuple

from PIL import Image

from modules.errors import ItemNotFoundError, ValidationError
from modules.utils.image_utils import generate_thumbnail, guess_content_type, is_image_type

if TYPE_CHECKING:
    from modules.services.history_service import HistoryEntry

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SourceHandle:
    """Reference to the original, unmodified file content."""

    name: str
    content_type: str
    size: int
    path: Optional[Path] = None
    data: Optional[bytes] = field(default=None, repr=False)

    @classmethod
    def from_path(cls, path: Path, content_type: Optional[str] = None) -> "SourceHandle":
        path = Path(path)
        return cls(
            name=path.name,
            content_type=content_type or guess_content_type(path.name),
            size=path.stat().st_size,
            path=path,
        )

    @classmethod
    def from_bytes(cls, name: str, data: bytes, content_type: Optional[str] = None) -> "SourceHandle":
        return cls(
            name=name,
            content_type=content_type or guess_content_type(name),
            size=len(data),
            data=bytes(data),
        )

    async def read_bytes(self) -> bytes:
        """Load the original content; file reads run off the event loop."""
        if self.data is not None:
            return self.data
        if self.path is None:
            raise ValueError(f"Source '{self.name}' has neither a path nor in-memory data")
        return await asyncio.to_thread(self.path.read_bytes)


class ThumbnailHandle:
    """Revocable display reference shared with the presentation layer."""

    def __init__(self, handle_id: str, source: SourceHandle, max_size: Tuple[int, int]) -> None:
        self.handle_id = handle_id
        self._source = source
        self._max_size = max_size
        self._image: Optional[Image.Image] = None
        self.released = False

    async def render(self) -> Image.Image:
        """Return the thumbnail image, building it on first use."""
        if self.released:
            raise RuntimeError(f"Thumbnail handle {self.handle_id} has been released")
        if self._image is None:
            raw = await self._source.read_bytes()
            self._image = await asyncio.to_thread(generate_thumbnail, raw, self._max_size)
        return self._image

    def release(self) -> None:
        if self.released:
            raise RuntimeError(f"Thumbnail handle {self.handle_id} released twice")
        self.released = True
        if self._image is not None:
            self._image.close()
            self._image = None


@dataclass(slots=True)
class Item:
    """One ingested image and its transformation lineage."""

    id: str
    source: SourceHandle
    thumbnail: ThumbnailHandle
    history: List["HistoryEntry"] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.source.name


@dataclass(slots=True)
class IngestReport:
    """Outcome of a multi-file ingestion."""

    items: List[Item] = field(default_factory=list)
    failures: List[Tuple[str, Exception]] = field(default_factory=list)

    @property
    def failed_names(self) -> List[str]:
        return [name for name, _ in self.failures]


class ItemRegistry:
    """Owns the ingested items and their thumbnail handles."""

    def __init__(self, thumbnail_size: Tuple[int, int] = (256, 256)) -> None:
        self.thumbnail_size = thumbnail_size
        self._items: Dict[str, Item] = {}
        self._live_handles: Dict[str, ThumbnailHandle] = {}

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._items

    def ids(self) -> List[str]:
        return list(self._items)

    def items(self) -> List[Item]:
        return list(self._items.values())

    def get(self, item_id: str) -> Optional[Item]:
        return self._items.get(item_id)

    def require(self, item_id: str) -> Item:
        item = self._items.get(item_id)
        if item is None:
            raise ItemNotFoundError(item_id)
        return item

    def outstanding_handles(self) -> set[str]:
        """Return ids of thumbnail handles that have not been released yet."""
        return set(self._live_handles)

    def ingest(self, source: SourceHandle) -> Item:
        """Register an image; non-image content leaves the registry unchanged."""
        if not is_image_type(source.content_type):
            raise ValidationError(source.name, source.content_type)

        item_id = f"{source.name}-{uuid.uuid4().hex[:12]}"
        while item_id in self._items:
            item_id = f"{source.name}-{uuid.uuid4().hex[:12]}"
        thumbnail = ThumbnailHandle(item_id, source, self.thumbnail_size)
        item = Item(id=item_id, source=source, thumbnail=thumbnail)
        self._items[item_id] = item
        self._live_handles[item_id] = thumbnail
        logger.info("Ingested %s (%s, %d bytes) as %s", source.name, source.content_type, source.size, item_id)
        return item

    def ingest_path(self, path: Path, content_type: Optional[str] = None) -> Item:
        return self.ingest(SourceHandle.from_path(path, content_type))

    def ingest_bytes(self, name: str, data: bytes, content_type: Optional[str] = None) -> Item:
        return self.ingest(SourceHandle.from_bytes(name, data, content_type))

    async def ingest_many(self, sources: Iterable[SourceHandle | Path]) -> IngestReport:
        """Ingest several files independently, collecting per-file failures."""
        pending = list(sources)

        async def _prepare(entry: SourceHandle | Path) -> SourceHandle:
            if isinstance(entry, SourceHandle):
                return entry
            return await asyncio.to_thread(SourceHandle.from_path, Path(entry))

        prepared = await asyncio.gather(*(_prepare(entry) for entry in pending), return_exceptions=True)

        report = IngestReport()
        # Insertion happens here, after every await, so it is serialized in input order.
        for entry, result in zip(pending, prepared):
            name = entry.name
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning("Could not read %s: %s", name, result)
                report.failures.append((name, result))
                continue
            try:
                report.items.append(self.ingest(result))
            except ValidationError as exc:
                logger.warning("Rejected %s: %s", name, exc)
                report.failures.append((name, exc))
        return report

    def remove(self, item_id: str) -> None:
        """Release the item's thumbnail, then discard the item."""
        item = self.require(item_id)
        self._release(item_id)
        del self._items[item.id]
        logger.info("Removed %s", item_id)

    def release_all(self) -> None:
        """Release every outstanding thumbnail handle and forget all items."""
        for handle_id in list(self._live_handles):
            self._release(handle_id)
        self._items.clear()

    def _release(self, handle_id: str) -> None:
        handle = self._live_handles.pop(handle_id, None)
        if handle is not None:
            handle.release()
