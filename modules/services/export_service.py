"""Materialize current payloads as downloadable artifacts and bundles."""

from __future__ import annotations

import io
import logging
import zipfile
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

from modules.errors import MemoryPrunedError
from modules.pipelines.transformation import OCR_LABEL, TextResultSink
from modules.services.history_service import ORIGINAL_LABEL, HistoryManager
from modules.services.item_registry import Item, ItemRegistry
from modules.utils.image_utils import sanitize_name, split_name
from modules.utils.payload_codec import PayloadCodec

logger = logging.getLogger(__name__)

IMAGES_ARCHIVE_NAME = "processed_images.zip"
OCR_ARCHIVE_NAME = "ocr_results.zip"


@dataclass(frozen=True, slots=True)
class Artifact:
    """A named binary ready to be written somewhere."""

    name: str
    data: bytes = field(repr=False)
    content_type: str = "application/octet-stream"


@dataclass(frozen=True, slots=True)
class SkippedExport:
    item_id: str
    reason: MemoryPrunedError


@dataclass(slots=True)
class Bundle:
    """Artifacts gathered for a multi-item export plus the items left out."""

    artifacts: List[Artifact] = field(default_factory=list)
    skipped: List[SkippedExport] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.artifacts)

    def names(self) -> List[str]:
        return [artifact.name for artifact in self.artifacts]

    def to_archive(self, name: str = IMAGES_ARCHIVE_NAME) -> Artifact:
        return Artifact(
            name=name,
            data=build_archive((artifact.name, artifact.data) for artifact in self.artifacts),
            content_type="application/zip",
        )


def build_archive(entries: Iterable[Tuple[str, bytes]]) -> bytes:
    """Combine ``(name, binary)`` pairs into one zip archive."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for name, data in entries:
            archive.writestr(name, data)
    return buffer.getvalue()


def derived_name(file_name: str, label: str) -> str:
    """``receipt.jpg`` + ``Enhanced for OCR`` -> ``receipt_Enhanced_for_OCR.jpg``."""
    base_name, extension = split_name(file_name)
    return f"{base_name}_{sanitize_name('_'.join(label.split()))}{extension}"


class ExportAssembler:
    """Read the latest history entries of items and turn them into artifacts."""

    def __init__(
        self,
        registry: ItemRegistry,
        sink: Optional[TextResultSink] = None,
        codec: Optional[PayloadCodec] = None,
    ) -> None:
        self.registry = registry
        self.sink = sink
        self.codec = codec or PayloadCodec()

    async def export_one(self, item_id: str) -> Artifact:
        """Return the current result of an item, or its original when untouched."""
        item = self.registry.require(item_id)
        latest = HistoryManager(item, self.codec).latest()
        if latest is None:
            data = await item.source.read_bytes()
            return Artifact(name=item.name, data=data, content_type=item.source.content_type)
        return self._artifact_for_latest(item)

    async def export_many(self, item_ids: Sequence[str]) -> Bundle:
        """Collect current results; pruned items are reported in ``skipped``."""
        bundle = Bundle()
        for item_id in item_ids:
            item = self.registry.get(item_id)
            if item is None:
                continue
            if not item.history:
                base_name, extension = split_name(item.name)
                data = await item.source.read_bytes()
                bundle.artifacts.append(
                    Artifact(f"{base_name}_{ORIGINAL_LABEL}{extension}", data, item.source.content_type)
                )
                continue
            try:
                bundle.artifacts.append(self._artifact_for_latest(item))
            except MemoryPrunedError as exc:
                logger.warning("Leaving %s out of the bundle: %s", item.name, exc)
                bundle.skipped.append(SkippedExport(item_id=item_id, reason=exc))
        return bundle

    def export_text_results(self, item_ids: Sequence[str], label: str = OCR_LABEL) -> Bundle:
        """Collect ``<base>_OCR_TEXT.txt`` files for items that have text results."""
        bundle = Bundle()
        if self.sink is None:
            return bundle
        for item_id in item_ids:
            result = self.sink.get(item_id, label)
            if result is None:
                continue
            base_name, _ = split_name(result.item_name)
            bundle.artifacts.append(
                Artifact(f"{base_name}_{label}_TEXT.txt", result.text.encode("utf-8"), "text/plain")
            )
        return bundle

    def _artifact_for_latest(self, item: Item) -> Artifact:
        latest = item.history[-1]
        if latest.payload is None:
            raise MemoryPrunedError(item.id, latest.label)
        mime_type, _ = self.codec.split(latest.payload)
        return Artifact(
            name=derived_name(item.name, latest.label),
            data=self.codec.decode(latest.payload),
            content_type=mime_type,
        )
