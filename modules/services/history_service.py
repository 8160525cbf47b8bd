"""Per-item transformation history with a single resident payload."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Union

from modules.services.item_registry import Item
from modules.utils.payload_codec import PayloadCodec

logger = logging.getLogger(__name__)

ORIGINAL_LABEL = "Original"


@dataclass(frozen=True, slots=True)
class Resident:
    """Payload still held in memory."""

    payload: str


@dataclass(frozen=True, slots=True)
class Pruned:
    """Payload dropped to bound memory; size and label are kept on the entry."""


PRUNED = Pruned()

PayloadState = Union[Resident, Pruned]


@dataclass(slots=True)
class HistoryEntry:
    """One recorded transformation outcome."""

    state: PayloadState
    byte_size: int
    label: str

    @property
    def payload(self) -> Optional[str]:
        if isinstance(self.state, Resident):
            return self.state.payload
        return None

    @property
    def is_pruned(self) -> bool:
        return isinstance(self.state, Pruned)


@dataclass(frozen=True, slots=True)
class HistoryDescriptor:
    """Display summary of an item's current state."""

    label: str
    byte_size: int


class HistoryManager:
    """Append-only history of one item.

    Only the last entry keeps its payload. Appending prunes the payload of the
    previous last entry; entries themselves are never removed or reordered.
    """

    def __init__(self, item: Item, codec: Optional[PayloadCodec] = None) -> None:
        self.item = item
        self.codec = codec or PayloadCodec()

    def __len__(self) -> int:
        return len(self.item.history)

    @property
    def is_empty(self) -> bool:
        return not self.item.history

    def latest(self) -> Optional[HistoryEntry]:
        return self.item.history[-1] if self.item.history else None

    def append(self, payload: str, label: str) -> HistoryEntry:
        """Record a new result and prune the previously current payload."""
        if not payload:
            raise ValueError("Cannot append an empty payload")
        entry = HistoryEntry(state=Resident(payload), byte_size=self.codec.byte_size(payload), label=label)
        history = self.item.history
        if history:
            history[-1].state = PRUNED
        history.append(entry)
        logger.debug("%s: appended '%s' (%d bytes, %d entries)", self.item.id, label, entry.byte_size, len(history))
        return entry

    async def current_payload(self) -> str:
        """Return the current payload, re-reading the original source if needed."""
        latest = self.latest()
        if latest is not None and latest.payload:
            return latest.payload
        if latest is not None:
            logger.warning("%s: latest entry '%s' is pruned, reloading the original", self.item.id, latest.label)
        source = self.item.source
        raw = await source.read_bytes()
        return self.codec.encode(raw, source.content_type)

    def current_descriptor(self) -> HistoryDescriptor:
        latest = self.latest()
        if latest is None:
            return HistoryDescriptor(label=ORIGINAL_LABEL, byte_size=self.item.source.size)
        return HistoryDescriptor(label=latest.label, byte_size=latest.byte_size)
