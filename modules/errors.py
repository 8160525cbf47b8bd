"""Error taxonomy shared by the processing engine."""

from __future__ import annotations

from typing import Optional


class StudioError(Exception):
    """Base class for errors raised by the processing engine."""


class ValidationError(StudioError, ValueError):
    """Ingested content is not an image."""

    def __init__(self, name: str, content_type: str) -> None:
        self.name = name
        self.content_type = content_type
        super().__init__(f"File is not a valid image: {name} ({content_type or 'unknown type'})")


class ItemNotFoundError(StudioError, KeyError):
    """No item with the requested id is registered."""

    def __init__(self, item_id: str) -> None:
        self.item_id = item_id
        super().__init__(item_id)

    def __str__(self) -> str:
        return f"Unknown item: {self.item_id}"


class CapabilityError(StudioError):
    """A remote capability failed or returned no usable content."""

    def __init__(self, reason: str, quota_exhausted: bool = False) -> None:
        self.reason = reason
        self.quota_exhausted = quota_exhausted
        super().__init__(reason)


class TransformationError(StudioError, RuntimeError):
    """A pipeline stage failed; carries the stage label and the reason."""

    def __init__(
        self,
        stage_label: str,
        reason: str,
        item_name: Optional[str] = None,
        completed_stages: int = 0,
    ) -> None:
        self.stage_label = stage_label
        self.reason = reason
        self.item_name = item_name
        self.completed_stages = completed_stages
        target = f" on {item_name}" if item_name else ""
        super().__init__(f"{stage_label} failed{target}: {reason}")


class QuotaExhaustedError(TransformationError):
    """The remote service refused the call because quota or rate limit ran out."""

    guidance = (
        "The API key has no remaining quota for this model. "
        "Wait for the rate limit window to reset, upgrade the plan or configure a key with access."
    )


class MemoryPrunedError(StudioError):
    """The payload requested for export has been pruned from memory."""

    def __init__(self, item_id: str, label: str) -> None:
        self.item_id = item_id
        self.label = label
        super().__init__(
            f"The data for '{label}' ({item_id}) has been pruned to save memory and cannot be exported."
        )


class UserCancelledError(StudioError):
    """The user dismissed a destination selection flow."""
