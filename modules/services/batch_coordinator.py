"""Sequential batch execution with progress reporting and abort-on-failure."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Sequence

from modules.errors import StudioError, TransformationError
from modules.pipelines.transformation import PipelineResult, Stage, TransformationPipeline
from modules.services.item_registry import Item, ItemRegistry

logger = logging.getLogger(__name__)

COMPLETION_LABEL = "Saving results"


@dataclass(slots=True)
class BatchProgress:
    """Cursor consumed by progress observers; ``current_index`` is 1-based."""

    current_index: int = 0
    total: int = 0
    current_label: str = ""

    @property
    def message(self) -> str:
        if not self.total:
            return ""
        return f"[{self.current_index}/{self.total}] {self.current_label}"


ProgressObserver = Callable[[BatchProgress], None]
ItemCompletedHook = Callable[[Item, PipelineResult], Awaitable[None]]


@dataclass(slots=True)
class BatchJob:
    """A requested operation over an ordered set of items."""

    target_ids: Sequence[str]
    stages: Sequence[Stage]
    description: str = ""
    progress: BatchProgress = field(default_factory=BatchProgress)
    on_item_completed: Optional[ItemCompletedHook] = None

    def __post_init__(self) -> None:
        if not self.stages:
            raise ValueError("A batch job needs at least one stage")
        if not self.description:
            self.description = " → ".join(stage.label for stage in self.stages)


class BatchStatus(str, Enum):
    EMPTY = "empty"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass(slots=True)
class BatchOutcome:
    """Which items finished, which failed and which were never attempted."""

    completed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    not_attempted: List[str] = field(default_factory=list)
    failed_item_id: Optional[str] = None
    error: Optional[TransformationError] = None
    results: List[PipelineResult] = field(default_factory=list)

    @property
    def status(self) -> BatchStatus:
        if self.error is not None:
            return BatchStatus.PARTIAL if self.completed else BatchStatus.FAILED
        if self.completed:
            return BatchStatus.COMPLETED
        return BatchStatus.EMPTY

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def summary(self) -> str:
        parts = [f"{len(self.completed)} completed"]
        if self.error is not None:
            parts.append(f"failed at {self.error.item_name or self.failed_item_id}: {self.error}")
        if self.not_attempted:
            parts.append(f"{len(self.not_attempted)} not attempted")
        if self.skipped:
            parts.append(f"{len(self.skipped)} missing")
        return ", ".join(parts)


class BatchCoordinator:
    """Apply a job's stages to each target item, one item at a time."""

    def __init__(
        self,
        registry: ItemRegistry,
        pipeline: TransformationPipeline,
        observer: Optional[ProgressObserver] = None,
    ) -> None:
        self.registry = registry
        self.pipeline = pipeline
        self.observer = observer

    async def run(self, job: BatchJob) -> BatchOutcome:
        """Process ``job.target_ids`` in order, stopping at the first failing item."""
        outcome = BatchOutcome()
        target_ids = list(job.target_ids)
        if not target_ids:
            return outcome

        total = len(target_ids)
        logger.info("Starting batch '%s' over %d item(s)", job.description, total)
        for index, item_id in enumerate(target_ids, start=1):
            item = self.registry.get(item_id)
            if item is None:
                logger.warning("Skipping unknown item %s", item_id)
                outcome.skipped.append(item_id)
                continue

            job.progress.current_index = index
            job.progress.total = total
            job.progress.current_label = f"{job.description}: {item.name}"
            self._notify(job.progress)

            try:
                result = await self.pipeline.run(item, job.stages)
            except TransformationError as exc:
                return self._abort(outcome, job, item, exc, target_ids[index:])

            outcome.results.append(result)
            if job.on_item_completed is not None:
                try:
                    await job.on_item_completed(item, result)
                except (StudioError, OSError) as exc:
                    error = TransformationError(
                        COMPLETION_LABEL, str(exc) or type(exc).__name__, item.name, result.completed_stages
                    )
                    error.__cause__ = exc
                    return self._abort(outcome, job, item, error, target_ids[index:])
            outcome.completed.append(item_id)

        logger.info("Finished batch '%s': %s", job.description, outcome.summary())
        return outcome

    def _abort(
        self,
        outcome: BatchOutcome,
        job: BatchJob,
        item: Item,
        error: TransformationError,
        remaining: List[str],
    ) -> BatchOutcome:
        logger.error("Batch '%s' aborted at %s: %s", job.description, item.name, error)
        outcome.failed_item_id = item.id
        outcome.error = error
        outcome.not_attempted = remaining
        return outcome

    def _notify(self, progress: BatchProgress) -> None:
        if self.observer is not None:
            self.observer(progress)
