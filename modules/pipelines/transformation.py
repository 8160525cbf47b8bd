"""Ordered chains of remote capability calls over one item."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from modules.errors import CapabilityError, QuotaExhaustedError, TransformationError
from modules.pipelines.capabilities import CapabilityClient
from modules.services.history_service import HistoryManager
from modules.services.item_registry import Item
from modules.utils.payload_codec import PayloadCodec

logger = logging.getLogger(__name__)

PREPROCESS_LABEL = "Preprocessed"
ENHANCE_LABEL = "Enhanced for OCR"
OCR_LABEL = "OCR"
ANALYSIS_LABEL = "Analysis"


class StageKind(str, Enum):
    """What a stage produces."""

    IMAGE = "image"
    TEXT = "text"


@dataclass(frozen=True, slots=True)
class Stage:
    """A named remote capability applied to the current payload."""

    label: str
    kind: StageKind
    run: Callable[[str], Awaitable[str]]


@dataclass(frozen=True, slots=True)
class TextResult:
    """Text produced for an item by an image-to-text stage."""

    item_id: str
    item_name: str
    label: str
    text: str


class TextResultSink:
    """Text results keyed by item id, kept apart from the image lineage."""

    def __init__(self) -> None:
        self._results: Dict[str, Dict[str, TextResult]] = {}

    def put(self, result: TextResult) -> None:
        self._results.setdefault(result.item_id, {})[result.label] = result

    def get(self, item_id: str, label: str = OCR_LABEL) -> Optional[TextResult]:
        return self._results.get(item_id, {}).get(label)

    def has(self, item_id: str, label: str = OCR_LABEL) -> bool:
        return self.get(item_id, label) is not None

    def discard(self, item_id: str) -> None:
        self._results.pop(item_id, None)


@dataclass(slots=True)
class PipelineResult:
    """Stages completed for one item in one run."""

    item_id: str
    appended: List[str] = field(default_factory=list)
    texts: List[TextResult] = field(default_factory=list)

    @property
    def completed_stages(self) -> int:
        return len(self.appended) + len(self.texts)


def truncate_prompt(prompt: str, max_chars: int = 30) -> str:
    """Shorten a prompt for use in a history label."""
    cleaned = " ".join(prompt.split())
    if len(cleaned) <= max_chars:
        return cleaned
    return f"{cleaned[:max_chars]}..."


class TransformationPipeline:
    """Run stages in order, committing every image result before the next stage."""

    def __init__(self, sink: TextResultSink, codec: Optional[PayloadCodec] = None) -> None:
        self.sink = sink
        self.codec = codec or PayloadCodec()

    async def run(self, item: Item, stages: Sequence[Stage]) -> PipelineResult:
        """Apply ``stages`` to ``item``; the first failing stage raises TransformationError."""
        history = HistoryManager(item, self.codec)
        result = PipelineResult(item_id=item.id)
        for stage in stages:
            payload = await history.current_payload()
            logger.info("%s: running stage '%s'", item.name, stage.label)
            output = await self._invoke(stage, payload, item, result)
            if stage.kind is StageKind.IMAGE:
                history.append(output, stage.label)
                result.appended.append(stage.label)
            else:
                text_result = TextResult(item_id=item.id, item_name=item.name, label=stage.label, text=output)
                self.sink.put(text_result)
                result.texts.append(text_result)
        return result

    async def _invoke(self, stage: Stage, payload: str, item: Item, result: PipelineResult) -> str:
        try:
            output = await stage.run(payload)
        except CapabilityError as exc:
            error_cls = QuotaExhaustedError if exc.quota_exhausted else TransformationError
            raise error_cls(stage.label, exc.reason, item.name, result.completed_stages) from exc
        except Exception as exc:  # noqa: BLE001 - any capability failure stops the chain
            raise TransformationError(stage.label, str(exc) or type(exc).__name__, item.name, result.completed_stages) from exc

        if stage.kind is StageKind.IMAGE and not self.codec.is_payload(output):
            raise TransformationError(stage.label, "No usable image was returned.", item.name, result.completed_stages)
        if stage.kind is StageKind.TEXT and not isinstance(output, str):
            raise TransformationError(stage.label, "No text was returned.", item.name, result.completed_stages)
        return output


def preprocess_stage(client: CapabilityClient) -> Stage:
    return Stage(PREPROCESS_LABEL, StageKind.IMAGE, client.preprocess)


def enhance_stage(client: CapabilityClient) -> Stage:
    return Stage(ENHANCE_LABEL, StageKind.IMAGE, client.enhance_for_ocr)


def ocr_stage(client: CapabilityClient) -> Stage:
    return Stage(OCR_LABEL, StageKind.TEXT, client.perform_ocr)


def edit_stage(client: CapabilityClient, prompt: str, max_chars: int = 30) -> Stage:
    async def _edit(payload: str) -> str:
        return await client.edit(payload, prompt)

    return Stage(f"Edited: {truncate_prompt(prompt, max_chars)}", StageKind.IMAGE, _edit)


def analyze_stage(client: CapabilityClient, prompt: str) -> Stage:
    async def _analyze(payload: str) -> str:
        return await client.analyze(payload, prompt)

    return Stage(ANALYSIS_LABEL, StageKind.TEXT, _analyze)


def auto_process_stages(client: CapabilityClient) -> List[Stage]:
    """Perspective correction, OCR enhancement, then text extraction."""
    return [preprocess_stage(client), enhance_stage(client), ocr_stage(client)]
