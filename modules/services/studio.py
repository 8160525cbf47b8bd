"""Engine object owning the registry, pipelines, batches and exports."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from config.settings import AppConfig
from modules.errors import CapabilityError, QuotaExhaustedError, TransformationError, UserCancelledError
from modules.pipelines.capabilities import CapabilityClient
from modules.pipelines.transformation import (
    ANALYSIS_LABEL,
    OCR_LABEL,
    PipelineResult,
    Stage,
    TextResultSink,
    TransformationPipeline,
    analyze_stage,
    auto_process_stages,
    edit_stage,
    enhance_stage,
    ocr_stage,
    preprocess_stage,
    truncate_prompt,
)
from modules.services.batch_coordinator import BatchCoordinator, BatchJob, BatchOutcome, ProgressObserver
from modules.services.export_service import OCR_ARCHIVE_NAME, Artifact, Bundle, ExportAssembler
from modules.services.history_service import HistoryDescriptor, HistoryManager
from modules.services.item_registry import IngestReport, Item, ItemRegistry, SourceHandle
from modules.services.storage_service import SaveReceipt, StorageService
from modules.utils.image_utils import extension_for, safe_file_stem, split_name
from modules.utils.payload_codec import PayloadCodec

logger = logging.getLogger(__name__)

GENERATE_LABEL = "Generate"


class StudioEngine:
    """Explicitly owned state of one processing session."""

    def __init__(
        self,
        config: AppConfig,
        client: Optional[CapabilityClient] = None,
        observer: Optional[ProgressObserver] = None,
    ) -> None:
        self.config = config
        self.codec = PayloadCodec()
        self.registry = ItemRegistry(thumbnail_size=config.thumbnail_size)
        self.sink = TextResultSink()
        self.client = client or CapabilityClient(config, self.codec)
        self.pipeline = TransformationPipeline(self.sink, self.codec)
        self.coordinator = BatchCoordinator(self.registry, self.pipeline, observer)
        self.assembler = ExportAssembler(self.registry, self.sink, self.codec)
        self.storage = StorageService(config.download_dir)

    # Items ----------------------------------------------------------------------
    async def ingest_paths(self, paths: Iterable[Path | str]) -> IngestReport:
        return await self.registry.ingest_many(Path(path) for path in paths)

    def history(self, item_id: str) -> HistoryManager:
        return HistoryManager(self.registry.require(item_id), self.codec)

    def descriptor(self, item_id: str) -> HistoryDescriptor:
        return self.history(item_id).current_descriptor()

    def remove(self, item_id: str) -> None:
        self.registry.remove(item_id)
        self.sink.discard(item_id)

    def shutdown(self) -> None:
        """Release every display handle; call once when the session ends."""
        self.registry.release_all()

    # Transformations ------------------------------------------------------------
    async def run_stages(self, stages: Sequence[Stage], item_ids: Sequence[str], description: str = "") -> BatchOutcome:
        job = BatchJob(target_ids=list(item_ids), stages=list(stages), description=description)
        return await self.coordinator.run(job)

    async def preprocess(self, item_ids: Sequence[str]) -> BatchOutcome:
        return await self.run_stages([preprocess_stage(self.client)], item_ids, "Preprocessing")

    async def enhance(self, item_ids: Sequence[str]) -> BatchOutcome:
        return await self.run_stages([enhance_stage(self.client)], item_ids, "Enhancing")

    async def perform_ocr(self, item_ids: Sequence[str]) -> BatchOutcome:
        return await self.run_stages([ocr_stage(self.client)], item_ids, "Performing OCR")

    async def auto_process(self, item_ids: Sequence[str], save_results: bool = True) -> BatchOutcome:
        """Preprocess, enhance and OCR each item, saving image and text as it completes."""
        job = BatchJob(
            target_ids=list(item_ids),
            stages=auto_process_stages(self.client),
            description="Auto-Process",
            on_item_completed=self._save_item_results if save_results else None,
        )
        return await self.coordinator.run(job)

    async def edit(self, item_id: str, prompt: str) -> BatchOutcome:
        stage = edit_stage(self.client, prompt, self.config.label_prompt_chars)
        return await self.run_stages([stage], [item_id], "Editing")

    async def analyze(self, item_id: str, prompt: str) -> str:
        """Run a free-form analysis; the answer goes to the text sink, not the history."""
        self.registry.require(item_id)
        outcome = await self.run_stages([analyze_stage(self.client, prompt)], [item_id], "Analyzing")
        if outcome.error is not None:
            raise outcome.error
        result = self.sink.get(item_id, ANALYSIS_LABEL)
        return result.text if result else ""

    async def generate(self, prompt: str) -> Item:
        """Create a new item from a prompt; its only history entry is the generated image."""
        label = f"Generated: {truncate_prompt(prompt, self.config.label_prompt_chars)}"
        try:
            payload = await self.client.generate(prompt)
        except CapabilityError as exc:
            error_cls = QuotaExhaustedError if exc.quota_exhausted else TransformationError
            raise error_cls(GENERATE_LABEL, exc.reason) from exc

        mime_type = self.codec.mime_type(payload)
        data = self.codec.decode(payload)
        name = f"{safe_file_stem(prompt, self.config.generated_name_chars)}{extension_for(mime_type)}"
        item = self.registry.ingest(SourceHandle.from_bytes(name, data, mime_type))
        HistoryManager(item, self.codec).append(payload, label)
        return item

    # Exports --------------------------------------------------------------------
    def choose_export_directory(self, selection: Optional[str | Path]) -> Optional[Path]:
        """Grant a persistent export directory; a cancelled selection is ignored."""
        try:
            return self.storage.select_directory(selection)
        except UserCancelledError:
            logger.info("Directory selection cancelled by user.")
            return None

    async def download(self, item_id: str) -> SaveReceipt:
        artifact = await self.assembler.export_one(item_id)
        return await self.storage.save(artifact)

    async def download_bundle(self, item_ids: Sequence[str]) -> tuple[Optional[SaveReceipt], Bundle]:
        bundle = await self.assembler.export_many(item_ids)
        if not bundle.artifacts:
            return None, bundle
        return await self.storage.save(bundle.to_archive()), bundle

    async def download_ocr_text(self, item_ids: Sequence[str]) -> Optional[SaveReceipt]:
        bundle = self.assembler.export_text_results(item_ids)
        if not bundle.artifacts:
            return None
        return await self.storage.save(bundle.to_archive(OCR_ARCHIVE_NAME))

    def item_ids_with_text(self, item_ids: Sequence[str], label: str = OCR_LABEL) -> List[str]:
        return [item_id for item_id in item_ids if self.sink.has(item_id, label)]

    async def _save_item_results(self, item: Item, result: PipelineResult) -> None:
        await self.storage.save(await self.assembler.export_one(item.id))
        text = self.sink.get(item.id, OCR_LABEL)
        if text is not None:
            base_name, _ = split_name(item.name)
            await self.storage.save(Artifact(f"{base_name}_OCR_TEXT.txt", text.text.encode("utf-8"), "text/plain"))
