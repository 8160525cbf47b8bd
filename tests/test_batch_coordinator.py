"""BatchCoordinator tests: ordering, progress and the abort-on-failure policy."""

from __future__ import annotations

import pytest

from modules.errors import TransformationError
from modules.pipelines.transformation import (
    Stage,
    StageKind,
    TextResultSink,
    TransformationPipeline,
    auto_process_stages,
    enhance_stage,
)
from modules.services.batch_coordinator import BatchCoordinator, BatchJob, BatchProgress, BatchStatus
from modules.services.item_registry import ItemRegistry


@pytest.fixture
def registry(png_bytes):
    registry = ItemRegistry()
    for index in range(1, 4):
        registry.ingest_bytes(f"receipt{index}.png", png_bytes)
    return registry


@pytest.fixture
def sink():
    return TextResultSink()


def _coordinator(registry, sink, observer=None):
    return BatchCoordinator(registry, TransformationPipeline(sink), observer)


@pytest.mark.asyncio
async def test_failure_on_second_item_aborts_the_rest(registry, sink, fake_capabilities):
    first, second, third = registry.ids()
    fake_capabilities.fail("enhance", 2)
    job = BatchJob(target_ids=[first, second, third], stages=auto_process_stages(fake_capabilities))

    outcome = await _coordinator(registry, sink).run(job)

    assert outcome.completed == [first]
    assert outcome.failed_item_id == second
    assert isinstance(outcome.error, TransformationError)
    assert outcome.error.stage_label == "Enhanced for OCR"
    assert outcome.not_attempted == [third]
    assert outcome.status is BatchStatus.PARTIAL
    assert [len(registry.get(item_id).history) for item_id in (first, second, third)] == [2, 1, 0]
    assert sink.has(first)
    assert not sink.has(second)
    assert not sink.has(third)


@pytest.mark.parametrize("failing", [2, 3, 4, 5])
@pytest.mark.asyncio
async def test_items_after_failure_get_no_entries(png_bytes, sink, fake_capabilities, failing):
    registry = ItemRegistry()
    ids = [registry.ingest_bytes(f"r{index}.png", png_bytes).id for index in range(1, 6)]
    fake_capabilities.fail("enhance", failing)
    job = BatchJob(target_ids=ids, stages=[enhance_stage(fake_capabilities)])

    outcome = await _coordinator(registry, sink).run(job)

    lengths = [len(registry.get(item_id).history) for item_id in ids]
    assert lengths == [1] * (failing - 1) + [0] * (len(ids) - failing + 1)
    assert outcome.completed == ids[: failing - 1]
    assert outcome.not_attempted == ids[failing:]


@pytest.mark.asyncio
async def test_failure_on_first_item_is_failed_status(registry, sink, fake_capabilities):
    fake_capabilities.fail("preprocess", 1)
    job = BatchJob(target_ids=registry.ids(), stages=auto_process_stages(fake_capabilities))

    outcome = await _coordinator(registry, sink).run(job)

    assert outcome.status is BatchStatus.FAILED
    assert outcome.completed == []
    assert len(outcome.not_attempted) == 2


@pytest.mark.asyncio
async def test_items_processed_one_at_a_time(registry, sink, fake_capabilities):
    job = BatchJob(target_ids=registry.ids(), stages=auto_process_stages(fake_capabilities))

    outcome = await _coordinator(registry, sink).run(job)

    assert outcome.status is BatchStatus.COMPLETED
    assert fake_capabilities.peak_in_flight == 1
    assert [operation for operation, _ in fake_capabilities.calls] == ["preprocess", "enhance", "ocr"] * 3


@pytest.mark.asyncio
async def test_single_resident_payload_per_item(registry, sink, fake_capabilities):
    job = BatchJob(target_ids=registry.ids(), stages=auto_process_stages(fake_capabilities))

    await _coordinator(registry, sink).run(job)

    for item in registry.items():
        assert [entry.payload is not None for entry in item.history] == [False, True]


@pytest.mark.asyncio
async def test_progress_reported_before_each_item(registry, sink):
    seen: list[tuple[int, int, str]] = []
    started: list[str] = []

    async def _record(payload: str) -> str:
        started.append(seen[-1][2])
        return "text"

    def observer(progress: BatchProgress) -> None:
        seen.append((progress.current_index, progress.total, progress.current_label))

    job = BatchJob(
        target_ids=registry.ids(),
        stages=[Stage("OCR", StageKind.TEXT, _record)],
        description="Performing OCR",
    )
    await _coordinator(registry, sink, observer).run(job)

    assert seen == [
        (1, 3, "Performing OCR: receipt1.png"),
        (2, 3, "Performing OCR: receipt2.png"),
        (3, 3, "Performing OCR: receipt3.png"),
    ]
    assert started == [label for _, _, label in seen]
    assert job.progress.message == "[3/3] Performing OCR: receipt3.png"


@pytest.mark.asyncio
async def test_missing_ids_are_skipped(registry, sink, fake_capabilities):
    first = registry.ids()[0]
    job = BatchJob(target_ids=["gone", first], stages=[enhance_stage(fake_capabilities)])

    outcome = await _coordinator(registry, sink).run(job)

    assert outcome.skipped == ["gone"]
    assert outcome.completed == [first]
    assert outcome.status is BatchStatus.COMPLETED


@pytest.mark.asyncio
async def test_empty_job_is_a_no_op(registry, sink, fake_capabilities):
    job = BatchJob(target_ids=[], stages=[enhance_stage(fake_capabilities)])

    outcome = await _coordinator(registry, sink).run(job)

    assert outcome.status is BatchStatus.EMPTY
    assert fake_capabilities.calls == []


@pytest.mark.asyncio
async def test_completion_hook_runs_after_each_item(registry, sink, fake_capabilities):
    finished: list[tuple[str, int]] = []

    async def on_item_completed(item, result):
        finished.append((item.name, len(item.history)))

    fake_capabilities.fail("enhance", 3)
    job = BatchJob(
        target_ids=registry.ids(),
        stages=[enhance_stage(fake_capabilities)],
        on_item_completed=on_item_completed,
    )

    await _coordinator(registry, sink).run(job)

    assert finished == [("receipt1.png", 1), ("receipt2.png", 1)]


def test_job_requires_stages():
    with pytest.raises(ValueError):
        BatchJob(target_ids=["a"], stages=[])


def test_job_description_defaults_to_stage_labels(fake_capabilities):
    job = BatchJob(target_ids=[], stages=[enhance_stage(fake_capabilities)])
    assert job.description == "Enhanced for OCR"


@pytest.mark.asyncio
async def test_completion_hook_failure_aborts_with_outcome(registry, sink, fake_capabilities):
    first, second, third = registry.ids()

    async def on_item_completed(item, result):
        if item.id == second:
            raise OSError("read-only file system")

    job = BatchJob(
        target_ids=[first, second, third],
        stages=[enhance_stage(fake_capabilities)],
        on_item_completed=on_item_completed,
    )

    outcome = await _coordinator(registry, sink).run(job)

    assert outcome.status is BatchStatus.PARTIAL
    assert outcome.completed == [first]
    assert outcome.failed_item_id == second
    assert outcome.not_attempted == [third]
    assert outcome.error.stage_label == "Saving results"
    assert outcome.error.completed_stages == 1
    assert "read-only file system" in str(outcome.error)
    assert len(registry.get(third).history) == 0
