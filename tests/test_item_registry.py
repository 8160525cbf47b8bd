"""ItemRegistry tests: validation, ids and thumbnail handle lifetime."""

from __future__ import annotations

import pytest

from modules.errors import ItemNotFoundError, ValidationError
from modules.services.item_registry import ItemRegistry, SourceHandle


def test_ingest_non_image_is_rejected(png_bytes):
    registry = ItemRegistry()
    registry.ingest_bytes("receipt.png", png_bytes)

    with pytest.raises(ValidationError) as excinfo:
        registry.ingest_bytes("notes.txt", b"hello", "text/plain")

    assert "notes.txt" in str(excinfo.value)
    assert len(registry) == 1
    assert len(registry.outstanding_handles()) == 1


def test_ingest_assigns_unique_ids(png_bytes):
    registry = ItemRegistry()

    first = registry.ingest_bytes("receipt.png", png_bytes)
    second = registry.ingest_bytes("receipt.png", png_bytes)

    assert first.id != second.id
    assert registry.ids() == [first.id, second.id]
    assert first.history == []
    assert registry.get(first.id) is first


def test_content_type_guessed_from_name(png_bytes):
    item = ItemRegistry().ingest_bytes("photo.jpg", png_bytes)

    assert item.source.content_type == "image/jpeg"
    assert item.source.size == len(png_bytes)


def test_remove_releases_handle_once(png_bytes):
    registry = ItemRegistry()
    item = registry.ingest_bytes("receipt.png", png_bytes)

    registry.remove(item.id)

    assert item.thumbnail.released
    assert item.id not in registry
    assert registry.outstanding_handles() == set()
    with pytest.raises(ItemNotFoundError):
        registry.remove(item.id)


def test_release_all_releases_every_remaining_handle(png_bytes):
    registry = ItemRegistry()
    items = [registry.ingest_bytes(f"r{index}.png", png_bytes) for index in range(3)]
    registry.remove(items[0].id)

    registry.release_all()
    registry.release_all()

    assert all(item.thumbnail.released for item in items)
    assert registry.outstanding_handles() == set()
    assert len(registry) == 0


def test_double_release_is_detected(png_bytes):
    item = ItemRegistry().ingest_bytes("receipt.png", png_bytes)
    item.thumbnail.release()

    with pytest.raises(RuntimeError):
        item.thumbnail.release()


@pytest.mark.asyncio
async def test_thumbnail_render(png_bytes):
    registry = ItemRegistry(thumbnail_size=(4, 4))
    item = registry.ingest_bytes("receipt.png", png_bytes)

    image = await item.thumbnail.render()

    assert max(image.size) <= 4
    registry.release_all()
    with pytest.raises(RuntimeError):
        await item.thumbnail.render()


@pytest.mark.asyncio
async def test_ingest_many_collects_failures(tmp_path, png_bytes):
    good = tmp_path / "a.png"
    good.write_bytes(png_bytes)
    text = tmp_path / "b.txt"
    text.write_text("not an image")
    missing = tmp_path / "missing.png"
    registry = ItemRegistry()

    report = await registry.ingest_many(
        [good, text, missing, SourceHandle.from_bytes("c.png", png_bytes)]
    )

    assert [item.name for item in report.items] == ["a.png", "c.png"]
    assert report.failed_names == ["b.txt", "missing.png"]
    assert isinstance(report.failures[0][1], ValidationError)
    assert isinstance(report.failures[1][1], FileNotFoundError)
    assert len(registry) == 2
