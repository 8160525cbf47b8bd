"""Gradio UI callback tests."""

from __future__ import annotations

import types

import pytest

from modules.services.studio import StudioEngine
from modules.ui import callbacks


@pytest.fixture
def cb(config, fake_capabilities):
    engine = StudioEngine(config, client=fake_capabilities)
    cb_map = callbacks.build_callbacks(config, engine=engine)
    yield cb_map
    engine.shutdown()


@pytest.fixture
def uploads(tmp_path, png_bytes):
    files = []
    for name in ("lunch.png", "taxi.png"):
        path = tmp_path / name
        path.write_bytes(png_bytes)
        # Gradio hands over temp-file wrappers exposing ``.name``.
        files.append(types.SimpleNamespace(name=str(path)))
    return files


@pytest.mark.asyncio
async def test_on_upload_lists_items(cb, uploads, tmp_path):
    notes = tmp_path / "notes.txt"
    notes.write_text("hello", encoding="utf-8")

    choices, message = await cb["on_upload"](uploads + [str(notes)])

    assert [label for label, _ in choices] == ["lunch.png · Original", "taxi.png · Original"]
    assert "已上传 2 张图像" in message
    assert "notes.txt" in message


@pytest.mark.asyncio
async def test_on_upload_without_files(cb):
    choices, message = await cb["on_upload"](None)

    assert choices == []
    assert "请选择" in message


@pytest.mark.asyncio
async def test_on_batch_action_reports_progress(cb, uploads):
    choices, _ = await cb["on_upload"](uploads)
    ids = [item_id for _, item_id in choices]

    choices, message = await cb["on_batch_action"]("preprocess", ids)

    assert "预处理完成：2 张图像" in message
    assert [label for label, _ in choices] == ["lunch.png · Preprocessed", "taxi.png · Preprocessed"]
    assert cb["progress_messages"]() == [
        "[1/2] Preprocessing: lunch.png",
        "[2/2] Preprocessing: taxi.png",
    ]


@pytest.mark.asyncio
async def test_on_batch_action_partial_failure(cb, uploads, fake_capabilities):
    choices, _ = await cb["on_upload"](uploads)
    fake_capabilities.fail("enhance", 2, reason="quota", quota=True)

    _, message = await cb["on_batch_action"]("enhance", [item_id for _, item_id in choices])

    assert "部分完成" in message
    assert "额度已用尽" in message


@pytest.mark.asyncio
async def test_on_batch_action_unknown(cb):
    _, message = await cb["on_batch_action"]("sharpen", [])

    assert "未知操作" in message


@pytest.mark.asyncio
async def test_on_show_returns_preview_and_ocr(cb, uploads):
    choices, _ = await cb["on_upload"](uploads[:1])
    item_id = choices[0][1]
    await cb["on_batch_action"]("ocr", [item_id])

    image, info, ocr_text = await cb["on_show"](item_id)

    assert image is not None
    assert info.startswith("Original · ")
    assert ocr_text.startswith("TOTAL 12.50")
    assert await cb["on_show"]("missing") == (None, "", "")


@pytest.mark.asyncio
async def test_on_edit_requires_prompt(cb, uploads):
    choices, _ = await cb["on_upload"](uploads[:1])

    _, image, message = await cb["on_edit"](choices[0][1], "   ")

    assert image is None
    assert "编辑指令" in message


@pytest.mark.asyncio
async def test_on_edit_failure_message(cb, uploads, fake_capabilities):
    choices, _ = await cb["on_upload"](uploads[:1])
    fake_capabilities.fail("edit", 1, reason="SAFETY")

    _, image, message = await cb["on_edit"](choices[0][1], "remove the stain")

    assert image is None
    assert "编辑失败" in message
    assert "SAFETY" in message


@pytest.mark.asyncio
async def test_on_analyze_and_generate(cb):
    choices, item_id, image, message = await cb["on_generate"]("a bakery receipt")

    assert item_id == choices[0][1]
    assert image is not None
    assert "生成成功" in message

    text, status = await cb["on_analyze"](item_id, "What is the total?")
    assert text == "analysis of What is the total?"
    assert "分析完成" in status


@pytest.mark.asyncio
async def test_on_download_and_bundle(cb, uploads, config):
    choices, _ = await cb["on_upload"](uploads)
    ids = [item_id for _, item_id in choices]

    path, message = await cb["on_download"](ids[0])
    assert path == str(config.download_dir / "lunch.png")
    assert "已导出" in message

    path, message = await cb["on_download_bundle"](ids)
    assert path == str(config.download_dir / "processed_images.zip")
    assert "已打包 2 个文件" in message


@pytest.mark.asyncio
async def test_on_download_ocr_without_text(cb, uploads):
    choices, _ = await cb["on_upload"](uploads)

    path, message = await cb["on_download_ocr"]([item_id for _, item_id in choices])

    assert path is None
    assert "还没有识别结果" in message


@pytest.mark.asyncio
async def test_on_select_folder_cancel_is_silent(cb, tmp_path):
    assert await cb["on_select_folder"](None) == ""
    assert "无法使用该文件夹" in await cb["on_select_folder"](str(tmp_path / "missing"))
    assert str(tmp_path) in await cb["on_select_folder"](str(tmp_path))


@pytest.mark.asyncio
async def test_on_remove(cb, uploads):
    choices, _ = await cb["on_upload"](uploads)

    choices, message = await cb["on_remove"](choices[0][1])

    assert len(choices) == 1
    assert "已移除" in message
    _, message = await cb["on_remove"]("missing")
    assert "Unknown item" in message


@pytest.mark.asyncio
async def test_on_analyze_unknown_item(cb):
    text, status = await cb["on_analyze"]("missing", "What is the total?")

    assert text == ""
    assert "分析失败" in status
    assert "Unknown item" in status
