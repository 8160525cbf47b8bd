"""Callback implementations for the Gradio interface."""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence

from config.settings import AppConfig
from modules.errors import ItemNotFoundError, QuotaExhaustedError, StudioError, TransformationError
from modules.pipelines.transformation import OCR_LABEL
from modules.services.batch_coordinator import BatchOutcome, BatchProgress, BatchStatus
from modules.services.studio import StudioEngine
from modules.utils.image_utils import open_image

logger = logging.getLogger(__name__)

Choice = tuple[str, str]


def build_callbacks(config: AppConfig, engine: Optional[StudioEngine] = None) -> dict[str, Any]:
    """Return a dictionary of Gradio callback functions bound to one engine."""

    progress_log: List[str] = []

    def _record_progress(progress: BatchProgress) -> None:
        progress_log.append(progress.message)
        logger.info(progress.message)

    studio = engine or StudioEngine(config, observer=_record_progress)
    if engine is not None and studio.coordinator.observer is None:
        studio.coordinator.observer = _record_progress

    def _choices() -> List[Choice]:
        choices: List[Choice] = []
        for item in studio.registry.items():
            descriptor = studio.descriptor(item.id)
            choices.append((f"{item.name} · {descriptor.label}", item.id))
        return choices

    def _normalize_ids(item_ids: Any) -> List[str]:
        if not item_ids:
            return []
        if isinstance(item_ids, str):
            return [item_ids]
        return [str(item_id) for item_id in item_ids]

    def _describe_failure(exc: Exception) -> str:
        if isinstance(exc, QuotaExhaustedError):
            return f"额度已用尽：{exc}。{exc.guidance}"
        return str(exc)

    def _batch_message(action: str, outcome: BatchOutcome) -> str:
        if outcome.status is BatchStatus.EMPTY:
            return "未选择任何图像。"
        if outcome.status is BatchStatus.COMPLETED:
            return f"{action}完成：{len(outcome.completed)} 张图像。"
        assert outcome.error is not None
        reason = _describe_failure(outcome.error)
        if outcome.status is BatchStatus.PARTIAL:
            return (
                f"{action}部分完成：{len(outcome.completed)} 张已完成，"
                f"{len(outcome.not_attempted)} 张未处理。失败原因：{reason}"
            )
        return f"{action}失败：{reason}"

    async def _preview(item_id: Optional[str]) -> Optional[Any]:
        if not item_id or item_id not in studio.registry:
            return None
        payload = await studio.history(item_id).current_payload()
        return open_image(studio.codec.decode(payload))

    async def on_upload(files: Optional[Sequence[Any]]) -> tuple[List[Choice], str]:
        paths = [getattr(entry, "name", entry) for entry in (files or [])]
        if not paths:
            return _choices(), "请选择要上传的图像。"
        report = await studio.ingest_paths(paths)
        message = f"已上传 {len(report.items)} 张图像。"
        if report.failures:
            message += "以下文件无法上传：" + "、".join(report.failed_names)
        return _choices(), message

    async def on_batch_action(action: str, item_ids: Any) -> tuple[List[Choice], str]:
        targets = _normalize_ids(item_ids)
        progress_log.clear()
        runners = {
            "preprocess": ("预处理", studio.preprocess),
            "enhance": ("OCR 增强", studio.enhance),
            "ocr": ("文字识别", studio.perform_ocr),
            "auto": ("自动处理", studio.auto_process),
        }
        if action not in runners:
            return _choices(), f"未知操作：{action}"
        title, runner = runners[action]
        try:
            outcome = await runner(targets)
        except (StudioError, OSError) as exc:
            logger.exception("%s failed", title)
            return _choices(), f"{title}失败：{exc}"
        return _choices(), _batch_message(title, outcome)

    async def on_show(item_id: Optional[str]) -> tuple[Optional[Any], str, str]:
        if not item_id or item_id not in studio.registry:
            return None, "", ""
        descriptor = studio.descriptor(item_id)
        size = f"{descriptor.byte_size / 1024:.2f} KB" if descriptor.byte_size > 0 else "N/A"
        ocr = studio.sink.get(item_id, OCR_LABEL)
        return await _preview(item_id), f"{descriptor.label} · {size}", ocr.text if ocr else ""

    async def on_edit(item_id: Optional[str], prompt: str) -> tuple[List[Choice], Optional[Any], str]:
        if not item_id or not (prompt or "").strip():
            return _choices(), None, "请选择图像并填写编辑指令。"
        if item_id not in studio.registry:
            return _choices(), None, "图像不存在。"
        outcome = await studio.edit(item_id, prompt.strip())
        if outcome.error is not None:
            return _choices(), None, f"编辑失败：{_describe_failure(outcome.error)}"
        return _choices(), await _preview(item_id), "编辑成功。"

    async def on_analyze(item_id: Optional[str], prompt: str) -> tuple[str, str]:
        if not item_id or not (prompt or "").strip():
            return "", "请选择图像并填写分析问题。"
        try:
            text = await studio.analyze(item_id, prompt.strip())
        except StudioError as exc:
            return "", f"分析失败：{_describe_failure(exc)}"
        return text, "分析完成。"

    async def on_generate(prompt: str) -> tuple[List[Choice], Optional[str], Optional[Any], str]:
        if not (prompt or "").strip():
            return _choices(), None, None, "请填写生成提示词。"
        try:
            item = await studio.generate(prompt.strip())
        except TransformationError as exc:
            return _choices(), None, None, f"生成失败：{_describe_failure(exc)}"
        return _choices(), item.id, await _preview(item.id), "生成成功。"

    async def on_remove(item_id: Optional[str]) -> tuple[List[Choice], str]:
        if not item_id:
            return _choices(), "未选择图像。"
        try:
            studio.remove(item_id)
        except ItemNotFoundError as exc:
            return _choices(), str(exc)
        return _choices(), "已移除。"

    async def on_select_folder(folder: Optional[str]) -> str:
        try:
            directory = studio.choose_export_directory(folder)
        except PermissionError:
            return "没有写入该文件夹的权限，将改为浏览器下载。"
        except OSError as exc:
            return f"无法使用该文件夹：{exc}"
        if directory is None:
            return ""
        return f"导出文件将保存到：{directory}"

    async def on_download(item_id: Optional[str]) -> tuple[Optional[str], str]:
        if not item_id:
            return None, "未选择图像。"
        try:
            receipt = await studio.download(item_id)
        except StudioError as exc:
            return None, str(exc)
        note = "（文件夹不可写，已改为下载）" if receipt.used_fallback else ""
        return str(receipt.path), f"已导出：{receipt.path.name}{note}"

    async def on_download_bundle(item_ids: Any) -> tuple[Optional[str], str]:
        targets = _normalize_ids(item_ids)
        if not targets:
            return None, "未选择任何图像。"
        try:
            receipt, bundle = await studio.download_bundle(targets)
        except OSError as exc:
            logger.exception("Failed to create ZIP file")
            return None, f"创建压缩包失败：{exc}"
        if receipt is None:
            return None, "没有可导出的图像。"
        message = f"已打包 {len(bundle)} 个文件。"
        if bundle.skipped:
            message += f"{len(bundle.skipped)} 张图像的数据已被释放，未包含在压缩包中。"
        return str(receipt.path), message

    async def on_download_ocr(item_ids: Any) -> tuple[Optional[str], str]:
        targets = studio.item_ids_with_text(_normalize_ids(item_ids))
        if not targets:
            return None, "所选图像还没有识别结果。"
        try:
            receipt = await studio.download_ocr_text(targets)
        except OSError as exc:
            logger.exception("Failed to create ZIP file for OCR text")
            return None, f"创建压缩包失败：{exc}"
        if receipt is None:
            return None, "所选图像还没有识别结果。"
        return str(receipt.path), f"已打包 {len(targets)} 份识别文本。"

    def progress_messages() -> List[str]:
        return list(progress_log)

    return {
        "engine": studio,
        "on_upload": on_upload,
        "on_batch_action": on_batch_action,
        "on_show": on_show,
        "on_edit": on_edit,
        "on_analyze": on_analyze,
        "on_generate": on_generate,
        "on_remove": on_remove,
        "on_select_folder": on_select_folder,
        "on_download": on_download,
        "on_download_bundle": on_download_bundle,
        "on_download_ocr": on_download_ocr,
        "progress_messages": progress_messages,
    }
