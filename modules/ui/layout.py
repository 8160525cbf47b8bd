"""Gradio layout composition for batch receipt processing."""

from __future__ import annotations

from typing import Any, Optional

try:
    import gradio as gr
except ImportError:  # pragma: no cover
    gr = None  # type: ignore

from config.settings import AppConfig
from modules.services.studio import StudioEngine
from modules.ui.callbacks import build_callbacks


def build_app(config: AppConfig, engine: Optional[StudioEngine] = None) -> Any:
    """Compose and return the Gradio application."""
    if gr is None:
        raise RuntimeError("Gradio is not installed; install the project dependencies first.")

    callbacks_map = build_callbacks(config, engine=engine)

    def _refresh(choices, selected=None):
        values = [value for _, value in choices]
        return (
            gr.update(choices=choices, value=selected if selected in values else None),
            gr.update(choices=choices, value=[]),
        )

    async def _upload(files):
        choices, message = await callbacks_map["on_upload"](files)
        return (*_refresh(choices, choices[0][1] if choices else None), message)

    def _batch(action: str):
        async def _run(selected_ids):
            choices, message = await callbacks_map["on_batch_action"](action, selected_ids)
            progress = "\n".join(callbacks_map["progress_messages"]())
            return gr.update(choices=choices), message, progress

        return _run

    async def _edit(item_id, prompt):
        choices, image, message = await callbacks_map["on_edit"](item_id, prompt)
        return gr.update(choices=choices, value=item_id), image, message

    async def _generate(prompt):
        choices, item_id, image, message = await callbacks_map["on_generate"](prompt)
        return (*_refresh(choices, item_id), image, message)

    async def _remove(item_id):
        choices, message = await callbacks_map["on_remove"](item_id)
        return (*_refresh(choices), message)

    with gr.Blocks(title="AI Receipt Studio") as demo:
        gr.Markdown("## AI 票据处理工作台")

        with gr.Row():
            with gr.Column(scale=1):
                uploads = gr.File(label="上传图像", file_count="multiple", type="filepath")
                current = gr.Dropdown(label="当前图像", choices=[], interactive=True)
                batch_select = gr.CheckboxGroup(label="批量选择", choices=[])
                with gr.Row():
                    auto_btn = gr.Button("自动处理", variant="primary")
                    preprocess_btn = gr.Button("预处理")
                    enhance_btn = gr.Button("OCR 增强")
                    ocr_btn = gr.Button("文字识别")
                with gr.Row():
                    bundle_btn = gr.Button("下载所选（ZIP）")
                    ocr_zip_btn = gr.Button("下载识别文本（ZIP）")
                folder = gr.Textbox(label="导出文件夹（可选）", placeholder="留空则通过浏览器下载")
                folder_btn = gr.Button("设置导出文件夹")
                progress = gr.Textbox(label="进度", lines=4, interactive=False)
                status = gr.Markdown("准备就绪。")

            with gr.Column(scale=2):
                preview = gr.Image(label="当前结果", type="pil")
                descriptor = gr.Markdown("")
                with gr.Row():
                    download_btn = gr.Button("下载当前图像")
                    remove_btn = gr.Button("移除", variant="stop")
                download_file = gr.File(label="导出文件")

                with gr.Tab("文字识别"):
                    ocr_text = gr.Textbox(label="识别结果", lines=10)
                with gr.Tab("编辑"):
                    edit_prompt = gr.Textbox(label="编辑指令", lines=3)
                    edit_btn = gr.Button("编辑图像")
                with gr.Tab("生成"):
                    generate_prompt = gr.Textbox(label="生成提示词", lines=3)
                    generate_btn = gr.Button("生成图像")
                with gr.Tab("分析"):
                    analyze_prompt = gr.Textbox(label="分析问题", lines=3)
                    analyze_btn = gr.Button("分析图像")
                    analysis = gr.Textbox(label="分析结果", lines=8)

        uploads.upload(fn=_upload, inputs=[uploads], outputs=[current, batch_select, status])
        current.change(fn=callbacks_map["on_show"], inputs=[current], outputs=[preview, descriptor, ocr_text])

        for button, action in (
            (auto_btn, "auto"),
            (preprocess_btn, "preprocess"),
            (enhance_btn, "enhance"),
            (ocr_btn, "ocr"),
        ):
            button.click(fn=_batch(action), inputs=[batch_select], outputs=[batch_select, status, progress]).then(
                fn=callbacks_map["on_show"], inputs=[current], outputs=[preview, descriptor, ocr_text]
            )

        edit_btn.click(fn=_edit, inputs=[current, edit_prompt], outputs=[current, preview, status])
        generate_btn.click(fn=_generate, inputs=[generate_prompt], outputs=[current, batch_select, preview, status])
        analyze_btn.click(fn=callbacks_map["on_analyze"], inputs=[current, analyze_prompt], outputs=[analysis, status])
        remove_btn.click(fn=_remove, inputs=[current], outputs=[current, batch_select, status])

        folder_btn.click(fn=callbacks_map["on_select_folder"], inputs=[folder], outputs=[status])
        download_btn.click(fn=callbacks_map["on_download"], inputs=[current], outputs=[download_file, status])
        bundle_btn.click(fn=callbacks_map["on_download_bundle"], inputs=[batch_select], outputs=[download_file, status])
        ocr_zip_btn.click(fn=callbacks_map["on_download_ocr"], inputs=[batch_select], outputs=[download_file, status])

    return demo
