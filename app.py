"""Application entry point for the AI Receipt Studio project."""

from __future__ import annotations

from typing import Optional

from config.settings import load_config
from modules.services.studio import StudioEngine
from modules.ui.layout import build_app
from modules.utils.logging import setup_logging


def main(config_path: Optional[str] = None) -> None:
    """Load configuration and launch the Gradio interface."""
    config = load_config(config_path)
    logger = setup_logging(config)
    engine = StudioEngine(config)
    app = build_app(config, engine=engine)
    app.queue()
    try:
        app.launch(share=False, inbrowser=False, allowed_paths=[str(config.download_dir)])
    finally:
        engine.shutdown()
        logger.info("Released all thumbnail handles")


if __name__ == "__main__":
    main()
