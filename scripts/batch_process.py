"""Auto-process a folder of receipt images from the command line."""

from __future__ import annotations

import argparse
import asyncio
from pathlib import Path

from config.settings import load_config
from modules.services.batch_coordinator import BatchProgress
from modules.services.studio import StudioEngine
from modules.utils.image_utils import guess_content_type, is_image_type
from modules.utils.logging import setup_logging


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Preprocess, enhance and OCR every image in a folder.")
    parser.add_argument("input_dir", type=Path)
    parser.add_argument("--output-dir", type=Path, default=None, help="defaults to <input_dir>/processed")
    parser.add_argument("--bundle", action="store_true", help="also write processed_images.zip and ocr_results.zip")
    parser.add_argument("--config", default=None, help="path to a .env file")
    return parser.parse_args()


async def run(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    logger = setup_logging(config)

    def _print_progress(progress: BatchProgress) -> None:
        print(progress.message, flush=True)

    engine = StudioEngine(config, observer=_print_progress)
    try:
        output_dir = args.output_dir or args.input_dir / "processed"
        output_dir.mkdir(parents=True, exist_ok=True)
        engine.choose_export_directory(output_dir)

        paths = sorted(
            path for path in args.input_dir.iterdir() if path.is_file() and is_image_type(guess_content_type(path.name))
        )
        report = await engine.ingest_paths(paths)
        for name, exc in report.failures:
            logger.warning("Skipped %s: %s", name, exc)

        item_ids = [item.id for item in report.items]
        outcome = await engine.auto_process(item_ids)
        print(outcome.summary())

        if args.bundle:
            await engine.download_bundle(item_ids)
            await engine.download_ocr_text(item_ids)
        return 0 if outcome.succeeded else 1
    finally:
        engine.shutdown()


if __name__ == "__main__":
    raise SystemExit(asyncio.run(run(parse_args())))
