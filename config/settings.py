"""Configuration helpers for the AI Receipt Studio project."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional


@dataclass(slots=True)
class AppConfig:
    """Centralized application configuration."""

    # Parent of the default download folder. A persistent export folder is only
    # used after the user grants one through StorageService.select_directory.
    export_dir: Path = Path("exports")
    download_dir: Path = Path("exports/downloads")
    log_dir: Path = Path("logs")
    openai_key: Optional[str] = None
    anthropic_key: Optional[str] = None
    openai_image_model: str = "gpt-image-1"
    openai_vision_model: str = "gpt-4o-mini"
    claude_model: str = "claude-3-5-sonnet-latest"
    label_prompt_chars: int = 30
    generated_name_chars: int = 20
    thumbnail_size: tuple[int, int] = (256, 256)
    metadata: dict[str, Any] = field(default_factory=dict)


def _load_env_file(path: Path) -> None:
    """Populate environment variables from a simple KEY=VALUE .env file."""
    if not path.exists():
        return

    for line in path.read_text(encoding="utf-8").splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            continue
        key, value = stripped.split("=", 1)
        os.environ[key.strip()] = value.strip().strip('"').strip("'")


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return max(1, int(raw))
    except ValueError:
        return default


def load_config(config_path: Optional[str] = None) -> AppConfig:
    """Return an AppConfig instance with environment-aware settings."""
    env_path = Path(config_path) if config_path else Path(".env")
    _load_env_file(env_path)

    export_dir = Path(os.getenv("EXPORT_DIR", "exports")).expanduser().resolve()
    download_dir = Path(os.getenv("DOWNLOAD_DIR", str(export_dir / "downloads"))).expanduser().resolve()
    log_dir = Path(os.getenv("LOG_DIR", "logs")).expanduser()

    metadata: dict[str, Any] = {}
    openai_base_url = os.getenv("OPENAI_BASE_URL")
    if openai_base_url:
        metadata["openai_base_url"] = openai_base_url
    preferred_text_backend = os.getenv("TEXT_BACKEND")
    if preferred_text_backend:
        metadata["text_backend"] = preferred_text_backend.lower()

    defaults = AppConfig()
    return AppConfig(
        export_dir=export_dir,
        download_dir=download_dir,
        log_dir=log_dir,
        openai_key=os.getenv("OPENAI_API_KEY"),
        anthropic_key=os.getenv("ANTHROPIC_API_KEY"),
        openai_image_model=os.getenv("OPENAI_IMAGE_MODEL", defaults.openai_image_model),
        openai_vision_model=os.getenv("OPENAI_VISION_MODEL", defaults.openai_vision_model),
        claude_model=os.getenv("CLAUDE_MODEL", defaults.claude_model),
        label_prompt_chars=_int_env("LABEL_PROMPT_CHARS", defaults.label_prompt_chars),
        metadata=metadata,
    )
