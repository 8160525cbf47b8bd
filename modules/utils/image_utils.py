"""Utility helpers for image type checks and thumbnails."""

from __future__ import annotations

import io
import mimetypes
import re
from typing import Optional, Tuple

from PIL import Image

_UNSAFE_NAME_CHARS = re.compile(r'[\\/:"*?<>|]')


def guess_content_type(name: str) -> str:
    """Guess the declared MIME type of a file from its name."""
    content_type, _ = mimetypes.guess_type(name)
    return content_type or "application/octet-stream"


def is_image_type(content_type: Optional[str]) -> bool:
    return bool(content_type) and content_type.lower().startswith("image/")


def extension_for(content_type: str) -> str:
    """Return a file extension for an image MIME type."""
    if content_type == "image/jpeg":
        return ".jpg"
    return mimetypes.guess_extension(content_type) or ""


def split_name(file_name: str) -> tuple[str, str]:
    """Split ``file_name`` into base name and extension; dotfiles keep their name."""
    dot = file_name.rfind(".")
    if dot <= 0:
        return file_name, ""
    return file_name[:dot], file_name[dot:]


def sanitize_name(text: str) -> str:
    """Replace characters that are not allowed in file names."""
    return _UNSAFE_NAME_CHARS.sub("-", text)


def safe_file_stem(text: str, max_chars: int) -> str:
    cleaned = sanitize_name(text.strip())
    return cleaned[:max_chars] or "image"


def generate_thumbnail(image_bytes: bytes, max_size: Tuple[int, int] = (256, 256)) -> Image.Image:
    """Create a thumbnail suitable for gallery previews."""
    thumbnail = open_image(image_bytes)
    thumbnail.thumbnail(max_size)
    return thumbnail


def open_image(image_bytes: bytes) -> Image.Image:
    """Decode image bytes into a fully loaded Pillow image."""
    with Image.open(io.BytesIO(image_bytes)) as image:
        image.load()
        return image.copy()
