"""Self-describing base64 data URL payloads."""

from __future__ import annotations

import base64
import binascii
import re

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[^;,]+);base64,(?P<data>.*)$", re.DOTALL)

# Decoded bytes contributed by a trailing group of 0..3 base64 characters.
_TAIL_BYTES = {0: 0, 1: 0, 2: 1, 3: 2}


class PayloadCodec:
    """Encode, decode and measure ``data:<mime>;base64,<data>`` payloads."""

    @staticmethod
    def encode(data: bytes, mime_type: str) -> str:
        """Return ``data`` as a data URL payload."""
        if not mime_type:
            raise ValueError("mime_type must not be empty")
        encoded = base64.b64encode(data).decode("ascii")
        return f"data:{mime_type};base64,{encoded}"

    @staticmethod
    def split(payload: str) -> tuple[str, str]:
        """Return ``(mime_type, base64_text)`` of a payload."""
        match = _DATA_URL_RE.match(payload or "")
        if match is None:
            raise ValueError("Invalid data URL format. Could not extract mime type and base64 data.")
        return match.group("mime"), match.group("data")

    @classmethod
    def decode(cls, payload: str) -> bytes:
        """Return the binary content carried by a payload."""
        _, data = cls.split(payload)
        try:
            return base64.b64decode(data, validate=True)
        except binascii.Error as exc:
            raise ValueError(f"Invalid base64 payload: {exc}") from exc

    @classmethod
    def mime_type(cls, payload: str) -> str:
        return cls.split(payload)[0]

    @staticmethod
    def is_payload(value: object) -> bool:
        return isinstance(value, str) and _DATA_URL_RE.match(value) is not None

    @staticmethod
    def byte_size(payload: str) -> int:
        """Return the decoded size of a payload without decoding it.

        Works on the base64 text length alone: every full group of four
        characters carries three bytes, ``=`` padding removes one byte each,
        and an unpadded trailing group carries ``len - 1`` bytes.
        """
        separator = payload.find(",")
        if separator == -1:
            return 0
        data = payload[separator + 1:].rstrip()
        length = len(data)
        if length == 0:
            return 0

        padding = 0
        if data.endswith("=="):
            padding = 2
        elif data.endswith("="):
            padding = 1

        full_groups, remainder = divmod(length, 4)
        return full_groups * 3 + _TAIL_BYTES[remainder] - padding
