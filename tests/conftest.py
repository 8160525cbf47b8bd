"""Shared fixtures: sample images, a config rooted in tmp_path and fake capabilities."""

from __future__ import annotations

import io
from typing import Optional

import pytest
from PIL import Image

from config.settings import AppConfig
from modules.errors import CapabilityError
from modules.pipelines.capabilities import CapabilityClient
from modules.utils.payload_codec import PayloadCodec


def make_png(color: tuple[int, int, int] = (200, 30, 30), size: tuple[int, int] = (8, 6)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


class FakeCapabilities:
    """Stand-in for the remote services that records calls and injects failures."""

    def __init__(self) -> None:
        self.codec = PayloadCodec()
        self.calls: list[tuple[str, str]] = []
        self.fail_on: dict[tuple[str, int], CapabilityError] = {}
        self.in_flight = 0
        self.peak_in_flight = 0
        self._counts: dict[str, int] = {}

    def fail(self, operation: str, occurrence: int, reason: str = "SAFETY", quota: bool = False) -> None:
        """Make the ``occurrence``-th (1-based) call of ``operation`` fail."""
        self.fail_on[(operation, occurrence)] = CapabilityError(reason, quota_exhausted=quota)

    async def _run(self, operation: str, payload: Optional[str]) -> None:
        count = self._counts.get(operation, 0) + 1
        self._counts[operation] = count
        self.calls.append((operation, payload or ""))
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            error = self.fail_on.get((operation, count))
            if error is not None:
                raise error
        finally:
            self.in_flight -= 1

    def _image(self, tag: str) -> str:
        return self.codec.encode(f"{tag}-{len(self.calls)}".encode(), "image/png")

    async def preprocess(self, payload: str) -> str:
        await self._run("preprocess", payload)
        return self._image("pre")

    async def enhance_for_ocr(self, payload: str) -> str:
        await self._run("enhance", payload)
        return self._image("enh")

    async def perform_ocr(self, payload: str) -> str:
        await self._run("ocr", payload)
        return f"TOTAL 12.50 ({len(self.calls)})"

    async def edit(self, payload: str, prompt: str) -> str:
        await self._run("edit", payload)
        return self._image("edit")

    async def analyze(self, payload: str, prompt: str) -> str:
        await self._run("analyze", payload)
        return f"analysis of {prompt}"

    async def generate(self, prompt: str) -> str:
        await self._run("generate", None)
        return self.codec.encode(make_png((0, 0, 255)), "image/png")


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def codec() -> PayloadCodec:
    return PayloadCodec()


@pytest.fixture
def config(tmp_path) -> AppConfig:
    return AppConfig(
        export_dir=tmp_path / "exports",
        download_dir=tmp_path / "downloads",
        log_dir=tmp_path / "logs",
    )


@pytest.fixture
def fake_capabilities() -> FakeCapabilities:
    return FakeCapabilities()


@pytest.fixture
def offline_client(config) -> CapabilityClient:
    client = CapabilityClient(config)
    client.clear_backends()
    return client
