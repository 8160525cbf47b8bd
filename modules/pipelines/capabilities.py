"""Remote image and text capabilities backed by third-party model APIs."""

from __future__ import annotations

import importlib
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

from config.settings import AppConfig
from modules.errors import CapabilityError
from modules.utils.image_utils import extension_for
from modules.utils.payload_codec import PayloadCodec

logger = logging.getLogger(__name__)

PREPROCESS_PROMPT = (
    "Correct the perspective of this receipt. Make it look like a flat, top-down scan. "
    "De-skew and crop it tightly to the edges of the receipt. Do not change colors or add any effects."
)
ENHANCE_PROMPT = (
    "Convert this image of a receipt to a high-contrast black and white image. "
    "Preserve all text details to ensure maximum OCR accuracy. Remove any shadows or noise."
)
OCR_PROMPT = "Perform OCR on this image and extract all text content exactly as it appears."

QUOTA_STATUSES = {
    "RESOURCE_EXHAUSTED",
    "insufficient_quota",
    "rate_limit_exceeded",
    "rate_limit_error",
}
QUOTA_HINT = (
    "Your API key currently has no remaining quota for this model. "
    "Update your plan or use a key with access."
)


@dataclass(slots=True)
class CapabilityRequest:
    """Information passed to capability backends."""

    prompt: str
    payload: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class CapabilityResult:
    """Response produced by capability backends."""

    payload: Optional[str] = None
    text: Optional[str] = None
    finish_reason: Optional[str] = None


BackendCallable = Callable[[CapabilityRequest], Awaitable[CapabilityResult | Dict[str, Any] | str]]


def _error_body(error: Any) -> Optional[Dict[str, Any]]:
    if error is None:
        return None
    if isinstance(error, str):
        try:
            parsed = json.loads(error)
        except json.JSONDecodeError:
            return {"message": error}
        return parsed if isinstance(parsed, dict) else {"message": error}
    if isinstance(error, dict):
        return error

    body = getattr(error, "body", None)
    if isinstance(body, dict):
        payload = dict(body)
        status_code = getattr(error, "status_code", None)
        if status_code is not None:
            payload.setdefault("status_code", status_code)
        return payload
    if isinstance(error, Exception):
        parsed = _error_body(str(error))
        status_code = getattr(error, "status_code", None)
        if parsed is not None and status_code is not None:
            parsed.setdefault("status_code", status_code)
        return parsed
    return None


def _quota_detail(details: Any) -> Optional[str]:
    if not isinstance(details, list):
        return None
    for detail in details:
        if not isinstance(detail, dict) or "QuotaFailure" not in str(detail.get("@type", "")):
            continue
        violations = detail.get("violations")
        if not isinstance(violations, list) or not violations:
            return None
        violation = violations[0] if isinstance(violations[0], dict) else {}
        if isinstance(violation.get("description"), str):
            return violation["description"]
        if isinstance(violation.get("quotaMetric"), str):
            return f"Quota metric exceeded: {violation['quotaMetric']}"
    return None


def describe_remote_error(error: Any) -> tuple[str, bool]:
    """Return a readable message for an SDK error and whether quota ran out."""
    fallback = "Remote API request failed."
    body = _error_body(error)
    if not body:
        return fallback, False

    nested = body.get("error") if isinstance(body.get("error"), dict) else {}
    status = None
    for source in (nested, body):
        status = status or source.get("status") or source.get("code") or source.get("type")
    message = nested.get("message") or body.get("message") or fallback
    quota_exhausted = body.get("status_code") == 429 or str(status) in QUOTA_STATUSES

    parts = [str(message), _quota_detail(nested.get("details"))]
    if quota_exhausted:
        parts.append(QUOTA_HINT)
    return " ".join(part for part in parts if part), quota_exhausted


class CapabilityClient:
    """Image-to-image, image-to-text and text-to-image calls to remote models."""

    def __init__(self, config: AppConfig, codec: Optional[PayloadCodec] = None) -> None:
        self.config = config
        self.codec = codec or PayloadCodec()
        self._image_backends: Dict[str, BackendCallable] = {}
        self._text_backends: Dict[str, BackendCallable] = {}
        self._generate_backends: Dict[str, BackendCallable] = {}
        self.warnings: list[str] = []
        self._auto_register_backends()

    def register_image_backend(self, name: str, backend: BackendCallable) -> None:
        """Register a backend turning (payload, instruction) into a new payload."""
        self._image_backends[name.lower()] = backend

    def register_text_backend(self, name: str, backend: BackendCallable) -> None:
        """Register a backend turning (payload, instruction) into text."""
        self._text_backends[name.lower()] = backend

    def register_generate_backend(self, name: str, backend: BackendCallable) -> None:
        """Register a backend turning a prompt into a new payload."""
        self._generate_backends[name.lower()] = backend

    def clear_backends(self) -> None:
        """Remove all backends (mainly for tests)."""
        self._image_backends.clear()
        self._text_backends.clear()
        self._generate_backends.clear()

    def available_backends(self) -> Dict[str, list[str]]:
        return {
            "image": sorted(self._image_backends),
            "text": sorted(self._text_backends),
            "generate": sorted(self._generate_backends),
        }

    async def preprocess(self, payload: str) -> str:
        return await self.edit(payload, PREPROCESS_PROMPT)

    async def enhance_for_ocr(self, payload: str) -> str:
        return await self.edit(payload, ENHANCE_PROMPT)

    async def perform_ocr(self, payload: str) -> str:
        return await self.analyze(payload, OCR_PROMPT)

    async def edit(self, payload: str, prompt: str) -> str:
        """Return a new payload produced by applying ``prompt`` to ``payload``."""
        result = await self._call(self._image_backends, "image", CapabilityRequest(prompt, payload))
        if not result.payload:
            reason = result.finish_reason or "No content returned from model."
            raise CapabilityError(f"Image processing failed. Reason: {reason}")
        return result.payload

    async def analyze(self, payload: str, prompt: str) -> str:
        """Return the text a model produces for ``payload`` and ``prompt``."""
        result = await self._call(self._text_backends, "text", CapabilityRequest(prompt, payload))
        if not isinstance(result.text, str):
            reason = result.finish_reason or "No text was returned from the model."
            raise CapabilityError(f"Analysis failed. Reason: {reason}")
        return result.text

    async def generate(self, prompt: str) -> str:
        """Return a payload generated from ``prompt`` alone."""
        result = await self._call(self._generate_backends, "generate", CapabilityRequest(prompt))
        if not result.payload:
            raise CapabilityError(f"Image generation failed. Reason: {result.finish_reason or 'no image returned'}")
        return result.payload

    # Internal helpers ---------------------------------------------------------
    def _select_backend(self, backends: Dict[str, BackendCallable], kind: str) -> BackendCallable:
        if not backends:
            hint = "; ".join(self.warnings) if self.warnings else "configure OPENAI_API_KEY or ANTHROPIC_API_KEY"
            raise CapabilityError(f"No {kind} backend is configured ({hint}).")
        preferred = self.config.metadata.get(f"{kind}_backend")
        if isinstance(preferred, str) and preferred in backends:
            return backends[preferred]
        return backends[sorted(backends)[0]]

    async def _call(
        self, backends: Dict[str, BackendCallable], kind: str, request: CapabilityRequest
    ) -> CapabilityResult:
        backend = self._select_backend(backends, kind)
        request.metadata = self.config.metadata
        try:
            raw = await backend(request)
        except CapabilityError:
            raise
        except Exception as exc:  # noqa: BLE001 - SDK errors are normalised below
            message, quota_exhausted = describe_remote_error(exc)
            logger.error("%s capability call failed: %s", kind, message)
            raise CapabilityError(message, quota_exhausted=quota_exhausted) from exc
        result = self._normalize_backend_response(raw)
        if result.payload and not self.codec.is_payload(result.payload):
            raise CapabilityError("Model returned an image in an unrecognised format.")
        return result

    def _normalize_backend_response(self, payload: CapabilityResult | Dict[str, Any] | str) -> CapabilityResult:
        """Coerce backend outputs into CapabilityResult."""
        if isinstance(payload, CapabilityResult):
            return payload
        if isinstance(payload, dict):
            return CapabilityResult(
                payload=payload.get("payload") or payload.get("image"),
                text=payload.get("text"),
                finish_reason=payload.get("finish_reason"),
            )
        if isinstance(payload, str):
            if self.codec.is_payload(payload):
                return CapabilityResult(payload=payload)
            return CapabilityResult(text=payload)
        return CapabilityResult()

    def _auto_register_backends(self) -> None:
        """Register backends automatically when dependencies are available."""
        self._register_openai_backends()
        self._register_claude_backend()

    def _image_file(self, payload: str) -> tuple[str, bytes, str]:
        mime_type = self.codec.mime_type(payload)
        return f"input{extension_for(mime_type) or '.png'}", self.codec.decode(payload), mime_type

    def _register_openai_backends(self) -> None:
        if not self.config.openai_key:
            return
        try:
            openai_module = importlib.import_module("openai")
        except ImportError as exc:
            self.warnings.append(f"openai could not be imported: {exc}")
            return

        client_kwargs: Dict[str, Any] = {"api_key": self.config.openai_key}
        base_url = self.config.metadata.get("openai_base_url")
        if base_url:
            client_kwargs["base_url"] = base_url
        client = openai_module.AsyncOpenAI(**client_kwargs)

        def _image_result(response: Any) -> CapabilityResult:
            data = getattr(response, "data", None) or []
            encoded = getattr(data[0], "b64_json", None) if data else None
            if not encoded:
                return CapabilityResult(finish_reason="No image was returned from the model for this prompt.")
            return CapabilityResult(payload=f"data:image/png;base64,{encoded}")

        async def _openai_edit(request: CapabilityRequest) -> CapabilityResult:
            response = await client.images.edit(
                model=self.config.openai_image_model,
                image=self._image_file(request.payload or ""),
                prompt=request.prompt,
            )
            return _image_result(response)

        async def _openai_generate(request: CapabilityRequest) -> CapabilityResult:
            response = await client.images.generate(
                model=self.config.openai_image_model,
                prompt=request.prompt,
                size="1024x1024",
                n=1,
            )
            return _image_result(response)

        async def _openai_vision(request: CapabilityRequest) -> CapabilityResult:
            completion = await client.chat.completions.create(
                model=self.config.openai_vision_model,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": request.prompt},
                            {"type": "image_url", "image_url": {"url": request.payload}},
                        ],
                    }
                ],
            )
            if not completion.choices:
                return CapabilityResult(finish_reason="No content returned from model.")
            choice = completion.choices[0]
            return CapabilityResult(text=choice.message.content, finish_reason=choice.finish_reason)

        self.register_image_backend("gpt", _openai_edit)
        self.register_generate_backend("gpt", _openai_generate)
        self.register_text_backend("gpt", _openai_vision)

    def _register_claude_backend(self) -> None:
        if not self.config.anthropic_key:
            return
        try:
            anthropic_module = importlib.import_module("anthropic")
        except ImportError as exc:  # pragma: no cover - optional dependency
            self.warnings.append(f"anthropic could not be imported: {exc}")
            return

        client = anthropic_module.AsyncAnthropic(api_key=self.config.anthropic_key)

        async def _claude_vision(request: CapabilityRequest) -> CapabilityResult:
            mime_type, data = self.codec.split(request.payload or "")
            message = await client.messages.create(
                model=self.config.claude_model,
                max_tokens=4096,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "image", "source": {"type": "base64", "media_type": mime_type, "data": data}},
                            {"type": "text", "text": request.prompt},
                        ],
                    }
                ],
            )
            parts = [getattr(block, "text", "") for block in (message.content or []) if getattr(block, "type", "") == "text"]
            if not parts:
                return CapabilityResult(finish_reason=getattr(message, "stop_reason", None))
            return CapabilityResult(text="\n".join(parts), finish_reason=getattr(message, "stop_reason", None))

        self.register_text_backend("claude", _claude_vision)
