"""LLM client protocol and the Anthropic-backed implementation.

Judges and rewriters take an LLMClient by injection. The engine itself never
picks a model: the caller names one per client or per call.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from typing import Any, Awaitable, Callable, Optional, Protocol, runtime_checkable

from refineloop.core.config import LLMConfig
from refineloop.core.errors import LLMError

logger = logging.getLogger(__name__)


@runtime_checkable
class LLMClient(Protocol):
    """Protocol for LLM API calls.

    Enables testing with a mock client.
    """

    async def complete(
        self,
        system: str,
        user: str,
        model: Optional[str] = None,
        temperature: float = 0.0,
        max_tokens: int = 4096,
    ) -> str:
        """Return the text content of the LLM response."""
        ...

    async def complete_with_image(
        self,
        system: str,
        user: str,
        image_bytes: bytes,
        model: Optional[str] = None,
        temperature: float = 0.0,
        max_tokens: int = 4096,
    ) -> str:
        """Return the text content of the LLM response (vision)."""
        ...


async def _with_retries(
    call: Callable[[], Awaitable[str]],
    max_retries: int,
    label: str,
) -> str:
    """Run an API call with exponential backoff between attempts."""
    last_error: Optional[Exception] = None
    for attempt in range(max_retries):
        try:
            return await call()
        except Exception as e:
            last_error = e
            logger.warning("%s attempt %d/%d failed: %s", label, attempt + 1, max_retries, e)
            if attempt < max_retries - 1:
                await asyncio.sleep(2**attempt)
    raise LLMError(f"{label} failed after {max_retries} retries: {last_error}")


def image_media_type(image_bytes: bytes) -> str:
    """Media type of a rendered candidate, sniffed from its magic bytes."""
    if image_bytes.startswith(b"\x89PNG"):
        return "image/png"
    if image_bytes.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if image_bytes[:4] == b"RIFF" and image_bytes[8:12] == b"WEBP":
        return "image/webp"
    if image_bytes.startswith((b"GIF87a", b"GIF89a")):
        return "image/gif"
    raise LLMError("Unsupported image format for vision call (expected PNG, JPEG, WebP or GIF)")


class AnthropicClient:
    """LLMClient over the Anthropic Messages API.

    model may be fixed per client or passed per call; one of the two is
    required. sdk_client accepts a prebuilt AsyncAnthropic (or a stand-in
    with the same messages.create) instead of building one from api_key.
    """

    def __init__(
        self,
        config: LLMConfig = LLMConfig(),
        model: Optional[str] = None,
        api_key: str = "",
        sdk_client: Any = None,
    ) -> None:
        self.config = config
        self.model = model
        if sdk_client is not None:
            self._client = sdk_client
            return
        # Lazy import: anthropic is an optional dependency
        try:
            import anthropic
        except ImportError as e:
            raise LLMError(
                "anthropic package not installed. "
                "Install with: pip install refineloop[llm]"
            ) from e
        self._client = anthropic.AsyncAnthropic(api_key=api_key or None)

    def _resolve_model(self, model: Optional[str]) -> str:
        resolved = model or self.model
        if not resolved:
            raise LLMError("No model given: pass model= to AnthropicClient or to the call")
        return resolved

    async def _create(self, model: str, system: str, content: Any, temperature: float, max_tokens: int) -> str:
        response = await self._client.messages.create(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system,
            messages=[{"role": "user", "content": content}],
        )
        text = "".join(
            block.text for block in response.content if getattr(block, "type", "text") == "text"
        )
        if not text:
            raise LLMError(f"Empty response from {model}")
        return text

    async def complete(
        self,
        system: str,
        user: str,
        model: Optional[str] = None,
        temperature: float = 0.0,
        max_tokens: int = 4096,
    ) -> str:
        resolved = self._resolve_model(model)
        return await _with_retries(
            lambda: self._create(resolved, system, user, temperature, max_tokens),
            self.config.max_retries,
            f"Anthropic call ({resolved})",
        )

    async def complete_with_image(
        self,
        system: str,
        user: str,
        image_bytes: bytes,
        model: Optional[str] = None,
        temperature: float = 0.0,
        max_tokens: int = 4096,
    ) -> str:
        resolved = self._resolve_model(model)
        content = [
            {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": image_media_type(image_bytes),
                    "data": base64.standard_b64encode(image_bytes).decode("utf-8"),
                },
            },
            {"type": "text", "text": user},
        ]
        return await _with_retries(
            lambda: self._create(resolved, system, content, temperature, max_tokens),
            self.config.max_retries,
            f"Anthropic vision call ({resolved})",
        )
