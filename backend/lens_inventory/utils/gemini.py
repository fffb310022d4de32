"""Model gateway: the single seam between the pipeline and Gemini.

``GeminiGateway`` is built once from an immutable ``GatewayConfig`` and
passed into every scan/match call. It returns raw text plus grounding
chunks and raises the SDK's own exceptions unchanged; classification into
the failure taxonomy happens at the pipeline boundary (errors.classify_error).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog
from google import genai
from google.genai import types

from lens_inventory.config import Settings, settings
from lens_inventory.errors import InvalidKey

logger = structlog.get_logger()

GROUNDED_CONFIG = types.GenerateContentConfig(
    tools=[types.Tool(google_search=types.GoogleSearch())],
)

JSON_CONFIG = types.GenerateContentConfig(
    response_mime_type="application/json",
)


@dataclass(frozen=True)
class ImagePayload:
    data: bytes
    mime_type: str = "image/jpeg"


@dataclass(frozen=True)
class GatewayResponse:
    text: str
    grounding_chunks: list[dict[str, Any]] = field(default_factory=list)


class ModelGateway(Protocol):
    async def generate(
        self,
        prompt: str,
        *,
        image: ImagePayload | None = None,
        grounded_search: bool = False,
    ) -> GatewayResponse: ...


@dataclass(frozen=True)
class GatewayConfig:
    api_key: str = field(repr=False)
    model: str
    timeout_seconds: float

    @classmethod
    def from_settings(cls, source: Settings | None = None) -> GatewayConfig:
        """Validate credentials once; a missing key is a configuration error."""
        source = source or settings
        api_key = source.google_ai_api_key.strip()
        if not api_key:
            raise InvalidKey("missing")
        return cls(
            api_key=api_key,
            model=source.gemini_model,
            timeout_seconds=source.gemini_timeout_seconds,
        )


def first_text(response: types.GenerateContentResponse) -> str:
    """Return the first non-thought part carrying text, or "".

    Grounded responses are often split into several parts; the first textual
    one holds the answer.
    """
    if not response.candidates:
        return ""
    content = response.candidates[0].content
    if content is None or content.parts is None:
        return ""
    for part in content.parts:
        if part.thought:
            continue
        if part.text:
            return part.text
    return ""


def grounding_chunks(response: types.GenerateContentResponse) -> list[dict[str, Any]]:
    """Return the first candidate's grounding chunks as plain dicts."""
    if not response.candidates:
        return []
    metadata = response.candidates[0].grounding_metadata
    if metadata is None or not metadata.grounding_chunks:
        return []
    return [chunk.model_dump(exclude_none=True) for chunk in metadata.grounding_chunks]


class GeminiGateway:
    """ModelGateway backed by the google-genai async client."""

    def __init__(self, config: GatewayConfig, client: genai.Client | None = None) -> None:
        self.config = config
        self._client = client or genai.Client(
            api_key=config.api_key,
            http_options=types.HttpOptions(timeout=int(config.timeout_seconds * 1000)),
        )

    async def generate(
        self,
        prompt: str,
        *,
        image: ImagePayload | None = None,
        grounded_search: bool = False,
    ) -> GatewayResponse:
        parts: list[types.Part] = []
        if image is not None:
            parts.append(types.Part.from_bytes(data=image.data, mime_type=image.mime_type))
        parts.append(types.Part(text=prompt))

        response = await self._client.aio.models.generate_content(
            model=self.config.model,
            contents=[types.Content(role="user", parts=parts)],
            config=GROUNDED_CONFIG if grounded_search else JSON_CONFIG,
        )

        usage = response.usage_metadata
        logger.info(
            "gemini_generate_completed",
            model=self.config.model,
            grounded=grounded_search,
            with_image=image is not None,
            input_tokens=usage.prompt_token_count if usage else None,
            output_tokens=usage.candidates_token_count if usage else None,
        )
        return GatewayResponse(text=first_text(response), grounding_chunks=grounding_chunks(response))
