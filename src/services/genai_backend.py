"""Gemini streaming backend for image generation and editing."""

import logging
from typing import Any, AsyncIterator, Optional

from google.genai import Client, errors, types

from models.generation import ContentPart
from utils.config import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash-image-preview"

# Ask for both so the model can explain or refuse in text
RESPONSE_MODALITIES = ["IMAGE", "TEXT"]


class GenerationBackendError(Exception):
    """Error from the generative backend."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class GenAIBackend:
    """Thin async wrapper around ``google.genai`` streaming generation."""

    def __init__(self, api_key: str = "", model_name: str = DEFAULT_MODEL):
        """Initialize the backend.

        Args:
            api_key: Gemini API key; without it every call fails with
                ConfigurationError
            model_name: Gemini model with image output support
        """
        self.api_key = api_key
        self.model_name = model_name or DEFAULT_MODEL
        self._client: Client | None = Client(api_key=api_key) if api_key else None

    def is_configured(self) -> bool:
        """Check if the Gemini API key is configured."""
        return self._client is not None

    def ensure_configured(self) -> None:
        if not self.is_configured():
            raise ConfigurationError("GEMINI_API_KEY not configured")

    @staticmethod
    def to_sdk_part(part: ContentPart) -> types.Part:
        if part.is_text:
            return types.Part.from_text(text=part.text)
        return types.Part.from_bytes(data=part.data, mime_type=part.mime_type)

    async def stream(self, parts: list[ContentPart]) -> AsyncIterator[Any]:
        """Stream response chunks for a single user turn.

        Args:
            parts: Ordered input parts (inline images and text)

        Yields:
            ``GenerateContentResponse`` chunks as they arrive

        Raises:
            ConfigurationError: If no API key is configured
            GenerationBackendError: If the API rejects the call or fails mid-stream
        """
        self.ensure_configured()

        contents = [
            types.Content(role="user", parts=[self.to_sdk_part(part) for part in parts])
        ]
        config = types.GenerateContentConfig(response_modalities=RESPONSE_MODALITIES)

        logger.info(f"Streaming {self.model_name} with {len(parts)} input part(s)")

        try:
            response = await self._client.aio.models.generate_content_stream(
                model=self.model_name, contents=contents, config=config
            )
            async for chunk in response:
                yield chunk
        except errors.APIError as e:
            raise GenerationBackendError(
                f"Gemini API error {e.code}: {e.message or e.status}", status_code=e.code
            ) from e
