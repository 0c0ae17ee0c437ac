"""Language model collaborators used for summarization."""

import logging
from typing import Any, Optional, Protocol

import httpx

from ..config import LLMConfig
from ..errors import ApiError
from .models import LLMRequest

logger = logging.getLogger(__name__)


class LanguageModel(Protocol):
    """Completes a prompt and returns free text."""

    async def complete(self, request: LLMRequest) -> str:
        ...


def extract_text(payload: Any) -> str:
    """Concatenate the text blocks of a messages API response.

    Raises:
        ApiError: If the payload has no text content
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("content"), list):
        raise ApiError("Unexpected LLM response format: missing content list")

    parts = [
        block.get("text", "")
        for block in payload["content"]
        if isinstance(block, dict) and block.get("type") == "text"
    ]
    text = "".join(p for p in parts if isinstance(p, str))
    if not text:
        raise ApiError("LLM response contained no text")
    return text


class AnthropicMessagesClient:
    """Minimal async client for the Anthropic messages API."""

    def __init__(self, config: LLMConfig, client: Optional[httpx.AsyncClient] = None):
        """Initialize the client.

        Args:
            config: Endpoint, model and credential settings
            client: Optional preconfigured httpx client

        Raises:
            ValueError: If no API key is configured
        """
        if not config.api_key:
            raise ValueError("ANTHROPIC_API_KEY is not set")
        self.config = config
        self.api_base = config.api_base.rstrip("/")
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.timeout)
        return self._client

    async def complete(self, request: LLMRequest) -> str:
        """Send one prompt and return the response text.

        Raises:
            ApiError: On transport failures, non-2xx responses or bad payloads
        """
        body = {
            "model": self.config.model,
            "max_tokens": request.max_tokens,
            "system": request.system_prompt,
            "messages": [{"role": "user", "content": request.user_prompt}],
        }
        headers = {
            "x-api-key": self.config.api_key,
            "anthropic-version": self.config.api_version,
            "content-type": "application/json",
        }

        try:
            response = await self._get_client().post(
                f"{self.api_base}/messages", json=body, headers=headers
            )
        except httpx.HTTPError as e:
            raise ApiError(f"LLM request failed: {e}", retryable=True) from e

        if response.status_code >= 300:
            raise ApiError.from_status(response.status_code, response.text)

        try:
            payload = response.json()
        except ValueError as e:
            raise ApiError(f"LLM response is not JSON: {e}") from e
        return extract_text(payload)

    async def close(self) -> None:
        if self._client is not None:
            try:
                await self._client.aclose()
            except Exception as e:
                logger.warning(f"Error closing httpx client: {e}")
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
