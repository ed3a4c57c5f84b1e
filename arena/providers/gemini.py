"""Gemini client using google-genai SDK with native async."""

import asyncio
import logging
import time
from contextlib import asynccontextmanager

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types

from config.config_loader import GeminiConfig
from arena.models import CatalogEntry
from arena.providers.base import (
    ModelClient,
    PermanentError,
    ProviderError,
    RateLimitedError,
    TransientError,
)

logger = logging.getLogger(__name__)

_NAME = "gemini"

_SAFETY_CATEGORIES = (
    genai_types.HarmCategory.HARM_CATEGORY_HARASSMENT,
    genai_types.HarmCategory.HARM_CATEGORY_HATE_SPEECH,
    genai_types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
    genai_types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
)


def _classify(exc: Exception) -> ProviderError:
    """Map an SDK/transport exception onto the provider failure classes."""
    if isinstance(exc, genai_errors.APIError):
        if exc.code == 403:
            return RateLimitedError(_NAME, f"HTTP 403: {exc}")
        return PermanentError(_NAME, f"HTTP {exc.code}: {exc}")
    if isinstance(exc, (httpx.TransportError, asyncio.TimeoutError, ConnectionError)):
        return TransientError(_NAME, f"Network error: {exc!r}")
    return PermanentError(_NAME, f"API call failed: {exc}")


def _to_content(message: dict) -> genai_types.Content:
    return genai_types.Content(
        role=message["role"],
        parts=[genai_types.Part(text=part["text"]) for part in message["parts"]],
    )


class GeminiProvider(ModelClient):
    """Google Gemini client via google-genai SDK."""

    def __init__(self, config: GeminiConfig, api_key: str) -> None:
        self._config = config
        if not api_key:
            raise ProviderError(_NAME, f"Missing API key: {config.api_key_env}")
        self._api_key = api_key

    def name(self) -> str:
        return _NAME

    @asynccontextmanager
    async def _session(self):
        # One client per call: the SDK's async transport is bound to the loop
        # it first ran on, and the server runs each async view on its own loop.
        client = genai.Client(api_key=self._api_key)
        try:
            yield client.aio
        finally:
            await client.aio.aclose()
            client.close()

    def _safety_settings(self) -> list[genai_types.SafetySetting] | None:
        if not self._config.block_none_safety:
            return None
        return [
            genai_types.SafetySetting(
                category=category,
                threshold=genai_types.HarmBlockThreshold.BLOCK_NONE,
            )
            for category in _SAFETY_CATEGORIES
        ]

    async def list_models(self) -> list[CatalogEntry]:
        try:
            async with self._session() as aio:
                pager = await aio.models.list()
                entries = [
                    CatalogEntry(
                        name=m.name or "",
                        display_name=m.display_name or "",
                        supported_actions=tuple(m.supported_actions or ()),
                    )
                    async for m in pager
                ]
        except Exception as exc:
            raise _classify(exc) from exc

        logger.debug("Gemini catalog returned %d models", len(entries))
        return entries

    async def generate(self, model: str, system_prompt: str, history: list[dict]) -> str:
        if not history:
            raise PermanentError(_NAME, "Cannot send an empty history")

        *previous, last = history
        message = last["parts"][0]["text"] if last.get("parts") else ""

        start = time.monotonic()
        try:
            async with self._session() as aio:
                chat = aio.chats.create(
                    model=model,
                    config=genai_types.GenerateContentConfig(
                        system_instruction=system_prompt,
                        safety_settings=self._safety_settings(),
                        max_output_tokens=self._config.max_output_tokens,
                    ),
                    history=[_to_content(m) for m in previous],
                )
                response = await chat.send_message(message)
        except Exception as exc:
            raise _classify(exc) from exc

        latency = time.monotonic() - start

        try:
            text = response.text
        except ValueError as exc:
            raise PermanentError(_NAME, f"Malformed response: {exc}") from exc
        if not text:
            raise PermanentError(_NAME, "Empty response text")

        logger.info("Gemini %s: %.2fs, %d chars", model, latency, len(text))
        return text
