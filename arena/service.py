"""Server-side operations: catalog listing and generation, each behind its retry policy."""

import logging

from config.config_loader import AppConfig, require_api_key
from arena.models import CatalogEntry, Generation, ModelInfo
from arena.providers.base import ModelClient, NoCompatibleModelsError, PermanentError
from arena.providers.gemini import GeminiProvider
from arena.retry import RetryPolicy, policy_from_config, retry

logger = logging.getLogger(__name__)

GENERATE_CONTENT = "generateContent"


def filter_catalog(entries: list[CatalogEntry]) -> list[ModelInfo]:
    """Keep generateContent-capable models as {id, name}, sorted by id descending.

    The descending string sort is only a rough "latest first" heuristic;
    it is not a version-aware ordering.
    """
    models = [
        ModelInfo(id=e.name.split("/")[-1], name=e.display_name)
        for e in entries
        if GENERATE_CONTENT in e.supported_actions
    ]
    return sorted(models, key=lambda m: m.id, reverse=True)


class DebateService:
    """Wraps a ModelClient with the listing and generation retry policies."""

    def __init__(
        self,
        client: ModelClient,
        listing_policy: RetryPolicy,
        generation_policy: RetryPolicy,
    ) -> None:
        self._client = client
        self._listing_policy = listing_policy
        self._generation_policy = generation_policy

    async def list_models(self) -> list[ModelInfo]:
        """Fetch the catalog and return compatible models.

        Raises:
            NoCompatibleModelsError: nothing in the catalog supports generateContent.
            RetriesExhausted / ProviderError: listing failed.
        """
        attempt = await retry(self._client.list_models, self._listing_policy)
        models = filter_catalog(attempt.value)
        if not models:
            raise NoCompatibleModelsError(self._client.name())
        logger.info("Catalog: %d compatible models (%d retries)", len(models), attempt.retries)
        return models

    async def generate(self, model: str, system_prompt: str, history: list[dict]) -> Generation:
        """Generate the next message for history; only rate limiting is retried."""
        if history and history[0].get("role") != "user":
            raise PermanentError(
                self._client.name(),
                f"First content should be with role 'user', got {history[0].get('role')}",
            )

        async def _call() -> str:
            return await self._client.generate(model, system_prompt, history)

        attempt = await retry(_call, self._generation_policy)
        logger.info(
            "Generated %d chars with %s after %d attempt(s)",
            len(attempt.value), model, attempt.retries + 1,
        )
        return Generation(text=attempt.value, retries=attempt.retries)


def build_service(config: AppConfig, client: ModelClient | None = None) -> DebateService:
    """Wire the Gemini client and the configured retry policies together.

    Raises:
        ConfigError: the API key is missing (only when no client is given).
    """
    if client is None:
        client = GeminiProvider(config.gemini, require_api_key(config))
    return DebateService(
        client,
        listing_policy=policy_from_config("listing", config.retry.listing),
        generation_policy=policy_from_config("generation", config.retry.generation),
    )
