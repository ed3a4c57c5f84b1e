"""Abstract base for model-call clients and the failure classes they raise."""

from abc import ABC, abstractmethod

from arena.models import CatalogEntry


class ProviderError(Exception):
    """Raised when a provider call fails."""

    def __init__(self, provider_name: str, message: str) -> None:
        self.provider_name = provider_name
        super().__init__(f"[{provider_name}] {message}")


class RateLimitedError(ProviderError):
    """The endpoint answered HTTP 403."""


class TransientError(ProviderError):
    """Network-level failure: connection reset, DNS failure, timeout."""


class PermanentError(ProviderError):
    """Any other non-success status or a malformed payload."""


class NoCompatibleModelsError(ProviderError):
    """The catalog holds no model that supports generateContent."""

    def __init__(self, provider_name: str) -> None:
        super().__init__(provider_name, "No compatible models available")


class ModelClient(ABC):
    """Abstract base for model-call clients."""

    @abstractmethod
    def name(self) -> str:
        """Return the short provider name (e.g. 'gemini')."""
        ...

    @abstractmethod
    async def list_models(self) -> list[CatalogEntry]:
        """Fetch the raw model catalog.

        Raises:
            ProviderError subclass classified from the transport outcome.
        """
        ...

    @abstractmethod
    async def generate(self, model: str, system_prompt: str, history: list[dict]) -> str:
        """Issue one generation request.

        Args:
            model: Model identifier from the catalog (e.g. 'gemini-1.5-pro').
            system_prompt: System instruction for this call.
            history: API payload; the last entry is the message being sent.

        Returns:
            The generated text.

        Raises:
            RateLimitedError, TransientError or PermanentError.
        """
        ...
