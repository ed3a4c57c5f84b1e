"""Backends the orchestrator talks to: in-process service or the HTTP server."""

import logging
from abc import ABC, abstractmethod

import httpx

from arena.models import Generation, ModelInfo
from arena.retry import RetryPolicy, retry
from arena.service import DebateService

logger = logging.getLogger(__name__)


class BackendError(Exception):
    """Raised when the debate server answers with a non-success status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class Backend(ABC):
    """What the orchestrator and catalog need from the server side."""

    @abstractmethod
    async def list_models(self) -> list[ModelInfo]:
        ...

    @abstractmethod
    async def generate(self, model: str, system_prompt: str, history: list[dict]) -> Generation:
        ...

    async def aclose(self) -> None:
        return None


class LocalBackend(Backend):
    """Calls the DebateService in-process."""

    def __init__(self, service: DebateService) -> None:
        self._service = service

    async def list_models(self) -> list[ModelInfo]:
        return await self._service.list_models()

    async def generate(self, model: str, system_prompt: str, history: list[dict]) -> Generation:
        return await self._service.generate(model, system_prompt, history)


def _error_message(response: httpx.Response, fallback: str) -> str:
    try:
        data = response.json()
    except ValueError:
        return f"{fallback} (HTTP {response.status_code})"
    if not isinstance(data, dict):
        return f"{fallback} (HTTP {response.status_code})"
    return data.get("details") or data.get("error") or fallback


class HttpBackend(Backend):
    """Talks to the debate server; network errors are retried by the transport policy."""

    def __init__(
        self,
        base_url: str,
        transport_policy: RetryPolicy,
        timeout_sec: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._policy = transport_policy
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout_sec)

    async def __aenter__(self) -> "HttpBackend":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        async def _send() -> httpx.Response:
            return await self._client.request(method, url, **kwargs)

        attempt = await retry(_send, self._policy)
        if attempt.retries:
            logger.warning("%s %s needed %d transport retries", method, url, attempt.retries)
        return attempt.value

    async def list_models(self) -> list[ModelInfo]:
        response = await self._request("GET", "/models")
        if response.is_error:
            raise BackendError(_error_message(response, "Failed to fetch models"), response.status_code)
        try:
            data = response.json()
            return [ModelInfo(id=m["id"], name=m["name"]) for m in data["models"]]
        except (ValueError, KeyError, TypeError) as exc:
            raise BackendError(f"Malformed /models response: {exc}", response.status_code) from exc

    async def generate(self, model: str, system_prompt: str, history: list[dict]) -> Generation:
        response = await self._request(
            "POST",
            "/debate",
            json={"model": model, "systemPrompt": system_prompt, "history": history},
        )
        if response.is_error:
            raise BackendError(_error_message(response, "API error"), response.status_code)
        try:
            data = response.json()
            return Generation(text=data["text"], retries=int(data.get("retries", 0)))
        except (ValueError, KeyError, TypeError) as exc:
            raise BackendError(f"Malformed /debate response: {exc}", response.status_code) from exc
