"""Shared pytest fixtures."""

from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from config.config_loader import (
    AppConfig,
    DebateDefaults,
    GeminiConfig,
    PolicyConfig,
    PromptsConfig,
    RetryConfig,
    ServerConfig,
)
from arena.backends import Backend
from arena.models import AgentConfig, CatalogEntry, Generation, ModelInfo
from arena.providers.base import ModelClient
from arena.retry import RetryPolicy, is_network_error, is_rate_limited, is_rate_limited_or_transient


@pytest.fixture
def sample_prompts_config() -> PromptsConfig:
    return PromptsConfig(
        constraint="Be brief.",
        topic_announcement="Debate topic: {topic}",
        opening="Topic: {topic}. Give your first argument. {constraint}",
        counter="Rebut that. {constraint}",
        persona_guard="Keep your own persona.",
        player_rebuttal="Rebut the player. {constraint}",
        cancelled="The debate was stopped by the user.",
        error="The debate stopped because of an error: {error}",
        judge_system="You are a fair judge.",
        judge_instruction="Summarise each side, evaluate rigor, declare a winner.\n---\n{transcript}\n---",
        personas={
            "analyst": "You are a calm analyst.",
            "idealist": "You are a passionate idealist.",
        },
    )


@pytest.fixture
def sample_defaults_config(tmp_path: Path) -> DebateDefaults:
    return DebateDefaults(
        max_turns_per_side=2,
        history_window=50,
        judge_model="judge-model",
        output_dir=tmp_path / "output",
        strict_alternation=True,
        persona_a="analyst",
        persona_b="idealist",
    )


@pytest.fixture
def sample_app_config(
    sample_defaults_config: DebateDefaults,
    sample_prompts_config: PromptsConfig,
) -> AppConfig:
    return AppConfig(
        gemini=GeminiConfig(api_key_env="TEST_GEMINI_KEY", max_output_tokens=1024),
        retry=RetryConfig(
            listing=PolicyConfig(max_attempts=5, delay_ms=0, retry_on="rate_limited_or_transient"),
            generation=PolicyConfig(max_attempts=5, delay_ms=0, retry_on="rate_limited"),
            transport=PolicyConfig(max_attempts=3, delay_ms=0, retry_on="network"),
        ),
        debate=sample_defaults_config,
        server=ServerConfig(host="127.0.0.1", port=8000, base_url="http://test", request_timeout_sec=5),
        prompts=sample_prompts_config,
    )


@pytest.fixture
def listing_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=5, delay_ms=0, retry_predicate=is_rate_limited_or_transient, name="listing")


@pytest.fixture
def generation_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=5, delay_ms=0, retry_predicate=is_rate_limited, name="generation")


@pytest.fixture
def transport_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, delay_ms=0, retry_predicate=is_network_error, name="transport")


@pytest.fixture
def two_agents() -> list[AgentConfig]:
    return [
        AgentConfig(model="model-a", system_prompt="You are A.", display_name="Debater A", persona="analyst"),
        AgentConfig(model="model-b", system_prompt="You are B.", display_name="Debater B", persona="idealist"),
    ]


def catalog_entry(name: str, display_name: str, generate: bool = True) -> CatalogEntry:
    actions = ("generateContent", "countTokens") if generate else ("embedContent",)
    return CatalogEntry(name=name, display_name=display_name, supported_actions=actions)


class MockClient(ModelClient):
    """Test double ModelClient."""

    def __init__(self, entries: list[CatalogEntry] | None = None, text: str = "Mock response") -> None:
        # Shadow the class methods with AsyncMocks at the instance level.
        self.list_models = AsyncMock(return_value=list(entries or []))  # type: ignore[method-assign]
        self.generate = AsyncMock(return_value=text)  # type: ignore[method-assign]

    def name(self) -> str:
        return "mock"

    async def list_models(self) -> list[CatalogEntry]:  # type: ignore[override]
        """Default implementation; replaced by AsyncMock in __init__."""
        return []

    async def generate(self, model: str, system_prompt: str, history: list[dict]) -> str:  # type: ignore[override]
        """Default implementation; replaced by AsyncMock in __init__."""
        return "Mock response"


class MockBackend(Backend):
    """Test double Backend that numbers its responses."""

    def __init__(self, models: list[ModelInfo] | None = None) -> None:
        self.count = 0
        self.list_models = AsyncMock(  # type: ignore[method-assign]
            return_value=list(models or [ModelInfo("model-b", "Model B"), ModelInfo("model-a", "Model A")])
        )
        self.generate = AsyncMock(side_effect=self._numbered)  # type: ignore[method-assign]

    async def _numbered(self, model: str, system_prompt: str, history: list[dict]) -> Generation:
        self.count += 1
        return Generation(text=f"Response {self.count} from {model}", retries=0)

    async def list_models(self) -> list[ModelInfo]:  # type: ignore[override]
        """Default implementation; replaced by AsyncMock in __init__."""
        return []

    async def generate(self, model: str, system_prompt: str, history: list[dict]) -> Generation:  # type: ignore[override]
        """Default implementation; replaced by AsyncMock in __init__."""
        return Generation(text="", retries=0)


@pytest.fixture
def mock_client() -> MockClient:
    return MockClient()


@pytest.fixture
def mock_backend() -> MockBackend:
    return MockBackend()
