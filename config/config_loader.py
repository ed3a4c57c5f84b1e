"""Load settings.yaml into typed dataclasses. Validates the API key at startup."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"


class ConfigError(Exception):
    """Raised when required configuration is missing or invalid."""


@dataclass
class GeminiConfig:
    api_key_env: str
    max_output_tokens: int
    block_none_safety: bool = True


@dataclass
class PolicyConfig:
    max_attempts: int
    delay_ms: int
    retry_on: str


@dataclass
class RetryConfig:
    listing: PolicyConfig
    generation: PolicyConfig
    transport: PolicyConfig


@dataclass
class DebateDefaults:
    max_turns_per_side: int
    history_window: int
    judge_model: str
    output_dir: Path
    strict_alternation: bool = True
    persona_a: str = ""
    persona_b: str = ""


@dataclass
class ServerConfig:
    host: str
    port: int
    base_url: str
    request_timeout_sec: float


@dataclass
class PromptsConfig:
    constraint: str
    topic_announcement: str
    opening: str
    counter: str
    persona_guard: str
    player_rebuttal: str
    cancelled: str
    error: str
    judge_system: str
    judge_instruction: str
    personas: dict[str, str] = field(default_factory=dict)


@dataclass
class AppConfig:
    gemini: GeminiConfig
    retry: RetryConfig
    debate: DebateDefaults
    server: ServerConfig
    prompts: PromptsConfig


def _policy(raw: dict) -> PolicyConfig:
    policy = PolicyConfig(
        max_attempts=int(raw["max_attempts"]),
        delay_ms=int(raw["delay_ms"]),
        retry_on=str(raw["retry_on"]),
    )
    if policy.max_attempts < 1:
        raise ConfigError(f"max_attempts must be >= 1, got {policy.max_attempts}")
    if policy.delay_ms < 0:
        raise ConfigError(f"delay_ms must be >= 0, got {policy.delay_ms}")
    return policy


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing and ConfigError on bad
    retry values. The API key is not checked here — see require_api_key().
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    gemini_raw = raw["gemini"]
    gemini = GeminiConfig(
        api_key_env=str(gemini_raw["api_key_env"]),
        max_output_tokens=int(gemini_raw["max_output_tokens"]),
        block_none_safety=bool(gemini_raw.get("block_none_safety", True)),
    )

    retry_raw = raw["retry"]
    retry = RetryConfig(
        listing=_policy(retry_raw["listing"]),
        generation=_policy(retry_raw["generation"]),
        transport=_policy(retry_raw["transport"]),
    )

    debate_raw = raw["debate"]
    debate = DebateDefaults(
        max_turns_per_side=int(debate_raw["max_turns_per_side"]),
        history_window=int(debate_raw["history_window"]),
        judge_model=str(debate_raw["judge_model"]),
        output_dir=Path(debate_raw["output_dir"]),
        strict_alternation=bool(debate_raw.get("strict_alternation", True)),
        persona_a=str(debate_raw.get("persona_a", "")),
        persona_b=str(debate_raw.get("persona_b", "")),
    )

    server_raw = raw["server"]
    server = ServerConfig(
        host=str(server_raw["host"]),
        port=int(server_raw["port"]),
        base_url=str(server_raw["base_url"]).rstrip("/"),
        request_timeout_sec=float(server_raw["request_timeout_sec"]),
    )

    prompts_raw = raw["prompts"]
    personas_raw = raw.get("personas", {})
    prompts = PromptsConfig(
        constraint=prompts_raw["constraint"],
        topic_announcement=prompts_raw["topic_announcement"],
        opening=prompts_raw["opening"],
        counter=prompts_raw["counter"],
        persona_guard=prompts_raw["persona_guard"],
        player_rebuttal=prompts_raw["player_rebuttal"],
        cancelled=prompts_raw["cancelled"],
        error=prompts_raw["error"],
        judge_system=prompts_raw["judge_system"],
        judge_instruction=prompts_raw["judge_instruction"],
        personas={k: str(v) for k, v in personas_raw.items()},
    )

    for side, name in (("A", debate.persona_a), ("B", debate.persona_b)):
        if name and name not in prompts.personas:
            logger.warning("Default persona for side %s is unknown: %s", side, name)

    return AppConfig(
        gemini=gemini,
        retry=retry,
        debate=debate,
        server=server,
        prompts=prompts,
    )


def require_api_key(config: AppConfig) -> str:
    """Return the Gemini API key from the environment.

    Raises ConfigError when the variable is unset or blank. Callers treat
    this as fatal at startup.
    """
    api_key = os.environ.get(config.gemini.api_key_env, "").strip()
    if not api_key:
        raise ConfigError(
            f"Missing API key: set {config.gemini.api_key_env} in the environment or .env"
        )
    return api_key
