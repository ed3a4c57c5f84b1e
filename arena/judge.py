"""Judge phase: one-shot verdict over the flattened debate transcript."""

import logging

from config.config_loader import PromptsConfig
from arena.backends import Backend
from arena.models import Generation

logger = logging.getLogger(__name__)


def build_judge_request(transcript: str, prompts: PromptsConfig) -> tuple[str, list[dict]]:
    """Return (system_prompt, history) for the judge call."""
    instruction = prompts.judge_instruction.format(transcript=transcript)
    return prompts.judge_system, [{"role": "user", "parts": [{"text": instruction}]}]


async def judge(
    backend: Backend,
    transcript: str,
    model: str,
    prompts: PromptsConfig,
) -> Generation:
    """Ask the judge model for a verdict.

    Raises:
        RuntimeError: If the judge returns empty text.
        Anything the backend raises.
    """
    system_prompt, history = build_judge_request(transcript, prompts)
    logger.info("Running judge via %s (%d transcript chars)", model, len(transcript))

    verdict = await backend.generate(model, system_prompt, history)
    if not verdict.text.strip():
        raise RuntimeError(f"Judge {model} returned empty content")
    return verdict
