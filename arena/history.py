"""Sliding history window and API payload shaping for the user/model role protocol."""

import logging

from arena.models import Role, Speaker, Turn

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SIZE = 50


def window_for(conversation: list[Turn], max_size: int = DEFAULT_WINDOW_SIZE) -> list[Turn]:
    """Return the most recent in-context turns, trimmed to start with a user turn.

    Turns that are display-only (topic announcement, notices) never enter the
    window. Leading model turns are dropped, never reordered, so the result
    either starts with a user turn or is empty.
    """
    if max_size <= 0:
        return []
    context = [t for t in conversation if t.in_context]
    window = context[-max_size:]
    start = 0
    while start < len(window) and window[start].role is Role.MODEL:
        start += 1
    if start:
        logger.debug("Dropped %d leading model turn(s) from window", start)
    return window[start:]


def enforce_alternation(window: list[Turn]) -> list[Turn]:
    """Merge consecutive same-role turns so roles strictly alternate.

    Contents of a merged run are joined with a blank line; the first turn of
    the run keeps its speaker and telemetry.
    """
    merged: list[Turn] = []
    for turn in window:
        if merged and merged[-1].role is turn.role:
            head = merged[-1]
            merged[-1] = Turn(
                role=head.role,
                content=f"{head.content}\n\n{turn.content}",
                speaker=head.speaker,
                latency_ms=head.latency_ms,
                retry_count=head.retry_count,
            )
            continue
        merged.append(turn)
    if len(merged) != len(window):
        logger.debug("Merged %d same-role turn(s) to keep roles alternating", len(window) - len(merged))
    return merged


def to_api_payload(window: list[Turn]) -> list[dict]:
    """Strip attribution and telemetry, leaving the exact shape the API accepts."""
    return [{"role": t.role.value, "parts": [{"text": t.content}]} for t in window]


def format_transcript(conversation: list[Turn]) -> str:
    """Flatten every non-System turn to 'speaker: content' blocks."""
    return "\n\n".join(
        f"{t.speaker.value}: {t.content}"
        for t in conversation
        if t.speaker is not Speaker.SYSTEM
    )
