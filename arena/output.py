"""Rich console rendering of debate turns and markdown file save."""

import logging
import re
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from arena.models import AgentConfig, DebateSession, ModelInfo, Speaker, Turn

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

_BORDERS = {
    Speaker.DEBATER_A: "cyan",
    Speaker.DEBATER_B: "magenta",
    Speaker.PLAYER: "green",
    Speaker.JUDGE: "yellow",
}


def _slug(text: str, max_len: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len]


def _telemetry(turn: Turn) -> str:
    bits: list[str] = []
    if turn.latency_ms is not None:
        bits.append(f"{turn.latency_ms / 1000:.1f}s")
    if turn.retry_count:
        bits.append(f"{turn.retry_count} retries")
    return " | ".join(bits)


def speaker_label(speaker: Speaker, agents: dict[Speaker, AgentConfig]) -> str:
    agent = agents.get(speaker)
    return agent.display_name if agent else speaker.value


def print_turn(turn: Turn, agents: dict[Speaker, AgentConfig]) -> None:
    """Print one displayed turn; hidden prompts are skipped."""
    if not turn.displayed:
        return
    if turn.speaker is Speaker.SYSTEM:
        console.print(Text(turn.content, style="dim italic"))
        return
    if turn.speaker is Speaker.JUDGE:
        console.print(Rule("[bold yellow]Verdict[/bold yellow]"))
        console.print(Markdown(turn.content))
        return
    console.print(
        Panel(
            turn.content,
            title=f"[bold]{speaker_label(turn.speaker, agents)}[/bold]",
            subtitle=_telemetry(turn) or None,
            border_style=_BORDERS.get(turn.speaker, "dim"),
        )
    )


def print_models(models: list[ModelInfo]) -> None:
    table = Table(title="Available models")
    table.add_column("id", style="cyan")
    table.add_column("name")
    for m in models:
        table.add_row(m.id, m.name)
    console.print(table)


def save_to_file(
    session: DebateSession,
    agents: dict[Speaker, AgentConfig],
    output_dir: Path,
    judge_model: str | None = None,
) -> Path:
    """Save the displayed transcript and verdict as a markdown file.

    Returns:
        Path to the saved file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    filepath = output_dir / f"{timestamp}_{_slug(session.topic) or 'debate'}.md"

    lines: list[str] = [
        f"# Debate: {session.topic[:80]}",
        "",
        f"**Date:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"**Mode:** {session.mode.value}",
    ]
    for speaker, agent in agents.items():
        persona = agent.persona or "custom"
        lines.append(f"**{speaker_label(speaker, agents)}:** {agent.model} ({persona})")
    if judge_model:
        lines.append(f"**Judge:** {judge_model}")
    lines += ["", "---", ""]

    for turn in session.turns:
        if not turn.displayed or turn.speaker is Speaker.JUDGE:
            continue
        if turn.speaker is Speaker.SYSTEM:
            lines += [f"*{turn.content}*", ""]
            continue
        lines += [f"### {speaker_label(turn.speaker, agents)}", "", turn.content, ""]
        telemetry = _telemetry(turn)
        if telemetry:
            lines += [f"*{telemetry}*", ""]

    lines += ["## Verdict", "", session.verdict or "*No verdict was produced.*", ""]

    filepath.write_text("\n".join(lines), encoding="utf-8")
    logger.info("Debate saved to: %s", filepath)
    return filepath
