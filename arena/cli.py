"""Click CLI — wires config, backend, catalog and orchestrator to the terminal."""

import asyncio
import logging
import signal
import sys
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler

from config.config_loader import AppConfig, ConfigError, load_config
from arena.backends import Backend, HttpBackend, LocalBackend
from arena.catalog import ModelCatalog
from arena.models import AgentConfig, Mode, Phase
from arena.orchestrator import DebateOrchestrator, DebateValidationError, resolve_agent
from arena.output import print_models, print_turn, save_to_file
from arena.retry import policy_from_config
from arena.server import create_app
from arena.service import build_service

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

_END_COMMANDS = {"", "/end", "/quit"}


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )
    for noisy in ("httpx", "httpcore", "google_genai"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def _fail(message: str) -> None:
    console.print(f"[bold red]Error:[/bold red] {message}")
    sys.exit(1)


def _build_backend(config: AppConfig, remote: bool) -> Backend:
    """Remote talks to a running `arena serve`; local calls Gemini in-process."""
    if remote:
        return HttpBackend(
            config.server.base_url,
            policy_from_config("transport", config.retry.transport),
            timeout_sec=config.server.request_timeout_sec,
        )
    return LocalBackend(build_service(config))


def _pick_model(requested: str | None, catalog: ModelCatalog, side: str) -> str:
    """Use the requested model, else the first catalog entry."""
    if requested:
        if catalog.models and requested not in catalog.ids():
            logger.warning("Model '%s' for %s is not in the catalog", requested, side)
        return requested
    if not catalog.models:
        _fail(f"No model given for {side} and the catalog is empty.")
    return catalog.models[0].id


def _install_stop_handler(orchestrator: DebateOrchestrator) -> bool:
    """Route Ctrl-C to orchestrator.stop(). Returns False where unsupported."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, orchestrator.stop)
    except (NotImplementedError, RuntimeError):
        return False
    return True


def _print_outcome(orchestrator: DebateOrchestrator, save: bool, output_dir: Path) -> None:
    session = orchestrator.session
    if session.error:
        console.print(f"[bold red]Error:[/bold red] {session.error}")
        orchestrator.dismiss_error()
    if save:
        saved = save_to_file(session, orchestrator.agents, output_dir, orchestrator.judge_model)
        console.print(f"\n[dim]Saved to: {saved}[/dim]")


async def _load_catalog(backend: Backend) -> ModelCatalog:
    catalog = ModelCatalog(backend)
    try:
        await catalog.load()
    except Exception as exc:
        logger.warning("Could not load model catalog: %s", exc)
    return catalog


@click.group()
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """Debate Arena -- two Gemini models argue, a third one judges.

    \b
    Examples:
      arena models
      arena debate "Is AI good for humanity?" --turns 3
      arena debate "Remote work" --model-a gemini-1.5-flash --persona-b realist --save
      arena play "Should cities ban cars?"
      arena serve --port 8000
      arena debate "Nuclear power" --remote
    """
    load_dotenv()
    _setup_logging(verbose)
    try:
        ctx.obj = load_config()
    except (FileNotFoundError, ConfigError) as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)


@main.command()
@click.option("--host", default=None, help="Bind address (default: from config)")
@click.option("--port", default=None, type=int, help="Port (default: from config)")
@click.pass_obj
def serve(config: AppConfig, host: str | None, port: int | None) -> None:
    """Run the HTTP server exposing /models and /debate."""
    try:
        service = build_service(config)
    except ConfigError as exc:
        _fail(str(exc))
    app = create_app(service)
    app.run(host=host or config.server.host, port=port or config.server.port)


@main.command()
@click.option("--remote", is_flag=True, help="Ask a running server instead of Gemini directly")
@click.pass_obj
def models(config: AppConfig, remote: bool) -> None:
    """List models that support content generation."""

    async def _run() -> None:
        try:
            backend = _build_backend(config, remote)
        except ConfigError as exc:
            _fail(str(exc))
        try:
            catalog = ModelCatalog(backend)
            await catalog.load()
        except Exception as exc:
            _fail(str(exc))
        finally:
            await backend.aclose()
        print_models(catalog.models)

    asyncio.run(_run())


def _agent_options(func):
    for side in ("b", "a"):
        func = click.option(f"--prompt-{side}", default=None, help=f"Custom system prompt for side {side.upper()}")(func)
        func = click.option(f"--persona-{side}", default=None, help=f"Persona preset for side {side.upper()}")(func)
        func = click.option(f"--model-{side}", default=None, help=f"Model for side {side.upper()} (default: first in catalog)")(func)
    return func


@main.command()
@click.argument("topic")
@_agent_options
@click.option("--turns", default=None, type=int, help="Turns per side (default: from config)")
@click.option("--judge-model", default=None, help="Model used for the verdict (default: from config)")
@click.option("--remote", is_flag=True, help="Send calls through a running server")
@click.option("--save", is_flag=True, help="Save the transcript as markdown")
@click.pass_obj
def debate(
    config: AppConfig,
    topic: str,
    model_a: str | None,
    persona_a: str | None,
    prompt_a: str | None,
    model_b: str | None,
    persona_b: str | None,
    prompt_b: str | None,
    turns: int | None,
    judge_model: str | None,
    remote: bool,
    save: bool,
) -> None:
    """Let two models debate TOPIC, then judge. Ctrl-C stops after the current turn."""

    async def _run() -> None:
        try:
            backend = _build_backend(config, remote)
        except ConfigError as exc:
            _fail(str(exc))
        try:
            catalog = await _load_catalog(backend)
            try:
                agents: list[AgentConfig] = [
                    resolve_agent(
                        config.prompts,
                        _pick_model(model_a, catalog, "side A"),
                        "Debater A",
                        persona=persona_a or config.debate.persona_a,
                        custom_prompt=prompt_a,
                    ),
                    resolve_agent(
                        config.prompts,
                        _pick_model(model_b, catalog, "side B"),
                        "Debater B",
                        persona=persona_b or config.debate.persona_b,
                        custom_prompt=prompt_b,
                    ),
                ]
                orchestrator = DebateOrchestrator(
                    backend,
                    config.prompts,
                    config.debate,
                    on_turn=lambda turn: print_turn(turn, orchestrator.agents),
                )
                orchestrator.start(topic, agents, max_turns_per_side=turns, judge_model=judge_model)
            except DebateValidationError as exc:
                _fail(str(exc))

            for agent in agents:
                console.print(f"[bold]{agent.display_name}:[/bold] {agent.model} ({agent.persona or 'custom'})")
            if _install_stop_handler(orchestrator):
                console.print("[dim]Press Ctrl-C to stop after the current turn.[/dim]\n")

            await orchestrator.run()
        finally:
            await backend.aclose()
        _print_outcome(orchestrator, save, config.debate.output_dir)

    asyncio.run(_run())


@main.command()
@click.argument("topic")
@click.option("--model", "model_a", default=None, help="Model for the AI side (default: first in catalog)")
@click.option("--persona", "persona_a", default=None, help="Persona preset for the AI side")
@click.option("--prompt", "prompt_a", default=None, help="Custom system prompt for the AI side")
@click.option("--judge-model", default=None, help="Model used for the verdict (default: from config)")
@click.option("--remote", is_flag=True, help="Send calls through a running server")
@click.option("--save", is_flag=True, help="Save the transcript as markdown")
@click.pass_obj
def play(
    config: AppConfig,
    topic: str,
    model_a: str | None,
    persona_a: str | None,
    prompt_a: str | None,
    judge_model: str | None,
    remote: bool,
    save: bool,
) -> None:
    """Debate TOPIC against one model yourself. An empty line or /end finishes."""

    async def _run() -> None:
        try:
            backend = _build_backend(config, remote)
        except ConfigError as exc:
            _fail(str(exc))
        try:
            catalog = await _load_catalog(backend)
            try:
                agent = resolve_agent(
                    config.prompts,
                    _pick_model(model_a, catalog, "the AI side"),
                    "Debater A",
                    persona=persona_a or config.debate.persona_a,
                    custom_prompt=prompt_a,
                )
                orchestrator = DebateOrchestrator(
                    backend,
                    config.prompts,
                    config.debate,
                    on_turn=lambda turn: print_turn(turn, orchestrator.agents),
                )
                orchestrator.start(topic, [agent], mode=Mode.PLAYER, judge_model=judge_model)
            except DebateValidationError as exc:
                _fail(str(exc))

            await orchestrator.open_player_mode()
            while orchestrator.session.phase is Phase.AWAITING_PLAYER_INPUT:
                if orchestrator.session.error:
                    console.print(f"[bold red]Error:[/bold red] {orchestrator.session.error}")
                    orchestrator.dismiss_error()
                text = await asyncio.to_thread(click.prompt, "You", default="", show_default=False)
                if text.strip() in _END_COMMANDS:
                    await orchestrator.end()
                    break
                await orchestrator.submit_player_message(text)
        finally:
            await backend.aclose()
        _print_outcome(orchestrator, save, config.debate.output_dir)

    asyncio.run(_run())


if __name__ == "__main__":
    main()
