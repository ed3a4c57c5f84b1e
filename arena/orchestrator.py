"""Debate orchestration: turn scheduling, player mode, cancellation and hand-off to the judge."""

import logging
import time
from collections.abc import Callable, Sequence

from config.config_loader import DebateDefaults, PromptsConfig
from arena.backends import Backend
from arena.history import enforce_alternation, format_transcript, to_api_payload, window_for
from arena.judge import judge as run_judge
from arena.models import (
    AgentConfig,
    DebateSession,
    Generation,
    Mode,
    Phase,
    Role,
    Speaker,
    Turn,
)

logger = logging.getLogger(__name__)

_DEBATERS = (Speaker.DEBATER_A, Speaker.DEBATER_B)


class DebateValidationError(ValueError):
    """Raised when a debate cannot start or a player message is rejected."""


def resolve_agent(
    prompts: PromptsConfig,
    model: str,
    display_name: str,
    persona: str | None = None,
    custom_prompt: str | None = None,
) -> AgentConfig:
    """Build an AgentConfig from either a persona preset or a custom prompt.

    A non-empty custom prompt wins over the preset; only one is ever active.
    Preset prompts get the shared length/tone constraint appended.
    """
    if custom_prompt and custom_prompt.strip():
        return AgentConfig(model=model, system_prompt=custom_prompt.strip(), display_name=display_name)
    if persona:
        if persona not in prompts.personas:
            raise DebateValidationError(
                f"Unknown persona '{persona}'; choose one of {sorted(prompts.personas)}"
            )
        return AgentConfig(
            model=model,
            system_prompt=f"{prompts.personas[persona]} {prompts.constraint}",
            display_name=display_name,
            persona=persona,
        )
    return AgentConfig(model=model, system_prompt="", display_name=display_name)


class DebateOrchestrator:
    """Owns one DebateSession and drives it through its phases.

    Every generation call goes through a single in-flight guard, so at most
    one call per session is outstanding; extra triggers are dropped.
    """

    def __init__(
        self,
        backend: Backend,
        prompts: PromptsConfig,
        defaults: DebateDefaults,
        on_turn: Callable[[Turn], None] | None = None,
    ) -> None:
        self._backend = backend
        self._prompts = prompts
        self._defaults = defaults
        self._on_turn = on_turn
        self.session = DebateSession()
        self._agents: dict[Speaker, AgentConfig] = {}
        self._max_turns_per_side = 0
        self._judge_model = defaults.judge_model

    @property
    def agents(self) -> dict[Speaker, AgentConfig]:
        return dict(self._agents)

    @property
    def judge_model(self) -> str:
        return self._judge_model

    # -- session setup -----------------------------------------------------

    def start(
        self,
        topic: str,
        agents: Sequence[AgentConfig],
        max_turns_per_side: int | None = None,
        mode: Mode = Mode.TWO_AGENT,
        judge_model: str | None = None,
    ) -> DebateSession:
        """Validate inputs, reset the session and seed the opening turns.

        Raises:
            DebateValidationError: missing topic, model or prompt, or a debate
                is still in progress. The session is left untouched.
        """
        if self.session.running or self.session.phase not in (Phase.IDLE, Phase.TERMINAL):
            raise DebateValidationError(f"A debate is already in progress ({self.session.phase.value})")

        needed = 2 if mode is Mode.TWO_AGENT else 1
        turns_per_side = self._defaults.max_turns_per_side if max_turns_per_side is None else max_turns_per_side
        effective_judge = judge_model or self._defaults.judge_model

        problems: list[str] = []
        if not topic or not topic.strip():
            problems.append("topic")
        if len(agents) < needed:
            problems.append(f"{needed} agent(s)")
        for speaker, agent in zip(_DEBATERS, agents[:needed]):
            if not agent.model.strip():
                problems.append(f"{speaker.value} model")
            if not agent.system_prompt.strip():
                problems.append(f"{speaker.value} prompt")
        if turns_per_side < 0:
            problems.append("non-negative turn count")
        if not effective_judge.strip():
            problems.append("judge model")
        if problems:
            raise DebateValidationError(f"Missing or invalid: {', '.join(problems)}")

        topic = topic.strip()
        opening = self._prompts.opening.format(topic=topic, constraint=self._prompts.constraint)

        self.session = DebateSession(
            topic=topic,
            mode=mode,
            phase=Phase.RUNNING,
            opening_instruction=opening,
        )
        self._agents = dict(zip(_DEBATERS, agents[:needed]))
        self._max_turns_per_side = turns_per_side
        self._judge_model = effective_judge

        self._append(Turn(
            role=Role.USER,
            content=self._prompts.topic_announcement.format(topic=topic),
            speaker=Speaker.SYSTEM,
            in_context=False,
        ))
        self._append(Turn(role=Role.USER, content=opening, speaker=Speaker.SYSTEM, displayed=False))

        logger.info(
            "Debate started (%s): %r, %d turn(s) per side",
            mode.value, topic[:80], turns_per_side,
        )
        return self.session

    def stop(self) -> None:
        """Request cancellation; honoured at the next loop checkpoint."""
        if not self.session.cancel_requested:
            logger.info("Stop requested at turn %d", self.session.turn_index)
        self.session.cancel_requested = True

    def dismiss_error(self) -> None:
        self.session.error = None

    # -- two-agent mode ----------------------------------------------------

    async def run(self) -> DebateSession:
        """Alternate A and B for max_turns_per_side each, then judge."""
        if self.session.mode is not Mode.TWO_AGENT or self.session.phase is not Phase.RUNNING:
            raise RuntimeError("run() needs a started two-agent debate")
        if self.session.running:
            logger.debug("Duplicate run() dropped at turn %d", self.session.turn_index)
            return self.session

        session = self.session
        session.running = True
        try:
            return await self._run_turns()
        finally:
            session.running = False

    async def _run_turns(self) -> DebateSession:
        total = 2 * self._max_turns_per_side
        interrupted = False
        for index in range(total):
            self.session.turn_index = index
            if self.session.cancel_requested:
                self._notice(self._prompts.cancelled)
                interrupted = True
                break

            speaker = _DEBATERS[index % 2]
            try:
                turn = await self._respond(speaker, self._system_prompt(self._agents[speaker]))
            except Exception as exc:
                self._record_error(exc)
                interrupted = True
                break
            if turn is None:
                interrupted = True
                break

            self._append(Turn(
                role=Role.USER,
                content=self._prompts.counter.format(constraint=self._prompts.constraint),
                speaker=Speaker.SYSTEM,
                displayed=False,
            ))
        else:
            self.session.turn_index = total

        if interrupted and self.session.response_count == 0:
            self.session.phase = Phase.TERMINAL
            logger.info("Debate ended before any response; skipping judge")
            return self.session

        await self.judge()
        return self.session

    # -- player mode -------------------------------------------------------

    async def open_player_mode(self) -> DebateSession:
        """Let agent A give its opening argument, then wait for the player."""
        if self.session.mode is not Mode.PLAYER or self.session.phase is not Phase.RUNNING:
            raise RuntimeError("open_player_mode() needs a started player-mode debate")

        agent = self._agents[Speaker.DEBATER_A]
        try:
            turn = await self._respond(Speaker.DEBATER_A, self._system_prompt(agent))
        except Exception as exc:
            self._record_error(exc)
            self.session.phase = Phase.TERMINAL
            return self.session

        if turn is not None:
            self.session.phase = Phase.AWAITING_PLAYER_INPUT
        return self.session

    async def submit_player_message(self, text: str) -> bool:
        """Record the player's argument and have agent A rebut it.

        Returns False, without touching the session, when a call is already
        in flight or the debate is not waiting for the player.

        Raises:
            DebateValidationError: text is blank.
        """
        if self.session.in_flight or self.session.phase is not Phase.AWAITING_PLAYER_INPUT:
            logger.debug("Player message dropped (phase=%s, in_flight=%s)",
                         self.session.phase.value, self.session.in_flight)
            return False
        if not text or not text.strip():
            raise DebateValidationError("Player message is empty")

        self._append(Turn(role=Role.USER, content=text.strip(), speaker=Speaker.PLAYER))
        self.session.phase = Phase.RUNNING
        self.session.turn_index += 1

        agent = self._agents[Speaker.DEBATER_A]
        system_prompt = "\n\n".join((
            self._system_prompt(agent),
            self._prompts.player_rebuttal.format(constraint=self._prompts.constraint),
        ))
        try:
            await self._respond(Speaker.DEBATER_A, system_prompt)
        except Exception as exc:
            self._record_error(exc)
        finally:
            self.session.phase = Phase.AWAITING_PLAYER_INPUT
        return True

    async def end(self) -> DebateSession:
        """Finish a player-mode debate and run the judge.

        Dropped, leaving the session as is, while a rebuttal is in flight or
        the debate is not waiting for the player.
        """
        if self.session.in_flight or self.session.phase is not Phase.AWAITING_PLAYER_INPUT:
            logger.debug("End request dropped (phase=%s, in_flight=%s)",
                         self.session.phase.value, self.session.in_flight)
            return self.session
        self.session.cancel_requested = True
        if self.session.response_count == 0:
            self.session.phase = Phase.TERMINAL
            return self.session
        await self.judge()
        return self.session

    # -- judging -----------------------------------------------------------

    async def judge(self) -> str | None:
        """Judge the transcript so far. Always leaves the session Terminal."""
        self.session.phase = Phase.JUDGING
        transcript = format_transcript(self.session.turns)
        start = time.monotonic()
        try:
            verdict = await run_judge(self._backend, transcript, self._judge_model, self._prompts)
        except Exception as exc:
            self._record_error(exc)
        else:
            self.session.verdict = verdict.text
            self._append(Turn(
                role=Role.MODEL,
                content=verdict.text,
                speaker=Speaker.JUDGE,
                latency_ms=(time.monotonic() - start) * 1000,
                retry_count=verdict.retries,
                in_context=False,
            ))
        finally:
            self.session.phase = Phase.TERMINAL
        return self.session.verdict

    # -- internals ---------------------------------------------------------

    def _system_prompt(self, agent: AgentConfig) -> str:
        return f"{agent.system_prompt}\n\n{self._prompts.persona_guard}"

    def _payload(self) -> list[dict]:
        window = window_for(self.session.turns, self._defaults.history_window)
        if self._defaults.strict_alternation:
            window = enforce_alternation(window)
        if not window:
            logger.debug("Empty window, re-sending the opening instruction")
            window = [Turn(role=Role.USER, content=self.session.opening_instruction, speaker=Speaker.SYSTEM)]
        return to_api_payload(window)

    async def _respond(self, speaker: Speaker, system_prompt: str) -> Turn | None:
        """Run one guarded generation call for speaker and append its turn.

        Returns None if another call was already in flight.
        """
        if self.session.in_flight:
            logger.debug("Generation already in flight, dropping trigger for %s", speaker.value)
            return None
        self.session.in_flight = True
        try:
            agent = self._agents[speaker]
            start = time.monotonic()
            generation: Generation = await self._backend.generate(agent.model, system_prompt, self._payload())
            latency_ms = (time.monotonic() - start) * 1000
        finally:
            self.session.in_flight = False

        turn = Turn(
            role=Role.MODEL,
            content=generation.text,
            speaker=speaker,
            latency_ms=latency_ms,
            retry_count=generation.retries,
        )
        self._append(turn)
        logger.info(
            "Turn %d (%s): %.0fms, %d retries",
            self.session.turn_index, speaker.value, latency_ms, generation.retries,
        )
        return turn

    def _append(self, turn: Turn) -> None:
        self.session.turns.append(turn)
        if self._on_turn:
            self._on_turn(turn)

    def _notice(self, text: str) -> None:
        self._append(Turn(role=Role.USER, content=text, speaker=Speaker.SYSTEM, in_context=False))

    def _record_error(self, exc: Exception) -> None:
        logger.error("Debate error during %s: %s", self.session.phase.value, exc)
        self.session.error = str(exc)
        self._notice(self._prompts.error.format(error=exc))
