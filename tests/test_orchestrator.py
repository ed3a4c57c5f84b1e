"""Tests for arena/orchestrator.py."""

import asyncio
from dataclasses import replace

import pytest

from arena.backends import LocalBackend
from arena.models import AgentConfig, Generation, Mode, Phase, Role, Speaker
from arena.orchestrator import DebateOrchestrator, DebateValidationError, resolve_agent
from arena.providers.base import PermanentError, RateLimitedError
from arena.service import DebateService
from tests.conftest import MockBackend, MockClient


@pytest.fixture
def orchestrator(mock_backend, sample_prompts_config, sample_defaults_config) -> DebateOrchestrator:
    return DebateOrchestrator(mock_backend, sample_prompts_config, sample_defaults_config)


def _speakers(session, role: Role = Role.MODEL) -> list[Speaker]:
    return [t.speaker for t in session.turns if t.role is role]


# --- start / validation ---

def test_start_seeds_announcement_and_opening(orchestrator, two_agents):
    session = orchestrator.start("Is tea better than coffee?", two_agents, max_turns_per_side=1)

    assert session.phase is Phase.RUNNING
    assert session.turn_index == 0
    announcement, opening = session.turns
    assert announcement.speaker is Speaker.SYSTEM
    assert announcement.content == "Debate topic: Is tea better than coffee?"
    assert not announcement.in_context
    assert opening.role is Role.USER
    assert "Is tea better than coffee?" in opening.content
    assert "Be brief." in opening.content
    assert not opening.displayed


@pytest.mark.parametrize(
    "topic, agents_patch, expected",
    [
        ("", {}, "topic"),
        ("Tea?", {"model": ""}, "DebaterA model"),
        ("Tea?", {"system_prompt": "  "}, "DebaterA prompt"),
    ],
)
def test_start_validation_leaves_session_untouched(orchestrator, two_agents, topic, agents_patch, expected):
    agents = [replace(two_agents[0], **agents_patch), two_agents[1]]
    with pytest.raises(DebateValidationError, match=expected):
        orchestrator.start(topic, agents)
    assert orchestrator.session.phase is Phase.IDLE
    assert orchestrator.session.turns == []


def test_start_requires_two_agents_in_two_agent_mode(orchestrator, two_agents):
    with pytest.raises(DebateValidationError, match="2 agent"):
        orchestrator.start("Tea?", two_agents[:1])


def test_start_rejected_while_running(orchestrator, two_agents):
    orchestrator.start("Tea?", two_agents)
    with pytest.raises(DebateValidationError, match="already in progress"):
        orchestrator.start("Coffee?", two_agents)


# --- two-agent mode ---

async def test_scenario_single_turn_each_then_judge(orchestrator, mock_backend, two_agents):
    orchestrator.start("Tea?", two_agents, max_turns_per_side=1)
    session = await orchestrator.run()

    assert _speakers(session) == [Speaker.DEBATER_A, Speaker.DEBATER_B, Speaker.JUDGE]
    displayed = [t.speaker for t in session.turns if t.displayed]
    assert displayed == [Speaker.SYSTEM, Speaker.DEBATER_A, Speaker.DEBATER_B, Speaker.JUDGE]

    models = [c.args[0] for c in mock_backend.generate.await_args_list]
    assert models == ["model-a", "model-b", "judge-model"]
    assert session.phase is Phase.TERMINAL
    assert session.verdict == "Response 3 from judge-model"
    assert session.turn_index == 2


async def test_payloads_alternate_and_start_with_user(orchestrator, mock_backend, two_agents):
    orchestrator.start("Tea?", two_agents, max_turns_per_side=2)
    await orchestrator.run()

    debate_calls = mock_backend.generate.await_args_list[:4]
    first_history = debate_calls[0].args[2]
    assert len(first_history) == 1
    assert first_history[0]["role"] == "user"
    assert "Tea?" in first_history[0]["parts"][0]["text"]

    for call in debate_calls:
        roles = [m["role"] for m in call.args[2]]
        assert roles[0] == "user"
        assert roles[-1] == "user"
        assert all(a != b for a, b in zip(roles, roles[1:]))

    second_history = debate_calls[1].args[2]
    assert second_history[1] == {"role": "model", "parts": [{"text": "Response 1 from model-a"}]}
    assert second_history[2]["parts"][0]["text"] == "Rebut that. Be brief."


async def test_persona_guard_on_every_call(orchestrator, mock_backend, two_agents):
    orchestrator.start("Tea?", two_agents, max_turns_per_side=2)
    await orchestrator.run()

    for call, agent in zip(mock_backend.generate.await_args_list[:4], two_agents * 2):
        system_prompt = call.args[1]
        assert system_prompt.startswith(agent.system_prompt)
        assert "Keep your own persona." in system_prompt


async def test_model_turns_record_latency_and_retries(orchestrator, two_agents):
    orchestrator.start("Tea?", two_agents, max_turns_per_side=1)
    session = await orchestrator.run()
    turn = next(t for t in session.turns if t.speaker is Speaker.DEBATER_A)
    assert turn.latency_ms is not None and turn.latency_ms >= 0
    assert turn.retry_count == 0


async def test_zero_turns_goes_straight_to_judging(orchestrator, mock_backend, two_agents):
    orchestrator.start("Tea?", two_agents, max_turns_per_side=0)
    session = await orchestrator.run()

    assert mock_backend.generate.await_count == 1
    assert mock_backend.generate.await_args.args[0] == "judge-model"
    assert [t.speaker for t in session.turns[:2]] == [Speaker.SYSTEM, Speaker.SYSTEM]
    assert session.phase is Phase.TERMINAL


async def test_rate_limit_retries_recorded_on_turn(
    sample_prompts_config, sample_defaults_config, listing_policy, generation_policy, two_agents
):
    client = MockClient(text="An argument")
    client.generate.side_effect = [
        RateLimitedError("mock", "HTTP 403"),
        RateLimitedError("mock", "HTTP 403"),
        "First argument",
        "Second argument",
        "Verdict",
    ]
    backend = LocalBackend(DebateService(client, listing_policy, generation_policy))
    orchestrator = DebateOrchestrator(backend, sample_prompts_config, sample_defaults_config)

    orchestrator.start("Tea?", two_agents, max_turns_per_side=1)
    session = await orchestrator.run()

    first = next(t for t in session.turns if t.speaker is Speaker.DEBATER_A)
    second = next(t for t in session.turns if t.speaker is Speaker.DEBATER_B)
    assert first.content == "First argument"
    assert first.retry_count == 2
    assert second.retry_count == 0
    assert session.verdict == "Verdict"


async def test_stop_halts_loop_and_still_judges(orchestrator, mock_backend, two_agents):
    async def stop_on_second_call(model, system_prompt, history):
        mock_backend.count += 1
        if mock_backend.count == 2:
            orchestrator.stop()
        return Generation(text=f"Response {mock_backend.count}", retries=0)

    mock_backend.generate.side_effect = stop_on_second_call
    orchestrator.start("Tea?", two_agents, max_turns_per_side=5)
    session = await orchestrator.run()

    # two debate calls, then the judge
    assert mock_backend.generate.await_count == 3
    assert session.turn_index == 2
    assert _speakers(session) == [Speaker.DEBATER_A, Speaker.DEBATER_B, Speaker.JUDGE]
    notices = [t.content for t in session.turns if t.speaker is Speaker.SYSTEM and t.displayed]
    assert "The debate was stopped by the user." in notices
    judge_prompt = mock_backend.generate.await_args.args[2][0]["parts"][0]["text"]
    assert "DebaterA: Response 1" in judge_prompt
    assert "DebaterB: Response 2" in judge_prompt
    assert session.phase is Phase.TERMINAL


async def test_stop_before_first_turn_skips_judge(orchestrator, mock_backend, two_agents):
    orchestrator.start("Tea?", two_agents, max_turns_per_side=3)
    orchestrator.stop()
    session = await orchestrator.run()

    mock_backend.generate.assert_not_awaited()
    assert session.phase is Phase.TERMINAL
    assert session.verdict is None


async def test_error_mid_debate_still_judges(orchestrator, mock_backend, two_agents):
    mock_backend.generate.side_effect = [
        Generation("A speaks", 0),
        PermanentError("mock", "HTTP 500"),
        Generation("Verdict", 0),
    ]
    orchestrator.start("Tea?", two_agents, max_turns_per_side=3)
    session = await orchestrator.run()

    assert "HTTP 500" in session.error
    assert any("HTTP 500" in t.content for t in session.turns if t.speaker is Speaker.SYSTEM)
    assert session.verdict == "Verdict"
    assert mock_backend.generate.await_count == 3


async def test_error_on_first_turn_ends_without_judge(orchestrator, mock_backend, two_agents):
    mock_backend.generate.side_effect = PermanentError("mock", "HTTP 400")
    orchestrator.start("Tea?", two_agents, max_turns_per_side=3)
    session = await orchestrator.run()

    assert mock_backend.generate.await_count == 1
    assert session.phase is Phase.TERMINAL
    assert session.verdict is None
    orchestrator.dismiss_error()
    assert session.error is None


async def test_judge_failure_keeps_transcript(orchestrator, mock_backend, two_agents):
    mock_backend.generate.side_effect = [
        Generation("A speaks", 0),
        Generation("B speaks", 0),
        PermanentError("mock", "judge down"),
    ]
    orchestrator.start("Tea?", two_agents, max_turns_per_side=1)
    session = await orchestrator.run()

    assert session.verdict is None
    assert "judge down" in session.error
    assert _speakers(session) == [Speaker.DEBATER_A, Speaker.DEBATER_B]
    assert session.phase is Phase.TERMINAL


async def test_empty_window_reinjects_opening(
    mock_backend, sample_prompts_config, sample_defaults_config, two_agents
):
    defaults = replace(sample_defaults_config, history_window=0)
    orchestrator = DebateOrchestrator(mock_backend, sample_prompts_config, defaults)
    orchestrator.start("Tea?", two_agents, max_turns_per_side=1)
    await orchestrator.run()

    history = mock_backend.generate.await_args_list[1].args[2]
    assert history == [{"role": "user", "parts": [{"text": orchestrator.session.opening_instruction}]}]


async def test_on_turn_callback_sees_every_turn(mock_backend, sample_prompts_config, sample_defaults_config, two_agents):
    seen = []
    orchestrator = DebateOrchestrator(mock_backend, sample_prompts_config, sample_defaults_config, on_turn=seen.append)
    orchestrator.start("Tea?", two_agents, max_turns_per_side=1)
    session = await orchestrator.run()
    assert seen == session.turns


# --- player mode ---

async def test_player_mode_round_trip(orchestrator, mock_backend, two_agents):
    orchestrator.start("Tea?", two_agents[:1], mode=Mode.PLAYER)
    session = await orchestrator.open_player_mode()
    assert session.phase is Phase.AWAITING_PLAYER_INPUT

    accepted = await orchestrator.submit_player_message("Coffee has more caffeine.")
    assert accepted
    assert session.phase is Phase.AWAITING_PLAYER_INPUT
    assert [t.speaker for t in session.turns if t.displayed] == [
        Speaker.SYSTEM, Speaker.DEBATER_A, Speaker.PLAYER, Speaker.DEBATER_A,
    ]

    rebuttal_call = mock_backend.generate.await_args_list[1]
    assert "Rebut the player." in rebuttal_call.args[1]
    assert "Keep your own persona." in rebuttal_call.args[1]
    history = rebuttal_call.args[2]
    assert history[-1] == {"role": "user", "parts": [{"text": "Coffee has more caffeine."}]}

    session = await orchestrator.end()
    assert session.phase is Phase.TERMINAL
    assert session.verdict is not None
    assert "Player: Coffee has more caffeine." in mock_backend.generate.await_args.args[2][0]["parts"][0]["text"]


async def test_player_duplicate_submission_dropped(orchestrator, mock_backend, two_agents):
    orchestrator.start("Tea?", two_agents[:1], mode=Mode.PLAYER)
    await orchestrator.open_player_mode()

    release = asyncio.Event()

    async def slow(model, system_prompt, history):
        await release.wait()
        return Generation("Rebuttal", 0)

    mock_backend.generate.side_effect = slow
    first = asyncio.create_task(orchestrator.submit_player_message("one"))
    await asyncio.sleep(0)
    assert orchestrator.session.in_flight

    assert await orchestrator.submit_player_message("two") is False

    release.set()
    assert await first is True
    # opening + exactly one rebuttal
    assert mock_backend.generate.await_count == 2
    players = [t.content for t in orchestrator.session.turns if t.speaker is Speaker.PLAYER]
    assert players == ["one"]
    assert not orchestrator.session.in_flight


async def test_duplicate_run_dropped(orchestrator, mock_backend, two_agents):
    orchestrator.start("Tea?", two_agents, max_turns_per_side=2)
    release = asyncio.Event()

    async def gated(model, system_prompt, history):
        await release.wait()
        return await mock_backend._numbered(model, system_prompt, history)

    mock_backend.generate.side_effect = gated
    first = asyncio.create_task(orchestrator.run())
    await asyncio.sleep(0)
    turns_before = len(orchestrator.session.turns)

    second = await orchestrator.run()
    assert second is orchestrator.session
    assert second.phase is Phase.RUNNING
    assert len(second.turns) == turns_before
    with pytest.raises(DebateValidationError, match="already in progress"):
        orchestrator.start("Coffee?", two_agents)

    release.set()
    session = await first
    assert session.phase is Phase.TERMINAL
    assert not session.running
    assert _speakers(session) == [Speaker.DEBATER_A, Speaker.DEBATER_B] * 2 + [Speaker.JUDGE]
    # four debater turns and one judge call
    assert mock_backend.generate.await_count == 5


async def test_player_end_dropped_while_rebuttal_in_flight(orchestrator, mock_backend, two_agents):
    orchestrator.start("Tea?", two_agents[:1], mode=Mode.PLAYER)
    await orchestrator.open_player_mode()

    release = asyncio.Event()

    async def slow(model, system_prompt, history):
        await release.wait()
        return Generation("Rebuttal", 0)

    mock_backend.generate.side_effect = slow
    pending = asyncio.create_task(orchestrator.submit_player_message("one"))
    await asyncio.sleep(0)

    session = await orchestrator.end()
    assert session.phase is Phase.RUNNING
    assert session.verdict is None

    release.set()
    await pending
    assert orchestrator.session.phase is Phase.AWAITING_PLAYER_INPUT


async def test_player_blank_message_rejected(orchestrator, two_agents):
    orchestrator.start("Tea?", two_agents[:1], mode=Mode.PLAYER)
    await orchestrator.open_player_mode()
    with pytest.raises(DebateValidationError):
        await orchestrator.submit_player_message("   ")


async def test_player_error_returns_to_waiting(orchestrator, mock_backend, two_agents):
    orchestrator.start("Tea?", two_agents[:1], mode=Mode.PLAYER)
    await orchestrator.open_player_mode()
    mock_backend.generate.side_effect = PermanentError("mock", "HTTP 500")

    assert await orchestrator.submit_player_message("hello") is True
    assert orchestrator.session.phase is Phase.AWAITING_PLAYER_INPUT
    assert "HTTP 500" in orchestrator.session.error


async def test_submit_outside_player_turn_is_ignored(orchestrator, mock_backend, two_agents):
    orchestrator.start("Tea?", two_agents, max_turns_per_side=1)
    assert await orchestrator.submit_player_message("hello") is False
    mock_backend.generate.assert_not_awaited()


# --- resolve_agent ---

def test_resolve_agent_preset_appends_constraint(sample_prompts_config):
    agent = resolve_agent(sample_prompts_config, "gemini-pro", "Debater A", persona="analyst")
    assert agent.system_prompt == "You are a calm analyst. Be brief."
    assert agent.persona == "analyst"


def test_resolve_agent_custom_prompt_wins(sample_prompts_config):
    agent = resolve_agent(sample_prompts_config, "gemini-pro", "Debater A", persona="analyst", custom_prompt="Be a pirate.")
    assert agent.system_prompt == "Be a pirate."
    assert agent.persona is None


def test_resolve_agent_unknown_persona(sample_prompts_config):
    with pytest.raises(DebateValidationError, match="Unknown persona"):
        resolve_agent(sample_prompts_config, "gemini-pro", "Debater A", persona="wizard")


def test_resolve_agent_without_prompt_fails_start(orchestrator, sample_prompts_config):
    empty = resolve_agent(sample_prompts_config, "gemini-pro", "Debater A")
    other = AgentConfig(model="m", system_prompt="p", display_name="Debater B")
    with pytest.raises(DebateValidationError, match="DebaterA prompt"):
        orchestrator.start("Tea?", [empty, other])
