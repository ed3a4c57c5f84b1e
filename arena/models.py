"""Pure dataclasses for the debate arena. No logic, no deps."""

from dataclasses import dataclass, field
from enum import Enum


class Role(str, Enum):
    USER = "user"
    MODEL = "model"


class Speaker(str, Enum):
    DEBATER_A = "DebaterA"
    DEBATER_B = "DebaterB"
    PLAYER = "Player"
    SYSTEM = "System"
    JUDGE = "Judge"


class Phase(str, Enum):
    IDLE = "Idle"
    RUNNING = "Running"
    AWAITING_PLAYER_INPUT = "AwaitingPlayerInput"
    JUDGING = "Judging"
    TERMINAL = "Terminal"


class Mode(str, Enum):
    TWO_AGENT = "two_agent"
    PLAYER = "player"


@dataclass(frozen=True)
class Turn:
    role: Role
    content: str
    speaker: Speaker
    latency_ms: float | None = None
    retry_count: int | None = None
    in_context: bool = True    # sent to the model as part of the window
    displayed: bool = True     # shown in the transcript view


@dataclass
class AgentConfig:
    model: str
    system_prompt: str
    display_name: str
    persona: str | None = None  # preset name, None for a custom prompt


@dataclass(frozen=True)
class ModelInfo:
    id: str
    name: str


@dataclass(frozen=True)
class CatalogEntry:
    name: str                  # "models/gemini-1.5-pro"
    display_name: str
    supported_actions: tuple[str, ...] = ()


@dataclass(frozen=True)
class Generation:
    text: str
    retries: int


@dataclass
class DebateSession:
    turns: list[Turn] = field(default_factory=list)
    turn_index: int = 0
    phase: Phase = Phase.IDLE
    cancel_requested: bool = False
    in_flight: bool = False
    running: bool = False
    topic: str = ""
    mode: Mode = Mode.TWO_AGENT
    opening_instruction: str = ""
    verdict: str | None = None
    error: str | None = None

    @property
    def response_count(self) -> int:
        """Number of debater responses recorded so far."""
        return sum(
            1 for t in self.turns
            if t.role is Role.MODEL and t.speaker in (Speaker.DEBATER_A, Speaker.DEBATER_B)
        )
