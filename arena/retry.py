"""Generic bounded retry wrapper shared by listing, generation and transport calls."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

import httpx

from config.config_loader import ConfigError, PolicyConfig
from arena.providers.base import RateLimitedError, TransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetriesExhausted(Exception):
    """Raised when every attempt of a policy failed with a retryable error."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Failed after {attempts} attempts. Last error: {last_error}")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int
    delay_ms: int
    retry_predicate: Callable[[BaseException], bool]
    name: str = "default"

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.delay_ms < 0:
            raise ValueError(f"delay_ms must be >= 0, got {self.delay_ms}")


@dataclass(frozen=True)
class Attempt(Generic[T]):
    value: T
    retries: int


def is_rate_limited(exc: BaseException) -> bool:
    return isinstance(exc, RateLimitedError)


def is_rate_limited_or_transient(exc: BaseException) -> bool:
    return isinstance(exc, (RateLimitedError, TransientError))


def is_network_error(exc: BaseException) -> bool:
    return isinstance(exc, httpx.TransportError)


PREDICATES: dict[str, Callable[[BaseException], bool]] = {
    "rate_limited": is_rate_limited,
    "rate_limited_or_transient": is_rate_limited_or_transient,
    "network": is_network_error,
}


def policy_from_config(name: str, cfg: PolicyConfig) -> RetryPolicy:
    """Build a RetryPolicy from its settings.yaml section."""
    try:
        predicate = PREDICATES[cfg.retry_on]
    except KeyError:
        raise ConfigError(
            f"Unknown retry_on '{cfg.retry_on}' for policy '{name}'; "
            f"expected one of {sorted(PREDICATES)}"
        ) from None
    return RetryPolicy(
        max_attempts=cfg.max_attempts,
        delay_ms=cfg.delay_ms,
        retry_predicate=predicate,
        name=name,
    )


async def retry(operation: Callable[[], Awaitable[T]], policy: RetryPolicy) -> Attempt[T]:
    """Run operation until it succeeds, a non-retryable error occurs, or attempts run out.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt.
        policy: Attempt budget, delay and retryable-error predicate.

    Returns:
        Attempt with the operation's value and the number of retries consumed
        (0 when the first attempt succeeded).

    Raises:
        Whatever operation raised, unchanged, when the predicate rejects it.
        RetriesExhausted: after max_attempts retryable failures.
    """
    last_error: BaseException | None = None
    for attempt in range(policy.max_attempts):
        try:
            value = await operation()
        except Exception as exc:
            if not policy.retry_predicate(exc):
                raise
            last_error = exc
            if attempt + 1 < policy.max_attempts:
                logger.info(
                    "[%s] attempt %d/%d failed (%s), retrying in %dms",
                    policy.name, attempt + 1, policy.max_attempts, exc, policy.delay_ms,
                )
                await asyncio.sleep(policy.delay_ms / 1000)
            continue
        if attempt:
            logger.info("[%s] succeeded after %d retries", policy.name, attempt)
        return Attempt(value=value, retries=attempt)

    assert last_error is not None
    logger.warning("[%s] giving up after %d attempts: %s", policy.name, policy.max_attempts, last_error)
    raise RetriesExhausted(policy.max_attempts, last_error) from last_error
