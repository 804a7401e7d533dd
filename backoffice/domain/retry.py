from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Generic, TypeVar

EntityT = TypeVar("EntityT")
StatusT = TypeVar("StatusT")


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff capped at max_delay_ms.

    The attempt index is the attempt count before the failure, so the first
    retry waits base_delay_ms and every further failure doubles the wait.
    """

    base_delay_ms: int
    max_delay_ms: int

    def delay_ms(self, attempt_index: int) -> int:
        if attempt_index < 0:
            raise ValueError("attempt index must be non-negative")
        return min(self.max_delay_ms, self.base_delay_ms * 2**attempt_index)

    def on_failure(self, *, attempt_count: int, max_attempts: int, now: datetime | None = None) -> RetryDecision:
        next_count = attempt_count + 1
        if next_count >= max_attempts:
            return RetryDecision(attempt_count=next_count, terminal=True, next_attempt_at=None)
        current = now or datetime.now(tz=UTC)
        delay = timedelta(milliseconds=self.delay_ms(attempt_count))
        return RetryDecision(attempt_count=next_count, terminal=False, next_attempt_at=current + delay)


@dataclass(frozen=True)
class RetryDecision:
    attempt_count: int
    terminal: bool
    next_attempt_at: datetime | None


@dataclass(frozen=True)
class RetryStates(Generic[StatusT]):
    retry: StatusT
    success: StatusT
    terminal: StatusT


@dataclass(frozen=True)
class RetryOutcome(Generic[StatusT]):
    natural_key: str
    status: StatusT
    attempt_count: int
    next_attempt_at: datetime | None
    last_error: str | None


@dataclass(frozen=True)
class RetryableWork(Generic[EntityT, StatusT]):
    """Retry state machine shared by every unit of work that retries with backoff.

    Instantiated once per entity type; the accessors tell it where the natural
    key and attempt budget live on that entity.
    """

    name: str
    policy: RetryPolicy
    states: RetryStates[StatusT]
    natural_key: Callable[[EntityT], str]
    attempts: Callable[[EntityT], int]
    max_attempts: Callable[[EntityT], int]

    def is_exhausted(self, entity: EntityT) -> bool:
        return self.attempts(entity) >= self.max_attempts(entity)

    def failed(self, entity: EntityT, *, error: str, now: datetime | None = None) -> RetryOutcome[StatusT]:
        decision = self.policy.on_failure(
            attempt_count=self.attempts(entity),
            max_attempts=self.max_attempts(entity),
            now=now,
        )
        return RetryOutcome(
            natural_key=self.natural_key(entity),
            status=self.states.terminal if decision.terminal else self.states.retry,
            attempt_count=decision.attempt_count,
            next_attempt_at=decision.next_attempt_at,
            last_error=error,
        )

    def succeeded(self, entity: EntityT, *, consumed_attempt: bool = False) -> RetryOutcome[StatusT]:
        attempts = self.attempts(entity)
        return RetryOutcome(
            natural_key=self.natural_key(entity),
            status=self.states.success,
            attempt_count=attempts + 1 if consumed_attempt else attempts,
            next_attempt_at=None,
            last_error=None,
        )
