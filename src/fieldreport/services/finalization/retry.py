from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_fixed,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

AttemptCallback = Callable[[int, int], None]
SleepFn = Callable[[float], Awaitable[None]]


def _never(_value: object) -> bool:
    return False


@dataclass
class PollOutcome(Generic[T]):
    """How a polling run ended.

    ``value`` is the last value the operation returned (``None`` if the last
    attempt raised). ``accepted`` and ``aborted`` are mutually exclusive; when
    both are false the attempts were exhausted.
    """

    value: Optional[T]
    accepted: bool
    aborted: bool
    attempts: int
    last_error: Optional[BaseException] = None

    @property
    def exhausted(self) -> bool:
        return not self.accepted and not self.aborted


@dataclass
class _Exhausted:
    state: RetryCallState


@dataclass
class RetryPolicy(Generic[T]):
    """Bounded fixed-delay polling of an async operation.

    The operation is retried until ``accept`` holds for its result, ``abort``
    holds for its result, or ``max_attempts`` calls have been made. Exceptions
    raised by the operation count as unaccepted attempts. There is no wait
    after the final attempt.
    """

    max_attempts: int
    delay_seconds: float
    accept: Callable[[T], bool]
    abort: Callable[[T], bool] = _never
    name: str = "poll"

    def _should_retry(self, value: T) -> bool:
        return not self.accept(value) and not self.abort(value)

    def _log_retry(self, state: RetryCallState) -> None:
        outcome = state.outcome
        if outcome is not None and outcome.failed:
            logger.warning(
                "%s attempt %s/%s failed: %s; retrying in %ss",
                self.name,
                state.attempt_number,
                self.max_attempts,
                outcome.exception(),
                self.delay_seconds,
            )
        else:
            logger.info(
                "%s attempt %s/%s not ready; retrying in %ss",
                self.name,
                state.attempt_number,
                self.max_attempts,
                self.delay_seconds,
            )

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        on_attempt: Optional[AttemptCallback] = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> PollOutcome[T]:
        attempts = 0

        async def _attempt() -> T:
            nonlocal attempts
            attempts += 1
            if on_attempt is not None:
                on_attempt(attempts, self.max_attempts)
            return await operation()

        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(1, self.max_attempts)),
            wait=wait_fixed(self.delay_seconds),
            retry=retry_if_exception_type(Exception) | retry_if_result(self._should_retry),
            before_sleep=self._log_retry,
            retry_error_callback=_Exhausted,
            sleep=sleep,
        )
        result = await retrying(_attempt)

        if isinstance(result, _Exhausted):
            outcome = result.state.outcome
            if outcome is not None and outcome.failed:
                logger.warning("%s gave up after %s attempts: %s", self.name, attempts, outcome.exception())
                return PollOutcome(
                    value=None,
                    accepted=False,
                    aborted=False,
                    attempts=attempts,
                    last_error=outcome.exception(),
                )
            logger.warning("%s gave up after %s attempts", self.name, attempts)
            return PollOutcome(
                value=outcome.result() if outcome is not None else None,
                accepted=False,
                aborted=False,
                attempts=attempts,
            )

        accepted = self.accept(result)
        if not accepted:
            logger.warning("%s aborted on attempt %s", self.name, attempts)
        return PollOutcome(value=result, accepted=accepted, aborted=not accepted, attempts=attempts)
