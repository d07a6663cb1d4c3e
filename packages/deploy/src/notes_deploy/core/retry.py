from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Generic, Literal, TypeVar

import structlog
from tenacity import RetryError, Retrying, retry_if_exception_type, retry_if_result
from tenacity.wait import wait_base

from .errors import DeployError

T = TypeVar("T")

Backoff = Literal["fixed", "exponential"]
Sleeper = Callable[[float], None]
Clock = Callable[[], float]

log = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """
    Bounded retry budget shared by publish, rollout polling and health checks.

    `max_attempts` and `deadline_s` may be combined; whichever is hit first stops.
    """

    max_attempts: int | None = 3
    delay_s: float = 1.0
    backoff: Backoff = "fixed"
    cap_s: float | None = None
    deadline_s: float | None = None

    def __post_init__(self) -> None:
        if self.max_attempts is None and self.deadline_s is None:
            raise ValueError("RetryPolicy needs max_attempts or deadline_s")
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.delay_s < 0:
            raise ValueError("delay_s must be >= 0")

    def delay_for(self, attempt: int) -> float:
        """Delay to sleep after failed attempt number `attempt` (1-based)."""
        if self.backoff == "exponential":
            d = self.delay_s * (2 ** max(attempt - 1, 0))
        else:
            d = self.delay_s
        if self.cap_s is not None:
            d = min(d, self.cap_s)
        return float(d)


class PolicyWait(wait_base):
    """
    Deterministic wait driven by a RetryPolicy, clipped to the remaining deadline.
    """

    def __init__(self, policy: RetryPolicy, *, clock: Clock, started: float) -> None:
        self._policy = policy
        self._clock = clock
        self._started = started

    def __call__(self, retry_state) -> float:
        d = self._policy.delay_for(retry_state.attempt_number)
        if self._policy.deadline_s is not None:
            remaining = self._policy.deadline_s - (self._clock() - self._started)
            d = min(d, max(remaining, 0.0))
        return d


def _stop(policy: RetryPolicy, *, clock: Clock, started: float):
    def _should_stop(retry_state) -> bool:
        if (
            policy.max_attempts is not None
            and retry_state.attempt_number >= policy.max_attempts
        ):
            return True
        if policy.deadline_s is not None and clock() - started >= policy.deadline_s:
            return True
        return False

    return _should_stop


def _log_before_sleep(label: str):
    def _before_sleep(retry_state) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        sleep = retry_state.next_action.sleep if retry_state.next_action else None
        log.debug(
            "retry.sleep",
            op=label,
            attempt=retry_state.attempt_number,
            sleep_s=sleep,
            error=repr(exc) if exc else None,
        )

    return _before_sleep


@dataclass(frozen=True, slots=True)
class PollOutcome(Generic[T]):
    value: T
    done: bool
    attempts: int
    elapsed_s: float


def poll_until(
    fn: Callable[[int], T],
    *,
    done: Callable[[T], bool],
    policy: RetryPolicy,
    stop_early: Callable[[T], bool] | None = None,
    sleep: Sleeper = time.sleep,
    clock: Clock = time.monotonic,
    label: str = "poll",
) -> PollOutcome[T]:
    """
    Call `fn(attempt)` until `done(value)` holds or the policy budget runs out.

    `stop_early(value)` ends polling without success (a definitive negative).
    Exceptions raised by `fn` are not retried and propagate to the caller.
    """
    started = clock()
    attempts = 0

    def _attempt() -> T:
        nonlocal attempts
        attempts += 1
        return fn(attempts)

    def _keep_polling(value: T) -> bool:
        if done(value):
            return False
        return not (stop_early is not None and stop_early(value))

    retrying = Retrying(
        stop=_stop(policy, clock=clock, started=started),
        wait=PolicyWait(policy, clock=clock, started=started),
        retry=retry_if_result(_keep_polling),
        sleep=sleep,
        before_sleep=_log_before_sleep(label),
        retry_error_callback=lambda retry_state: retry_state.outcome.result(),
        reraise=True,
    )
    value = retrying(_attempt)
    return PollOutcome(
        value=value,
        done=done(value),
        attempts=attempts,
        elapsed_s=clock() - started,
    )


class RetriesExhausted(DeployError):
    def __init__(self, *, label: str, attempts: int, last_error: BaseException) -> None:
        super().__init__(
            f"{label}: retries exhausted (attempts={attempts}): {last_error}"
        )
        self.label = label
        self.attempts = attempts
        self.last_error = last_error


def call_with_retries(
    fn: Callable[[], T],
    *,
    retry_on: tuple[type[BaseException], ...],
    policy: RetryPolicy,
    sleep: Sleeper = time.sleep,
    clock: Clock = time.monotonic,
    label: str = "call",
) -> tuple[T, int]:
    """
    Run `fn`, retrying only exceptions in `retry_on`.

    Returns (value, attempts). Exhaustion raises RetriesExhausted; any other
    exception propagates unchanged on first occurrence.
    """
    started = clock()
    retrying = Retrying(
        stop=_stop(policy, clock=clock, started=started),
        wait=PolicyWait(policy, clock=clock, started=started),
        retry=retry_if_exception_type(retry_on),
        sleep=sleep,
        before_sleep=_log_before_sleep(label),
        reraise=False,
    )

    attempt_no = 0
    try:
        for attempt in retrying:
            attempt_no = attempt.retry_state.attempt_number
            with attempt:
                return fn(), attempt_no
    except RetryError as re:
        last = re.last_attempt.exception()
        raise RetriesExhausted(
            label=label,
            attempts=re.last_attempt.attempt_number,
            last_error=last or Exception("unknown"),
        ) from last

    raise RuntimeError("unreachable")
