from __future__ import annotations

import pytest
from notes_deploy.core import (
    BuildFailure,
    RetriesExhausted,
    RetryPolicy,
    TransientError,
    call_with_retries,
    poll_until,
)

from fakes import FakeClock


def test_poll_until_does_not_sleep_after_last_attempt(clock: FakeClock) -> None:
    out = poll_until(
        lambda n: n,
        done=lambda v: False,
        policy=RetryPolicy(max_attempts=4, delay_s=10),
        sleep=clock.sleep,
        clock=clock,
    )
    assert out.done is False
    assert out.attempts == 4
    assert out.value == 4
    assert clock.sleeps == [10, 10, 10]


def test_poll_until_stops_when_done(clock: FakeClock) -> None:
    out = poll_until(
        lambda n: n,
        done=lambda v: v >= 3,
        policy=RetryPolicy(max_attempts=10, delay_s=2),
        sleep=clock.sleep,
        clock=clock,
    )
    assert out.done is True
    assert out.attempts == 3
    assert clock.sleeps == [2, 2]


def test_poll_until_stop_early_is_a_definitive_negative(clock: FakeClock) -> None:
    out = poll_until(
        lambda n: n,
        done=lambda v: False,
        stop_early=lambda v: v == 2,
        policy=RetryPolicy(max_attempts=10, delay_s=1),
        sleep=clock.sleep,
        clock=clock,
    )
    assert out.done is False
    assert out.attempts == 2
    assert clock.sleeps == [1]


def test_exponential_backoff_is_capped(clock: FakeClock) -> None:
    poll_until(
        lambda n: n,
        done=lambda v: False,
        policy=RetryPolicy(max_attempts=5, delay_s=1, backoff="exponential", cap_s=5),
        sleep=clock.sleep,
        clock=clock,
    )
    assert clock.sleeps == [1, 2, 4, 5]


def test_deadline_clips_the_last_wait(clock: FakeClock) -> None:
    out = poll_until(
        lambda n: n,
        done=lambda v: False,
        policy=RetryPolicy(max_attempts=None, delay_s=4, deadline_s=10),
        sleep=clock.sleep,
        clock=clock,
    )
    assert clock.sleeps == [4, 4, 2]
    assert clock.now == 10
    assert out.attempts == 4
    assert out.elapsed_s == 10


def test_poll_until_propagates_exceptions(clock: FakeClock) -> None:
    def boom(n: int) -> int:
        raise BuildFailure("nope")

    with pytest.raises(BuildFailure):
        poll_until(
            boom,
            done=lambda v: True,
            policy=RetryPolicy(max_attempts=3),
            sleep=clock.sleep,
            clock=clock,
        )
    assert clock.sleeps == []


def test_call_with_retries_retries_only_listed_errors(clock: FakeClock) -> None:
    calls: list[int] = []

    def flaky() -> str:
        calls.append(1)
        if len(calls) < 3:
            raise TransientError("503")
        return "ok"

    value, attempts = call_with_retries(
        flaky,
        retry_on=(TransientError,),
        policy=RetryPolicy(max_attempts=5, delay_s=1),
        sleep=clock.sleep,
        clock=clock,
    )
    assert (value, attempts) == ("ok", 3)
    assert clock.sleeps == [1, 1]

    calls.clear()

    def fatal() -> str:
        calls.append(1)
        raise BuildFailure("compile error")

    with pytest.raises(BuildFailure):
        call_with_retries(
            fatal,
            retry_on=(TransientError,),
            policy=RetryPolicy(max_attempts=5, delay_s=1),
            sleep=clock.sleep,
            clock=clock,
        )
    assert len(calls) == 1


def test_call_with_retries_exhaustion(clock: FakeClock) -> None:
    def always() -> None:
        raise TransientError("timeout")

    with pytest.raises(RetriesExhausted) as ei:
        call_with_retries(
            always,
            retry_on=(TransientError,),
            policy=RetryPolicy(max_attempts=3, delay_s=1),
            sleep=clock.sleep,
            clock=clock,
            label="push",
        )
    assert ei.value.attempts == 3
    assert isinstance(ei.value.last_error, TransientError)
    assert clock.sleeps == [1, 1]


def test_retry_policy_validation() -> None:
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=None, deadline_s=None)
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)
    with pytest.raises(ValueError):
        RetryPolicy(delay_s=-1)
