from conftest import SleepRecorder

from src.fieldreport.services.finalization.retry import RetryPolicy


class Countdown:
    """Async operation returning scripted values, raising scripted exceptions."""

    def __init__(self, *steps):
        self.steps = list(steps)
        self.calls = 0

    async def __call__(self):
        step = self.steps[min(self.calls, len(self.steps) - 1)]
        self.calls += 1
        if isinstance(step, Exception):
            raise step
        return step


def _policy(**kwargs):
    return RetryPolicy(max_attempts=6, delay_seconds=5, accept=lambda value: value == "done", **kwargs)


async def test_stops_on_first_accepted_result():
    sleeper = SleepRecorder()
    operation = Countdown("processing", "processing", "done", "done")
    attempts = []

    outcome = await _policy().run(operation, on_attempt=lambda n, m: attempts.append((n, m)), sleep=sleeper)

    assert outcome.accepted
    assert outcome.value == "done"
    assert outcome.attempts == 3
    assert operation.calls == 3
    assert attempts == [(1, 6), (2, 6), (3, 6)]
    assert sleeper.delays == [5, 5]


async def test_exhaustion_returns_last_value_without_final_wait():
    sleeper = SleepRecorder()
    operation = Countdown("processing")

    outcome = await _policy().run(operation, sleep=sleeper)

    assert outcome.exhausted
    assert outcome.value == "processing"
    assert outcome.attempts == 6
    assert operation.calls == 6
    assert sleeper.delays == [5] * 5


async def test_abort_stops_polling_immediately():
    sleeper = SleepRecorder()
    operation = Countdown("failed", "done")

    outcome = await _policy(abort=lambda value: value == "failed").run(operation, sleep=sleeper)

    assert outcome.aborted
    assert not outcome.accepted
    assert outcome.value == "failed"
    assert operation.calls == 1
    assert sleeper.delays == []


async def test_exceptions_count_as_failed_attempts():
    sleeper = SleepRecorder()
    operation = Countdown(ConnectionError("reset"), TimeoutError("slow"), "done")

    outcome = await _policy().run(operation, sleep=sleeper)

    assert outcome.accepted
    assert outcome.attempts == 3
    assert sleeper.delays == [5, 5]


async def test_persistent_exceptions_exhaust_with_last_error():
    sleeper = SleepRecorder()
    error = ConnectionError("backend down")

    outcome = await _policy().run(Countdown(error), sleep=sleeper)

    assert outcome.exhausted
    assert outcome.value is None
    assert outcome.last_error is error
    assert outcome.attempts == 6


async def test_single_attempt_policy_never_sleeps():
    sleeper = SleepRecorder()
    policy = RetryPolicy(max_attempts=1, delay_seconds=5, accept=lambda value: value == "done")

    outcome = await policy.run(Countdown("processing"), sleep=sleeper)

    assert outcome.exhausted
    assert outcome.attempts == 1
    assert sleeper.delays == []
