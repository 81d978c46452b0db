import asyncio
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from core.models import FailureReason, Result
from core.retry import RetryPolicy, call_with_retry


class _Op:
    def __init__(self, *results: Result) -> None:
        self.results = list(results)
        self.calls = 0

    async def __call__(self) -> Result:
        self.calls += 1
        return self.results.pop(0)


def _run(op, policy):
    sleeps = []

    async def fake_sleep(delay):
        sleeps.append(delay)

    result = asyncio.run(call_with_retry(op, policy, sleep=fake_sleep))
    return result, sleeps


def test_transient_failures_are_retried_with_linear_backoff():
    op = _Op(
        Result.fail(FailureReason.TIMEOUT),
        Result.fail(FailureReason.NETWORK),
        Result.success(42),
    )
    result, sleeps = _run(op, RetryPolicy(retries=2, backoff=0.5))
    assert result.value == 42
    assert op.calls == 3
    assert sleeps == [0.5, 1.0]


def test_permanent_failures_return_immediately():
    op = _Op(Result.fail(FailureReason.NO_POOL), Result.success(1))
    result, sleeps = _run(op, RetryPolicy(retries=3))
    assert result.failure.reason is FailureReason.NO_POOL
    assert op.calls == 1
    assert sleeps == []


def test_budget_is_bounded():
    op = _Op(*(Result.fail(FailureReason.TIMEOUT) for _ in range(5)))
    result, sleeps = _run(op, RetryPolicy(retries=2, backoff=0.1))
    assert result.failure.reason is FailureReason.TIMEOUT
    assert op.calls == 3
    assert len(sleeps) == 2


def test_no_retry_policy_calls_once():
    op = _Op(Result.fail(FailureReason.NETWORK))
    result, sleeps = _run(op, RetryPolicy.none())
    assert not result.ok
    assert op.calls == 1
    assert sleeps == []
