"""
Tests for reliability — bounded retry policy.
"""

import pytest

from provisioner.core.reliability.retry import RetryPolicy


class _Flaky:
    """Fails until call ``succeed_on`` (1-based); never succeeds if None."""

    def __init__(self, succeed_on: int | None):
        self.succeed_on = succeed_on
        self.calls: list[int] = []

    def __call__(self, attempt: int) -> bool:
        self.calls.append(attempt)
        return self.succeed_on is not None and attempt >= self.succeed_on


class TestRetryPolicy:
    def test_immediate_success(self):
        op = _Flaky(succeed_on=1)
        outcome = RetryPolicy(max_attempts=10).run(op, succeeded=bool)
        assert outcome.succeeded
        assert outcome.attempts == 1
        assert op.calls == [1]

    def test_success_on_kth_attempt(self):
        op = _Flaky(succeed_on=4)
        outcome = RetryPolicy(max_attempts=10).run(op, succeeded=bool)
        assert outcome.succeeded
        assert outcome.attempts == 4
        assert op.calls == [1, 2, 3, 4]

    def test_exhaustion_runs_hook_once(self):
        op = _Flaky(succeed_on=None)
        hook_calls = []
        outcome = RetryPolicy(max_attempts=10).run(op, succeeded=bool, on_exhausted=hook_calls.append)
        assert outcome.exhausted
        assert outcome.attempts == 10
        assert outcome.result is False
        assert len(op.calls) == 10
        assert hook_calls == [False]

    def test_hook_not_run_on_success(self):
        hook_calls = []
        RetryPolicy(max_attempts=3).run(_Flaky(succeed_on=3), succeeded=bool, on_exhausted=hook_calls.append)
        assert hook_calls == []

    def test_hook_exception_is_discarded(self):
        def broken_hook(result):
            raise RuntimeError("diagnostics unavailable")

        outcome = RetryPolicy(max_attempts=2).run(_Flaky(None), succeeded=bool, on_exhausted=broken_hook)
        assert outcome.exhausted
        assert outcome.result is False

    def test_no_sleep_by_default(self):
        sleeps = []
        RetryPolicy(max_attempts=5, sleep=sleeps.append).run(_Flaky(None), succeeded=bool)
        assert sleeps == []

    def test_backoff_between_attempts(self):
        sleeps = []
        policy = RetryPolicy(max_attempts=4, base_delay=1.0, max_delay=3.0, sleep=sleeps.append)
        policy.run(_Flaky(None), succeeded=bool)
        # No sleep after the final attempt.
        assert len(sleeps) == 3
        assert 1.0 <= sleeps[0] <= 1.3
        assert 2.0 <= sleeps[1] <= 2.6
        assert 3.0 <= sleeps[2] <= 3.9

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)
