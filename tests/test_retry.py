"""
Tests for conflict retry with exponential backoff.
"""
import pytest

from kanfile.errors import ConflictError, ValidationError
from kanfile.retry import backoff_delays, retry_on_conflict


class Flaky:
    """Raises the given errors in order, then returns "ok"."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


def test_backoff_delays_double_and_cap():
    assert list(backoff_delays()) == [0.05, 0.1, 0.2, 0.4]
    assert list(backoff_delays(9))[-4:] == [0.8, 1.0, 1.0, 1.0]
    assert list(backoff_delays(1)) == []


def test_retries_conflicts_until_success():
    sleeps = []
    fn = Flaky(ConflictError("k.json"), ConflictError("k.json"))
    assert retry_on_conflict(fn, sleep=sleeps.append) == "ok"
    assert fn.calls == 3
    assert sleeps == [0.05, 0.1]


def test_gives_up_after_five_attempts():
    sleeps = []
    fn = Flaky(*[ConflictError("k.json") for _ in range(10)])
    with pytest.raises(ConflictError):
        retry_on_conflict(fn, sleep=sleeps.append)
    assert fn.calls == 5
    assert sleeps == [0.05, 0.1, 0.2, 0.4]


def test_non_retryable_errors_propagate_immediately():
    sleeps = []
    fn = Flaky(ValidationError("bad"))
    with pytest.raises(ValidationError):
        retry_on_conflict(fn, sleep=sleeps.append)
    assert fn.calls == 1
    assert sleeps == []


def test_custom_retryable_check():
    fn = Flaky(RuntimeError("conflict"))
    result = retry_on_conflict(fn, is_retryable=lambda e: "conflict" in str(e), sleep=lambda _: None)
    assert result == "ok"


def test_attempts_must_be_positive():
    with pytest.raises(ValueError):
        retry_on_conflict(lambda: None, attempts=0)
