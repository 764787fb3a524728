"""
Tests for the response envelope and the subprocess driver.
"""
import subprocess
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from kanfile.config import Config
from kanfile.driver import Response, SubprocessExecutor, failure, success, to_payload
from kanfile.errors import (
    ConflictError,
    InternalError,
    IoError,
    NotFoundError,
    SerializationError,
    ValidationError,
    error_from_message,
)
from kanfile.schema import CardStatus


def _completed(stdout="", stderr="", returncode=0):
    return SimpleNamespace(stdout=stdout, stderr=stderr, returncode=returncode)


CONFLICT = failure(ConflictError("k.json")).to_json()
OK = success({"id": "b1"}).to_json()


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Envelope
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_to_payload():
    stamp = datetime(2024, 1, 2, tzinfo=timezone.utc)
    assert to_payload({"s": CardStatus.DONE, "t": stamp, "l": (1, 2)}) == {
        "s": "Done", "t": stamp.isoformat(), "l": [1, 2],
    }
    with pytest.raises(TypeError):
        to_payload(object())


def test_failure_wraps_foreign_exceptions():
    response = failure(RuntimeError("boom"))
    assert response.error == "Internal error: boom"
    assert not response.retryable


def test_retryable_on_conflict_wording():
    assert Response.from_json(CONFLICT).retryable
    assert Response(success=False, error="Write conflict on board").retryable
    assert not Response(success=False, error="Not found: Card x").retryable
    assert not Response(success=True, error="conflict").retryable


def test_from_json_rejects_non_envelopes():
    with pytest.raises(SerializationError):
        Response.from_json("not json")
    with pytest.raises(SerializationError):
        Response.from_json('{"data": 1}')


def test_raise_for_error_rebuilds_error_kind():
    assert Response.from_json(OK).raise_for_error() == {"id": "b1"}
    with pytest.raises(NotFoundError) as info:
        failure(NotFoundError("Card x")).raise_for_error()
    assert str(info.value) == "Not found: Card x"


@pytest.mark.parametrize("error, kind", [
    (ValidationError("bad"), ValidationError),
    (IoError("disk"), IoError),
    (ConflictError("k.json", "saved by y"), ConflictError),
    (InternalError("oops"), InternalError),
])
def test_error_from_message(error, kind):
    rebuilt = error_from_message(str(error))
    assert isinstance(rebuilt, kind)
    assert rebuilt.retryable == error.retryable


def test_error_from_unknown_message():
    assert isinstance(error_from_message("something odd"), InternalError)
    assert isinstance(error_from_message("Conflict while writing"), ConflictError)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# SubprocessExecutor
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestSubprocessExecutor:
    def setup_method(self):
        self.executor = SubprocessExecutor(data_file="k.json", command=["kanfile"], initial_delay=0)

    def test_argv(self):
        with patch("kanfile.driver.subprocess.run", return_value=_completed(OK)) as run:
            assert self.executor.execute(["board", "list"]) == {"id": "b1"}
        argv = run.call_args[0][0]
        assert argv == ["kanfile", "--file", "k.json", "board", "list"]
        assert run.call_args[1]["timeout"] == 30

    def test_envelope_on_stderr(self):
        with patch("kanfile.driver.subprocess.run", return_value=_completed("", OK, 1)):
            assert self.executor.run(["x"]).success

    def test_no_envelope(self):
        with patch("kanfile.driver.subprocess.run", return_value=_completed("oops", "Traceback", 2)):
            with pytest.raises(SerializationError, match="exit 2"):
                self.executor.run(["x"])

    def test_timeout(self):
        error = subprocess.TimeoutExpired(cmd="kanfile", timeout=30)
        with patch("kanfile.driver.subprocess.run", side_effect=error):
            with pytest.raises(IoError, match="timed out"):
                self.executor.run(["x"])

    def test_missing_binary(self):
        with patch("kanfile.driver.subprocess.run", side_effect=FileNotFoundError("kanfile")):
            with pytest.raises(IoError):
                self.executor.run(["x"])

    def test_retry_until_conflict_clears(self):
        outputs = [_completed(CONFLICT, returncode=1), _completed(CONFLICT, returncode=1), _completed(OK)]
        with patch("kanfile.driver.subprocess.run", side_effect=outputs) as run:
            assert self.executor.execute_with_retry(["board", "list"]) == {"id": "b1"}
        assert run.call_count == 3

    def test_retry_gives_up(self):
        with patch("kanfile.driver.subprocess.run", return_value=_completed(CONFLICT, returncode=1)) as run:
            with pytest.raises(ConflictError):
                self.executor.execute_with_retry(["board", "list"])
        assert run.call_count == 5

    def test_validation_errors_are_not_retried(self):
        bad = failure(ValidationError("nope")).to_json()
        with patch("kanfile.driver.subprocess.run", return_value=_completed(bad, returncode=1)) as run:
            with pytest.raises(ValidationError):
                self.executor.execute_with_retry(["board", "create", ""])
        assert run.call_count == 1


def test_executor_from_config():
    config = Config(data_file="team.json", retry_attempts=2, retry_initial_delay_ms=0, retry_max_delay_ms=0)
    executor = SubprocessExecutor.from_config(config, command=["kanfile"])
    assert executor.data_file == "team.json"
    assert (executor.attempts, executor.initial_delay, executor.max_delay) == (2, 0, 0)

    with patch("kanfile.driver.subprocess.run", return_value=_completed(CONFLICT, returncode=1)) as run:
        with pytest.raises(ConflictError):
            executor.execute_with_retry(["board", "list"])
    assert run.call_count == 2
