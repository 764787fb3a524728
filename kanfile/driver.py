"""
Response envelope and the subprocess driver for the kanfile CLI.

Every front end answers with the same envelope:

    {"success": bool, "api_version": "1.0.0", "data": ..., "error": ...}

SubprocessExecutor runs the CLI as a child process, decodes that envelope
and retries failures that report a write conflict.
"""
import json
import logging
import shutil
import subprocess
import sys
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .config import Config
from .errors import (
    InternalError,
    IoError,
    KanbanError,
    SerializationError,
    error_from_message,
    is_retryable_message,
)
from .retry import DEFAULT_ATTEMPTS, DEFAULT_INITIAL_DELAY, DEFAULT_MAX_DELAY, retry_on_conflict

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"
COMMAND_TIMEOUT = 30  # seconds


def to_payload(value: Any) -> Any:
    """Convert records, results and containers into JSON-ready values."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, dict):
        return {str(k): to_payload(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_payload(v) for v in value]
    raise TypeError(f"Cannot serialize {type(value).__name__}")


@dataclass
class Response:
    success: bool
    data: Any = None
    error: Optional[str] = None
    api_version: str = API_VERSION

    @property
    def retryable(self) -> bool:
        return not self.success and is_retryable_message(self.error)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "api_version": self.api_version,
            "data": to_payload(self.data),
            "error": self.error,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Response":
        if not isinstance(data, dict) or "success" not in data:
            raise SerializationError("Response is not an envelope")
        return cls(
            success=bool(data["success"]),
            data=data.get("data"),
            error=data.get("error"),
            api_version=data.get("api_version", API_VERSION),
        )

    @classmethod
    def from_json(cls, text: str) -> "Response":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise SerializationError(f"Response is not valid JSON: {e}") from e
        return cls.from_dict(data)

    def raise_for_error(self) -> Any:
        """Return data on success, else raise the matching KanbanError."""
        if self.success:
            return self.data
        raise error_from_message(self.error or "Unknown error")


def success(data: Any = None) -> Response:
    return Response(success=True, data=data)


def failure(error: Exception) -> Response:
    if not isinstance(error, KanbanError):
        error = InternalError(str(error))
    return Response(success=False, error=str(error))


class SubprocessExecutor:
    """Runs `kanfile` commands in a child process and decodes the envelope."""

    def __init__(self, data_file: Optional[str] = None,
                 command: Optional[List[str]] = None,
                 timeout: float = COMMAND_TIMEOUT,
                 attempts: int = DEFAULT_ATTEMPTS,
                 initial_delay: float = DEFAULT_INITIAL_DELAY,
                 max_delay: float = DEFAULT_MAX_DELAY):
        self.data_file = data_file
        self.command = command or self._default_command()
        self.timeout = timeout
        self.attempts = attempts
        self.initial_delay = initial_delay
        self.max_delay = max_delay

    @classmethod
    def from_config(cls, config: Config, command: Optional[List[str]] = None,
                    timeout: float = COMMAND_TIMEOUT) -> "SubprocessExecutor":
        """Build an executor for the configured data file and retry policy."""
        return cls(
            data_file=config.data_file,
            command=command,
            timeout=timeout,
            attempts=config.retry_attempts,
            initial_delay=config.retry_initial_delay,
            max_delay=config.retry_max_delay,
        )

    @staticmethod
    def _default_command() -> List[str]:
        binary = shutil.which("kanfile")
        if binary:
            return [binary]
        return [sys.executable, "-m", "kanfile"]

    def _argv(self, args: List[str]) -> List[str]:
        argv = list(self.command)
        if self.data_file:
            argv += ["--file", str(self.data_file)]
        return argv + [str(a) for a in args]

    def run(self, args: List[str]) -> Response:
        """Run one CLI invocation; transport failures raise, command failures come back as a Response."""
        argv = self._argv(args)
        logger.debug(f"Running {' '.join(argv)}")
        try:
            result = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            raise IoError(f"Command timed out after {self.timeout}s: {' '.join(argv)}") from None
        except OSError as e:
            raise IoError(f"Cannot run {argv[0]}: {e}") from e

        for stream in (result.stdout, result.stderr):
            text = (stream or "").strip()
            if not text:
                continue
            try:
                return Response.from_json(text)
            except SerializationError:
                continue
        detail = (result.stderr or result.stdout or "").strip()[:500]
        raise SerializationError(
            f"No response envelope from command (exit {result.returncode}): {detail}"
        )

    def execute(self, args: List[str]) -> Any:
        """Run a command and return its data, raising the mapped error on failure."""
        return self.run(args).raise_for_error()

    def execute_with_retry(self, args: List[str]) -> Any:
        """Like execute(), retrying conflicts with exponential backoff."""
        return retry_on_conflict(
            lambda: self.execute(args),
            attempts=self.attempts,
            initial_delay=self.initial_delay,
            max_delay=self.max_delay,
        )
