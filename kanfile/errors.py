"""
Error taxonomy for the kanban core.

Every failure surfaced by commands, the store or the front ends is one of
these kinds. The set is closed: front ends map them to exit codes, HTTP
status codes and the response envelope.
"""
from typing import Optional


class KanbanError(Exception):
    """Base class for all kanban errors."""

    kind = "internal"
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class NotFoundError(KanbanError):
    """An entity referred to by id does not exist."""

    kind = "not_found"

    def __init__(self, message: str):
        super().__init__(f"Not found: {message}")


class ValidationError(KanbanError):
    """A precondition on the domain model failed."""

    kind = "validation"

    def __init__(self, message: str):
        super().__init__(f"Validation error: {message}")


class IoError(KanbanError):
    """A file-system operation failed."""

    kind = "io"

    def __init__(self, message: str):
        super().__init__(f"IO error: {message}")


class SerializationError(KanbanError):
    """The on-disk document cannot be parsed or produced."""

    kind = "serialization"

    def __init__(self, message: str):
        super().__init__(f"Serialization error: {message}")


class ConflictError(KanbanError):
    """The data file was modified by another instance since we last read it."""

    kind = "conflict"
    retryable = True

    def __init__(self, path: str, reason: Optional[str] = None):
        text = f"File was modified by another instance: {path}"
        if reason:
            text += f" ({reason})"
        super().__init__(text)
        self.path = path
        self.reason = reason


class InternalError(KanbanError):
    """An internal invariant was violated."""

    kind = "internal"

    def __init__(self, message: str):
        super().__init__(f"Internal error: {message}")


def is_retryable_message(message: Optional[str]) -> bool:
    """True when an error message describes a retryable conflict."""
    if not message:
        return False
    lowered = message.lower()
    return "conflict" in lowered or "modified by another" in lowered


_PREFIXES = (
    ("Not found: ", NotFoundError),
    ("Validation error: ", ValidationError),
    ("IO error: ", IoError),
    ("Serialization error: ", SerializationError),
    ("File was modified by another instance: ", ConflictError),
    ("Internal error: ", InternalError),
)


def error_from_message(message: str) -> KanbanError:
    """Rebuild a taxonomy error from its rendered message (e.g. a response envelope)."""
    for prefix, cls in _PREFIXES:
        if message.startswith(prefix):
            return cls(message[len(prefix):])
    if is_retryable_message(message):
        return ConflictError(message)
    return InternalError(message)
