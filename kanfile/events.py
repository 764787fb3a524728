"""
Persistence events and the subscriber registry hosts use to hear about them.

Event kinds:
  saved                     - this instance wrote the file
  external_change_detected  - another process changed the file
  conflict_detected         - an external change collided with unsaved local edits
  error                     - a save or reload failed
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .schema import utc_now

logger = logging.getLogger(__name__)

SAVED = "saved"
EXTERNAL_CHANGE_DETECTED = "external_change_detected"
CONFLICT_DETECTED = "conflict_detected"
ERROR = "error"

EVENT_KINDS = (SAVED, EXTERNAL_CHANGE_DETECTED, CONFLICT_DETECTED, ERROR)


@dataclass
class PersistenceEvent:
    kind: str
    path: Optional[str] = None
    saved_at: Optional[datetime] = None
    reason: Optional[str] = None
    at: datetime = field(default_factory=utc_now)

    @classmethod
    def saved(cls, path: str, saved_at: datetime) -> "PersistenceEvent":
        return cls(SAVED, path=path, saved_at=saved_at)

    @classmethod
    def external_change(cls, path: str, saved_at: Optional[datetime] = None) -> "PersistenceEvent":
        return cls(EXTERNAL_CHANGE_DETECTED, path=path, saved_at=saved_at)

    @classmethod
    def conflict(cls, path: str, reason: str) -> "PersistenceEvent":
        return cls(CONFLICT_DETECTED, path=path, reason=reason)

    @classmethod
    def error(cls, path: str, reason: str) -> "PersistenceEvent":
        return cls(ERROR, path=path, reason=reason)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "path": self.path,
            "saved_at": self.saved_at.isoformat() if self.saved_at else None,
            "reason": self.reason,
            "at": self.at.isoformat(),
        }


class EventBridge:
    """Routes persistence events to registered callbacks."""

    def __init__(self):
        self.subscribers: Dict[str, List[Callable[[PersistenceEvent], None]]] = {}

    def subscribe(self, kind: str, callback: Callable[[PersistenceEvent], None]) -> None:
        """Register a callback for an event kind ("*" receives everything)."""
        if kind != "*" and kind not in EVENT_KINDS:
            raise ValueError(f"Unknown event kind: {kind}")
        self.subscribers.setdefault(kind, []).append(callback)

    def unsubscribe(self, kind: str, callback: Callable[[PersistenceEvent], None]) -> None:
        callbacks = self.subscribers.get(kind, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def emit(self, event: PersistenceEvent) -> None:
        """Deliver to subscribers; a failing callback never breaks the caller."""
        for callback in self.subscribers.get(event.kind, []) + self.subscribers.get("*", []):
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Error in {event.kind} callback: {e}")
