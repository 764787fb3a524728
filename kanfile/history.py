"""
Undo/redo history made of whole-state snapshots.

Two bounded deques; when full, the oldest entry falls off. Capture is
suppressed while an undo or redo is being replayed so the replay itself
does not land on the stacks.
"""
from collections import deque
from typing import Deque, Optional

from .snapshot import Snapshot

DEFAULT_HISTORY_DEPTH = 100


class HistoryManager:
    def __init__(self, max_depth: int = DEFAULT_HISTORY_DEPTH):
        if max_depth <= 0:
            raise ValueError(f"History depth must be positive, got {max_depth}")
        self.max_depth = max_depth
        self._undo: Deque[Snapshot] = deque(maxlen=max_depth)
        self._redo: Deque[Snapshot] = deque(maxlen=max_depth)
        self._suppressed = False

    def capture_before_command(self, snapshot: Snapshot) -> None:
        """Record the pre-command state. A new action invalidates the redo stack."""
        if self._suppressed:
            return
        self._undo.append(snapshot)
        self._redo.clear()

    def push_undo(self, snapshot: Snapshot) -> None:
        self._undo.append(snapshot)

    def push_redo(self, snapshot: Snapshot) -> None:
        self._redo.append(snapshot)

    def pop_undo(self) -> Optional[Snapshot]:
        return self._undo.pop() if self._undo else None

    def pop_redo(self) -> Optional[Snapshot]:
        return self._redo.pop() if self._redo else None

    def can_undo(self) -> bool:
        return bool(self._undo)

    def can_redo(self) -> bool:
        return bool(self._redo)

    def undo_depth(self) -> int:
        return len(self._undo)

    def redo_depth(self) -> int:
        return len(self._redo)

    def clear(self) -> None:
        self._undo.clear()
        self._redo.clear()

    def suppress(self) -> None:
        self._suppressed = True

    def unsuppress(self) -> None:
        self._suppressed = False

    @property
    def is_suppressed(self) -> bool:
        return self._suppressed
