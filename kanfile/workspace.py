"""
Workspace host: in-memory state, undo/redo, the data file and its watcher.

Components:
  - KanbanOperations for every mutating and querying call
  - HistoryManager capturing the state before each successful command
  - JsonFileStore for load/save with conflict detection
  - ConflictResolver deciding between our pending state and an external write
  - ChangeDetector + EventBridge reporting external changes to the host
"""
import logging
from pathlib import Path
from typing import Any, List, Optional

from .commands import Command, CommandContext
from .config import Config
from .conflict import ConflictResolver, LastWriteWinsResolver
from .errors import ConflictError, KanbanError, NotFoundError
from .events import EventBridge, PersistenceEvent
from .history import HistoryManager
from .operations import KanbanOperations
from .snapshot import Snapshot
from .store import JsonFileStore
from .watcher import ChangeDetector, ChangeEvent, Subscription

logger = logging.getLogger(__name__)


class Workspace(KanbanOperations):
    """One data file opened by one process."""

    def __init__(self, path=None, config: Optional[Config] = None,
                 store: Optional[JsonFileStore] = None,
                 resolver: Optional[ConflictResolver] = None,
                 autosave: bool = False):
        self.config = config or Config()
        super().__init__(
            card_prefix=self.config.default_card_prefix,
            sprint_prefix=self.config.default_sprint_prefix,
            sprint_duration_days=self.config.default_sprint_duration_days,
        )
        if store is None:
            store = JsonFileStore(Path(path or self.config.data_file))
        self.store = store
        self.path = store.path
        self.resolver = resolver or LastWriteWinsResolver()
        self.history = HistoryManager(self.config.history_depth)
        self.events = EventBridge()
        self.autosave = autosave

        self.dirty = False
        self.persistence_enabled = True
        self._emptied_by_user = False
        self.detector: Optional[ChangeDetector] = None
        self._subscription: Optional[Subscription] = None

    # ── Loading ──

    def open(self) -> "Workspace":
        """Load the data file; start empty when it does not exist yet."""
        try:
            snapshot, _ = self.store.load()
        except NotFoundError:
            logger.info(f"No data file at {self.path}; starting empty")
            self.snapshot = Snapshot()
        except KanbanError as e:
            self.persistence_enabled = False
            logger.error(f"Failed to load {self.path}: {e}; persistence disabled for this session")
            self.events.emit(PersistenceEvent.error(str(self.path), str(e)))
            raise
        else:
            self.snapshot = snapshot
        self.dirty = False
        self._emptied_by_user = False
        self.history.clear()
        return self

    def reload(self) -> Snapshot:
        """Replace the in-memory state with the file's; history is cleared."""
        try:
            snapshot, metadata = self.store.load()
        except KanbanError as e:
            logger.error(f"Reload of {self.path} failed: {e}")
            self.events.emit(PersistenceEvent.error(str(self.path), str(e)))
            raise
        self.snapshot = snapshot
        self.history.clear()
        self.dirty = False
        self._emptied_by_user = False
        logger.info(f"Reloaded {self.path} (saved {metadata.saved_at.isoformat()})")
        return snapshot

    # ── Commands and history ──

    def execute(self, command: Command) -> Any:
        """Run a command; only a successful command lands on the undo stack."""
        before = self.snapshot.clone()
        try:
            command.execute(CommandContext(self.snapshot))
        except Exception:
            self.snapshot = before
            raise
        self.history.capture_before_command(before)
        self._mark_changed(before)
        logger.debug(f"Executed {command.description()}")
        if self.autosave:
            self.save()
        return command.result

    def can_undo(self) -> bool:
        return self.history.can_undo()

    def can_redo(self) -> bool:
        return self.history.can_redo()

    def undo(self) -> bool:
        """Restore the state before the last command. False when there is nothing to undo."""
        if not self.history.can_undo():
            return False
        self.history.suppress()
        try:
            previous = self.history.pop_undo()
            current = self.snapshot
            self.history.push_redo(current.clone())
            self.snapshot = previous
        finally:
            self.history.unsuppress()
        self._mark_changed(current)
        if self.autosave:
            self.save()
        return True

    def redo(self) -> bool:
        if not self.history.can_redo():
            return False
        self.history.suppress()
        try:
            following = self.history.pop_redo()
            current = self.snapshot
            self.history.push_undo(current.clone())
            self.snapshot = following
        finally:
            self.history.unsuppress()
        self._mark_changed(current)
        if self.autosave:
            self.save()
        return True

    def _mark_changed(self, before: Snapshot) -> None:
        # Emptying a populated workspace is the user's choice and may be saved
        if self.snapshot.is_empty():
            if not before.is_empty():
                self._emptied_by_user = True
        else:
            self._emptied_by_user = False
        self.dirty = True

    # ── Saving ──

    def save(self, force: bool = False) -> bool:
        """
        Write pending changes. Returns True when the file was written.

        On a conflict the resolver decides: if the external version wins,
        pending changes are discarded and the file is reloaded (False is
        returned); otherwise our state overwrites the file.
        """
        if not self.persistence_enabled:
            logger.debug("Persistence disabled; not saving")
            return False
        if not self.dirty and not force:
            return False
        try:
            metadata = self.store.save(self.snapshot, force=force, allow_empty=self._emptied_by_user)
        except ConflictError as e:
            logger.warning(str(e))
            return self._resolve_conflict(e)
        except KanbanError as e:
            logger.error(f"Save to {self.path} failed: {e}")
            self.events.emit(PersistenceEvent.error(str(self.path), str(e)))
            raise
        self.dirty = False
        self.events.emit(PersistenceEvent.saved(str(self.path), metadata.saved_at))
        return True

    def _resolve_conflict(self, error: ConflictError) -> bool:
        local = self.store.known_metadata
        external = self.store.read_metadata()
        if external is None:
            use_external = False
            reason = "external file is unversioned; local kept"
        elif local is None:
            use_external = True
            reason = f"external file created by {external.instance_id}"
        else:
            use_external = self.resolver.should_use_external(local, external)
            reason = self.resolver.explain(local, external)
        self.events.emit(PersistenceEvent.conflict(str(self.path), reason))

        if use_external:
            logger.warning(f"Conflict on {self.path}: {reason}; discarding local changes")
            self.reload()
            return False

        logger.warning(f"Conflict on {self.path}: {reason}; overwriting")
        metadata = self.store.save(self.snapshot, force=True)
        self.dirty = False
        self.events.emit(PersistenceEvent.saved(str(self.path), metadata.saved_at))
        return True

    # ── External changes ──

    @property
    def is_watching(self) -> bool:
        return self.detector is not None and self.detector.is_watching

    def start_watching(self) -> ChangeDetector:
        if self.detector is None:
            self.detector = ChangeDetector(
                self.path,
                capacity=self.config.watch_channel_capacity,
                debounce_ms=self.config.watch_debounce_ms,
                ignore=self.store.is_own_write,
            )
            self._subscription = self.detector.subscribe()
        self.detector.start_watching()
        return self.detector

    def stop_watching(self) -> None:
        if self.detector is not None:
            self.detector.stop_watching()

    def poll_external_changes(self) -> List[ChangeEvent]:
        """
        Handle change events received since the last poll.

        A clean workspace reloads automatically; a dirty one reports a
        conflict and keeps its state until the host saves or reloads.
        """
        if self._subscription is None:
            return []
        events = self._subscription.drain()
        if not events or self.store.is_own_write():
            return []

        metadata = self.store.read_metadata()
        self.events.emit(PersistenceEvent.external_change(
            str(self.path), metadata.saved_at if metadata else None))
        if self.dirty:
            self.events.emit(PersistenceEvent.conflict(
                str(self.path), "file changed externally while local changes are pending"))
            return events
        try:
            self.reload()
        except KanbanError:
            logger.warning(f"Ignoring unreadable external change to {self.path}")
        return events

    def close(self) -> None:
        """Stop watching and flush pending changes."""
        self.stop_watching()
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        if self.dirty:
            self.save()

    def __enter__(self) -> "Workspace":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
