"""
Change detector for the data file.

A watchdog observer watches the file's parent directory; events whose path
(or move destination) is the data file are debounced and published to every
subscriber. Each subscriber owns a bounded queue: when it falls behind, the
oldest events are dropped and counted, so the watcher never blocks.
"""
import logging
import os
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Deque, List, Optional

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .schema import utc_now

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 10
DEFAULT_DEBOUNCE_MS = 250

# Event types that can mean "the data changed"
_DATA_EVENTS = {"created", "modified", "moved", "closed"}


@dataclass(frozen=True)
class ChangeEvent:
    path: str
    detected_at: datetime


class Subscription:
    """One consumer's view of the broadcast channel."""

    def __init__(self, detector: "ChangeDetector", capacity: int):
        self._detector = detector
        self._queue: Deque[ChangeEvent] = deque(maxlen=capacity)
        self._cond = threading.Condition()
        self.lagged = 0
        self.closed = False

    def _push(self, event: ChangeEvent) -> None:
        with self._cond:
            if len(self._queue) == self._queue.maxlen:
                self.lagged += 1
            self._queue.append(event)
            self._cond.notify_all()

    def recv(self, timeout: Optional[float] = None) -> Optional[ChangeEvent]:
        """Next event, waiting up to timeout seconds. None on timeout or close."""
        with self._cond:
            if not self._queue and not self.closed:
                self._cond.wait_for(lambda: self._queue or self.closed, timeout=timeout)
            return self._queue.popleft() if self._queue else None

    def try_recv(self) -> Optional[ChangeEvent]:
        with self._cond:
            return self._queue.popleft() if self._queue else None

    def drain(self) -> List[ChangeEvent]:
        with self._cond:
            events = list(self._queue)
            self._queue.clear()
            return events

    def close(self) -> None:
        self._detector._unsubscribe(self)
        with self._cond:
            self.closed = True
            self._cond.notify_all()


class _DataFileHandler(FileSystemEventHandler):
    """Forwards events that touch the data file to the detector."""

    def __init__(self, detector: "ChangeDetector"):
        self.detector = detector

    def on_any_event(self, fs_event):
        if fs_event.is_directory or fs_event.event_type not in _DATA_EVENTS:
            return
        candidates = [fs_event.src_path]
        dest = getattr(fs_event, "dest_path", "")
        if dest:
            candidates.append(dest)
        for candidate in candidates:
            if self.detector.matches(candidate):
                logger.debug(f"{fs_event.event_type} event for {candidate}")
                self.detector.notify()
                return


def _normalize(path) -> str:
    if isinstance(path, bytes):
        path = os.fsdecode(path)
    return os.path.normcase(str(Path(path).expanduser().resolve()))


class ChangeDetector:
    """Publishes ChangeEvents for one file to any number of subscribers."""

    def __init__(self, path, capacity: int = DEFAULT_CAPACITY,
                 debounce_ms: int = DEFAULT_DEBOUNCE_MS,
                 ignore: Optional[Callable[[], bool]] = None):
        if capacity <= 0:
            raise ValueError(f"Channel capacity must be positive, got {capacity}")
        self.path = Path(path).expanduser()
        self.capacity = capacity
        self.debounce_ms = debounce_ms
        self.ignore = ignore

        self._target = _normalize(self.path)
        self._lock = threading.Lock()
        self._subscribers: List[Subscription] = []
        self._observer: Optional[Observer] = None
        self._timer: Optional[threading.Timer] = None
        self._last_event_at: Optional[datetime] = None
        self._paused = False

    # ── Subscriptions ──

    def subscribe(self) -> Subscription:
        subscription = Subscription(self, self.capacity)
        with self._lock:
            self._subscribers.append(subscription)
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event: ChangeEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for subscription in subscribers:
            subscription._push(event)

    # ── Event intake ──

    def matches(self, path) -> bool:
        return _normalize(path) == self._target

    def pause(self) -> None:
        """Drop events until resume(); used around writes the host knows about."""
        self._paused = True

    def resume(self) -> None:
        self._paused = False

    def notify(self) -> None:
        """Record a change of the data file; publishes after the debounce window."""
        if self._paused:
            return
        self._last_event_at = utc_now()
        if self.debounce_ms <= 0:
            self._flush()
            return
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.debounce_ms / 1000, self._flush)
            self._timer.daemon = True
            self._timer.start()

    def _flush(self) -> None:
        with self._lock:
            self._timer = None
        if self._paused:
            return
        if self.ignore is not None:
            try:
                if self.ignore():
                    logger.debug(f"Ignoring own write to {self.path}")
                    return
            except Exception as e:
                logger.warning(f"Self-write check failed for {self.path}: {e}")
        self.publish(ChangeEvent(path=str(self.path), detected_at=self._last_event_at or utc_now()))

    # ── Lifecycle ──

    @property
    def is_watching(self) -> bool:
        return self._observer is not None

    def start_watching(self) -> None:
        if self._observer is not None:
            return
        directory = self.path.parent if str(self.path.parent) else Path(".")
        directory.mkdir(parents=True, exist_ok=True)
        observer = Observer()
        observer.schedule(_DataFileHandler(self), str(directory), recursive=False)
        observer.daemon = True
        observer.start()
        self._observer = observer
        logger.info(f"Watching {self.path} for external changes")

    def stop_watching(self) -> None:
        with self._lock:
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
        observer, self._observer = self._observer, None
        if observer is None:
            return
        observer.stop()
        observer.join(timeout=5)
        logger.info(f"Stopped watching {self.path}")
