"""
JSON file store for the workspace snapshot.

Provides load/save of the whole snapshot with:
  - atomic writes (temp file + rename in the same directory)
  - V1 → V2 migration on load
  - writer-side conflict detection against other instances
  - a record of our own recent writes so the change detector can ignore them
"""
import logging
import threading
import time
from collections import deque
from datetime import timedelta
from pathlib import Path
from typing import Deque, Optional, Tuple

from .errors import ConflictError, IoError, NotFoundError, SerializationError, ValidationError
from .migration import FormatVersion, Migrator
from .schema import new_id
from .serializer import (
    FileFingerprint,
    PersistenceMetadata,
    atomic_write,
    build_envelope,
    encode,
    parse_envelope,
    sweep_temp_files,
)
from .snapshot import COLLECTIONS, Snapshot

logger = logging.getLogger(__name__)

RECENT_WRITES = 10
OWN_WRITE_WINDOW_SECS = 5.0


class JsonFileStore:
    """Single-file snapshot store. One instance per process and data file."""

    def __init__(self, path, instance_id: Optional[str] = None,
                 migrator: Optional[Migrator] = None,
                 own_write_window: float = OWN_WRITE_WINDOW_SECS):
        self.path = Path(path).expanduser()
        self.instance_id = instance_id or new_id()
        self.migrator = migrator or Migrator()
        self.own_write_window = own_write_window

        self._lock = threading.Lock()
        self._known_metadata: Optional[PersistenceMetadata] = None
        self._known_fingerprint: Optional[FileFingerprint] = None
        self._recent_writes: Deque[Tuple[FileFingerprint, float]] = deque(maxlen=RECENT_WRITES)
        sweep_temp_files(self.path)

    def exists(self) -> bool:
        return self.path.exists()

    @property
    def known_metadata(self) -> Optional[PersistenceMetadata]:
        """Metadata of the version this instance last loaded or wrote."""
        return self._known_metadata

    # ── Reading ──

    def _read_bytes(self) -> bytes:
        try:
            return self.path.read_bytes()
        except FileNotFoundError:
            raise NotFoundError(f"Data file {self.path}") from None
        except OSError as e:
            raise IoError(f"Cannot read {self.path}: {e}") from e

    def _read_current(self) -> Tuple[Optional[bytes], Optional[FileFingerprint]]:
        """Current file content with its fingerprint, or (None, None) when absent."""
        try:
            raw = self._read_bytes()
        except NotFoundError:
            return None, None
        return raw, FileFingerprint.of(self.path, raw)

    def read_metadata(self) -> Optional[PersistenceMetadata]:
        """Metadata currently on disk; None when the file is absent or unversioned."""
        try:
            raw = self._read_bytes()
        except NotFoundError:
            return None
        try:
            _, metadata = parse_envelope(raw, str(self.path))
        except SerializationError:
            return None
        return metadata

    def load(self) -> Tuple[Snapshot, PersistenceMetadata]:
        """Load the snapshot, migrating older formats first."""
        with self._lock:
            if not self.path.exists():
                raise NotFoundError(f"Data file {self.path}")
            version = self.migrator.detect_version(self.path)
            if version != FormatVersion.V2:
                logger.info(f"Data file {self.path} is {version.name}, migrating")
                self.migrator.migrate(version, FormatVersion.V2, self.path, self.instance_id)

            raw, fingerprint = self._read_current()
            if raw is None:
                raise NotFoundError(f"Data file {self.path}")
            data, metadata = parse_envelope(raw, str(self.path))
            snapshot = Snapshot.from_dict(data)

            self._known_metadata = metadata
            self._known_fingerprint = fingerprint
            logger.info(
                f"Loaded {self.path} (saved {metadata.saved_at.isoformat()} by {metadata.instance_id})"
            )
            return snapshot, metadata

    # ── Conflict detection ──

    def check_conflict(self) -> None:
        """Raise ConflictError if the file changed since this instance last read or wrote it."""
        raw, current = self._read_current()
        if current is None:
            return
        if current.matches(self._known_fingerprint):
            return

        if self._known_metadata is None:
            raise ConflictError(str(self.path), "file was created by another instance")
        try:
            _, external = parse_envelope(raw, str(self.path))
        except SerializationError:
            raise ConflictError(str(self.path), "file was replaced by an unversioned document") from None
        if external.saved_at > self._known_metadata.saved_at:
            raise ConflictError(
                str(self.path),
                f"saved at {external.saved_at.isoformat()} by {external.instance_id}",
            )

    def _on_disk_is_empty(self) -> bool:
        try:
            data, _ = parse_envelope(self._read_bytes(), str(self.path))
        except (NotFoundError, SerializationError):
            return True
        return not any(data.get(name) for name in COLLECTIONS)

    # ── Writing ──

    def save(self, snapshot: Snapshot, force: bool = False, allow_empty: bool = False) -> PersistenceMetadata:
        """
        Write snapshot atomically, stamped with this instance's metadata.

        force skips conflict detection and the guard against replacing a
        non-empty file with an empty snapshot. allow_empty skips only the
        guard, for when the user deleted everything themselves.
        """
        with self._lock:
            if not force:
                self.check_conflict()
                if not allow_empty and snapshot.is_empty() and self.path.exists() and not self._on_disk_is_empty():
                    raise ValidationError(
                        f"Refusing to overwrite non-empty {self.path} with an empty snapshot"
                    )

            metadata = PersistenceMetadata.new(self.instance_id)
            if self._known_metadata and metadata.saved_at <= self._known_metadata.saved_at:
                # Keep our own saves strictly ordered even on a coarse clock
                metadata.saved_at = self._known_metadata.saved_at + timedelta(microseconds=1)
            payload = encode(build_envelope(snapshot, metadata))
            atomic_write(self.path, payload)

            fingerprint = FileFingerprint.of(self.path, payload)
            self._recent_writes.append((fingerprint, time.monotonic()))
            self._known_metadata = metadata
            self._known_fingerprint = fingerprint
            logger.info(f"Saved {self.path} ({len(payload)} bytes)")
            return metadata

    # ── Self-write filtering ──

    def is_own_write(self) -> bool:
        """
        True when the file on disk is one this instance wrote recently.

        Fingerprints are matched first; if none match, the envelope's
        instance id and timestamp are checked against our last write.
        """
        raw, current = self._read_current()
        if current is None:
            return False
        with self._lock:
            writes = list(self._recent_writes)
            known = self._known_metadata
        now = time.monotonic()
        for fingerprint, written_at in writes:
            if now - written_at <= self.own_write_window and current.matches(fingerprint):
                return True

        if known is None or known.instance_id != self.instance_id:
            return False
        try:
            _, on_disk = parse_envelope(raw, str(self.path))
        except SerializationError:
            return False
        return on_disk.instance_id == self.instance_id and on_disk.saved_at == known.saved_at
