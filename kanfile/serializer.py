"""
On-disk format helpers: the v2 envelope, its metadata, file fingerprints
and the atomic write protocol.

Envelope (format v2):
  {"version": 2,
   "metadata": {"format_version": 2, "instance_id": "<uuid>", "saved_at": "<rfc3339>"},
   "data": <snapshot>}
"""
import hashlib
import json
import logging
import os
import shutil
import tempfile
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .errors import IoError, SerializationError
from .schema import format_timestamp, new_id, parse_timestamp, utc_now
from .snapshot import Snapshot

logger = logging.getLogger(__name__)

FORMAT_VERSION = 2
LEGACY_VERSION = 1
TEMP_SUFFIX = ".tmp"


@dataclass
class PersistenceMetadata:
    """Who wrote the file, and when."""

    instance_id: str
    saved_at: datetime = field(default_factory=utc_now)
    format_version: int = FORMAT_VERSION

    @classmethod
    def new(cls, instance_id: Optional[str] = None) -> "PersistenceMetadata":
        return cls(instance_id=instance_id or new_id())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "format_version": self.format_version,
            "instance_id": self.instance_id,
            "saved_at": format_timestamp(self.saved_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PersistenceMetadata":
        try:
            return cls(
                instance_id=str(data["instance_id"]),
                saved_at=parse_timestamp(data["saved_at"]),
                format_version=int(data.get("format_version", FORMAT_VERSION)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise SerializationError(f"Invalid envelope metadata: {e}") from e


@dataclass(frozen=True)
class FileFingerprint:
    """Cheap identity of a file version: modification time, size, content hash."""

    mtime_ns: int
    size: int
    digest: str = ""

    @classmethod
    def of(cls, path: Path, content: Optional[bytes] = None) -> Optional["FileFingerprint"]:
        try:
            st = os.stat(path)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise IoError(f"Cannot stat {path}: {e}") from e
        digest = hashlib.sha256(content).hexdigest() if content is not None else ""
        return cls(mtime_ns=st.st_mtime_ns, size=st.st_size, digest=digest)

    def same_stat(self, other: Optional["FileFingerprint"]) -> bool:
        return other is not None and (self.mtime_ns, self.size) == (other.mtime_ns, other.size)

    def matches(self, other: Optional["FileFingerprint"]) -> bool:
        """Content hashes win when both sides have one; coarse mtimes can collide."""
        if other is None:
            return False
        if self.digest and other.digest:
            return (self.size, self.digest) == (other.size, other.digest)
        return self.same_stat(other)


# ── Envelope ───────────────────────────────────────────────────────────────


def build_envelope(snapshot: Snapshot, metadata: PersistenceMetadata) -> Dict[str, Any]:
    return {
        "version": FORMAT_VERSION,
        "metadata": metadata.to_dict(),
        "data": snapshot.to_dict(),
    }


def wrap_document(data: Dict[str, Any], metadata: PersistenceMetadata) -> Dict[str, Any]:
    """Envelope around an already-serialised snapshot document."""
    return {"version": FORMAT_VERSION, "metadata": metadata.to_dict(), "data": data}


def encode(document: Dict[str, Any]) -> bytes:
    try:
        return json.dumps(document, indent=2, ensure_ascii=False).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise SerializationError(f"Cannot encode document: {e}") from e


def decode(raw: bytes, source: str = "document") -> Any:
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise SerializationError(f"{source} is not valid JSON: {e}") from e


def is_envelope(document: Any) -> bool:
    """True for a versioned document; V1 files may carry version 1 and are bare snapshots."""
    version = document.get("version") if isinstance(document, dict) else None
    return isinstance(version, int) and not isinstance(version, bool) and version != LEGACY_VERSION


def parse_envelope(raw: bytes, source: str = "document") -> Tuple[Dict[str, Any], PersistenceMetadata]:
    """Split a v2 document into (snapshot data, metadata)."""
    document = decode(raw, source)
    if not is_envelope(document):
        raise SerializationError(f"{source} is not a versioned envelope")
    if document["version"] != FORMAT_VERSION:
        raise SerializationError(f"{source} has unsupported format version {document['version']}")
    metadata = PersistenceMetadata.from_dict(document.get("metadata") or {})
    data = document.get("data")
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise SerializationError(f"{source} data section must be an object")
    return data, metadata


# ── Atomic write ───────────────────────────────────────────────────────────


def atomic_write(path: Path, payload: bytes) -> None:
    """
    Write payload to path so readers see either the old or the new file.

    The temporary lives in the target's directory so the final rename stays
    on one filesystem.
    """
    path = Path(path)
    directory = path.parent if str(path.parent) else Path(".")
    try:
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=TEMP_SUFFIX, dir=str(directory))
    except OSError as e:
        raise IoError(f"Cannot create temporary file next to {path}: {e}") from e

    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        _replace(tmp_path, path)
    except OSError as e:
        _discard(tmp_path)
        raise IoError(f"Failed to write {path}: {e}") from e
    _sync_directory(directory)


def _replace(tmp_path: Path, path: Path) -> None:
    try:
        os.replace(tmp_path, path)
    except PermissionError:
        if os.name != "nt":
            raise
        # Target held open by another process; fall back to a plain copy.
        logger.warning(f"Atomic replace of {path} failed, falling back to non-atomic copy")
        shutil.copyfile(tmp_path, path)
        _discard(tmp_path)


def _discard(tmp_path: Path) -> None:
    try:
        tmp_path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Could not remove temporary file {tmp_path}: {e}")


def _sync_directory(directory: Path) -> None:
    if os.name == "nt":
        return
    try:
        fd = os.open(str(directory), os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass
    finally:
        os.close(fd)


def sweep_temp_files(path: Path, max_age_secs: float = 60.0) -> int:
    """
    Remove temporaries left behind by interrupted writes of path.

    Only files older than max_age_secs are touched; younger ones may belong
    to a save in flight in another process.
    """
    path = Path(path)
    removed = 0
    if not path.parent.exists():
        return 0
    now = time.time()
    for leftover in path.parent.glob(f".{path.name}.*{TEMP_SUFFIX}"):
        try:
            age = now - leftover.stat().st_mtime
        except OSError:
            continue
        if age < max_age_secs:
            continue
        _discard(leftover)
        removed += 1
    if removed:
        logger.info(f"Removed {removed} stale temporary file(s) for {path.name}")
    return removed
