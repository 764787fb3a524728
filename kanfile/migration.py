"""
Format detection and forward migration of the data file.

  V1: a bare snapshot document ({"boards": [...], ...})
  V2: the versioned envelope (see serializer.py)

Migration is idempotent: migrating a V2 file does nothing.
"""
import logging
import shutil
from enum import Enum
from pathlib import Path
from typing import Optional

from .errors import InternalError, IoError, SerializationError, ValidationError
from .serializer import (
    FORMAT_VERSION,
    PersistenceMetadata,
    atomic_write,
    decode,
    encode,
    is_envelope,
    parse_envelope,
    wrap_document,
)
from .snapshot import Snapshot

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = ".v1.backup"


class FormatVersion(Enum):
    V1 = 1
    V2 = 2


def _read(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as e:
        raise IoError(f"Cannot read {path}: {e}") from e


class Migrator:
    """Detects the on-disk format and rewrites older files as V2."""

    def detect_version(self, path) -> FormatVersion:
        path = Path(path)
        if not path.exists():
            return FormatVersion.V2
        document = decode(_read(path), str(path))
        if is_envelope(document):
            if document["version"] == FORMAT_VERSION:
                return FormatVersion.V2
            raise SerializationError(f"{path} has unsupported format version {document['version']}")
        if isinstance(document, dict):
            return FormatVersion.V1
        raise SerializationError(f"{path} does not contain a kanban document")

    def migrate(self, from_version: FormatVersion, to_version: FormatVersion, path,
                instance_id: Optional[str] = None) -> bool:
        """Migrate path in place. Returns True when the file was rewritten."""
        path = Path(path)
        if from_version == to_version:
            return False
        if (from_version, to_version) != (FormatVersion.V1, FormatVersion.V2):
            raise ValidationError(
                f"No migration from {from_version.name} to {to_version.name}"
            )
        if self.detect_version(path) == FormatVersion.V2:
            return False

        raw = _read(path)
        document = decode(raw, str(path))
        # Fail before touching anything if the old document is unusable
        Snapshot.from_dict(document)

        backup = path.with_name(path.name + BACKUP_SUFFIX)
        try:
            shutil.copy2(path, backup)
        except OSError as e:
            raise IoError(f"Cannot back up {path} before migration: {e}") from e

        atomic_write(path, encode(wrap_document(document, PersistenceMetadata.new(instance_id))))

        try:
            parse_envelope(_read(path), str(path))
        except SerializationError as e:
            shutil.copy2(backup, path)
            raise InternalError(f"Migrated file failed verification, restored original: {e}") from e

        try:
            backup.unlink()
        except OSError as e:
            logger.warning(f"Could not remove migration backup {backup}: {e}")
        logger.info(f"Migrated {path} from V1 to V2")
        return True

    def migrate_to_latest(self, path, instance_id: Optional[str] = None) -> bool:
        return self.migrate(self.detect_version(path), FormatVersion.V2, path, instance_id)
