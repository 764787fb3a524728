"""
Tests for the JSON file store: envelope, atomic writes, conflicts, migration.
"""
import json
import os
import time
from datetime import timedelta
from unittest.mock import patch

import pytest

from kanfile.conflict import LastWriteWinsResolver
from kanfile.errors import (
    ConflictError,
    IoError,
    NotFoundError,
    SerializationError,
    ValidationError,
)
from kanfile.migration import BACKUP_SUFFIX, FormatVersion, Migrator
from kanfile.serializer import (
    FORMAT_VERSION,
    FileFingerprint,
    PersistenceMetadata,
    atomic_write,
    sweep_temp_files,
)
from kanfile.snapshot import Snapshot
from kanfile.store import JsonFileStore


def _snapshot_with_board(name="B"):
    from kanfile.commands import CommandContext, CreateBoard
    snapshot = Snapshot()
    CreateBoard(name).execute(CommandContext(snapshot))
    return snapshot


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Envelope and atomic writes
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_save_writes_v2_envelope(data_file):
    store = JsonFileStore(data_file, instance_id="inst-1")
    store.save(_snapshot_with_board())

    document = json.loads(data_file.read_text(encoding="utf-8"))
    assert document["version"] == FORMAT_VERSION
    assert document["metadata"]["instance_id"] == "inst-1"
    assert document["data"]["boards"][0]["name"] == "B"
    # Pretty-printed
    assert "\n  " in data_file.read_text(encoding="utf-8")


def test_load_round_trip(data_file):
    snapshot = _snapshot_with_board()
    JsonFileStore(data_file).save(snapshot)
    loaded, metadata = JsonFileStore(data_file).load()
    assert loaded == snapshot
    assert metadata.format_version == FORMAT_VERSION


def test_load_missing_file(data_file):
    with pytest.raises(NotFoundError):
        JsonFileStore(data_file).load()


def test_load_garbage(data_file):
    data_file.write_text("{ nope", encoding="utf-8")
    with pytest.raises(SerializationError):
        JsonFileStore(data_file).load()


def test_unsupported_version(data_file):
    data_file.write_text(json.dumps({"version": 7, "metadata": {}, "data": {}}), encoding="utf-8")
    with pytest.raises(SerializationError, match="unsupported format version"):
        JsonFileStore(data_file).load()


def test_failed_replace_keeps_old_file(data_file):
    """A write that fails before the rename leaves the previous file intact"""
    atomic_write(data_file, b"old")
    with patch("kanfile.serializer.os.replace", side_effect=OSError("disk full")):
        with pytest.raises(IoError):
            atomic_write(data_file, b"new")
    assert data_file.read_bytes() == b"old"
    assert list(data_file.parent.glob(".k.json.*")) == []


def test_sweep_removes_only_stale_temp_files(data_file):
    stale = data_file.parent / ".k.json.abc.tmp"
    fresh = data_file.parent / ".k.json.def.tmp"
    stale.write_text("x")
    fresh.write_text("y")
    old = time.time() - 3600
    os.utime(stale, (old, old))

    assert sweep_temp_files(data_file) == 1
    assert not stale.exists()
    assert fresh.exists()


def test_refuses_to_blank_a_populated_file(data_file):
    store = JsonFileStore(data_file)
    store.save(_snapshot_with_board())
    with pytest.raises(ValidationError):
        store.save(Snapshot())
    store.save(Snapshot(), force=True)
    assert JsonFileStore(data_file).load()[0].is_empty()


def test_allow_empty_still_checks_conflicts(data_file):
    store = JsonFileStore(data_file, instance_id="x")
    store.save(_snapshot_with_board())
    store.save(Snapshot(), allow_empty=True)
    assert JsonFileStore(data_file).load()[0].is_empty()

    JsonFileStore(data_file, instance_id="y").save(_snapshot_with_board("y"), force=True)
    with pytest.raises(ConflictError):
        store.save(Snapshot(), allow_empty=True)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Conflicts
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestConflictDetection:
    def setup_method(self):
        self.snapshot = _snapshot_with_board()

    def test_second_writer_conflicts(self, data_file):
        x = JsonFileStore(data_file, instance_id="x")
        x.save(self.snapshot)
        y = JsonFileStore(data_file, instance_id="y")
        y.load()
        x.load()

        y.save(_snapshot_with_board("from y"))
        with pytest.raises(ConflictError) as info:
            x.save(self.snapshot)
        assert info.value.retryable
        assert "modified by another instance" in str(info.value)

    def test_own_saves_do_not_conflict(self, data_file):
        store = JsonFileStore(data_file)
        store.save(self.snapshot)
        store.save(self.snapshot)
        store.save(self.snapshot)

    def test_file_created_by_someone_else(self, data_file):
        x = JsonFileStore(data_file)
        JsonFileStore(data_file).save(self.snapshot)
        with pytest.raises(ConflictError, match="created by another instance"):
            x.save(self.snapshot)

    def test_force_overwrites(self, data_file):
        x = JsonFileStore(data_file, instance_id="x")
        x.save(self.snapshot)
        JsonFileStore(data_file, instance_id="y").save(_snapshot_with_board("y"), force=True)
        x.save(self.snapshot, force=True)
        assert x.read_metadata().instance_id == "x"

    def test_is_own_write(self, data_file):
        x = JsonFileStore(data_file, instance_id="x")
        x.save(self.snapshot)
        assert x.is_own_write()
        JsonFileStore(data_file, instance_id="y").save(_snapshot_with_board("y"), force=True)
        assert not x.is_own_write()

    def test_is_own_write_while_saving(self, data_file):
        """A save landing during the own-write check does not break it"""
        x = JsonFileStore(data_file, instance_id="x")
        x.save(self.snapshot)
        x.save(self.snapshot)
        JsonFileStore(data_file, instance_id="y").save(_snapshot_with_board("y"), force=True)
        calls = []

        def save_midway(fingerprint, other):
            if not calls:
                x.save(self.snapshot, force=True)
            calls.append(other)
            return False

        with patch.object(FileFingerprint, "matches", save_midway):
            assert not x.is_own_write()
        assert len(calls) == 2


def test_last_write_wins_resolver():
    resolver = LastWriteWinsResolver()
    local = PersistenceMetadata.new("x")
    later = PersistenceMetadata("y", saved_at=local.saved_at + timedelta(seconds=1))
    same = PersistenceMetadata("y", saved_at=local.saved_at)
    assert resolver.should_use_external(local, later)
    assert not resolver.should_use_external(local, same)
    assert resolver.explain(local, later).startswith("external newer")
    assert resolver.explain(later, local).startswith("local kept")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Migration
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


V1_DOCUMENT = {
    "boards": [{"id": "b1", "name": "Legacy", "branch_prefix": "rel", "next_card_number": 4}],
    "columns": [{"id": "c1", "board_id": "b1", "name": "Todo", "position": 0}],
    "cards": [{"id": "k1", "column_id": "c1", "title": "Old card", "card_number": 3,
               "status": "InProgress", "created_at": "2023-01-01T00:00:00Z"}],
    "sprints": [],
}


def test_detect_versions(data_file):
    migrator = Migrator()
    assert migrator.detect_version(data_file) == FormatVersion.V2
    data_file.write_text(json.dumps(V1_DOCUMENT), encoding="utf-8")
    assert migrator.detect_version(data_file) == FormatVersion.V1
    data_file.write_text(json.dumps({"version": 1, **V1_DOCUMENT}), encoding="utf-8")
    assert migrator.detect_version(data_file) == FormatVersion.V1


def test_version_one_file_is_migrated(data_file):
    data_file.write_text(json.dumps({"version": 1, **V1_DOCUMENT}), encoding="utf-8")
    snapshot, _ = JsonFileStore(data_file).load()
    assert snapshot.boards[0].name == "Legacy"
    assert json.loads(data_file.read_text(encoding="utf-8"))["version"] == FORMAT_VERSION


def test_v1_file_is_migrated_on_load(data_file):
    data_file.write_text(json.dumps(V1_DOCUMENT), encoding="utf-8")
    snapshot, metadata = JsonFileStore(data_file, instance_id="mig").load()

    assert metadata.instance_id == "mig"
    assert snapshot.boards[0].sprint_prefix == "rel"
    assert snapshot.cards[0].title == "Old card"
    assert json.loads(data_file.read_text(encoding="utf-8"))["version"] == FORMAT_VERSION
    assert not data_file.with_name(data_file.name + BACKUP_SUFFIX).exists()


def test_migration_is_idempotent_on_v2(data_file):
    JsonFileStore(data_file).save(_snapshot_with_board())
    before = data_file.read_bytes()
    assert not Migrator().migrate_to_latest(data_file)
    assert data_file.read_bytes() == before


def test_invalid_v1_document_is_left_alone(data_file):
    data_file.write_text(json.dumps({"cards": [{"title": "t", "position": "x"}]}), encoding="utf-8")
    with pytest.raises(SerializationError):
        Migrator().migrate(FormatVersion.V1, FormatVersion.V2, data_file)
    assert json.loads(data_file.read_text(encoding="utf-8")) == {"cards": [{"title": "t", "position": "x"}]}


def test_unsupported_migration_path(data_file):
    with pytest.raises(ValidationError):
        Migrator().migrate(FormatVersion.V2, FormatVersion.V1, data_file)
