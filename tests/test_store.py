"""Tests for partysheet.store: atomic saves, anti-wipe, recovery, locking."""

import json
import threading
import time

import pytest

from partysheet.backups import BackupManager
from partysheet.locking import FileLock
from partysheet.models import default_document
from partysheet.store import JsonDocumentStore, StoreCorruptedError

KEYS = ["frunk", "sharon"]


@pytest.fixture
def store(tmp_path) -> JsonDocumentStore:
    path = tmp_path / "characters.json"
    return JsonDocumentStore(path, BackupManager(path, tmp_path / "backups"), KEYS, lock_timeout=0.3)


def _named(name: str = "Frunk") -> dict:
    doc = default_document(KEYS)
    doc["frunk"]["character"]["character_name"] = name
    return doc


# ── Load ────────────────────────────────────────────────


def test_load_missing_file_returns_defaults(store):
    doc = store.load()
    assert set(doc) == set(KEYS)
    assert doc["frunk"]["character"]["character_name"] == ""
    assert doc["frunk"]["clubs"] == [{"name": "", "people": "", "bonuses": "", "other": ""}]
    assert not store.exists()


def test_load_roundtrips_saved_document(store):
    assert store.save(_named())
    assert store.load()["frunk"]["character"]["character_name"] == "Frunk"


def test_load_keeps_unknown_keys(store):
    doc = _named()
    doc["frunk"]["character"]["hand_edited"] = "yes"
    store.save(doc)
    assert store.load()["frunk"]["character"]["hand_edited"] == "yes"


# ── Save ────────────────────────────────────────────────


def test_save_writes_latest_and_timestamped_backups(store):
    store.save(_named("First"))
    store.save(_named("Second"))
    latest = json.loads(store.backups.latest_path.read_text())
    assert latest["frunk"]["character"]["character_name"] == "First"
    assert len(store.backups._series("backup")) == 1


def test_first_save_creates_no_backup(store):
    store.save(_named())
    assert not store.backups.latest_path.exists()


def test_save_leaves_no_temp_file(store):
    store.save(_named())
    assert not store.temp_path.exists()


def test_anti_wipe_rejects_empty_over_named(store):
    """Scenario: defaults must never replace named characters."""
    store.save(_named())
    before = store.path.read_bytes()
    assert store.save(default_document(KEYS)) is False
    assert store.path.read_bytes() == before


def test_empty_over_empty_is_allowed(store):
    assert store.save(default_document(KEYS))
    assert store.save(default_document(KEYS))


def test_save_rejects_empty_document(store):
    store.save(_named())
    assert store.save({}) is False


def test_failed_verify_leaves_store_untouched(store, monkeypatch):
    from partysheet.store import StoreError

    store.save(_named("Original"))
    before = store.path.read_bytes()

    def broken(path):
        raise StoreError("simulated verify failure")

    monkeypatch.setattr(store, "_verify", broken)
    assert store.save(_named("Replacement")) is False
    assert store.path.read_bytes() == before
    assert not store.temp_path.exists()


def test_unencodable_document_is_rejected(store):
    store.save(_named())
    doc = _named()
    doc["frunk"]["character"]["portrait"] = object()
    assert store.save(doc) is False
    assert store.load()["frunk"]["character"]["portrait"] == ""


# ── Recovery ────────────────────────────────────────────


def test_corrupted_file_recovers_from_latest_backup(store):
    store.save(_named("Good"))
    store.save(_named("Better"))
    store.path.write_text("{not json")
    doc = store.load()
    assert doc["frunk"]["character"]["character_name"] == "Good"
    # the primary is rewritten from the backup
    assert json.loads(store.path.read_text()) == doc


def test_empty_file_recovers_from_latest_backup(store):
    store.save(_named("Good"))
    store.save(_named("Better"))
    store.path.write_text("")
    assert store.load()["frunk"]["character"]["character_name"] == "Good"


def test_corrupted_without_backup_raises(store):
    store.path.write_text("[broken")
    with pytest.raises(StoreCorruptedError):
        store.load()


def test_corrupted_with_bad_backup_raises(store):
    store.save(_named("Good"))
    store.save(_named("Better"))
    store.backups.latest_path.write_text("also broken")
    store.path.write_text("broken")
    with pytest.raises(StoreCorruptedError):
        store.load()


def test_undecodable_file_recovers_from_latest_backup(store):
    """Scenario: stray non-UTF-8 bytes are treated like any other corruption."""
    store.save(_named("Good"))
    store.save(_named("Better"))
    store.path.write_bytes(b"\xff\xfe{broken")
    doc = store.load()
    assert doc["frunk"]["character"]["character_name"] == "Good"
    assert json.loads(store.path.read_text(encoding="utf-8")) == doc


def test_save_over_undecodable_file_keeps_last_good_backup(store):
    store.save(_named("Good"))
    store.save(_named("Better"))
    store.path.write_bytes(b"\xff\xfe{broken")
    assert store.save(_named("Fresh"))
    latest = json.loads(store.backups.latest_path.read_text())
    assert latest["frunk"]["character"]["character_name"] == "Good"
    assert store.load()["frunk"]["character"]["character_name"] == "Fresh"


# ── Locking ─────────────────────────────────────────────


def test_save_times_out_while_lock_is_held(store):
    """Scenario: a held lock makes the save fail within the bound, file untouched."""
    store.save(_named("Original"))
    before = store.path.read_bytes()
    with FileLock(store.lock_path):
        assert store.save(_named("Blocked")) is False
    assert store.path.read_bytes() == before


def test_save_succeeds_after_lock_released(store):
    with FileLock(store.lock_path):
        pass
    assert store.save(_named())
    assert store.lock_path.exists()


def test_update_holds_lock_across_load_and_save(tmp_path):
    """Scenario: two overlapping edits both survive; neither reloads stale data."""
    path = tmp_path / "characters.json"
    store = JsonDocumentStore(path, BackupManager(path, tmp_path / "backups"), KEYS, lock_timeout=5)
    store.save(_named())
    first_loaded = threading.Event()

    def slow_race(doc):
        first_loaded.set()
        time.sleep(0.3)
        doc["frunk"]["character"]["race"] = "Elf"

    def level(doc):
        doc["frunk"]["character"]["level"] = "3"

    writer = threading.Thread(target=store.update, args=(slow_race,))
    writer.start()
    assert first_loaded.wait(2)
    store.update(level)
    writer.join()
    saved = store.load()["frunk"]["character"]
    assert saved["race"] == "Elf"
    assert saved["level"] == "3"


def test_update_aborted_by_mutate_writes_nothing(store):
    store.save(_named())
    before = store.path.read_bytes()

    def reject(doc):
        doc["frunk"]["character"]["character_name"] = "Changed"
        raise ValueError("no")

    with pytest.raises(ValueError):
        store.update(reject)
    assert store.path.read_bytes() == before


def test_update_times_out_while_lock_is_held(store):
    from partysheet.locking import LockTimeoutError

    store.save(_named())
    with FileLock(store.lock_path):
        with pytest.raises(LockTimeoutError):
            store.update(lambda doc: None)


# ── Restore ─────────────────────────────────────────────


def test_restore_from_backup(store):
    store.save(_named("Old"))
    store.save(_named("New"))
    backup = store.backups._series("backup")[-1][1]
    result = store.restore_from(backup.name)
    assert result["success"]
    assert store.load()["frunk"]["character"]["character_name"] == "Old"
    recent = json.loads(store.backups.recent_path.read_text())
    assert recent["frunk"]["character"]["character_name"] == "New"
