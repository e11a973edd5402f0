"""JSON document store for character records.

The whole application state for the dashboard is one JSON mapping of
character key → record, rewritten in full on every save. Edits go through
``update()``, which holds the lock across the whole load → mutate → save
cycle so concurrent writers never lose each other's changes; nothing is
cached between requests.

Save protocol (all under an exclusive advisory lock, 5 s bound):

    1. reject documents that are empty or not a mapping
    2. reject documents with no character name when the file on disk has one
    3. copy the current file to the "latest" backup and a timestamped backup
    4. write the new document to a temp file
    5. re-read and re-parse the temp file
    6. rename the temp file over the store file

Any failure before step 6 leaves the store file byte-identical.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Protocol

from partysheet.backups import BackupError, BackupManager
from partysheet.locking import LOCK_TIMEOUT, FileLock, LockTimeoutError
from partysheet.models import default_document, has_real_data

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol: what request handlers rely on
# ---------------------------------------------------------------------------

class DocumentStore(Protocol):
    def exists(self) -> bool: ...

    def load(self) -> dict[str, Any]: ...

    def save(self, doc: dict[str, Any]) -> bool: ...

    def update(self, mutate: Callable[[dict[str, Any]], None]) -> dict[str, Any]: ...


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class StoreError(RuntimeError):
    """A save was refused or could not be completed."""


class WipeRejectedError(StoreError):
    """The new document would replace named characters with empty defaults."""


class StoreCorruptedError(StoreError):
    """The store file is empty or invalid and the latest backup is no better."""


# ---------------------------------------------------------------------------
# JsonDocumentStore
# ---------------------------------------------------------------------------

class JsonDocumentStore:
    """Lock-guarded JSON file holding every character record.

    Args:
        path:          The store file, e.g. ``data/characters.json``.
        backups:       Backup manager for ``path``.
        default_keys:  Character keys for the fresh-install document.
        lock_timeout:  Seconds to wait for the write lock.
    """

    def __init__(
        self,
        path: Path,
        backups: BackupManager,
        default_keys: list[str] | None = None,
        lock_timeout: float = LOCK_TIMEOUT,
    ) -> None:
        self.path = path
        self.backups = backups
        self.default_keys = list(default_keys or [])
        self.lock_timeout = lock_timeout
        self.temp_path = path.with_name(f"{path.stem}_temp.json")
        self.lock_path = path.with_suffix(".lock")

    def _lock(self) -> FileLock:
        return FileLock(self.lock_path, timeout=self.lock_timeout)

    def exists(self) -> bool:
        return self.path.is_file()

    # ------------------------------------------------------------------
    # Load
    # ------------------------------------------------------------------

    def load(self) -> dict[str, Any]:
        """Read the store, recovering from the latest backup if needed.

        Returns the fresh-install document only when the file has never
        existed. Raises StoreCorruptedError when neither the file nor the
        latest backup holds a valid document.
        """
        return self._load(locked=False)

    def _load(self, locked: bool) -> dict[str, Any]:
        if not self.path.exists():
            logger.info("No store at %s, using first-time defaults", self.path)
            return default_document(self.default_keys)

        try:
            content = self.path.read_text(encoding="utf-8")
        except ValueError as e:
            logger.error("Store %s is not valid UTF-8: %s", self.path, e)
            return self._recover(f"undecodable content: {e}", locked)

        if not content.strip():
            logger.error("Store %s exists but is empty", self.path)
            return self._recover("store file is empty", locked)

        try:
            data = json.loads(content)
        except ValueError as e:
            logger.error("Store %s is not valid JSON: %s (length %d)", self.path, e, len(content))
            return self._recover(f"invalid JSON: {e}", locked)

        if not isinstance(data, dict):
            logger.error("Store %s does not hold a mapping", self.path)
            return self._recover("store is not a mapping", locked)

        if not has_real_data(data):
            logger.warning("Store %s has no character names; possible data loss", self.path)
        return data

    def _recover(self, reason: str, locked: bool) -> dict[str, Any]:
        latest = self.backups.latest_path
        if not latest.is_file():
            raise StoreCorruptedError(
                f"Character data unreadable ({reason}) and no backup found; restore a manual backup"
            )
        try:
            content = latest.read_text(encoding="utf-8")
            data = json.loads(content)
        except ValueError as e:
            raise StoreCorruptedError(
                f"Character data unreadable ({reason}) and latest backup is invalid: {e}"
            ) from e
        if not isinstance(data, dict) or not data:
            raise StoreCorruptedError(
                f"Character data unreadable ({reason}) and latest backup is empty"
            )
        logger.warning("Recovered %s from %s", self.path.name, latest.name)
        if locked:
            self.path.write_text(content, encoding="utf-8")
        else:
            with self._lock():
                self.path.write_text(content, encoding="utf-8")
        return data

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------

    def save(self, doc: dict[str, Any]) -> bool:
        """Persist ``doc`` atomically. Returns False if the save was refused."""
        try:
            with self._lock():
                self._save_locked(doc)
        except LockTimeoutError as e:
            logger.error("Save aborted: %s", e)
            return False
        except WipeRejectedError as e:
            logger.error("Rejected save: %s", e)
            return False
        except (StoreError, BackupError, OSError) as e:
            logger.error("Save failed: %s", e)
            return False
        return True

    def update(self, mutate: Callable[[dict[str, Any]], None]) -> dict[str, Any]:
        """Load, mutate and save while holding the write lock throughout.

        ``mutate`` edits the document in place; anything it raises aborts the
        update with nothing written. Returns the document as saved. Lock,
        wipe and write failures propagate (LockTimeoutError, StoreError,
        BackupError, OSError).
        """
        with self._lock():
            doc = self._load(locked=True)
            mutate(doc)
            try:
                self._save_locked(doc)
            except (StoreError, BackupError, OSError) as e:
                logger.error("Update of %s failed: %s", self.path.name, e)
                raise
        return doc

    def _save_locked(self, doc: dict[str, Any]) -> None:
        if not isinstance(doc, dict) or not doc:
            raise StoreError("attempted to save empty or non-mapping character data")

        if not has_real_data(doc) and self._current_has_real_data():
            raise WipeRejectedError("would overwrite real data with empty defaults")

        current = self._current_text()
        if current:
            self.backups.write_latest(current)
            self.backups.write_timestamped(current)

        try:
            payload = json.dumps(doc, indent=2)
        except (TypeError, ValueError) as e:
            raise StoreError(f"failed to encode character data: {e}") from e

        try:
            self.temp_path.write_text(payload, encoding="utf-8")
            self._verify(self.temp_path)
            os.replace(self.temp_path, self.path)
        except Exception:
            self.temp_path.unlink(missing_ok=True)
            raise

    def _current_text(self) -> str | None:
        if not self.path.is_file():
            return None
        try:
            return self.path.read_text(encoding="utf-8")
        except ValueError as e:
            # undecodable bytes must not replace the last good backup
            logger.warning("Not backing up undecodable %s: %s", self.path.name, e)
            return None

    def _current_has_real_data(self) -> bool:
        if not self.path.is_file():
            return False
        try:
            current = json.loads(self.path.read_text(encoding="utf-8"))
        except ValueError:
            return False
        return has_real_data(current)

    def _verify(self, path: Path) -> None:
        try:
            json.loads(path.read_text(encoding="utf-8"))
        except ValueError as e:
            raise StoreError(f"temp file contains invalid JSON: {e}") from e

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    def restore_from(self, backup_path: str | Path) -> dict[str, Any]:
        """Replace the store with a backup, under the write lock."""
        with self._lock():
            return self.backups.restore(backup_path, self.path)
