"""Backup manager for the character store.

All backups live in one directory next to the store file:

    backups/
      characters_latest.json                 ← copy taken by every store save
      characters_backup_<stamp>.json         ← timestamped, newest 5 kept
      characters_recent_latest.json          ← "recent": single slot, overwritten
      characters_session_<slot>_<stamp>.json ← "session": 2-slot ring
      characters_manual_<stamp>.json         ← "manual": newest 2 kept
      characters_daily_<stamp>.json          ← "daily": newest 2 kept

Stamps are ``YYYYmmdd_HHMMSS_ffffff`` and always strictly increase within a
series, so sorting filenames gives creation order even when two backups land
on the same clock tick.
"""

from __future__ import annotations

import json
import logging
import os
import re
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from partysheet.models import count_records

logger = logging.getLogger(__name__)

STAMP_FORMAT = "%Y%m%d_%H%M%S_%f"
_STAMP = r"(\d{8}_\d{6}_\d{6})"

TIMESTAMPED_KEEP = 5
SESSION_SLOTS = 2
CAPPED_KEEP = 2

CATEGORIES = ("recent", "session", "manual", "daily")


class BackupError(RuntimeError):
    """Raised when a backup cannot be created, found or restored."""


def _now() -> datetime:
    return datetime.now()


def write_atomic(path: Path, content: str, verify: bool = False) -> None:
    """Write ``content`` to a sibling temp file, then rename it over ``path``.

    With ``verify`` the temp file is re-read and parsed as JSON before the
    rename; a ValueError leaves ``path`` untouched.
    """
    tmp = path.with_name(f".{path.name}.tmp")
    try:
        tmp.write_text(content, encoding="utf-8")
        if verify:
            json.loads(tmp.read_text(encoding="utf-8"))
        os.replace(tmp, path)
    except (OSError, ValueError):
        tmp.unlink(missing_ok=True)
        raise


class BackupManager:
    """Creates, rotates, verifies and restores copies of one JSON file.

    Args:
        source:     The store file being protected.
        backup_dir: Directory holding every backup of ``source``.
    """

    def __init__(self, source: Path, backup_dir: Path) -> None:
        self.source = source
        self.backup_dir = backup_dir
        self.stem = source.stem
        self.backup_dir.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Paths and naming
    # ------------------------------------------------------------------

    @property
    def latest_path(self) -> Path:
        return self.backup_dir / f"{self.stem}_latest.json"

    @property
    def recent_path(self) -> Path:
        return self.backup_dir / f"{self.stem}_recent_latest.json"

    def _series(self, prefix: str) -> list[tuple[str, Path]]:
        """(stamp, path) pairs for ``<stem>_<prefix>_<stamp>.json``, oldest first."""
        pattern = re.compile(rf"^{re.escape(self.stem)}_{prefix}_{_STAMP}\.json$")
        found = []
        for path in self.backup_dir.glob(f"{self.stem}_*.json"):
            match = pattern.match(path.name)
            if match:
                found.append((match.group(match.lastindex), path))
        found.sort()
        return found

    def _next_stamp(self, existing: list[tuple[str, Path]]) -> str:
        now = _now()
        if existing:
            last = datetime.strptime(existing[-1][0], STAMP_FORMAT)
            if now <= last:
                now = last + timedelta(microseconds=1)
        return now.strftime(STAMP_FORMAT)

    def resolve(self, path: str | Path) -> Path:
        """Map a backup name or path to a file inside the backup directory."""
        candidate = Path(path)
        if not candidate.is_absolute() and candidate.parent == Path("."):
            candidate = self.backup_dir / candidate
        candidate = candidate.resolve()
        if candidate.parent != self.backup_dir.resolve():
            raise BackupError("Backup path is outside the backup directory")
        if not candidate.is_file():
            raise BackupError("Backup file does not exist")
        return candidate

    # ------------------------------------------------------------------
    # Store-driven backups (taken on every save)
    # ------------------------------------------------------------------

    def write_latest(self, content: str) -> Path:
        write_atomic(self.latest_path, content)
        return self.latest_path

    def write_timestamped(self, content: str) -> Path:
        """Write a new timestamped copy and delete all but the newest five."""
        existing = self._series("backup")
        path = self.backup_dir / f"{self.stem}_backup_{self._next_stamp(existing)}.json"
        write_atomic(path, content)
        series = self._series("backup")
        for _, old in series[: max(0, len(series) - TIMESTAMPED_KEEP)]:
            old.unlink()
            logger.debug("Rotated out backup %s", old.name)
        return path

    # ------------------------------------------------------------------
    # Category backups
    # ------------------------------------------------------------------

    def create(self, category: str) -> dict[str, Any]:
        """Copy the current source file into ``category``'s slot(s)."""
        handlers = {
            "recent": self._create_recent,
            "session": self._create_session,
            "manual": self._create_capped,
            "daily": self._create_capped,
        }
        handler = handlers.get(category)
        if handler is None:
            raise BackupError(f"Unknown backup category: {category}")
        if not self.source.is_file():
            raise BackupError("No data file to backup")
        try:
            content = self.source.read_text(encoding="utf-8")
        except ValueError as e:
            raise BackupError(f"Data file is not valid UTF-8: {e}") from e
        if not content:
            raise BackupError("Empty data file")
        try:
            result = handler(category, content)
        except OSError as e:
            raise BackupError(f"Failed to create {category} backup: {e}") from e
        logger.info("Created %s backup %s", category, result["backup_name"])
        return result

    def _result(self, category: str, path: Path, **extra: Any) -> dict[str, Any]:
        return {
            "success": True,
            "type": category,
            "backup_path": str(path),
            "backup_name": path.name,
            **extra,
        }

    def _create_recent(self, category: str, content: str) -> dict[str, Any]:
        write_atomic(self.recent_path, content)
        return self._result(category, self.recent_path)

    def _session_slots(self) -> dict[int, tuple[str, Path]]:
        pattern = re.compile(rf"^{re.escape(self.stem)}_session_(\d+)_{_STAMP}\.json$")
        slots: dict[int, tuple[str, Path]] = {}
        for path in self.backup_dir.glob(f"{self.stem}_session_*.json"):
            match = pattern.match(path.name)
            if match:
                slots[int(match.group(1))] = (match.group(2), path)
        return slots

    def _create_session(self, category: str, content: str) -> dict[str, Any]:
        slots = self._session_slots()
        free = [n for n in range(1, SESSION_SLOTS + 1) if n not in slots]
        if free:
            slot = free[0]
        else:
            slot = min(slots, key=lambda n: slots[n][0])
        stamps = sorted(slots.values())
        path = self.backup_dir / f"{self.stem}_session_{slot}_{self._next_stamp(stamps)}.json"
        write_atomic(path, content)
        if slot in slots:
            slots[slot][1].unlink(missing_ok=True)
        return self._result(category, path, slot=slot)

    def _create_capped(self, category: str, content: str) -> dict[str, Any]:
        existing = self._series(category)
        path = self.backup_dir / f"{self.stem}_{category}_{self._next_stamp(existing)}.json"
        write_atomic(path, content)
        series = self._series(category)
        for _, old in series[: max(0, len(series) - CAPPED_KEEP)]:
            old.unlink()
        return self._result(category, path)

    # ------------------------------------------------------------------
    # Verify / restore
    # ------------------------------------------------------------------

    def verify(self, path: str | Path) -> dict[str, Any]:
        """Parse a backup and report its size and record count. Read-only."""
        backup = self.resolve(path)
        size = backup.stat().st_size
        try:
            data = json.loads(backup.read_text(encoding="utf-8"))
        except ValueError as e:
            return {"success": False, "valid_json": False, "size": size, "error": f"Invalid JSON: {e}"}
        return {"success": True, "valid_json": True, "size": size, "records": count_records(data)}

    def restore(self, path: str | Path, destination: Path | None = None) -> dict[str, Any]:
        """Copy a backup over ``destination`` (default: the source file).

        The current destination content is saved to the ``recent`` slot first,
        so a bad restore can itself be undone. The new content goes through a
        temp file that is re-parsed before the rename. Callers hold the store
        lock.
        """
        backup = self.resolve(path)
        target = destination or self.source
        try:
            content = backup.read_text(encoding="utf-8")
            json.loads(content)
        except ValueError as e:
            raise BackupError("Invalid backup file") from e
        try:
            current = target.read_text(encoding="utf-8") if target.is_file() else ""
        except ValueError as e:
            logger.warning("Current %s is undecodable, not keeping it: %s", target.name, e)
            current = ""
        try:
            if current:
                write_atomic(self.recent_path, current)
            write_atomic(target, content, verify=True)
        except (OSError, ValueError) as e:
            raise BackupError(f"Failed to restore backup: {e}") from e
        logger.warning("Restored %s from backup %s", target.name, backup.name)
        return {"success": True, "message": "Backup restored successfully", "backup_name": backup.name}

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def _category_of(self, name: str) -> str | None:
        rest = name[len(self.stem) + 1:]
        if name == self.latest_path.name:
            return "latest"
        if name == self.recent_path.name:
            return "recent"
        for category in ("backup", "session", "manual", "daily"):
            if rest.startswith(f"{category}_"):
                return category
        return None

    def list_backups(self) -> list[dict[str, Any]]:
        """Every backup of the source, newest first."""
        backups = []
        for path in self.backup_dir.glob(f"{self.stem}_*.json"):
            category = self._category_of(path.name)
            if category is None:
                continue
            stat = path.stat()
            backups.append({
                "path": str(path),
                "name": path.name,
                "type": category,
                "size": stat.st_size,
                "modified": datetime.fromtimestamp(stat.st_mtime).isoformat(timespec="seconds"),
                "_mtime": stat.st_mtime,
            })
        backups.sort(key=lambda b: (b["_mtime"], b["name"]), reverse=True)
        for b in backups:
            del b["_mtime"]
        return backups

    def stats(self) -> dict[str, Any]:
        backups = self.list_backups()
        by_type = {"latest": 0, "backup": 0, "recent": 0, "session": 0, "manual": 0, "daily": 0}
        for b in backups:
            by_type[b["type"]] += 1
        total = sum(b["size"] for b in backups)
        return {
            "total_backups": len(backups),
            "total_size": total,
            "by_type": by_type,
            "newest_backup": backups[0]["name"] if backups else None,
            "oldest_backup": backups[-1]["name"] if backups else None,
        }
