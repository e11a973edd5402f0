"""External NPC (student) records.

A separate JSON document owned by another part of the site:

    {"students": [{"student_id": ..., "name": ..., "relationships": {...}}, ...],
     "metadata": {"last_updated": ..., "total_students": ...}}

The dashboard only reads it for autocomplete and mirrors relationship points
into it. Mirroring is best-effort: callers log NpcStoreError and move on.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from partysheet.backups import write_atomic

logger = logging.getLogger(__name__)


class NpcStoreError(RuntimeError):
    """The NPC file is missing, unreadable or has no matching record."""


class NpcStore:
    def __init__(self, path: Path) -> None:
        self.path = path

    def _read(self) -> dict[str, Any]:
        if not self.path.is_file():
            raise NpcStoreError(f"NPC data not found at {self.path}")
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except ValueError as e:
            raise NpcStoreError(f"NPC data is not valid JSON: {e}") from e
        if not isinstance(data, dict) or not isinstance(data.get("students"), list):
            raise NpcStoreError("NPC data has no students list")
        return data

    def list_npcs(self) -> list[dict[str, Any]]:
        """Compact entries for relationship autocomplete."""
        return [
            {
                "id": s.get("student_id", ""),
                "name": s.get("name", ""),
                "type": "student",
                "grade": s.get("grade", ""),
                "college": s.get("college", ""),
                "image_path": s.get("image_path", ""),
            }
            for s in self._read()["students"]
            if isinstance(s, dict)
        ]

    def _find(self, students: list, student_id: str, name: str) -> dict[str, Any] | None:
        if student_id:
            for s in students:
                if isinstance(s, dict) and s.get("student_id") == student_id:
                    return s
        if name:
            for s in students:
                if isinstance(s, dict) and str(s.get("name", "")).casefold() == name.casefold():
                    return s
        return None

    def mirror_relationship(self, pc_key: str, relationship: dict[str, Any]) -> dict[str, Any]:
        """Copy a PC's relationship points and notes onto the matching NPC.

        Returns the updated NPC record.
        """
        data = self._read()
        student = self._find(
            data["students"],
            str(relationship.get("student_id") or ""),
            str(relationship.get("npc_name") or ""),
        )
        if student is None:
            raise NpcStoreError(f"No NPC matches relationship {relationship.get('npc_name')!r}")

        links = student.get("relationships")
        if not isinstance(links, dict):
            links = {}
            student["relationships"] = links
        pc = pc_key.lower()
        links[f"{pc}_points"] = relationship.get("points", "")
        links[f"{pc}_notes"] = relationship.get("extra", "")

        metadata = data.get("metadata")
        if not isinstance(metadata, dict):
            metadata = {}
            data["metadata"] = metadata
        metadata["last_updated"] = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        metadata["total_students"] = len(data["students"])

        try:
            write_atomic(self.path, json.dumps(data, indent=2))
        except OSError as e:
            raise NpcStoreError(f"Failed to save NPC data: {e}") from e
        logger.debug("Mirrored %s relationship onto %s", pc, student.get("name"))
        return student
