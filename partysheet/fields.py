"""Field-level edits to a loaded store document.

Every edit names a character, a section and a field, plus an index for the
list sections. Edits mutate the in-memory document only; the caller saves
once afterwards, so a batch of N edits is one write.

Sections:
  character, current_classes, job      : flat mappings, index ignored
  relationships, projects, clubs       : lists, index selects (or creates) an item
  past_classes                         : only field "finalize" is accepted
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from partysheet.models import (
    LIST_SECTIONS,
    NEW_ITEM_FACTORIES,
    POINTS_HISTORY_LIMIT,
    SCALAR_SECTIONS,
    empty_current_class,
)

NAME_MAX_LENGTH = 100

_NUMERIC_FIELDS = {
    "relationships": {"points"},
    "projects": {"points_earned", "total_points"},
}
_TAG_RE = re.compile(r"<[^>]*>")
_NUMERIC_RE = re.compile(r"^\s*[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")
_ADD_POINTS_RE = re.compile(r"^\+\s*(\d+)$")


class FieldUpdateError(ValueError):
    """An edit names an unknown section or is missing its item index."""


class FieldUpdate(BaseModel):
    section: str = ""
    field: str = ""
    value: Any = ""
    index: int | None = None


@dataclass
class BatchResult:
    saved: int = 0
    errors: int = 0


# ── Value validation ────────────────────────────────────


def is_numeric(value: str) -> bool:
    return bool(_NUMERIC_RE.match(value))


def strip_tags(value: str) -> str:
    return _TAG_RE.sub("", value)


def validate_field_value(section: str, field: str, value: Any) -> str:
    """Clean a scalar value before it is stored.

    Missing values become "", markup is removed, character names are capped
    and numeric-only fields turn non-numeric text into "0".
    """
    if value is None or value in ("undefined", "null"):
        return ""
    value = strip_tags(str(value))
    if section == "character" and field == "character_name":
        return value[:NAME_MAX_LENGTH]
    if field in _NUMERIC_FIELDS.get(section, ()) and value and not is_numeric(value):
        return "0"
    return value


# ── Single edits ────────────────────────────────────────


def _record(doc: dict[str, Any], character: str) -> dict[str, Any]:
    record = doc.get(character)
    if not isinstance(record, dict):
        record = {}
        doc[character] = record
    return record


def _list_item(record: dict[str, Any], section: str, index: int) -> dict[str, Any]:
    items = record.get(section)
    if not isinstance(items, list):
        items = []
        record[section] = items
    while len(items) <= index:
        items.append({})
    if not isinstance(items[index], dict):
        items[index] = {}
    return items[index]


def _points_history(value: Any) -> list:
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            value = []
    if not isinstance(value, list):
        value = []
    return value[-POINTS_HISTORY_LIMIT:]


def add_project_points(project: dict[str, Any], raw: str) -> str:
    """Apply "+N" to a project: N is added to the latest recorded total.

    The new total is appended to ``points_history`` (last 10 kept) and
    returned as a string.
    """
    history = _points_history(project.get("points_history", []))
    bonus = int(_ADD_POINTS_RE.match(raw).group(1))
    if history:
        base = _to_int(history[-1])
    else:
        base = _to_int(project.get("points_earned"))
        if base > 0:
            history.append(base)
    total = base + bonus
    history.append(total)
    project["points_history"] = history[-POINTS_HISTORY_LIMIT:]
    return str(total)


def _to_int(value: Any) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def finalize_class(record: dict[str, Any]) -> bool:
    """Move the current class onto past_classes. No-op without a class name."""
    current = record.get("current_classes")
    if not isinstance(current, dict) or not current.get("class_name"):
        return False
    past = record.get("past_classes")
    if not isinstance(past, list):
        past = []
        record["past_classes"] = past
    past.append(current)
    record["current_classes"] = empty_current_class()
    return True


def apply_field_update(doc: dict[str, Any], character: str, update: FieldUpdate) -> None:
    """Apply one edit to ``doc[character]``. Raises FieldUpdateError if invalid."""
    section, field = update.section, update.field
    record = _record(doc, character)

    if section in SCALAR_SECTIONS:
        target = record.get(section)
        if not isinstance(target, dict):
            target = {}
            record[section] = target
        target[field] = validate_field_value(section, field, update.value)
        return

    if section in LIST_SECTIONS:
        if update.index is None or update.index < 0:
            raise FieldUpdateError(f"{section}.{field} needs an item index")
        item = _list_item(record, section, update.index)
        if field == "points_history":
            item[field] = _points_history(update.value)
        elif section == "projects" and field == "points_earned" and _ADD_POINTS_RE.match(str(update.value or "")):
            item[field] = add_project_points(item, str(update.value))
        else:
            item[field] = validate_field_value(section, field, update.value)
        return

    if section == "past_classes":
        if field != "finalize":
            raise FieldUpdateError(f"past_classes only supports finalize, not {field!r}")
        finalize_class(record)
        return

    raise FieldUpdateError(f"Unknown section: {section!r}")


def apply_batch(doc: dict[str, Any], character: str, updates: list[FieldUpdate]) -> BatchResult:
    """Apply every edit, counting successes and failures independently."""
    result = BatchResult()
    for update in updates:
        try:
            apply_field_update(doc, character, update)
        except FieldUpdateError:
            result.errors += 1
        else:
            result.saved += 1
    return result


def name_in_use(doc: dict[str, Any], character: str, name: str) -> bool:
    """True when another character already carries ``name``."""
    name = name.strip()
    if not name:
        return False
    for key, record in doc.items():
        if key == character or not isinstance(record, dict):
            continue
        info = record.get("character")
        if isinstance(info, dict) and info.get("character_name") == name:
            return True
    return False


# ── List items ──────────────────────────────────────────


def add_item(doc: dict[str, Any], character: str, section: str) -> dict[str, Any]:
    """Append a template item to a list section. Returns the new item."""
    factory = NEW_ITEM_FACTORIES.get(section)
    if factory is None:
        raise FieldUpdateError(f"Cannot add items to {section!r}")
    record = _record(doc, character)
    items = record.get(section)
    if not isinstance(items, list):
        items = []
        record[section] = items
    item = factory()
    items.append(item)
    return item


def delete_item(doc: dict[str, Any], character: str, section: str, index: int) -> bool:
    """Remove one list item. Returns False if there is no such item."""
    record = doc.get(character)
    if not isinstance(record, dict):
        return False
    items = record.get(section)
    if not isinstance(items, list) or not 0 <= index < len(items):
        return False
    del items[index]
    return True
