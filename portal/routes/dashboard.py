"""Character sheet endpoint: POST /dashboard with an ``action`` body.

Players may only load their own sheet; every mutation is GM-only. Handlers
are plain functions so FastAPI runs them in its threadpool, where a blocked
store lock does not stall the event loop.
"""

import logging
from typing import Any, Callable

from fastapi import APIRouter, Depends

from partysheet.backups import BackupError
from partysheet.fields import (
    BatchResult,
    FieldUpdate,
    FieldUpdateError,
    add_item,
    apply_batch,
    apply_field_update,
    delete_item,
    name_in_use,
)
from partysheet.locking import LockTimeoutError
from partysheet.npcs import NpcStoreError
from partysheet.store import StoreCorruptedError, StoreError
from portal import storage
from portal.auth import Identity, current_identity

from .models import (
    DASHBOARD_ACTIONS,
    AddItemAction,
    BatchSaveAction,
    DashboardRequest,
    DeleteItemAction,
    ListNpcsAction,
    LoadAction,
    SaveAction,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _fail(error: str) -> dict[str, Any]:
    return {"success": False, "error": error}


def _check_write(identity: Identity, character: str) -> dict[str, Any] | None:
    if not identity.is_gm:
        return _fail("Only GM can make changes")
    if character not in storage.settings().characters:
        return _fail(f"Unknown character: {character}")
    return None


def _mirror_relationships(doc: dict, character: str, indexes: set[int]) -> None:
    """Copy touched relationship entries into the NPC store.

    Best effort: a missing NPC file or unmatched NPC is logged, and the
    character save stands.
    """
    relationships = doc.get(character, {}).get("relationships") or []
    npcs = storage.npc_store()
    for index in sorted(indexes):
        if not 0 <= index < len(relationships):
            continue
        rel = relationships[index]
        if not (rel.get("student_id") or rel.get("npc_name")):
            continue
        try:
            npcs.mirror_relationship(character, rel)
        except NpcStoreError as e:
            logger.warning("Relationship %s/%d not mirrored: %s", character, index, e)


def _relationship_indexes(updates: list[FieldUpdate]) -> set[int]:
    return {u.index for u in updates if u.section == "relationships" and u.index is not None}


class ActionRejected(Exception):
    """Raised inside an update to abort it with a client-facing message."""

    def __init__(self, message: str, **extra: Any) -> None:
        super().__init__(message)
        self.extra = extra


def _commit(mutate: Callable[[dict], None]) -> tuple[dict | None, dict[str, Any] | None]:
    """Run ``mutate`` as one locked load → save cycle.

    Returns ``(saved_doc, None)`` on success or ``(None, failure_response)``.
    A corrupted store propagates to the app-level handler.
    """
    try:
        return storage.character_store().update(mutate), None
    except ActionRejected as e:
        return None, {"success": False, "error": str(e), **e.extra}
    except FieldUpdateError as e:
        return None, _fail(str(e))
    except StoreCorruptedError:
        raise
    except (LockTimeoutError, StoreError, BackupError, OSError) as e:
        logger.error("Dashboard save failed: %s", e)
        return None, _fail("Failed to save data")


# ── Handlers ────────────────────────────────────────────


def _load(action: LoadAction, identity: Identity) -> dict[str, Any]:
    if action.character not in storage.settings().characters:
        return _fail(f"Unknown character: {action.character}")
    if not identity.is_gm and identity.user != action.character:
        return _fail("Access denied")
    doc = storage.character_store().load()
    return {"success": True, "data": doc.get(action.character, {})}


def _save(action: SaveAction, identity: Identity) -> dict[str, Any]:
    if denied := _check_write(identity, action.character):
        return denied
    update = FieldUpdate(
        section=action.section, field=action.field, value=action.value, index=action.index
    )

    def mutate(doc: dict) -> None:
        if (
            action.section == "character"
            and action.field == "character_name"
            and name_in_use(doc, action.character, str(action.value or ""))
        ):
            raise ActionRejected("Character name already in use")
        apply_field_update(doc, action.character, update)

    doc, failure = _commit(mutate)
    if failure:
        return failure
    _mirror_relationships(doc, action.character, _relationship_indexes([update]))
    return {"success": True}


def _batch_save(action: BatchSaveAction, identity: Identity) -> dict[str, Any]:
    if denied := _check_write(identity, action.character):
        return denied
    result = BatchResult()

    def mutate(doc: dict) -> None:
        nonlocal result
        result = apply_batch(doc, action.character, action.updates)
        if result.saved == 0:
            raise ActionRejected("No valid updates", saved=0, errors=result.errors)

    doc, failure = _commit(mutate)
    if failure:
        if failure["error"] == "Failed to save data":
            failure["error"] = "Failed to save batch data"
        return failure
    _mirror_relationships(doc, action.character, _relationship_indexes(action.updates))
    logger.info("Batch save for %s: %d saved, %d errors", action.character, result.saved, result.errors)
    return {"success": True, "saved": result.saved, "errors": result.errors}


def _add_item(action: AddItemAction, identity: Identity) -> dict[str, Any]:
    if denied := _check_write(identity, action.character):
        return denied
    added: dict[str, Any] = {}

    def mutate(doc: dict) -> None:
        added["item"] = add_item(doc, action.character, action.section)
        added["index"] = len(doc[action.character][action.section]) - 1

    _, failure = _commit(mutate)
    if failure:
        return failure
    return {"success": True, **added}


def _delete_item(action: DeleteItemAction, identity: Identity) -> dict[str, Any]:
    if denied := _check_write(identity, action.character):
        return denied

    def mutate(doc: dict) -> None:
        if not delete_item(doc, action.character, action.section, action.index):
            raise ActionRejected("Item not found")

    _, failure = _commit(mutate)
    return failure or {"success": True}


def _list_npcs(action: ListNpcsAction, identity: Identity) -> dict[str, Any]:
    try:
        students = storage.npc_store().list_npcs()
    except NpcStoreError as e:
        return _fail(str(e))
    return {"success": True, "students": students}


_HANDLERS: dict[type, Callable[[Any, Identity], dict[str, Any]]] = {
    LoadAction: _load,
    SaveAction: _save,
    BatchSaveAction: _batch_save,
    AddItemAction: _add_item,
    DeleteItemAction: _delete_item,
    ListNpcsAction: _list_npcs,
}

_missing = set(DASHBOARD_ACTIONS) - set(_HANDLERS)
if _missing:
    raise RuntimeError(f"Dashboard actions without a handler: {sorted(m.__name__ for m in _missing)}")


@router.post("/dashboard")
def dashboard(body: DashboardRequest, identity: Identity = Depends(current_identity)):
    """Load or edit character sheets."""
    action = body.root
    return _HANDLERS[type(action)](action, identity)
