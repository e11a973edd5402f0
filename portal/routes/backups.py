"""Backup endpoint: POST /backups with an ``action`` body. GM only."""

from typing import Any, Callable

from fastapi import APIRouter, Depends

from partysheet.backups import BackupError
from partysheet.locking import LockTimeoutError
from portal import storage
from portal.auth import Identity, current_identity

from .models import (
    BACKUP_ACTIONS,
    BackupRequest,
    CreateBackup,
    CreatePreSaveBackup,
    CreateSessionBackup,
    ListBackups,
    RestoreBackup,
    VerifyBackup,
)

router = APIRouter()


def _create_session_backup(action: CreateSessionBackup) -> dict[str, Any]:
    return storage.backup_manager().create("session")


def _create_pre_save_backup(action: CreatePreSaveBackup) -> dict[str, Any]:
    return storage.backup_manager().create("recent")


def _create_backup(action: CreateBackup) -> dict[str, Any]:
    return storage.backup_manager().create(action.category)


def _restore_backup(action: RestoreBackup) -> dict[str, Any]:
    return storage.character_store().restore_from(action.backup_path)


def _verify_backup(action: VerifyBackup) -> dict[str, Any]:
    return storage.backup_manager().verify(action.backup_path)


def _list_backups(action: ListBackups) -> dict[str, Any]:
    manager = storage.backup_manager()
    return {"success": True, "backups": manager.list_backups(), "stats": manager.stats()}


_HANDLERS: dict[type, Callable[[Any], dict[str, Any]]] = {
    CreateSessionBackup: _create_session_backup,
    CreatePreSaveBackup: _create_pre_save_backup,
    CreateBackup: _create_backup,
    RestoreBackup: _restore_backup,
    VerifyBackup: _verify_backup,
    ListBackups: _list_backups,
}

_missing = set(BACKUP_ACTIONS) - set(_HANDLERS)
if _missing:
    raise RuntimeError(f"Backup actions without a handler: {sorted(m.__name__ for m in _missing)}")


@router.post("/backups")
def backups(body: BackupRequest, identity: Identity = Depends(current_identity)):
    """Create, verify, restore or list backups of the character store."""
    if not identity.is_gm:
        return {"success": False, "error": "Only GM can manage backups"}
    action = body.root
    try:
        return _HANDLERS[type(action)](action)
    except (BackupError, LockTimeoutError) as e:
        return {"success": False, "error": str(e)}
