"""File-based JSON storage for the dashboard.

Data layout:
  data/
    characters.json      Every character record, keyed by character
    characters.lock      Advisory write lock (never deleted)
    characters_temp.json Transient temp file during a save
    students.json        External NPC records (default NPC_FILE)
    backups/             Latest, timestamped and category backups

Each request builds fresh store objects from the configured paths; nothing
is cached between requests.
"""

# Re-export public symbols so `from portal import storage` works.

from partysheet.backups import BackupManager
from partysheet.npcs import NpcStore
from partysheet.store import JsonDocumentStore

from .core import (  # noqa: F401
    backups_dir,
    characters_path,
    data_dir,
    init_storage,
    npc_path,
    settings,
)


def backup_manager() -> BackupManager:
    return BackupManager(characters_path(), backups_dir())


def character_store() -> JsonDocumentStore:
    return JsonDocumentStore(
        characters_path(),
        backup_manager(),
        default_keys=settings().characters,
        lock_timeout=settings().lock_timeout,
    )


def npc_store() -> NpcStore:
    return NpcStore(npc_path())
