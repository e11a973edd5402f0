"""Storage initialization and path helpers."""

from pathlib import Path

from portal.config import Settings

_settings: Settings | None = None


def init_storage(settings: Settings) -> None:
    global _settings
    _settings = settings
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    backups_dir().mkdir(exist_ok=True)


def settings() -> Settings:
    assert _settings is not None, "Call init_storage() before using storage"
    return _settings


def data_dir() -> Path:
    return settings().data_dir


def characters_path() -> Path:
    return data_dir() / "characters.json"


def backups_dir() -> Path:
    return data_dir() / "backups"


def npc_path() -> Path:
    return settings().npc_file or data_dir() / "students.json"
