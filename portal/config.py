"""Application settings read from the environment (and .env via python-dotenv).

    DATA_DIR           Directory holding characters.json and backups/
    NPC_FILE           Student/NPC JSON file (default: <DATA_DIR>/students.json)
    PORTAL_SECRET      Key for signing login cookies
    PORTAL_USERS       Static login table, "password:identity,password:identity"
    PORTAL_CHARACTERS  Fixed character keys, "frunk,sharon,indigo,zepha"
    GM_IDENTITY        Identity allowed to edit (default "GM")
    LOCK_TIMEOUT       Seconds a save waits for the store lock (default 5)
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, Field

DEFAULT_DATA_DIR = Path(__file__).parent.parent / "data"
DEFAULT_CHARACTERS = ["frunk", "sharon", "indigo", "zepha"]


def _parse_users(raw: str) -> dict[str, str]:
    users: dict[str, str] = {}
    for pair in raw.split(","):
        password, sep, identity = pair.strip().partition(":")
        if sep and password and identity:
            users[password] = identity
    return users


def _parse_list(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


class Settings(BaseModel):
    data_dir: Path = DEFAULT_DATA_DIR
    npc_file: Path | None = None
    secret: str = "change-me"
    users: dict[str, str] = Field(default_factory=dict)
    characters: list[str] = Field(default_factory=lambda: list(DEFAULT_CHARACTERS))
    gm_identity: str = "GM"
    lock_timeout: float = 5.0

    @classmethod
    def from_env(cls, data_dir: Path | None = None) -> Settings:
        fields: dict = {}
        if data_dir is not None:
            fields["data_dir"] = data_dir
        elif os.getenv("DATA_DIR"):
            fields["data_dir"] = Path(os.environ["DATA_DIR"])
        if os.getenv("NPC_FILE"):
            fields["npc_file"] = Path(os.environ["NPC_FILE"])
        if os.getenv("PORTAL_SECRET"):
            fields["secret"] = os.environ["PORTAL_SECRET"]
        if os.getenv("PORTAL_USERS"):
            fields["users"] = _parse_users(os.environ["PORTAL_USERS"])
        if os.getenv("PORTAL_CHARACTERS"):
            fields["characters"] = _parse_list(os.environ["PORTAL_CHARACTERS"])
        if os.getenv("GM_IDENTITY"):
            fields["gm_identity"] = os.environ["GM_IDENTITY"]
        if os.getenv("LOCK_TIMEOUT"):
            fields["lock_timeout"] = float(os.environ["LOCK_TIMEOUT"])
        return cls(**fields)
