"""Pydantic request models for API endpoints.

The dashboard and backup endpoints each take one JSON body whose ``action``
field selects a variant; every variant has exactly one handler.
"""

import json
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, RootModel, field_validator

from partysheet.fields import FieldUpdate


class LoginBody(BaseModel):
    password: str
    remember: bool = False


# ── Dashboard actions ───────────────────────────────────


class LoadAction(BaseModel):
    action: Literal["load"]
    character: str


class SaveAction(BaseModel):
    action: Literal["save"]
    character: str
    section: str
    field: str
    value: Any = ""
    index: int | None = None


class BatchSaveAction(BaseModel):
    action: Literal["batch_save"]
    character: str
    updates: list[FieldUpdate]

    @field_validator("updates", mode="before")
    @classmethod
    def _decode_updates(cls, value: Any) -> Any:
        # form-style clients send the list as a JSON string
        if isinstance(value, str):
            return json.loads(value)
        return value


class AddItemAction(BaseModel):
    action: Literal["add_item"]
    character: str
    section: str


class DeleteItemAction(BaseModel):
    action: Literal["delete_item"]
    character: str
    section: str
    index: int


class ListNpcsAction(BaseModel):
    action: Literal["list_npcs"]


DASHBOARD_ACTIONS = (
    LoadAction,
    SaveAction,
    BatchSaveAction,
    AddItemAction,
    DeleteItemAction,
    ListNpcsAction,
)


class DashboardRequest(RootModel):
    root: Annotated[Union[DASHBOARD_ACTIONS], Field(discriminator="action")]


# ── Backup actions ──────────────────────────────────────


class CreateSessionBackup(BaseModel):
    action: Literal["create_session_backup"]


class CreatePreSaveBackup(BaseModel):
    action: Literal["create_pre_save_backup"]


class CreateBackup(BaseModel):
    action: Literal["create_backup"]
    category: Literal["manual", "daily"] = "manual"


class RestoreBackup(BaseModel):
    action: Literal["restore_backup"]
    backup_path: str = Field(min_length=1)


class VerifyBackup(BaseModel):
    action: Literal["verify_backup"]
    backup_path: str = Field(min_length=1)


class ListBackups(BaseModel):
    action: Literal["list_backups"]


BACKUP_ACTIONS = (
    CreateSessionBackup,
    CreatePreSaveBackup,
    CreateBackup,
    RestoreBackup,
    VerifyBackup,
    ListBackups,
)


class BackupRequest(RootModel):
    root: Annotated[Union[BACKUP_ACTIONS], Field(discriminator="action")]
