"""Character record models.

The store on disk is a plain JSON mapping of character key → record. These
models describe a record's shape and provide the fresh-install defaults; the
store itself keeps working on plain dicts so hand-edited files with extra keys
round-trip unchanged.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

Section = Literal[
    "character",
    "current_classes",
    "job",
    "relationships",
    "projects",
    "clubs",
    "past_classes",
]

SCALAR_SECTIONS = ("character", "current_classes", "job")
LIST_SECTIONS = ("relationships", "projects", "clubs")

POINTS_HISTORY_LIMIT = 10


class _Record(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class CharacterInfo(_Record):
    character_name: str = ""
    player_name: str = ""
    class_: str = Field("", alias="class")
    race: str = ""
    level: str = ""
    college: str = ""
    minor: str = ""
    extra_curricular: str = ""
    boon: str = ""
    wealth: str = ""
    renown: str = ""
    other: str = ""
    portrait: str = ""


class CurrentClass(_Record):
    class_name: str = ""
    test_1_grade: str = ""
    test_2_grade: str = ""
    project_1_grade: str = ""
    project_2_grade: str = ""
    overall_grade: str = ""
    test_buffs: str = ""


class Relationship(_Record):
    npc_name: str = ""
    student_id: str = ""
    points: str = ""
    boon: str = ""
    bane: str = ""
    extra: str = ""


class Project(_Record):
    project_name: str = ""
    source: str = ""
    points_earned: str = ""
    total_points: str = ""
    extra: str = ""
    points_history: list[int] = Field(default_factory=list)


class Club(_Record):
    name: str = ""
    people: str = ""
    bonuses: str = ""
    other: str = ""


class Job(_Record):
    job_title: str = ""
    job_satisfaction: str = ""
    wages: str = ""
    coworkers: str = ""


class CharacterRecord(_Record):
    """One party member's dashboard data."""

    character: CharacterInfo = Field(default_factory=CharacterInfo)
    current_classes: CurrentClass = Field(default_factory=CurrentClass)
    past_classes: list[CurrentClass] = Field(default_factory=list)
    relationships: list[Relationship] = Field(default_factory=list)
    projects: list[Project] = Field(default_factory=list)
    clubs: list[Club] = Field(default_factory=lambda: [Club()])
    job: Job = Field(default_factory=Job)


def _dump(model: BaseModel) -> dict[str, Any]:
    return model.model_dump(by_alias=True)


def default_record() -> dict[str, Any]:
    """Blank record written on first setup."""
    return _dump(CharacterRecord())


def default_document(keys: list[str]) -> dict[str, Any]:
    return {key: default_record() for key in keys}


def empty_current_class() -> dict[str, Any]:
    return _dump(CurrentClass())


def new_relationship() -> dict[str, Any]:
    return _dump(Relationship(npc_name="New Relationship", points="0"))


def new_project() -> dict[str, Any]:
    return _dump(Project(project_name="New Project", points_earned="0", total_points="10"))


def new_club() -> dict[str, Any]:
    return _dump(Club())


NEW_ITEM_FACTORIES = {
    "relationships": new_relationship,
    "projects": new_project,
    "clubs": new_club,
}


def has_real_data(doc: Any) -> bool:
    """True when at least one record carries a non-empty character name."""
    if not isinstance(doc, dict):
        return False
    for record in doc.values():
        if not isinstance(record, dict):
            continue
        info = record.get("character")
        if isinstance(info, dict) and info.get("character_name"):
            return True
    return False


def count_records(doc: Any) -> int:
    """Total size of every top-level collection except ``metadata``."""
    if not isinstance(doc, (dict, list)):
        return 0
    items = doc.items() if isinstance(doc, dict) else enumerate(doc)
    count = 0
    for key, value in items:
        if key != "metadata" and isinstance(value, (dict, list)):
            count += len(value)
    return count
