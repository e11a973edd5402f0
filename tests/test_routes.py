"""API tests: login, dashboard actions and backup actions over TestClient."""

import json

import pytest
from fastapi.testclient import TestClient

from portal import storage
from portal.app import create_app


@pytest.fixture
def client(test_settings) -> TestClient:
    return TestClient(create_app(settings=test_settings))


def login(client: TestClient, password: str = "gm-pass") -> None:
    resp = client.post("/api/login", json={"password": password})
    assert resp.status_code == 200, resp.text


def dashboard(client: TestClient, **body) -> dict:
    return client.post("/api/dashboard", json=body).json()


def backups(client: TestClient, **body) -> dict:
    return client.post("/api/backups", json=body).json()


def save(client: TestClient, character: str, section: str, field: str, value, index=None) -> dict:
    body = dict(action="save", character=character, section=section, field=field, value=value)
    if index is not None:
        body["index"] = index
    return dashboard(client, **body)


# ── Session ─────────────────────────────────────────────


def test_health(client):
    assert client.get("/api/health").json() == {"status": "ok"}


def test_login_sets_cookie(client):
    resp = client.post("/api/login", json={"password": "gm-pass", "remember": True})
    assert resp.json() == {"success": True, "user": "GM", "is_gm": True}
    assert "portal_session" in resp.cookies
    assert client.get("/api/session").json()["user"] == "GM"


def test_login_rejects_bad_password(client):
    resp = client.post("/api/login", json={"password": "nope"})
    assert resp.status_code == 401
    assert resp.json() == {"success": False, "error": "Invalid password"}


def test_requests_without_login_are_rejected(client):
    resp = client.post("/api/dashboard", json={"action": "load", "character": "frunk"})
    assert resp.status_code == 401
    assert resp.json()["success"] is False


def test_logout_clears_session(client):
    login(client)
    client.post("/api/logout")
    assert client.get("/api/session").status_code == 401


def test_tampered_cookie_is_rejected(client):
    login(client, "frunk-pass")
    token = client.cookies.get("portal_session")
    client.cookies.clear()
    client.cookies.set("portal_session", token.replace("frunk", "GM", 1))
    assert client.get("/api/session").status_code == 401


# ── Dashboard: load and save ────────────────────────────


def test_gm_save_then_load(client):
    login(client)
    assert save(client, "frunk", "character", "character_name", "Frunk") == {"success": True}
    data = dashboard(client, action="load", character="frunk")["data"]
    assert data["character"]["character_name"] == "Frunk"


def test_first_load_returns_defaults(client):
    login(client)
    data = dashboard(client, action="load", character="zepha")["data"]
    assert data["job"]["job_title"] == ""
    assert data["clubs"] == [{"name": "", "people": "", "bonuses": "", "other": ""}]


def test_player_can_only_load_own_sheet(client):
    login(client, "frunk-pass")
    assert dashboard(client, action="load", character="frunk")["success"]
    assert dashboard(client, action="load", character="sharon") == {
        "success": False, "error": "Access denied",
    }


def test_player_cannot_save(client):
    login(client, "frunk-pass")
    result = save(client, "frunk", "character", "race", "Elf")
    assert result == {"success": False, "error": "Only GM can make changes"}
    assert not storage.characters_path().exists()


def test_unknown_character(client):
    login(client)
    assert save(client, "gandalf", "character", "race", "Maia")["success"] is False


def test_duplicate_character_name(client):
    login(client)
    save(client, "frunk", "character", "character_name", "Frunk")
    result = save(client, "sharon", "character", "character_name", "Frunk")
    assert result == {"success": False, "error": "Character name already in use"}


def test_anti_wipe_through_api(client):
    """Scenario: clearing the last name would leave only defaults; refused."""
    login(client)
    save(client, "frunk", "character", "character_name", "Frunk")
    before = storage.characters_path().read_bytes()
    result = save(client, "frunk", "character", "character_name", "")
    assert result == {"success": False, "error": "Failed to save data"}
    assert storage.characters_path().read_bytes() == before


def test_invalid_save_is_reported(client):
    login(client)
    result = save(client, "frunk", "projects", "source", "Library")
    assert result["success"] is False
    assert "index" in result["error"]


def test_unknown_action(client):
    login(client)
    resp = client.post("/api/dashboard", json={"action": "explode", "character": "frunk"})
    assert resp.status_code == 422
    assert resp.json()["success"] is False


# ── Dashboard: batch ────────────────────────────────────


def test_batch_save_counts(client):
    """Scenario: good updates land, bad ones are counted."""
    login(client)
    updates = [
        {"section": "character", "field": "character_name", "value": "Frunk"},
        {"section": "nonsense", "field": "x", "value": "1"},
        {"section": "relationships", "field": "points", "value": "5", "index": 0},
    ]
    result = dashboard(client, action="batch_save", character="frunk", updates=updates)
    assert result == {"success": True, "saved": 2, "errors": 1}
    data = dashboard(client, action="load", character="frunk")["data"]
    assert data["relationships"][0]["points"] == "5"


def test_batch_save_accepts_json_string(client):
    login(client)
    updates = json.dumps([{"section": "job", "field": "job_title", "value": "Librarian"}])
    result = dashboard(client, action="batch_save", character="sharon", updates=updates)
    assert result["success"] and result["saved"] == 1


def test_batch_with_no_valid_updates(client):
    login(client)
    result = dashboard(client, action="batch_save", character="frunk",
                       updates=[{"section": "nope", "field": "x"}])
    assert result["success"] is False
    assert result["errors"] == 1


def test_batch_is_a_single_save(client, monkeypatch):
    """Scenario: several updates cost one write and one timestamped backup."""
    from partysheet.store import JsonDocumentStore

    login(client)
    _seed(client)
    before = len(storage.backup_manager()._series("backup"))
    writes: list[dict] = []
    original = JsonDocumentStore._save_locked

    def counting(self, doc):
        writes.append(doc)
        return original(self, doc)

    monkeypatch.setattr(JsonDocumentStore, "_save_locked", counting)
    updates = [
        {"section": "character", "field": "race", "value": "Elf"},
        {"section": "job", "field": "job_title", "value": "Scribe"},
        {"section": "job", "field": "wages", "value": "3gp"},
    ]
    result = dashboard(client, action="batch_save", character="frunk", updates=updates)
    assert result == {"success": True, "saved": 3, "errors": 0}
    assert len(writes) == 1
    assert len(storage.backup_manager()._series("backup")) == before + 1


# ── Dashboard: list items ───────────────────────────────


def test_add_and_delete_items(client):
    login(client)
    save(client, "frunk", "character", "character_name", "Frunk")
    added = dashboard(client, action="add_item", character="frunk", section="projects")
    assert added["success"]
    assert added["index"] == 0
    assert added["item"]["project_name"] == "New Project"

    assert dashboard(client, action="delete_item", character="frunk", section="projects", index=0) == {
        "success": True,
    }
    assert dashboard(client, action="delete_item", character="frunk", section="projects", index=0) == {
        "success": False, "error": "Item not found",
    }


# ── Dashboard: NPCs ─────────────────────────────────────


@pytest.fixture
def npc_file():
    path = storage.npc_path()
    path.write_text(json.dumps({"students": [{"student_id": "s1", "name": "Mira Vale"}]}))
    return path


def test_list_npcs(client, npc_file):
    login(client, "frunk-pass")
    result = dashboard(client, action="list_npcs")
    assert result["success"]
    assert result["students"][0]["name"] == "Mira Vale"


def test_list_npcs_without_file(client):
    login(client)
    assert dashboard(client, action="list_npcs")["success"] is False


def test_relationship_points_are_mirrored(client, npc_file):
    login(client)
    save(client, "frunk", "character", "character_name", "Frunk")
    save(client, "frunk", "relationships", "npc_name", "Mira Vale", index=0)
    save(client, "frunk", "relationships", "points", "6", index=0)
    mira = json.loads(npc_file.read_text())["students"][0]
    assert mira["relationships"]["frunk_points"] == "6"


def test_mirror_failure_does_not_fail_save(client):
    login(client)
    save(client, "frunk", "character", "character_name", "Frunk")
    result = save(client, "frunk", "relationships", "npc_name", "Nobody", index=0)
    assert result == {"success": True}


# ── Backups ─────────────────────────────────────────────


def _seed(client):
    save(client, "frunk", "character", "character_name", "Old")
    save(client, "frunk", "character", "character_name", "New")


def test_backups_are_gm_only(client):
    login(client, "frunk-pass")
    assert backups(client, action="list_backups") == {
        "success": False, "error": "Only GM can manage backups",
    }


def test_create_and_list_backups(client):
    login(client)
    _seed(client)
    assert backups(client, action="create_backup")["type"] == "manual"
    assert backups(client, action="create_backup", category="daily")["type"] == "daily"
    assert backups(client, action="create_session_backup")["slot"] == 1
    assert backups(client, action="create_pre_save_backup")["type"] == "recent"
    listed = backups(client, action="list_backups")
    types = {b["type"] for b in listed["backups"]}
    assert {"latest", "backup", "manual", "daily", "session", "recent"} <= types
    assert listed["stats"]["total_backups"] == len(listed["backups"])


def test_backup_before_any_save(client):
    login(client)
    assert backups(client, action="create_backup") == {"success": False, "error": "No data file to backup"}


def test_verify_and_restore(client):
    login(client)
    _seed(client)
    listed = backups(client, action="list_backups")["backups"]
    timestamped = next(b for b in listed if b["type"] == "backup")

    report = backups(client, action="verify_backup", backup_path=timestamped["path"])
    assert report["valid_json"] and report["records"] > 0

    assert backups(client, action="restore_backup", backup_path=timestamped["name"])["success"]
    data = dashboard(client, action="load", character="frunk")["data"]
    assert data["character"]["character_name"] == "Old"


def test_restore_outside_backup_dir(client):
    login(client)
    _seed(client)
    result = backups(client, action="restore_backup", backup_path=str(storage.characters_path()))
    assert result == {"success": False, "error": "Backup path is outside the backup directory"}


# ── Failures ────────────────────────────────────────────


def test_load_recovers_from_undecodable_file(client):
    login(client)
    _seed(client)
    storage.characters_path().write_bytes(b"\xff\xfe{broken")
    result = dashboard(client, action="load", character="frunk")
    assert result["success"]
    assert result["data"]["character"]["character_name"] == "Old"


def test_unexpected_error_is_json(test_settings, monkeypatch):
    client = TestClient(create_app(settings=test_settings), raise_server_exceptions=False)
    login(client)

    def explode():
        raise RuntimeError("boom")

    monkeypatch.setattr(storage, "npc_store", explode)
    resp = client.post("/api/dashboard", json={"action": "list_npcs"})
    assert resp.status_code == 500
    assert resp.json() == {"success": False, "error": "Server error occurred"}
