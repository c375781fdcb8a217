from __future__ import annotations

from fastapi.testclient import TestClient


def _client() -> TestClient:
    import app as app_module

    return TestClient(app_module.create_app())


def test_app_smoke_document_routes(reload_endpoints):
    client = _client()

    r = client.get("/healthz")
    assert r.status_code == 200

    r = client.get("/documents/campaign/state.json")
    assert r.status_code == 200
    assert r.json()["document"] == {}
    assert r.json()["editing"] == {"locked": False}

    r = client.put("/documents/campaign/state.json", json={"count": 5}, headers={"X-Editor": "GM"})
    assert r.status_code == 200
    assert r.json()["saved"] is True

    r = client.patch("/documents/campaign/state.json", json={"count": 6})
    assert r.status_code == 200
    assert r.json()["document"] == {"count": 6}
    assert r.json()["snapshots"][0]["tier"] == "recent"

    r = client.get("/documents/campaign/state.json")
    assert r.json()["editing"]["locked"] is True
    assert r.json()["editing"]["user"] == "GM"

    r = client.get("/documents/campaign/state.json/backups")
    assert r.status_code == 200
    body = r.json()
    assert [b["name"] for b in body["backups"]] == ["state.json_recent_latest.json"]
    assert body["stats"]["total_backups"] == 1

    r = client.post("/documents/campaign/state.json/backups/recent/latest/restore")
    assert r.status_code == 200
    assert r.json()["document"] == {"count": 5}


def test_editing_lock_routes(reload_endpoints):
    client = _client()

    r = client.post("/documents/arcane/grid_data.json/editing-lock", headers={"X-Editor": "zepha"})
    assert r.status_code == 200
    assert r.json()["locked"] is True

    r = client.post("/documents/arcane/grid_data.json/editing-lock", headers={"X-Editor": "GM"})
    assert r.json()["user"] == "GM"
    assert r.json()["previous_user"] == "zepha"

    r = client.get("/documents/arcane/grid_data.json/editing-lock")
    assert r.json()["user"] == "GM"

    r = client.delete("/documents/arcane/grid_data.json/editing-lock", headers={"X-Editor": "GM"})
    assert r.json()["released"] is True

    r = client.post("/documents/arcane/grid_data.json/editing-lock")
    assert r.status_code == 400


def test_grid_routes(reload_endpoints):
    client = _client()

    r = client.get("/arcane/grid")
    assert r.status_code == 200
    assert r.json()["editableCells"] == {}

    r = client.post("/arcane/grid", json={"editableCells": {"r1c1": "Forge"}}, headers={"X-Editor": "GM"})
    assert r.status_code == 200
    assert r.json()["grid"]["savedBy"] == "GM"

    r = client.patch("/arcane/grid/cells", json={"r1c2": "Vault"}, headers={"X-Editor": "zepha"})
    assert r.json()["saved"] is True
    assert r.json()["grid"]["editableCells"] == {"r1c1": "Forge", "r1c2": "Vault"}


def test_store_errors_render_structured_failures(reload_endpoints, data_root):
    client = _client()

    r = client.get("/documents/../secrets.json")
    assert r.status_code in (400, 404)

    r = client.post("/documents/state.json/backups/session/9/restore")
    assert r.status_code == 404
    assert r.json() == {
        "success": False,
        "error": "snapshot_not_found",
        "detail": "no snapshot session/9",
        "document_id": "state.json",
    }

    data_root.mkdir(parents=True, exist_ok=True)
    (data_root / "broken.json").write_bytes(b"{oops")
    r = client.get("/documents/broken.json")
    assert r.status_code == 500
    assert r.json()["error"] == "unrecoverable_corruption"

    r = client.put("/documents/list.json", json=[1, 2])
    assert r.status_code == 200
    r = client.patch("/documents/list.json", json={"a": 1})
    assert r.status_code == 409
    assert r.json()["error"] == "mutation_rejected"
