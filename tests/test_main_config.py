import asyncio

from database import get_or_create_main_config


def test_main_config_created_on_first_read(helpers):
    client = helpers["client"]
    first = client.get("/api/main")
    assert first.status_code == 200
    assert first.json()["title"] == "Event App"
    assert first.json()["btnColor"] == "#007BFF"
    assert "isDeleted" not in first.json()

    assert client.get("/api/main").json()["_id"] == first.json()["_id"]
    assert helpers["run"](helpers["db"].main_config.count_documents({})) == 1


def test_only_admin_updates_main_config(helpers):
    client = helpers["client"]
    user = helpers["register"]("plain@test.com")
    admin = helpers["auth_header"](helpers["admin_token"])

    assert client.put("/api/main", json={"title": "Mine"}, headers=helpers["auth_header"](user["token"])).status_code == 403

    updated = client.put("/api/main", json={"title": "Events Co", "linkColor": "#abc"}, headers=admin)
    assert updated.status_code == 200
    assert updated.json()["title"] == "Events Co"
    assert updated.json()["linkColor"] == "#abc"
    assert updated.json()["changedType"] == "update"

    bad = client.put("/api/main", json={"secColor": "grey"}, headers=admin)
    assert bad.status_code == 400
    assert bad.json()["message"] == "Field 'secColor' must be a valid hexadecimal color"

    assert client.put("/api/main", content=b"{not json", headers={**admin, "Content-Type": "application/json"}).status_code == 400


def test_main_logo_upload(helpers):
    client = helpers["client"]
    resp = client.post("/api/main/logo", files={"logo": helpers["image"]("brand.png")},
                       headers=helpers["auth_header"](helpers["admin_token"]))
    assert resp.status_code == 200
    assert client.get("/api/main").json()["logo"] == resp.json()["logoUrl"]


def test_change_history_endpoint(helpers):
    client = helpers["client"]
    admin = helpers["auth_header"](helpers["admin_token"])
    event = helpers["create_event"]()
    operator = helpers["register"]("op@test.com")
    helpers["add_operator"](event["_id"], operator["_id"])
    client.put(f"/api/events/{event['_id']}", json={"title": "Renamed"}, headers=admin)
    client.delete(f"/api/events/{event['_id']}", headers=admin)

    resp = client.get(f"/api/audit/Event/{event['_id']}", headers=admin)
    assert resp.status_code == 200
    assert [entry["changeType"] for entry in resp.json()] == ["create", "add-operator", "update", "delete"]

    assert client.get(f"/api/audit/Event/{event['_id']}", headers=helpers["auth_header"](operator["token"])).status_code == 403
    assert client.get(f"/api/audit/Spaceship/{event['_id']}", headers=admin).status_code == 400
    assert client.get("/api/audit/Event/5f0c1b2a3d4e5f6a7b8c9d0e", headers=admin).status_code == 404


def test_concurrent_first_reads_create_one_config(helpers):
    db = helpers["db"]

    async def first_reads():
        return await asyncio.gather(*(get_or_create_main_config(db) for _ in range(5)))

    configs = helpers["run"](first_reads())
    assert {c["_id"] for c in configs} == {configs[0]["_id"]}
    assert helpers["run"](db.main_config.count_documents({})) == 1

    # Fields outside the config schema are not written
    resp = helpers["client"].put("/api/main", json={"key": "other", "title": "Still one"},
                                 headers=helpers["auth_header"](helpers["admin_token"]))
    assert resp.status_code == 200
    assert resp.json()["key"] == configs[0]["key"]
    assert helpers["client"].get("/api/main").json()["title"] == "Still one"
