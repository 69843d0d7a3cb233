def _witness(helpers, token, user_id, target_id, model="Event"):
    return helpers["client"].post(
        "/api/witnesses",
        json={"witness": user_id, "target": target_id, "targetModel": model},
        headers=helpers["auth_header"](token),
    )


def test_record_event_witness(helpers):
    client = helpers["client"]
    event = helpers["create_event"]()
    staff = helpers["register"]("staff@test.com")
    attendee = helpers["register"]("attendee@test.com", name="Attendee")
    helpers["add_operator"](event["_id"], staff["_id"], role="assistant")

    created = _witness(helpers, staff["token"], attendee["_id"], event["_id"])
    assert created.status_code == 201
    assert created.json()["target"] == {"kind": "Event", "id": event["_id"]}

    duplicate = _witness(helpers, staff["token"], attendee["_id"], event["_id"])
    assert duplicate.status_code == 400

    detail = client.get(f"/api/events/{event['_id']}").json()
    assert [w["_id"] for w in detail["witnesses"]] == [created.json()["_id"]]

    listing = client.get(f"/api/witnesses/Event/{event['_id']}", headers=helpers["auth_header"](staff["token"]))
    assert listing.status_code == 200
    assert listing.json()[0]["witness"]["name"] == "Attendee"


def test_activity_witness_scoped_to_operator_activities(helpers):
    client = helpers["client"]
    event = helpers["create_event"]()
    a1 = helpers["create_activity"](event["_id"], "A1")
    a2 = helpers["create_activity"](event["_id"], "A2")
    operator = helpers["register"]("act@test.com")
    attendee = helpers["register"]("attendee@test.com")
    helpers["add_operator"](event["_id"], operator["_id"], role="activity", activities=[a1["_id"]])

    assert _witness(helpers, operator["token"], attendee["_id"], a1["_id"], "Activity").status_code == 201
    assert _witness(helpers, operator["token"], attendee["_id"], a2["_id"], "Activity").status_code == 403
    assert _witness(helpers, operator["token"], attendee["_id"], event["_id"]).status_code == 403

    # Activity targets keep the user id, shared with /api/activities/{id}/witnesses
    activity = client.get(f"/api/activities/{a1['_id']}").json()
    assert [w["_id"] for w in activity["witnesses"]] == [attendee["_id"]]


def test_witness_input_errors(helpers):
    event = helpers["create_event"]()
    attendee = helpers["register"]("attendee@test.com")
    admin = helpers["admin_token"]

    assert _witness(helpers, admin, attendee["_id"], event["_id"], "User").status_code == 400
    assert _witness(helpers, admin, "5f0c1b2a3d4e5f6a7b8c9d0e", event["_id"]).status_code == 404
    assert _witness(helpers, admin, attendee["_id"], "5f0c1b2a3d4e5f6a7b8c9d0e").status_code == 404
    assert _witness(helpers, attendee["token"], attendee["_id"], event["_id"]).status_code == 403


def test_witness_listings(helpers):
    client = helpers["client"]
    event = helpers["create_event"]("Summit")
    attendee = helpers["register"]("attendee@test.com")
    stranger = helpers["register"]("stranger@test.com")
    _witness(helpers, helpers["admin_token"], attendee["_id"], event["_id"])

    assert client.get("/api/witnesses", headers=helpers["auth_header"](stranger["token"])).status_code == 403
    assert len(client.get("/api/witnesses", headers=helpers["auth_header"](helpers["admin_token"])).json()) == 1

    mine = client.get(f"/api/witnesses/user/{attendee['_id']}", headers=helpers["auth_header"](attendee["token"]))
    assert mine.status_code == 200
    assert mine.json()[0]["target"]["title"] == "Summit"

    other = client.get(f"/api/witnesses/user/{attendee['_id']}", headers=helpers["auth_header"](stranger["token"]))
    assert other.status_code == 403

    by_target = client.get(f"/api/witnesses/Event/{event['_id']}", headers=helpers["auth_header"](stranger["token"]))
    assert by_target.status_code == 403

    client.delete(f"/api/events/{event['_id']}", headers=helpers["auth_header"](helpers["admin_token"]))
    assert client.get(f"/api/witnesses/user/{attendee['_id']}",
                      headers=helpers["auth_header"](attendee["token"])).json() == []


def test_delete_witness(helpers):
    client = helpers["client"]
    event = helpers["create_event"]()
    activity = helpers["create_activity"](event["_id"])
    attendee = helpers["register"]("attendee@test.com")
    record = _witness(helpers, helpers["admin_token"], attendee["_id"], activity["_id"], "Activity").json()

    denied = client.delete(f"/api/witnesses/{record['_id']}", headers=helpers["auth_header"](attendee["token"]))
    assert denied.status_code == 403

    removed = client.delete(f"/api/witnesses/{record['_id']}", headers=helpers["auth_header"](helpers["admin_token"]))
    assert removed.status_code == 200
    assert client.get(f"/api/activities/{activity['_id']}").json()["witnesses"] == []
    assert client.delete(f"/api/witnesses/{record['_id']}",
                         headers=helpers["auth_header"](helpers["admin_token"])).status_code == 404


def test_admin_listing_skips_witnesses_of_deleted_targets(helpers):
    client = helpers["client"]
    admin = helpers["auth_header"](helpers["admin_token"])
    gone = helpers["create_event"]("Gone")
    kept = helpers["create_event"]("Kept")
    attendee = helpers["register"]("attendee@test.com")
    _witness(helpers, helpers["admin_token"], attendee["_id"], gone["_id"])
    survivor = _witness(helpers, helpers["admin_token"], attendee["_id"], kept["_id"]).json()
    client.delete(f"/api/events/{gone['_id']}", headers=admin)

    listing = client.get("/api/witnesses", headers=admin)
    assert [w["_id"] for w in listing.json()] == [survivor["_id"]]


def test_activity_endpoints_keep_witness_records_in_step(helpers):
    client = helpers["client"]
    admin = helpers["auth_header"](helpers["admin_token"])
    event = helpers["create_event"]()
    activity = helpers["create_activity"](event["_id"])
    attendee = helpers["register"]("attendee@test.com")
    target_url = f"/api/witnesses/Activity/{activity['_id']}"
    activity_url = f"/api/activities/{activity['_id']}/witnesses"

    created = _witness(helpers, helpers["admin_token"], attendee["_id"], activity["_id"], "Activity")
    assert created.status_code == 201

    removed = client.delete(f"{activity_url}/{attendee['_id']}", headers=admin)
    assert removed.status_code == 200
    assert client.get(target_url, headers=admin).json() == []

    readded = _witness(helpers, helpers["admin_token"], attendee["_id"], activity["_id"], "Activity")
    assert readded.status_code == 201

    # Removing the record also unlinks the user; adding through the activity creates a record
    client.delete(f"/api/witnesses/{readded.json()['_id']}", headers=admin)
    added = client.post(activity_url, json={"userId": attendee["_id"]}, headers=admin)
    assert added.status_code == 200
    assert added.json()["witnesses"] == [attendee["_id"]]
    records = client.get(target_url, headers=admin).json()
    assert [r["witness"]["_id"] for r in records] == [attendee["_id"]]

    duplicate = _witness(helpers, helpers["admin_token"], attendee["_id"], activity["_id"], "Activity")
    assert duplicate.status_code == 400
