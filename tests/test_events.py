def test_admin_creates_event(helpers):
    client = helpers["client"]
    resp = client.post("/api/events", json={"title": "Conf"}, headers=helpers["auth_header"](helpers["admin_token"]))
    assert resp.status_code == 201
    event = resp.json()
    assert event["isDeleted"] is False
    assert event["isPublic"] is True
    assert event["bgColor"] == "#FFFFFF"
    assert [entry["changeType"] for entry in event["changedHistory"]] == ["create"]


def test_only_admins_create_events(helpers):
    client = helpers["client"]
    user = helpers["register"]("plain@test.com")
    assert client.post("/api/events", json={"title": "Conf"}).status_code == 401
    resp = client.post("/api/events", json={"title": "Conf"}, headers=helpers["auth_header"](user["token"]))
    assert resp.status_code == 403
    assert "message" in resp.json()


def test_event_body_is_validated(helpers):
    client = helpers["client"]
    admin = helpers["auth_header"](helpers["admin_token"])
    assert client.post("/api/events", json={"subtitle": "no title"}, headers=admin).status_code == 400

    bad_color = client.post("/api/events", json={"title": "Conf", "bgColor": "blue"}, headers=admin)
    assert bad_color.status_code == 400
    assert bad_color.json()["message"] == "Field 'bgColor' must be a valid hexadecimal color"

    bad_date = client.post("/api/events", json={"title": "Conf", "dateStart": "someday"}, headers=admin)
    assert bad_date.status_code == 400


def test_event_listing_by_role(helpers):
    client = helpers["client"]
    public = helpers["create_event"]("Public", dateStart="2030-05-01")
    early = helpers["create_event"]("Early", dateStart="2030-01-01")
    private = helpers["create_event"]("Private", isPublic=False)
    other_private = helpers["create_event"]("Hidden", isPublic=False)
    user = helpers["register"]("viewer@test.com")
    helpers["add_assistant"](private["_id"], user["_id"])

    anonymous = [e["title"] for e in client.get("/api/events").json()]
    assert set(anonymous) == {"Public", "Early"}
    assert anonymous.index("Early") < anonymous.index("Public")

    mine = {e["title"] for e in client.get("/api/events", headers=helpers["auth_header"](user["token"])).json()}
    assert mine == {"Public", "Early", "Private"}

    everything = client.get("/api/events", headers=helpers["auth_header"](helpers["admin_token"])).json()
    assert {e["_id"] for e in everything} == {public["_id"], early["_id"], private["_id"], other_private["_id"]}


def test_private_event_visibility(helpers):
    client = helpers["client"]
    event = helpers["create_event"]("Private", isPublic=False)
    stranger = helpers["register"]("stranger@test.com")
    guest = helpers["register"]("guest@test.com")
    helpers["add_assistant"](event["_id"], guest["_id"])

    assert client.get(f"/api/events/{event['_id']}").status_code == 401
    denied = client.get(f"/api/events/{event['_id']}", headers=helpers["auth_header"](stranger["token"]))
    assert denied.status_code == 403

    allowed = client.get(f"/api/events/{event['_id']}", headers=helpers["auth_header"](guest["token"]))
    assert allowed.status_code == 200
    assert allowed.json()["assistants"][0]["email"] == "guest@test.com"


def test_get_event_populates_operators_and_activities(helpers):
    client = helpers["client"]
    event = helpers["create_event"]()
    operator = helpers["register"]("op@test.com", name="Op")
    helpers["add_operator"](event["_id"], operator["_id"])
    activity = helpers["create_activity"](event["_id"], "Keynote")

    body = client.get(f"/api/events/{event['_id']}").json()
    assert body["operators"][0]["user"]["name"] == "Op"
    assert body["operators"][0]["role"] == "general"
    assert body["activities"][0]["_id"] == activity["_id"]


def test_operator_updates_event_but_not_visibility(helpers):
    client = helpers["client"]
    event = helpers["create_event"]()
    operator = helpers["register"]("op@test.com")
    stranger = helpers["register"]("stranger@test.com")
    helpers["add_operator"](event["_id"], operator["_id"], role="general")

    resp = client.put(
        f"/api/events/{event['_id']}",
        json={"title": "Renamed", "isPublic": False},
        headers=helpers["auth_header"](operator["token"]),
    )
    assert resp.status_code == 200
    assert resp.json()["title"] == "Renamed"
    assert resp.json()["isPublic"] is True
    assert resp.json()["changedHistory"][-1]["changeType"] == "update"

    denied = client.put(f"/api/events/{event['_id']}", json={"title": "X"},
                        headers=helpers["auth_header"](stranger["token"]))
    assert denied.status_code == 403

    admin = client.put(f"/api/events/{event['_id']}", json={"isPublic": False},
                       headers=helpers["auth_header"](helpers["admin_token"]))
    assert admin.json()["isPublic"] is False

    bad_color = client.put(f"/api/events/{event['_id']}", json={"starColor": "#12"},
                           headers=helpers["auth_header"](helpers["admin_token"]))
    assert bad_color.status_code == 400


def test_soft_deleted_event_disappears(helpers):
    client = helpers["client"]
    admin = helpers["auth_header"](helpers["admin_token"])
    event = helpers["create_event"]("Gone")

    user = helpers["register"]("plain@test.com")
    assert client.delete(f"/api/events/{event['_id']}", headers=helpers["auth_header"](user["token"])).status_code == 403

    assert client.delete(f"/api/events/{event['_id']}", headers=admin).status_code == 200
    assert client.get(f"/api/events/{event['_id']}").status_code == 404
    assert client.put(f"/api/events/{event['_id']}", json={"title": "X"}, headers=admin).status_code == 404
    assert "Gone" not in [e["title"] for e in client.get("/api/events", headers=admin).json()]

    stored = helpers["run"](helpers["db"].events.find_one({"title": "Gone"}))
    assert stored["isDeleted"] is True
    assert stored["changedType"] == "delete"


def test_operator_management(helpers):
    client = helpers["client"]
    admin = helpers["auth_header"](helpers["admin_token"])
    event = helpers["create_event"]()
    operator = helpers["register"]("op@test.com")
    url = f"/api/events/{event['_id']}/operators"

    added = helpers["add_operator"](event["_id"], operator["_id"], role="assistant")
    assert added["operators"][0]["role"] == "assistant"

    duplicate = client.post(url, json={"userId": operator["_id"], "role": "general"}, headers=admin)
    assert duplicate.status_code == 400

    bad_role = client.post(url, json={"userId": operator["_id"], "role": "boss"}, headers=admin)
    assert bad_role.status_code == 400

    missing = client.post(url, json={"userId": "5f0c1b2a3d4e5f6a7b8c9d0e", "role": "general"}, headers=admin)
    assert missing.status_code == 404

    as_operator = client.post(url, json={"userId": operator["_id"], "role": "general"},
                              headers=helpers["auth_header"](operator["token"]))
    assert as_operator.status_code == 403

    assert client.delete(f"{url}/5f0c1b2a3d4e5f6a7b8c9d0e", headers=admin).status_code == 404
    removed = client.delete(f"{url}/{operator['_id']}", headers=admin)
    assert removed.status_code == 200
    assert removed.json()["operators"] == []

    history = [entry["changeType"] for entry in helpers["run"](
        helpers["db"].events.find_one({"title": event["title"]})
    )["changedHistory"]]
    assert history == ["create", "add-operator", "remove-operator"]


def test_deleted_user_cannot_become_operator(helpers):
    client = helpers["client"]
    admin = helpers["auth_header"](helpers["admin_token"])
    event = helpers["create_event"]()
    user = helpers["register"]("gone@test.com")
    client.delete(f"/api/users/{user['_id']}", headers=admin)

    resp = client.post(f"/api/events/{event['_id']}/operators",
                       json={"userId": user["_id"], "role": "general"}, headers=admin)
    assert resp.status_code == 404


def test_assistant_management(helpers):
    client = helpers["client"]
    event = helpers["create_event"]()
    staff = helpers["register"]("staff@test.com")
    guest = helpers["register"]("guest@test.com")
    stranger = helpers["register"]("stranger@test.com")
    helpers["add_operator"](event["_id"], staff["_id"], role="assistant")
    url = f"/api/events/{event['_id']}/assistants"

    added = helpers["add_assistant"](event["_id"], guest["_id"], token=staff["token"])
    assert added["assistants"] == [guest["_id"]]

    duplicate = client.post(url, json={"userId": guest["_id"]}, headers=helpers["auth_header"](staff["token"]))
    assert duplicate.status_code == 400

    denied = client.post(url, json={"userId": stranger["_id"]}, headers=helpers["auth_header"](stranger["token"]))
    assert denied.status_code == 403

    unknown = client.delete(f"{url}/{stranger['_id']}", headers=helpers["auth_header"](staff["token"]))
    assert unknown.status_code == 404

    removed = client.delete(f"{url}/{guest['_id']}", headers=helpers["auth_header"](staff["token"]))
    assert removed.status_code == 200
    assert removed.json()["assistants"] == []


def test_event_image_uploads(helpers):
    client = helpers["client"]
    admin = helpers["auth_header"](helpers["admin_token"])
    event = helpers["create_event"]()

    logo = client.post(f"/api/events/{event['_id']}/logo", files={"logo": helpers["image"]("logo.png")}, headers=admin)
    assert logo.status_code == 200
    assert logo.json()["logoUrl"].startswith("https://files.test/logos/")

    main_image = client.post(f"/api/events/{event['_id']}/mainImage",
                             files={"photo": helpers["image"]("cover.jpg", mime="image/jpeg")}, headers=admin)
    assert main_image.status_code == 200

    wrong_format = client.post(f"/api/events/{event['_id']}/logo",
                               files={"logo": helpers["image"]("logo.gif", mime="image/gif")}, headers=admin)
    assert wrong_format.status_code == 400

    stored = client.get(f"/api/events/{event['_id']}").json()
    assert stored["logo"] == logo.json()["logoUrl"]
    assert stored["mainImage"] == main_image.json()["mainImageUrl"]
    assert stored["changedHistory"][-1]["changeType"] == "update-main-image"


def test_event_photo_gallery(helpers):
    client = helpers["client"]
    event = helpers["create_event"]()
    guest = helpers["register"]("guest@test.com")
    stranger = helpers["register"]("stranger@test.com")
    helpers["add_assistant"](event["_id"], guest["_id"])
    url = f"/api/events/{event['_id']}/photos"

    files = [("photos", helpers["image"](f"p{i}.png")) for i in range(2)]
    resp = client.post(url, files=files, headers=helpers["auth_header"](guest["token"]))
    assert resp.status_code == 200
    assert len(resp.json()["photos"]) == 2

    denied = client.post(url, files=[("photos", helpers["image"]())], headers=helpers["auth_header"](stranger["token"]))
    assert denied.status_code == 403

    too_many = [("photos", helpers["image"](f"p{i}.png")) for i in range(11)]
    assert client.post(url, files=too_many, headers=helpers["auth_header"](guest["token"])).status_code == 400

    assert len(client.get(f"/api/events/{event['_id']}").json()["photos"]) == 2


def test_uploads_disabled_without_object_store(helpers):
    from main import app

    app.state.object_store = None
    event = helpers["create_event"]()
    resp = helpers["client"].post(
        f"/api/events/{event['_id']}/logo",
        files={"logo": helpers["image"]()},
        headers=helpers["auth_header"](helpers["admin_token"]),
    )
    assert resp.status_code == 503
