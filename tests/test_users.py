from config import ADMIN_EMAIL_DEFAULT


def test_health(helpers):
    resp = helpers["client"].get("/")
    assert resp.status_code == 200
    assert resp.json() == {"message": "Event API running"}
    assert "X-Request-ID" in resp.headers


def test_register_returns_token_and_ignores_role_for_anonymous(helpers):
    client = helpers["client"]
    resp = client.post(
        "/api/users",
        json={"name": "Ana", "email": "Ana@Test.com", "password": "abc123", "role": "admin"},
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["email"] == "ana@test.com"
    assert body["role"] == "user"
    assert body["token"]
    assert "password_hash" not in body


def test_admin_can_register_with_role(helpers):
    body = helpers["register"]("op@test.com", role="operator")
    assert body["role"] == "operator"


def test_register_rejects_duplicates_and_weak_input(helpers):
    client = helpers["client"]
    helpers["register"]("dup@test.com")

    dup = client.post("/api/users", json={"name": "X", "email": "dup@test.com", "password": "abc123"})
    assert dup.status_code == 400
    assert dup.json()["message"] == "User already exists"

    bad_email = client.post("/api/users", json={"name": "X", "email": "nope", "password": "abc123"})
    assert bad_email.status_code == 400
    assert bad_email.json()["message"] == "Please provide a valid email"

    weak = client.post("/api/users", json={"name": "X", "email": "weak@test.com", "password": "abcdef"})
    assert weak.status_code == 400

    missing = client.post("/api/users", json={"email": "x@test.com", "password": "abc123"})
    assert missing.status_code == 400
    assert "name" in missing.json()["message"]


def test_login(helpers):
    client = helpers["client"]
    helpers["register"]("login@test.com")

    ok = client.post("/api/users/login", json={"email": "login@test.com", "password": "secret123"})
    assert ok.status_code == 200
    assert ok.json()["permissions"] == {"isAssistant": False, "isOperator": False}

    bad = client.post("/api/users/login", json={"email": "login@test.com", "password": "wrong1"})
    assert bad.status_code == 401
    assert bad.json() == {"message": "Invalid email or password"}

    user = helpers["run"](helpers["db"].users.find_one({"email": "login@test.com"}))
    assert user["lastSession"] is not None


def test_profile_requires_valid_token(helpers):
    client = helpers["client"]
    assert client.get("/api/users/profile").status_code == 401
    resp = client.get("/api/users/profile", headers=helpers["auth_header"]("garbage"))
    assert resp.status_code == 401
    assert "message" in resp.json()


def test_profile_read_and_update(helpers):
    client = helpers["client"]
    user = helpers["register"]("me@test.com", name="Me")
    headers = helpers["auth_header"](user["token"])

    profile = client.get("/api/users/profile", headers=headers)
    assert profile.status_code == 200
    assert profile.json()["name"] == "Me"
    assert "password_hash" not in profile.json()

    updated = client.put("/api/users/profile", json={"name": "Still Me", "password": "newpass1"}, headers=headers)
    assert updated.status_code == 200
    assert updated.json()["name"] == "Still Me"
    assert updated.json()["token"]
    helpers["login"]("me@test.com", "newpass1")

    weak = client.put("/api/users/profile", json={"password": "short"}, headers=headers)
    assert weak.status_code == 400


def test_user_administration(helpers):
    client = helpers["client"]
    admin = helpers["auth_header"](helpers["admin_token"])
    user = helpers["register"]("managed@test.com")
    user_headers = helpers["auth_header"](user["token"])

    assert client.get("/api/users", headers=user_headers).status_code == 403

    listing = client.get("/api/users", headers=admin)
    assert listing.status_code == 200
    emails = {u["email"] for u in listing.json()}
    assert {"managed@test.com", ADMIN_EMAIL_DEFAULT.lower()} <= emails

    changed = client.put(f"/api/users/{user['_id']}", json={"role": "operator", "verified": True}, headers=admin)
    assert changed.status_code == 200
    assert changed.json()["role"] == "operator"
    assert "password_hash" not in changed.json()

    removed = client.delete(f"/api/users/{user['_id']}", headers=admin)
    assert removed.status_code == 200

    assert client.get(f"/api/users/{user['_id']}", headers=admin).status_code == 404
    assert "managed@test.com" not in {u["email"] for u in client.get("/api/users", headers=admin).json()}
    # A deleted user's token no longer authenticates
    assert client.get("/api/users/profile", headers=user_headers).status_code == 401


def test_malformed_user_id_is_404(helpers):
    resp = helpers["client"].get("/api/users/not-an-id", headers=helpers["auth_header"](helpers["admin_token"]))
    assert resp.status_code == 404


def test_role_change_keeps_operator_flag_in_step(helpers):
    client = helpers["client"]
    admin = helpers["auth_header"](helpers["admin_token"])
    user = helpers["register"]("managed@test.com")
    url = f"/api/users/{user['_id']}"

    promoted = client.put(url, json={"role": "operator"}, headers=admin).json()
    assert promoted["permissions"]["isOperator"] is True
    assert promoted["permissions"]["isAssistant"] is False

    demoted = client.put(url, json={"role": "user", "permissions": {"isOperator": True}}, headers=admin).json()
    assert demoted["permissions"]["isOperator"] is False

    flagged = client.put(url, json={"permissions": {"isAssistant": True}}, headers=admin).json()
    assert flagged["permissions"] == {"isAssistant": True, "isOperator": False}
