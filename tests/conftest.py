import asyncio
import io

import bcrypt
import pytest
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from authz_provider import OperatorRoleProvider
from config import ADMIN_EMAIL_DEFAULT, ADMIN_PASSWORD_DEFAULT
from database import ensure_db_indices, seed_admin
from main import app
from object_storage import StoredObject, file_extension, read_upload
from rate_limit import limiter

PASSWORD = "secret123"

_real_gensalt = bcrypt.gensalt


class InMemoryObjectStore:
    """Object store double: keeps uploads in a dict and records deletions."""

    def __init__(self):
        self.objects = {}
        self.deleted = []

    async def store(self, upload, policy):
        data = await read_upload(upload, policy)
        public_id = f"{policy.folder}/{len(self.objects) + 1}-{upload.filename}"
        self.objects[public_id] = data
        return StoredObject(
            url=f"https://files.test/{public_id}",
            public_id=public_id,
            size=len(data),
            format=file_extension(upload.filename),
        )

    async def delete(self, public_id):
        self.objects.pop(public_id, None)
        self.deleted.append(public_id)


@pytest.fixture
def helpers(monkeypatch):
    # Cheap hashes keep the suite fast
    monkeypatch.setattr(bcrypt, "gensalt", lambda: _real_gensalt(rounds=4))

    db = AsyncMongoMockClient()["event_app_test"]
    store = InMemoryObjectStore()
    app.state.mongo_db = db
    app.state.authz_provider = OperatorRoleProvider()
    app.state.object_store = store
    limiter.enabled = False

    def run(coro):
        return asyncio.run(coro)

    run(ensure_db_indices(db))
    run(seed_admin(app))

    client = TestClient(app)

    def auth_header(token):
        return {"Authorization": f"Bearer {token}"}

    def login(email, password=PASSWORD):
        resp = client.post("/api/users/login", json={"email": email, "password": password})
        assert resp.status_code == 200, resp.text
        return resp.json()["token"]

    admin_token = login(ADMIN_EMAIL_DEFAULT, ADMIN_PASSWORD_DEFAULT)

    def register(email, name="Test User", password=PASSWORD, role=None):
        payload = {"name": name, "email": email, "password": password}
        headers = {}
        if role:
            payload["role"] = role
            headers = auth_header(admin_token)
        resp = client.post("/api/users", json=payload, headers=headers)
        assert resp.status_code == 201, resp.text
        return resp.json()

    def create_event(title="Conf", **fields):
        resp = client.post("/api/events", json={"title": title, **fields}, headers=auth_header(admin_token))
        assert resp.status_code == 201, resp.text
        return resp.json()

    def create_activity(event_id, title="Talk", token=None, **fields):
        resp = client.post(
            f"/api/events/{event_id}/activities",
            json={"title": title, **fields},
            headers=auth_header(token or admin_token),
        )
        assert resp.status_code == 201, resp.text
        return resp.json()

    def add_operator(event_id, user_id, role="general", activities=()):
        resp = client.post(
            f"/api/events/{event_id}/operators",
            json={"userId": user_id, "role": role, "activities": list(activities)},
            headers=auth_header(admin_token),
        )
        assert resp.status_code == 200, resp.text
        return resp.json()

    def add_assistant(event_id, user_id, token=None):
        resp = client.post(
            f"/api/events/{event_id}/assistants",
            json={"userId": user_id},
            headers=auth_header(token or admin_token),
        )
        assert resp.status_code == 200, resp.text
        return resp.json()

    def image(name="photo.png", content=b"\x89PNG fake image bytes", mime="image/png"):
        return (name, io.BytesIO(content), mime)

    yield {
        "client": client,
        "db": db,
        "store": store,
        "run": run,
        "auth_header": auth_header,
        "login": login,
        "admin_token": admin_token,
        "register": register,
        "create_event": create_event,
        "create_activity": create_activity,
        "add_operator": add_operator,
        "add_assistant": add_assistant,
        "image": image,
    }

    app.state.mongo_db = None
    app.state.object_store = None
    limiter.enabled = True


@pytest.fixture
def db():
    """Bare mock database for unit tests of the data-layer helpers."""
    return AsyncMongoMockClient()["event_app_unit"]
