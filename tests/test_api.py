"""
Tests for the REST API.

The lifespan (queue connect, consumer start) is not run: TestClient is used
without a context manager and collaborators are swapped through
dependency overrides.
"""
import pytest
from fastapi.testclient import TestClient

from api.main import app, get_identity_verifier, get_store, get_task_service
from database.store_memory import InMemoryStore
from fakes import RecordingPublisher
from services.auth import StaticTokenVerifier
from services.tasks import TaskService

ALICE = {"Authorization": "Bearer tok-alice"}
BOB = {"Authorization": "Bearer tok-bob"}


@pytest.fixture
def api_store():
    return InMemoryStore()


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def client(api_store, publisher):
    verifier = StaticTokenVerifier({"tok-alice": "alice", "tok-bob": "bob"})
    app.dependency_overrides[get_store] = lambda: api_store
    app.dependency_overrides[get_task_service] = lambda: TaskService(api_store, publisher)
    app.dependency_overrides[get_identity_verifier] = lambda: verifier
    yield TestClient(app)
    app.dependency_overrides.clear()


# ──────────────────────────────────────────────────────────────
#  Health / Auth
# ──────────────────────────────────────────────────────────────

class TestHealthAndAuth:
    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"

    def test_missing_token(self, client):
        r = client.get("/tasks")
        assert r.status_code == 401
        assert r.json()["detail"] == "No token provided"

    def test_wrong_scheme(self, client):
        r = client.get("/tasks", headers={"Authorization": "Basic abc"})
        assert r.status_code == 401
        assert r.json()["detail"] == "No token provided"

    def test_invalid_token(self, client):
        r = client.get("/tasks", headers={"Authorization": "Bearer nope"})
        assert r.status_code == 401
        assert r.json()["detail"] == "Invalid token"

    def test_verifier_outage(self, client):
        class Down(StaticTokenVerifier):
            async def verify(self, token):
                raise ConnectionError("identity provider down")

        app.dependency_overrides[get_identity_verifier] = lambda: Down()
        r = client.get("/tasks", headers=ALICE)
        assert r.status_code == 500
        assert r.json()["detail"] == "Authentication failed"


# ──────────────────────────────────────────────────────────────
#  Tasks
# ──────────────────────────────────────────────────────────────

class TestTaskRoutes:
    def test_create_task(self, client, publisher):
        r = client.post("/tasks", json={"title": "Buy milk", "description": "2 litres"}, headers=ALICE)
        assert r.status_code == 201
        body = r.json()
        assert body["message"] == "Task created successfully"
        assert body["task"]["title"] == "Buy milk"
        assert body["task"]["status"] == "pending"
        assert publisher.published == [("task.created", body["task"]["id"], "alice")]

    @pytest.mark.parametrize("payload,detail", [
        ({}, "Title is required"),
        ({"title": ""}, "Title is required"),
        ({"title": "X", "status": "blocked"}, "Invalid status value"),
    ])
    def test_create_validation(self, client, publisher, payload, detail):
        r = client.post("/tasks", json=payload, headers=ALICE)
        assert r.status_code == 400
        assert r.json()["detail"] == detail
        assert publisher.published == []

    def test_list_and_get_are_scoped(self, client):
        task_id = client.post("/tasks", json={"title": "Mine"}, headers=ALICE).json()["task"]["id"]

        assert [t["id"] for t in client.get("/tasks", headers=ALICE).json()["tasks"]] == [task_id]
        assert client.get("/tasks", headers=BOB).json()["tasks"] == []
        assert client.get(f"/tasks/{task_id}", headers=ALICE).status_code == 200
        r = client.get(f"/tasks/{task_id}", headers=BOB)
        assert r.status_code == 404
        assert r.json()["detail"] == "Task not found"

    def test_update_task(self, client, publisher):
        task_id = client.post("/tasks", json={"title": "Draft"}, headers=ALICE).json()["task"]["id"]
        r = client.put(f"/tasks/{task_id}", json={"status": "completed"}, headers=ALICE)
        assert r.status_code == 200
        assert r.json()["message"] == "Task updated successfully"
        assert r.json()["task"]["status"] == "completed"
        assert publisher.published[-1] == ("task.updated", task_id, "alice")

    def test_update_errors(self, client):
        task_id = client.post("/tasks", json={"title": "Draft"}, headers=ALICE).json()["task"]["id"]
        r = client.put(f"/tasks/{task_id}", json={}, headers=ALICE)
        assert (r.status_code, r.json()["detail"]) == (400, "No fields to update")
        r = client.put(f"/tasks/{task_id}", json={"status": "done"}, headers=ALICE)
        assert (r.status_code, r.json()["detail"]) == (400, "Invalid status value")
        r = client.put("/tasks/missing", json={"title": "X"}, headers=ALICE)
        assert (r.status_code, r.json()["detail"]) == (404, "Task not found")

    def test_update_blank_title_and_clear_description(self, client):
        created = client.post("/tasks", json={"title": "Draft", "description": "notes"}, headers=ALICE)
        task_id = created.json()["task"]["id"]

        r = client.put(f"/tasks/{task_id}", json={"title": ""}, headers=ALICE)
        assert (r.status_code, r.json()["detail"]) == (400, "Title is required")

        r = client.put(f"/tasks/{task_id}", json={"description": None}, headers=ALICE)
        assert r.status_code == 200
        assert r.json()["task"]["description"] is None
        assert r.json()["task"]["title"] == "Draft"

    def test_delete_task(self, client, publisher):
        task_id = client.post("/tasks", json={"title": "Gone"}, headers=ALICE).json()["task"]["id"]
        r = client.delete(f"/tasks/{task_id}", headers=ALICE)
        assert r.status_code == 200
        assert r.json()["message"] == "Task deleted successfully"
        assert publisher.published[-1] == ("task.deleted", task_id, "alice")
        assert client.delete(f"/tasks/{task_id}", headers=ALICE).status_code == 404

    def test_store_failure_is_500(self, api_store):
        api_store.fail_writes = True
        verifier = StaticTokenVerifier({"tok-alice": "alice"})
        app.dependency_overrides[get_task_service] = lambda: TaskService(api_store, RecordingPublisher())
        app.dependency_overrides[get_identity_verifier] = lambda: verifier
        try:
            client = TestClient(app, raise_server_exceptions=False)
            r = client.post("/tasks", json={"title": "X"}, headers=ALICE)
        finally:
            app.dependency_overrides.clear()
        assert r.status_code == 500
        assert r.json()["detail"] == "Internal server error"


# ──────────────────────────────────────────────────────────────
#  Notifications
# ──────────────────────────────────────────────────────────────

class TestNotificationRoutes:
    @pytest.fixture
    def seeded(self, api_store):
        import asyncio

        async def seed():
            a = await api_store.insert_notification("alice", "task.created", 'New task created: "A"', "t1")
            b = await api_store.insert_notification("alice", "task.deleted", 'Task deleted: "A"', "t1")
            await api_store.insert_notification("bob", "task.created", 'New task created: "B"', "t2")
            return a, b

        return asyncio.run(seed())

    def test_list(self, client, seeded):
        r = client.get("/notifications", headers=ALICE)
        assert r.status_code == 200
        items = r.json()["notifications"]
        assert len(items) == 2
        assert all(n["user_id"] == "alice" for n in items)

    def test_unread_count_and_mark_read(self, client, seeded):
        first, _ = seeded
        assert client.get("/notifications/unread/count", headers=ALICE).json() == {"unread_count": 2}

        r = client.put(f"/notifications/{first.id}/read", headers=ALICE)
        assert r.status_code == 200
        assert r.json()["notification"]["read"] is True
        # second call is a no-op
        assert client.put(f"/notifications/{first.id}/read", headers=ALICE).status_code == 200

        assert client.get("/notifications/unread/count", headers=ALICE).json() == {"unread_count": 1}
        unread = client.get("/notifications", params={"read": "false"}, headers=ALICE).json()
        assert [n["event_type"] for n in unread["notifications"]] == ["task.deleted"]
        read = client.get("/notifications", params={"read": "true"}, headers=ALICE).json()
        assert [n["id"] for n in read["notifications"]] == [first.id]

    def test_mark_read_foreign_notification(self, client, seeded):
        first, _ = seeded
        r = client.put(f"/notifications/{first.id}/read", headers=BOB)
        assert r.status_code == 404
        assert r.json()["detail"] == "Notification not found"
