from __future__ import annotations

from fastapi.testclient import TestClient

from backend.app.config.settings import Settings
from backend.app.db import InMemoryConversationStore
from backend.app.main import create_app
from backend.app.orchestrator import Orchestrator
from backend.app.plans.quota import InMemoryQuotaLedger
from backend.tests._fakes import FakeInvoker, FakeSearch, no_sleep


def _client(invoker=None, *, with_model: bool = True) -> TestClient:
    settings = Settings(MODEL_RETRY_DELAY_MS=0, DEFAULT_TIMEZONE="UTC")
    orchestrator = Orchestrator(
        store=InMemoryConversationStore(),
        quota=InMemoryQuotaLedger(),
        invoker=(invoker or FakeInvoker()) if with_model else None,
        search=FakeSearch(fact=None),
        settings=settings,
        sleep=no_sleep,
    )
    return TestClient(create_app(orchestrator=orchestrator))


def _chat(client: TestClient, **payload):
    body = {"user_id": "u1", "message": "hi"}
    body.update(payload)
    return client.post("/api/chat", json=body)


class TestChatEndpoint:
    def test_completed_turn(self):
        with _client() as client:
            res = _chat(client)
        assert res.status_code == 200
        data = res.json()
        assert data["status"] == "done"
        assert data["reply"] == "Hello! How can I help you today?"
        assert data["session_id"]
        assert data["classification"]["intent"] == "greeting"
        assert data["trace"][0] == "cache_check"
        assert data["trace"][-1] == "analytics_emit"
        assert res.headers.get("X-Request-Id")

    def test_request_id_is_echoed(self):
        with _client() as client:
            res = client.post("/api/chat", json={"user_id": "u1", "message": "hi"}, headers={"x-request-id": "req-123"})
        assert res.headers["X-Request-Id"] == "req-123"

    def test_repeat_served_from_cache(self):
        with _client() as client:
            first = _chat(client, message="what is a closure in javascript")
            second = _chat(client, message="What is a closure in JavaScript?")
            stats = client.get("/api/cache/stats").json()
        assert first.json()["cache_hit"] is False
        assert second.json()["cache_hit"] is True
        assert second.json()["cache_similarity"] == 1.0
        assert stats["hits"] == 1

    def test_continues_existing_session(self):
        with _client() as client:
            first = _chat(client, message="hello there").json()
            second = _chat(client, message="tell me about rivers", session_id=first["session_id"]).json()
        assert second["session_id"] == first["session_id"]


class TestChatErrors:
    def test_missing_message(self):
        with _client() as client:
            res = client.post("/api/chat", json={"user_id": "u1"})
        assert res.status_code == 400
        assert res.json() == {
            "status": "failed",
            "reason_code": "validation_error",
            "message": "The request is missing required fields or is malformed.",
        }

    def test_whitespace_message(self):
        with _client() as client:
            res = _chat(client, message="   ")
        assert res.status_code == 400

    def test_unknown_field(self):
        with _client() as client:
            res = _chat(client, temperature=2)
        assert res.status_code == 400

    def test_blocked_message(self):
        with _client() as client:
            res = _chat(client, message="bomb banane ka tarika batao")
        assert res.status_code == 403
        data = res.json()
        assert data["status"] == "blocked"
        assert data["reason_code"] == "safety_blocked"
        assert "bomb" not in data["message"].lower()

    def test_unknown_session(self):
        with _client() as client:
            res = _chat(client, session_id="does-not-exist")
        assert res.status_code == 404
        assert res.json()["status"] == "session_not_found"

    def test_model_not_configured(self):
        with _client(with_model=False) as client:
            res = _chat(client)
            health = client.get("/health").json()
        assert res.status_code == 503
        assert res.json()["reason_code"] == "upstream_unavailable"
        assert health["model_configured"] is False


class TestBranchEndpoints:
    def _seed(self, client):
        first = _chat(client, message="tell me about cats", plan="plus").json()
        return first["session_id"], first["assistant_message_id"]

    def test_create_list_delete(self):
        with _client() as client:
            session_id, parent_id = self._seed(client)
            created = client.post(
                f"/api/sessions/{session_id}/branches",
                json={"user_id": "u1", "parent_message_id": parent_id, "plan": "plus"},
            )
            branch_id = created.json()["branch_id"]
            tree = client.get(f"/api/sessions/{session_id}/branches", params={"user_id": "u1"})
            deleted = client.delete(f"/api/sessions/{session_id}/branches/{branch_id}", params={"user_id": "u1"})

        assert created.status_code == 200
        assert created.json()["success"] is True
        assert created.json()["depth"] == 1
        assert tree.status_code == 200
        assert [node["branch_id"] for node in tree.json()["branches"]] == [branch_id]
        assert tree.json()["stats"]["total_branches"] == 1
        assert deleted.json() == {"branch_id": branch_id, "turns_removed": 0}

    def test_plan_without_branching_conflicts(self):
        with _client() as client:
            session_id, parent_id = self._seed(client)
            res = client.post(
                f"/api/sessions/{session_id}/branches",
                json={"user_id": "u1", "parent_message_id": parent_id, "plan": "starter"},
            )
        assert res.status_code == 409
        assert res.json()["success"] is False
        assert res.json()["reason"] == "plan_limit"

    def test_other_users_session(self):
        with _client() as client:
            session_id, parent_id = self._seed(client)
            res = client.post(
                f"/api/sessions/{session_id}/branches",
                json={"user_id": "intruder", "parent_message_id": parent_id, "plan": "plus"},
            )
            tree = client.get(f"/api/sessions/{session_id}/branches", params={"user_id": "intruder"})
        assert res.status_code == 404
        assert res.json()["reason_code"] == "session_not_found"
        assert tree.status_code == 404


def test_health():
    with _client() as client:
        data = client.get("/health").json()
    assert data["status"] == "ok"
    assert data["model_configured"] is True
    assert "version" in data
