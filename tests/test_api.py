"""API integration tests."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from coachrag.deps import get_completion_client, get_embedding_client
from coachrag.main import app
from coachrag.models import ConversationSession
from coachrag.personalization import FALLBACK_PROMPTS

from tests.conftest import HashedEmbedder

ALICE = {"Authorization": "Bearer token-alice"}
BOB = {"Authorization": "Bearer token-bob"}
ADMIN = {"Authorization": "Bearer admin-secret"}


@pytest.fixture
def client(embedder, completer) -> TestClient:
    app.dependency_overrides[get_embedding_client] = lambda: embedder
    app.dependency_overrides[get_completion_client] = lambda: completer
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_health(client: TestClient) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_query_requires_bearer_token(client: TestClient) -> None:
    assert client.post("/query", json={"question": "hi?"}).status_code == 401
    resp = client.post("/query", json={"question": "hi?"}, headers={"Authorization": "Bearer nope"})
    assert resp.status_code == 401
    assert resp.headers["www-authenticate"] == "Bearer"


def test_query_flow_with_session(client: TestClient, make_document, low_threshold) -> None:
    doc = make_document("alice", "q3-report.pdf", ["The quarterly revenue was $4.2M."])
    session = client.post("/sessions", json={"title": "Q3 review"}, headers=ALICE).json()

    resp = client.post(
        "/query",
        json={"question": "What was the quarterly revenue?", "documentId": doc.id, "sessionId": session["id"]},
        headers=ALICE,
    )

    assert resp.status_code == 200
    body = resp.json()
    assert "$4.2M" in body["answer"]
    assert body["id"].startswith("query-")
    assert body["sessionId"] == session["id"]
    assert body["tokensUsed"] == 42
    assert body["fallback"] is False and body["unpersisted"] is False
    assert len(body["sources"]) == 1
    source = body["sources"][0]
    assert source["page"] == 1 and source["documentId"] == doc.id and source["chunkIndex"] == 0
    assert source["similarity"] == round(source["similarity"], 2)

    messages = client.get(f"/sessions/{session['id']}/messages", headers=ALICE).json()
    assert [m["role"] for m in messages] == ["user", "assistant"]
    assert messages[1]["id"] == body["assistantMessageId"]
    assert messages[1]["actionType"] == "document_response"


def test_query_without_matches_is_a_normal_answer(client: TestClient, completer) -> None:
    resp = client.post("/query", json={"question": "What did the board decide?"}, headers=ALICE)

    assert resp.status_code == 200
    body = resp.json()
    assert body["fallback"] is True
    assert body["sources"] == []
    assert body["tokensUsed"] == 0
    assert completer.calls == []


def test_blank_question_is_rejected(client: TestClient) -> None:
    assert client.post("/query", json={"question": ""}, headers=ALICE).status_code == 422
    resp = client.post("/query", json={"question": "   "}, headers=ALICE)
    assert resp.status_code == 400
    assert resp.json()["error"] == "invalid_request"


def test_foreign_session_is_forbidden(client: TestClient) -> None:
    session = client.post("/sessions", json={}, headers=BOB).json()

    resp = client.post("/query", json={"question": "Anything?", "sessionId": session["id"]}, headers=ALICE)
    assert resp.status_code == 403
    assert resp.json()["error"] == "forbidden"
    assert client.get(f"/sessions/{session['id']}/messages", headers=ALICE).status_code == 403
    assert client.get("/sessions/missing/messages", headers=ALICE).status_code == 404
    assert [s["id"] for s in client.get("/sessions", headers=BOB).json()] == [session["id"]]
    assert client.get("/sessions", headers=ALICE).json() == []


def test_embedding_outage_is_retryable_error(client: TestClient) -> None:
    app.dependency_overrides[get_embedding_client] = lambda: HashedEmbedder(fail=True)

    resp = client.post("/query", json={"question": "What was revenue?"}, headers=ALICE)

    assert resp.status_code == 503
    assert resp.json() == {
        "error": "embedding_unavailable",
        "detail": "embedding service unavailable, retry later",
        "retryable": True,
    }


def test_cleanup_requires_admin_token(client: TestClient) -> None:
    assert client.get("/admin/cleanup").status_code == 401
    assert client.get("/admin/cleanup", headers=ALICE).status_code == 401


def test_cleanup_dry_run_then_live(client: TestClient, db, make_session) -> None:
    for age in (10, 40, 400):
        make_session("alice", age_days=age)

    dry = client.get("/admin/cleanup", params={"days_old": 30, "dry_run": True, "verbose": True}, headers=ADMIN)
    assert dry.status_code == 200
    dry_body = dry.json()
    assert dry_body["success"] is True
    assert dry_body["scheduled_sessions_found"] == 2
    assert dry_body["execution_mode"] == "DRY_RUN"
    assert [s["days_until_deletion"] for s in dry_body["scheduled_sessions"]] == [0, 0, 20]
    assert db.query(ConversationSession).count() == 3

    live = client.post("/admin/cleanup", json={"days_old": 30}, headers=ADMIN)
    assert live.status_code == 200
    assert live.json()["result"]["sessions_deleted"] == 2
    assert "execution_mode" not in live.json()
    db.expire_all()
    assert db.query(ConversationSession).count() == 1


def test_cleanup_rejects_bad_options(client: TestClient) -> None:
    assert client.get("/admin/cleanup", params={"batch_size": 0}, headers=ADMIN).status_code == 422


def test_prompts_for_user_without_profile(client: TestClient) -> None:
    resp = client.post("/prompts", json={"userId": "alice", "count": 3}, headers=ALICE)

    assert resp.status_code == 200
    assert resp.json() == {"prompts": FALLBACK_PROMPTS[:3], "usage": {"tokensUsed": 0}}


def test_prompts_for_another_user_are_forbidden(client: TestClient) -> None:
    resp = client.post("/prompts", json={"userId": "bob", "count": 3}, headers=ALICE)

    assert resp.status_code == 403


def test_prompts_count_limits(client: TestClient) -> None:
    resp = client.post("/prompts", json={"userId": "alice", "count": 20}, headers=ALICE)
    assert resp.status_code == 200
    assert len(resp.json()["prompts"]) == 20

    assert client.post("/prompts", json={"userId": "alice", "count": 21}, headers=ALICE).status_code == 422


def test_openapi_documents_error_body(client: TestClient) -> None:
    paths = client.get("/openapi.json").json()["paths"]

    ref = paths["/query"]["post"]["responses"]["503"]["content"]["application/json"]["schema"]["$ref"]
    assert ref.endswith("/ErrorResponse")
    assert "409" in paths["/admin/cleanup"]["post"]["responses"]
