import hashlib
import hmac
import json

import anyio
import pytest
from fastapi.testclient import TestClient

from thread_sync.errors import RemoteError
from thread_sync.models import Thread
from thread_sync.server import create_webhook_app
from thread_sync.webhooks import create_app

PR_EVENT = {
    "action": "edited",
    "pull_request": {"node_id": "PR_owner/repo_5", "number": 5},
    "repository": {"full_name": "owner/repo", "html_url": "https://github.com/owner/repo"},
}


@pytest.fixture
def client(reconciler, monkeypatch):
    monkeypatch.delenv("WEBHOOK_SECRET", raising=False)
    return TestClient(create_app(reconciler))


@pytest.fixture
def imported(reconciler):
    thread = Thread(repository_id=10, external_service_id=1, external_id="PR_owner/repo_5", title="Old", number=5)
    return anyio.run(reconciler.threads.insert_thread, thread)


def _post(client, payload, event="pull_request", **headers):
    return client.post("/webhook", json=payload, headers={"X-GitHub-Event": event, **headers})


def test_webhook_missing_signature(client, monkeypatch):
    monkeypatch.setenv("WEBHOOK_SECRET", "test_secret")
    response = _post(client, PR_EVENT)
    assert response.status_code == 400
    assert "Missing signature" in response.json()["detail"]


def test_webhook_invalid_signature(client, monkeypatch):
    monkeypatch.setenv("WEBHOOK_SECRET", "test_secret")
    response = _post(client, PR_EVENT, **{"X-Hub-Signature-256": "sha256=invalid"})
    assert response.status_code == 401
    assert "Signature mismatch" in response.json()["detail"]


def test_webhook_valid_signature(reconciler, github, node, imported):
    client = TestClient(create_app(reconciler, secret="test_secret"))
    github.on("thread_by_node_id", {"node": node(5, title="Renamed")})
    payload = json.dumps(PR_EVENT).encode()
    digest = hmac.new(b"test_secret", payload, hashlib.sha256).hexdigest()

    response = client.post(
        "/webhook",
        content=payload,
        headers={
            "X-Hub-Signature-256": f"sha256={digest}",
            "Content-Type": "application/json",
            "X-GitHub-Event": "pull_request",
        },
    )

    assert response.status_code == 202
    assert response.json() == {"status": "updated", "thread_id": imported.id}


def test_webhook_refreshes_imported_thread(client, reconciler, github, node, imported):
    github.on("thread_by_node_id", {"node": node(5, title="Renamed", state="CLOSED")})

    response = _post(client, PR_EVENT)

    assert response.status_code == 202
    thread = anyio.run(reconciler.threads.find_thread_by_id, imported.id)
    assert thread.title == "Renamed"
    assert thread.state == "CLOSED"


def test_webhook_issue_event(client, github, node, reconciler):
    issue = Thread(repository_id=10, external_service_id=1, external_id="I_owner/repo_3", title="Old", number=3)
    saved = anyio.run(reconciler.threads.insert_thread, issue)
    github.on("thread_by_node_id", {"node": node(3, kind="Issue")})

    response = _post(
        client,
        {"action": "closed", "issue": {"node_id": "I_owner/repo_3"}, "repository": PR_EVENT["repository"]},
        event="issues",
    )

    assert response.json() == {"status": "updated", "thread_id": saved.id}


def test_webhook_thread_not_imported(client, github):
    response = _post(client, PR_EVENT)

    assert response.status_code == 202
    assert response.json()["reason"] == "thread not imported"
    assert github.calls == []


def test_webhook_unknown_repository(client):
    payload = {**PR_EVENT, "repository": {"full_name": "x/y", "html_url": "https://github.com/x/y"}}

    response = _post(client, payload)

    assert response.status_code == 202
    assert response.json()["status"] == "ignored"


def test_webhook_unhandled_event(client):
    response = _post(client, {"zen": "Keep it logically awesome."}, event="ping")
    assert response.status_code == 202
    assert response.json()["status"] == "ignored"


def test_webhook_missing_event_header(client):
    response = client.post("/webhook", json=PR_EVENT)
    assert response.status_code == 400


def test_webhook_schema_validation(client):
    response = _post(client, {"action": "opened"})
    assert response.status_code == 400
    assert "Invalid payload" in response.json()["detail"]


def test_webhook_non_object_payload(client):
    response = _post(client, ["not", "an", "object"])
    assert response.status_code == 400


def test_webhook_entity_gone(client, github, imported):
    github.on("thread_by_node_id", {"node": None})

    response = _post(client, PR_EVENT)

    assert response.status_code == 202
    assert response.json()["status"] == "ignored"


def test_webhook_remote_failure(client, github, imported):
    github.on("thread_by_node_id", RemoteError("GitHub API error: 502", status_code=502))

    response = _post(client, PR_EVENT)

    assert response.status_code == 502


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_app_from_env_uses_configured_secret(tmp_path, monkeypatch):
    monkeypatch.delenv("WEBHOOK_SECRET", raising=False)
    config = tmp_path / "thread-sync.yaml"
    config.write_text(
        """
webhook_secret: yaml_secret
code_hosts:
  - {id: 1, url: "https://github.com", token: t}
repositories:
  - {id: 10, name: github.com/owner/repo, external_id: R_repo, external_service_id: 1}
"""
    )
    env = {"THREAD_SYNC_CONFIG": str(config), "THREAD_SYNC_DB": str(tmp_path / "threads.db")}
    payload = json.dumps(PR_EVENT).encode()
    digest = hmac.new(b"yaml_secret", payload, hashlib.sha256).hexdigest()

    with TestClient(create_webhook_app(env)) as client:
        unsigned = client.post("/webhook", content=payload, headers={"X-GitHub-Event": "pull_request"})
        signed = client.post(
            "/webhook",
            content=payload,
            headers={
                "X-Hub-Signature-256": f"sha256={digest}",
                "Content-Type": "application/json",
                "X-GitHub-Event": "pull_request",
            },
        )

    assert unsigned.status_code == 400
    assert signed.status_code == 202
    assert signed.json() == {"status": "ignored", "reason": "thread not imported"}
