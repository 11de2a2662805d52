"""Tests for the HTTP API status codes and response shapes."""

import pytest
from fastapi.testclient import TestClient

from cliphy.api import app, get_services

from conftest import player_json

URL = "https://youtube.com/watch?v=dQw4w9WgXcQ"
HEADERS = {"X-User-Id": "u1"}


@pytest.fixture
def client(services):
    app.dependency_overrides[get_services] = lambda: services
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_requires_user_header(client) -> None:
    res = client.get("/api/queue")
    assert res.status_code == 401
    assert res.json()["code"] == "UNAUTHORIZED"


def test_add_to_queue(client) -> None:
    res = client.post("/api/queue", json={"videoUrl": URL, "videoTitle": "T"}, headers=HEADERS)
    assert res.status_code == 201
    body = res.json()
    assert body["position"] == 1
    summary = body["summary"]
    assert summary["videoId"] == "dQw4w9WgXcQ"
    assert summary["status"] == "completed"
    assert summary["summaryJson"]["keyPoints"]
    assert "transcript" not in summary


def test_add_invalid_url(client) -> None:
    res = client.post("/api/queue", json={"videoUrl": "https://example.com"}, headers=HEADERS)
    assert res.status_code == 400
    assert "invalid" in res.json()["error"].lower()


def test_add_missing_url_is_validation_error(client) -> None:
    res = client.post("/api/queue", json={}, headers=HEADERS)
    assert res.status_code == 400
    assert res.json()["code"] == "VALIDATION_ERROR"


def test_duplicate_returns_409(client) -> None:
    client.post("/api/queue", json={"videoUrl": URL}, headers=HEADERS)
    res = client.post("/api/queue", json={"videoUrl": URL}, headers=HEADERS)
    assert res.status_code == 409
    assert res.json()["code"] == "DUPLICATE"


def test_rate_limited_returns_429(client, services) -> None:
    for _ in range(5):
        services.ledger.check_and_increment("u1", 5)
    res = client.post(
        "/api/queue",
        json={"videoUrl": "https://www.youtube.com/watch?v=jNQXAC9IVRw"},
        headers=HEADERS,
    )
    assert res.status_code == 429
    body = res.json()
    assert body["code"] == "RATE_LIMITED"
    assert body["limit"] == 5
    assert body["plan"] == "free"


def test_batch_status_codes(client, services) -> None:
    res = client.post("/api/queue/batch", json={"videos": [{"videoUrl": URL}]}, headers=HEADERS)
    assert res.status_code == 403
    assert res.json()["code"] == "PRO_REQUIRED"

    res = client.post("/api/queue/batch", json={"videos": []}, headers=HEADERS)
    assert res.status_code == 400

    res = client.post("/api/queue/batch", json={"videos": [{"videoUrl": URL}] * 11}, headers=HEADERS)
    assert res.status_code == 400
    assert "10" in res.json()["error"]

    services.store.set_plan("u1", "pro")
    res = client.post(
        "/api/queue/batch",
        json={"videos": [{"videoUrl": URL}, {"videoUrl": "https://youtu.be/jNQXAC9IVRw"}]},
        headers=HEADERS,
    )
    assert res.status_code == 201
    body = res.json()
    assert len(body["summaries"]) == 2
    assert body["rateLimited"] is False
    assert body["skipped"] == []


def test_queue_list_get_retry_delete(client, services, youtube) -> None:
    youtube.player = player_json(tracks=None)
    item_id = client.post("/api/queue", json={"videoUrl": URL}, headers=HEADERS).json()["summary"]["id"]

    items = client.get("/api/queue", headers=HEADERS).json()["items"]
    assert [i["id"] for i in items] == [item_id]

    item = client.get(f"/api/queue/{item_id}", headers=HEADERS).json()["item"]
    assert item["status"] == "failed"
    assert "captions" in item["errorMessage"]

    assert client.get(f"/api/queue/{item_id}", headers={"X-User-Id": "u2"}).status_code == 404

    res = client.delete(f"/api/queue/{item_id}", headers=HEADERS)
    assert res.status_code == 200
    assert res.json()["deleted"] is True
    assert client.delete(f"/api/queue/{item_id}", headers=HEADERS).status_code == 404


def test_retry_endpoint(client, youtube) -> None:
    youtube.player = player_json(tracks=None)
    item_id = client.post("/api/queue", json={"videoUrl": URL}, headers=HEADERS).json()["summary"]["id"]

    youtube.player = player_json([{"baseUrl": "https://www.youtube.com/api/timedtext?v=x", "languageCode": "en"}])
    res = client.post(f"/api/queue/{item_id}/retry", headers=HEADERS)
    assert res.status_code == 200
    assert res.json()["summary"]["status"] == "completed"
    assert res.json()["summary"]["errorMessage"] is None

    assert client.post(f"/api/queue/{item_id}/retry", headers=HEADERS).status_code == 409


def test_delete_processing_returns_409(client, services) -> None:
    item = services.store.insert_item("u1", "dQw4w9WgXcQ", URL)
    services.store.mark_processing(item.id)
    res = client.delete(f"/api/queue/{item.id}", headers=HEADERS)
    assert res.status_code == 409


def test_summaries_endpoints(client) -> None:
    item_id = client.post(
        "/api/queue", json={"videoUrl": URL, "videoTitle": "GitHub CLI"}, headers=HEADERS
    ).json()["summary"]["id"]

    body = client.get("/api/summaries?limit=500", headers=HEADERS).json()
    assert body["total"] == 1
    assert body["limit"] == 100
    assert body["offset"] == 0

    res = client.get("/api/summaries/search", headers=HEADERS)
    assert res.status_code == 400
    assert "required" in res.json()["error"]

    found = client.get("/api/summaries/search?q=github", headers=HEADERS).json()
    assert found["total"] == 1

    detail = client.get(f"/api/summaries/{item_id}", headers=HEADERS)
    assert detail.status_code == 200
    assert detail.json()["summary"]["videoTitle"] == "GitHub CLI"

    export = client.get(f"/api/summaries/{item_id}/export", headers=HEADERS)
    assert export.status_code == 200
    assert export.text.startswith("# GitHub CLI")

    assert client.delete(f"/api/summaries/{item_id}", headers=HEADERS).json()["deleted"] is True
    assert client.get(f"/api/summaries/{item_id}", headers=HEADERS).status_code == 404
    assert client.delete(f"/api/summaries/{item_id}", headers=HEADERS).status_code == 404


def test_usage(client) -> None:
    client.post("/api/queue", json={"videoUrl": URL, "videoDurationSeconds": 120}, headers=HEADERS)
    usage = client.get("/api/usage", headers=HEADERS).json()["usage"]
    assert usage["used"] == 1
    assert usage["limit"] == 5
    assert usage["plan"] == "free"
    assert usage["totalTimeSavedSeconds"] == 120
    assert usage["resetAt"]


def test_summarize_one_off(client, youtube) -> None:
    res = client.post("/api/summarize", json={"videoId": "dQw4w9WgXcQ"}, headers=HEADERS)
    assert res.status_code == 200
    assert res.json()["keyPoints"]

    youtube.player = player_json(tracks=None)
    res = client.post("/api/summarize", json={"videoId": "dQw4w9WgXcQ"}, headers=HEADERS)
    assert res.status_code == 422
    assert "captions" in res.json()["error"]

    res = client.post("/api/summarize", json={"videoId": ""}, headers=HEADERS)
    assert res.status_code == 400
