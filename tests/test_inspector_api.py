"""InspectorAPI HTTP surface tests."""
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from common_lib.errors import NotFoundError
from conftest import make_settings
from inspector_api.app.main import AppContainer, create_app, limiter
from inspector_api.app.service import JobOrchestrator
from test_job_orchestrator import RecordingDispatcher, submission

REPORT = {"packageInfo": {"name": "lodash"}, "totalVulns": 0}


@pytest.fixture
def container():
    limiter.reset()
    built = AppContainer.build(make_settings(openrouter_api_key=""))
    built.inspector = MagicMock()
    built.inspector.inspect = AsyncMock(return_value=REPORT)
    built.dispatcher = RecordingDispatcher()
    built.orchestrator = JobOrchestrator(built.store, built.dispatcher, built.settings)
    return built


@pytest.fixture
def client(container):
    with TestClient(create_app(container)) as test_client:
        yield test_client


def test_health_echoes_request_id(client):
    response = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert response.headers["X-Request-ID"] == "req-123"

    generated = client.get("/health")
    assert generated.headers["X-Request-ID"]


def test_start_then_poll_pending(client, container):
    response = client.post(
        "/api/v1/analyze/start",
        json=submission(),
        headers={"Authorization": "Bearer user-key"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "pending"
    job_id = body["jobId"]

    task = container.dispatcher.tasks[0]
    assert task.api_key == "user-key"
    assert task.provider == "openrouter"

    status = client.get("/api/v1/analyze/status", params={"jobId": job_id})
    assert status.status_code == 200
    assert status.json() == {"status": "pending", "message": "Analysis in progress..."}


def test_start_without_key_is_unauthorized(client):
    response = client.post("/api/v1/analyze/start", json=submission())
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "API_KEY_REQUIRED"


def test_start_rejects_invalid_json(client):
    response = client.post(
        "/api/v1/analyze/start",
        content=b"{not json",
        headers={"Content-Type": "application/json", "Authorization": "Bearer user-key"},
    )
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_INPUT"


def test_start_rejects_missing_dependencies(client):
    payload = submission(packageData={"name": "x", "version": "1.0.0"})
    response = client.post("/api/v1/analyze/start", json=payload, headers={"Authorization": "Bearer k"})
    assert response.status_code == 400


@pytest.mark.parametrize("params", [{}, {"jobId": "not-a-uuid"}])
def test_status_rejects_bad_job_id(client, params):
    response = client.get("/api/v1/analyze/status", params=params)
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_INPUT"


def test_inspect_returns_report(client, container):
    response = client.get("/api/v1/inspect/lodash")
    assert response.status_code == 200
    assert response.json() == REPORT
    args, kwargs = container.inspector.inspect.await_args
    assert args == ("lodash",)
    assert kwargs["summarizer"] is None


def test_inspect_accepts_scoped_names(client, container):
    response = client.get("/api/v1/inspect/@babel/core")
    assert response.status_code == 200
    assert container.inspector.inspect.await_args.args == ("@babel/core",)


def test_inspect_with_summary_binds_provider(client, container):
    response = client.get(
        "/api/v1/inspect/lodash",
        params={"summary": "true", "model": "openai/gpt-4o"},
        headers={"Authorization": "Bearer user-key"},
    )
    assert response.status_code == 200
    summarizer = container.inspector.inspect.await_args.kwargs["summarizer"]
    assert summarizer.keywords == {"provider": "openrouter", "api_key": "user-key", "model": "openai/gpt-4o"}


def test_inspect_summary_without_key_is_unauthorized(client):
    response = client.get("/api/v1/inspect/lodash", params={"summary": "true"})
    assert response.status_code == 401


def test_inspect_unknown_package_is_not_found(client, container):
    container.inspector.inspect.side_effect = NotFoundError("ghost")
    response = client.get("/api/v1/inspect/ghost")
    assert response.status_code == 404
    error = response.json()["error"]
    assert error["code"] == "PACKAGE_NOT_FOUND"
    assert error["details"]["package"] == "ghost"


def test_inspect_is_rate_limited(client):
    statuses = [client.get("/api/v1/inspect/lodash").status_code for _ in range(11)]
    assert statuses[:10] == [200] * 10
    assert statuses[10] == 429


def test_unexpected_error_is_internal_error(container):
    container.inspector.inspect.side_effect = RuntimeError("boom")
    with TestClient(create_app(container), raise_server_exceptions=False) as client:
        response = client.get("/api/v1/inspect/lodash")
    assert response.status_code == 500
    assert response.json()["error"]["code"] == "INTERNAL_ERROR"
