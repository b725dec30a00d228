"""Submit/poll orchestration tests."""
import json
from typing import Any, Dict, List

import pytest

from common_lib.errors import (
    AppException,
    ConfigurationError,
    DispatchError,
    InvalidInputError,
    MissingApiKeyError,
)
from common_lib.job_store import InMemoryJobStore
from conftest import make_settings
from inspector_api.app.dispatch import InlineDispatcher, JobDispatcher, RedisQueueDispatcher, build_dispatcher
from inspector_api.app.service import JobOrchestrator, is_valid_job_id
from summary_worker.app.models import JobStatus, SummaryTask
from summary_worker.app.service import SummaryService
from test_summary_worker import VALID_SUMMARY, StubClient


class RecordingDispatcher(JobDispatcher):
    def __init__(self) -> None:
        self.tasks: List[SummaryTask] = []

    async def dispatch(self, task: SummaryTask) -> None:
        self.tasks.append(task)


class BrokenDispatcher(JobDispatcher):
    async def dispatch(self, task: SummaryTask) -> None:
        raise ConnectionError("queue unavailable")


def submission(**overrides: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "packageData": {"name": "express", "version": "4.18.2", "dependencies": {"accepts": "~1.3.8"}},
        "vulnerabilities": [],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def store():
    return InMemoryJobStore()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def orchestrator(store, dispatcher, clock):
    return JobOrchestrator(store, dispatcher, make_settings(openai_api_key="sk-env"), clock=clock)


@pytest.mark.asyncio
async def test_submit_writes_pending_record_and_dispatches(orchestrator, store, dispatcher, clock):
    response = await orchestrator.submit(submission())

    assert response.status is JobStatus.PENDING
    assert is_valid_job_id(response.job_id)
    body = response.model_dump(by_alias=True)
    assert body["jobId"] == response.job_id

    stored = json.loads(await store.get(response.job_id))
    now_ms = int(clock() * 1000)
    assert stored == {"status": "pending", "timestamp": now_ms, "expiresAt": now_ms + 3_600_000, "model": "gpt-4o"}

    task = dispatcher.tasks[0]
    assert task.job_id == response.job_id
    assert task.provider == "openai"
    assert task.api_key == "sk-env"
    assert task.submitted_at == now_ms


@pytest.mark.asyncio
async def test_dispatch_failure_writes_failed_record(store, clock):
    orchestrator = JobOrchestrator(store, BrokenDispatcher(), make_settings(openai_api_key="sk-env"), clock=clock)

    with pytest.raises(DispatchError) as exc_info:
        await orchestrator.submit(submission())

    job_id = exc_info.value.job_id
    stored = json.loads(await store.get(job_id))
    assert stored["status"] == "failed"
    assert stored["errorCode"] == "DISPATCH_ERROR"

    status = await orchestrator.poll(job_id)
    assert status.status is JobStatus.FAILED
    assert status.error_code == "DISPATCH_ERROR"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        None,
        [],
        {"vulnerabilities": []},
        submission(packageData={"name": "x", "dependencies": {}}),
        submission(packageData={"name": "x", "version": "1.0.0"}),
        submission(packageData={"name": "x", "version": "1.0.0", "dependencies": ["a"]}),
        submission(vulnerabilities={"id": "x"}),
        submission(vulnerabilities=["GHSA-1"]),
        submission(model=42),
    ],
)
async def test_submit_rejects_malformed_payloads(orchestrator, store, payload):
    with pytest.raises(InvalidInputError):
        await orchestrator.submit(payload)
    assert len(store) == 0


@pytest.mark.asyncio
async def test_submit_without_any_key_is_unauthorized(store, dispatcher, clock):
    orchestrator = JobOrchestrator(store, dispatcher, make_settings(), clock=clock)
    with pytest.raises(MissingApiKeyError) as exc_info:
        await orchestrator.submit(submission())
    assert exc_info.value.status_code == 401
    assert len(store) == 0


def test_provider_selection(store, dispatcher, clock):
    def select(caller_key=None, **settings):
        return JobOrchestrator(store, dispatcher, make_settings(**settings), clock=clock).select_provider(caller_key)

    assert select("user-key") == ("openrouter", "user-key")
    assert select(openai_api_key="sk-env") == ("openai", "sk-env")
    assert select("user-key", openai_api_key="sk-env") == ("openrouter", "user-key")
    assert select(ai_provider="openai", openai_api_key="sk-env") == ("openai", "sk-env")
    assert select("user-key", ai_provider="openai") == ("openai", "user-key")
    assert select(ai_provider="openrouter", openrouter_api_key="or-env") == ("openrouter", "or-env")
    with pytest.raises(MissingApiKeyError):
        select(ai_provider="openrouter", openai_api_key="sk-env")
    with pytest.raises(ConfigurationError):
        select("user-key", ai_provider="anthropic")


def test_model_selection_and_allow_list(store, dispatcher, clock):
    orchestrator = JobOrchestrator(store, dispatcher, make_settings(), clock=clock)

    assert orchestrator.select_model("openrouter", None) == "moonshotai/kimi-k2-thinking"
    assert orchestrator.select_model("openrouter", "  OpenAI/GPT-4o ") == "openai/gpt-4o"
    assert orchestrator.select_model("openai", None) == "gpt-4o"
    assert orchestrator.select_model("openai", "gpt-4o-mini") == "gpt-4o-mini"
    with pytest.raises(InvalidInputError) as exc_info:
        orchestrator.select_model("openrouter", "acme/unknown-model")
    assert exc_info.value.details["model"] == "acme/unknown-model"

    configured = JobOrchestrator(store, dispatcher, make_settings(default_model="mistralai/mistral-large"), clock=clock)
    assert configured.select_model("openrouter", None) == "mistralai/mistral-large"


@pytest.mark.asyncio
async def test_submit_rejects_disallowed_openrouter_model(orchestrator, store):
    with pytest.raises(InvalidInputError):
        await orchestrator.submit(submission(model="acme/unknown-model"), caller_key="user-key")
    assert len(store) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("job_id", [None, "", "not-a-uuid", "12345678-1234-1234-1234-12345678901Z"])
async def test_poll_rejects_bad_job_ids(orchestrator, job_id):
    with pytest.raises(InvalidInputError):
        await orchestrator.poll(job_id)


@pytest.mark.asyncio
async def test_poll_unknown_job_is_pending(orchestrator):
    status = await orchestrator.poll("6f1c2d3e-4b5a-4c6d-8e7f-9a0b1c2d3e4f")
    assert status.to_body() == {"status": "pending", "message": "Analysis in progress..."}


@pytest.mark.asyncio
async def test_expired_job_fails_once_then_reads_pending(orchestrator, store, clock):
    response = await orchestrator.submit(submission())

    clock.advance(3599)
    assert (await orchestrator.poll(response.job_id)).status is JobStatus.PENDING

    clock.advance(2)
    expired = await orchestrator.poll(response.job_id)
    assert expired.status is JobStatus.FAILED
    assert expired.error_code == "JOB_EXPIRED"
    assert expired.error == "Job expired (results are only available for 1 hour)"
    assert await store.get(response.job_id) is None

    again = await orchestrator.poll(response.job_id)
    assert again.status is JobStatus.PENDING


@pytest.mark.asyncio
async def test_corrupted_record_is_server_error(orchestrator, store):
    job_id = "6f1c2d3e-4b5a-4c6d-8e7f-9a0b1c2d3e4f"
    await store.set(job_id, "{not json")
    with pytest.raises(AppException) as exc_info:
        await orchestrator.poll(job_id)
    assert exc_info.value.status_code == 500
    assert exc_info.value.error_code == "CORRUPTED_JOB_DATA"


@pytest.mark.asyncio
async def test_unknown_status_is_server_error(orchestrator, store, clock):
    job_id = "6f1c2d3e-4b5a-4c6d-8e7f-9a0b1c2d3e4f"
    expires = int(clock() * 1000) + 10_000
    await store.set(job_id, json.dumps({"status": "running", "timestamp": 1, "expiresAt": expires}))
    with pytest.raises(AppException) as exc_info:
        await orchestrator.poll(job_id)
    assert exc_info.value.error_code == "UNKNOWN_JOB_STATUS"


@pytest.mark.asyncio
async def test_inline_dispatch_runs_job_to_completion(store, clock):
    client = StubClient(json.dumps(VALID_SUMMARY))
    summaries = SummaryService(store, client_factory=lambda *args: client, clock=clock, ttl_seconds=3600)
    dispatcher = InlineDispatcher(summaries)
    orchestrator = JobOrchestrator(store, dispatcher, make_settings(), clock=clock)

    response = await orchestrator.submit(submission(model="openai/gpt-4o"), caller_key="user-key")
    await orchestrator.drain()

    status = await orchestrator.poll(response.job_id)
    assert status.status is JobStatus.COMPLETED
    body = status.to_body()
    assert body["result"]["summary"]["riskLevel"] == "High"
    assert body["result"]["packageData"]["name"] == "express"
    assert dispatcher.in_flight == 0


@pytest.mark.asyncio
async def test_inline_dispatch_records_failure(store, clock):
    summaries = SummaryService(store, client_factory=lambda *args: StubClient("nope"), clock=clock)
    orchestrator = JobOrchestrator(store, InlineDispatcher(summaries), make_settings(openai_api_key="k"), clock=clock)

    response = await orchestrator.submit(submission())
    await orchestrator.drain()

    status = await orchestrator.poll(response.job_id)
    assert status.to_body()["errorCode"] == "PARSE_ERROR"
    assert status.status.is_terminal


def test_build_dispatcher_modes():
    summaries = SummaryService(InMemoryJobStore(), ttl_seconds=3600)
    assert isinstance(build_dispatcher(make_settings(dispatch_mode="inline"), summaries), InlineDispatcher)
    with pytest.raises(ConfigurationError):
        build_dispatcher(make_settings(dispatch_mode="carrier-pigeon"), summaries)
    with pytest.raises(ConfigurationError) as exc_info:
        build_dispatcher(make_settings(dispatch_mode="queue", job_backend="memory"), summaries)
    assert exc_info.value.details["job_backend"] == "memory"
    queued = build_dispatcher(make_settings(dispatch_mode="queue", job_backend="redis"), summaries)
    assert isinstance(queued, RedisQueueDispatcher)
