"""AI 요약 작업 오케스트레이터(AI summary job orchestrator)."""
from __future__ import annotations

import json
import re
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from common_lib.ai_clients import get_provider
from common_lib.config import Settings, get_settings
from common_lib.errors import (
    AppException,
    ConfigurationError,
    DispatchError,
    ExpiredJobError,
    InvalidInputError,
    MissingApiKeyError,
)
from common_lib.job_store import JobStore
from common_lib.logger import get_logger
from summary_worker.app.models import JobRecord, JobStatus, SummaryTask

from .dispatch import JobDispatcher
from .models import StartResponse, StatusResponse

logger = get_logger(__name__)

UUID_PATTERN = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)
SUPPORTED_PROVIDERS = ("openai", "openrouter")


def is_valid_job_id(job_id: Any) -> bool:
    return isinstance(job_id, str) and bool(UUID_PATTERN.match(job_id))


def validate_submission(payload: Any) -> Tuple[Dict[str, Any], List[Dict[str, Any]], Optional[str]]:
    """제출 요청 검증(Validate package identity, dependency map and vulnerability list)."""

    if not isinstance(payload, dict):
        raise InvalidInputError("body", "request body must be a JSON object")
    package_data = payload.get("packageData")
    if not isinstance(package_data, dict):
        raise InvalidInputError("packageData", "packageData is required")
    if not package_data.get("name") or not package_data.get("version"):
        raise InvalidInputError("packageData", "name and version are required")
    if not isinstance(package_data.get("dependencies"), dict):
        raise InvalidInputError("packageData.dependencies", "dependencies is required and must be an object")
    vulnerabilities = payload.get("vulnerabilities")
    if not isinstance(vulnerabilities, list):
        raise InvalidInputError("vulnerabilities", "vulnerabilities must be an array")
    if any(not isinstance(vuln, dict) for vuln in vulnerabilities):
        raise InvalidInputError("vulnerabilities", "every vulnerability must be an object")
    model = payload.get("model")
    if model is not None and not isinstance(model, str):
        raise InvalidInputError("model", "model must be a string")
    return package_data, vulnerabilities, model


class JobOrchestrator:
    """제출/조회 오케스트레이터(Submit and poll pair over a job store and a dispatcher).

    States move ``pending -> completed`` or ``pending -> failed`` only. The
    reader enforces expiry: an expired record is deleted on first read.
    """

    def __init__(
        self,
        store: JobStore,
        dispatcher: JobDispatcher,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._settings = settings or get_settings()
        self._clock = clock
        self._ttl_ms = self._settings.job_ttl_seconds * 1000

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def select_provider(self, caller_key: Optional[str]) -> Tuple[str, str]:
        """제공자와 키 선택(Pick the provider and the credential to use).

        Configured provider first; without one a caller key implies
        openrouter and a configured OpenAI key implies openai.
        """
        settings = self._settings
        caller_key = (caller_key or "").strip() or None
        provider = settings.ai_provider
        if not provider and caller_key:
            provider = "openrouter"
        if not provider and settings.openai_api_key:
            provider = "openai"

        api_key = caller_key
        if not api_key:
            api_key = settings.openrouter_api_key if provider == "openrouter" else settings.openai_api_key
        if not api_key:
            raise MissingApiKeyError(provider or "openai")
        if provider not in SUPPORTED_PROVIDERS:
            raise ConfigurationError(
                "Server configuration error: unsupported AI provider value",
                {"provider": provider},
            )
        return provider, api_key

    def select_model(self, provider: str, requested: Optional[str]) -> str:
        """모델 선택 및 허용 목록 검사(Pick the model and check the provider allow-list)."""

        config = get_provider(provider)
        model = (requested or self._settings.default_model or config.default_model).strip().lower()
        if not config.is_model_allowed(model):
            raise InvalidInputError(
                "model",
                f"Model '{model}' is not a supported {provider} model for this application",
                {"field": "model", "model": model, "provider": provider},
            )
        return model

    async def submit(self, payload: Any, caller_key: Optional[str] = None) -> StartResponse:
        """작업 제출(Validate, record a pending job and dispatch it without waiting)."""

        package_data, vulnerabilities, requested_model = validate_submission(payload)
        provider, api_key = self.select_provider(caller_key)
        model = self.select_model(provider, requested_model)

        job_id = str(uuid.uuid4())
        submitted_at = self._now_ms()
        pending = JobRecord(
            status=JobStatus.PENDING,
            timestamp=submitted_at,
            expires_at=submitted_at + self._ttl_ms,
            model=model,
        )
        await self._store.set(job_id, pending.to_json())

        task = SummaryTask(
            job_id=job_id,
            package_data=package_data,
            vulnerabilities=vulnerabilities,
            model=model,
            provider=provider,
            api_key=api_key,
            submitted_at=submitted_at,
        )
        try:
            await self._dispatcher.dispatch(task)
        except Exception as exc:
            logger.error("Failed to dispatch job %s: %s", job_id, exc, exc_info=exc)
            failed = JobRecord(
                status=JobStatus.FAILED,
                error="Failed to trigger background job",
                error_code="DISPATCH_ERROR",
                timestamp=self._now_ms(),
                expires_at=submitted_at + self._ttl_ms,
            )
            await self._store.set(job_id, failed.to_json())
            raise DispatchError(job_id, str(exc)) from exc

        logger.info(
            "Submitted job %s for %s@%s (provider=%s, model=%s)",
            job_id,
            package_data.get("name"),
            package_data.get("version"),
            provider,
            model,
        )
        return StartResponse(job_id=job_id)

    async def poll(self, job_id: Optional[str]) -> StatusResponse:
        """작업 상태 조회(Report the job state; O(1) against the store)."""

        if not job_id:
            raise InvalidInputError("jobId", "jobId query parameter is required")
        if not is_valid_job_id(job_id):
            raise InvalidInputError("jobId", "Invalid jobId format")

        raw = await self._store.get(job_id)
        if raw is None:
            return StatusResponse(status=JobStatus.PENDING, message="Analysis in progress...")

        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            logger.error("Corrupted record for job %s", job_id)
            raise AppException(500, "CORRUPTED_JOB_DATA", "Corrupted job data", {"job_id": job_id})
        if not isinstance(data, dict):
            raise AppException(500, "CORRUPTED_JOB_DATA", "Corrupted job data", {"job_id": job_id})

        expires_at = data.get("expiresAt")
        if isinstance(expires_at, (int, float)) and self._now_ms() > expires_at:
            await self._store.delete(job_id)
            expired = ExpiredJobError(job_id)
            logger.info("Job %s expired; record deleted", job_id)
            return StatusResponse(status=JobStatus.FAILED, error=expired.message, error_code=expired.error_code)

        if data.get("status") not in {status.value for status in JobStatus}:
            logger.error("Unknown status %r for job %s", data.get("status"), job_id)
            raise AppException(500, "UNKNOWN_JOB_STATUS", "Unknown job status", {"job_id": job_id})

        try:
            record = JobRecord.model_validate(data)
        except PydanticValidationError:
            logger.error("Corrupted record for job %s", job_id)
            raise AppException(500, "CORRUPTED_JOB_DATA", "Corrupted job data", {"job_id": job_id})

        if record.status is JobStatus.COMPLETED:
            return StatusResponse(status=JobStatus.COMPLETED, result=record.result)
        if record.status is JobStatus.FAILED:
            return StatusResponse(
                status=JobStatus.FAILED,
                error=record.error or "Analysis failed",
                error_code=record.error_code,
            )
        return StatusResponse(status=JobStatus.PENDING, message="Analysis in progress...")

    async def drain(self) -> None:
        await self._dispatcher.drain()
