"""AI 요약 실행 서비스(AI summary execution service)."""
from __future__ import annotations

import time
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from common_lib.ai_clients import IAIClient, OpenAICompatibleClient, get_provider
from common_lib.config import get_settings
from common_lib.errors import AppException, ParseError, ValidationError, classify_error_code
from common_lib.job_store import JobStore
from common_lib.logger import get_logger
from common_lib.observability import bound_request_id

from .models import AISummary, JobRecord, JobStatus, PackageSnapshot, SummaryTask
from .prompts import build_system_prompt, build_user_prompt

logger = get_logger(__name__)

ClientFactory = Callable[[str, str, str], IAIClient]


def default_client_factory(provider: str, api_key: str, model: str) -> IAIClient:
    """기본 AI 클라이언트 생성(Build the OpenAI-compatible client for a provider)."""

    return OpenAICompatibleClient(get_provider(provider), api_key, model=model)


def parse_summary(data: Dict[str, Any]) -> AISummary:
    """AI 응답 검증(Validate required keys and closed enums of the AI response)."""

    try:
        return AISummary.model_validate(data)
    except PydanticValidationError as exc:
        problems = [
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
        ]
        raise ParseError("Invalid AI response: " + "; ".join(problems), {"errors": problems}) from exc


def _failure_message(exc: BaseException) -> str:
    if isinstance(exc, AppException):
        return exc.message
    return str(exc) or "Analysis failed"


class SummaryService:
    """AI 요약 작업 실행기(Executes one summary job and writes its terminal record).

    ``execute`` never raises for job-level failures: every outcome becomes a
    ``completed`` or ``failed`` record so pollers always observe a terminal
    state.
    """

    def __init__(
        self,
        store: JobStore,
        client_factory: Optional[ClientFactory] = None,
        clock: Callable[[], float] = time.time,
        ttl_seconds: Optional[int] = None,
    ) -> None:
        self._store = store
        self._client_factory = client_factory or default_client_factory
        self._clock = clock
        self._ttl_seconds = ttl_seconds or get_settings().job_ttl_seconds

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def execute(self, payload: Any) -> Optional[JobRecord]:
        """작업 실행(Run the AI call, validate the answer and persist the outcome)."""

        job_id = payload.get("jobId") if isinstance(payload, dict) else getattr(payload, "job_id", None)
        if not job_id:
            logger.error("Discarding summary task without a job id")
            return None

        with bound_request_id(str(job_id)):
            submitted_at = self._now_ms()
            try:
                task = payload if isinstance(payload, SummaryTask) else SummaryTask.model_validate(payload)
                submitted_at = task.submitted_at
                record = await self._run(task, submitted_at + self._ttl_seconds * 1000)
            except Exception as exc:
                logger.warning("Summary job %s failed: %s", job_id, _failure_message(exc), exc_info=exc)
                record = JobRecord(
                    status=JobStatus.FAILED,
                    error=_failure_message(exc),
                    error_code=self._error_code(exc),
                    timestamp=self._now_ms(),
                    expires_at=submitted_at + self._ttl_seconds * 1000,
                )
            try:
                await self._store.set(str(job_id), record.to_json())
            except Exception as exc:
                logger.error("Failed to store result for job %s: %s", job_id, exc, exc_info=exc)
                return None
            logger.info("Summary job %s finished with status %s", job_id, record.status.value)
            return record

    @staticmethod
    def _error_code(exc: BaseException) -> str:
        if isinstance(exc, PydanticValidationError):
            return "VALIDATION_ERROR"
        return classify_error_code(exc)

    async def summarize(
        self,
        package_data: Dict[str, Any],
        vulnerabilities: List[Dict[str, Any]],
        provider: str,
        api_key: str,
        model: str,
    ) -> AISummary:
        """AI 요약 생성(Build prompts, call the provider and validate the answer)."""

        try:
            snapshot = PackageSnapshot.model_validate(package_data)
        except PydanticValidationError as exc:
            raise ValidationError("Invalid packageData structure") from exc

        client = self._client_factory(provider, api_key, model)
        user_prompt = build_user_prompt(snapshot, vulnerabilities, now=self._clock())
        logger.info("Requesting AI summary for %s@%s with %s", snapshot.name, snapshot.version, model)

        data = await client.structured_output(user_prompt, system=build_system_prompt())
        return parse_summary(data)

    async def _run(self, task: SummaryTask, expires_at: int) -> JobRecord:
        summary = await self.summarize(
            task.package_data, task.vulnerabilities, task.provider, task.api_key, task.model
        )
        return JobRecord(
            status=JobStatus.COMPLETED,
            result={
                "packageData": task.package_data,
                "vulnerabilities": task.vulnerabilities,
                "summary": summary.model_dump(mode="json", by_alias=True, exclude_none=True),
            },
            timestamp=self._now_ms(),
            expires_at=expires_at,
            model=task.model,
        )
