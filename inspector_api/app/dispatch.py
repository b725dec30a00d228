"""작업 디스패치 백엔드(Job dispatch back-ends)."""
from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Optional, Set

from common_lib.config import Settings, get_settings
from common_lib.errors import ConfigurationError
from common_lib.job_store import get_redis, require_shared_store
from common_lib.logger import get_logger
from summary_worker.app.models import SummaryTask
from summary_worker.app.service import SummaryService

logger = get_logger(__name__)


class JobDispatcher(ABC):
    """작업 디스패처 인터페이스(Starts a summary job outside the request path)."""

    @abstractmethod
    async def dispatch(self, task: SummaryTask) -> None:
        """작업 시작(Start the job; raise when it cannot be started)."""

    async def drain(self) -> None:
        """진행 중 작업 대기(Wait for in-process jobs; no-op for remote back-ends)."""


class InlineDispatcher(JobDispatcher):
    """프로세스 내 비동기 실행(Run jobs as asyncio tasks in this process)."""

    def __init__(self, executor: SummaryService) -> None:
        self._executor = executor
        self._tasks: Set[asyncio.Task] = set()

    async def dispatch(self, task: SummaryTask) -> None:
        job = asyncio.create_task(self._executor.execute(task), name=f"summary-{task.job_id}")
        self._tasks.add(job)
        job.add_done_callback(self._tasks.discard)
        logger.info("Dispatched summary job %s in-process", task.job_id)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class RedisQueueDispatcher(JobDispatcher):
    """Redis 큐 제출(Push jobs onto a Redis list consumed by the worker)."""

    def __init__(self, client: Optional[object] = None, queue_key: Optional[str] = None) -> None:
        self._client = client
        self._queue_key = queue_key or get_settings().job_queue_key

    async def dispatch(self, task: SummaryTask) -> None:
        client = self._client or await get_redis()
        length = await client.rpush(self._queue_key, task.model_dump_json(by_alias=True))
        if not length:
            raise RuntimeError(f"Failed to push job {task.job_id} to {self._queue_key}")
        logger.info("Summary job %s queued on %s (depth=%s)", task.job_id, self._queue_key, length)


def build_dispatcher(settings: Settings, executor: SummaryService) -> JobDispatcher:
    """설정에 맞는 디스패처 생성(Build the dispatcher selected by configuration)."""

    if settings.dispatch_mode in ("", "inline"):
        return InlineDispatcher(executor)
    if settings.dispatch_mode == "queue":
        require_shared_store(settings)
        return RedisQueueDispatcher(queue_key=settings.job_queue_key)
    raise ConfigurationError(
        f"Unknown dispatch mode: {settings.dispatch_mode}",
        {"dispatch_mode": settings.dispatch_mode},
    )
