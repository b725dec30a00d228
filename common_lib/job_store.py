"""작업 결과 저장소(Job result backing stores)."""
from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Dict, Optional, cast

import redis.asyncio as redis

if TYPE_CHECKING:  # pragma: no cover - typing only
    from redis.asyncio import Redis
else:
    Redis = Any

from .config import Settings, get_settings
from .errors import ConfigurationError
from .logger import get_logger

logger = get_logger(__name__)
_redis_pool: Optional[Redis] = None
_lock = asyncio.Lock()


async def get_redis() -> Redis:
    """Redis 연결 풀 반환(Return redis connection pool)."""

    global _redis_pool
    if _redis_pool is None:
        async with _lock:
            if _redis_pool is None:
                settings = get_settings()
                logger.info("Connecting to Redis")
                _redis_pool = redis.from_url(
                    settings.redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                )
    return cast(Redis, _redis_pool)


async def close_redis() -> None:
    """Redis 연결 종료(Close redis connection)."""

    global _redis_pool
    if _redis_pool is not None:
        await _redis_pool.aclose()
        _redis_pool = None


class JobStore(ABC):
    """작업 레코드 저장소 인터페이스(Key-value store for serialized job records).

    Values are opaque JSON strings. The store never expires records on its
    own; the poller compares ``expiresAt`` and deletes stale records.
    """

    @abstractmethod
    async def get(self, job_id: str) -> Optional[str]:
        """작업 레코드 조회(Fetch the raw record or None)."""

    @abstractmethod
    async def set(self, job_id: str, payload: str) -> None:
        """작업 레코드 저장(Write the raw record)."""

    @abstractmethod
    async def delete(self, job_id: str) -> None:
        """작업 레코드 삭제(Remove the record)."""


class InMemoryJobStore(JobStore):
    """프로세스 내 저장소(In-process store for single-worker deployments and tests)."""

    def __init__(self) -> None:
        self._records: Dict[str, str] = {}

    async def get(self, job_id: str) -> Optional[str]:
        return self._records.get(job_id)

    async def set(self, job_id: str, payload: str) -> None:
        self._records[job_id] = payload

    async def delete(self, job_id: str) -> None:
        self._records.pop(job_id, None)

    def __len__(self) -> int:
        return len(self._records)


class RedisJobStore(JobStore):
    """Redis 기반 저장소(Redis-backed store shared by the API and the worker)."""

    def __init__(self, client: Optional[Redis] = None, namespace: str = "analysis-results") -> None:
        self._client = client
        self._namespace = namespace

    def _build_key(self, job_id: str) -> str:
        return f"{self._namespace}:{job_id}"

    async def _redis(self) -> Redis:
        if self._client is None:
            self._client = await get_redis()
        return self._client

    async def get(self, job_id: str) -> Optional[str]:
        client = await self._redis()
        return await client.get(self._build_key(job_id))

    async def set(self, job_id: str, payload: str) -> None:
        client = await self._redis()
        await client.set(self._build_key(job_id), payload)

    async def delete(self, job_id: str) -> None:
        client = await self._redis()
        await client.delete(self._build_key(job_id))


def build_job_store(backend: Optional[str] = None) -> JobStore:
    """설정에 맞는 저장소 생성(Build the store selected by configuration)."""

    backend = backend or get_settings().job_backend
    if backend == "redis":
        return RedisJobStore()
    if backend in ("", "memory"):
        return InMemoryJobStore()
    raise ConfigurationError(f"Unknown job backend: {backend}", {"job_backend": backend})


def require_shared_store(settings: Settings) -> None:
    """큐 모드 저장소 검사(Queue mode needs a job store the worker process can write to)."""

    if settings.job_backend != "redis":
        raise ConfigurationError(
            "Queue dispatch requires the redis job backend",
            {"dispatch_mode": settings.dispatch_mode, "job_backend": settings.job_backend or "memory"},
        )
