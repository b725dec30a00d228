"""AI 요약 큐 워커(Queue worker executing summary jobs pushed by InspectorAPI)."""
from __future__ import annotations

import asyncio
import json
import signal
import time
import traceback
from typing import Any, Dict, Optional

import redis.asyncio as redis
from pydantic import ValidationError as PydanticValidationError

from common_lib.config import get_settings, load_environment
from common_lib.job_store import build_job_store, require_shared_store
from common_lib.logger import get_logger, setup_logging
from summary_worker.app.models import SummaryTask
from summary_worker.app.service import SummaryService

logger = get_logger("worker")

MAX_CONNECTION_RETRIES = 5
RECONNECT_DELAY_SECONDS = 5
POP_TIMEOUT_SECONDS = 2


def failed_queue_key(queue_key: str) -> str:
    return f"{queue_key}:failed"


def decode_task(task_json: str) -> SummaryTask:
    """큐 항목 해석(Decode and validate one queued task).

    Raises:
        ValueError: payload is not JSON
        pydantic.ValidationError: payload is not a summary task
    """
    return SummaryTask.model_validate(json.loads(task_json))


def _load_object(task_json: str) -> Optional[Dict[str, Any]]:
    try:
        data = json.loads(task_json)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def dead_letter_payload(task_json: str, exc: BaseException) -> str:
    """DLQ 페이로드 생성(Attach error metadata without leaking the caller's key)."""

    failed_task = _load_object(task_json)
    if failed_task is None:
        return task_json
    failed_task.pop("apiKey", None)
    failed_task["error_msg"] = str(exc)
    failed_task["error_timestamp"] = int(time.time() * 1000)
    return json.dumps(failed_task)


async def process_task(service: SummaryService, r: redis.Redis, queue_key: str, task_json: str) -> None:
    """작업 하나 처리(Run one task; undecodable tasks go to the dead-letter list)."""

    try:
        task = decode_task(task_json)
    except (ValueError, PydanticValidationError) as exc:
        logger.error("Undecodable task moved to %s: %s", failed_queue_key(queue_key), exc)
        payload = _load_object(task_json)
        if payload is not None and payload.get("jobId"):
            # execute() records the validation failure for the poller
            await service.execute(payload)
        await r.rpush(failed_queue_key(queue_key), dead_letter_payload(task_json, exc))
        return

    logger.info("Processing summary job %s (model=%s)", task.job_id, task.model)
    record = await service.execute(task)
    if record is None:
        raise RuntimeError(f"Result for job {task.job_id} could not be stored")


async def connect(redis_url: str) -> Optional[redis.Redis]:
    for attempt in range(1, MAX_CONNECTION_RETRIES + 1):
        try:
            r = redis.from_url(redis_url, decode_responses=True)
            await r.ping()
            logger.info("Redis connected")
            return r
        except redis.RedisError as e:
            logger.error("Failed to connect to Redis (attempt %d/%d): %s", attempt, MAX_CONNECTION_RETRIES, e)
            if attempt < MAX_CONNECTION_RETRIES:
                await asyncio.sleep(RECONNECT_DELAY_SECONDS)
    logger.critical("Max connection retries reached. Exiting worker.")
    return None


async def worker() -> None:
    load_environment()
    setup_logging()
    settings = get_settings()
    queue_key = settings.job_queue_key
    require_shared_store(settings)
    logger.info("Starting worker, connecting to Redis at %s", settings.redis_url)

    r = await connect(settings.redis_url)
    if r is None:
        return

    service = SummaryService(build_job_store(settings.job_backend), ttl_seconds=settings.job_ttl_seconds)

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def signal_handler() -> None:
        logger.info("Shutdown signal received")
        stop_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            # Windows does not support add_signal_handler
            pass

    logger.info("Worker ready and watching %s", queue_key)
    while not stop_event.is_set():
        try:
            # 짧은 타임아웃으로 종료 신호 확인
            result = await r.blpop(queue_key, timeout=POP_TIMEOUT_SECONDS)
            if not result:
                continue
            _, task_json = result
            try:
                await process_task(service, r, queue_key, task_json)
            except redis.RedisError:
                raise
            except Exception as e:
                logger.error("Task failed and will be moved to DLQ: %s", e)
                logger.debug(traceback.format_exc())
                await r.rpush(failed_queue_key(queue_key), dead_letter_payload(task_json, e))
        except asyncio.CancelledError:
            break
        except redis.RedisError as e:
            if stop_event.is_set():
                break
            logger.error("Redis connection error: %s", e)
            logger.info("Attempting to reconnect to Redis in %d seconds...", RECONNECT_DELAY_SECONDS)
            await asyncio.sleep(RECONNECT_DELAY_SECONDS)
            try:
                await r.ping()
                logger.info("Redis connection restored")
            except redis.RedisError:
                logger.error("Redis reconnection failed, will retry on next iteration")

    await r.aclose()
    logger.info("Worker stopped")


if __name__ == "__main__":
    try:
        asyncio.run(worker())
    except KeyboardInterrupt:
        pass
