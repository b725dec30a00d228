"""관찰성 및 구조화 로깅(Observability and structured logging)."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator

from pythonjsonlogger import jsonlogger

# Request/job correlation id, "system" outside of any request
request_id_ctx: ContextVar[str] = ContextVar("request_id", default="system")


def get_request_id() -> str:
    """요청 ID 조회(Retrieve the current request ID).

    Returns:
        Current request ID from context, or "system" if not set.
    """
    return request_id_ctx.get()


@contextmanager
def bound_request_id(request_id: str) -> Iterator[str]:
    """요청 ID를 컨텍스트에 바인딩(Bind a correlation id for the enclosed block).

    Used by the HTTP middleware for request ids and by background job
    execution so that every log line of a job carries its job id.
    """
    token = request_id_ctx.set(request_id)
    try:
        yield request_id
    finally:
        request_id_ctx.reset(token)


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """사용자 정의 JSON 포매터(Custom JSON formatter with request ID injection)."""

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any],
    ) -> None:
        """필드 추가 및 요청 ID 삽입(Add fields and inject request ID)."""
        super().add_fields(log_record, record, message_dict)

        if not log_record.get("timestamp"):
            log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record.pop("asctime", None)

        log_record["request_id"] = get_request_id()

        if not log_record.get("level"):
            log_record["level"] = record.levelname
        if not log_record.get("message"):
            log_record["message"] = record.getMessage()
        if not log_record.get("name"):
            log_record["name"] = record.name
