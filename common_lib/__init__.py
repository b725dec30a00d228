"""공통 라이브러리 패키지 초기화(Common library package init)."""
from . import ai_clients, cache, config, errors, http_retry, job_store, logger

__all__ = [
    "ai_clients",
    "cache",
    "config",
    "errors",
    "http_retry",
    "job_store",
    "logger",
]
