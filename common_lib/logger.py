"""로깅 설정(Logging setup)."""
from __future__ import annotations

import logging
import sys

_logging_configured = False


def setup_logging(level: str | None = None, fmt: str | None = None) -> None:
    """루트 로거를 한 번만 구성(Configure the root logger exactly once).

    Args:
        level: Log level name; defaults to ``Settings.log_level``
        fmt: ``"text"`` or ``"json"``; defaults to ``Settings.log_format``
    """
    global _logging_configured
    if _logging_configured:
        return

    from .config import get_settings

    settings = get_settings()
    level = (level or settings.log_level or "INFO").upper()
    fmt = fmt or settings.log_format

    handler = logging.StreamHandler(sys.stdout)
    if fmt == "json":
        from .observability import CustomJsonFormatter

        handler.setFormatter(CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s"))
    else:
        # 가장 단순하고 안전한 기본 설정 (JSON 아님)
        handler.setFormatter(
            logging.Formatter("[%(asctime)s] %(levelname)s in %(module)s: %(message)s")
        )

    logging.basicConfig(level=level, handlers=[handler], force=True)

    # 라이브러리 로그 레벨 조정
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    _logging_configured = True


def get_logger(name: str) -> logging.Logger:
    """명명된 로거 가져오기(Get a named logger).

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger instance
    """
    setup_logging()
    return logging.getLogger(name)
