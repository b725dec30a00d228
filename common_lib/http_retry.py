"""재시도 로직 설정 및 HTTP 유틸리티(Retry logic configuration and HTTP utilities)."""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar
from urllib.parse import urlsplit

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from .errors import (
    ApiError,
    AppException,
    NetworkError,
    RateLimitError,
    RequestTimeoutError,
    ValidationError,
)
from .logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
SleepFn = Callable[[float], Awaitable[None]]


def _is_retryable_exception(exc: BaseException) -> bool:
    """재시도 가능한 예외인지 확인(Check if exception is retryable).

    Retryable: network failure, request timeout (including HTTP 408),
    HTTP 429 and HTTP 5xx. Every other 4xx is surfaced immediately.
    """
    if isinstance(exc, (NetworkError, RequestTimeoutError, RateLimitError)):
        return True
    if isinstance(exc, ApiError):
        return 500 <= exc.status < 600
    return False


class wait_retry_after(wait_base):
    """Retry-After 우선 대기 전략(Honor a server supplied Retry-After, else back off)."""

    def __init__(self, fallback: wait_base) -> None:
        self._fallback = fallback

    def __call__(self, retry_state: Any) -> float:
        outcome = retry_state.outcome
        exc = outcome.exception() if outcome is not None and outcome.failed else None
        if isinstance(exc, RateLimitError) and exc.retry_after is not None:
            return max(0.0, float(exc.retry_after))
        return self._fallback(retry_state)


def get_retry_strategy(max_attempts: int = 3, sleep: Optional[SleepFn] = None) -> Dict[str, Any]:
    """AsyncRetrying용 재시도 전략 설정 반환(Return retry strategy configuration for AsyncRetrying).

    Configuration:
    - Max attempts: ``max_attempts`` (3 by default)
    - Backoff: exponential, 2^(attempt-1) seconds (1s, 2s, 4s)
    - 429: server supplied Retry-After when present
    """
    strategy: Dict[str, Any] = {
        "stop": stop_after_attempt(max_attempts),
        "wait": wait_retry_after(wait_exponential(multiplier=1, min=1, max=4)),
        "retry": retry_if_exception(_is_retryable_exception),
        "reraise": True,
    }
    if sleep is not None:
        strategy["sleep"] = sleep
    return strategy


async def execute(
    target: str,
    call: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
    sleep: Optional[SleepFn] = None,
) -> T:
    """재시도 래퍼 실행(Run ``call`` under the retry policy).

    Each attempt is logged with its target, attempt number and outcome.
    Exhausting the attempts re-raises the last typed error.
    """
    async for attempt in AsyncRetrying(**get_retry_strategy(max_attempts, sleep or asyncio.sleep)):
        with attempt:
            number = attempt.retry_state.attempt_number
            try:
                result = await call()
            except AppException as exc:
                logger.warning(
                    "HTTP attempt failed target=%s attempt=%d/%d outcome=%s",
                    target,
                    number,
                    max_attempts,
                    exc.error_code,
                )
                raise
            logger.debug("HTTP attempt ok target=%s attempt=%d/%d", target, number, max_attempts)
            return result
    raise AssertionError("unreachable")  # pragma: no cover


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[float]:
    """Retry-After 헤더 해석(Parse a Retry-After header into seconds).

    Accepts delta-seconds or an HTTP date. Returns None when the value is
    missing or unparseable so the caller falls back to exponential backoff.
    """
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if when is None:
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0.0, (when - now).total_seconds())


def raise_for_response(target: str, response: httpx.Response) -> None:
    """응답 상태를 타입 예외로 변환(Translate a non-2xx response into a typed error)."""

    status = response.status_code
    if status < 400:
        return
    if status == 408:
        raise RequestTimeoutError(target)
    if status == 429:
        raise RateLimitError(target, parse_retry_after(response.headers.get("Retry-After")))
    raise ApiError(target, status, response.text)


def require_https(url: str, field: str = "base_url") -> str:
    """HTTPS URL 강제(Reject non-HTTPS endpoints)."""

    if urlsplit(url).scheme != "https":
        raise ValidationError(f"{field} must use HTTPS: {url}", {"field": field, "url": url})
    return url.rstrip("/")


class RetryingHttpClient:
    """재시도 HTTP 클라이언트(httpx client wrapper applying the retry policy)."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        max_attempts: int = 3,
        sleep: Optional[SleepFn] = None,
        allow_external: bool = True,
    ) -> None:
        self._client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)
        self._owns_client = client is None
        self._timeout = timeout
        self._max_attempts = max_attempts
        self._sleep = sleep
        self._allow_external = allow_external

    async def request(
        self,
        method: str,
        url: str,
        *,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> httpx.Response:
        """재시도 포함 요청(Issue a request with retry, returning a 2xx response)."""

        target = f"{method} {url}"
        if not self._allow_external:
            raise NetworkError(target, "external calls disabled by configuration")
        effective_timeout = timeout or self._timeout

        async def _attempt() -> httpx.Response:
            try:
                response = await self._client.request(
                    method,
                    url,
                    json=json,
                    headers=headers,
                    timeout=effective_timeout,
                )
            except httpx.TimeoutException as exc:
                raise RequestTimeoutError(target, effective_timeout) from exc
            except httpx.RequestError as exc:
                raise NetworkError(target, str(exc) or exc.__class__.__name__) from exc
            raise_for_response(target, response)
            return response

        return await execute(target, _attempt, max_attempts=self._max_attempts, sleep=self._sleep)

    async def get_json(self, url: str, **kwargs: Any) -> Any:
        response = await self.request("GET", url, **kwargs)
        return _decode_json(url, response)

    async def post_json(self, url: str, body: Any, **kwargs: Any) -> Any:
        response = await self.request("POST", url, json=body, **kwargs)
        return _decode_json(url, response)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def _decode_json(url: str, response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise ValidationError(f"Malformed JSON response from {url}", {"url": url}) from exc
