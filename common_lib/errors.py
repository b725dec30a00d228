"""공통 에러 클래스 정의(Common error classes)."""
from __future__ import annotations

from typing import Any, Dict, Optional


class AppException(Exception):
    """애플리케이션 기본 예외 클래스(Base application exception)."""

    def __init__(
        self,
        status_code: int,
        error_code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Initialize exception with structured error information.

        Args:
            status_code: HTTP status code (e.g., 404, 503, 400)
            error_code: Machine-readable error code (e.g., "PACKAGE_NOT_FOUND")
            message: Human-readable error message
            details: Additional error context (optional)
        """
        self.status_code = status_code
        self.error_code = error_code
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response."""
        response: Dict[str, Any] = {
            "error": {
                "code": self.error_code,
                "message": self.message,
            }
        }
        if self.details:
            response["error"]["details"] = self.details
        return response


class ValidationError(AppException):
    """형식이 잘못된 입력 또는 응답(Malformed input or response shape - 400)."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            status_code=400,
            error_code="VALIDATION_ERROR",
            message=message,
            details=details,
        )


class InvalidInputError(AppException):
    """유효하지 않은 입력(Invalid input - 400)."""

    def __init__(
        self,
        field: str,
        reason: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Initialize with validation context.

        Args:
            field: Field name that failed validation
            reason: Why the field is invalid
            details: Additional context
        """
        message = f"Invalid input for '{field}': {reason}"
        super().__init__(
            status_code=400,
            error_code="INVALID_INPUT",
            message=message,
            details=details or {"field": field, "reason": reason},
        )


class NotFoundError(AppException):
    """패키지를 찾을 수 없음(Package not found - 404)."""

    def __init__(self, name: str, version: Optional[str] = None) -> None:
        identifier = f"{name}@{version}" if version else name
        super().__init__(
            status_code=404,
            error_code="PACKAGE_NOT_FOUND",
            message=f"Package '{identifier}' not found.",
            details={"package": name, **({"version": version} if version else {})},
        )
        self.name = name
        self.version = version


class NetworkError(AppException):
    """네트워크 전송 실패(Transport failure - 503)."""

    def __init__(self, target: str, reason: str) -> None:
        super().__init__(
            status_code=503,
            error_code="NETWORK_ERROR",
            message=f"Network error while contacting {target}: {reason}",
            details={"target": target, "reason": reason},
        )
        self.target = target


class RequestTimeoutError(AppException):
    """요청 시간 초과(Request timed out - 504)."""

    def __init__(self, target: str, timeout: Optional[float] = None) -> None:
        suffix = f" after {timeout:g}s" if timeout else ""
        super().__init__(
            status_code=504,
            error_code="TIMEOUT_ERROR",
            message=f"Request to {target} timed out{suffix}.",
            details={"target": target, **({"timeout": timeout} if timeout else {})},
        )
        self.target = target
        self.timeout = timeout


class RateLimitError(AppException):
    """요청 한도 초과(Rate limited - 429)."""

    def __init__(self, target: str, retry_after: Optional[float] = None) -> None:
        super().__init__(
            status_code=429,
            error_code="RATE_LIMIT",
            message=f"Rate limit exceeded for {target}. Please try again later.",
            details={"target": target, **({"retry_after": retry_after} if retry_after is not None else {})},
        )
        self.target = target
        self.retry_after = retry_after


class ApiError(AppException):
    """상위 API 오류 응답(Upstream API error response - 502).

    The error code is derived from the upstream status: 401/403 map to
    ``INVALID_API_KEY``, 5xx to ``SERVER_ERROR`` and everything else to
    ``API_ERROR``.
    """

    def __init__(self, target: str, status: int, body: str = "") -> None:
        if status in (401, 403):
            code = "INVALID_API_KEY"
        elif 500 <= status < 600:
            code = "SERVER_ERROR"
        else:
            code = "API_ERROR"
        details: Dict[str, Any] = {"target": target, "status": status}
        if body:
            details["body"] = body[:500]
        super().__init__(
            status_code=502,
            error_code=code,
            message=f"{target} responded with HTTP {status}.",
            details=details,
        )
        self.target = target
        self.status = status


class ParseError(AppException):
    """응답 파싱 실패(Response could not be parsed - 502)."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            status_code=502,
            error_code="PARSE_ERROR",
            message=message,
            details=details,
        )


class ExpiredJobError(AppException):
    """만료된 작업(Job result expired - 410)."""

    def __init__(self, job_id: str) -> None:
        super().__init__(
            status_code=410,
            error_code="JOB_EXPIRED",
            message="Job expired (results are only available for 1 hour)",
            details={"job_id": job_id},
        )
        self.job_id = job_id


class VersionResolutionError(AppException):
    """버전 범위 해석 실패(Version range could not be resolved - 422)."""

    def __init__(self, name: str, version_range: str) -> None:
        super().__init__(
            status_code=422,
            error_code="VERSION_RESOLUTION_ERROR",
            message=f"Could not resolve version range '{version_range}' for '{name}'.",
            details={"package": name, "range": version_range},
        )


class MissingApiKeyError(AppException):
    """API 키 누락(No API credential available - 401)."""

    def __init__(self, provider: str) -> None:
        super().__init__(
            status_code=401,
            error_code="API_KEY_REQUIRED",
            message=f"An API key is required for provider '{provider}'.",
            details={"provider": provider},
        )


class ConfigurationError(AppException):
    """서버 설정 오류(Server misconfiguration - 500)."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            status_code=500,
            error_code="CONFIGURATION_ERROR",
            message=message,
            details=details,
        )


class DispatchError(AppException):
    """작업 디스패치 실패(Job could not be dispatched - 502)."""

    def __init__(self, job_id: str, reason: str) -> None:
        super().__init__(
            status_code=502,
            error_code="DISPATCH_ERROR",
            message="Failed to start background analysis.",
            details={"job_id": job_id, "reason": reason},
        )
        self.job_id = job_id


def classify_error_code(exc: BaseException) -> str:
    """작업 실패 코드 분류(Map an exception to a job-failure error code)."""

    if isinstance(exc, ApiError):
        return exc.error_code if exc.error_code != "API_ERROR" else "UNKNOWN_ERROR"
    if isinstance(exc, MissingApiKeyError):
        return "INVALID_API_KEY"
    if isinstance(exc, InvalidInputError):
        return "VALIDATION_ERROR"
    if isinstance(exc, (RateLimitError, RequestTimeoutError, NetworkError, ParseError, ValidationError)):
        return exc.error_code
    return "UNKNOWN_ERROR"
