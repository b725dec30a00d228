"""InspectorAPI FastAPI 애플리케이션(InspectorAPI FastAPI application)."""
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from functools import partial
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import APIRouter, FastAPI, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.middleware.base import BaseHTTPMiddleware

from common_lib.cache import ResultCache
from common_lib.config import Settings, get_settings, load_environment
from common_lib.errors import AppException, InvalidInputError
from common_lib.http_retry import RetryingHttpClient
from common_lib.job_store import JobStore, build_job_store, close_redis
from common_lib.logger import get_logger, setup_logging
from common_lib.observability import bound_request_id
from dependency_resolver.app.service import DependencyResolver
from inspector_orchestrator import PackageInspector
from metadata_fetcher.app.service import RegistryService
from summary_worker.app.service import SummaryService
from vuln_scanner.app.service import VulnerabilityService

from .dispatch import JobDispatcher, build_dispatcher
from .service import JobOrchestrator

logger = get_logger(__name__)

limiter = Limiter(key_func=get_remote_address)


@dataclass
class AppContainer:
    """프로세스 단위 서비스 묶음(Services constructed once per process)."""

    settings: Settings
    cache: ResultCache
    http: RetryingHttpClient
    registry: RegistryService
    resolver: DependencyResolver
    scanner: VulnerabilityService
    inspector: PackageInspector
    store: JobStore
    summaries: SummaryService
    dispatcher: JobDispatcher
    orchestrator: JobOrchestrator

    @classmethod
    def build(cls, settings: Optional[Settings] = None) -> "AppContainer":
        settings = settings or get_settings()
        cache = ResultCache(ttl_seconds=settings.cache_ttl_seconds)
        http = RetryingHttpClient(
            timeout=settings.http_timeout_seconds,
            max_attempts=settings.max_retry_attempts,
            allow_external=settings.allow_external_calls,
        )
        registry = RegistryService(http, cache)
        resolver = DependencyResolver(registry)
        scanner = VulnerabilityService(http, cache)
        store = build_job_store(settings.job_backend)
        summaries = SummaryService(store, ttl_seconds=settings.job_ttl_seconds)
        dispatcher = build_dispatcher(settings, summaries)
        return cls(
            settings=settings,
            cache=cache,
            http=http,
            registry=registry,
            resolver=resolver,
            scanner=scanner,
            inspector=PackageInspector(registry, resolver, scanner),
            store=store,
            summaries=summaries,
            dispatcher=dispatcher,
            orchestrator=JobOrchestrator(store, dispatcher, settings),
        )

    async def aclose(self) -> None:
        await self.orchestrator.drain()
        await self.http.aclose()
        if self.settings.job_backend == "redis" or self.settings.dispatch_mode == "queue":
            await close_redis()


class RequestIDMiddleware(BaseHTTPMiddleware):
    """요청 ID 추적 미들웨어(Middleware for request ID tracking and correlation)."""

    async def dispatch(self, request: Request, call_next: Any) -> Any:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        with bound_request_id(request_id):
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handle application exceptions with standardized error format."""
    logger.warning(
        "AppException: %s (code=%s)",
        exc.message,
        exc.error_code,
        extra={"details": exc.details},
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected errors."""
    logger.error(
        "Unexpected error: %s",
        str(exc),
        exc_info=exc,
        extra={"path": request.url.path, "method": request.method},
    )
    return JSONResponse(
        status_code=500,
        content={"error": {"code": "INTERNAL_ERROR", "message": "Unexpected server error"}},
    )


def _container(request: Request) -> AppContainer:
    return request.app.state.container


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


router = APIRouter()


@router.post("/api/v1/analyze/start", tags=["analyze"])
async def start_analysis(
    request: Request,
    authorization: Optional[str] = Header(default=None),
) -> Dict[str, Any]:
    """AI 요약 작업 제출(Submit an AI summary job and return its id immediately).

    The caller's key, when present, comes from ``Authorization: Bearer``.
    """
    try:
        payload = await request.json()
    except ValueError:
        raise InvalidInputError("body", "Invalid JSON in request body")
    response = await _container(request).orchestrator.submit(payload, _bearer_token(authorization))
    return response.model_dump(mode="json", by_alias=True)


@router.get("/api/v1/analyze/status", tags=["analyze"])
async def analysis_status(
    request: Request,
    job_id: Optional[str] = Query(default=None, alias="jobId"),
) -> Dict[str, Any]:
    """작업 상태 조회(Report pending, completed or failed for a job id)."""

    response = await _container(request).orchestrator.poll(job_id)
    return response.to_body()


@router.get("/api/v1/inspect/{package:path}", tags=["inspect"])
@limiter.limit("10/minute")
async def inspect_package(
    request: Request,
    package: str,
    summary: bool = Query(default=False, description="AI 요약 포함 여부(Include an AI summary)"),
    model: Optional[str] = Query(default=None),
    authorization: Optional[str] = Header(default=None),
) -> Dict[str, Any]:
    """패키지 검사(Run the synchronous inspection pipeline for one package).

    Query Parameters:
        summary: also run the AI summary inline (needs a configured or bearer key)
        model: model id for the summary, checked against the provider allow-list
    """
    services = _container(request)
    summarizer = None
    if summary:
        provider, api_key = services.orchestrator.select_provider(_bearer_token(authorization))
        chosen = services.orchestrator.select_model(provider, model)
        summarizer = partial(services.summaries.summarize, provider=provider, api_key=api_key, model=chosen)

    def progress_cb(step: str, message: str) -> None:
        logger.info("[%s] %s", step, message)

    return await services.inspector.inspect(package, progress_cb=progress_cb, summarizer=summarizer)


@router.get("/health", tags=["health"])
async def health_check() -> Dict[str, str]:
    """헬스체크 엔드포인트(Health check endpoint)."""

    return {"status": "ok"}


def create_app(container: Optional[AppContainer] = None) -> FastAPI:
    """애플리케이션 생성(Build the FastAPI app; ``container`` replaces the default services)."""

    load_environment()
    setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.container = container or AppContainer.build()
        logger.info("InspectorAPI started (dispatch=%s)", app.state.container.settings.dispatch_mode)
        try:
            yield
        finally:
            if container is None:
                await app.state.container.aclose()
            logger.info("InspectorAPI stopped")

    app = FastAPI(title="InspectorAPI", lifespan=lifespan)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestIDMiddleware)
    app.include_router(router)
    return app


app = create_app()
