"""공통 설정 모듈(Common configuration module)."""
from __future__ import annotations

import os
from functools import lru_cache
from typing import Any, Dict

from dotenv import load_dotenv
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """시스템 환경설정(System environment settings)."""

    model_config = SettingsConfigDict(
        env_prefix="INSPECTOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    app_name: str = Field(default="package-inspector", description="서비스 이름(Service name)")
    environment: str = Field(default="development", description="실행 환경(Runtime environment)")

    registry_url: str = Field(
        default="https://registry.npmjs.org",
        description="npm 레지스트리 주소(npm registry base URL)",
    )
    osv_url: str = Field(default="https://api.osv.dev", description="OSV API 주소(OSV API base URL)")
    github_api_url: str = Field(
        default="https://api.github.com",
        description="GitHub API 주소(GitHub API base URL)",
    )

    http_timeout_seconds: float = Field(default=30.0, description="외부 요청 타임아웃(Outbound request timeout)")
    max_retry_attempts: int = Field(default=3, ge=1, description="최대 재시도 횟수(Max attempts per request)")

    cache_ttl_seconds: int = Field(default=3600, gt=0, description="결과 캐시 TTL(Result cache TTL in seconds)")
    github_stats_ttl_seconds: int = Field(
        default=900,
        gt=0,
        description="GitHub 통계 캐시 TTL(GitHub stats cache TTL in seconds)",
    )

    resolver_max_depth: int = Field(default=3, ge=0, description="의존성 탐색 최대 깊이(Max traversal depth)")
    resolver_concurrency: int = Field(default=10, ge=1, description="동시 메타데이터 요청 수(Concurrent fetch cap)")

    osv_batch_size: int = Field(default=1000, ge=1, le=1000, description="OSV 배치 크기(OSV batch size)")
    osv_detail_concurrency: int = Field(default=10, ge=1, description="OSV 상세 조회 동시성(Detail fetch cap)")

    job_ttl_seconds: int = Field(default=3600, gt=0, description="작업 결과 보존 시간(Job result TTL in seconds)")
    job_backend: str = Field(default="memory", description="작업 저장소(Job store backend: memory|redis)")
    dispatch_mode: str = Field(default="inline", description="작업 실행 방식(Dispatch mode: inline|queue)")
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis 접속 URL(Redis connection URL)")
    job_queue_key: str = Field(default="summary_tasks", description="작업 큐 키(Job queue key)")

    ai_provider: str = Field(
        default="",
        validation_alias=AliasChoices("INSPECTOR_AI_PROVIDER", "AI_PROVIDER"),
        description="AI 제공자(AI provider: openai|openrouter)",
    )
    openai_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("INSPECTOR_OPENAI_API_KEY", "OPENAI_API_KEY"),
        description="OpenAI API 키(OpenAI API key)",
    )
    openrouter_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("INSPECTOR_OPENROUTER_API_KEY", "OPENROUTER_API_KEY"),
        description="OpenRouter API 키(OpenRouter API key)",
    )
    default_model: str = Field(default="", description="기본 모델(Default model id)")
    ai_timeout_seconds: float = Field(default=600.0, description="AI 요청 타임아웃(AI request timeout)")
    ai_max_tokens: int = Field(default=1000, description="최대 토큰 수(Max completion tokens)")
    ai_temperature: float = Field(default=0.7, description="샘플링 온도(Sampling temperature)")
    site_url: str = Field(default="", description="OpenRouter HTTP-Referer 헤더(Referer header)")
    site_name: str = Field(default="The Inspector", description="OpenRouter X-Title 헤더(Title header)")

    allow_external_calls: bool = Field(
        default=True,
        description="외부 API 호출 허용 여부(Allow outbound API calls in this environment)",
    )
    include_github_stats: bool = Field(
        default=True,
        description="GitHub 통계 조회 여부(Fetch GitHub maintenance stats)",
    )

    log_level: str = Field(default="INFO", description="로그 레벨(Log level)")
    log_format: str = Field(default="text", description="로그 형식(Log format: text|json)")

    @field_validator("ai_provider", "job_backend", "dispatch_mode", "log_format", mode="before")
    @classmethod
    def normalize_choice(cls, v: Any) -> str:
        """공백 제거 및 소문자화(Trim and lower-case choice values)."""
        if v is None:
            return ""
        return str(v).strip().lower()


@lru_cache(maxsize=1)
def get_settings(overrides: Dict[str, Any] | None = None) -> Settings:
    """설정 인스턴스 반환(Return a cached settings instance)."""

    if overrides:
        return Settings(**overrides)
    return Settings()


def load_environment() -> None:
    """기본 환경변수를 로드(Load .env and base environment variables)."""

    load_dotenv()
    os.environ.setdefault("TZ", "UTC")
