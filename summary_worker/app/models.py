"""AI 요약 작업 모델(AI summary job models)."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class RiskLevel(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class MaintenanceStatus(str, Enum):
    ACTIVE = "Active"
    STALE = "Stale"
    ABANDONED = "Abandoned"
    UNKNOWN = "Unknown"


class LicenseCompatibility(str, Enum):
    PERMISSIVE = "Permissive"
    COPYLEFT = "Copyleft"
    PROPRIETARY = "Proprietary"
    UNKNOWN = "Unknown"


class JobStatus(str, Enum):
    """작업 상태(Job state: pending, then exactly one terminal state)."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not JobStatus.PENDING


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AISummary(_CamelModel):
    """AI 위험 요약(Validated AI risk summary)."""

    risk_level: RiskLevel
    concerns: List[str] = Field(..., min_length=1)
    recommendations: List[str] = Field(..., min_length=1)
    complexity_assessment: str
    maintenance_status: Optional[MaintenanceStatus] = None
    license_compatibility: Optional[LicenseCompatibility] = None
    maintenance_notes: Optional[str] = None

    @field_validator("complexity_assessment")
    @classmethod
    def require_text(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must be a non-empty string")
        return value


class GithubStats(_CamelModel):
    open_issues: Optional[int] = None


class PackageSnapshot(_CamelModel):
    """요약 대상 패키지 정보(Package data submitted for summarization)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    name: str = Field(..., min_length=1)
    version: str = Field(..., min_length=1)
    dependencies: Dict[str, Any]
    license: Optional[str] = None
    last_publish_date: Optional[datetime] = None
    github_stats: Optional[GithubStats] = None


class SummaryTask(_CamelModel):
    """디스패치되는 작업 페이로드(Payload handed to the executor)."""

    job_id: str
    package_data: Dict[str, Any]
    vulnerabilities: List[Dict[str, Any]]
    model: str
    provider: str
    api_key: str
    submitted_at: int = Field(..., description="제출 시각 epoch ms(Submission time in epoch ms)")


class JobRecord(_CamelModel):
    """저장되는 작업 레코드(Persisted job record)."""

    status: JobStatus
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    timestamp: int
    expires_at: int
    model: Optional[str] = None

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)
