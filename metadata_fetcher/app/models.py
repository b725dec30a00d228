"""패키지 메타데이터 모델(Package metadata models)."""
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class MaintenanceStats(BaseModel):
    """저장소 유지보수 통계(Repository maintenance statistics)."""

    model_config = ConfigDict(frozen=True)

    repository: str = Field(..., description="owner/repo 식별자(owner/repo slug)")
    open_issues: Optional[int] = Field(default=None, description="열린 이슈 수(Open issue count)")


class PackageMetadata(BaseModel):
    """레지스트리 메타데이터(Validated registry metadata for one exact version)."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    description: str = ""
    license: Optional[str] = None
    dependencies: Dict[str, str] = Field(default_factory=dict)
    published_at: Optional[datetime] = None
    repository_url: Optional[str] = None
    maintainers: List[str] = Field(default_factory=list)
    maintenance: Optional[MaintenanceStats] = None

    @property
    def key(self) -> str:
        return f"{self.name}@{self.version}"


class VersionIndex(BaseModel):
    """버전 목록과 태그(Published versions and dist-tags of a package)."""

    model_config = ConfigDict(frozen=True)

    name: str
    versions: List[str] = Field(default_factory=list)
    dist_tags: Dict[str, str] = Field(default_factory=dict)

    @property
    def latest(self) -> Optional[str]:
        return self.dist_tags.get("latest")
