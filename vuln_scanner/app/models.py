"""취약점 데이터 모델(Vulnerability data models)."""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Severity(str, Enum):
    """정규화된 심각도(Normalized four-level severity plus Unknown)."""

    CRITICAL = "Critical"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"
    UNKNOWN = "Unknown"

    @property
    def rank(self) -> int:
        return SEVERITY_RANK[self]


SEVERITY_RANK: Dict[Severity, int] = {
    Severity.CRITICAL: 0,
    Severity.HIGH: 1,
    Severity.MEDIUM: 2,
    Severity.LOW: 3,
    Severity.UNKNOWN: 4,
}

SEVERITY_LABELS: Dict[str, Severity] = {
    "critical": Severity.CRITICAL,
    "high": Severity.HIGH,
    "important": Severity.HIGH,
    "medium": Severity.MEDIUM,
    "moderate": Severity.MEDIUM,
    "low": Severity.LOW,
}


def classify_label(label: Optional[str]) -> Severity:
    """텍스트 심각도 변환(Case-fold a textual severity onto the four-level scale)."""

    if label is None:
        return Severity.MEDIUM
    return SEVERITY_LABELS.get(str(label).strip().lower(), Severity.UNKNOWN)


class PackageQuery(BaseModel):
    """OSV 조회 항목(One querybatch entry)."""

    name: str
    version: str
    ecosystem: str = "npm"

    def to_osv(self) -> Dict[str, Any]:
        return {"package": {"name": self.name, "ecosystem": self.ecosystem}, "version": self.version}


class VulnerabilityRecord(BaseModel):
    """취약점 결과(Normalized advisory affecting one package version)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    package: str
    version: Optional[str] = None
    id: str
    cve_id: Optional[str] = None
    severity: Severity = Severity.UNKNOWN
    cvss_score: Optional[float] = None
    summary: str = "No summary available"
    details: str = ""
    description: str = "No description available"
    references: List[Dict[str, Any]] = Field(default_factory=list)
    published: Optional[str] = None
    modified: Optional[str] = None

    def sort_key(self) -> tuple:
        return (self.severity.rank, -(self.cvss_score or 0.0), self.package)
