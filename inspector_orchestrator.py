"""패키지 검사 파이프라인 오케스트레이터 모듈."""
from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from common_lib.errors import AppException
from common_lib.logger import get_logger
from dependency_resolver.app.models import ResolvedDependencySet
from dependency_resolver.app.service import DependencyResolver
from metadata_fetcher.app.models import PackageMetadata
from metadata_fetcher.app.service import RegistryService, validate_package_name
from vuln_scanner.app.models import Severity, VulnerabilityRecord
from vuln_scanner.app.service import VulnerabilityService

ProgressCallback = Callable[[str, str], None]
Summarizer = Callable[[Dict[str, Any], List[Dict[str, Any]]], Awaitable[Any]]

logger = get_logger(__name__)

TOP_FINDINGS = 3


def _noop_progress(step: str, message: str) -> None:
    logger.debug("[%s] %s", step, message)


def package_snapshot(metadata: PackageMetadata) -> Dict[str, Any]:
    """요약 요청용 패키지 데이터(Package data in the shape the summary job accepts)."""

    snapshot: Dict[str, Any] = {
        "name": metadata.name,
        "version": metadata.version,
        "description": metadata.description,
        "license": metadata.license or "Unknown",
        "dependencies": dict(metadata.dependencies),
        "repository": metadata.repository_url,
        "maintainers": list(metadata.maintainers),
        "lastPublishDate": metadata.published_at.isoformat() if metadata.published_at else None,
    }
    if metadata.maintenance is not None and metadata.maintenance.open_issues is not None:
        snapshot["githubStats"] = {"openIssues": metadata.maintenance.open_issues}
    return snapshot


def group_by_severity(records: List[VulnerabilityRecord]) -> Dict[str, List[Dict[str, Any]]]:
    grouped: Dict[str, List[VulnerabilityRecord]] = {severity.value.lower(): [] for severity in Severity}
    for record in records:
        grouped[record.severity.value.lower()].append(record)
    return {
        severity: [
            record.model_dump(mode="json", by_alias=True)
            for record in sorted(items, key=lambda item: -(item.cvss_score or 0.0))
        ]
        for severity, items in grouped.items()
    }


def build_report(
    metadata: PackageMetadata,
    resolved: ResolvedDependencySet,
    vulnerabilities: List[VulnerabilityRecord],
    ai_summary: Optional[Dict[str, Any]],
    started_at: float,
    finished_at: float,
) -> Dict[str, Any]:
    """통합 보고서 생성(Merge resolver, vulnerability and AI outputs into one report)."""

    by_severity = group_by_severity(vulnerabilities)
    findings = [record.model_dump(mode="json", by_alias=True) for record in vulnerabilities]
    summary = ai_summary or {}
    return {
        "packageInfo": {
            "name": metadata.name,
            "version": metadata.version,
            "description": metadata.description,
            "license": metadata.license or "Unknown",
            "repository": metadata.repository_url,
            "maintainers": list(metadata.maintainers),
        },
        "maintenanceInfo": {
            "lastPublishDate": metadata.published_at.isoformat() if metadata.published_at else None,
            "githubStats": (
                {"openIssues": metadata.maintenance.open_issues} if metadata.maintenance is not None else None
            ),
            "maintenanceStatus": summary.get("maintenanceStatus", "Unknown"),
            "maintenanceNotes": summary.get("maintenanceNotes"),
            "licenseCompatibility": summary.get("licenseCompatibility", "Unknown"),
        },
        "dependencyTree": {
            "direct": sorted(metadata.dependencies),
            "directCount": len(metadata.dependencies),
            "transitive": sorted(resolved.transitive),
            "transitiveCount": len(resolved.transitive),
            "total": len(resolved.dependencies),
            "skipped": list(resolved.skipped),
            "maxDepth": resolved.max_depth_reached,
        },
        "vulnerabilities": findings,
        "vulnerabilitiesBySeverity": by_severity,
        "topVulnerabilities": findings[:TOP_FINDINGS],
        "totalVulns": len(findings),
        "criticalCount": len(by_severity["critical"]),
        "highCount": len(by_severity["high"]),
        "mediumCount": len(by_severity["medium"]),
        "lowCount": len(by_severity["low"]),
        "aiSummary": ai_summary,
        "metadata": {
            "analyzedAt": datetime.fromtimestamp(finished_at, tz=timezone.utc).isoformat(),
            "analysisTime": int((finished_at - started_at) * 1000),
        },
    }


class PackageInspector:
    """메타데이터, 의존성, 취약점 단계를 조율하는 오케스트레이터."""

    def __init__(
        self,
        registry: RegistryService,
        resolver: DependencyResolver,
        scanner: VulnerabilityService,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._registry = registry
        self._resolver = resolver
        self._scanner = scanner
        self._clock = clock

    async def inspect(
        self,
        package: str,
        progress_cb: Optional[ProgressCallback] = None,
        summarizer: Optional[Summarizer] = None,
    ) -> Dict[str, Any]:
        """패키지 검사 실행(Run metadata, resolver and vulnerability stages).

        A root metadata failure propagates. A vulnerability lookup failure
        degrades to an empty list and a summary failure to ``None``.
        """
        progress = progress_cb or _noop_progress
        started_at = self._clock()
        package = validate_package_name(package)

        progress("METADATA", f"레지스트리 조회 중(Fetching registry metadata for {package})")
        metadata = await self._registry.fetch_metadata(package)

        progress("RESOLVE", f"의존성 해석 중({len(metadata.dependencies)} direct dependencies)")
        resolved = await self._resolver.resolve(metadata)

        vulnerabilities: List[VulnerabilityRecord] = []
        if resolved.dependencies:
            progress("SCAN", f"취약점 조회 중({len(resolved.dependencies)} dependencies)")
            try:
                vulnerabilities = await self._scanner.check(resolved.dependencies)
            except AppException as exc:
                logger.warning("Vulnerability lookup failed for %s: %s", package, exc.message)
        else:
            progress("SCAN", "조회할 의존성 없음(No dependencies to check)")

        ai_summary: Optional[Dict[str, Any]] = None
        if summarizer is not None:
            progress("SUMMARY", "AI 요약 생성 중(Generating AI summary)")
            try:
                summary = await summarizer(
                    package_snapshot(metadata),
                    [record.model_dump(mode="json", by_alias=True) for record in vulnerabilities],
                )
                ai_summary = summary.model_dump(mode="json", by_alias=True, exclude_none=True)
            except AppException as exc:
                logger.warning("AI summary unavailable for %s: %s", package, exc.message)

        report = build_report(metadata, resolved, vulnerabilities, ai_summary, started_at, self._clock())
        progress(
            "DONE",
            f"검사 완료({report['dependencyTree']['total']} dependencies, {report['totalVulns']} vulnerabilities)",
        )
        return report
