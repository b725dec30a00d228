"""AI 요약 프롬프트(AI summary prompts)."""
from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from vuln_scanner.app.models import Severity, classify_label

from .models import PackageSnapshot

SYSTEM_PROMPT = """You are a security analyst reviewing an npm package. Analyze the package data and vulnerabilities provided. Provide a plain-English risk assessment suitable for developers of all skill levels.

Your response must be in JSON format with the following structure:
{
  "riskLevel": "Low|Medium|High|Critical",
  "concerns": ["concern1", "concern2", ...],
  "recommendations": ["recommendation1", "recommendation2", ...],
  "complexityAssessment": "paragraph describing dependency complexity",
  "maintenanceStatus": "Active|Stale|Abandoned|Unknown",
  "licenseCompatibility": "Permissive|Copyleft|Proprietary|Unknown",
  "maintenanceNotes": "brief note about maintenance status and license implications"
}

- riskLevel must be one of: Low, Medium, High, Critical
- concerns must be an array of 2-5 key security concern strings
- recommendations must be an array of 2-5 actionable recommendation strings
- complexityAssessment must be a single paragraph describing dependency complexity
- maintenanceStatus: Active (updated within 1 year), Stale (1-2 years), Abandoned (>2 years), Unknown
- licenseCompatibility: Permissive (MIT/Apache/BSD), Copyleft (GPL/LGPL), Proprietary, Unknown
- maintenanceNotes: brief assessment of maintenance health and license implications

Consider open issues count as indicator of active maintenance."""

TOP_VULNERABILITIES = 5
STALE_DAYS = 365
ABANDONED_DAYS = 730


def normalize_severity(value: Any) -> Severity:
    """심각도 문자열 정규화(Same label table as the scanner; a missing severity means Medium)."""

    return classify_label(None if value is None else str(value))


def count_severities(vulnerabilities: Sequence[Dict[str, Any]]) -> Dict[str, int]:
    counts = {severity.value: 0 for severity in Severity}
    for vuln in vulnerabilities:
        counts[normalize_severity(vuln.get("severity")).value] += 1
    return counts


def top_vulnerabilities(
    vulnerabilities: Sequence[Dict[str, Any]], limit: int = TOP_VULNERABILITIES
) -> List[Dict[str, Any]]:
    """가장 심각한 취약점(Most severe findings first, stable within a severity)."""

    ordered = sorted(
        vulnerabilities,
        key=lambda vuln: normalize_severity(vuln.get("severity")).rank,
    )
    return ordered[:limit]


def days_since(when: datetime, now: Optional[float] = None) -> int:
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = time.time() if now is None else now
    return int((now - when.timestamp()) // 86400)


def build_system_prompt() -> str:
    return SYSTEM_PROMPT


def build_user_prompt(
    package: PackageSnapshot,
    vulnerabilities: Sequence[Dict[str, Any]],
    now: Optional[float] = None,
) -> str:
    """사용자 프롬프트 생성(Summarize counts, top findings, license and staleness)."""

    counts = count_severities(vulnerabilities)
    lines = [
        f"Package: {package.name} v{package.version}",
        f"Dependencies: {len(package.dependencies)} direct dependencies",
        "Vulnerabilities: "
        f"{counts['Critical']} Critical, {counts['High']} High, "
        f"{counts['Medium']} Medium, {counts['Low']} Low",
        "",
    ]

    if vulnerabilities:
        lines.append("Top Vulnerabilities:")
        for vuln in top_vulnerabilities(vulnerabilities):
            lines.append(f"- {vuln.get('id', 'Unknown')}: {vuln.get('summary') or 'No summary available'}")
    else:
        lines.append("No known vulnerabilities found.")

    lines.append("")
    lines.append(f"License: {package.license or 'Unknown'}")

    if package.last_publish_date is not None:
        age = days_since(package.last_publish_date, now)
        lines.append(f"Last Published: {age} days ago ({package.last_publish_date.date().isoformat()})")
        if age > ABANDONED_DAYS:
            lines.append("Warning: Package has not been updated in over 2 years (potentially abandoned)")
        elif age > STALE_DAYS:
            lines.append("Warning: Package has not been updated in over 1 year")

    if package.github_stats is not None and package.github_stats.open_issues is not None:
        lines.append(f"Open Issues: {package.github_stats.open_issues}")

    return "\n".join(lines)
