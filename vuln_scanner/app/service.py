"""OSV 취약점 조회 서비스(OSV vulnerability lookup service)."""
from __future__ import annotations

import asyncio
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from cvss import CVSS2, CVSS3, CVSS4

from common_lib.cache import ResultCache
from common_lib.config import get_settings
from common_lib.errors import AppException, ValidationError
from common_lib.http_retry import RetryingHttpClient, require_https
from common_lib.logger import get_logger
from metadata_fetcher.app.service import is_exact_version, validate_package_name

from .models import PackageQuery, Severity, VulnerabilityRecord, classify_label

logger = get_logger(__name__)

MAX_BATCH_SIZE = 1000
CRITICAL_THRESHOLD = 9.0
HIGH_THRESHOLD = 7.0
MEDIUM_THRESHOLD = 4.0

_CVSS_PARSERS = (("CVSS_V3", CVSS3), ("CVSS_V4", CVSS4), ("CVSS_V2", CVSS2))


def classify_score(score: Optional[float]) -> Severity:
    """점수를 심각도로 변환(Map a CVSS score to a severity; missing means Medium)."""

    if score is None:
        return Severity.MEDIUM
    if score >= CRITICAL_THRESHOLD:
        return Severity.CRITICAL
    if score >= HIGH_THRESHOLD:
        return Severity.HIGH
    if score >= MEDIUM_THRESHOLD:
        return Severity.MEDIUM
    return Severity.LOW


def parse_cvss_score(entries: Any) -> Optional[float]:
    """CVSS 벡터 점수 계산(Score the preferred CVSS vector: v3, then v4, then v2)."""

    if not isinstance(entries, list):
        return None
    by_type = {entry.get("type"): entry.get("score") for entry in entries if isinstance(entry, dict)}
    for kind, parser in _CVSS_PARSERS:
        vector = by_type.get(kind)
        if not vector:
            continue
        try:
            return float(parser(vector).base_score)
        except Exception as exc:
            logger.warning("Failed to parse %s vector %s: %s", kind, vector, exc)
            return None
    return None


def classify(detail: Mapping[str, Any]) -> tuple:
    """상세 레코드의 점수와 심각도(Return (score, severity) for an OSV record)."""

    score = parse_cvss_score(detail.get("severity"))
    if score is not None:
        return score, classify_score(score)
    database_specific = detail.get("database_specific")
    label = database_specific.get("severity") if isinstance(database_specific, dict) else None
    return None, classify_label(label)


def split_batches(queries: Sequence[PackageQuery], size: int = MAX_BATCH_SIZE) -> List[List[PackageQuery]]:
    """배치 분할(Split queries into consecutive batches of at most ``size``)."""

    size = max(1, min(size, MAX_BATCH_SIZE))
    return [list(queries[i:i + size]) for i in range(0, len(queries), size)]


def build_record(detail: Mapping[str, Any], package: str, version: Optional[str]) -> VulnerabilityRecord:
    score, severity = classify(detail)
    aliases = detail.get("aliases") if isinstance(detail.get("aliases"), list) else []
    cve_id = next((alias for alias in aliases if isinstance(alias, str) and alias.startswith("CVE-")), None)
    summary = detail.get("summary") or ""
    details = detail.get("details") or ""
    references = [ref for ref in detail.get("references") or [] if isinstance(ref, dict)]
    return VulnerabilityRecord(
        package=package,
        version=version,
        id=detail.get("id") or "Unknown",
        cve_id=cve_id,
        severity=severity,
        cvss_score=score,
        summary=summary or "No summary available",
        details=details,
        description=summary or details or "No description available",
        references=references,
        published=detail.get("published"),
        modified=detail.get("modified"),
    )


class VulnerabilityService:
    """OSV 배치 조회 서비스(Service querying OSV in batches and normalizing findings)."""

    def __init__(
        self,
        http: RetryingHttpClient,
        cache: ResultCache,
        osv_url: Optional[str] = None,
        batch_size: Optional[int] = None,
        detail_concurrency: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self._http = http
        self._cache = cache
        self._osv_url = require_https(osv_url or settings.osv_url, "osv_url")
        self._batch_size = batch_size or settings.osv_batch_size
        self._detail_concurrency = detail_concurrency or settings.osv_detail_concurrency

    @staticmethod
    def build_queries(dependencies: Any) -> List[PackageQuery]:
        """조회 목록 생성(Validate a name to version map and build OSV queries).

        Entries whose version is not exact are left out with a warning.
        """
        if not isinstance(dependencies, Mapping):
            raise ValidationError("Dependencies must be a mapping of name to version")
        queries: List[PackageQuery] = []
        for name, version in dependencies.items():
            name = validate_package_name(name)
            if not isinstance(version, str):
                raise ValidationError(
                    f"Version for package '{name}' must be a string",
                    {"package": name},
                )
            if not is_exact_version(version):
                logger.warning("Skipping %s@%s: not an exact version", name, version)
                continue
            queries.append(PackageQuery(name=name, version=version.strip()))
        return queries

    async def check(self, dependencies: Mapping[str, str]) -> List[VulnerabilityRecord]:
        """취약점 조회(Look up known vulnerabilities for every exact dependency).

        Batches are independent; a failed batch is logged and skipped.
        Results are deduplicated by (package, id) and sorted by severity,
        score descending, then package name.
        """
        queries = self.build_queries(dependencies)
        if not queries:
            logger.info("No dependencies to check")
            return []

        batches = split_batches(queries, self._batch_size)
        logger.info("Checking %d dependencies in %d batch(es)", len(queries), len(batches))

        records: List[VulnerabilityRecord] = []
        for index, batch in enumerate(batches, start=1):
            results = await self._query_batch(index, len(batches), batch)
            if results is None:
                continue
            records.extend(await self._hydrate(batch, results))

        unique: Dict[str, VulnerabilityRecord] = {}
        for record in records:
            unique.setdefault(f"{record.package}::{record.id}", record)
        ordered = sorted(unique.values(), key=VulnerabilityRecord.sort_key)
        logger.info("Found %d vulnerabilities across %d dependencies", len(ordered), len(queries))
        return ordered

    async def _query_batch(
        self, index: int, total: int, batch: List[PackageQuery]
    ) -> Optional[List[Any]]:
        cache_key = "osv:batch:" + ",".join(sorted(f"{q.name}@{q.version}" for q in batch))
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        try:
            data = await self._http.post_json(
                f"{self._osv_url}/v1/querybatch",
                {"queries": [query.to_osv() for query in batch]},
            )
            results = data.get("results") if isinstance(data, dict) else None
            if not isinstance(results, list):
                raise ValidationError("Invalid OSV response: missing results array")
        except AppException as exc:
            logger.warning(
                "OSV batch %d/%d failed (%d packages, %s..%s): %s",
                index,
                total,
                len(batch),
                batch[0].name,
                batch[-1].name,
                exc.message,
            )
            return None

        if len(results) != len(batch):
            logger.warning(
                "OSV batch %d/%d length mismatch: expected %d, got %d",
                index,
                total,
                len(batch),
                len(results),
            )
        self._cache.set(cache_key, results)
        return results

    async def _hydrate(self, batch: List[PackageQuery], results: List[Any]) -> List[VulnerabilityRecord]:
        affected: Dict[str, List[PackageQuery]] = {}
        slim: Dict[str, Dict[str, Any]] = {}
        for query, result in zip(batch, results):
            vulns = result.get("vulns") if isinstance(result, dict) else None
            for vuln in vulns or []:
                if not isinstance(vuln, dict) or not vuln.get("id"):
                    continue
                affected.setdefault(vuln["id"], []).append(query)
                slim.setdefault(vuln["id"], vuln)
        if not affected:
            return []

        semaphore = asyncio.Semaphore(self._detail_concurrency)
        ids = list(affected)
        details = await asyncio.gather(*(self._fetch_detail(vuln_id, semaphore) for vuln_id in ids))

        records: List[VulnerabilityRecord] = []
        for vuln_id, detail in zip(ids, details):
            source = detail if detail is not None else slim[vuln_id]
            for query in affected[vuln_id]:
                records.append(build_record(source, query.name, query.version))
        return records

    async def _fetch_detail(self, vuln_id: str, semaphore: asyncio.Semaphore) -> Optional[Dict[str, Any]]:
        cache_key = f"osv:vuln:{vuln_id}"
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached
        try:
            async with semaphore:
                detail = await self._http.get_json(f"{self._osv_url}/v1/vulns/{vuln_id}")
        except AppException as exc:
            logger.warning("OSV detail fetch failed for %s: %s", vuln_id, exc.message)
            return None
        if not isinstance(detail, dict):
            logger.warning("OSV detail for %s was not an object", vuln_id)
            return None
        self._cache.set(cache_key, detail)
        return detail


def count_by_severity(records: Iterable[VulnerabilityRecord]) -> Dict[str, int]:
    """심각도별 개수(Count findings per severity)."""

    counts = {severity.value: 0 for severity in Severity}
    for record in records:
        counts[record.severity.value] += 1
    return counts
