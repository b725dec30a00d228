"""Package inspection pipeline tests."""
from unittest.mock import AsyncMock, MagicMock

import pytest

from common_lib.errors import NetworkError, NotFoundError, ParseError, ValidationError
from conftest import FakeRegistry, make_osv_detail
from dependency_resolver.app.service import DependencyResolver
from inspector_orchestrator import PackageInspector, group_by_severity, package_snapshot
from metadata_fetcher.app.models import MaintenanceStats, PackageMetadata
from summary_worker.app.models import AISummary
from test_summary_worker import VALID_SUMMARY
from vuln_scanner.app.service import build_record

CVSS3_CRITICAL = "CVSS:3.1/AV:N/AC:L/PR:N/UI:N/S:U/C:H/I:H/A:H"


def express_registry() -> FakeRegistry:
    return FakeRegistry(
        {
            "express": {"4.18.2": {"accepts": "~1.3.8", "debug": "2.6.9"}},
            "accepts": {"1.3.8": {"mime-types": "~2.1.34"}},
            "debug": {"2.6.9": {"ms": "2.0.0"}},
            "mime-types": {"2.1.35": {}},
            "ms": {"2.0.0": {}},
        }
    )


def findings():
    return [
        build_record(make_osv_detail("GHSA-crit", vector=CVSS3_CRITICAL), "debug", "2.6.9"),
        build_record(make_osv_detail("GHSA-high", label="HIGH"), "ms", "2.0.0"),
        build_record(make_osv_detail("GHSA-mod", label="MODERATE"), "accepts", "1.3.8"),
        build_record(make_osv_detail("GHSA-low", label="LOW"), "ms", "2.0.0"),
    ]


def make_inspector(registry, scanner, clock):
    return PackageInspector(registry, DependencyResolver(registry, max_depth=3, concurrency=10), scanner, clock=clock)


@pytest.mark.asyncio
async def test_report_merges_all_stages(clock):
    scanner = MagicMock()
    scanner.check = AsyncMock(return_value=findings())
    steps = []

    report = await make_inspector(express_registry(), scanner, clock).inspect(
        "express", progress_cb=lambda step, message: steps.append(step)
    )

    assert steps == ["METADATA", "RESOLVE", "SCAN", "DONE"]
    scanner.check.assert_awaited_once_with(
        {"accepts": "1.3.8", "debug": "2.6.9", "mime-types": "2.1.35", "ms": "2.0.0"}
    )
    assert report["packageInfo"]["name"] == "express"
    assert report["packageInfo"]["license"] == "Unknown"
    tree = report["dependencyTree"]
    assert tree["direct"] == ["accepts", "debug"]
    assert tree["directCount"] == 2
    assert tree["transitive"] == ["mime-types", "ms"]
    assert tree["total"] == 4
    assert tree["maxDepth"] == 2
    assert report["totalVulns"] == 4
    assert (report["criticalCount"], report["highCount"], report["mediumCount"], report["lowCount"]) == (1, 1, 1, 1)
    assert [v["id"] for v in report["topVulnerabilities"]] == ["GHSA-crit", "GHSA-high", "GHSA-mod"]
    assert report["vulnerabilitiesBySeverity"]["critical"][0]["cvssScore"] == 9.8
    assert report["aiSummary"] is None
    assert report["maintenanceInfo"]["maintenanceStatus"] == "Unknown"
    assert report["metadata"]["analysisTime"] == 0


@pytest.mark.asyncio
async def test_package_without_dependencies_skips_scan(clock):
    registry = FakeRegistry({"left-pad": {"1.3.0": {}}})
    scanner = MagicMock()
    scanner.check = AsyncMock()

    report = await make_inspector(registry, scanner, clock).inspect("left-pad")

    scanner.check.assert_not_awaited()
    assert report["dependencyTree"]["total"] == 0
    assert report["totalVulns"] == 0
    assert report["vulnerabilitiesBySeverity"] == {"critical": [], "high": [], "medium": [], "low": [], "unknown": []}


@pytest.mark.asyncio
async def test_scanner_failure_degrades_to_empty_list(clock, caplog):
    scanner = MagicMock()
    scanner.check = AsyncMock(side_effect=NetworkError("https://api.osv.dev", "connection refused"))

    with caplog.at_level("WARNING"):
        report = await make_inspector(express_registry(), scanner, clock).inspect("express")

    assert report["totalVulns"] == 0
    assert report["dependencyTree"]["total"] == 4
    assert any("Vulnerability lookup failed" in record.getMessage() for record in caplog.records)


@pytest.mark.asyncio
async def test_root_failure_propagates(clock):
    scanner = MagicMock()
    scanner.check = AsyncMock()
    with pytest.raises(NotFoundError):
        await make_inspector(FakeRegistry({}), scanner, clock).inspect("ghost")


@pytest.mark.asyncio
async def test_invalid_name_is_rejected_before_fetching(clock):
    registry = express_registry()
    with pytest.raises(ValidationError):
        await make_inspector(registry, MagicMock(), clock).inspect("not a name")
    assert registry.fetch_calls == []


@pytest.mark.asyncio
async def test_summary_is_attached(clock):
    scanner = MagicMock()
    scanner.check = AsyncMock(return_value=findings())
    summarizer = AsyncMock(return_value=AISummary.model_validate(VALID_SUMMARY))

    report = await make_inspector(express_registry(), scanner, clock).inspect("express", summarizer=summarizer)

    package_data, vulns = summarizer.await_args.args
    assert package_data["name"] == "express"
    assert package_data["dependencies"] == {"accepts": "~1.3.8", "debug": "2.6.9"}
    assert len(vulns) == 4
    assert report["aiSummary"]["riskLevel"] == "High"
    assert report["maintenanceInfo"]["maintenanceStatus"] == "Active"
    assert report["maintenanceInfo"]["licenseCompatibility"] == "Permissive"


@pytest.mark.asyncio
async def test_summary_failure_leaves_report_intact(clock):
    scanner = MagicMock()
    scanner.check = AsyncMock(return_value=[])
    summarizer = AsyncMock(side_effect=ParseError("AI response was not valid JSON"))

    report = await make_inspector(express_registry(), scanner, clock).inspect("express", summarizer=summarizer)

    assert report["aiSummary"] is None
    assert report["dependencyTree"]["total"] == 4


def test_package_snapshot_includes_issue_count():
    metadata = PackageMetadata(
        name="lodash",
        version="4.17.21",
        dependencies={},
        maintenance=MaintenanceStats(repository="lodash/lodash", open_issues=42),
    )
    snapshot = package_snapshot(metadata)
    assert snapshot["githubStats"] == {"openIssues": 42}
    assert snapshot["license"] == "Unknown"
    assert snapshot["lastPublishDate"] is None


def test_group_by_severity_orders_by_score():
    records = [
        build_record(make_osv_detail("A", vector="CVSS:3.1/AV:N/AC:L/PR:N/UI:N/S:U/C:H/I:N/A:N"), "p", "1.0.0"),
        build_record(make_osv_detail("B", vector="CVSS:3.1/AV:N/AC:L/PR:N/UI:N/S:U/C:H/I:L/A:N"), "p", "1.0.0"),
    ]
    grouped = group_by_severity(records)
    assert [item["id"] for item in grouped["high"]] == ["B", "A"]
    assert grouped["critical"] == []
