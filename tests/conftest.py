"""Pytest configuration and shared fixtures."""
import asyncio
from typing import Any, Dict, List, Optional, Set, Tuple

import pytest
import pytest_asyncio

from common_lib.cache import ResultCache
from common_lib.config import get_settings
from common_lib.errors import NotFoundError
from common_lib.http_retry import RetryingHttpClient
from metadata_fetcher.app.models import PackageMetadata
from metadata_fetcher.app.service import select_max_satisfying

REGISTRY = "https://registry.npmjs.org"
OSV = "https://api.osv.dev"


class FakeClock:
    """Manually advanced clock returning epoch seconds."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Sleep replacement that records requested delays without waiting."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FakeRegistry:
    """In-memory stand-in for RegistryService used by resolver tests.

    ``packages`` maps name -> {version: dependency map}; the last listed
    version is the ``latest`` tag.
    """

    def __init__(
        self,
        packages: Dict[str, Dict[str, Dict[str, str]]],
        fail_fetch: Optional[Set[str]] = None,
        fail_range: Optional[Set[str]] = None,
        delay: float = 0.0,
    ) -> None:
        self.packages = packages
        self.fail_fetch = fail_fetch or set()
        self.fail_range = fail_range or set()
        self.delay = delay
        self.range_calls: List[Tuple[str, str]] = []
        self.fetch_calls: List[Tuple[str, Optional[str]]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def _enter(self) -> None:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        await asyncio.sleep(self.delay)

    def _exit(self) -> None:
        self.in_flight -= 1

    async def resolve_range(self, name: str, version_range: str) -> str:
        self.range_calls.append((name, version_range))
        await self._enter()
        try:
            if name in self.fail_range or name not in self.packages:
                raise NotFoundError(name)
            versions = list(self.packages[name])
            return select_max_satisfying(versions, version_range) or versions[-1]
        finally:
            self._exit()

    async def fetch_metadata(self, name: str, version: Optional[str] = None) -> PackageMetadata:
        self.fetch_calls.append((name, version))
        await self._enter()
        try:
            key = f"{name}@{version}" if version else name
            if key in self.fail_fetch or name not in self.packages:
                raise NotFoundError(name, version)
            versions = self.packages[name]
            version = version or list(versions)[-1]
            if version not in versions:
                raise NotFoundError(name, version)
            return PackageMetadata(name=name, version=version, dependencies=versions[version])
        finally:
            self._exit()


def make_packument(
    name: str,
    versions: Dict[str, Dict[str, str]],
    latest: Optional[str] = None,
    license: Optional[str] = "MIT",
    repository: Optional[str] = None,
    published: str = "2024-01-15T10:00:00.000Z",
) -> Dict[str, Any]:
    """Build a registry document for ``GET /{name}``."""

    latest = latest or list(versions)[-1]
    doc: Dict[str, Any] = {
        "name": name,
        "dist-tags": {"latest": latest},
        "versions": {
            version: {
                "name": name,
                "version": version,
                "description": f"{name} package",
                "license": license,
                "dependencies": deps,
                **({"repository": {"type": "git", "url": repository}} if repository else {}),
                "maintainers": [{"name": "jdalton", "email": "j@example.com"}],
            }
            for version, deps in versions.items()
        },
        "time": {"modified": "2024-02-01T00:00:00.000Z", latest: published},
    }
    return doc


def make_osv_detail(
    vuln_id: str,
    vector: Optional[str] = None,
    vector_type: str = "CVSS_V3",
    label: Optional[str] = None,
    aliases: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """Build an OSV record for ``GET /v1/vulns/{id}``."""

    detail: Dict[str, Any] = {
        "id": vuln_id,
        "summary": f"Issue {vuln_id}",
        "details": f"Details for {vuln_id}",
        "aliases": aliases or [],
        "modified": "2024-03-01T00:00:00Z",
        "published": "2024-02-01T00:00:00Z",
        "references": [{"type": "ADVISORY", "url": f"https://osv.dev/{vuln_id}"}],
    }
    if vector:
        detail["severity"] = [{"type": vector_type, "score": vector}]
    if label:
        detail["database_specific"] = {"severity": label}
    return detail


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> ResultCache:
    return ResultCache(ttl_seconds=3600, clock=clock)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest_asyncio.fixture
async def http(recording_sleep: RecordingSleep):
    client = RetryingHttpClient(timeout=5.0, max_attempts=3, sleep=recording_sleep)
    yield client
    await client.aclose()


def make_settings(**overrides: Any):
    """Copy of the process settings with AI credentials cleared."""

    defaults: Dict[str, Any] = {
        "ai_provider": "",
        "openai_api_key": "",
        "openrouter_api_key": "",
        "default_model": "",
        "allow_external_calls": True,
        "job_ttl_seconds": 3600,
        "dispatch_mode": "inline",
        "job_backend": "memory",
    }
    defaults.update(overrides)
    return get_settings().model_copy(update=defaults)
