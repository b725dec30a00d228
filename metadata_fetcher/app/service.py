"""npm 레지스트리 메타데이터 서비스(npm registry metadata service)."""
from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

from pydantic import ValidationError as PydanticValidationError
from semantic_version import NpmSpec, Version

from common_lib.cache import ResultCache
from common_lib.config import get_settings
from common_lib.errors import AppException, ApiError, NotFoundError, ValidationError, VersionResolutionError
from common_lib.http_retry import RetryingHttpClient, require_https
from common_lib.logger import get_logger

from .models import MaintenanceStats, PackageMetadata, VersionIndex

logger = get_logger(__name__)

PACKAGE_NAME_PATTERN = re.compile(r"^(@[a-z0-9\-_.]+/)?[a-z0-9\-_.]+$", re.IGNORECASE)
MAX_PACKAGE_NAME_LENGTH = 214
GITHUB_REPO_PATTERN = re.compile(r"github\.com[/:]([^/\s]+)/([^/#\s]+?)(?:\.git)?(?:[/#].*)?$", re.IGNORECASE)


def validate_package_name(name: Any) -> str:
    """npm 패키지 이름 검증(Validate an npm package name).

    Raises:
        ValidationError: when the name is empty, too long or malformed
    """
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Package name is required", {"field": "name"})
    name = name.strip()
    if len(name) > MAX_PACKAGE_NAME_LENGTH:
        raise ValidationError(
            f"Package name exceeds {MAX_PACKAGE_NAME_LENGTH} characters",
            {"field": "name", "length": len(name)},
        )
    if not PACKAGE_NAME_PATTERN.match(name):
        raise ValidationError(f"Invalid package name: {name}", {"field": "name", "value": name})
    return name


def encode_package_name(name: str) -> str:
    """레지스트리 경로용 이름 인코딩(Percent-encode a name for a registry path)."""

    return quote(name, safe="@")


def parse_github_repository(url: Optional[str]) -> Optional[Tuple[str, str]]:
    """GitHub 저장소 URL 해석(Extract owner/repo from a GitHub repository URL)."""

    if not url:
        return None
    if url.startswith("github:"):
        url = "github.com/" + url[len("github:"):]
    match = GITHUB_REPO_PATTERN.search(url)
    if not match:
        return None
    return match.group(1), match.group(2)


def is_exact_version(value: Any) -> bool:
    """정확한 semver 여부(True when ``value`` is a concrete version, not a range)."""

    if not isinstance(value, str) or not value.strip():
        return False
    try:
        Version(value.strip())
    except ValueError:
        return False
    return True


def select_max_satisfying(versions: List[str], version_range: str) -> Optional[str]:
    """범위를 만족하는 최고 버전 선택(Pick the highest version satisfying an npm range).

    Returns None when the range cannot be parsed or nothing satisfies it.
    """
    version_range = (version_range or "").strip() or "*"
    try:
        spec = NpmSpec(version_range)
    except ValueError:
        return None

    candidates: Dict[Version, str] = {}
    for raw in versions:
        try:
            candidates[Version(raw)] = raw
        except ValueError:
            continue
    best = spec.select(candidates.keys())
    return candidates[best] if best is not None else None


def _extract_repository_url(repository: Any) -> Optional[str]:
    if isinstance(repository, dict):
        repository = repository.get("url")
    if not isinstance(repository, str) or not repository.strip():
        return None
    url = repository.strip()
    if url.startswith("git+"):
        url = url[4:]
    return url


def _extract_maintainers(maintainers: Any) -> List[str]:
    names: List[str] = []
    if not isinstance(maintainers, list):
        return names
    for entry in maintainers:
        if isinstance(entry, dict) and entry.get("name"):
            names.append(str(entry["name"]))
        elif isinstance(entry, str) and entry:
            names.append(entry)
    return names


def _extract_license(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        value = value.get("type")
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _require_dependency_map(name: str, dependencies: Any) -> Dict[str, str]:
    if dependencies is None:
        return {}
    if not isinstance(dependencies, dict):
        raise ValidationError(
            f"Malformed dependency map for {name}",
            {"package": name, "type": type(dependencies).__name__},
        )
    return {str(dep): str(rng) for dep, rng in dependencies.items()}


def _build_metadata(name: str, version: Optional[str], /, **fields: Any) -> PackageMetadata:
    try:
        return PackageMetadata(**fields)
    except PydanticValidationError as exc:
        raise ValidationError(
            f"Malformed registry response for {name}@{version or 'latest'}",
            {"package": name, "version": version, "errors": exc.error_count()},
        ) from exc


class RegistryService:
    """npm 레지스트리 조회 서비스(Service fetching and validating npm registry metadata)."""

    def __init__(
        self,
        http: RetryingHttpClient,
        cache: ResultCache,
        registry_url: Optional[str] = None,
        github_api_url: Optional[str] = None,
        include_github_stats: Optional[bool] = None,
        github_stats_ttl: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self._http = http
        self._cache = cache
        self._registry_url = require_https(registry_url or settings.registry_url, "registry_url")
        self._github_api_url = require_https(github_api_url or settings.github_api_url, "github_api_url")
        self._include_github_stats = (
            settings.include_github_stats if include_github_stats is None else include_github_stats
        )
        self._github_stats_ttl = github_stats_ttl if github_stats_ttl is not None else settings.github_stats_ttl_seconds

    async def _get(self, url: str, name: str, version: Optional[str] = None) -> Any:
        try:
            return await self._http.get_json(url)
        except ApiError as exc:
            if exc.status == 404:
                raise NotFoundError(name, version) from exc
            raise

    async def fetch_metadata(self, name: str, version: Optional[str] = None) -> PackageMetadata:
        """패키지 메타데이터 조회(Fetch validated metadata for ``name`` at ``version`` or latest).

        Raises:
            ValidationError: invalid name or malformed registry response
            NotFoundError: registry answered 404
        """
        name = validate_package_name(name)
        if version:
            return await self._fetch_version(name, version)
        return await self._fetch_latest(name)

    async def _fetch_latest(self, name: str) -> PackageMetadata:
        cache_key = f"npm:{name}"
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        packument = await self._get(f"{self._registry_url}/{encode_package_name(name)}", name)
        index = self._parse_version_index(name, packument)
        self._cache.set(f"npm:meta:{name}", index)

        latest = index.latest
        version_data = packument["versions"].get(latest)
        if not isinstance(version_data, dict):
            raise ValidationError(
                f"Latest version {latest} missing from registry response for {name}",
                {"package": name, "version": latest},
            )
        times = packument.get("time") if isinstance(packument.get("time"), dict) else {}

        repository_url = _extract_repository_url(version_data.get("repository") or packument.get("repository"))
        maintenance = await self.fetch_maintenance_stats(repository_url) if self._include_github_stats else None

        metadata = _build_metadata(
            name,
            latest,
            name=packument["name"],
            version=latest,
            description=version_data.get("description") or packument.get("description") or "",
            license=_extract_license(version_data.get("license") or packument.get("license")),
            dependencies=_require_dependency_map(name, version_data.get("dependencies")),
            published_at=times.get(latest) or times.get("modified"),
            repository_url=repository_url,
            maintainers=_extract_maintainers(version_data.get("maintainers") or packument.get("maintainers")),
            maintenance=maintenance,
        )
        self._cache.set(cache_key, metadata)
        self._cache.set(f"npm:{name}@{metadata.version}", metadata)
        logger.info("Fetched registry metadata for %s (latest=%s)", name, latest)
        return metadata

    async def _fetch_version(self, name: str, version: str) -> PackageMetadata:
        cache_key = f"npm:{name}@{version}"
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        url = f"{self._registry_url}/{encode_package_name(name)}/{quote(version, safe='')}"
        data = await self._get(url, name, version)
        if not isinstance(data, dict) or not data.get("name") or not data.get("version"):
            raise ValidationError(
                f"Malformed registry response for {name}@{version}",
                {"package": name, "version": version},
            )
        metadata = _build_metadata(
            name,
            version,
            name=data["name"],
            version=str(data["version"]),
            description=data.get("description") or "",
            license=_extract_license(data.get("license")),
            dependencies=_require_dependency_map(name, data.get("dependencies")),
            repository_url=_extract_repository_url(data.get("repository")),
            maintainers=_extract_maintainers(data.get("maintainers")),
        )
        self._cache.set(cache_key, metadata)
        return metadata

    @staticmethod
    def _parse_version_index(name: str, packument: Any) -> VersionIndex:
        if not isinstance(packument, dict):
            raise ValidationError(f"Malformed registry response for {name}", {"package": name})
        registry_name = packument.get("name")
        dist_tags = packument.get("dist-tags")
        versions = packument.get("versions")
        if not isinstance(registry_name, str) or not registry_name:
            raise ValidationError(f"Registry response for {name} has no name", {"package": name})
        if registry_name.lower() != name.lower():
            raise ValidationError(
                f"Registry returned {registry_name} for {name}",
                {"package": name, "returned": registry_name},
            )
        if not isinstance(dist_tags, dict) or not dist_tags.get("latest"):
            raise ValidationError(f"Registry response for {name} has no latest tag", {"package": name})
        if not isinstance(versions, dict):
            raise ValidationError(f"Registry response for {name} has no versions", {"package": name})
        return VersionIndex(
            name=registry_name,
            versions=list(versions.keys()),
            dist_tags={str(tag): str(v) for tag, v in dist_tags.items()},
        )

    async def fetch_version_index(self, name: str) -> VersionIndex:
        """버전 목록 조회(Fetch every published version plus dist-tags)."""

        name = validate_package_name(name)
        cache_key = f"npm:meta:{name}"
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached
        packument = await self._get(f"{self._registry_url}/{encode_package_name(name)}", name)
        index = self._parse_version_index(name, packument)
        self._cache.set(cache_key, index)
        return index

    async def resolve_range(self, name: str, version_range: str) -> str:
        """버전 범위를 정확한 버전으로 해석(Resolve an npm range to an exact published version).

        Highest satisfying version wins; a dist-tag name resolves to its
        target; otherwise the ``latest`` tag is used. Metadata failures
        propagate.
        """
        index = await self.fetch_version_index(name)
        version_range = (version_range or "").strip()

        if version_range in index.dist_tags:
            return index.dist_tags[version_range]

        resolved = select_max_satisfying(index.versions, version_range)
        if resolved is not None:
            return resolved

        if index.latest:
            logger.info(
                "No version of %s satisfies %r; falling back to latest %s",
                name,
                version_range,
                index.latest,
            )
            return index.latest
        raise VersionResolutionError(name, version_range)

    async def fetch_maintenance_stats(self, repository_url: Optional[str]) -> Optional[MaintenanceStats]:
        """GitHub 이슈 통계 조회(Fetch open-issue stats; failures yield None)."""

        parsed = parse_github_repository(repository_url)
        if parsed is None:
            return None
        owner, repo = parsed
        slug = f"{owner}/{repo}"
        cache_key = f"github:{slug}"
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        try:
            data = await self._http.get_json(
                f"{self._github_api_url}/repos/{quote(owner, safe='')}/{quote(repo, safe='')}",
                headers={"Accept": "application/vnd.github+json"},
            )
        except AppException as exc:
            logger.warning("GitHub stats unavailable for %s: %s", slug, exc.error_code)
            return None

        open_issues = data.get("open_issues_count") if isinstance(data, dict) else None
        stats = MaintenanceStats(
            repository=slug,
            open_issues=open_issues if isinstance(open_issues, int) else None,
        )
        self._cache.set(cache_key, stats, ttl=self._github_stats_ttl)
        return stats
