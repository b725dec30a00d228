"""의존성 해석 서비스(Dependency resolution service)."""
from __future__ import annotations

import asyncio
from typing import Dict, List, Optional, Set, Tuple

from common_lib.config import get_settings
from common_lib.errors import AppException
from common_lib.logger import get_logger
from metadata_fetcher.app.models import PackageMetadata
from metadata_fetcher.app.service import RegistryService, is_exact_version

from .models import DependencyNode, ResolvedDependencySet

logger = get_logger(__name__)


class DependencyResolver:
    """너비 우선 의존성 해석기(Breadth-first, depth-bounded dependency resolver).

    Every registry call made during a resolution shares one semaphore, so
    at most ``concurrency`` metadata requests are in flight at any time.
    A ``name@version`` is expanded at most once; the visited set is checked
    and updated without an intervening await.
    """

    def __init__(
        self,
        registry: RegistryService,
        max_depth: Optional[int] = None,
        concurrency: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self._registry = registry
        self._max_depth = settings.resolver_max_depth if max_depth is None else max_depth
        self._concurrency = concurrency or settings.resolver_concurrency

    async def resolve_package(self, name: str) -> Tuple[PackageMetadata, ResolvedDependencySet]:
        """루트 조회 후 해석(Fetch the root's latest metadata, then resolve it).

        A root metadata failure propagates; it is fatal to the analysis.
        """
        root = await self._registry.fetch_metadata(name)
        return root, await self.resolve(root)

    async def resolve(self, root: PackageMetadata) -> ResolvedDependencySet:
        """의존성 그래프 해석(Resolve the graph below ``root`` to exact versions)."""

        semaphore = asyncio.Semaphore(self._concurrency)
        visited: Set[str] = {root.key}
        nodes: List[DependencyNode] = []
        pruned: List[str] = []

        frontier: List[Tuple[PackageMetadata, int]] = [(root, 0)]
        deepest = 0
        while frontier:
            expansions = [
                self._expand(parent, dep_name, dep_range, depth + 1, visited, semaphore, pruned)
                for parent, depth in frontier
                if depth < self._max_depth
                for dep_name, dep_range in parent.dependencies.items()
            ]
            if not expansions:
                break
            frontier = []
            for result in await asyncio.gather(*expansions):
                if result is None:
                    continue
                node, metadata = result
                nodes.append(node)
                deepest = max(deepest, node.depth)
                frontier.append((metadata, node.depth))

        direct, skipped = await self._pin_direct(root, nodes, semaphore)
        resolved = self._build(root, direct, nodes, skipped, pruned, deepest)
        logger.info(
            "Resolved %s: %d direct, %d transitive, %d skipped, %d pruned",
            root.key,
            len(resolved.direct),
            len(resolved.transitive),
            len(skipped),
            len(pruned),
        )
        return resolved

    async def _expand(
        self,
        parent: PackageMetadata,
        name: str,
        version_range: str,
        depth: int,
        visited: Set[str],
        semaphore: asyncio.Semaphore,
        pruned: List[str],
    ) -> Optional[Tuple[DependencyNode, PackageMetadata]]:
        try:
            async with semaphore:
                version = await self._registry.resolve_range(name, version_range)
        except AppException as exc:
            logger.warning(
                "Pruning %s@%s (required by %s): %s",
                name,
                version_range,
                parent.key,
                exc.message,
            )
            pruned.append(f"{name}@{version_range}")
            return None
        if not is_exact_version(version):
            logger.warning("Pruning %s@%s: resolved to non-exact %r", name, version_range, version)
            pruned.append(f"{name}@{version_range}")
            return None

        key = f"{name}@{version}"
        if key in visited:
            return None
        visited.add(key)

        try:
            async with semaphore:
                metadata = await self._registry.fetch_metadata(name, version)
        except AppException as exc:
            logger.warning("Pruning %s (required by %s): %s", key, parent.key, exc.message)
            pruned.append(key)
            return None

        node = DependencyNode(name=name, version=version, depth=depth, parent=parent.key)
        return node, metadata

    async def _pin_direct(
        self,
        root: PackageMetadata,
        nodes: List[DependencyNode],
        semaphore: asyncio.Semaphore,
    ) -> Tuple[Dict[str, str], List[str]]:
        depth_one: Dict[str, str] = {}
        for node in nodes:
            if node.depth == 1:
                depth_one.setdefault(node.name, node.version)

        names = list(root.dependencies)
        pinned = await asyncio.gather(
            *(self._pin(name, root.dependencies[name], depth_one, semaphore) for name in names)
        )

        direct: Dict[str, str] = {}
        skipped: List[str] = []
        for name, version in zip(names, pinned):
            if version is None:
                logger.warning(
                    "Skipping %s@%s from vulnerability check: no exact version could be resolved",
                    name,
                    root.dependencies[name],
                )
                skipped.append(name)
            else:
                direct[name] = version
        return direct, skipped

    async def _pin(
        self,
        name: str,
        version_range: str,
        depth_one: Dict[str, str],
        semaphore: asyncio.Semaphore,
    ) -> Optional[str]:
        """직접 의존성 고정(Pin one direct dependency via three sequential tiers)."""

        if name in depth_one:
            return depth_one[name]

        try:
            async with semaphore:
                version = await self._registry.resolve_range(name, version_range)
            if is_exact_version(version):
                return version
        except AppException as exc:
            logger.info("Range resolution failed for %s@%s: %s", name, version_range, exc.message)

        try:
            async with semaphore:
                metadata = await self._registry.fetch_metadata(name)
            if is_exact_version(metadata.version):
                logger.info("Pinned %s@%s to latest %s", name, version_range, metadata.version)
                return metadata.version
        except AppException as exc:
            logger.info("Latest lookup failed for %s: %s", name, exc.message)
        return None

    @staticmethod
    def _build(
        root: PackageMetadata,
        direct: Dict[str, str],
        nodes: List[DependencyNode],
        skipped: List[str],
        pruned: List[str],
        deepest: int,
    ) -> ResolvedDependencySet:
        dependencies: Dict[str, str] = dict(direct)
        transitive: Dict[str, str] = {}
        for node in nodes:
            if node.name == root.name or node.name in root.dependencies or node.name in dependencies:
                continue
            dependencies[node.name] = node.version
            transitive[node.name] = node.version
        return ResolvedDependencySet(
            root=root.key,
            dependencies=dependencies,
            direct=direct,
            transitive=transitive,
            skipped=skipped,
            pruned=pruned,
            nodes=nodes,
            max_depth_reached=deepest,
        )
