"""의존성 그래프 모델(Dependency graph models)."""
from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class DependencyNode(BaseModel):
    """해석된 의존성 노드(Resolved node of the dependency graph)."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str = Field(..., description="정확한 버전(Exact version, never a range)")
    depth: int = Field(..., ge=0)
    parent: Optional[str] = Field(default=None, description="부모 name@version(Parent key)")

    @property
    def key(self) -> str:
        return f"{self.name}@{self.version}"


class ResolvedDependencySet(BaseModel):
    """평탄화된 의존성 집합(Flat name to exact version map, root excluded).

    ``dependencies`` keeps insertion order: pinned direct dependencies
    first, then transitive ones in breadth-first discovery order. A name
    appears once; the first resolved version wins.
    """

    root: str
    dependencies: Dict[str, str] = Field(default_factory=dict)
    direct: Dict[str, str] = Field(default_factory=dict)
    transitive: Dict[str, str] = Field(default_factory=dict)
    skipped: List[str] = Field(default_factory=list, description="고정 실패한 직접 의존성(Unpinnable direct deps)")
    pruned: List[str] = Field(default_factory=list, description="조회 실패로 제외된 하위 트리(Pruned subtrees)")
    nodes: List[DependencyNode] = Field(default_factory=list)
    max_depth_reached: int = 0

    def __len__(self) -> int:
        return len(self.dependencies)

    def as_query_list(self) -> List[Dict[str, str]]:
        return [{"name": name, "version": version} for name, version in self.dependencies.items()]
