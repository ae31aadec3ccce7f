"""
Package dependency graph data structures.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple

from .versioning import VersionDifference, compare_versions, is_version_tag

# Separates "<org>/<repo>" from the manifest package name in a node id
PACKAGE_ID_SEPARATOR = ">"


class NodeCategory(Enum):
    """How a package relates to the selected repositories."""

    PROJECT = "Project"
    MONOREPO_SERVICE = "MonorepoService"
    DEPENDENCY = "Dependency"
    INACTIVE = "Inactive"

    @property
    def color(self) -> str:
        return {
            NodeCategory.PROJECT: "#2563eb",
            NodeCategory.MONOREPO_SERVICE: "#9333ea",
            NodeCategory.DEPENDENCY: "#059669",
            NodeCategory.INACTIVE: "#9ca3af",
        }[self]


def package_id(organization: str, repository: str, package_name: str) -> str:
    """
    Build the node id of a package declared by a repository's manifest.

    Two repositories declaring the same package name get different ids.
    """
    return (
        f"{organization.lower()}/{repository.lower()}"
        f"{PACKAGE_ID_SEPARATOR}{package_name.lower()}"
    )


def repository_from_id(node_id: str) -> str:
    """
    Repository name encoded in a node id.

    ``org/repo>vendor/pkg`` gives ``repo``; a bare ``org/name`` gives ``name``.
    """
    owner_repo = node_id.split(PACKAGE_ID_SEPARATOR, 1)[0]
    return owner_repo.split("/", 1)[-1]


@dataclass
class PackageNode:
    """A package in the graph; category and version never change after creation."""

    id: str
    display_name: str
    version: str
    category: NodeCategory
    repository: Optional[str] = None
    manifest_paths: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.display_name,
            "version": self.version,
            "category": self.category.value,
            "color": self.category.color,
            "repository": self.repository,
            "manifest_paths": list(self.manifest_paths),
        }


@dataclass(frozen=True)
class DependencyEdge:
    """``source`` requires ``target`` at ``version_constraint``."""

    source: str
    target: str
    version_constraint: str

    @property
    def key(self) -> Tuple[str, str]:
        return (self.source, self.target)

    def to_dict(self) -> Dict[str, str]:
        return {
            "source": self.source,
            "target": self.target,
            "version": self.version_constraint,
        }


@dataclass(frozen=True)
class OutdatedEdge:
    """An edge whose pinned version trails the target's latest version."""

    edge: DependencyEdge
    latest_version: str
    difference: VersionDifference


@dataclass
class DependencyGraph:
    """Nodes keyed by id (in creation order) and deduplicated edges."""

    nodes: Dict[str, PackageNode] = field(default_factory=dict)
    edges: List[DependencyEdge] = field(default_factory=list)
    _edge_keys: Set[Tuple[str, str]] = field(default_factory=set, repr=False, compare=False)

    def __post_init__(self):
        self._edge_keys = {edge.key for edge in self.edges}

    @property
    def is_empty(self) -> bool:
        return not self.nodes

    def get(self, node_id: str) -> Optional[PackageNode]:
        return self.nodes.get(node_id)

    def add_node(self, node: PackageNode) -> bool:
        """
        Insert a node unless one with the same id exists.

        An existing node only picks up manifest paths it did not have yet.

        Returns:
            bool: True if the node was created
        """
        if node.id not in self.nodes:
            self.nodes[node.id] = node
            return True

        for path in node.manifest_paths:
            self.add_manifest_path(node.id, path)
        return False

    def add_manifest_path(self, node_id: str, path: str) -> None:
        node = self.nodes[node_id]
        if path not in node.manifest_paths:
            node.manifest_paths.append(path)

    def add_edge(self, edge: DependencyEdge) -> bool:
        """
        Append an edge unless the (source, target) pair is already present.

        The first edge for a pair wins, even if a later one carries a
        different version.

        Raises:
            KeyError: If either endpoint is not a node of the graph
        """
        for endpoint in (edge.source, edge.target):
            if endpoint not in self.nodes:
                raise KeyError(f"Edge endpoint {endpoint!r} is not a node")

        if edge.key in self._edge_keys:
            return False
        self._edge_keys.add(edge.key)
        self.edges.append(edge)
        return True

    def dependencies_of(self, node_id: str) -> List[DependencyEdge]:
        """Edges leaving ``node_id``."""
        return [edge for edge in self.edges if edge.source == node_id]

    def dependents_of(self, node_id: str) -> List[DependencyEdge]:
        """Edges arriving at ``node_id``."""
        return [edge for edge in self.edges if edge.target == node_id]

    def search(self, query: str) -> List[PackageNode]:
        """Nodes whose id or display name contains ``query`` (case-insensitive)."""
        needle = query.strip().lower()
        if not needle:
            return []
        return [
            node
            for node in self.nodes.values()
            if needle in node.id.lower() or needle in node.display_name.lower()
        ]

    def outdated_edges(self, placeholder_version: str = "dev-main") -> List[OutdatedEdge]:
        """
        Edges whose version is behind the version of their target node.

        Only exact versions are compared: constraints such as ``^1.0`` and
        the placeholder version are skipped.
        """
        outdated = []
        for edge in self.edges:
            target = self.nodes[edge.target]
            if placeholder_version in (edge.version_constraint, target.version):
                continue
            if not (is_version_tag(edge.version_constraint) and is_version_tag(target.version)):
                continue
            difference = compare_versions(edge.version_constraint, target.version)
            if difference.is_upgrade:
                outdated.append(OutdatedEdge(edge, target.version, difference))
        return outdated

    def nodes_by_category(self) -> Dict[NodeCategory, List[PackageNode]]:
        grouped: Dict[NodeCategory, List[PackageNode]] = {category: [] for category in NodeCategory}
        for node in self.nodes.values():
            grouped[node.category].append(node)
        return grouped

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodes": [node.to_dict() for node in self.nodes.values()],
            "links": [edge.to_dict() for edge in self.edges],
        }
