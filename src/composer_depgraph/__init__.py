"""
composer-depgraph: internal dependency graphs for Composer projects on GitHub.
"""

from .forge_client import (
    ForgeAuthenticationError,
    ForgeClient,
    ForgeError,
    GitHubClient,
    RepositoryRef,
    TagInfo,
    TreeEntry,
    filter_active_repositories,
)
from .graph import DependencyEdge, DependencyGraph, NodeCategory, PackageNode
from .graph_builder import (
    DiscoveryResult,
    DiscoveryStatus,
    GraphBuilder,
    ProgressSnapshot,
    discover_dependencies,
)
from .versioning import VersionChange, compare_versions, parse_version

__version__ = "1.0.0"

__all__ = [
    "DependencyEdge",
    "DependencyGraph",
    "DiscoveryResult",
    "DiscoveryStatus",
    "ForgeAuthenticationError",
    "ForgeClient",
    "ForgeError",
    "GitHubClient",
    "GraphBuilder",
    "NodeCategory",
    "PackageNode",
    "ProgressSnapshot",
    "RepositoryRef",
    "TagInfo",
    "TreeEntry",
    "VersionChange",
    "compare_versions",
    "discover_dependencies",
    "filter_active_repositories",
    "parse_version",
]
