"""
Two-pass construction of the organization's internal dependency graph.

Pass 1 reads every manifest of every selected repository and returns an
immutable inventory. Pass 2 turns that inventory into nodes and edges,
looking up release tags as it goes. Both passes walk repositories and
manifests strictly in order, one request at a time.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import (
    Callable,
    Dict,
    FrozenSet,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from .classifier import classify_dependencies
from .cli_config import get_config
from .error_handling import ErrorCategory, ErrorContext, get_error_handler
from .forge_client import ForgeClient, GitHubClient, RepositoryRef
from .graph import (
    DependencyEdge,
    DependencyGraph,
    NodeCategory,
    PackageNode,
    package_id,
    repository_from_id,
)
from .manifests import LockEntry, PackageManifest, locate_manifests, read_lock, read_manifest
from .structured_logging import log_repository_processed, log_run_complete, log_run_start
from .tags import latest_tag

NO_SELECTION_MESSAGE = "Please select at least one repository"
EMPTY_RESULT_MESSAGE = "No internal dependencies found between projects."
CONNECTION_FAILURE_MESSAGE = (
    "Failed to fetch dependencies. Please check your token and organization."
)


class DiscoveryStatus(Enum):
    """Terminal state of a discovery run."""

    SUCCESS = "success"
    EMPTY = "empty"
    ERROR = "error"


@dataclass(frozen=True)
class ProgressSnapshot:
    """Emitted once per repository after all its manifests are handled."""

    index: int
    total: int
    repository: str
    has_manifests: bool
    dependencies: Tuple[str, ...]


ProgressCallback = Callable[[ProgressSnapshot], None]


@dataclass(frozen=True)
class ManifestRecord:
    """A located manifest path with whatever could be read from it."""

    path: str
    manifest: Optional[PackageManifest] = None
    lock: Optional[Tuple[LockEntry, ...]] = None

    def locked_version(self, dependency_name: str) -> Optional[str]:
        if not self.lock:
            return None
        wanted = dependency_name.lower()
        for entry in self.lock:
            if entry.name.lower() == wanted:
                return entry.resolved_version
        return None


@dataclass(frozen=True)
class RepositoryInventory:
    """
    Everything Pass 1 learned, frozen before Pass 2 starts.

    Package names are stored lowercased.
    """

    records: Mapping[str, Tuple[ManifestRecord, ...]]
    package_names: Mapping[str, FrozenSet[str]]
    package_ids: Mapping[str, str]
    package_repositories: Mapping[str, str]
    lock_versions: Mapping[str, str]

    def is_monorepo(self, repository: Optional[str]) -> bool:
        if repository is None:
            return False
        return len(self.package_names.get(repository, ())) > 1

    def repository_of(self, dependency_name: str, dependency_id: str) -> Optional[str]:
        """Selected repository that declares a dependency, if any."""
        owner = self.package_repositories.get(dependency_name.lower())
        if owner is not None:
            return owner

        repo_part = repository_from_id(dependency_id)
        for repository in self.package_names:
            if repository.lower() == repo_part:
                return repository
        return None


@dataclass
class DiscoveryResult:
    """Outcome of a discovery run."""

    status: DiscoveryStatus
    graph: DependencyGraph = field(default_factory=DependencyGraph)
    message: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    progress: List[ProgressSnapshot] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status is DiscoveryStatus.SUCCESS


def _as_repository(repository: Union[RepositoryRef, str]) -> RepositoryRef:
    if isinstance(repository, RepositoryRef):
        return repository
    return RepositoryRef(name=str(repository))


class GraphBuilder:
    """
    Builds the dependency graph of an organization's selected repositories.

    A builder may be reused; every call to ``run`` starts from an empty
    graph.
    """

    def __init__(
        self,
        forge: ForgeClient,
        organization: str,
        progress_callback: Optional[ProgressCallback] = None,
        placeholder_version: Optional[str] = None,
    ):
        if not organization or not organization.strip():
            raise ValueError("organization must be a non-empty string")

        self.forge = forge
        self.organization = organization.strip()
        self.progress_callback = progress_callback
        self.placeholder_version = (
            placeholder_version or get_config().discovery.placeholder_version
        )
        self._tag_cache: Dict[str, Optional[str]] = {}

    async def run(
        self, repositories: Sequence[Union[RepositoryRef, str]]
    ) -> DiscoveryResult:
        """
        Discover internal dependencies across the selected repositories.

        Args:
            repositories: Candidate repositories; only ``selected`` ones are
                processed (plain names count as selected)

        Returns:
            DiscoveryResult: ``success`` with the graph, ``empty`` when no
            package was found, ``error`` when nothing is selected or the
            forge refuses the connection
        """
        selected = [repo for repo in map(_as_repository, repositories) if repo.selected]
        if not selected:
            return DiscoveryResult(DiscoveryStatus.ERROR, message=NO_SELECTION_MESSAGE)

        run_id = f"run_{int(time.time())}"
        start_time = time.monotonic()
        log_run_start(run_id, self.organization, len(selected))

        try:
            await self.forge.check_authentication()
        except Exception as e:  # ForgeError, or anything a client lets escape
            get_error_handler().error(
                ErrorCategory.CREDENTIAL,
                "Could not connect to the forge",
                "graph_builder",
                "run",
                exception=e,
                details={"organization": self.organization},
            )
            log_run_complete(run_id, DiscoveryStatus.ERROR.value, self._elapsed_ms(start_time))
            return DiscoveryResult(DiscoveryStatus.ERROR, message=CONNECTION_FAILURE_MESSAGE)

        warnings: List[str] = []

        def record_warning(context: ErrorContext) -> None:
            warnings.append(self._describe(context))

        handler = get_error_handler()
        handler.register_callback(record_warning)
        self._tag_cache = {}
        progress: List[ProgressSnapshot] = []

        try:
            inventory = await self.build_inventory(selected)
            graph = await self.build_graph(selected, inventory, progress.append)
        finally:
            handler.unregister_callback(record_warning)

        if graph.is_empty:
            result = DiscoveryResult(
                DiscoveryStatus.EMPTY,
                graph=graph,
                message=EMPTY_RESULT_MESSAGE,
                warnings=warnings,
                progress=progress,
            )
        else:
            result = DiscoveryResult(
                DiscoveryStatus.SUCCESS, graph=graph, warnings=warnings, progress=progress
            )

        log_run_complete(
            run_id,
            result.status.value,
            self._elapsed_ms(start_time),
            node_count=len(graph.nodes),
            edge_count=len(graph.edges),
            warning_count=len(warnings),
        )
        return result

    async def build_inventory(self, repositories: Sequence[RepositoryRef]) -> RepositoryInventory:
        """
        Pass 1: read every manifest (and its lock file) of every repository.

        When two repositories declare the same package name, dependency
        lookups resolve to the repository named after the package, else
        to the first repository in selection order.
        """
        records: Dict[str, Tuple[ManifestRecord, ...]] = {}
        package_names: Dict[str, FrozenSet[str]] = {}
        package_ids: Dict[str, str] = {}
        package_repositories: Dict[str, str] = {}
        lock_versions: Dict[str, str] = {}

        for repo in repositories:
            repo_records = []
            names = []
            for path in await locate_manifests(self.forge, self.organization, repo.name):
                manifest = await read_manifest(self.forge, self.organization, repo.name, path)
                if manifest is None:
                    repo_records.append(ManifestRecord(path=path))
                    continue

                lock = await read_lock(self.forge, self.organization, repo.name, path)
                repo_records.append(
                    ManifestRecord(
                        path=path,
                        manifest=manifest,
                        lock=tuple(lock) if lock is not None else None,
                    )
                )
                for entry in lock or ():
                    lock_versions[entry.name.lower()] = entry.resolved_version

                name = manifest.name.lower()
                if name not in names:
                    names.append(name)
                if self._claims_package(repo.name, name, package_repositories.get(name)):
                    package_repositories[name] = repo.name
                    package_ids[name] = package_id(self.organization, repo.name, name)

            records[repo.name] = tuple(repo_records)
            package_names[repo.name] = frozenset(names)

        return RepositoryInventory(
            records=MappingProxyType(records),
            package_names=MappingProxyType(package_names),
            package_ids=MappingProxyType(package_ids),
            package_repositories=MappingProxyType(package_repositories),
            lock_versions=MappingProxyType(lock_versions),
        )

    async def build_graph(
        self,
        repositories: Sequence[RepositoryRef],
        inventory: RepositoryInventory,
        on_progress: Optional[ProgressCallback] = None,
    ) -> DependencyGraph:
        """Pass 2: create nodes and edges from a finished inventory."""
        graph = DependencyGraph()
        total = len(repositories)

        for index, repo in enumerate(repositories, start=1):
            repo_records = inventory.records.get(repo.name, ())
            touched: List[str] = []

            for record in repo_records:
                if record.manifest is None:
                    get_error_handler().warning(
                        ErrorCategory.PARSING,
                        "Skipping manifest without a package name",
                        "graph_builder",
                        "build_graph",
                        details={"repository": repo.name, "path": record.path},
                    )
                    continue

                source_id = await self._add_package_node(graph, repo, record, inventory)

                for dependency in sorted(classify_dependencies(record.manifest, self.organization)):
                    normalized = dependency.lower()
                    if normalized not in touched:
                        touched.append(normalized)
                    await self._add_dependency(graph, source_id, dependency, record, inventory)

            snapshot = ProgressSnapshot(
                index=index,
                total=total,
                repository=repo.name,
                has_manifests=bool(repo_records),
                dependencies=tuple(touched),
            )
            log_repository_processed(index, total, repo.name, len(repo_records), len(touched))
            for callback in (on_progress, self.progress_callback):
                if callback is not None:
                    callback(snapshot)

        return graph

    async def _add_package_node(
        self,
        graph: DependencyGraph,
        repo: RepositoryRef,
        record: ManifestRecord,
        inventory: RepositoryInventory,
    ) -> str:
        manifest = record.manifest
        name = manifest.name.lower()
        node_id = package_id(self.organization, repo.name, name)

        if node_id in graph.nodes:
            graph.add_manifest_path(node_id, record.path)
            return node_id

        if inventory.is_monorepo(repo.name):
            category = NodeCategory.MONOREPO_SERVICE
        elif repo.archived:
            category = NodeCategory.INACTIVE
        else:
            category = NodeCategory.PROJECT

        version = (
            await self._latest_tag(repo.name)
            or manifest.declared_version
            or self.placeholder_version
        )
        graph.add_node(
            PackageNode(
                id=node_id,
                display_name=name.split("/", 1)[-1],
                version=version,
                category=category,
                repository=repo.name,
                manifest_paths=[record.path],
            )
        )
        return node_id

    async def _add_dependency(
        self,
        graph: DependencyGraph,
        source_id: str,
        dependency: str,
        record: ManifestRecord,
        inventory: RepositoryInventory,
    ) -> None:
        normalized = dependency.lower()
        target_id = inventory.package_ids.get(normalized, normalized)
        target_repo = repository_from_id(target_id)
        locked = record.locked_version(normalized) or inventory.lock_versions.get(normalized)

        if target_id not in graph.nodes:
            owner = inventory.repository_of(normalized, target_id)
            category = (
                NodeCategory.MONOREPO_SERVICE
                if inventory.is_monorepo(owner)
                else NodeCategory.DEPENDENCY
            )
            graph.add_node(
                PackageNode(
                    id=target_id,
                    display_name=normalized.split("/", 1)[-1],
                    version=(
                        await self._latest_tag(target_repo)
                        or locked
                        or self.placeholder_version
                    ),
                    category=category,
                    repository=owner,
                )
            )

        version = (
            locked
            or await self._latest_tag(target_repo)
            or record.manifest.constraint_for(dependency)
            or self.placeholder_version
        )
        graph.add_edge(DependencyEdge(source_id, target_id, version))

    async def _latest_tag(self, repository: str) -> Optional[str]:
        key = repository.lower()
        if key not in self._tag_cache:
            self._tag_cache[key] = await latest_tag(self.forge, self.organization, repository)
        return self._tag_cache[key]

    @staticmethod
    def _claims_package(repository: str, package_name: str, current_owner: Optional[str]) -> bool:
        if current_owner is None:
            return True
        package_part = package_name.split("/", 1)[-1]
        return (
            repository.lower() == package_part
            and current_owner.lower() != package_part
        )

    @staticmethod
    def _describe(context: ErrorContext) -> str:
        where = context.details.get("repository")
        path = context.details.get("path") or context.details.get("file_path")
        parts = [context.message]
        if where:
            parts.append(f"[{where}{':' + path if path else ''}]")
        if context.exception is not None:
            parts.append(f"({context.exception})")
        return " ".join(parts)

    @staticmethod
    def _elapsed_ms(start_time: float) -> int:
        return int((time.monotonic() - start_time) * 1000)


async def discover_dependencies(
    organization: str,
    repositories: Sequence[Union[RepositoryRef, str]],
    forge: Optional[ForgeClient] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> DiscoveryResult:
    """
    Convenience wrapper: run a GraphBuilder, opening a GitHub client if needed.

    Args:
        organization: Organization owning the repositories
        repositories: Repositories to analyse
        forge: Forge client to use; a configured GitHubClient by default
        progress_callback: Called with a ProgressSnapshot per repository

    Returns:
        DiscoveryResult: Terminal status, graph and warnings
    """
    if forge is not None:
        return await GraphBuilder(forge, organization, progress_callback).run(repositories)

    async with GitHubClient() as client:
        return await GraphBuilder(client, organization, progress_callback).run(repositories)
