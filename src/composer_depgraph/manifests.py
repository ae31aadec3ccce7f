"""
Locating and decoding Composer manifests and lock files on the forge.

Nothing here raises on missing or broken data: every failure is logged
through the error handler and reported as an empty result.
"""

import base64
import binascii
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from .cli_config import get_config
from .error_handling import log_fetch_warning, log_manifest_error
from .forge_client import ForgeClient, ForgeError


@dataclass(frozen=True)
class PackageManifest:
    """A decoded ``composer.json``."""

    name: str
    declared_version: Optional[str] = None
    require: Mapping[str, str] = field(default_factory=dict)
    require_dev: Mapping[str, str] = field(default_factory=dict)
    repositories: Mapping[str, Mapping[str, str]] = field(default_factory=dict)

    @property
    def dependencies(self) -> Dict[str, str]:
        """``require`` merged with ``require-dev``; the first occurrence of a name wins."""
        merged = dict(self.require)
        for name, constraint in self.require_dev.items():
            merged.setdefault(name, constraint)
        return merged

    def constraint_for(self, package_name: str) -> Optional[str]:
        """Raw constraint for a dependency, matching the name case-insensitively."""
        wanted = package_name.lower()
        for name, constraint in self.dependencies.items():
            if name.lower() == wanted:
                return constraint
        return None


@dataclass(frozen=True)
class LockEntry:
    """One pinned package from a ``composer.lock``."""

    name: str
    resolved_version: str


def decode_base64_content(content: str) -> str:
    """
    Decode the base64 payload returned by the forge contents API.

    The payload is wrapped at 60 columns, so all whitespace is dropped
    before decoding.

    Raises:
        ValueError: If the payload is not valid base64 or not UTF-8
    """
    compact = "".join((content or "").split())
    try:
        raw = base64.b64decode(compact, validate=True)
    except binascii.Error as e:
        raise ValueError(f"Invalid base64 payload: {e}") from e
    return raw.decode("utf-8-sig")


def _string_map(value: Any) -> Dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {str(name): str(constraint) for name, constraint in value.items()}


def _repository_map(value: Any) -> Dict[str, Dict[str, str]]:
    # Composer allows both an object keyed by name and a plain list
    if isinstance(value, list):
        items = [(str(index), entry) for index, entry in enumerate(value)]
    elif isinstance(value, dict):
        items = [(str(name), entry) for name, entry in value.items()]
    else:
        return {}

    repositories = {}
    for name, entry in items:
        if isinstance(entry, dict) and isinstance(entry.get("url"), str):
            repositories[name] = {
                key: str(val) for key, val in entry.items() if isinstance(val, (str, int, float))
            }
    return repositories


def parse_manifest(data: Any) -> Optional[PackageManifest]:
    """
    Build a PackageManifest from decoded JSON.

    Returns:
        Optional[PackageManifest]: None when the document has no ``name``
    """
    if not isinstance(data, dict):
        return None

    name = data.get("name")
    if not isinstance(name, str) or not name.strip():
        return None

    version = data.get("version")
    return PackageManifest(
        name=name.strip(),
        declared_version=str(version) if version else None,
        require=_string_map(data.get("require")),
        require_dev=_string_map(data.get("require-dev")),
        repositories=_repository_map(data.get("repositories")),
    )


def parse_lock(data: Any) -> List[LockEntry]:
    """Collect the ``packages`` and ``packages-dev`` entries of a decoded lock file."""
    if not isinstance(data, dict):
        return []

    entries = []
    for section in ("packages", "packages-dev"):
        packages = data.get(section) or []
        if not isinstance(packages, list):
            continue
        for package in packages:
            if not isinstance(package, dict):
                continue
            name, version = package.get("name"), package.get("version")
            if isinstance(name, str) and version:
                entries.append(LockEntry(name=name, resolved_version=str(version)))
    return entries


def lock_path_for(manifest_path: str, manifest_filename: Optional[str] = None, lock_filename: Optional[str] = None) -> str:
    """Swap the manifest file name at the end of a path for the lock file name."""
    config = get_config()
    manifest_filename = manifest_filename or config.discovery.manifest_filename
    lock_filename = lock_filename or config.discovery.lock_filename

    if manifest_path.lower().endswith(manifest_filename.lower()):
        return manifest_path[: -len(manifest_filename)] + lock_filename
    return manifest_path


async def locate_manifests(forge: ForgeClient, owner: str, repo: str) -> List[str]:
    """
    List every manifest in a repository's default branch.

    Args:
        forge: Forge client
        owner: Organization owning the repository
        repo: Repository name

    Returns:
        List[str]: Manifest paths in tree order, empty on any failure
    """
    suffix = get_config().discovery.manifest_filename.lower()

    try:
        branch = await forge.get_default_branch(owner, repo)
        tree = await forge.get_tree(owner, repo, branch, recursive=True)
    except Exception as e:  # ForgeError, or anything a client lets escape
        log_fetch_warning(
            "Could not list repository tree",
            "manifests",
            "locate_manifests",
            repository=f"{owner}/{repo}",
            exception=e,
        )
        return []

    return [entry.path for entry in tree if entry.is_blob and entry.path.lower().endswith(suffix)]


async def _fetch_json(forge: ForgeClient, owner: str, repo: str, path: str) -> Any:
    content = await forge.get_file_content(owner, repo, path)
    return json.loads(decode_base64_content(content))


async def read_manifest(
    forge: ForgeClient, owner: str, repo: str, path: str
) -> Optional[PackageManifest]:
    """
    Fetch and decode one manifest.

    Returns:
        Optional[PackageManifest]: None if the file cannot be fetched or
        decoded, or has no ``name``
    """
    repository = f"{owner}/{repo}"
    try:
        data = await _fetch_json(forge, owner, repo, path)
    except ForgeError as e:
        log_fetch_warning(
            "Could not fetch manifest",
            "manifests",
            "read_manifest",
            repository=repository,
            path=path,
            exception=e,
        )
        return None
    except ValueError as e:
        log_manifest_error(
            "Manifest is not valid JSON",
            "manifests",
            "read_manifest",
            repository=repository,
            file_path=path,
            exception=e,
        )
        return None
    except Exception as e:
        log_fetch_warning(
            "Unexpected error reading manifest",
            "manifests",
            "read_manifest",
            repository=repository,
            path=path,
            exception=e,
        )
        return None

    manifest = parse_manifest(data)
    if manifest is None:
        log_manifest_error(
            "Manifest has no package name, skipping",
            "manifests",
            "read_manifest",
            repository=repository,
            file_path=path,
        )
    return manifest


async def read_lock(
    forge: ForgeClient, owner: str, repo: str, manifest_path: str
) -> Optional[List[LockEntry]]:
    """
    Fetch the lock file that sits next to a manifest.

    Returns:
        Optional[List[LockEntry]]: None when there is no readable lock file
    """
    lock_path = lock_path_for(manifest_path)
    if lock_path == manifest_path:
        return None

    try:
        data = await _fetch_json(forge, owner, repo, lock_path)
    except ForgeError as e:
        if e.status_code == 404:
            return None
        log_fetch_warning(
            "Could not fetch lock file",
            "manifests",
            "read_lock",
            repository=f"{owner}/{repo}",
            path=lock_path,
            exception=e,
        )
        return None
    except ValueError as e:
        log_manifest_error(
            "Lock file is not valid JSON",
            "manifests",
            "read_lock",
            repository=f"{owner}/{repo}",
            file_path=lock_path,
            exception=e,
        )
        return None
    except Exception as e:
        log_fetch_warning(
            "Unexpected error reading lock file",
            "manifests",
            "read_lock",
            repository=f"{owner}/{repo}",
            path=lock_path,
            exception=e,
        )
        return None

    return parse_lock(data)
