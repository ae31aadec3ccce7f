"""
Internal dependency classification.

A dependency is internal when its vendor prefix names the organization
under analysis, or when the manifest pulls it from one of the
organization's repositories on the forge.
"""

import re
from typing import Optional, Set

from .cli_config import get_config
from .manifests import PackageManifest


def normalize_dependency_name(name: str, organization: str) -> str:
    """
    Rewrite ``vendor/Package`` as ``<organization>/package``.

    The organization keeps the caller's spelling; the package part is
    lowercased.
    """
    _, _, package = name.partition("/")
    return f"{organization}/{package.lower()}"


def _repository_name_from_url(url: str, organization: str, host_marker: str) -> Optional[str]:
    match = re.search(re.escape(host_marker) + r"[/:]+([^/]+)/([^?#]+)", url, re.IGNORECASE)
    if not match:
        return None

    owner, path = match.groups()
    if owner.lower() != organization.lower():
        return None

    segment = path.rstrip("/").split("/")[-1]
    # Drop ".git" and anything else after the first dot
    name = segment.split(".", 1)[0]
    return name.lower() or None


def classify_dependencies(
    manifest: PackageManifest, organization: str, host_marker: Optional[str] = None
) -> Set[str]:
    """
    Extract the internal dependencies of a manifest.

    Args:
        manifest: Decoded manifest
        organization: Organization whose packages count as internal
        host_marker: Forge host to look for in repository URLs

    Returns:
        Set[str]: Identifiers of the form ``<organization>/<name>``
    """
    host_marker = host_marker or get_config().network.host_marker
    org_lower = organization.lower()
    internal: Set[str] = set()

    for name in manifest.dependencies:
        vendor, separator, package = name.partition("/")
        if separator and package and vendor.lower() == org_lower:
            internal.add(normalize_dependency_name(name, organization))

    for repository in manifest.repositories.values():
        url = repository.get("url")
        if not url or host_marker.lower() not in url.lower():
            continue
        repo_name = _repository_name_from_url(url, organization, host_marker)
        if repo_name:
            internal.add(f"{organization}/{repo_name}")

    return internal
