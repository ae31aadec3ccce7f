"""
Latest release lookup from a repository's tags.
"""

from typing import List, Optional, Tuple

from .error_handling import log_fetch_warning
from .forge_client import ForgeClient, TagInfo
from .versioning import ParsedVersion, is_version_tag, parse_version, strip_version_prefix

# Upper bound on tag pages, in case a forge keeps returning the same page
MAX_TAG_PAGES = 50


async def fetch_all_tags(forge: ForgeClient, owner: str, repo: str) -> List[TagInfo]:
    """Page through the tag list until the forge returns an empty page."""
    tags: List[TagInfo] = []
    for page in range(1, MAX_TAG_PAGES + 1):
        batch = await forge.list_tags(owner, repo, page=page)
        if not batch:
            break
        tags.extend(batch)
    return tags


def select_latest_tag(tag_names: List[str]) -> Optional[str]:
    """
    Pick the highest stable version tag, else the highest prerelease.

    Version-shaped tags are ranked first. When a repository has none, the
    first listed tag is returned instead. Ties keep the order in which the
    forge listed them.

    Returns:
        Optional[str]: Tag name without its leading ``v``, or None when
        there are no tags
    """
    stable: List[Tuple[ParsedVersion, str]] = []
    prerelease: List[Tuple[ParsedVersion, str]] = []

    for name in tag_names:
        if not is_version_tag(name):
            continue
        parsed = parse_version(name)
        (prerelease if parsed.is_prerelease else stable).append((parsed, name))

    for group in (stable, prerelease):
        if group:
            group.sort(key=lambda item: item[0].sort_key, reverse=True)
            return strip_version_prefix(group[0][1])

    if tag_names:
        return strip_version_prefix(tag_names[0])
    return None


async def latest_tag(forge: ForgeClient, owner: str, repo: str) -> Optional[str]:
    """
    Resolve the latest released version of a repository.

    Args:
        forge: Forge client
        owner: Organization owning the repository
        repo: Repository name

    Returns:
        Optional[str]: Latest version, or None when there are no
        tags or the tag list could not be fetched
    """
    try:
        tags = await fetch_all_tags(forge, owner, repo)
    except Exception as e:  # ForgeError, or anything a client lets escape
        log_fetch_warning(
            "Could not fetch tags",
            "tags",
            "latest_tag",
            repository=f"{owner}/{repo}",
            exception=e,
        )
        return None

    return select_latest_tag([tag.name for tag in tags])
