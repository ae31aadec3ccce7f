"""
Forge clients for reading repositories, trees, files and tags.

Defines the narrow capability the discovery engine consumes and a secure,
rate-limited GitHub REST implementation built on httpx.
"""

import asyncio
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import quote, urlparse

import httpx
from httpx import HTTPStatusError, RequestError

from .cli_config import get_config
from .error_handling import ErrorCategory, get_error_handler, log_credential_error
from .structured_logging import log_forge_request

# Security constants for credential protection
CREDENTIAL_PATTERN = re.compile(r"^[a-zA-Z0-9_\-+=/.]+$")


class ForgeError(Exception):
    """A forge request failed (network, timeout, missing resource, HTTP error)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ForgeAuthenticationError(ForgeError):
    """The forge rejected the credentials or could not be reached at all."""


def _validate_credential(credential: str, credential_type: str = "token") -> str:
    """
    Validate and sanitize credential inputs.

    Args:
        credential: The credential to validate
        credential_type: Type of credential for error messages

    Returns:
        str: Validated credential

    Raises:
        ValueError: If credential is invalid or unsafe
    """
    if not credential or not isinstance(credential, str):
        raise ValueError(f"Invalid {credential_type}: must be a non-empty string")

    credential = credential.strip()

    config = get_config()
    max_credential_length = config.security.max_credential_length
    min_credential_length = config.security.min_credential_length

    if len(credential) > max_credential_length:
        raise ValueError(
            f"{credential_type} too long: {len(credential)} chars (max: {max_credential_length})"
        )

    if not CREDENTIAL_PATTERN.match(credential):
        raise ValueError(f"Invalid {credential_type}: contains unsafe characters")

    if len(credential) < min_credential_length:
        raise ValueError(
            f"{credential_type} too short (minimum {min_credential_length} characters)"
        )

    return credential


def _sanitize_url_for_logging(url: str) -> str:
    """
    Sanitize URL for safe logging by removing credentials and query strings.

    Args:
        url: URL that may contain credentials

    Returns:
        str: Sanitized URL safe for logging
    """
    try:
        parsed = urlparse(url)
        netloc = parsed.hostname or "unknown-host"
        if parsed.port:
            netloc += f":{parsed.port}"
        return f"{parsed.scheme}://{netloc}{parsed.path}"
    except ValueError:
        return "[REDACTED_URL]"


@dataclass(frozen=True)
class TreeEntry:
    """One entry of a recursive git tree listing."""

    path: str
    type: str

    @property
    def is_blob(self) -> bool:
        return self.type == "blob"


@dataclass(frozen=True)
class TagInfo:
    """A git tag as listed by the forge."""

    name: str


@dataclass(frozen=True)
class RepositoryRef:
    """A repository of the organization, as listed by the forge."""

    name: str
    default_branch: str = "main"
    archived: bool = False
    last_pushed_at: Optional[datetime] = None
    selected: bool = True

    def is_active(self, window_days: int = 14, now: Optional[datetime] = None) -> bool:
        """Not archived and pushed to within the last ``window_days`` days."""
        if self.archived or self.last_pushed_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        return now - self.last_pushed_at <= timedelta(days=window_days)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def filter_active_repositories(
    repositories: Iterable[RepositoryRef],
    window_days: Optional[int] = None,
    now: Optional[datetime] = None,
) -> List[RepositoryRef]:
    """
    Keep the repositories that are not archived and were pushed recently.

    Args:
        repositories: Repositories to filter
        window_days: Activity window, defaults to the configured value
        now: Reference time, defaults to the current UTC time

    Returns:
        List[RepositoryRef]: Active repositories in input order
    """
    if window_days is None:
        window_days = get_config().discovery.active_window_days
    return [repo for repo in repositories if repo.is_active(window_days, now)]


class RateLimiter:
    """Simple rate limiter to avoid tripping the forge's abuse detection."""

    def __init__(self, requests_per_second: float = 10.0):
        self.requests_per_second = requests_per_second
        self.min_interval = 1.0 / requests_per_second
        self.last_request_time = 0.0

    async def acquire(self) -> None:
        """Wait if necessary to respect rate limits."""
        current_time = time.time()
        time_since_last = current_time - self.last_request_time

        if time_since_last < self.min_interval:
            await asyncio.sleep(self.min_interval - time_since_last)

        self.last_request_time = time.time()


class ForgeClient(ABC):
    """
    The operations the discovery engine needs from a Git forge.

    Every method raises ForgeError when the datum cannot be fetched;
    callers decide whether that is fatal.
    """

    async def check_authentication(self) -> None:
        """Verify the client may talk to the forge. No-op by default."""
        return None

    @abstractmethod
    async def get_default_branch(self, owner: str, repo: str) -> str:
        """Return the default branch name of a repository."""

    @abstractmethod
    async def get_tree(
        self, owner: str, repo: str, branch: str, recursive: bool = True
    ) -> List[TreeEntry]:
        """Return the file tree of a branch."""

    @abstractmethod
    async def get_file_content(self, owner: str, repo: str, path: str) -> str:
        """Return the base64-encoded content of a file."""

    @abstractmethod
    async def list_tags(self, owner: str, repo: str, page: int = 1) -> List[TagInfo]:
        """Return one page of tags; an empty page ends the listing."""

    @abstractmethod
    async def list_repositories(self, organization: str) -> List[RepositoryRef]:
        """Return every repository of an organization."""


class GitHubClient(ForgeClient):
    """
    GitHub REST API client.

    Uses the async context manager pattern for httpx.AsyncClient resource
    management: the HTTP client is created on entry and closed on exit.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: Optional[float] = None,
        rate_limit_rps: Optional[float] = None,
        tags_per_page: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        config = get_config()
        self.api_url = (api_url or config.network.api_url).rstrip("/")
        self.timeout = timeout if timeout is not None else config.network.timeout_seconds
        self.tags_per_page = tags_per_page or config.network.tags_per_page
        self.rate_limiter = RateLimiter(rate_limit_rps or config.network.rate_limit)
        self.client: Optional[httpx.AsyncClient] = None
        self._transport = transport
        self._credential_error: Optional[str] = None

        self._headers = {
            "User-Agent": config.network.user_agent,
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

        explicit_token = token is not None
        token = token if explicit_token else config.discovery.token
        if token:
            try:
                self._headers["Authorization"] = f"Bearer {_validate_credential(token)}"
            except ValueError as e:
                # A configured token that is unusable is skipped; one passed
                # in directly makes every request fail.
                if explicit_token:
                    self._credential_error = str(e)
                log_credential_error(
                    "Rejected malformed forge token"
                    if explicit_token
                    else "Ignoring malformed forge token from configuration",
                    "forge_client",
                    "__init__",
                    credential_type="token",
                    exception=e,
                )

    async def __aenter__(self):
        """Initialize the HTTP client when entering the context."""
        self.client = httpx.AsyncClient(
            base_url=self.api_url,
            timeout=self.timeout,
            headers=self._headers,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Clean up the HTTP client when exiting the context."""
        if self.client:
            await self.client.aclose()
            self.client = None

    @property
    def has_token(self) -> bool:
        return "Authorization" in self._headers

    async def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        Perform a GET request and decode its JSON body.

        Raises:
            ForgeError: On HTTP errors, network errors and timeouts
        """
        if self.client is None:
            raise ForgeError(
                "HTTP client not initialized - use within async context manager"
            )

        if self._credential_error is not None:
            raise ForgeAuthenticationError(self._credential_error)

        await self.rate_limiter.acquire()
        start_time = time.time()

        try:
            response = await self.client.get(path, params=params)
            response.raise_for_status()
            data = response.json()
        except HTTPStatusError as e:
            status = e.response.status_code
            log_forge_request(
                _sanitize_url_for_logging(str(e.request.url)),
                status_code=status,
                response_time_ms=int((time.time() - start_time) * 1000),
            )
            if status in (401, 403):
                raise ForgeAuthenticationError(
                    f"HTTP {status}: access denied for {path}", status_code=status
                ) from e
            raise ForgeError(f"HTTP {status} for {path}", status_code=status) from e
        except RequestError as e:
            raise ForgeError(f"Network error for {path}: {e}") from e
        except ValueError as e:
            raise ForgeError(f"Invalid JSON returned for {path}") from e

        log_forge_request(
            _sanitize_url_for_logging(str(response.request.url)),
            status_code=response.status_code,
            response_time_ms=int((time.time() - start_time) * 1000),
        )
        return data

    async def check_authentication(self) -> None:
        """
        Probe the API once before any repository is processed.

        Raises:
            ForgeAuthenticationError: If the token is rejected or the
                forge cannot be reached
        """
        path = "/user" if self.has_token else "/rate_limit"
        try:
            await self._get_json(path)
        except ForgeAuthenticationError:
            raise
        except ForgeError as e:
            raise ForgeAuthenticationError(str(e), status_code=e.status_code) from e

    async def get_default_branch(self, owner: str, repo: str) -> str:
        data = await self._get_json(f"/repos/{quote(owner)}/{quote(repo)}")
        branch = data.get("default_branch") if isinstance(data, dict) else None
        if not branch:
            raise ForgeError(f"No default branch reported for {owner}/{repo}")
        return branch

    async def get_tree(
        self, owner: str, repo: str, branch: str, recursive: bool = True
    ) -> List[TreeEntry]:
        params = {"recursive": "1"} if recursive else None
        data = await self._get_json(
            f"/repos/{quote(owner)}/{quote(repo)}/git/trees/{quote(branch, safe='')}",
            params=params,
        )
        if isinstance(data, dict) and data.get("truncated"):
            get_error_handler().warning(
                ErrorCategory.NETWORK,
                "Tree listing truncated by the forge",
                "forge_client",
                "get_tree",
                details={"repository": f"{owner}/{repo}", "branch": branch},
            )
        items = data.get("tree", []) if isinstance(data, dict) else []
        return [
            TreeEntry(path=item["path"], type=item.get("type", ""))
            for item in items
            if isinstance(item, dict) and item.get("path")
        ]

    async def get_file_content(self, owner: str, repo: str, path: str) -> str:
        data = await self._get_json(
            f"/repos/{quote(owner)}/{quote(repo)}/contents/{quote(path)}"
        )
        if not isinstance(data, dict) or "content" not in data:
            raise ForgeError(f"{path} in {owner}/{repo} is not a file")
        return data["content"]

    async def list_tags(self, owner: str, repo: str, page: int = 1) -> List[TagInfo]:
        data = await self._get_json(
            f"/repos/{quote(owner)}/{quote(repo)}/tags",
            params={"per_page": self.tags_per_page, "page": page},
        )
        if not isinstance(data, list):
            return []
        return [
            TagInfo(name=item["name"])
            for item in data
            if isinstance(item, dict) and item.get("name")
        ]

    async def list_repositories(self, organization: str) -> List[RepositoryRef]:
        repositories: List[RepositoryRef] = []
        page = 1
        while True:
            data = await self._get_json(
                f"/orgs/{quote(organization)}/repos",
                params={"per_page": 100, "page": page},
            )
            if not isinstance(data, list) or not data:
                break
            for item in data:
                if not isinstance(item, dict) or not item.get("name"):
                    continue
                repositories.append(
                    RepositoryRef(
                        name=item["name"],
                        default_branch=item.get("default_branch") or "main",
                        archived=bool(item.get("archived", False)),
                        last_pushed_at=_parse_timestamp(item.get("pushed_at")),
                    )
                )
            page += 1
        return repositories


def get_forge_client(forge_type: str = "github", **kwargs) -> ForgeClient:
    """
    Factory function to get the appropriate forge client.

    Args:
        forge_type: Type of forge (only 'github' is supported)
        **kwargs: Passed to the client constructor

    Returns:
        Configured forge client

    Raises:
        ValueError: If forge_type is not supported
    """
    if forge_type == "github":
        return GitHubClient(**kwargs)
    raise ValueError(f"Unsupported forge type: {forge_type}")
