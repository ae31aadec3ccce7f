"""
Shared fixtures: an isolated configuration and an in-memory forge.
"""

import base64
import json
import os

import pytest

from composer_depgraph.cli_config import reset_config
from composer_depgraph.error_handling import setup_error_handling
from composer_depgraph.forge_client import (
    ForgeClient,
    ForgeError,
    RepositoryRef,
    TagInfo,
    TreeEntry,
)


def encode_content(content) -> str:
    """Encode a file the way the GitHub contents API does (wrapped base64)."""
    if not isinstance(content, str):
        content = json.dumps(content)
    return base64.encodebytes(content.encode("utf-8")).decode("ascii")


class FakeForge(ForgeClient):
    """
    Forge backed by dictionaries.

    File values may be dicts (served as JSON), strings (served verbatim) or
    exceptions (raised when the file is fetched). Every call is recorded.
    """

    def __init__(self, tags_per_page: int = 2):
        self.repositories = {}
        self.calls = []
        self.auth_error = None
        self.list_error = None
        self.tags_per_page = tags_per_page
        self.repository_refs = []

    def add_repository(
        self,
        name,
        files=None,
        tags=None,
        branch="main",
        directories=(),
        error=None,
        archived=False,
        last_pushed_at=None,
    ) -> RepositoryRef:
        self.repositories[name] = {
            "branch": branch,
            "files": dict(files or {}),
            "tags": list(tags or []),
            "directories": list(directories),
            "error": error,
        }
        ref = RepositoryRef(
            name=name,
            default_branch=branch,
            archived=archived,
            last_pushed_at=last_pushed_at,
        )
        self.repository_refs.append(ref)
        return ref

    @property
    def fetch_calls(self):
        return [call for call in self.calls if call[0] != "check_authentication"]

    def _repository(self, owner, repo):
        entry = self.repositories.get(repo)
        if entry is None:
            raise ForgeError(f"{owner}/{repo} not found", status_code=404)
        if entry["error"] is not None:
            raise entry["error"]
        return entry

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return None

    async def check_authentication(self):
        self.calls.append(("check_authentication",))
        if self.auth_error is not None:
            raise self.auth_error

    async def get_default_branch(self, owner, repo):
        self.calls.append(("get_default_branch", repo))
        return self._repository(owner, repo)["branch"]

    async def get_tree(self, owner, repo, branch, recursive=True):
        self.calls.append(("get_tree", repo, branch))
        entry = self._repository(owner, repo)
        tree = [TreeEntry(path=path, type="tree") for path in entry["directories"]]
        tree += [TreeEntry(path=path, type="blob") for path in entry["files"]]
        return tree

    async def get_file_content(self, owner, repo, path):
        self.calls.append(("get_file_content", repo, path))
        files = self._repository(owner, repo)["files"]
        if path not in files:
            raise ForgeError(f"{path} not found", status_code=404)
        content = files[path]
        if isinstance(content, Exception):
            raise content
        return encode_content(content)

    async def list_tags(self, owner, repo, page=1):
        self.calls.append(("list_tags", repo, page))
        tags = self._repository(owner, repo)["tags"]
        start = (page - 1) * self.tags_per_page
        return [TagInfo(name=name) for name in tags[start:start + self.tags_per_page]]

    async def list_repositories(self, organization):
        self.calls.append(("list_repositories", organization))
        if self.list_error is not None:
            raise self.list_error
        return list(self.repository_refs)


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Keep user config files, tokens and earlier tests out of every test."""
    for key in list(os.environ):
        if key.startswith("COMPOSER_DEPGRAPH_") or key == "GITHUB_TOKEN":
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.chdir(tmp_path)
    reset_config()
    setup_error_handling()
    yield
    reset_config()


@pytest.fixture
def forge():
    """Empty in-memory forge."""
    return FakeForge()


@pytest.fixture
def lock_pinned_forge():
    """Repository ``a`` requires ``org/b`` with a lock file pinning 3.4.1."""
    fake = FakeForge()
    fake.add_repository(
        "a",
        files={
            "composer.json": {"name": "org/a", "require": {"org/b": "^3.0"}},
            "composer.lock": {"packages": [{"name": "org/b", "version": "3.4.1"}]},
        },
    )
    fake.add_repository(
        "b",
        files={"composer.json": {"name": "org/b"}},
        tags=["v3.5.0", "v3.4.1", "not-a-release"],
    )
    return fake


@pytest.fixture
def monorepo_forge():
    """Repository ``app`` depends on a service of the ``mono`` monorepo."""
    fake = FakeForge()
    fake.add_repository(
        "app",
        files={"composer.json": {"name": "org/app", "require": {"org/api": "^2.0"}}},
    )
    fake.add_repository(
        "mono",
        directories=["services", "services/api", "services/worker"],
        files={
            "services/api/composer.json": {
                "name": "org/api",
                "require": {"org/shared": "^1.0", "php": ">=8.1"},
            },
            "services/worker/composer.json": {
                "name": "org/worker",
                "require": {"org/api": "^2.0"},
            },
        },
    )
    return fake
