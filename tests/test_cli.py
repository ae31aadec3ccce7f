"""
CLI interface tests for composer-depgraph.
Tests the command-line interface and main entry points.
"""

import asyncio
import io
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import patch

from click.testing import CliRunner
from rich.console import Console

from composer_depgraph.forge_client import ForgeAuthenticationError, ForgeError
from composer_depgraph.graph_builder import GraphBuilder, ProgressSnapshot
from composer_depgraph.main import cli
from composer_depgraph.reporting import GraphReporter


class TestCLIBasics:
    """Test basic CLI functionality."""

    def test_cli_help(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        assert "composer-depgraph" in result.output.lower()

    def test_cli_version(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert "1.0.0" in result.output

    def test_info_command(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["info"])

        assert result.exit_code == 0
        assert "composer.json" in result.output
        assert "MonorepoService" in result.output


class TestDiscoverCommand:
    """Test the discover command."""

    def test_json_output(self, lock_pinned_forge):
        runner = CliRunner()
        with patch("composer_depgraph.main.get_forge_client", return_value=lock_pinned_forge):
            result = runner.invoke(
                cli, ["discover", "org", "--repo", "a", "--repo", "b", "--output-format", "json"]
            )

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["status"] == "success"
        assert data["graph"]["links"] == [
            {"source": "org/a>org/a", "target": "org/b>org/b", "version": "3.4.1"}
        ]
        assert data["summary"]["Project"] == 1
        assert data["outdated"][0]["change"] == "minor"

    def test_console_output(self, lock_pinned_forge):
        runner = CliRunner()
        with patch("composer_depgraph.main.get_forge_client", return_value=lock_pinned_forge):
            result = runner.invoke(cli, ["discover", "org", "--repo", "a", "--repo", "b"])

        assert result.exit_code == 0
        assert "org/b" in result.output
        assert "Found 2 packages and 1 internal dependencies" in result.output

    def test_output_file(self, lock_pinned_forge):
        runner = CliRunner()
        with patch("composer_depgraph.main.get_forge_client", return_value=lock_pinned_forge):
            result = runner.invoke(
                cli,
                ["discover", "org", "--repo", "a", "--repo", "b", "--output-format", "json", "-o", "graph.json"],
            )

        assert result.exit_code == 0
        data = json.loads(Path("graph.json").read_text(encoding="utf-8"))
        assert len(data["graph"]["nodes"]) == 2

    def test_defaults_to_active_repositories(self, forge):
        now = datetime.now(timezone.utc)
        forge.add_repository("fresh", files={"composer.json": {"name": "org/fresh"}}, last_pushed_at=now - timedelta(days=1))
        forge.add_repository("stale", files={"composer.json": {"name": "org/stale"}}, last_pushed_at=now - timedelta(days=60))

        runner = CliRunner()
        with patch("composer_depgraph.main.get_forge_client", return_value=forge):
            result = runner.invoke(cli, ["discover", "org", "--output-format", "json"])

        assert result.exit_code == 0
        assert ("list_repositories", "org") in forge.calls
        assert ("get_default_branch", "fresh") in forge.calls
        assert ("get_default_branch", "stale") not in forge.calls

    def test_all_includes_stale_repositories(self, forge):
        forge.add_repository("stale", files={"composer.json": {"name": "org/stale"}})

        runner = CliRunner()
        with patch("composer_depgraph.main.get_forge_client", return_value=forge):
            result = runner.invoke(cli, ["discover", "org", "--all", "--output-format", "json"])

        assert result.exit_code == 0
        assert json.loads(result.stdout)["graph"]["nodes"][0]["id"] == "org/stale>org/stale"

    def test_empty_result(self, forge):
        forge.add_repository("docs", files={"README.md": "# docs"})

        runner = CliRunner()
        with patch("composer_depgraph.main.get_forge_client", return_value=forge):
            result = runner.invoke(cli, ["discover", "org", "--repo", "docs"])

        assert result.exit_code == 0
        assert "No internal dependencies found between projects." in result.output

    def test_fail_on_empty(self, forge):
        forge.add_repository("docs", files={"README.md": "# docs"})

        runner = CliRunner()
        with patch("composer_depgraph.main.get_forge_client", return_value=forge):
            result = runner.invoke(cli, ["discover", "org", "--repo", "docs", "--fail-on-empty", "-q"])

        assert result.exit_code == 2

    def test_authentication_failure(self, forge):
        forge.add_repository("app", files={"composer.json": {"name": "org/app"}})
        forge.auth_error = ForgeAuthenticationError("Bad credentials", status_code=401)

        runner = CliRunner()
        with patch("composer_depgraph.main.get_forge_client", return_value=forge):
            result = runner.invoke(cli, ["discover", "org", "--repo", "app"])

        assert result.exit_code == 1
        assert "check your token" in result.output

    def test_repository_listing_failure(self, forge):
        forge.list_error = ForgeError("HTTP 404 for /orgs/org/repos", status_code=404)

        runner = CliRunner()
        with patch("composer_depgraph.main.get_forge_client", return_value=forge):
            result = runner.invoke(cli, ["discover", "org"])

        assert result.exit_code == 1

    def test_output_file_requires_json(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["discover", "org", "-o", "graph.json"])

        assert result.exit_code != 0
        assert "JSON" in result.output

    def test_all_conflicts_with_repo(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["discover", "org", "--all", "--repo", "app"])

        assert result.exit_code != 0

    def test_organization_is_required(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["discover"])

        assert result.exit_code == 2
        assert "organization is required" in result.output

    def test_organization_from_environment(self, lock_pinned_forge, monkeypatch):
        monkeypatch.setenv("COMPOSER_DEPGRAPH_ORGANIZATION", "org")

        runner = CliRunner()
        with patch("composer_depgraph.main.get_forge_client", return_value=lock_pinned_forge):
            result = runner.invoke(cli, ["discover", "--repo", "a", "--repo", "b", "--output-format", "json"])

        assert result.exit_code == 0
        assert json.loads(result.stdout)["organization"] == "org"


class TestReposCommand:
    """Test the repository listing command."""

    def test_lists_repositories(self, forge):
        forge.add_repository("fresh", last_pushed_at=datetime.now(timezone.utc))
        forge.add_repository("legacy", archived=True)

        runner = CliRunner()
        with patch("composer_depgraph.main.get_forge_client", return_value=forge):
            result = runner.invoke(cli, ["repos", "org", "--all"])

        assert result.exit_code == 0
        assert "fresh" in result.output
        assert "legacy" in result.output

    def test_no_active_repositories(self, forge):
        forge.add_repository("legacy", archived=True)

        runner = CliRunner()
        with patch("composer_depgraph.main.get_forge_client", return_value=forge):
            result = runner.invoke(cli, ["repos", "org"])

        assert result.exit_code == 0
        assert "No repositories selected" in result.output


class TestConfigCommands:
    """Test configuration management commands."""

    def test_config_init(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["config", "init"])

        assert result.exit_code == 0
        data = json.loads(Path(".composer-depgraph.json").read_text(encoding="utf-8"))
        assert data["discovery"]["manifest_filename"] == "composer.json"
        assert "token" not in data["discovery"]

    def test_config_init_keeps_existing_file(self):
        Path(".composer-depgraph.json").write_text("{}", encoding="utf-8")

        runner = CliRunner()
        result = runner.invoke(cli, ["config", "init"])

        assert result.exit_code == 0
        assert "already exists" in result.output
        assert Path(".composer-depgraph.json").read_text(encoding="utf-8") == "{}"

    def test_config_show_redacts_token(self, monkeypatch):
        monkeypatch.setenv("GITHUB_TOKEN", "ghp_abcdefghijklmnop1234")

        runner = CliRunner()
        result = runner.invoke(cli, ["config", "show"])

        assert result.exit_code == 0
        assert "[REDACTED]" in result.output
        assert "ghp_abcdefghijklmnop1234" not in result.output


class TestGraphReporter:
    """Test console rendering of discovery results."""

    def render(self, callback):
        buffer = io.StringIO()
        callback(GraphReporter(Console(file=buffer, width=120, color_system=None)))
        return buffer.getvalue()

    def test_progress_lines(self):
        output = self.render(
            lambda reporter: [
                reporter.print_progress(ProgressSnapshot(1, 3, "app", True, ("org/lib",))),
                reporter.print_progress(ProgressSnapshot(2, 3, "docs", False, ())),
                reporter.print_progress(ProgressSnapshot(3, 3, "tools", True, ())),
            ]
        )

        assert "[1/3] app: org/lib" in output
        assert "[2/3] docs: no composer.json" in output
        assert "[3/3] tools: no internal dependencies" in output

    def test_result_with_warnings_and_outdated_edges(self, lock_pinned_forge):
        result = asyncio.run(GraphBuilder(lock_pinned_forge, "org").run(["a", "b"]))
        result.warnings.append("Could not fetch tags [org/x]")

        output = self.render(lambda reporter: reporter.print_result(result, "org"))

        assert "Could not fetch tags [org/x]" in output
        assert "3.4.1 → 3.5.0" in output
        assert "(minor)" in output
