"""Tests for the CLI.

These tests run without network access or build tools; the run ledger
lives in a temporary SQLite database.
"""

import json
import subprocess
import sys
from pathlib import Path
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from nvim_crossbuild import __version__
from nvim_crossbuild.cli import app
from nvim_crossbuild.config import Settings
from nvim_crossbuild.db import get_session
from nvim_crossbuild.errors import BuildFailedError
from nvim_crossbuild.pipeline.models import RunRecord, StageRecord
from nvim_crossbuild.pipeline.service import RunOutcome, ledger_session_factory
from nvim_crossbuild.types import RunStatus, Selector
from nvim_crossbuild.verify.machine import EM_AARCH64, EM_X86_64

runner = CliRunner()


@pytest.fixture
def cli_env(tmp_path: Path) -> dict[str, str]:
    """Environment pointing the CLI at temporary state."""
    return {
        "NVIM_XB_DB_URL": f"sqlite:///{tmp_path / 'runs.db'}",
        "NVIM_XB_WORK_DIR": str(tmp_path / "work"),
        "NVIM_XB_DIST_DIR": str(tmp_path / "dist"),
        "NVIM_XB_LOG_LEVEL": "ERROR",
    }


class TestCLIHelp:
    """Test CLI help and version commands."""

    def test_help_returns_zero(self) -> None:
        """CLI --help should return exit code 0."""
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "Neovim cross-build orchestrator" in result.stdout

    def test_version_flag(self) -> None:
        """CLI --version should print version and exit 0."""
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_no_args_shows_help(self) -> None:
        """CLI with no args should show help."""
        result = runner.invoke(app, [])
        assert "Usage:" in result.stdout

    def test_subcommands_listed(self) -> None:
        """Every command group appears in the help."""
        result = runner.invoke(app, ["--help"])
        for command in ("run", "resolve", "verify", "version", "deps", "runs"):
            assert command in result.stdout


class TestCLIConfig:
    """Test CLI config command."""

    def test_config_sections(self, cli_env) -> None:
        """config shows every settings section."""
        result = runner.invoke(app, ["config"], env=cli_env)
        assert result.exit_code == 0
        for heading in ("Paths:", "GitHub:", "Toolchains:", "Timeouts (seconds):"):
            assert heading in result.stdout

    def test_config_json(self, cli_env) -> None:
        """config --json reflects environment overrides."""
        result = runner.invoke(app, ["config", "--json"], env=cli_env)
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["db_url"] == cli_env["NVIM_XB_DB_URL"]
        assert data["version_scan_lines"] == 3

    def test_config_masks_token(self, cli_env) -> None:
        """The GitHub token is never printed."""
        env = {**cli_env, "NVIM_XB_GITHUB_TOKEN": "ghp_secret"}
        result = runner.invoke(app, ["config", "--json"], env=env)
        assert "ghp_secret" not in result.stdout


class TestCLIResolve:
    """Test CLI resolve command."""

    def test_cross_json(self, cli_env, tmp_path) -> None:
        """Cross targets restrict lookups to the staging prefix."""
        staging = tmp_path / "staging"
        result = runner.invoke(
            app,
            ["resolve", "cross", "--staging-prefix", str(staging), "--json"],
            env=cli_env,
        )
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["architecture"] == "aarch64"
        assert data["deb_architecture"] == "arm64"
        assert data["dependency_mode"] == "build-from-source"
        assert data["compilers"]["target_cc"] == "aarch64-linux-gnu-gcc"
        assert data["find_policy"]["root_paths"] == [str(staging)]
        assert data["find_policy"]["program_mode"] == "NEVER"
        assert data["find_policy"]["library_mode"] == "ONLY"
        assert data["find_policy"]["foreign_packages_disabled"] is True
        assert "CMAKE_SYSTEM_PROCESSOR aarch64" in data["toolchain_file"]

    def test_native_json(self, cli_env) -> None:
        """Native targets have no toolchain file."""
        result = runner.invoke(app, ["resolve", "native", "--json"], env=cli_env)
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["architecture"] == "amd64"
        assert data["toolchain_file"] is None

    def test_unsupported(self, cli_env) -> None:
        """Unknown selectors exit with code 1."""
        result = runner.invoke(app, ["resolve", "riscv64"], env=cli_env)
        assert result.exit_code == 1
        assert "riscv64" in result.stdout


class TestCLIVerify:
    """Test CLI verify command."""

    def test_match(self, cli_env, tmp_path, make_elf) -> None:
        """A binary for the expected architecture passes."""
        binary = make_elf(tmp_path / "nvim", EM_AARCH64)
        result = runner.invoke(
            app, ["verify", str(binary), "--arch", "aarch64", "--json"], env=cli_env
        )
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["matches"] is True
        assert data["detected"] == "aarch64"

    def test_mismatch(self, cli_env, tmp_path, make_elf) -> None:
        """A host binary fails aarch64 verification."""
        binary = make_elf(tmp_path / "nvim", EM_X86_64)
        result = runner.invoke(
            app, ["verify", str(binary), "--arch", "aarch64"], env=cli_env
        )
        assert result.exit_code == 1
        assert "does not match" in result.stdout

    def test_not_a_binary(self, cli_env, tmp_path) -> None:
        """Scripts are reported as unparseable."""
        script = tmp_path / "nvim"
        script.write_text("#!/bin/sh\necho hi\n")
        result = runner.invoke(
            app, ["verify", str(script), "--arch", "amd64"], env=cli_env
        )
        assert result.exit_code == 1

    def test_invalid_arch(self, cli_env, tmp_path, make_elf) -> None:
        """Unknown architectures exit with code 1."""
        binary = make_elf(tmp_path / "nvim", EM_X86_64)
        result = runner.invoke(
            app, ["verify", str(binary), "--arch", "sparc"], env=cli_env
        )
        assert result.exit_code == 1
        assert "Invalid architecture" in result.stdout


class TestCLIVersion:
    """Test CLI version command."""

    def test_body_file(self, cli_env, tmp_path) -> None:
        """Versions are read from a release notes file."""
        notes = tmp_path / "notes.md"
        notes.write_text("NVIM v0.10.2\nBuild type: Release\n")
        result = runner.invoke(
            app, ["version", "--body-file", str(notes)], env=cli_env
        )
        assert result.exit_code == 0
        assert result.stdout.strip() == "0.10.2"

    def test_unresolved(self, cli_env, tmp_path) -> None:
        """Notes without a version exit with code 1."""
        notes = tmp_path / "notes.md"
        notes.write_text("Release notes\n\n\nNVIM v0.10.2\n")
        result = runner.invoke(
            app, ["version", "--body-file", str(notes)], env=cli_env
        )
        assert result.exit_code == 1
        assert "version_unresolved" in result.stdout


class TestCLIDeps:
    """Test CLI deps commands."""

    def test_list_json(self, cli_env) -> None:
        """deps list --json returns recipes in build order."""
        result = runner.invoke(app, ["deps", "list", "--json"], env=cli_env)
        assert result.exit_code == 0
        names = [r["name"] for r in json.loads(result.stdout)]
        assert "libuv" in names
        assert names.index("luajit-host") < names.index("luajit")

    def test_list_table(self, cli_env) -> None:
        """deps list prints a table."""
        result = runner.invoke(app, ["deps", "list"], env=cli_env)
        assert result.exit_code == 0
        assert "libuv" in result.stdout

    def test_missing_catalog(self, cli_env, tmp_path) -> None:
        """A missing catalog file exits with code 1."""
        result = runner.invoke(
            app,
            ["deps", "list", "--catalog", str(tmp_path / "nope.yaml")],
            env=cli_env,
        )
        assert result.exit_code == 1


class TestCLIRuns:
    """Test CLI runs commands."""

    def _seed(self, cli_env) -> None:
        settings = Settings(_env_file=None, db_url=cli_env["NVIM_XB_DB_URL"])
        with get_session(ledger_session_factory(settings)) as session:
            run = RunRecord(
                run_uuid="run-1",
                selector="cross",
                architecture="aarch64",
                status="failed",
                failed_stage="verify",
                error_code="architecture_mismatch",
                error_message="expected aarch64, detected x86-64",
            )
            session.add(run)
            session.add(StageRecord(run=run, stage="verify", status="failed"))

    def test_list_empty_json(self, cli_env) -> None:
        """runs list --json returns [] without runs."""
        result = runner.invoke(app, ["runs", "list", "--json"], env=cli_env)
        assert result.exit_code == 0
        assert json.loads(result.stdout) == []

    def test_list_filters(self, cli_env) -> None:
        """runs list filters by selector."""
        self._seed(cli_env)

        result = runner.invoke(
            app, ["runs", "list", "--selector", "native", "--json"], env=cli_env
        )
        assert json.loads(result.stdout) == []

        result = runner.invoke(
            app, ["runs", "list", "--selector", "cross", "--json"], env=cli_env
        )
        (run,) = json.loads(result.stdout)
        assert run["run_id"] == "run-1"
        assert run["error_code"] == "architecture_mismatch"

    def test_list_invalid_status(self, cli_env) -> None:
        """Unknown statuses exit with code 1."""
        result = runner.invoke(app, ["runs", "list", "--status", "bogus"], env=cli_env)
        assert result.exit_code == 1

    def test_show(self, cli_env) -> None:
        """runs show prints the run with its stages."""
        self._seed(cli_env)
        result = runner.invoke(app, ["runs", "show", "run-1"], env=cli_env)
        assert result.exit_code == 0
        assert "architecture_mismatch" in result.stdout
        assert "verify" in result.stdout

    def test_show_missing(self, cli_env) -> None:
        """Unknown run IDs exit with code 1."""
        result = runner.invoke(app, ["runs", "show", "nope"], env=cli_env)
        assert result.exit_code == 1
        assert "Run not found" in result.stdout


class TestCLIRun:
    """Test CLI run command with the pipeline mocked."""

    def test_failed_run_exits_one(self, cli_env, tmp_path) -> None:
        """Any failed run makes the command exit with code 1."""
        error = BuildFailedError("cmake --build failed", stage="build")
        outcomes = [
            RunOutcome(
                run_id="r1",
                selector=Selector.CROSS,
                status=RunStatus.FAILED,
                work_dir=tmp_path,
                failed_stage="build",
                error=error,
            )
        ]
        with patch(
            "nvim_crossbuild.pipeline.service.run_pipelines", return_value=outcomes
        ) as run_pipelines:
            result = runner.invoke(
                app,
                ["run", "cross", "--version", "0.10.2", "--skip-provision", "--json"],
                env=cli_env,
            )

        assert result.exit_code == 1
        (data,) = json.loads(result.stdout)
        assert data["error"]["code"] == "build_failed"
        assert run_pipelines.call_args.args[0] == ["cross"]
        assert run_pipelines.call_args.kwargs["version"] == "0.10.2"
        assert run_pipelines.call_args.kwargs["skip_provision"] is True

    def test_release_notes_passed(self, cli_env, tmp_path) -> None:
        """--release-notes hands the file contents to the runs."""
        notes = tmp_path / "notes.md"
        notes.write_text("Built from neovim v0.10.2\n")
        with patch(
            "nvim_crossbuild.pipeline.service.run_pipelines", return_value=[]
        ) as run_pipelines:
            result = runner.invoke(
                app,
                ["run", "cross", "--publish", "--release-notes", str(notes)],
                env=cli_env,
            )

        assert result.exit_code == 0
        body = run_pipelines.call_args.kwargs["release_body"]
        assert body == "Built from neovim v0.10.2\n"

    def test_release_notes_missing(self, cli_env, tmp_path) -> None:
        """A missing release notes file exits before any run."""
        with patch("nvim_crossbuild.pipeline.service.run_pipelines") as run_pipelines:
            result = runner.invoke(
                app,
                ["run", "cross", "--release-notes", str(tmp_path / "nope.md")],
                env=cli_env,
            )

        assert result.exit_code == 1
        assert "File not found" in result.stdout
        run_pipelines.assert_not_called()

    def test_unsupported_selector(self, cli_env) -> None:
        """Unknown selectors exit before any run."""
        result = runner.invoke(app, ["run", "riscv64"], env=cli_env)
        assert result.exit_code == 1


class TestCLIModule:
    """Test running as python -m nvim_crossbuild."""

    def test_module_help(self) -> None:
        """python -m nvim_crossbuild --help should work."""
        result = subprocess.run(
            [sys.executable, "-m", "nvim_crossbuild", "--help"],
            capture_output=True,
            text=True,
        )
        assert result.returncode == 0
        assert "Neovim cross-build orchestrator" in result.stdout
