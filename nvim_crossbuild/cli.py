"""Thin CLI wrapper for nvim_crossbuild.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from nvim_crossbuild import __version__
from nvim_crossbuild.config import get_settings, print_settings_json
from nvim_crossbuild.errors import PipelineError

app = typer.Typer(
    name="nvim-crossbuild",
    help="Neovim cross-build orchestrator - build, verify, package and publish",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)


def configure_logging(level: str) -> None:
    """Send log records to stderr through rich at the given level."""
    root = logging.getLogger()
    if not any(isinstance(h, RichHandler) for h in root.handlers):
        root.addHandler(
            RichHandler(console=err_console, show_path=False, rich_tracebacks=True)
        )
    root.setLevel(level)


def print_json(data: Any) -> None:
    """Print data as JSON on stdout without rich markup or wrapping."""
    console.print(
        json.dumps(data, indent=2, default=str),
        markup=False,
        highlight=False,
        soft_wrap=True,
    )


def print_error(error: PipelineError) -> None:
    """Print a pipeline error with its diagnostics."""
    stage = f" in {error.stage}" if error.stage else ""
    console.print(f"[red]Error{stage} ({error.code}): {error.message}[/red]")
    if error.log_path:
        console.print(f"  Log: {error.log_path}")
    if error.diagnostics:
        console.print("[dim]--- diagnostics ---[/dim]")
        console.print(error.diagnostics, markup=False, highlight=False)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"nvim-crossbuild version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """Neovim cross-build orchestrator - build, verify, package and publish."""
    configure_logging(get_settings().log_level)


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings), markup=False, soft_wrap=True)
    else:
        console.print("[bold]Effective Configuration:[/bold]")
        console.print()
        console.print("[bold]Paths:[/bold]")
        console.print(f"  Work directory:      {settings.work_dir}")
        console.print(f"  Dist directory:      {settings.dist_dir}")
        console.print(f"  Database URL:        {settings.db_url}")
        console.print(f"  Keep work dir:       {settings.keep_work_dir}")
        console.print()
        console.print("[bold]Product:[/bold]")
        console.print(f"  Product:             {settings.product}")
        console.print(f"  Channel:             {settings.channel}")
        console.print(f"  Source:              {settings.source_repo_url}")
        console.print(f"  Source ref:          {settings.source_ref}")
        console.print()
        console.print("[bold]GitHub:[/bold]")
        console.print(f"  API URL:             {settings.github_api_url}")
        console.print(f"  Upstream repo:       {settings.upstream_repo}")
        console.print(f"  Publish repo:        {settings.github_repo or '(not set)'}")
        console.print(
            f"  Token:               {'(set)' if settings.github_token else '(not set)'}"
        )
        console.print(f"  Version scan lines:  {settings.version_scan_lines}")
        console.print()
        console.print("[bold]Toolchains:[/bold]")
        console.print(f"  Host CC/CXX:         {settings.host_cc} / {settings.host_cxx}")
        console.print(f"  Cross triple:        {settings.cross_triple}")
        console.print(f"  Use sudo:            {settings.use_sudo}")
        console.print()
        console.print("[bold]Operational:[/bold]")
        console.print(f"  Log level:           {settings.log_level}")
        console.print(f"  Max builds:          {settings.max_concurrent_builds}")
        console.print()
        console.print("[bold]Timeouts (seconds):[/bold]")
        console.print(f"  Pipeline timeout:    {settings.pipeline_timeout}")
        console.print(f"  Command timeout:     {settings.command_timeout}")
        console.print(f"  HTTP timeout:        {settings.http_timeout}")


@app.command()
def resolve(
    selector: Annotated[str, typer.Argument(help="Target selector (native/cross)")],
    staging_prefix: Annotated[
        Path | None,
        typer.Option("--staging-prefix", help="Staging prefix for cross targets"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Resolve a selector into its target description."""
    from nvim_crossbuild.errors import UnsupportedArchitectureError
    from nvim_crossbuild.toolchain.cmake import find_policy_args, render_toolchain_file
    from nvim_crossbuild.toolchain.resolver import resolve_target

    settings = get_settings()
    if staging_prefix is None:
        staging_prefix = settings.work_dir / "<run>" / "staging"

    try:
        spec = resolve_target(selector, settings, staging_prefix=staging_prefix)
    except UnsupportedArchitectureError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from None

    toolchain = render_toolchain_file(spec) if spec.compilers.is_cross else None
    policy = spec.find_policy

    if json_output:
        print_json(
            {
                "selector": spec.selector.value,
                "architecture": spec.architecture.value,
                "deb_architecture": spec.deb_architecture,
                "system_processor": spec.system_processor,
                "dependency_mode": spec.dependency_mode.value,
                "compilers": {
                    "host_cc": spec.compilers.host_cc,
                    "host_cxx": spec.compilers.host_cxx,
                    "target_cc": spec.compilers.target_cc,
                    "target_cxx": spec.compilers.target_cxx,
                    "target_triple": spec.compilers.target_triple,
                },
                "find_policy": {
                    "root_paths": [str(p) for p in policy.root_paths],
                    "program_mode": policy.program_mode,
                    "library_mode": policy.library_mode,
                    "include_mode": policy.include_mode,
                    "package_mode": policy.package_mode,
                    "ignore_system_prefixes": list(policy.ignore_system_prefixes),
                    "foreign_packages_disabled": policy.foreign_packages_disabled,
                },
                "cmake_args": find_policy_args(spec),
                "toolchain_file": toolchain,
            }
        )
        return

    console.print(f"[bold]{spec.selector.value}[/bold] -> {spec.architecture.value}")
    console.print(f"  Dependency mode:     {spec.dependency_mode.value}")
    console.print(f"  Debian arch:         {spec.deb_architecture}")
    compilers = spec.compilers
    console.print(f"  Target CC/CXX:       {compilers.target_cc} / {compilers.target_cxx}")
    console.print(f"  Host CC/CXX:         {compilers.host_cc} / {compilers.host_cxx}")
    if policy.root_paths:
        roots = ", ".join(str(p) for p in policy.root_paths)
        console.print(f"  Search roots:        {roots}")
        console.print(
            f"  Find modes:          program={policy.program_mode} "
            f"library={policy.library_mode} include={policy.include_mode} "
            f"package={policy.package_mode}"
        )
        foreign = "disabled" if policy.foreign_packages_disabled else "allowed"
        console.print(f"  Foreign packages:    {foreign}")
    if toolchain:
        console.print()
        console.print("[bold]Toolchain file:[/bold]")
        console.print(toolchain, markup=False, highlight=False)


@app.command()
def run(
    selectors: Annotated[
        list[str], typer.Argument(help="Target selectors (native/cross)")
    ],
    version: Annotated[
        str | None,
        typer.Option("--version", help="Release version (skips upstream lookup)"),
    ] = None,
    publish: Annotated[
        bool,
        typer.Option("--publish/--no-publish", help="Publish a GitHub release"),
    ] = False,
    skip_provision: Annotated[
        bool,
        typer.Option("--skip-provision", help="Do not install host packages"),
    ] = False,
    source_dir: Annotated[
        Path | None,
        typer.Option("--source-dir", help="Build an existing checkout"),
    ] = None,
    release_notes: Annotated[
        Path | None,
        typer.Option("--release-notes", help="Release body to publish with"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Run the build pipeline for one or more selectors.

    Selectors run as independent pipelines, concurrently up to the
    configured limit. Exits with code 1 if any run fails.
    """
    from nvim_crossbuild.errors import UnsupportedArchitectureError
    from nvim_crossbuild.pipeline.service import run_pipelines

    settings = get_settings()
    release_body = None
    if release_notes is not None:
        if not release_notes.is_file():
            console.print(f"[red]File not found: {release_notes}[/red]")
            raise typer.Exit(code=1)
        release_body = release_notes.read_text(encoding="utf-8")

    try:
        outcomes = run_pipelines(
            list(selectors),
            settings,
            version=version,
            publish=publish,
            skip_provision=skip_provision,
            source_dir=source_dir.resolve() if source_dir else None,
            release_body=release_body,
        )
    except UnsupportedArchitectureError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        print_json([o.to_dict() for o in outcomes])
    else:
        for outcome in outcomes:
            if outcome.succeeded:
                console.print(
                    f"[green]{outcome.selector.value}: succeeded[/green] "
                    f"(run {outcome.run_id})"
                )
                if outcome.package:
                    console.print(f"  Package:   {outcome.package.package_path}")
                    console.print(f"  Versioned: {outcome.package.versioned_path}")
                    console.print(f"  SHA-256:   {outcome.package.sha256}")
                if outcome.release:
                    console.print(
                        f"  Release:   {outcome.release.tag} "
                        f"{outcome.release.html_url or ''}"
                    )
            else:
                console.print(
                    f"[red]{outcome.selector.value}: failed[/red] "
                    f"(run {outcome.run_id})"
                )
                if outcome.error is not None:
                    print_error(outcome.error)

    if not all(o.succeeded for o in outcomes):
        raise typer.Exit(code=1)


@app.command()
def verify(
    binary: Annotated[Path, typer.Argument(help="Binary to inspect")],
    arch: Annotated[
        str,
        typer.Option("--arch", "-a", help="Expected architecture (amd64/aarch64)"),
    ],
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Check a binary's machine tag against an architecture."""
    from nvim_crossbuild.errors import ArtifactFormatError
    from nvim_crossbuild.types import Architecture
    from nvim_crossbuild.verify.machine import (
        architecture_for_tag,
        expected_tags,
        read_machine_tag,
    )

    try:
        architecture = Architecture(arch.strip().lower())
    except ValueError:
        console.print(f"[red]Invalid architecture: {arch}[/red]")
        console.print(f"Valid values: {', '.join(a.value for a in Architecture)}")
        raise typer.Exit(code=1) from None

    if not binary.is_file():
        console.print(f"[red]File not found: {binary}[/red]")
        raise typer.Exit(code=1)

    try:
        tag = read_machine_tag(binary)
    except ArtifactFormatError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from None

    matches = tag in expected_tags(architecture)
    detected = architecture_for_tag(tag)

    if json_output:
        print_json(
            {
                "path": str(binary),
                "expected": architecture.value,
                "detected": detected.value if detected else None,
                "machine": str(tag),
                "matches": matches,
            }
        )
    elif matches:
        console.print(f"[green]{binary}: {tag} matches {architecture.value}[/green]")
    else:
        console.print(
            f"[red]{binary}: {tag} does not match {architecture.value}[/red]"
        )

    if not matches:
        raise typer.Exit(code=1)


@app.command("version")
def version_cmd(
    body_file: Annotated[
        Path | None,
        typer.Option("--body-file", help="Read release notes from a file"),
    ] = None,
    channel: Annotated[
        str | None,
        typer.Option("--channel", help="Release channel (default from settings)"),
    ] = None,
    scan_lines: Annotated[
        int | None,
        typer.Option("--scan-lines", min=1, help="Leading lines to scan"),
    ] = None,
) -> None:
    """Resolve the release version from upstream release notes."""
    import httpx

    from nvim_crossbuild.errors import VersionUnresolvedError
    from nvim_crossbuild.release.version import extract_version, resolve_version

    settings = get_settings()
    lines = scan_lines or settings.version_scan_lines

    try:
        if body_file is not None:
            if not body_file.is_file():
                console.print(f"[red]File not found: {body_file}[/red]")
                raise typer.Exit(code=1)
            version = extract_version(body_file.read_text(encoding="utf-8"), lines)
        else:
            token = (
                settings.github_token.get_secret_value()
                if settings.github_token
                else None
            )
            with httpx.Client(timeout=settings.http_timeout) as client:
                version = resolve_version(
                    client,
                    settings.upstream_repo,
                    channel or settings.channel,
                    scan_lines=lines,
                    api_url=settings.github_api_url,
                    token=token,
                )
    except VersionUnresolvedError as e:
        print_error(e)
        raise typer.Exit(code=1) from None

    console.print(version)


# Dependency catalog


deps_app = typer.Typer(help="Inspect the dependency catalog")
app.add_typer(deps_app, name="deps")


@deps_app.command("list")
def deps_list(
    catalog_path: Annotated[
        Path | None,
        typer.Option("--catalog", help="Catalog file (YAML/JSON)"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List dependency recipes in build order."""
    from pydantic import ValidationError

    from nvim_crossbuild.deps.io import load_catalog

    try:
        catalog = load_catalog(catalog_path)
    except FileNotFoundError:
        console.print(f"[red]File not found: {catalog_path}[/red]")
        raise typer.Exit(code=1) from None
    except (ValueError, ValidationError) as e:
        console.print(f"[red]Invalid catalog: {e}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        print_json([r.model_dump() for r in catalog.recipes])
        return

    table = Table(title="Dependency catalog")
    table.add_column("Name")
    table.add_column("Version")
    table.add_column("Build")
    table.add_column("Kind")
    table.add_column("System package")
    for recipe in catalog.recipes:
        table.add_row(
            recipe.name,
            recipe.version,
            recipe.build_system,
            "host tool" if recipe.host else "library",
            recipe.system_package or "-",
        )
    console.print(table)


# Run ledger


runs_app = typer.Typer(help="Inspect recorded pipeline runs")
app.add_typer(runs_app, name="runs")


@runs_app.command("list")
def runs_list(
    status: Annotated[
        str | None,
        typer.Option(
            "--status", "-s", help="Filter by status (pending/running/succeeded/failed)"
        ),
    ] = None,
    selector: Annotated[
        str | None,
        typer.Option("--selector", help="Filter by selector (native/cross)"),
    ] = None,
    limit: Annotated[
        int,
        typer.Option("--limit", "-l", help="Maximum number of records to return"),
    ] = 100,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List pipeline runs, newest first."""
    from nvim_crossbuild.pipeline.service import ledger_session_factory, list_runs
    from nvim_crossbuild.types import RunStatus, Selector

    status_filter: RunStatus | None = None
    if status:
        try:
            status_filter = RunStatus(status)
        except ValueError:
            console.print(f"[red]Invalid status: {status}[/red]")
            console.print("Valid values: pending, running, succeeded, failed")
            raise typer.Exit(code=1) from None

    selector_filter: Selector | None = None
    if selector:
        try:
            selector_filter = Selector(selector)
        except ValueError:
            console.print(f"[red]Invalid selector: {selector}[/red]")
            raise typer.Exit(code=1) from None

    factory = ledger_session_factory(get_settings())
    with factory() as session:
        runs = list_runs(
            session, status=status_filter, selector=selector_filter, limit=limit
        )

        if json_output:
            print_json([r.to_dict() for r in runs])
            return

        if not runs:
            console.print("[yellow]No runs found[/yellow]")
            return

        console.print(f"[bold]Found {len(runs)} run(s):[/bold]")
        console.print()
        for r in runs:
            status_color = {
                "succeeded": "green",
                "failed": "red",
                "running": "blue",
                "pending": "yellow",
            }.get(r.status, "white")
            console.print(f"  [{status_color}]{r.run_uuid}[/{status_color}]")
            arch = r.architecture or "unresolved"
            console.print(f"    Selector: {r.selector} ({arch})")
            console.print(f"    Status: {r.status}")
            console.print(
                f"    Requested: {r.requested_at.isoformat() if r.requested_at else 'N/A'}"
            )
            if r.version:
                console.print(f"    Version: {r.version}")
            if r.error_message:
                console.print(f"    Failed at: {r.failed_stage} ({r.error_code})")
                console.print(f"    Error: {r.error_message}")
            console.print()


@runs_app.command("show")
def runs_show(
    run_id: Annotated[str, typer.Argument(help="Run ID")],
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show one run with its stages."""
    from nvim_crossbuild.pipeline.service import (
        RunNotFoundError,
        get_run,
        ledger_session_factory,
    )

    factory = ledger_session_factory(get_settings())
    with factory() as session:
        try:
            r = get_run(session, run_id)
        except RunNotFoundError:
            console.print(f"[red]Run not found: {run_id}[/red]")
            raise typer.Exit(code=1) from None

        if json_output:
            print_json(r.to_dict())
            return

        console.print(f"[bold]Run {r.run_uuid}[/bold]")
        console.print(f"  Selector:     {r.selector}")
        console.print(f"  Architecture: {r.architecture or 'unresolved'}")
        console.print(f"  Status:       {r.status}")
        console.print(f"  Work dir:     {r.work_dir}")
        if r.version:
            console.print(f"  Version:      {r.version}")
        if r.package_path:
            console.print(f"  Package:      {r.package_path}")
            console.print(f"  Versioned:    {r.versioned_package_path}")
            console.print(f"  SHA-256:      {r.package_sha256}")
        if r.release_tag:
            console.print(f"  Release:      {r.release_tag} {r.release_url or ''}")
        if r.error_message:
            console.print(
                f"  [red]Failed at {r.failed_stage} ({r.error_code}): "
                f"{r.error_message}[/red]"
            )
            if r.log_path:
                console.print(f"  Log:          {r.log_path}")
            if r.diagnostics:
                console.print("[dim]--- diagnostics ---[/dim]")
                console.print(r.diagnostics, markup=False, highlight=False)

        console.print()
        console.print("[bold]Stages:[/bold]")
        for s in r.stages:
            console.print(f"  {s.stage:<14} {s.status}")


if __name__ == "__main__":
    app()
