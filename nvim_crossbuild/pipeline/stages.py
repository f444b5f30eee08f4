"""Ordered pipeline stages.

Each stage reads its inputs from the RunContext, checks they are present
with RunContext.require, and stores exactly one output back on it:

    provision     -> installed host packages
    source        -> source_dir
    resolve       -> spec (+ toolchain_file for cross targets)
    dependencies  -> deps
    build         -> artifact
    verify        -> artifact (with detected architecture)
    version       -> version
    package       -> package
    publish       -> release

STAGES is the single source of ordering; nothing runs out of order.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from nvim_crossbuild.build.main import run_main_build
from nvim_crossbuild.build.runner import CommandExecutionError
from nvim_crossbuild.deps.builder import build_dependencies
from nvim_crossbuild.deps.system import resolve_system_dependencies
from nvim_crossbuild.errors import (
    ArchitectureMismatchError,
    PipelineError,
    PublishError,
)
from nvim_crossbuild.packaging.assembler import assemble_package, parse_version
from nvim_crossbuild.packaging.naming import release_display_name, release_tag
from nvim_crossbuild.provision.apt import AptPackageManager, provision
from nvim_crossbuild.provision.source import checkout_source
from nvim_crossbuild.release.publisher import GitHubPublisher
from nvim_crossbuild.release.version import resolve_version
from nvim_crossbuild.toolchain.cmake import write_toolchain_file
from nvim_crossbuild.toolchain.resolver import resolve_target
from nvim_crossbuild.types import (
    BuildArtifact,
    DependencyMode,
    DependencySet,
    PackageDescriptor,
    ReleaseRecord,
    Selector,
    StageName,
    TargetSpec,
)
from nvim_crossbuild.verify.machine import describe_with_file, verify_artifact

if TYPE_CHECKING:
    import httpx

    from nvim_crossbuild.build.runner import CommandRunner
    from nvim_crossbuild.config import Settings
    from nvim_crossbuild.deps.schema import DependencyCatalog

logger = logging.getLogger(__name__)


class StagePreconditionError(PipelineError):
    """Raised when a stage runs without the outputs of earlier stages."""

    default_code = "stage_precondition"


@dataclass
class RunContext:
    """Inputs and stage outputs of one pipeline run.

    Inputs are set when the run starts. Each output field is written once,
    by the stage that owns it.
    """

    selector: Selector
    settings: Settings
    work_dir: Path
    runner: CommandRunner
    client: httpx.Client
    catalog: DependencyCatalog
    version_override: str | None = None
    publish: bool = False
    skip_provision: bool = False
    release_body: str | None = None

    # Stage outputs
    installed_packages: list[str] = field(default_factory=list)
    source_dir: Path | None = None
    spec: TargetSpec | None = None
    toolchain_file: Path | None = None
    deps: DependencySet | None = None
    artifact: BuildArtifact | None = None
    version: str | None = None
    package: PackageDescriptor | None = None
    release: ReleaseRecord | None = None

    @property
    def staging_prefix(self) -> Path:
        return self.work_dir / "staging"

    @property
    def dist_dir(self) -> Path:
        return self.work_dir / "dist"

    def require(self, *names: str) -> tuple[Any, ...]:
        """Return the named outputs, failing if any is missing.

        Raises:
            StagePreconditionError: If an output has not been produced.
        """
        values = tuple(getattr(self, name) for name in names)
        missing = [n for n, v in zip(names, values, strict=True) if v is None]
        if missing:
            raise StagePreconditionError(
                f"Missing outputs of earlier stages: {', '.join(missing)}"
            )
        return values


@dataclass(frozen=True)
class Stage:
    """One pipeline stage.

    Attributes:
        name: Stage name.
        run: Function executing the stage against the context.
        applies: Predicate deciding whether the stage runs for this context.
    """

    name: StageName
    run: Callable[[RunContext], None]
    applies: Callable[[RunContext], bool] = lambda ctx: True


def provision_stage(ctx: RunContext) -> None:
    manager = AptPackageManager(ctx.runner, use_sudo=ctx.settings.use_sudo)
    ctx.installed_packages = provision(ctx.selector, manager, ctx.catalog)


def source_stage(ctx: RunContext) -> None:
    ctx.source_dir = checkout_source(
        ctx.runner,
        ctx.settings.source_repo_url,
        ctx.settings.source_ref,
        ctx.work_dir / "src",
    )


def resolve_stage(ctx: RunContext) -> None:
    spec = resolve_target(ctx.selector, ctx.settings, staging_prefix=ctx.staging_prefix)
    if spec.compilers.is_cross:
        ctx.toolchain_file = write_toolchain_file(spec, ctx.work_dir / "toolchain")
    ctx.spec = spec


def dependencies_stage(ctx: RunContext) -> None:
    (spec,) = ctx.require("spec")
    if spec.dependency_mode is DependencyMode.BUILD_FROM_SOURCE:
        (source_dir,) = ctx.require("source_dir")
        ctx.deps = build_dependencies(
            spec,
            ctx.catalog,
            ctx.work_dir / "deps",
            ctx.runner,
            ctx.client,
            toolchain_file=ctx.toolchain_file,
            nvim_source=source_dir,
        )
    else:
        ctx.deps = resolve_system_dependencies(ctx.catalog, ctx.runner)


def build_stage(ctx: RunContext) -> None:
    spec, deps, source_dir = ctx.require("spec", "deps", "source_dir")
    ctx.artifact = run_main_build(
        spec,
        deps,
        source_dir,
        ctx.work_dir,
        ctx.runner,
        ctx.catalog,
        toolchain_file=ctx.toolchain_file,
    )


def verify_stage(ctx: RunContext) -> None:
    artifact, spec = ctx.require("artifact", "spec")
    try:
        ctx.artifact = verify_artifact(artifact, spec)
    except ArchitectureMismatchError as e:
        try:
            e.diagnostics = describe_with_file(artifact.binary_path, ctx.runner) or None
        except CommandExecutionError as file_error:
            logger.warning("file(1) unavailable for diagnostics: %s", file_error)
        raise


def version_stage(ctx: RunContext) -> None:
    settings = ctx.settings
    if ctx.version_override is not None:
        ctx.version = parse_version(ctx.version_override)
        return
    token = settings.github_token.get_secret_value() if settings.github_token else None
    ctx.version = resolve_version(
        ctx.client,
        settings.upstream_repo,
        settings.channel,
        scan_lines=settings.version_scan_lines,
        api_url=settings.github_api_url,
        token=token,
    )


def package_stage(ctx: RunContext) -> None:
    artifact, spec, deps, version = ctx.require("artifact", "spec", "deps", "version")
    ctx.package = assemble_package(
        artifact,
        spec,
        deps,
        version,
        ctx.dist_dir,
        ctx.runner,
        product=ctx.settings.product,
        channel=ctx.settings.channel,
    )


def publish_stage(ctx: RunContext) -> None:
    package, spec = ctx.require("package", "spec")
    settings = ctx.settings
    if not settings.github_repo:
        raise PublishError("No github_repo configured to publish to")

    token = settings.github_token.get_secret_value() if settings.github_token else None
    publisher = GitHubPublisher(
        ctx.client, settings.github_repo, token, api_url=settings.github_api_url
    )
    args = (settings.product, package.version, settings.channel, spec.architecture)
    body = ctx.release_body or (
        f"{release_display_name(*args)}\n\n"
        f"sha256: {package.sha256}\n"
        f"Depends: {', '.join(package.depends)}"
    )
    ctx.release = publisher.publish(
        release_tag(*args),
        release_display_name(*args),
        [package.versioned_path],
        body=body,
    )


STAGES: tuple[Stage, ...] = (
    Stage(StageName.PROVISION, provision_stage, lambda ctx: not ctx.skip_provision),
    Stage(StageName.SOURCE, source_stage, lambda ctx: ctx.source_dir is None),
    Stage(StageName.RESOLVE, resolve_stage),
    Stage(StageName.DEPENDENCIES, dependencies_stage),
    Stage(StageName.BUILD, build_stage),
    Stage(StageName.VERIFY, verify_stage),
    Stage(StageName.VERSION, version_stage),
    Stage(StageName.PACKAGE, package_stage),
    Stage(StageName.PUBLISH, publish_stage, lambda ctx: ctx.publish),
)


__all__ = [
    "STAGES",
    "RunContext",
    "Stage",
    "StagePreconditionError",
]
