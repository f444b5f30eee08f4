"""Dependency stage builder for build-from-source runs.

This module handles:
- Downloading and extracting recipe source archives
- Composing per-recipe configure/build/install commands
- Building every catalog recipe into the staging prefix
- Verifying installed libraries were built for the target

Helper programs that run during a build (LuaJIT's buildvm, code
generators) are compiled with the host compiler while the libraries
themselves use the cross compiler. Both compilers come from the
TargetSpec's CompilerPair and are passed on each command line.

The stage is all-or-nothing: if any recipe fails the staging prefix is
removed and no DependencySet is returned.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import shutil
import tarfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

import httpx

from nvim_crossbuild.build.runner import tail_file
from nvim_crossbuild.deps.schema import DependencyCatalog, DependencyRecipe
from nvim_crossbuild.errors import DependencyBuildError
from nvim_crossbuild.packaging.manifest import compute_file_hash
from nvim_crossbuild.toolchain.cmake import find_policy_args, pkg_config_env
from nvim_crossbuild.toolchain.resolver import locate_library
from nvim_crossbuild.types import (
    DependencyMode,
    DependencySet,
    ResolvedDependency,
    TargetSpec,
)

if TYPE_CHECKING:
    from nvim_crossbuild.build.runner import CommandRunner

logger = logging.getLogger(__name__)

# Chunk size for downloads (bytes)
DOWNLOAD_CHUNK_SIZE = 64 * 1024

# Timeout for source downloads (seconds)
DOWNLOAD_TIMEOUT = 600

COMPLETE_MARKER = ".complete.json"
HOST_PREFIX_DIRNAME = "host"


@dataclass
class BuildStep:
    """One command of a recipe build."""

    name: str
    command: list[str]
    cwd: Path | None = None
    env: dict[str, str] = field(default_factory=dict)


def host_prefix_for(prefix: Path) -> Path:
    """Prefix receiving host build tools under a staging prefix."""
    return prefix / HOST_PREFIX_DIRNAME


def template_context(
    spec: TargetSpec,
    prefix: Path,
    nvim_source: Path | None = None,
    host: bool = False,
    jobs: int | None = None,
) -> dict[str, str]:
    """Values for argument placeholders of one recipe.

    Host recipes see the host compiler as {cc} and the host prefix as
    {prefix}; target recipes see the cross compiler and the staging prefix.
    """
    compilers = spec.compilers
    host_prefix = host_prefix_for(prefix)
    cross_prefix = "" if host else compilers.cross_prefix
    return {
        "prefix": str(host_prefix if host else prefix),
        "host_prefix": str(host_prefix),
        "cc": compilers.host_cc if host else compilers.target_cc,
        "cxx": compilers.host_cxx if host else compilers.target_cxx,
        "host_cc": compilers.host_cc,
        "host_cxx": compilers.host_cxx,
        "cross_prefix": cross_prefix,
        "ar": f"{cross_prefix}ar",
        "system_processor": spec.system_processor,
        "jobs": str(jobs or os.cpu_count() or 1),
        "nvim_source": str(nvim_source) if nvim_source else "",
    }


def expand_args(args: list[str], context: dict[str, str]) -> list[str]:
    """Expand {placeholder} templates in an argument list."""
    return [arg.format_map(context) for arg in args]


def compose_recipe_steps(
    recipe: DependencyRecipe,
    spec: TargetSpec,
    prefix: Path,
    src_dir: Path,
    build_dir: Path,
    toolchain_file: Path | None = None,
    nvim_source: Path | None = None,
    jobs: int | None = None,
) -> list[BuildStep]:
    """Compose the commands building and installing one recipe.

    Args:
        recipe: Recipe to build.
        spec: Cross TargetSpec.
        prefix: Staging prefix.
        src_dir: Extracted recipe source.
        build_dir: Out-of-tree build directory (cmake recipes).
        toolchain_file: CMake toolchain file for target recipes.
        nvim_source: Neovim checkout (for replacement CMakeLists).
        jobs: Parallel build jobs.

    Returns:
        Ordered list of BuildStep.
    """
    context = template_context(spec, prefix, nvim_source, recipe.host, jobs)
    install_prefix = Path(context["prefix"])
    env = {} if recipe.host else pkg_config_env(spec)

    if recipe.build_system == "make":
        return [
            BuildStep(
                name="build",
                command=["make", f"-j{context['jobs']}"]
                + expand_args(recipe.make_args, context),
                cwd=src_dir,
                env=env,
            ),
            BuildStep(
                name="install",
                command=["make"] + expand_args(recipe.install_args, context),
                cwd=src_dir,
                env=env,
            ),
        ]

    configure = [
        "cmake",
        "-S",
        str(src_dir),
        "-B",
        str(build_dir),
        "-G",
        "Ninja",
        "-DCMAKE_BUILD_TYPE=Release",
        f"-DCMAKE_INSTALL_PREFIX={install_prefix}",
        "-DBUILD_SHARED_LIBS=OFF",
        "-DCMAKE_POSITION_INDEPENDENT_CODE=ON",
    ]
    if recipe.host:
        configure += [
            f"-DCMAKE_C_COMPILER={spec.compilers.host_cc}",
            f"-DCMAKE_CXX_COMPILER={spec.compilers.host_cxx}",
        ]
    else:
        if toolchain_file is not None:
            configure.append(f"-DCMAKE_TOOLCHAIN_FILE={toolchain_file}")
        else:
            configure += [
                f"-DCMAKE_C_COMPILER={spec.compilers.target_cc}",
                f"-DCMAKE_CXX_COMPILER={spec.compilers.target_cxx}",
            ]
        configure += find_policy_args(spec)
    if recipe.needs_host_tools:
        configure.append(f"-DHOST_C_COMPILER={spec.compilers.host_cc}")
    configure += expand_args(recipe.cmake_args, context)

    return [
        BuildStep(name="configure", command=configure, env=env),
        BuildStep(
            name="build",
            command=["cmake", "--build", str(build_dir), "-j", context["jobs"]],
            env=env,
        ),
        BuildStep(name="install", command=["cmake", "--install", str(build_dir)]),
    ]


def fetch_source_archive(
    client: httpx.Client,
    recipe: DependencyRecipe,
    downloads_dir: Path,
    timeout: float = DOWNLOAD_TIMEOUT,
) -> Path:
    """Download a recipe's source archive, verifying its checksum.

    Archives already present with a matching checksum are reused.

    Raises:
        DependencyBuildError: If the download or verification fails.
    """
    dest = downloads_dir / recipe.archive_filename
    if dest.exists() and (
        recipe.sha256 is None or compute_file_hash(dest) == recipe.sha256
    ):
        logger.debug("Reusing downloaded archive %s", dest.name)
        return dest

    downloads_dir.mkdir(parents=True, exist_ok=True)
    tmp_path = dest.with_suffix(dest.suffix + ".tmp")
    logger.info("Downloading %s %s from %s", recipe.name, recipe.version, recipe.url)

    try:
        sha256 = hashlib.sha256()
        with client.stream(
            "GET", recipe.url, timeout=timeout, follow_redirects=True
        ) as response:
            response.raise_for_status()
            with tmp_path.open("wb") as f:
                for chunk in response.iter_bytes(DOWNLOAD_CHUNK_SIZE):
                    f.write(chunk)
                    sha256.update(chunk)
    except httpx.HTTPStatusError as e:
        tmp_path.unlink(missing_ok=True)
        raise DependencyBuildError(
            recipe.name,
            f"GET {recipe.url}",
            message=(
                f"HTTP error downloading {recipe.name}: "
                f"{e.response.status_code} {e.response.reason_phrase}"
            ),
        ) from e
    except httpx.RequestError as e:
        tmp_path.unlink(missing_ok=True)
        raise DependencyBuildError(
            recipe.name,
            f"GET {recipe.url}",
            message=f"Network error downloading {recipe.name}: {e}",
        ) from e

    digest = sha256.hexdigest()
    if recipe.sha256 and digest != recipe.sha256:
        tmp_path.unlink(missing_ok=True)
        raise DependencyBuildError(
            recipe.name,
            f"GET {recipe.url}",
            message=(
                f"Checksum mismatch for {recipe.name}: "
                f"expected {recipe.sha256}, got {digest}"
            ),
        )

    tmp_path.replace(dest)
    return dest


def extract_source(archive: Path, dest_dir: Path, name: str) -> Path:
    """Extract a source archive and return its top-level directory.

    Raises:
        DependencyBuildError: If the archive is unreadable or unsafe.
    """
    if dest_dir.exists():
        shutil.rmtree(dest_dir)
    dest_dir.mkdir(parents=True)

    try:
        with tarfile.open(archive, "r:*") as tar:
            for member in tar.getmembers():
                member_path = Path(member.name)
                if member_path.is_absolute() or ".." in member_path.parts:
                    raise DependencyBuildError(
                        name,
                        f"extract {archive.name}",
                        message=f"Refusing to extract {member.name}: path traversal",
                    )
            tar.extractall(dest_dir, filter="data")
    except tarfile.TarError as e:
        raise DependencyBuildError(
            name, f"extract {archive.name}", message=f"Cannot extract {archive}: {e}"
        ) from e

    entries = [p for p in dest_dir.iterdir()]
    if len(entries) == 1 and entries[0].is_dir():
        return entries[0]
    return dest_dir


def _run_step(
    runner: CommandRunner,
    recipe: DependencyRecipe,
    step: BuildStep,
) -> None:
    result = runner.run(
        step.command,
        log_name=f"deps-{recipe.name}",
        cwd=step.cwd,
        env=step.env or None,
    )
    if not result.success:
        diagnostics = tail_file(result.log_path) if result.log_path else None
        raise DependencyBuildError(
            recipe.name,
            result.command,
            message=(
                f"Dependency {recipe.name} failed at {step.name} "
                f"(exit code {result.exit_code})"
            ),
            diagnostics=diagnostics,
            log_path=result.log_path,
        )


def build_recipe(
    recipe: DependencyRecipe,
    spec: TargetSpec,
    prefix: Path,
    work_dir: Path,
    runner: CommandRunner,
    client: httpx.Client,
    toolchain_file: Path | None = None,
    nvim_source: Path | None = None,
) -> ResolvedDependency:
    """Fetch, build and install one recipe into the staging prefix.

    Raises:
        DependencyBuildError: If any step fails or the installed library
            does not match the target architecture.
    """
    logger.info(
        "Building %s %s for %s",
        recipe.name,
        recipe.version,
        "host" if recipe.host else spec.architecture.value,
    )
    archive = fetch_source_archive(client, recipe, work_dir / "downloads")
    src_dir = extract_source(archive, work_dir / "src" / recipe.name, recipe.name)

    if recipe.cmake_lists:
        if nvim_source is None:
            raise DependencyBuildError(
                recipe.name,
                "configure",
                message=(
                    f"{recipe.name} needs the Neovim source for {recipe.cmake_lists}"
                ),
            )
        replacement = nvim_source / recipe.cmake_lists
        if not replacement.is_file():
            raise DependencyBuildError(
                recipe.name,
                "configure",
                message=f"Missing {recipe.cmake_lists} in {nvim_source}",
            )
        shutil.copyfile(replacement, src_dir / "CMakeLists.txt")

    steps = compose_recipe_steps(
        recipe,
        spec,
        prefix,
        src_dir,
        work_dir / "build" / recipe.name,
        toolchain_file=toolchain_file,
        nvim_source=nvim_source,
    )
    for step in steps:
        _run_step(runner, recipe, step)

    location = host_prefix_for(prefix) if recipe.host else prefix
    if recipe.library and not recipe.host:
        found = locate_library(recipe.library, spec)
        if found is None:
            raise DependencyBuildError(
                recipe.name,
                "install",
                message=(
                    f"No {spec.architecture.value} build of lib{recipe.library} "
                    f"was installed into {prefix}"
                ),
            )
        logger.debug("Verified %s at %s", recipe.library, found)

    return ResolvedDependency(
        name=recipe.name,
        version=recipe.version,
        mode=DependencyMode.BUILD_FROM_SOURCE,
        location=location,
    )


def build_dependencies(
    spec: TargetSpec,
    catalog: DependencyCatalog,
    work_dir: Path,
    runner: CommandRunner,
    client: httpx.Client,
    toolchain_file: Path | None = None,
    nvim_source: Path | None = None,
) -> DependencySet:
    """Build every catalog recipe for the target into the staging prefix.

    Args:
        spec: TargetSpec in build-from-source mode with a staging prefix.
        catalog: Dependency catalog.
        work_dir: Directory for downloads, sources and build trees.
        runner: Command runner for the run.
        client: HTTP client for source downloads.
        toolchain_file: CMake toolchain file for target recipes.
        nvim_source: Neovim checkout providing replacement CMakeLists.

    Returns:
        DependencySet with one entry per recipe.

    Raises:
        ValueError: If the target is not in build-from-source mode.
        DependencyBuildError: If any recipe fails; the prefix is removed.
    """
    if spec.dependency_mode is not DependencyMode.BUILD_FROM_SOURCE:
        raise ValueError(
            "Dependency stage requires build-from-source mode, "
            f"got {spec.dependency_mode.value}"
        )
    prefix = spec.staging_prefix
    if prefix is None:
        raise ValueError("TargetSpec has no staging prefix")

    if prefix.exists():
        shutil.rmtree(prefix)
    prefix.mkdir(parents=True)

    entries: dict[str, ResolvedDependency] = {}
    try:
        for recipe in catalog.required_for(spec.dependency_mode):
            entries[recipe.name] = build_recipe(
                recipe,
                spec,
                prefix,
                work_dir,
                runner,
                client,
                toolchain_file=toolchain_file,
                nvim_source=nvim_source,
            )
    except Exception:
        logger.error("Dependency stage failed; removing staging prefix %s", prefix)
        shutil.rmtree(prefix, ignore_errors=True)
        raise

    marker = {name: dep.version for name, dep in entries.items()}
    (prefix / COMPLETE_MARKER).write_text(
        json.dumps(marker, indent=2, sort_keys=True), encoding="utf-8"
    )
    logger.info("Built %d dependencies into %s", len(entries), prefix)

    return DependencySet(
        mode=DependencyMode.BUILD_FROM_SOURCE,
        prefix=prefix,
        entries=entries,
        runtime_depends=tuple(catalog.static_runtime_depends),
    )


__all__ = [
    "COMPLETE_MARKER",
    "BuildStep",
    "build_dependencies",
    "build_recipe",
    "compose_recipe_steps",
    "expand_args",
    "extract_source",
    "fetch_source_archive",
    "host_prefix_for",
    "template_context",
]
