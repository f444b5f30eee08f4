"""Main build stage: configure and compile Neovim.

This module handles:
- Composing the CMake configure command from the TargetSpec and DependencySet
- Running configure and build with per-stage logs
- Locating the produced binary

The stage does not care how dependencies were obtained; everything it
needs comes from the DependencySet it is handed.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING

from nvim_crossbuild.build.runner import tail_file
from nvim_crossbuild.deps.builder import expand_args, host_prefix_for, template_context
from nvim_crossbuild.errors import BuildFailedError
from nvim_crossbuild.toolchain.cmake import (
    compiler_args,
    find_policy_args,
    pkg_config_env,
)
from nvim_crossbuild.types import (
    BuildArtifact,
    DependencyMode,
    DependencySet,
    TargetSpec,
)

if TYPE_CHECKING:
    from nvim_crossbuild.build.runner import CommandRunner
    from nvim_crossbuild.deps.schema import DependencyCatalog

logger = logging.getLogger(__name__)

BINARY_RELPATH = Path("bin") / "nvim"


def compose_configure_command(
    spec: TargetSpec,
    deps: DependencySet,
    source_dir: Path,
    build_dir: Path,
    toolchain_file: Path | None = None,
    build_type: str = "Release",
    extra_args: list[str] | None = None,
) -> list[str]:
    """Compose the CMake configure command for the main build.

    Args:
        spec: Resolved target.
        deps: Dependencies available to the build.
        source_dir: Neovim checkout.
        build_dir: Out-of-tree build directory.
        toolchain_file: CMake toolchain file (cross targets).
        build_type: CMAKE_BUILD_TYPE.
        extra_args: Additional -D arguments.

    Returns:
        Command as list of arguments.
    """
    cmd = [
        "cmake",
        "-S",
        str(source_dir),
        "-B",
        str(build_dir),
        "-G",
        "Ninja",
        f"-DCMAKE_BUILD_TYPE={build_type}",
    ]
    if toolchain_file is not None:
        cmd.append(f"-DCMAKE_TOOLCHAIN_FILE={toolchain_file}")
    cmd.extend(compiler_args(spec))
    cmd.append("-DUSE_BUNDLED=OFF")

    if deps.mode is DependencyMode.BUILD_FROM_SOURCE:
        cmd.append(f"-DDEPS_PREFIX={deps.prefix}")
        cmd.extend(find_policy_args(spec))

    if extra_args:
        cmd.extend(extra_args)
    return cmd


def _fail(message: str, result) -> BuildFailedError:
    return BuildFailedError(
        message,
        diagnostics=tail_file(result.log_path) if result.log_path else None,
        log_path=result.log_path,
    )


def run_main_build(
    spec: TargetSpec,
    deps: DependencySet,
    source_dir: Path,
    work_dir: Path,
    runner: CommandRunner,
    catalog: DependencyCatalog,
    toolchain_file: Path | None = None,
    build_type: str = "Release",
    jobs: int | None = None,
) -> BuildArtifact:
    """Configure and build Neovim.

    Args:
        spec: Resolved target.
        deps: Dependencies from the dependency stage or the system.
        source_dir: Neovim checkout.
        work_dir: Run directory; the build tree goes to work_dir/build.
        runner: Command runner for the run.
        catalog: Dependency catalog naming the libraries the build needs.
        toolchain_file: CMake toolchain file (cross targets).
        build_type: CMAKE_BUILD_TYPE.
        jobs: Parallel build jobs.

    Returns:
        BuildArtifact for the produced binary (not yet verified).

    Raises:
        BuildFailedError: If dependencies are missing, a tool fails, or no
            binary was produced.
    """
    required = [r.name for r in catalog.required_for(deps.mode) if not r.host]
    missing = deps.require(required)
    if missing:
        raise BuildFailedError(
            f"Dependencies not resolved for the main build: {', '.join(missing)}"
        )

    build_dir = work_dir / "build"
    build_dir.mkdir(parents=True, exist_ok=True)

    extra_args: list[str] = []
    if deps.mode is DependencyMode.BUILD_FROM_SOURCE:
        context = template_context(spec, deps.prefix, source_dir, jobs=jobs)
        extra_args = expand_args(catalog.main_cmake_args, context)
        logger.debug("Host tools prefix: %s", host_prefix_for(deps.prefix))

    configure = compose_configure_command(
        spec,
        deps,
        source_dir,
        build_dir,
        toolchain_file=toolchain_file,
        build_type=build_type,
        extra_args=extra_args,
    )
    env = pkg_config_env(spec)

    result = runner.run(configure, log_name="build", cwd=source_dir, env=env)
    if not result.success:
        raise _fail(f"CMake configure failed (exit code {result.exit_code})", result)

    build = [
        "cmake",
        "--build",
        str(build_dir),
        "-j",
        str(jobs or os.cpu_count() or 1),
    ]
    result = runner.run(build, log_name="build", env=env)
    if not result.success:
        raise _fail(f"Build failed (exit code {result.exit_code})", result)

    binary = build_dir / BINARY_RELPATH
    if not binary.is_file():
        raise BuildFailedError(
            f"Build finished but {BINARY_RELPATH} was not produced in {build_dir}",
            log_path=result.log_path,
        )

    size = binary.stat().st_size
    logger.info("Built %s (%d bytes)", binary, size)
    return BuildArtifact(binary_path=binary, size_bytes=size, build_dir=build_dir)


__all__ = ["BINARY_RELPATH", "compose_configure_command", "run_main_build"]
