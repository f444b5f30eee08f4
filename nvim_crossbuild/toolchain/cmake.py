"""CMake toolchain file generation.

Renders the TargetSpec's compilers and find-path policy as a CMake
toolchain file and as -D cache arguments for configure commands.
"""

from __future__ import annotations

import logging
from pathlib import Path

from nvim_crossbuild.types import TargetSpec

logger = logging.getLogger(__name__)

TOOLCHAIN_FILENAME = "toolchain.cmake"


def _cmake_list(values) -> str:
    return ";".join(str(v) for v in values)


def find_policy_args(spec: TargetSpec) -> list[str]:
    """Return -D arguments enforcing the target's find-path policy."""
    policy = spec.find_policy
    if not policy.root_paths and not policy.ignore_system_prefixes:
        return []

    args: list[str] = []
    if policy.root_paths:
        args.append(f"-DCMAKE_FIND_ROOT_PATH={_cmake_list(policy.root_paths)}")
        args.append(f"-DCMAKE_PREFIX_PATH={_cmake_list(policy.root_paths)}")
    args.extend(
        [
            f"-DCMAKE_FIND_ROOT_PATH_MODE_PROGRAM={policy.program_mode}",
            f"-DCMAKE_FIND_ROOT_PATH_MODE_LIBRARY={policy.library_mode}",
            f"-DCMAKE_FIND_ROOT_PATH_MODE_INCLUDE={policy.include_mode}",
            f"-DCMAKE_FIND_ROOT_PATH_MODE_PACKAGE={policy.package_mode}",
        ]
    )
    if policy.ignore_system_prefixes:
        args.append(
            "-DCMAKE_SYSTEM_IGNORE_PREFIX_PATH="
            f"{_cmake_list(policy.ignore_system_prefixes)}"
        )
    return args


def compiler_args(spec: TargetSpec) -> list[str]:
    """Return -D arguments selecting the target compilers."""
    return [
        f"-DCMAKE_C_COMPILER={spec.compilers.target_cc}",
        f"-DCMAKE_CXX_COMPILER={spec.compilers.target_cxx}",
    ]


def render_toolchain_file(spec: TargetSpec) -> str:
    """Render a CMake toolchain file for a cross target.

    Args:
        spec: Cross TargetSpec.

    Returns:
        Toolchain file content.

    Raises:
        ValueError: If the target is not a cross target.
    """
    if not spec.compilers.is_cross:
        raise ValueError("Native targets use the host toolchain directly")

    policy = spec.find_policy
    prefix = spec.compilers.cross_prefix
    lines = [
        f"# Toolchain for {spec.architecture.value} ({spec.compilers.target_triple})",
        "set(CMAKE_SYSTEM_NAME Linux)",
        f"set(CMAKE_SYSTEM_PROCESSOR {spec.system_processor})",
        "",
        f"set(CMAKE_C_COMPILER {spec.compilers.target_cc})",
        f"set(CMAKE_CXX_COMPILER {spec.compilers.target_cxx})",
        f"set(CMAKE_AR {prefix}ar CACHE FILEPATH \"\")",
        f"set(CMAKE_RANLIB {prefix}ranlib CACHE FILEPATH \"\")",
        f"set(CMAKE_STRIP {prefix}strip CACHE FILEPATH \"\")",
        "",
    ]
    if policy.root_paths:
        lines.append(f'set(CMAKE_FIND_ROOT_PATH "{_cmake_list(policy.root_paths)}")')
    lines.extend(
        [
            f"set(CMAKE_FIND_ROOT_PATH_MODE_PROGRAM {policy.program_mode})",
            f"set(CMAKE_FIND_ROOT_PATH_MODE_LIBRARY {policy.library_mode})",
            f"set(CMAKE_FIND_ROOT_PATH_MODE_INCLUDE {policy.include_mode})",
            f"set(CMAKE_FIND_ROOT_PATH_MODE_PACKAGE {policy.package_mode})",
        ]
    )
    if policy.ignore_system_prefixes:
        lines.append(
            "set(CMAKE_SYSTEM_IGNORE_PREFIX_PATH "
            f'"{_cmake_list(policy.ignore_system_prefixes)}")'
        )
    if policy.foreign_packages_disabled and policy.root_paths:
        pkgconfig = _cmake_list(
            Path(root) / "lib" / "pkgconfig" for root in policy.root_paths
        )
        lines.extend(
            [
                "",
                "# Foreign-architecture system packages are never consulted",
                f'set(ENV{{PKG_CONFIG_LIBDIR}} "{pkgconfig}")',
                'set(ENV{PKG_CONFIG_PATH} "")',
            ]
        )
    return "\n".join(lines) + "\n"


def write_toolchain_file(spec: TargetSpec, directory: Path) -> Path:
    """Write the toolchain file for a cross target into directory."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / TOOLCHAIN_FILENAME
    path.write_text(render_toolchain_file(spec), encoding="utf-8")
    logger.info("Wrote CMake toolchain file %s", path)
    return path


def pkg_config_env(spec: TargetSpec) -> dict[str, str]:
    """Environment for one command confining pkg-config to the staging prefix."""
    policy = spec.find_policy
    if not policy.foreign_packages_disabled or not policy.root_paths:
        return {}
    return {
        "PKG_CONFIG_LIBDIR": ":".join(
            str(Path(root) / "lib" / "pkgconfig") for root in policy.root_paths
        ),
        "PKG_CONFIG_PATH": "",
        "PKG_CONFIG_SYSROOT_DIR": "",
    }


__all__ = [
    "TOOLCHAIN_FILENAME",
    "compiler_args",
    "find_policy_args",
    "pkg_config_env",
    "render_toolchain_file",
    "write_toolchain_file",
]
