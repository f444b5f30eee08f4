"""Host environment provisioning with apt.

This module handles:
- Detecting which required host packages are missing
- Installing build tools, CMake and the cross toolchain

Cross runs install the cross compiler only. No foreign dpkg architecture
is ever added, so target libraries cannot come from the package manager.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from nvim_crossbuild.build.runner import tail_file
from nvim_crossbuild.deps.system import query_package_version
from nvim_crossbuild.errors import ProvisioningError
from nvim_crossbuild.types import DependencyMode, Selector

if TYPE_CHECKING:
    from nvim_crossbuild.build.runner import CommandRunner
    from nvim_crossbuild.deps.schema import DependencyCatalog

logger = logging.getLogger(__name__)

# Build tools needed by every run
HOST_PACKAGES = (
    "build-essential",
    "cmake",
    "ninja-build",
    "gettext",
    "git",
    "curl",
    "unzip",
    "pkg-config",
    "file",
    "dpkg-dev",
)

# Cross compiler for aarch64 targets
CROSS_TOOLCHAIN_PACKAGES = (
    "gcc-aarch64-linux-gnu",
    "g++-aarch64-linux-gnu",
    "binutils-aarch64-linux-gnu",
)


class AptPackageManager:
    """Thin wrapper around dpkg-query and apt-get.

    Attributes:
        runner: Command runner for the run.
        use_sudo: Prefix installation commands with sudo.
    """

    def __init__(self, runner: CommandRunner, use_sudo: bool = True) -> None:
        self.runner = runner
        self.use_sudo = use_sudo

    def _privileged(self, cmd: list[str]) -> list[str]:
        return ["sudo", *cmd] if self.use_sudo else cmd

    def missing(self, packages: list[str] | tuple[str, ...]) -> list[str]:
        """Return the packages that are not installed."""
        return [
            p for p in packages if query_package_version(self.runner, p) is None
        ]

    def install(self, packages: list[str] | tuple[str, ...]) -> None:
        """Install packages non-interactively.

        Raises:
            ProvisioningError: If apt-get fails.
        """
        if not packages:
            return

        update = self.runner.run(
            self._privileged(["apt-get", "update"]),
            log_name="provision",
            env={"DEBIAN_FRONTEND": "noninteractive"},
        )
        if not update.success:
            raise ProvisioningError(
                f"apt-get update failed (exit code {update.exit_code})",
                diagnostics=tail_file(update.log_path) if update.log_path else None,
                log_path=update.log_path,
            )

        result = self.runner.run(
            self._privileged(
                ["apt-get", "install", "-y", "--no-install-recommends", *packages]
            ),
            log_name="provision",
            env={"DEBIAN_FRONTEND": "noninteractive"},
        )
        if not result.success:
            raise ProvisioningError(
                f"Failed to install {', '.join(packages)} "
                f"(exit code {result.exit_code})",
                diagnostics=tail_file(result.log_path) if result.log_path else None,
                log_path=result.log_path,
            )


def required_packages(
    selector: Selector,
    catalog: DependencyCatalog | None = None,
) -> list[str]:
    """Host packages a run needs before building.

    Native runs also need every recipe's development package; cross runs
    need the cross toolchain instead.
    """
    packages = list(HOST_PACKAGES)
    if selector is Selector.CROSS:
        packages.extend(CROSS_TOOLCHAIN_PACKAGES)
    elif catalog is not None:
        for recipe in catalog.required_for(DependencyMode.SYSTEM_PACKAGES):
            if recipe.system_package and recipe.system_package not in packages:
                packages.append(recipe.system_package)
    return packages


def provision(
    selector: Selector,
    package_manager: AptPackageManager,
    catalog: DependencyCatalog | None = None,
) -> list[str]:
    """Install whatever the run needs that is not installed yet.

    Returns:
        The packages that were installed.

    Raises:
        ProvisioningError: If installation fails.
    """
    wanted = required_packages(selector, catalog)
    missing = package_manager.missing(wanted)
    if not missing:
        logger.info("All %d host packages already installed", len(wanted))
        return []

    logger.info("Installing %d packages: %s", len(missing), " ".join(missing))
    package_manager.install(missing)
    return missing


__all__ = [
    "CROSS_TOOLCHAIN_PACKAGES",
    "HOST_PACKAGES",
    "AptPackageManager",
    "provision",
    "required_packages",
]
