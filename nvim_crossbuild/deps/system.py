"""System package resolution for native builds.

Native runs link against the distribution's development packages instead
of building dependencies from source. Each recipe names the Debian
package providing it; the installed version is read with dpkg-query.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from nvim_crossbuild.deps.schema import DependencyCatalog
from nvim_crossbuild.errors import ProvisioningError
from nvim_crossbuild.types import DependencyMode, DependencySet, ResolvedDependency

if TYPE_CHECKING:
    from nvim_crossbuild.build.runner import CommandRunner

logger = logging.getLogger(__name__)

SYSTEM_PREFIX = Path("/usr")


def query_package_version(runner: CommandRunner, package: str) -> str | None:
    """Return the installed version of a Debian package, or None."""
    result = runner.capture(
        ["dpkg-query", "-W", "-f=${Status}\t${Version}", package]
    )
    if not result.success:
        return None
    status, _, version = result.output.strip().partition("\t")
    if not status.endswith("installed") or status.endswith("not-installed"):
        return None
    return version or None


def resolve_system_dependencies(
    catalog: DependencyCatalog,
    runner: CommandRunner,
) -> DependencySet:
    """Resolve every non-host recipe from installed system packages.

    Args:
        catalog: Dependency catalog.
        runner: Command runner used for dpkg-query.

    Returns:
        DependencySet in system-packages mode.

    Raises:
        ProvisioningError: If any recipe has no installed system package.
    """
    entries: dict[str, ResolvedDependency] = {}
    missing: list[str] = []
    runtime_depends: list[str] = []

    for recipe in catalog.required_for(DependencyMode.SYSTEM_PACKAGES):
        if not recipe.system_package:
            missing.append(f"{recipe.name} (no system package)")
            continue
        version = query_package_version(runner, recipe.system_package)
        if version is None:
            missing.append(recipe.system_package)
            continue
        logger.debug(
            "%s provided by %s %s", recipe.name, recipe.system_package, version
        )
        entries[recipe.name] = ResolvedDependency(
            name=recipe.name,
            version=version,
            mode=DependencyMode.SYSTEM_PACKAGES,
            location=SYSTEM_PREFIX,
        )
        if recipe.runtime_package and recipe.runtime_package not in runtime_depends:
            runtime_depends.append(recipe.runtime_package)

    if missing:
        raise ProvisioningError(
            f"Missing system packages: {', '.join(missing)}",
        )

    logger.info("Resolved %d dependencies from system packages", len(entries))
    return DependencySet(
        mode=DependencyMode.SYSTEM_PACKAGES,
        prefix=SYSTEM_PREFIX,
        entries=entries,
        runtime_depends=tuple(runtime_depends),
    )


__all__ = ["SYSTEM_PREFIX", "query_package_version", "resolve_system_dependencies"]
