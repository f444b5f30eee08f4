"""Toolchain resolution for build runs.

This module handles:
- Mapping a selector ('native' or 'cross') to a TargetSpec
- Choosing host and target compilers
- Choosing the library/header search policy for the target
- Fail-closed library lookup inside the target search roots

Cross builds never consult foreign-architecture system packages: the
policy disables them explicitly and every dependency is built from source
into a staging prefix instead.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from nvim_crossbuild.errors import ArtifactFormatError, UnsupportedArchitectureError
from nvim_crossbuild.types import (
    Architecture,
    CompilerPair,
    DependencyMode,
    FindPathPolicy,
    Selector,
    TargetSpec,
)
from nvim_crossbuild.verify.machine import (
    expected_tags,
    machine_matches,
    parse_machine_tag,
)

if TYPE_CHECKING:
    from nvim_crossbuild.config import Settings

logger = logging.getLogger(__name__)

# Debian architecture names used in package metadata
DEB_ARCHITECTURES = {
    Architecture.AMD64: "amd64",
    Architecture.AARCH64: "arm64",
}

# CMAKE_SYSTEM_PROCESSOR values
SYSTEM_PROCESSORS = {
    Architecture.AMD64: "x86_64",
    Architecture.AARCH64: "aarch64",
}

# Prefixes holding host-architecture libraries on a Debian build machine
HOST_SYSTEM_PREFIXES = ("/usr", "/usr/local", "/lib", "/lib64")

NATIVE_FIND_POLICY = FindPathPolicy()

CROSS_FIND_POLICY = FindPathPolicy(
    program_mode="NEVER",
    library_mode="ONLY",
    include_mode="ONLY",
    package_mode="ONLY",
    ignore_system_prefixes=HOST_SYSTEM_PREFIXES,
    foreign_packages_disabled=True,
)

LIBRARY_SUBDIRS = ("lib", "lib64", "lib/aarch64-linux-gnu", "lib/x86_64-linux-gnu")


def supported_selectors() -> list[str]:
    """Return the selector names accepted by resolve_target."""
    return [s.value for s in Selector]


def parse_selector(selector: str | Selector) -> Selector:
    """Normalize a selector string.

    Raises:
        UnsupportedArchitectureError: If the selector is not recognized.
    """
    if isinstance(selector, Selector):
        return selector
    try:
        return Selector(str(selector).strip().lower())
    except ValueError:
        raise UnsupportedArchitectureError(
            str(selector), supported_selectors()
        ) from None


def resolve_target(
    selector: str | Selector,
    settings: Settings | None = None,
    staging_prefix: Path | None = None,
) -> TargetSpec:
    """Resolve a selector into a TargetSpec.

    Args:
        selector: 'native' or 'cross'.
        settings: Settings supplying compiler names; defaults when omitted.
        staging_prefix: Prefix the dependency stage installs into; becomes
            the only search root for cross targets.

    Returns:
        Immutable TargetSpec for the run.

    Raises:
        UnsupportedArchitectureError: If the selector is not recognized.
    """
    parsed = parse_selector(selector)

    host_cc = settings.host_cc if settings else "gcc"
    host_cxx = settings.host_cxx if settings else "g++"
    triple = settings.cross_triple if settings else "aarch64-linux-gnu"

    if parsed is Selector.NATIVE:
        architecture = Architecture.AMD64
        compilers = CompilerPair(
            host_cc=host_cc,
            host_cxx=host_cxx,
            target_cc=host_cc,
            target_cxx=host_cxx,
        )
        policy = NATIVE_FIND_POLICY
        mode = DependencyMode.SYSTEM_PACKAGES
    else:
        architecture = Architecture.AARCH64
        compilers = CompilerPair(
            host_cc=host_cc,
            host_cxx=host_cxx,
            target_cc=f"{triple}-gcc",
            target_cxx=f"{triple}-g++",
            target_triple=triple,
        )
        policy = CROSS_FIND_POLICY
        if staging_prefix is not None:
            policy = policy.with_roots(staging_prefix)
        mode = DependencyMode.BUILD_FROM_SOURCE

    spec = TargetSpec(
        selector=parsed,
        architecture=architecture,
        compilers=compilers,
        find_policy=policy,
        dependency_mode=mode,
        deb_architecture=DEB_ARCHITECTURES[architecture],
        system_processor=SYSTEM_PROCESSORS[architecture],
    )
    logger.info(
        "Resolved %s -> %s (%s, cc=%s)",
        parsed.value,
        architecture.value,
        mode.value,
        compilers.target_cc,
    )
    return spec


def library_candidates(name: str, directory: Path) -> list[Path]:
    """List files in directory that could satisfy -l<name>."""
    if not directory.is_dir():
        return []
    candidates = [directory / f"lib{name}.a"]
    candidates.extend(sorted(directory.glob(f"lib{name}.so*")))
    return [c for c in candidates if c.is_file()]


def locate_library(
    name: str,
    spec: TargetSpec,
    search_dirs: list[Path] | None = None,
) -> Path | None:
    """Find a library built for the target, failing closed.

    Only the policy's roots are searched when library search is confined
    to them; otherwise the given search_dirs are used. Candidates whose
    machine tag does not match the target are skipped, so a host-architecture
    library is never returned for a cross target.

    Args:
        name: Library name without 'lib' prefix or suffix (e.g. 'uv').
        spec: Target the library must match.
        search_dirs: Extra prefixes for non-confined policies.

    Returns:
        Path of a matching library, or None if none was found.
    """
    roots: list[Path] = list(spec.find_policy.root_paths)
    if not spec.find_policy.target_only:
        roots.extend(search_dirs or [])

    for root in roots:
        for subdir in LIBRARY_SUBDIRS:
            for candidate in library_candidates(name, root / subdir):
                try:
                    if machine_matches(candidate, spec.architecture):
                        return candidate
                except ArtifactFormatError:
                    # Static archives and linker scripts carry no ELF header
                    if candidate.suffix == ".a" and _archive_matches(
                        candidate, spec
                    ):
                        return candidate
                    continue
                logger.warning(
                    "Skipping %s: not built for %s",
                    candidate,
                    spec.architecture.value,
                )

    return None


def _archive_matches(path: Path, spec: TargetSpec) -> bool:
    """Check the first ELF member of a static archive."""
    with path.open("rb") as f:
        data = f.read(1 << 16)
    if not data.startswith(b"!<arch>\n"):
        return False
    offset = data.find(b"\x7fELF")
    if offset < 0:
        return False
    try:
        return parse_machine_tag(data[offset:]) in expected_tags(spec.architecture)
    except ArtifactFormatError:
        return False


__all__ = [
    "CROSS_FIND_POLICY",
    "DEB_ARCHITECTURES",
    "HOST_SYSTEM_PREFIXES",
    "NATIVE_FIND_POLICY",
    "SYSTEM_PROCESSORS",
    "library_candidates",
    "locate_library",
    "parse_selector",
    "resolve_target",
    "supported_selectors",
]
