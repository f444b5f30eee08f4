"""Debian package assembly.

This module handles:
- Validating the release version before any packaging work
- Running CPack's DEB generator with architecture and Depends metadata
- Placing the package under its canonical and versioned names
- Writing the package manifest
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import TYPE_CHECKING

from nvim_crossbuild.build.runner import tail_file
from nvim_crossbuild.errors import (
    ArchitectureMismatchError,
    PackagingError,
    VersionUnresolvedError,
)
from nvim_crossbuild.packaging.manifest import (
    compute_file_hash,
    generate_manifest,
    write_manifest,
)
from nvim_crossbuild.packaging.naming import (
    DEFAULT_EXTENSION,
    canonical_package_name,
    canonical_stem,
    versioned_package_name,
)
from nvim_crossbuild.release.version import VERSION_PATTERN
from nvim_crossbuild.types import (
    BuildArtifact,
    DependencySet,
    PackageDescriptor,
    TargetSpec,
)

if TYPE_CHECKING:
    from nvim_crossbuild.build.runner import CommandRunner

logger = logging.getLogger(__name__)


def parse_version(text: str | None) -> str:
    """Parse 'vMAJOR.MINOR.PATCH(-suffix)' into a version without the 'v'.

    The leading 'v' is optional and surrounding whitespace is ignored.

    Raises:
        VersionUnresolvedError: If text does not have that shape.
    """
    if text is None:
        raise VersionUnresolvedError("No version supplied")
    match = VERSION_PATTERN.fullmatch(text.strip())
    if match is None:
        raise VersionUnresolvedError(
            f"Version {text!r} does not match vMAJOR.MINOR.PATCH(-suffix)"
        )
    return match.group("version")


def compose_cpack_command(
    spec: TargetSpec,
    deps: DependencySet,
    version: str,
    stem: str,
    output_dir: Path,
) -> list[str]:
    """Compose the CPack DEB invocation."""
    cmd = [
        "cpack",
        "-G",
        "DEB",
        "-B",
        str(output_dir),
        "-D",
        f"CPACK_PACKAGE_FILE_NAME={stem}",
        "-D",
        f"CPACK_PACKAGE_VERSION={version}",
        "-D",
        f"CPACK_DEBIAN_PACKAGE_ARCHITECTURE={spec.deb_architecture}",
        "-D",
        f"CPACK_DEBIAN_PACKAGE_DEPENDS={', '.join(deps.runtime_depends)}",
    ]
    if spec.compilers.is_cross:
        # dpkg-shlibdeps cannot inspect foreign binaries
        cmd += ["-D", "CPACK_DEBIAN_PACKAGE_SHLIBDEPS=OFF"]
    return cmd


def assemble_package(
    artifact: BuildArtifact,
    spec: TargetSpec,
    deps: DependencySet,
    version: str,
    out_dir: Path,
    runner: CommandRunner,
    product: str = "nvim",
    channel: str = "stable",
) -> PackageDescriptor:
    """Package a verified build as a .deb.

    Args:
        artifact: Verified BuildArtifact.
        spec: Target the artifact was built for.
        deps: Dependencies supplying the package's Depends field.
        version: Release version, with or without leading 'v'.
        out_dir: Directory receiving the packages and manifest.
        runner: Command runner for the run.
        product: Product name used in filenames.
        channel: Release channel used in filenames.

    Returns:
        PackageDescriptor for the finished package.

    Raises:
        VersionUnresolvedError: If version cannot be parsed.
        ArchitectureMismatchError: If the artifact was not verified for spec.
        PackagingError: If CPack fails or produces no package.
    """
    parsed = parse_version(version)

    if artifact.detected_architecture is not spec.architecture:
        detected = (
            artifact.detected_architecture.value
            if artifact.detected_architecture
            else "unverified"
        )
        raise ArchitectureMismatchError(
            spec.architecture.value, detected, artifact.binary_path
        )

    stem = canonical_stem(product, channel, spec.architecture)
    cpack_dir = artifact.build_dir / "cpack"
    cmd = compose_cpack_command(spec, deps, parsed, stem, cpack_dir)
    result = runner.run(cmd, log_name="package", cwd=artifact.build_dir)
    if not result.success:
        raise PackagingError(
            f"cpack failed (exit code {result.exit_code})",
            diagnostics=tail_file(result.log_path) if result.log_path else None,
            log_path=result.log_path,
        )

    produced = cpack_dir / f"{stem}.{DEFAULT_EXTENSION}"
    if not produced.is_file():
        raise PackagingError(
            f"cpack finished but {produced.name} was not produced",
            log_path=result.log_path,
        )

    out_dir.mkdir(parents=True, exist_ok=True)
    package_path = out_dir / canonical_package_name(product, channel, spec.architecture)
    versioned_path = out_dir / versioned_package_name(
        product, parsed, channel, spec.architecture
    )
    shutil.move(str(produced), package_path)
    shutil.copyfile(package_path, versioned_path)

    package = PackageDescriptor(
        package_path=package_path,
        versioned_path=versioned_path,
        version=parsed,
        architecture=spec.architecture,
        depends=deps.runtime_depends,
        sha256=compute_file_hash(package_path),
        size_bytes=package_path.stat().st_size,
        manifest_path=out_dir / f"{stem}.manifest.json",
    )
    write_manifest(generate_manifest(package, spec, deps), package.manifest_path)

    logger.info(
        "Assembled %s (%s, %d bytes)",
        package_path.name,
        versioned_path.name,
        package.size_bytes,
    )
    return package


__all__ = ["assemble_package", "compose_cpack_command", "parse_version"]
