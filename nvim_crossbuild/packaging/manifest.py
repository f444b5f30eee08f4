"""Package manifest generation.

This module handles:
- Computing package checksums
- Generating a JSON manifest describing a finished package
"""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from nvim_crossbuild.types import DependencySet, PackageDescriptor, TargetSpec

logger = logging.getLogger(__name__)

MANIFEST_VERSION = "1.0"

# Default chunk size for hashing
HASH_CHUNK_SIZE = 64 * 1024  # 64KB


def compute_file_hash(
    file_path: Path,
    chunk_size: int = HASH_CHUNK_SIZE,
) -> str:
    """Compute SHA-256 hash of a file.

    Args:
        file_path: Path to the file.
        chunk_size: Size of chunks for streaming hash.

    Returns:
        SHA-256 hex digest.
    """
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def generate_manifest(
    package: PackageDescriptor,
    spec: TargetSpec,
    deps: DependencySet,
) -> dict[str, Any]:
    """Generate a package manifest.

    The manifest contains:
    - Package files with checksum and size
    - Target architecture and toolchain
    - Dependencies the binary was linked against
    - Timestamps

    Args:
        package: Assembled package.
        spec: Target the package was built for.
        deps: Dependencies used by the main build.

    Returns:
        Manifest dictionary suitable for JSON serialization.
    """
    return {
        "version": MANIFEST_VERSION,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "package": {
            "filename": package.package_path.name,
            "versioned_filename": package.versioned_path.name,
            "version": package.version,
            "architecture": package.architecture.value,
            "deb_architecture": spec.deb_architecture,
            "depends": list(package.depends),
            "sha256": package.sha256,
            "size_bytes": package.size_bytes,
        },
        "toolchain": {
            "selector": spec.selector.value,
            "target_cc": spec.compilers.target_cc,
            "host_cc": spec.compilers.host_cc,
            "dependency_mode": spec.dependency_mode.value,
        },
        "dependencies": {
            name: {"version": dep.version, "location": str(dep.location)}
            for name, dep in sorted(deps.entries.items())
        },
    }


def write_manifest(
    manifest: dict[str, Any],
    output_path: Path,
) -> Path:
    """Write manifest to a JSON file.

    Args:
        manifest: Manifest dictionary.
        output_path: Output file path.

    Returns:
        Path to written manifest file.
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with output_path.open("w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2, sort_keys=True)

    logger.info("Wrote manifest to %s", output_path)
    return output_path


__all__ = [
    "MANIFEST_VERSION",
    "compute_file_hash",
    "generate_manifest",
    "write_manifest",
]
