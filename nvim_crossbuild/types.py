"""Shared type definitions for nvim_crossbuild.

This module contains enums and the immutable pipeline records handed from
stage to stage. They live here to avoid circular imports between
subpackages.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path


class Selector(str, Enum):
    """Target selector accepted by the trigger interface."""

    NATIVE = "native"
    CROSS = "cross"


class Architecture(str, Enum):
    """Target architecture of a build run."""

    AMD64 = "amd64"
    AARCH64 = "aarch64"


class DependencyMode(str, Enum):
    """How libraries required by the main build are obtained."""

    SYSTEM_PACKAGES = "system-packages"
    BUILD_FROM_SOURCE = "build-from-source"


class StageName(str, Enum):
    """Pipeline stages, in execution order."""

    PROVISION = "provision"
    SOURCE = "source"
    RESOLVE = "resolve"
    DEPENDENCIES = "dependencies"
    BUILD = "build"
    VERIFY = "verify"
    VERSION = "version"
    PACKAGE = "package"
    PUBLISH = "publish"


class RunStatus(str, Enum):
    """Status of a pipeline run or stage."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class CompilerPair:
    """Host and target compilers for one run.

    Host compilers build helper programs that execute during the build
    (code generators, bootstrap interpreters). Target compilers build
    everything that ends up in the package. For native runs both are the
    same toolchain.
    """

    host_cc: str
    host_cxx: str
    target_cc: str
    target_cxx: str
    target_triple: str | None = None

    @property
    def is_cross(self) -> bool:
        """Whether host and target compilers differ."""
        return self.host_cc != self.target_cc

    @property
    def cross_prefix(self) -> str:
        """Binutils prefix for the target toolchain (e.g. 'aarch64-linux-gnu-')."""
        return f"{self.target_triple}-" if self.target_triple else ""


@dataclass(frozen=True)
class FindPathPolicy:
    """Rules for where libraries, headers and programs may be found.

    Modes follow CMake's CMAKE_FIND_ROOT_PATH_MODE_* vocabulary:
    ONLY (search the roots only), NEVER (ignore the roots), BOTH.
    """

    root_paths: tuple[Path, ...] = ()
    program_mode: str = "BOTH"
    library_mode: str = "BOTH"
    include_mode: str = "BOTH"
    package_mode: str = "BOTH"
    ignore_system_prefixes: tuple[str, ...] = ()
    foreign_packages_disabled: bool = False

    @property
    def target_only(self) -> bool:
        """Whether library search is confined to the roots."""
        return self.library_mode == "ONLY"

    def with_roots(self, *roots: Path) -> FindPathPolicy:
        """Return a copy of this policy searching the given roots."""
        return replace(self, root_paths=tuple(roots))


@dataclass(frozen=True)
class TargetSpec:
    """Resolved description of the target platform for one run."""

    selector: Selector
    architecture: Architecture
    compilers: CompilerPair
    find_policy: FindPathPolicy
    dependency_mode: DependencyMode
    deb_architecture: str
    system_processor: str

    @property
    def is_cross(self) -> bool:
        return self.dependency_mode is DependencyMode.BUILD_FROM_SOURCE

    @property
    def staging_prefix(self) -> Path | None:
        """First search root of the find policy, if any."""
        roots = self.find_policy.root_paths
        return roots[0] if roots else None


@dataclass(frozen=True)
class ResolvedDependency:
    """A single library resolved for the main build."""

    name: str
    version: str
    mode: DependencyMode
    location: Path


@dataclass(frozen=True)
class DependencySet:
    """All libraries available to the main build stage.

    Attributes:
        mode: How the entries were obtained.
        prefix: Staging prefix (build-from-source) or system prefix.
        entries: Mapping of library name to resolved entry.
        runtime_depends: Debian package relations for the final package.
    """

    mode: DependencyMode
    prefix: Path
    entries: dict[str, ResolvedDependency] = field(default_factory=dict)
    runtime_depends: tuple[str, ...] = ()

    def require(self, names: list[str] | tuple[str, ...]) -> list[str]:
        """Return the required names that have no resolved entry."""
        return [name for name in names if name not in self.entries]

    def get(self, name: str) -> ResolvedDependency | None:
        return self.entries.get(name)


@dataclass(frozen=True)
class BuildArtifact:
    """The binary produced by the main build stage."""

    binary_path: Path
    size_bytes: int
    build_dir: Path
    detected_architecture: Architecture | None = None

    def with_detection(self, architecture: Architecture) -> BuildArtifact:
        """Return a copy carrying the verified architecture."""
        return replace(self, detected_architecture=architecture)


@dataclass(frozen=True)
class PackageDescriptor:
    """A finished Debian package ready for publishing."""

    package_path: Path
    versioned_path: Path
    version: str
    architecture: Architecture
    depends: tuple[str, ...]
    sha256: str
    size_bytes: int
    manifest_path: Path | None = None


@dataclass(frozen=True)
class ReleaseRecord:
    """A release as reported back by the publisher."""

    tag: str
    name: str
    html_url: str | None = None
    assets: tuple[str, ...] = ()


@dataclass(frozen=True)
class CommandResult:
    """Result of an external command execution.

    Attributes:
        command: The command line that was executed.
        exit_code: Process exit code (-1 on timeout).
        log_path: Log file holding stdout/stderr, if one was written.
        output: Captured stdout when no log file was used.
        stderr: Captured stderr when no log file was used.
        duration: Wall-clock seconds spent.
    """

    command: str
    exit_code: int
    log_path: Path | None = None
    output: str = ""
    stderr: str = ""
    duration: float = 0.0

    @property
    def success(self) -> bool:
        return self.exit_code == 0


__all__ = [
    "Architecture",
    "BuildArtifact",
    "CommandResult",
    "CompilerPair",
    "DependencyMode",
    "DependencySet",
    "FindPathPolicy",
    "PackageDescriptor",
    "ReleaseRecord",
    "ResolvedDependency",
    "RunStatus",
    "Selector",
    "StageName",
    "TargetSpec",
]
