"""Error taxonomy for the build pipeline.

Every pipeline failure is a PipelineError subclass carrying a stable code
that the CLI and the run ledger surface as-is. No error is retried.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

# Stable error codes
UNSUPPORTED_ARCHITECTURE = "unsupported_architecture"
PROVISIONING_FAILED = "provisioning_failed"
DEPENDENCY_BUILD_FAILED = "dependency_build_failed"
BUILD_FAILED = "build_failed"
ARCHITECTURE_MISMATCH = "architecture_mismatch"
ARTIFACT_FORMAT = "artifact_format"
VERSION_UNRESOLVED = "version_unresolved"
METADATA_FETCH_FAILED = "metadata_fetch_failed"
PACKAGING_FAILED = "packaging_failed"
PUBLISH_FAILED = "publish_failed"
TIMEOUT = "timeout"
RUN_NOT_FOUND = "run_not_found"
INTERNAL_ERROR = "internal_error"


class PipelineError(Exception):
    """Base error for all pipeline stages.

    Attributes:
        code: Stable error code for programmatic handling.
        stage: Name of the stage that failed, when known.
        diagnostics: Tail of the underlying tool output.
        log_path: Log file with the full tool output.
    """

    default_code = "pipeline_error"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        stage: str | None = None,
        diagnostics: str | None = None,
        log_path: Path | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.stage = stage
        self.diagnostics = diagnostics
        self.log_path = log_path

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.stage is not None:
            result["stage"] = self.stage
        if self.diagnostics:
            result["diagnostics"] = self.diagnostics
        if self.log_path is not None:
            result["log_path"] = str(self.log_path)
        return result


class UnsupportedArchitectureError(PipelineError):
    """Raised when a selector does not name a supported target."""

    default_code = UNSUPPORTED_ARCHITECTURE

    def __init__(self, selector: str, supported: list[str] | None = None) -> None:
        supported = supported or []
        super().__init__(
            f"Unsupported architecture selector: {selector!r}"
            + (f" (expected one of: {', '.join(supported)})" if supported else "")
        )
        self.selector = selector
        self.supported = supported


class ProvisioningError(PipelineError):
    """Raised when host packages or sources cannot be provisioned."""

    default_code = PROVISIONING_FAILED


class DependencyBuildError(PipelineError):
    """Raised when one dependency fails to build from source.

    The failing command is always part of the message, so the run ledger
    and the CLI show which invocation broke.
    """

    default_code = DEPENDENCY_BUILD_FAILED

    def __init__(
        self,
        dependency: str,
        command: str,
        message: str | None = None,
        diagnostics: str | None = None,
        log_path: Path | None = None,
    ) -> None:
        if message is None:
            message = f"Dependency {dependency} failed to build: {command}"
        elif command not in message:
            message = f"{message} (command: {command})"
        super().__init__(message, diagnostics=diagnostics, log_path=log_path)
        self.dependency = dependency
        self.command = command

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["dependency"] = self.dependency
        result["command"] = self.command
        return result


class BuildFailedError(PipelineError):
    """Raised when the main build fails to compile or link."""

    default_code = BUILD_FAILED


class ArchitectureMismatchError(PipelineError):
    """Raised when a binary's machine does not match the target."""

    default_code = ARCHITECTURE_MISMATCH

    def __init__(self, expected: str, detected: str, path: Path | None = None) -> None:
        super().__init__(
            f"Architecture mismatch: expected {expected}, detected {detected}"
            + (f" in {path}" if path else "")
        )
        self.expected = expected
        self.detected = detected
        self.path = path


class ArtifactFormatError(PipelineError):
    """Raised when a binary's header cannot be read."""

    default_code = ARTIFACT_FORMAT


class VersionUnresolvedError(PipelineError):
    """Raised when no release version can be determined."""

    default_code = VERSION_UNRESOLVED


class PackagingError(PipelineError):
    """Raised when the Debian package cannot be produced."""

    default_code = PACKAGING_FAILED


class PublishError(PipelineError):
    """Raised when the release API rejects a publish call."""

    default_code = PUBLISH_FAILED

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message, code=code)
        self.status_code = status_code


class PipelineTimeoutError(PipelineError):
    """Raised when the run exceeds its wall-clock budget."""

    default_code = TIMEOUT


__all__ = [
    "ARCHITECTURE_MISMATCH",
    "ARTIFACT_FORMAT",
    "BUILD_FAILED",
    "DEPENDENCY_BUILD_FAILED",
    "INTERNAL_ERROR",
    "METADATA_FETCH_FAILED",
    "PACKAGING_FAILED",
    "PROVISIONING_FAILED",
    "PUBLISH_FAILED",
    "RUN_NOT_FOUND",
    "TIMEOUT",
    "UNSUPPORTED_ARCHITECTURE",
    "VERSION_UNRESOLVED",
    "ArchitectureMismatchError",
    "ArtifactFormatError",
    "BuildFailedError",
    "DependencyBuildError",
    "PackagingError",
    "PipelineError",
    "PipelineTimeoutError",
    "ProvisioningError",
    "PublishError",
    "UnsupportedArchitectureError",
    "VersionUnresolvedError",
]
