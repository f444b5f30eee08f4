"""Configuration settings for nvim_crossbuild.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_work_dir() -> Path:
    """Return the default working directory for runs."""
    return Path.home() / ".cache" / "nvim-crossbuild" / "runs"


def _default_dist_dir() -> Path:
    """Return the default output directory for packages."""
    return Path.home() / ".local" / "share" / "nvim-crossbuild" / "dist"


def _default_db_url() -> str:
    """Return the default database URL (SQLite)."""
    db_path = Path.home() / ".local" / "share" / "nvim-crossbuild" / "runs.sqlite"
    return f"sqlite:///{db_path}"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the NVIM_XB_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="NVIM_XB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    work_dir: Path = Field(
        default_factory=_default_work_dir,
        description="Root directory for per-run working trees",
    )
    dist_dir: Path = Field(
        default_factory=_default_dist_dir,
        description="Root directory for finished packages",
    )
    db_url: str = Field(
        default_factory=_default_db_url,
        description="Database connection URL for the run ledger",
    )
    keep_work_dir: bool = Field(
        default=True,
        description="Keep per-run working trees after the run finishes",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Product and source
    product: str = Field(default="nvim", description="Product name used in filenames")
    channel: str = Field(default="stable", description="Release channel")
    source_repo_url: str = Field(
        default="https://github.com/neovim/neovim.git",
        description="Repository cloned for the main build",
    )
    source_ref: str = Field(default="stable", description="Ref checked out for builds")

    # GitHub
    github_api_url: str = Field(
        default="https://api.github.com",
        description="GitHub REST API base URL",
    )
    upstream_repo: str = Field(
        default="neovim/neovim",
        description="Repository whose release notes carry the version",
    )
    github_repo: str | None = Field(
        default=None,
        description="owner/name of the repository receiving releases",
    )
    github_token: SecretStr | None = Field(
        default=None,
        description="Token used for publishing releases",
    )
    version_scan_lines: int = Field(
        default=3,
        ge=1,
        le=50,
        description="Leading release-note lines scanned for a version",
    )

    # Toolchains and provisioning
    host_cc: str = Field(default="gcc", description="Host C compiler")
    host_cxx: str = Field(default="g++", description="Host C++ compiler")
    cross_triple: str = Field(
        default="aarch64-linux-gnu",
        description="GNU triple of the cross toolchain",
    )
    use_sudo: bool = Field(
        default=True,
        description="Prefix package installation with sudo",
    )

    # Concurrency
    max_concurrent_builds: int = Field(
        default=2,
        ge=1,
        le=4,
        description="Maximum architecture runs executed concurrently",
    )

    # Timeouts (in seconds)
    pipeline_timeout: int = Field(
        default=3 * 3600,
        ge=60,
        description="Wall-clock budget for a whole run",
    )
    command_timeout: int = Field(
        default=3600,
        ge=10,
        description="Upper bound for a single external command",
    )
    http_timeout: float = Field(
        default=60.0,
        gt=0,
        description="Timeout for GitHub API requests",
    )


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings (secrets masked).
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["Settings", "get_settings", "print_settings_json"]
