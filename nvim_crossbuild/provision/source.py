"""Source checkout for the main build."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import TYPE_CHECKING

from nvim_crossbuild.build.runner import tail_file
from nvim_crossbuild.errors import ProvisioningError

if TYPE_CHECKING:
    from nvim_crossbuild.build.runner import CommandRunner

logger = logging.getLogger(__name__)


def checkout_source(
    runner: CommandRunner,
    repo_url: str,
    ref: str,
    dest: Path,
) -> Path:
    """Shallow-clone a repository at a ref into dest.

    An existing dest directory is replaced.

    Args:
        runner: Command runner for the run.
        repo_url: Repository to clone.
        ref: Branch or tag to check out.
        dest: Target directory.

    Returns:
        dest.

    Raises:
        ProvisioningError: If git fails or the checkout has no CMakeLists.txt.
    """
    if dest.exists():
        shutil.rmtree(dest)
    dest.parent.mkdir(parents=True, exist_ok=True)

    logger.info("Cloning %s at %s", repo_url, ref)
    result = runner.run(
        ["git", "clone", "--depth", "1", "--branch", ref, repo_url, dest],
        log_name="source",
    )
    if not result.success:
        raise ProvisioningError(
            f"git clone of {repo_url} at {ref} failed (exit code {result.exit_code})",
            diagnostics=tail_file(result.log_path) if result.log_path else None,
            log_path=result.log_path,
        )
    if not (dest / "CMakeLists.txt").is_file():
        raise ProvisioningError(f"Checkout {dest} has no CMakeLists.txt")
    logger.info("Checked out %s at %s", repo_url, source_revision(runner, dest) or ref)
    return dest


def source_revision(runner: CommandRunner, source_dir: Path) -> str | None:
    """Return the commit hash of a checkout, or None if unknown."""
    result = runner.capture(["git", "-C", source_dir, "rev-parse", "HEAD"])
    if not result.success:
        return None
    return result.output.strip() or None


__all__ = ["checkout_source", "source_revision"]
