"""Release metadata and publishing module.

This module handles:
- Resolving the release version from upstream release notes
- Publishing packages as GitHub releases
"""

from nvim_crossbuild.release.publisher import GitHubPublisher
from nvim_crossbuild.release.version import (
    extract_version,
    fetch_release_body,
    resolve_version,
)

__all__ = [
    "GitHubPublisher",
    "extract_version",
    "fetch_release_body",
    "resolve_version",
]
