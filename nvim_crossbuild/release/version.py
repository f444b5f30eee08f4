"""Release version resolution.

This module handles:
- Fetching the upstream release notes for a channel from the GitHub API
- Extracting the version from the first lines of the notes

Only the first few lines are scanned; changelogs further down mention
plenty of other versions.
"""

from __future__ import annotations

import logging
import re

import httpx

from nvim_crossbuild.errors import METADATA_FETCH_FAILED, VersionUnresolvedError

logger = logging.getLogger(__name__)

DEFAULT_SCAN_LINES = 3

GITHUB_API_URL = "https://api.github.com"
GITHUB_API_VERSION = "2022-11-28"
USER_AGENT = "nvim-crossbuild"

_VERSION_CORE = (
    r"(?P<version>\d+\.\d+\.\d+(?:-[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*)?)"
)

# Whole-string version, leading 'v' optional
VERSION_PATTERN = re.compile(r"v?" + _VERSION_CORE)

# Version embedded in free text, leading 'v' required. It must end at a word
# boundary; a sentence-ending period is allowed.
EMBEDDED_VERSION_PATTERN = re.compile(r"(?<![\w.])v" + _VERSION_CORE + r"(?!\.?\w)")


def github_headers(token: str | None = None) -> dict[str, str]:
    """Standard GitHub REST API request headers."""
    headers = {
        "Accept": "application/vnd.github+json",
        "User-Agent": USER_AGENT,
        "X-GitHub-Api-Version": GITHUB_API_VERSION,
    }
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def extract_version(body: str, scan_lines: int = DEFAULT_SCAN_LINES) -> str:
    """Extract the release version from a release-notes body.

    Args:
        body: Free-text release notes.
        scan_lines: Number of leading lines to scan.

    Returns:
        Version without the leading 'v' (e.g. '0.10.2').

    Raises:
        VersionUnresolvedError: If no vX.Y.Z appears in the scanned lines.
    """
    if scan_lines < 1:
        raise ValueError("scan_lines must be at least 1")

    for line in body.splitlines()[:scan_lines]:
        match = EMBEDDED_VERSION_PATTERN.search(line)
        if match:
            return match.group("version")

    raise VersionUnresolvedError(
        f"No vMAJOR.MINOR.PATCH version in the first {scan_lines} "
        "line(s) of the release notes"
    )


def fetch_release_body(
    client: httpx.Client,
    repo: str,
    channel: str,
    api_url: str = GITHUB_API_URL,
    token: str | None = None,
) -> str:
    """Fetch the release notes of the release tagged with a channel name.

    Args:
        client: HTTP client.
        repo: owner/name of the upstream repository.
        channel: Release tag, e.g. 'stable' or 'nightly'.
        api_url: GitHub API base URL.
        token: Optional API token.

    Returns:
        The release body (empty string if the release has none).

    Raises:
        VersionUnresolvedError: With code metadata_fetch_failed on HTTP or
            network errors, or when the reply is not a release object.
    """
    url = f"{api_url.rstrip('/')}/repos/{repo}/releases/tags/{channel}"
    logger.info("Fetching release notes for %s@%s", repo, channel)
    try:
        response = client.get(url, headers=github_headers(token))
        response.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise VersionUnresolvedError(
            f"Fetching release {channel} of {repo} failed: "
            f"{e.response.status_code} {e.response.reason_phrase}",
            code=METADATA_FETCH_FAILED,
        ) from e
    except httpx.RequestError as e:
        raise VersionUnresolvedError(
            f"Network error fetching release {channel} of {repo}: {e}",
            code=METADATA_FETCH_FAILED,
        ) from e

    try:
        data = response.json()
    except ValueError as e:
        raise VersionUnresolvedError(
            f"Release {channel} of {repo} returned a non-JSON reply",
            code=METADATA_FETCH_FAILED,
        ) from e
    if not isinstance(data, dict):
        raise VersionUnresolvedError(
            f"Release {channel} of {repo} returned {type(data).__name__}, "
            "not a release object",
            code=METADATA_FETCH_FAILED,
        )
    return data.get("body") or ""


def resolve_version(
    client: httpx.Client,
    repo: str,
    channel: str,
    scan_lines: int = DEFAULT_SCAN_LINES,
    api_url: str = GITHUB_API_URL,
    token: str | None = None,
) -> str:
    """Fetch the channel's release notes and extract its version.

    Raises:
        VersionUnresolvedError: If fetching or extraction fails.
    """
    body = fetch_release_body(client, repo, channel, api_url=api_url, token=token)
    version = extract_version(body, scan_lines)
    logger.info("Resolved %s@%s to version %s", repo, channel, version)
    return version


__all__ = [
    "DEFAULT_SCAN_LINES",
    "EMBEDDED_VERSION_PATTERN",
    "VERSION_PATTERN",
    "extract_version",
    "fetch_release_body",
    "github_headers",
    "resolve_version",
]
