"""GitHub release publisher.

Creates one release per call as a draft, uploads its assets and only then
makes it public. A draft whose uploads fail is deleted, so a partial
release is never visible under the tag. Errors from the API are surfaced
as PublishError with the status and message GitHub returned; nothing is
retried.
"""

from __future__ import annotations

import logging
import mimetypes
from pathlib import Path
from typing import Any

import httpx

from nvim_crossbuild.errors import PublishError
from nvim_crossbuild.release.version import GITHUB_API_URL, github_headers
from nvim_crossbuild.types import ReleaseRecord

logger = logging.getLogger(__name__)

DEB_CONTENT_TYPE = "application/vnd.debian.binary-package"

# Timeout for asset uploads (seconds)
UPLOAD_TIMEOUT = 600


def _api_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text.strip() or response.reason_phrase
    if isinstance(data, dict):
        message = data.get("message") or response.reason_phrase
        errors = data.get("errors")
        if errors:
            message = f"{message}: {errors}"
        return str(message)
    return response.reason_phrase


def _content_type(path: Path) -> str:
    if path.suffix == ".deb":
        return DEB_CONTENT_TYPE
    guessed, _ = mimetypes.guess_type(path.name)
    return guessed or "application/octet-stream"


class GitHubPublisher:
    """Publishes packages as a GitHub release.

    Attributes:
        client: HTTP client.
        repo: owner/name of the repository receiving the release.
        api_url: GitHub API base URL.
    """

    def __init__(
        self,
        client: httpx.Client,
        repo: str,
        token: str | None,
        api_url: str = GITHUB_API_URL,
    ) -> None:
        self.client = client
        self.repo = repo
        self.api_url = api_url.rstrip("/")
        self._token = token

    def _request(
        self, method: str, url: str, what: str, **kwargs: Any
    ) -> dict[str, Any]:
        if not self._token:
            raise PublishError("A GitHub token is required to publish releases")
        headers = github_headers(self._token)
        headers.update(kwargs.pop("headers", {}))
        try:
            response = self.client.request(method, url, headers=headers, **kwargs)
        except httpx.RequestError as e:
            raise PublishError(f"Network error during {what}: {e}") from e

        if response.is_error:
            raise PublishError(
                f"GitHub API rejected {what}: {response.status_code} "
                f"{_api_message(response)}",
                status_code=response.status_code,
            )
        # DELETE answers 204 with no body
        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as e:
            raise PublishError(f"GitHub API sent a non-JSON reply to {what}") from e
        if not isinstance(data, dict):
            raise PublishError(f"GitHub API sent an unexpected reply to {what}")
        return data

    def create_release(
        self,
        tag: str,
        name: str,
        body: str = "",
        prerelease: bool = False,
    ) -> dict[str, Any]:
        """Create a draft release and return the API's release object."""
        logger.info("Creating draft release %s in %s", tag, self.repo)
        return self._request(
            "POST",
            f"{self.api_url}/repos/{self.repo}/releases",
            f"creating release {tag}",
            json={
                "tag_name": tag,
                "name": name,
                "body": body,
                "draft": True,
                "prerelease": prerelease,
            },
        )

    def finalize_release(self, release_id: int) -> dict[str, Any]:
        """Make a draft release public."""
        return self._request(
            "PATCH",
            f"{self.api_url}/repos/{self.repo}/releases/{release_id}",
            f"publishing release {release_id}",
            json={"draft": False},
        )

    def delete_release(self, release_id: int) -> None:
        """Delete a release, together with any assets uploaded to it."""
        logger.warning("Deleting draft release %s in %s", release_id, self.repo)
        self._request(
            "DELETE",
            f"{self.api_url}/repos/{self.repo}/releases/{release_id}",
            f"deleting release {release_id}",
        )

    def upload_asset(self, upload_url: str, path: Path) -> dict[str, Any]:
        """Upload one file to a release's upload_url."""
        # upload_url is a URI template: .../assets{?name,label}
        url = upload_url.split("{", 1)[0]
        logger.info("Uploading %s (%d bytes)", path.name, path.stat().st_size)
        return self._request(
            "POST",
            url,
            f"uploading {path.name}",
            params={"name": path.name},
            content=path.read_bytes(),
            headers={"Content-Type": _content_type(path)},
            timeout=UPLOAD_TIMEOUT,
        )

    def _discard_draft(self, release_id: int, cause: PublishError) -> None:
        try:
            self.delete_release(release_id)
        except PublishError as e:
            # The upload failure is what gets raised; the leftover draft is
            # only reported
            logger.error("Draft release %s was not deleted: %s", release_id, e)
            cause.add_note(f"Draft release {release_id} could not be deleted: {e}")

    def publish(
        self,
        tag: str,
        name: str,
        assets: list[Path],
        body: str = "",
        prerelease: bool = False,
    ) -> ReleaseRecord:
        """Create a draft release, attach assets and make it public.

        If an upload or the final update fails, the draft is deleted before
        the error is raised.

        Args:
            tag: Release tag.
            name: Display name.
            assets: Files to upload.
            body: Release notes.
            prerelease: Mark the release as a pre-release.

        Returns:
            ReleaseRecord describing the published release.

        Raises:
            PublishError: If the token is missing, an asset does not exist,
                or any API call fails.
        """
        if not self._token:
            raise PublishError("A GitHub token is required to publish releases")
        missing = [str(p) for p in assets if not p.is_file()]
        if missing:
            raise PublishError(f"Release assets not found: {', '.join(missing)}")

        release = self.create_release(tag, name, body=body, prerelease=prerelease)
        release_id = release.get("id")
        upload_url = release.get("upload_url")
        if release_id is None or not upload_url:
            raise PublishError(f"Release {tag} response has no id or upload_url")

        try:
            uploaded = [
                self.upload_asset(upload_url, path).get("name", path.name)
                for path in assets
            ]
            release = self.finalize_release(release_id)
        except PublishError as e:
            self._discard_draft(release_id, e)
            raise

        record = ReleaseRecord(
            tag=release.get("tag_name", tag),
            name=release.get("name") or name,
            html_url=release.get("html_url"),
            assets=tuple(uploaded),
        )
        logger.info("Published %s with %d assets", record.tag, len(record.assets))
        return record


__all__ = ["DEB_CONTENT_TYPE", "GitHubPublisher"]
