"""Local and published release information."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

import requests
from packaging.version import InvalidVersion, Version

VERSION_FILE = "VERSION"


class ReleaseLookupError(RuntimeError):
    """Raised when release metadata cannot be retrieved."""


@dataclass(frozen=True, slots=True)
class LocalVersion:
    """Version and release date read from the installation's ``VERSION`` file."""

    version: str
    release_date: str

    def describe(self) -> str:
        return f"Ghostwriter {self.version} ({self.release_date})"


@dataclass(frozen=True, slots=True)
class ReleaseInfo:
    """Latest published release of a repository."""

    repository: str
    tag_name: str
    published_at: datetime | None
    published_raw: str
    html_url: str

    def describe(self) -> str:
        if self.published_at is None:
            return f"{self.repository} {self.tag_name} (published at: {self.published_raw})"
        published = self.published_at.strftime("%d %B %Y")
        return f"{self.repository} {self.tag_name} ({published})"


def read_local_version(install_root: Path) -> LocalVersion | None:
    """Return the installed version, or ``None`` when ``VERSION`` is missing."""
    path = install_root / VERSION_FILE
    if not path.is_file():
        return None
    lines = [line.strip() for line in path.read_text(encoding="utf-8").splitlines()]
    if not lines or not lines[0]:
        return None
    return LocalVersion(version=lines[0], release_date=lines[1] if len(lines) > 1 else "unknown")


def _parse_timestamp(raw: str) -> datetime | None:
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None


def fetch_latest_release(
    owner: str,
    repository: str,
    *,
    api_url: str = "https://api.github.com",
    session: requests.Session | None = None,
    timeout: float = 10.0,
) -> ReleaseInfo:
    """Query the latest release of ``owner/repository``."""
    url = f"{api_url}/repos/{owner}/{repository}/releases/latest"
    client = session or requests.Session()
    try:
        response = client.get(
            url,
            headers={"Accept": "application/vnd.github+json"},
            timeout=timeout,
        )
    except requests.exceptions.RequestException as exc:
        raise ReleaseLookupError(f"Failed to query {url}: {exc}") from exc
    with response:
        if response.status_code != 200:
            raise ReleaseLookupError(f"unexpected HTTP status: {response.status_code}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise ReleaseLookupError(f"{url} did not return JSON: {exc}") from exc

    if not isinstance(payload, dict):
        raise ReleaseLookupError(f"{url} returned an unexpected payload.")
    tag_name = payload.get("tag_name")
    published = payload.get("published_at")
    if not isinstance(tag_name, str):
        raise ReleaseLookupError("missing 'tag_name' in release metadata")
    if not isinstance(published, str):
        raise ReleaseLookupError("missing 'published_at' in release metadata")
    return ReleaseInfo(
        repository=repository,
        tag_name=tag_name,
        published_at=_parse_timestamp(published),
        published_raw=published,
        html_url=str(payload.get("html_url") or ""),
    )


def _as_version(value: str) -> Version | None:
    try:
        return Version(value.strip().lstrip("vV"))
    except InvalidVersion:
        return None


def update_available(local: str, remote: str) -> bool | None:
    """Return whether *remote* is newer than *local*; ``None`` if incomparable."""
    local_version = _as_version(local)
    remote_version = _as_version(remote)
    if local_version is None or remote_version is None:
        return None
    return remote_version > local_version


__all__ = [
    "LocalVersion",
    "ReleaseInfo",
    "ReleaseLookupError",
    "fetch_latest_release",
    "read_local_version",
    "update_available",
]
