"""Tests for local and published version lookups."""
from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest
import requests

from gwctl.versions import (
    ReleaseLookupError,
    fetch_latest_release,
    read_local_version,
    update_available,
)


class FakeResponse:
    def __init__(self, status_code: int, payload: Any = None) -> None:
        self.status_code = status_code
        self._payload = payload

    def json(self) -> Any:
        return self._payload

    def __enter__(self) -> FakeResponse:
        return self

    def __exit__(self, *exc: object) -> None:
        return None


class FakeSession:
    def __init__(self, response: FakeResponse | Exception) -> None:
        self.response = response
        self.urls: list[str] = []

    def get(self, url: str, **kwargs: Any) -> FakeResponse:
        self.urls.append(url)
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


def test_read_local_version(tmp_path: Path) -> None:
    (tmp_path / "VERSION").write_text("v4.3.1\n5 August 2024\n", encoding="utf-8")

    local = read_local_version(tmp_path)

    assert local is not None
    assert local.version == "v4.3.1"
    assert local.describe() == "Ghostwriter v4.3.1 (5 August 2024)"


def test_read_local_version_missing_or_empty(tmp_path: Path) -> None:
    assert read_local_version(tmp_path) is None
    (tmp_path / "VERSION").write_text("\n", encoding="utf-8")
    assert read_local_version(tmp_path) is None


def test_fetch_latest_release_parses_payload() -> None:
    session = FakeSession(
        FakeResponse(
            200,
            {
                "tag_name": "v4.3.2",
                "published_at": "2024-09-10T14:05:00Z",
                "html_url": "https://github.com/GhostManager/Ghostwriter/releases/tag/v4.3.2",
            },
        )
    )

    release = fetch_latest_release("GhostManager", "Ghostwriter", session=session)  # type: ignore[arg-type]

    assert session.urls == [
        "https://api.github.com/repos/GhostManager/Ghostwriter/releases/latest"
    ]
    assert release.tag_name == "v4.3.2"
    assert release.published_at == datetime(2024, 9, 10, 14, 5, tzinfo=UTC)
    assert release.describe() == "Ghostwriter v4.3.2 (10 September 2024)"


def test_unparseable_timestamp_falls_back_to_raw() -> None:
    session = FakeSession(FakeResponse(200, {"tag_name": "v1", "published_at": "yesterday"}))

    release = fetch_latest_release("o", "r", session=session)  # type: ignore[arg-type]

    assert release.published_at is None
    assert release.describe() == "r v1 (published at: yesterday)"


@pytest.mark.parametrize(
    ("response", "message"),
    [
        (FakeResponse(404), "unexpected HTTP status: 404"),
        (FakeResponse(200, {"published_at": "2024-01-01T00:00:00Z"}), "tag_name"),
        (FakeResponse(200, {"tag_name": "v1"}), "published_at"),
        (FakeResponse(200, ["v1"]), "unexpected payload"),
        (requests.exceptions.Timeout("slow"), "Failed to query"),
    ],
)
def test_fetch_latest_release_errors(response: FakeResponse | Exception, message: str) -> None:
    with pytest.raises(ReleaseLookupError, match=message):
        fetch_latest_release("o", "r", session=FakeSession(response))  # type: ignore[arg-type]


@pytest.mark.parametrize(
    ("local", "remote", "expected"),
    [
        ("v4.3.1", "v4.3.2", True),
        ("4.3.2", "v4.3.2", False),
        ("v5.0.0", "v4.9.9", False),
        ("dev-build", "v4.3.2", None),
    ],
)
def test_update_available(local: str, remote: str, expected: bool | None) -> None:
    assert update_available(local, remote) is expected
