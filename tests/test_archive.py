"""Tests for the gzip tar helpers."""
from __future__ import annotations

import hashlib
import io
import os
import tarfile
from pathlib import Path

import pytest

from gwctl.archive import ArchiveError, compute_checksum, create_archive, extract_archive


def _populate(root: Path) -> None:
    (root / "evidence" / "2024").mkdir(parents=True)
    (root / "templates").mkdir()
    (root / "evidence" / "2024" / "shot.png").write_bytes(b"\x89PNG\r\n\x00binary")
    (root / "templates" / "report.docx").write_bytes(b"PK\x03\x04docx")
    script = root / "templates" / "hook.sh"
    script.write_text("#!/bin/sh\necho hi\n", encoding="utf-8")
    os.chmod(script, 0o750)


def test_archive_round_trip_preserves_content_and_modes(tmp_path: Path) -> None:
    """Extracting an archive reproduces the tree byte for byte."""
    source = tmp_path / "media"
    source.mkdir()
    _populate(source)
    archive = tmp_path / "media_backup.tar.gz"

    archived = create_archive(source, archive)
    restored = tmp_path / "restored"
    extracted = extract_archive(archive, restored)

    assert archived == extracted == 3
    for relative in ("evidence/2024/shot.png", "templates/report.docx", "templates/hook.sh"):
        assert (restored / relative).read_bytes() == (source / relative).read_bytes()
    assert (restored / "templates" / "hook.sh").stat().st_mode & 0o777 == 0o750


def test_archive_member_names_are_relative(tmp_path: Path) -> None:
    source = tmp_path / "media"
    source.mkdir()
    _populate(source)
    archive = tmp_path / "out.tar.gz"

    create_archive(source, archive)

    with tarfile.open(archive, "r:gz") as handle:
        names = handle.getnames()
    assert "evidence/2024/shot.png" in names
    assert all(not name.startswith(("/", "media")) for name in names)


def test_symlinks_are_not_counted_or_archived(tmp_path: Path) -> None:
    """File counts for backup and restore agree when the tree holds links."""
    source = tmp_path / "media"
    source.mkdir()
    _populate(source)
    os.symlink(source / "templates" / "report.docx", source / "templates" / "latest.docx")
    os.symlink(source / "evidence", source / "evidence-link")
    archive = tmp_path / "out.tar.gz"

    archived = create_archive(source, archive)
    extracted = extract_archive(archive, tmp_path / "restored")

    assert archived == extracted == 3
    with tarfile.open(archive, "r:gz") as handle:
        names = handle.getnames()
    assert "templates/latest.docx" not in names
    assert "evidence-link" not in names


def test_empty_directories_are_kept(tmp_path: Path) -> None:
    source = tmp_path / "media"
    (source / "empty").mkdir(parents=True)
    archive = tmp_path / "out.tar.gz"

    assert create_archive(source, archive) == 0
    extract_archive(archive, tmp_path / "restored")

    assert (tmp_path / "restored" / "empty").is_dir()


def test_create_archive_requires_directory(tmp_path: Path) -> None:
    with pytest.raises(ArchiveError, match="not a directory"):
        create_archive(tmp_path / "missing", tmp_path / "out.tar.gz")


@pytest.mark.parametrize("name", ["../escape.txt", "/etc/passwd", "nested/../../escape.txt"])
def test_unsafe_members_are_rejected(tmp_path: Path, name: str) -> None:
    """Members that would escape the destination are refused."""
    archive = tmp_path / "evil.tar.gz"
    payload = b"owned"
    with tarfile.open(archive, "w:gz") as handle:
        info = tarfile.TarInfo(name)
        info.size = len(payload)
        handle.addfile(info, io.BytesIO(payload))

    with pytest.raises(ArchiveError, match="unsafe"):
        extract_archive(archive, tmp_path / "restored")
    assert not (tmp_path / "escape.txt").exists()


def test_corrupt_archive_is_reported(tmp_path: Path) -> None:
    archive = tmp_path / "broken.tar.gz"
    archive.write_bytes(b"not a tarball")

    with pytest.raises(ArchiveError, match="Failed to extract"):
        extract_archive(archive, tmp_path / "restored")


def test_compute_checksum(tmp_path: Path) -> None:
    path = tmp_path / "file.bin"
    path.write_bytes(b"ghostwriter")

    assert compute_checksum(path) == hashlib.sha256(b"ghostwriter").hexdigest()
