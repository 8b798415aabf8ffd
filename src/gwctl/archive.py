"""Gzip tar helpers used to move the media tree in and out of containers."""
from __future__ import annotations

import hashlib
import os
import shutil
import tarfile
from pathlib import Path, PurePosixPath


class ArchiveError(RuntimeError):
    """Raised when an archive cannot be written or unpacked."""


def create_archive(source_dir: Path, archive_path: Path) -> int:
    """Write *source_dir* into a gzip tar at *archive_path*.

    Entries are added in filesystem walk order with names relative to
    *source_dir*. Symbolic links are not archived. Returns the number of
    regular files archived.
    """
    if not source_dir.is_dir():
        raise ArchiveError(f"Cannot archive {source_dir}: not a directory.")
    files = 0
    try:
        with tarfile.open(archive_path, mode="w:gz") as archive:
            for current, dirnames, filenames in os.walk(source_dir):
                current_path = Path(current)
                for name in dirnames:
                    path = current_path / name
                    if path.is_symlink():
                        continue
                    archive.add(path, arcname=_relative_name(source_dir, path), recursive=False)
                for name in filenames:
                    path = current_path / name
                    if path.is_symlink() or not path.is_file():
                        continue
                    archive.add(path, arcname=_relative_name(source_dir, path), recursive=False)
                    files += 1
    except OSError as exc:
        raise ArchiveError(f"Failed to create archive {archive_path}: {exc}") from exc
    return files


def extract_archive(archive_path: Path, destination: Path) -> int:
    """Unpack the gzip tar at *archive_path* into *destination*.

    Directories are created as needed, regular files are written
    byte-for-byte and receive their archived permission bits. Members that
    would land outside *destination* are rejected. Returns the number of
    regular files written.
    """
    files = 0
    destination.mkdir(parents=True, exist_ok=True)
    try:
        with tarfile.open(archive_path, mode="r:gz") as archive:
            for member in archive:
                target = _member_target(destination, member.name)
                if member.isdir():
                    target.mkdir(mode=0o755, parents=True, exist_ok=True)
                    continue
                if not member.isfile():
                    continue
                target.parent.mkdir(mode=0o755, parents=True, exist_ok=True)
                source = archive.extractfile(member)
                if source is None:
                    continue
                with source, target.open("wb") as handle:
                    shutil.copyfileobj(source, handle)
                os.chmod(target, member.mode & 0o7777)
                files += 1
    except (OSError, tarfile.TarError) as exc:
        raise ArchiveError(f"Failed to extract archive {archive_path}: {exc}") from exc
    return files


def _relative_name(root: Path, path: Path) -> str:
    return path.relative_to(root).as_posix()


def _member_target(destination: Path, name: str) -> Path:
    relative = PurePosixPath(name)
    if relative.is_absolute() or ".." in relative.parts:
        raise ArchiveError(f"Refusing to extract unsafe archive member {name!r}.")
    return destination.joinpath(*relative.parts)


def compute_checksum(path: Path) -> str:
    """Return the SHA-256 checksum for *path*."""
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(1024 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()


__all__ = ["ArchiveError", "compute_checksum", "create_archive", "extract_archive"]
