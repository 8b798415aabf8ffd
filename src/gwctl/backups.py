"""Database and media backup/restore sequencing.

The database dump is produced and restored by scripts inside the database
container; this module only orchestrates them. The media tree is copied out of
the application container into a local staging directory, archived, and the
archive is pushed into the database container's backup volume so both
artefacts live side by side. Restore runs the same path in reverse.

A pre-existing staging directory is never touched: it may hold data from an
interrupted run, so both flows refuse to start when it exists.
"""
from __future__ import annotations

import shutil
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path, PurePosixPath

from .archive import compute_checksum, create_archive, extract_archive
from .logging import OperationScope
from .providers.compose import ComposeProvider

MEDIA_ARCHIVE_PREFIX = "media_backup_"
TIMESTAMP_FORMAT = "%Y_%m_%dT%H_%M_%S"

DB_SERVICE = "postgres"
APP_SERVICE = "django"
CONTAINER_MEDIA_PATH = "/app/ghostwriter/media"
CONTAINER_MEDIA_PARENT = "/app/ghostwriter/"
BACKUP_VOLUME_PATH = "/backups"
# `cp` names the local copy after the last component of the container path.
STAGING_NAME = PurePosixPath(CONTAINER_MEDIA_PATH).name
DOWNLOAD_NAME = PurePosixPath(BACKUP_VOLUME_PATH).name


class BackupError(RuntimeError):
    """Raised when backup or restore cannot proceed."""


class StagingCollisionError(BackupError):
    """Raised when the local staging directory already exists."""


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


def backup_timestamp(moment: datetime) -> str:
    """Return the filename timestamp (UTC, second resolution) for *moment*."""
    return moment.astimezone(UTC).strftime(TIMESTAMP_FORMAT)


def media_archive_name(moment: datetime) -> str:
    return f"{MEDIA_ARCHIVE_PREFIX}{backup_timestamp(moment)}.tar.gz"


def check_media_name(name: str) -> str | None:
    """Return a warning when *name* does not look like a media backup."""
    if Path(name).name.startswith(MEDIA_ARCHIVE_PREFIX):
        return None
    return (
        f"The file {name!r} does not start with {MEDIA_ARCHIVE_PREFIX!r}; "
        "make sure it is a media archive and not a database dump."
    )


@dataclass(frozen=True, slots=True)
class BackupResult:
    """Names of the artefacts produced by a backup."""

    media_archive: str
    media_files: int
    checksum: str


@dataclass(slots=True)
class BackupCoordinator:
    """Run backup, listing, download and restore against the compose project."""

    compose: ComposeProvider
    workdir: Path
    clock: Callable[[], datetime] = field(default=_utc_now)

    @property
    def staging_dir(self) -> Path:
        return self.workdir / STAGING_NAME

    def backup(self, op: OperationScope | None = None) -> BackupResult:
        """Dump the database and archive the media tree into the backup volume."""
        self.compose.run_once(DB_SERVICE, "backup")
        _record(op, "database.dump")

        self._ensure_no_staging()
        self.compose.copy(f"{APP_SERVICE}:{CONTAINER_MEDIA_PATH}", ".", archive=True)
        if not self.staging_dir.is_dir():
            raise BackupError(
                f"Copying media from the {APP_SERVICE} container did not produce "
                f"{self.staging_dir}."
            )
        _record(op, "media.copy_out")

        archive_name = media_archive_name(self.clock())
        archive_path = self.workdir / archive_name
        files = create_archive(self.staging_dir, archive_path)
        checksum = compute_checksum(archive_path)
        _record(op, "media.archive", {"archive": archive_name, "files": files})

        self.compose.copy(archive_name, f"{DB_SERVICE}:{BACKUP_VOLUME_PATH}")
        _record(op, "media.upload")

        self._cleanup(archive_path)
        return BackupResult(media_archive=archive_name, media_files=files, checksum=checksum)

    def list_backups(self) -> None:
        """Print the contents of the backup volume via the database container."""
        self.compose.run_once(DB_SERVICE, "backups")

    def download(self) -> Path:
        """Copy the whole backup volume into the working directory."""
        self.compose.copy(f"{DB_SERVICE}:{BACKUP_VOLUME_PATH}", ".")
        destination = self.workdir / DOWNLOAD_NAME
        if not destination.is_dir():
            raise BackupError(f"Downloading backups did not produce {destination}.")
        return destination

    def restore(
        self,
        database_file: str,
        media_file: str | None = None,
        op: OperationScope | None = None,
    ) -> int:
        """Restore the database dump and, optionally, a media archive.

        Returns the number of media files restored.
        """
        self._ensure_no_staging()
        self.compose.run_once(DB_SERVICE, "restore", database_file)
        _record(op, "database.restore", {"file": database_file})
        if media_file is None:
            return 0

        media_name = Path(media_file).name
        self.compose.copy(f"{DB_SERVICE}:{BACKUP_VOLUME_PATH}/{media_name}", ".")
        archive_path = self.workdir / media_name
        if not archive_path.is_file():
            raise BackupError(f"Copying {media_name} from the backup volume failed.")
        _record(op, "media.download", {"file": media_name})

        files = extract_archive(archive_path, self.staging_dir)
        _record(op, "media.extract", {"files": files})

        self.compose.copy(f"./{STAGING_NAME}", f"{APP_SERVICE}:{CONTAINER_MEDIA_PARENT}")
        _record(op, "media.copy_in")

        self._cleanup(archive_path)
        return files

    def _ensure_no_staging(self) -> None:
        if self.staging_dir.exists():
            raise StagingCollisionError(
                f"A `{STAGING_NAME}` directory already exists in {self.workdir}. "
                "Please remove it and try again."
            )

    def _cleanup(self, archive_path: Path) -> None:
        try:
            shutil.rmtree(self.staging_dir)
            archive_path.unlink()
        except OSError as exc:
            raise BackupError(f"Failed to remove local staging files: {exc}") from exc


def _record(op: OperationScope | None, name: str, detail: object = None) -> None:
    if op is not None:
        op.add_step(name, detail=detail)


__all__ = [
    "BackupCoordinator",
    "BackupError",
    "BackupResult",
    "CONTAINER_MEDIA_PATH",
    "DOWNLOAD_NAME",
    "MEDIA_ARCHIVE_PREFIX",
    "STAGING_NAME",
    "StagingCollisionError",
    "backup_timestamp",
    "check_media_name",
    "media_archive_name",
]
