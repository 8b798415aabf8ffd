"""Subprocess execution seam shared by every external command gwctl runs."""
from __future__ import annotations

import shutil
import subprocess
import sys
import threading
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import IO, TextIO


class CommandError(RuntimeError):
    """Raised when an external command exits with a non-zero status."""

    def __init__(self, message: str, *, command: Sequence[str], returncode: int | None) -> None:
        super().__init__(message)
        self.command = list(command)
        self.returncode = returncode


class ExecutableNotFoundError(CommandError):
    """Raised when a required executable cannot be resolved on ``PATH``."""


def _pump(source: IO[str], sink: TextIO) -> None:
    """Copy *source* into *sink* line by line until EOF."""
    with source:
        for line in iter(source.readline, ""):
            sink.write(line)
            sink.flush()


@dataclass(slots=True)
class ProcessRunner:
    """Run commands from the installation root.

    ``run`` streams stdout and stderr to the configured sinks while the
    command executes. ``capture`` is used for introspection and returns
    stdout. Both raise :class:`CommandError` on non-zero exit; callers decide
    whether that is fatal.
    """

    cwd: Path
    stdout: TextIO | None = None
    stderr: TextIO | None = None

    def resolve(self, name: str) -> str:
        """Return the absolute path for executable *name*."""
        resolved = shutil.which(name)
        if resolved is None:
            raise ExecutableNotFoundError(
                f"{name} is not installed or not on PATH.",
                command=[name],
                returncode=None,
            )
        return resolved

    def run(self, name: str, args: Sequence[str]) -> subprocess.CompletedProcess[str]:
        """Execute *name* with *args*, streaming both output pipes."""
        command = [self.resolve(name), *args]
        display = " ".join([name, *args])
        out_sink = self.stdout or sys.stdout
        err_sink = self.stderr or sys.stderr
        try:
            process = subprocess.Popen(  # noqa: S603
                command,
                cwd=self.cwd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
            )
        except OSError as exc:
            raise CommandError(
                f"{display} could not be started: {exc}",
                command=command,
                returncode=None,
            ) from exc

        if process.stdout is None or process.stderr is None:
            process.kill()
            raise CommandError(
                f"{display} started without output pipes",
                command=command,
                returncode=None,
            )
        readers = [
            threading.Thread(target=_pump, args=(process.stdout, out_sink), daemon=True),
            threading.Thread(target=_pump, args=(process.stderr, err_sink), daemon=True),
        ]
        for reader in readers:
            reader.start()
        returncode = process.wait()
        for reader in readers:
            reader.join()

        if returncode != 0:
            raise CommandError(
                f"{display} failed (exit {returncode})",
                command=command,
                returncode=returncode,
            )
        return subprocess.CompletedProcess(command, returncode)

    def capture(
        self,
        name: str,
        args: Sequence[str],
        *,
        merge_stderr: bool = False,
    ) -> str:
        """Execute *name* with *args* and return its standard output."""
        command = [self.resolve(name), *args]
        display = " ".join([name, *args])
        try:
            result = subprocess.run(  # noqa: S603
                command,
                cwd=self.cwd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT if merge_stderr else subprocess.PIPE,
                encoding="utf-8",
                errors="replace",
                check=False,
            )
        except OSError as exc:
            raise CommandError(
                f"{display} could not be started: {exc}",
                command=command,
                returncode=None,
            ) from exc
        if result.returncode != 0:
            stdout = result.stdout or ""
            stderr = result.stderr or ""
            message = stderr.strip() or stdout.strip() or "no output"
            raise CommandError(
                f"{display} failed (exit {result.returncode}): {message}",
                command=command,
                returncode=result.returncode,
            )
        return result.stdout or ""


__all__ = ["CommandError", "ExecutableNotFoundError", "ProcessRunner"]
