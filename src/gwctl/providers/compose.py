"""Compose provider translating lifecycle actions into compose/engine commands."""
from __future__ import annotations

import json
import subprocess
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace

from .runner import CommandError, ProcessRunner


class ComposeError(RuntimeError):
    """Raised when the container engine returns data we cannot use."""


class ComposeUnavailableError(ComposeError):
    """Raised when the engine or compose tool is missing or not running."""


@dataclass(frozen=True, slots=True)
class Unit:
    """Snapshot of one running container."""

    id: str
    image: str
    status: str
    ports: str
    name: str

    @classmethod
    def from_ps_record(cls, record: dict[str, object]) -> Unit:
        """Build a unit from one ``docker ps --format '{{json .}}'`` line."""
        labels = _parse_labels(str(record.get("Labels") or ""))
        return cls(
            id=str(record.get("ID") or ""),
            image=str(record.get("Image") or ""),
            status=str(record.get("Status") or ""),
            ports=str(record.get("Ports") or ""),
            name=labels.get("name", ""),
        )


def _parse_labels(raw: str) -> dict[str, str]:
    labels: dict[str, str] = {}
    for item in raw.split(","):
        key, sep, value = item.partition("=")
        if sep:
            labels[key.strip()] = value.strip()
    return labels


@dataclass(slots=True)
class ComposeProvider:
    """Drive ``docker compose`` (or legacy ``docker-compose``) for one descriptor."""

    runner: ProcessRunner
    descriptor: str
    docker_bin: str = "docker"
    legacy_bin: str = "docker-compose"
    _command: tuple[str, tuple[str, ...]] | None = field(default=None, repr=False)

    def with_descriptor(self, descriptor: str) -> ComposeProvider:
        """Return a provider bound to another descriptor file."""
        return replace(self, descriptor=descriptor, _command=None)

    def detect(self) -> tuple[str, tuple[str, ...]]:
        """Return the executable and argument prefix used for compose calls.

        Prefers the engine's ``compose`` plugin and falls back to the legacy
        standalone binary.
        """
        if self._command is not None:
            return self._command
        self.runner.resolve(self.docker_bin)
        try:
            self.runner.capture(self.docker_bin, ["info"])
        except CommandError as exc:
            raise ComposeUnavailableError(
                "The container engine is installed but not running. Start it and try again."
            ) from exc
        try:
            self.runner.capture(self.docker_bin, ["compose", "version"])
            command: tuple[str, tuple[str, ...]] = (self.docker_bin, ("compose",))
        except CommandError:
            try:
                self.runner.resolve(self.legacy_bin)
            except CommandError as exc:
                raise ComposeUnavailableError(
                    f"Neither `{self.docker_bin} compose` nor `{self.legacy_bin}` is available."
                ) from exc
            command = (self.legacy_bin, ())
        descriptor_path = self.runner.cwd / self.descriptor
        if not descriptor_path.exists():
            raise ComposeUnavailableError(
                f"Compose file {descriptor_path} not found. "
                "Run gwctl from the Ghostwriter installation directory "
                "or set GWCTL_INSTALL_ROOT to it."
            )
        self._command = command
        return command

    def compose(self, *args: str) -> subprocess.CompletedProcess[str]:
        """Run a compose sub-command against the bound descriptor."""
        executable, prefix = self.detect()
        return self.runner.run(executable, [*prefix, "-f", self.descriptor, *args])

    def build(self) -> subprocess.CompletedProcess[str]:
        return self.compose("build")

    def up(self) -> subprocess.CompletedProcess[str]:
        return self.compose("up", "-d")

    def down(
        self,
        *,
        volumes: bool = False,
        extra: Sequence[str] = (),
    ) -> subprocess.CompletedProcess[str]:
        args = ["down", *extra]
        if volumes:
            args.append("--volumes")
        return self.compose(*args)

    def start(self, *services: str) -> subprocess.CompletedProcess[str]:
        return self.compose("start", *services)

    def stop(self, *services: str) -> subprocess.CompletedProcess[str]:
        return self.compose("stop", *services)

    def restart(self, *services: str) -> subprocess.CompletedProcess[str]:
        return self.compose("restart", *services)

    def run_once(self, service: str, *command: str) -> subprocess.CompletedProcess[str]:
        """Run *command* in a throwaway container for *service*."""
        return self.compose("run", "--rm", service, *command)

    def copy(
        self,
        source: str,
        destination: str,
        *,
        archive: bool = False,
    ) -> subprocess.CompletedProcess[str]:
        """Copy files between the host and a service container."""
        args = ["cp"]
        if archive:
            args.append("--archive")
        return self.compose(*args, source, destination)

    def running_units(self, images: Iterable[str] | None = None) -> list[Unit]:
        """Return running containers, optionally limited to *images*."""
        output = self.runner.capture(self.docker_bin, ["ps", "--format", "{{json .}}"])
        wanted = set(images) if images is not None else None
        units: list[Unit] = []
        for line in output.splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as exc:
                raise ComposeError(f"Unexpected `docker ps` output: {line!r}") from exc
            if not isinstance(record, dict):
                raise ComposeError(f"Unexpected `docker ps` output: {line!r}")
            unit = Unit.from_ps_record(record)
            if wanted is None or unit.image in wanted:
                units.append(unit)
        return units

    def unit_logs(self, unit: Unit, lines: int) -> list[str]:
        """Return the last *lines* log lines for *unit* (stdout and stderr)."""
        output = self.runner.capture(
            self.docker_bin,
            ["logs", "--tail", str(lines), unit.id],
            merge_stderr=True,
        )
        return output.splitlines()

    def find_units(self, name: str, units: Sequence[Unit]) -> list[Unit]:
        """Select units matching *name*, ``ghostwriter_<name>`` or ``all``."""
        if name == "all":
            return list(units)
        return [unit for unit in units if unit.name in (name, f"ghostwriter_{name}")]


__all__ = ["ComposeError", "ComposeProvider", "ComposeUnavailableError", "Unit"]
