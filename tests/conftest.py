"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import os
import subprocess
from collections.abc import Callable, Sequence
from pathlib import Path

import pytest

from gwctl.providers.compose import ComposeProvider
from gwctl.providers.runner import CommandError, ExecutableNotFoundError


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip expensive tests during mutation runs."""
    if not os.environ.get("MUTANT_UNDER_TEST"):
        return
    skip_marker = pytest.mark.skip(reason="Skipped during mutation run to avoid timeouts.")
    for item in items:
        if "mutation_timeout" in item.keywords:
            item.add_marker(skip_marker)


def _contains(call: Sequence[str], fragment: Sequence[str]) -> bool:
    size = len(fragment)
    return any(tuple(call[i : i + size]) == tuple(fragment) for i in range(len(call) - size + 1))


class FakeRunner:
    """In-memory stand-in for :class:`gwctl.providers.runner.ProcessRunner`.

    ``outputs`` maps full capture calls to their stdout, ``failures`` maps a
    contiguous fragment of a call to the exit code it should fail with, and
    ``on_run`` lets a test simulate side effects of streamed commands.
    """

    def __init__(self, cwd: Path) -> None:
        self.cwd = cwd
        self.calls: list[tuple[str, ...]] = []
        self.outputs: dict[tuple[str, ...], str | Callable[[], str]] = {}
        self.failures: dict[tuple[str, ...], int] = {}
        self.missing: set[str] = set()
        self.on_run: Callable[[tuple[str, ...]], None] | None = None

    def resolve(self, name: str) -> str:
        if name in self.missing:
            raise ExecutableNotFoundError(f"{name} missing", command=[name], returncode=None)
        return f"/usr/bin/{name}"

    def run(self, name: str, args: Sequence[str]) -> subprocess.CompletedProcess[str]:
        call = (name, *args)
        self.resolve(name)
        self.calls.append(call)
        self._maybe_fail(call)
        if self.on_run is not None:
            self.on_run(call)
        return subprocess.CompletedProcess(list(call), 0)

    def capture(self, name: str, args: Sequence[str], *, merge_stderr: bool = False) -> str:
        call = (name, *args)
        self.resolve(name)
        self.calls.append(call)
        self._maybe_fail(call)
        output = self.outputs.get(call, "")
        return output() if callable(output) else output

    def compose_calls(self) -> list[tuple[str, ...]]:
        """Return streamed compose calls without the ``docker compose -f x`` prefix."""
        trimmed = []
        for call in self.calls:
            if "-f" in call:
                trimmed.append(call[call.index("-f") + 2 :])
        return trimmed

    def _maybe_fail(self, call: tuple[str, ...]) -> None:
        for fragment, returncode in self.failures.items():
            if _contains(call, fragment):
                raise CommandError(
                    f"{' '.join(call)} failed (exit {returncode})",
                    command=list(call),
                    returncode=returncode,
                )


@pytest.fixture
def install_root(tmp_path: Path) -> Path:
    """Return an installation directory holding both compose descriptors."""
    root = tmp_path / "ghostwriter"
    root.mkdir()
    (root / "production.yml").write_text("services: {}\n", encoding="utf-8")
    (root / "local.yml").write_text("services: {}\n", encoding="utf-8")
    return root


@pytest.fixture
def fake_runner(install_root: Path) -> FakeRunner:
    """Return a fake runner rooted at the installation directory."""
    return FakeRunner(install_root)


@pytest.fixture
def compose(fake_runner: FakeRunner) -> ComposeProvider:
    """Return a compose provider for the production descriptor."""
    return ComposeProvider(runner=fake_runner, descriptor="production.yml")  # type: ignore[arg-type]
