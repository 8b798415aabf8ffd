"""Startup readiness poller for the application server.

The poller watches two log streams: the application's own logs for the
line announcing a completed startup, and the database's logs for the
authentication failure that means the stored credentials no longer match the
initialised volume. Each iteration runs the checks in a fixed order, so a
crash always wins over a stale success line and success always wins over a
failure seen in the same iteration.
"""
from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum

SUCCESS_MARKER = "Application startup complete"
FAILURE_MARKER = "Password does not match for user"
DATABASE_FAQ_URL = (
    "https://www.ghostwriter.wiki/getting-help/faq"
    "#ghostwriter-cli-reports-an-issue-with-postgresql"
)


class ReadinessState(str, Enum):
    """States of the readiness state machine."""

    WAITING = "waiting"
    READY = "ready"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CRASHED = "crashed"

    @property
    def terminal(self) -> bool:
        return self is not ReadinessState.WAITING


class ReadinessError(RuntimeError):
    """Raised when the application does not become ready."""

    def __init__(self, message: str, *, state: ReadinessState, remediation: str | None = None):
        super().__init__(message)
        self.state = state
        self.remediation = remediation


@dataclass(frozen=True, slots=True)
class ReadinessOutcome:
    """Result of a successful wait."""

    state: ReadinessState
    attempts: int


def _contains(lines: Sequence[str], marker: str) -> bool:
    return any(marker in line for line in lines)


@dataclass(slots=True)
class ReadinessPoller:
    """Poll until the application reports ready, fails, crashes or times out.

    All external effects are injected: ``is_running`` reports whether the
    application unit is still up, ``app_logs`` and ``db_logs`` return recent
    log lines, ``sleep`` waits between iterations and ``on_tick`` receives the
    iteration counter for progress output.
    """

    is_running: Callable[[], bool]
    app_logs: Callable[[], Sequence[str]]
    db_logs: Callable[[], Sequence[str]]
    max_attempts: int = 120
    interval: float = 1.0
    success_marker: str = SUCCESS_MARKER
    failure_marker: str = FAILURE_MARKER
    sleep: Callable[[float], None] = time.sleep
    on_tick: Callable[[int], None] | None = None

    def step(self, counter: int) -> ReadinessState:
        """Evaluate one iteration without sleeping."""
        if not self.is_running():
            return ReadinessState.CRASHED
        if _contains(self.app_logs(), self.success_marker):
            return ReadinessState.READY
        if _contains(self.db_logs(), self.failure_marker):
            return ReadinessState.FAILED
        if counter > self.max_attempts:
            return ReadinessState.TIMED_OUT
        return ReadinessState.WAITING

    def wait(self) -> ReadinessOutcome:
        """Block until a terminal state; raise unless the state is ``READY``."""
        counter = 0
        while True:
            state = self.step(counter)
            if state is ReadinessState.READY:
                return ReadinessOutcome(state=state, attempts=counter + 1)
            if state.terminal:
                raise self._error_for(state)
            if self.on_tick is not None:
                self.on_tick(counter)
            self.sleep(self.interval)
            counter += 1

    def _error_for(self, state: ReadinessState) -> ReadinessError:
        if state is ReadinessState.CRASHED:
            return ReadinessError(
                "The application container exited unexpectedly. "
                "Check the logs for the ghostwriter_django container.",
                state=state,
            )
        if state is ReadinessState.FAILED:
            return ReadinessError(
                "PostgreSQL rejected the configured password. The database volume "
                "was probably initialised with different credentials.",
                state=state,
                remediation=DATABASE_FAQ_URL,
            )
        seconds = int(self.max_attempts * self.interval)
        return ReadinessError(
            f"The application did not start after {seconds} seconds.",
            state=state,
        )


__all__ = [
    "DATABASE_FAQ_URL",
    "FAILURE_MARKER",
    "ReadinessError",
    "ReadinessOutcome",
    "ReadinessPoller",
    "ReadinessState",
    "SUCCESS_MARKER",
]
