"""Lifecycle sequences for the compose-managed deployment."""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from .config import ReadinessConfig
from .envstore import EnvironmentStore
from .logging import OperationScope
from .providers.compose import ComposeProvider, Unit
from .providers.runner import CommandError
from .readiness import ReadinessOutcome, ReadinessPoller

APP_SERVICE = "django"
APP_UNIT = "ghostwriter_django"
DB_UNIT = "ghostwriter_postgres"
GRAPHQL_SERVICE = "graphql_engine"

SEED_COMMAND = ("/seed_data",)
SUPERUSER_COMMAND = (
    "python",
    "manage.py",
    "createsuperuser",
    "--noinput",
    "--role",
    "admin",
)
TEST_OVERRIDES: dict[str, object] = {
    "hasura_graphql_action_secret": "changeme",
    "django_settings_module": "config.settings.local",
}


@dataclass(frozen=True, slots=True)
class InstallResult:
    """Outcome of :meth:`DeploymentOrchestrator.install`."""

    username: str
    password: str
    superuser_created: bool
    advisories: tuple[str, ...] = ()


def _units_named(units: list[Unit], name: str) -> list[Unit]:
    return [unit for unit in units if unit.name == name]


def build_poller(
    compose: ComposeProvider,
    settings: ReadinessConfig,
    *,
    on_tick: Callable[[int], None] | None = None,
) -> ReadinessPoller:
    """Wire a :class:`ReadinessPoller` to the live container engine."""

    def is_running() -> bool:
        return bool(_units_named(compose.running_units(), APP_UNIT))

    def logs_for(name: str, lines: int) -> list[str]:
        collected: list[str] = []
        for unit in _units_named(compose.running_units(), name):
            collected.extend(compose.unit_logs(unit, lines))
        return collected

    return ReadinessPoller(
        is_running=is_running,
        app_logs=lambda: logs_for(APP_UNIT, settings.app_log_lines),
        db_logs=lambda: logs_for(DB_UNIT, settings.db_log_lines),
        max_attempts=settings.max_attempts,
        interval=settings.interval,
        on_tick=on_tick,
    )


@dataclass(slots=True)
class DeploymentOrchestrator:
    """Compose multi-step install/upgrade flows out of compose primitives.

    Steps run strictly in order and the first failing step raises; nothing is
    rolled back. The only tolerated failures are superuser creation (it
    already exists on re-install) and the GraphQL engine restart.
    """

    compose: ComposeProvider
    env: EnvironmentStore
    poller_factory: Callable[[], ReadinessPoller]

    def install(self, op: OperationScope | None = None) -> InstallResult:
        """Build, start, wait for readiness, seed and create the admin user."""
        advisories: list[str] = []
        self._step(op, "compose.build", self.compose.build)
        self._step(op, "compose.up", self.compose.up)
        self.wait_until_ready(op)
        self._step(op, "seed", lambda: self.compose.run_once(APP_SERVICE, *SEED_COMMAND))

        superuser_created = True
        try:
            self.compose.run_once(APP_SERVICE, *SUPERUSER_COMMAND)
        except CommandError as exc:
            superuser_created = False
            advisories.append(
                "Superuser creation failed. This is expected if `install` ran before "
                f"or the account was created manually ({exc})."
            )
            _record(op, "superuser", "warning", str(exc))
        else:
            _record(op, "superuser", "success", None)

        try:
            self.compose.restart(GRAPHQL_SERVICE)
        except CommandError as exc:
            advisories.append(f"Restarting the GraphQL engine failed: {exc}")
            _record(op, "graphql.restart", "warning", str(exc))
        else:
            _record(op, "graphql.restart", "success", None)

        return InstallResult(
            username=self.env.get_string("django_superuser_username"),
            password=self.env.get_string("django_superuser_password"),
            superuser_created=superuser_created,
            advisories=tuple(advisories),
        )

    def upgrade(self, *, skip_seed: bool = False, op: OperationScope | None = None) -> None:
        """Rebuild and restart; re-seed after readiness unless skipped."""
        self._step(op, "compose.down", self.compose.down)
        self._step(op, "compose.build", self.compose.build)
        self._step(op, "compose.up", self.compose.up)
        if skip_seed:
            _record(op, "seed", "skipped", "--skip-seed")
            return
        self.wait_until_ready(op)
        self._step(op, "seed", lambda: self.compose.run_once(APP_SERVICE, *SEED_COMMAND))

    def wait_until_ready(self, op: OperationScope | None = None) -> ReadinessOutcome:
        outcome = self.poller_factory().wait()
        _record(op, "readiness", "success", {"attempts": outcome.attempts})
        return outcome

    def build(self, op: OperationScope | None = None) -> None:
        self._step(op, "compose.build", self.compose.build)

    def up(self, op: OperationScope | None = None) -> None:
        self._step(op, "compose.up", self.compose.up)

    def down(self, *, volumes: bool = False, op: OperationScope | None = None) -> None:
        self._step(op, "compose.down", lambda: self.compose.down(volumes=volumes))

    def start(self, op: OperationScope | None = None) -> None:
        self._step(op, "compose.start", self.compose.start)

    def stop(self, op: OperationScope | None = None) -> None:
        self._step(op, "compose.stop", self.compose.stop)

    def restart(self, op: OperationScope | None = None) -> None:
        self._step(op, "compose.restart", self.compose.restart)

    def uninstall(self, op: OperationScope | None = None) -> None:
        """Remove containers, images, volumes and orphans."""
        self._step(
            op,
            "compose.down",
            lambda: self.compose.down(volumes=True, extra=("--rmi", "all", "--remove-orphans")),
        )

    def run_tests(self, op: OperationScope | None = None) -> None:
        """Run the application test suite with test-only settings applied."""
        with self.env.override(TEST_OVERRIDES):
            self._step(
                op,
                "tests",
                lambda: self.compose.run_once(APP_SERVICE, "python", "manage.py", "test"),
            )

    def manage(self, *command: str, op: OperationScope | None = None) -> None:
        """Run a Django management command in a one-off container."""
        self._step(
            op,
            f"manage.{command[0]}" if command else "manage",
            lambda: self.compose.run_once(APP_SERVICE, "python", "manage.py", *command),
        )

    def _step(self, op: OperationScope | None, name: str, action: Callable[[], object]) -> None:
        try:
            action()
        except CommandError as exc:
            _record(op, name, "error", str(exc))
            raise
        _record(op, name, "success", None)


def _record(op: OperationScope | None, name: str, status: str, detail: object) -> None:
    if op is not None:
        op.add_step(name, status=status, detail=detail)


__all__ = [
    "DeploymentOrchestrator",
    "InstallResult",
    "TEST_OVERRIDES",
    "build_poller",
]
