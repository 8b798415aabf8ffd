"""Tests for the install/upgrade sequences."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from gwctl.config import ReadinessConfig
from gwctl.deploy import SUPERUSER_COMMAND, DeploymentOrchestrator, build_poller
from gwctl.envstore import EnvironmentStore
from gwctl.logging import StructuredLogger
from gwctl.providers.compose import ComposeProvider
from gwctl.providers.runner import CommandError
from gwctl.readiness import ReadinessError, ReadinessPoller, ReadinessState

SEED = ("run", "--rm", "django", "/seed_data")
SUPERUSER = ("run", "--rm", "django", *SUPERUSER_COMMAND)


def _ready_poller() -> ReadinessPoller:
    return ReadinessPoller(
        is_running=lambda: True,
        app_logs=lambda: ["Application startup complete."],
        db_logs=lambda: [],
        sleep=lambda _seconds: None,
    )


def _crashed_poller() -> ReadinessPoller:
    return ReadinessPoller(
        is_running=lambda: False,
        app_logs=lambda: [],
        db_logs=lambda: [],
        sleep=lambda _seconds: None,
    )


@pytest.fixture
def env(install_root: Path) -> EnvironmentStore:
    return EnvironmentStore.load(
        install_root / ".env",
        defaults={
            "django_superuser_username": "admin",
            "django_superuser_password": "s3cret",
            "django_settings_module": "config.settings.production",
        },
    )


@pytest.fixture
def orchestrator(compose: ComposeProvider, env: EnvironmentStore) -> DeploymentOrchestrator:
    return DeploymentOrchestrator(compose=compose, env=env, poller_factory=_ready_poller)


def test_install_runs_steps_in_order(fake_runner, orchestrator: DeploymentOrchestrator) -> None:
    """Install builds, starts, waits, seeds, creates the admin and restarts GraphQL."""
    result = orchestrator.install()

    assert fake_runner.compose_calls() == [
        ("build",),
        ("up", "-d"),
        SEED,
        SUPERUSER,
        ("restart", "graphql_engine"),
    ]
    assert result.username == "admin"
    assert result.password == "s3cret"
    assert result.superuser_created is True
    assert result.advisories == ()


def test_install_tolerates_existing_superuser(fake_runner, orchestrator: DeploymentOrchestrator) -> None:
    """A failing superuser creation becomes an advisory, not an error."""
    fake_runner.failures[("createsuperuser",)] = 1

    result = orchestrator.install()

    assert result.superuser_created is False
    assert "Superuser creation failed" in result.advisories[0]
    assert fake_runner.compose_calls()[-1] == ("restart", "graphql_engine")


def test_install_tolerates_graphql_restart_failure(fake_runner, orchestrator: DeploymentOrchestrator) -> None:
    fake_runner.failures[("restart", "graphql_engine")] = 1

    result = orchestrator.install()

    assert result.superuser_created is True
    assert "GraphQL" in result.advisories[0]


def test_install_stops_at_first_failing_step(fake_runner, orchestrator: DeploymentOrchestrator) -> None:
    """Nothing runs after a failed build."""
    fake_runner.failures[("build",)] = 2

    with pytest.raises(CommandError):
        orchestrator.install()

    assert fake_runner.compose_calls() == [("build",)]


def test_install_aborts_when_application_crashes(
    fake_runner, compose: ComposeProvider, env: EnvironmentStore
) -> None:
    orchestrator = DeploymentOrchestrator(compose=compose, env=env, poller_factory=_crashed_poller)

    with pytest.raises(ReadinessError) as excinfo:
        orchestrator.install()

    assert excinfo.value.state is ReadinessState.CRASHED
    assert fake_runner.compose_calls() == [("build",), ("up", "-d")]


def test_upgrade_reseeds_after_readiness(fake_runner, orchestrator: DeploymentOrchestrator) -> None:
    orchestrator.upgrade()

    assert fake_runner.compose_calls() == [("down",), ("build",), ("up", "-d"), SEED]


def test_upgrade_can_skip_seeding(fake_runner, orchestrator: DeploymentOrchestrator) -> None:
    orchestrator.upgrade(skip_seed=True)

    assert fake_runner.compose_calls() == [("down",), ("build",), ("up", "-d")]


def test_uninstall_removes_everything(fake_runner, orchestrator: DeploymentOrchestrator) -> None:
    orchestrator.uninstall()

    assert fake_runner.compose_calls() == [
        ("down", "--rmi", "all", "--remove-orphans", "--volumes"),
    ]


def test_run_tests_restores_settings(
    fake_runner, orchestrator: DeploymentOrchestrator, env: EnvironmentStore
) -> None:
    """Test-only settings are visible while the suite runs, then reverted."""
    seen: dict[str, object] = {}

    def capture_env(call: tuple[str, ...]) -> None:
        seen["module"] = EnvironmentStore.load(env.path, defaults={}).get("django_settings_module")

    fake_runner.on_run = capture_env

    orchestrator.run_tests()

    assert seen["module"] == "config.settings.local"
    assert env.get("django_settings_module") == "config.settings.production"
    assert env.get("hasura_graphql_action_secret") is None
    assert fake_runner.compose_calls() == [("run", "--rm", "django", "python", "manage.py", "test")]


def test_run_tests_restores_settings_on_failure(
    fake_runner, orchestrator: DeploymentOrchestrator, env: EnvironmentStore
) -> None:
    fake_runner.failures[("manage.py", "test")] = 1

    with pytest.raises(CommandError):
        orchestrator.run_tests()

    assert env.get("django_settings_module") == "config.settings.production"


def test_steps_are_recorded(tmp_path: Path, fake_runner, orchestrator: DeploymentOrchestrator) -> None:
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("upgrade") as op:
        orchestrator.upgrade(skip_seed=True, op=op)

    line = (tmp_path / "logs" / "operations.jsonl").read_text(encoding="utf-8").splitlines()[0]
    steps = json.loads(line)["steps"]
    assert [step["name"] for step in steps] == [
        "compose.down",
        "compose.build",
        "compose.up",
        "seed",
    ]
    assert steps[-1]["status"] == "skipped"


def test_build_poller_reads_live_units(fake_runner, compose: ComposeProvider) -> None:
    """The live poller checks the application unit and tails its logs."""
    ps_record = {
        "ID": "app1",
        "Image": "ghostwriter_production_django",
        "Status": "Up",
        "Ports": "",
        "Labels": "name=ghostwriter_django",
    }
    fake_runner.outputs[("docker", "ps", "--format", "{{json .}}")] = json.dumps(ps_record)
    fake_runner.outputs[("docker", "logs", "--tail", "500", "app1")] = (
        "INFO: Application startup complete.\n"
    )

    poller = build_poller(compose, ReadinessConfig(app_log_lines=500, db_log_lines=100))

    assert poller.wait().state is ReadinessState.READY
