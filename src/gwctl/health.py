"""Two-stage health reporting: containers first, then the status endpoint."""
from __future__ import annotations

import warnings
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum

import requests
from urllib3.exceptions import InsecureRequestWarning

from .profiles import ModeProfile, image_label
from .providers.compose import Unit

HEALTHY_VALUE = "working"


class HealthCheckError(RuntimeError):
    """Raised when the status endpoint cannot be queried or parsed."""


class IssueKind(str, Enum):
    """Which layer reported a problem."""

    CONTAINER = "Container"
    SERVICE = "Service"


class HealthStage(str, Enum):
    """How far the health check got."""

    CONTAINERS = "containers"
    SERVICES = "services"


@dataclass(frozen=True, slots=True)
class HealthIssue:
    """One problem reported by a health check."""

    kind: IssueKind
    subject: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"type": self.kind.value, "service": self.subject, "message": self.message}


@dataclass(frozen=True, slots=True)
class HealthReport:
    """Outcome of :meth:`HealthReporter.check`."""

    stage: HealthStage
    issues: tuple[HealthIssue, ...]

    @property
    def healthy(self) -> bool:
        return not self.issues


def _sorted(issues: Sequence[HealthIssue]) -> tuple[HealthIssue, ...]:
    return tuple(sorted(issues, key=lambda issue: issue.subject))


@dataclass(slots=True)
class HealthReporter:
    """Check that every expected container runs and every service reports healthy."""

    list_units: Callable[[], Sequence[Unit]]
    profile: ModeProfile
    session: requests.Session = field(default_factory=requests.Session)
    timeout: float = 2.0

    def container_issues(self) -> tuple[HealthIssue, ...]:
        """Compare running images against the images required by the profile."""
        units = list(self.list_units())
        if not units:
            return (
                HealthIssue(IssueKind.CONTAINER, "ALL", "No Ghostwriter containers are running"),
            )
        running = {unit.image for unit in units}
        issues = [
            HealthIssue(IssueKind.CONTAINER, image_label(image), "Container is not running")
            for image in self.profile.images
            if image not in running
        ]
        return _sorted(issues)

    def service_issues(self) -> tuple[HealthIssue, ...]:
        """Query the status endpoint and report every service not ``working``."""
        payload = self._fetch_status()
        issues = [
            HealthIssue(IssueKind.SERVICE, str(name), str(value))
            for name, value in payload.items()
            if value != HEALTHY_VALUE
        ]
        return _sorted(issues)

    def check(self) -> HealthReport:
        """Run the container stage and, when it is clean, the service stage."""
        issues = self.container_issues()
        if issues:
            return HealthReport(stage=HealthStage.CONTAINERS, issues=issues)
        return HealthReport(stage=HealthStage.SERVICES, issues=self.service_issues())

    def _fetch_status(self) -> dict[str, object]:
        url = self.profile.status_url
        try:
            # The reverse proxy serves a self-signed certificate.
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", InsecureRequestWarning)
                response = self.session.get(
                    url,
                    headers={"Accept": "application/json"},
                    timeout=self.timeout,
                    verify=False,  # noqa: S501
                )
        except requests.exceptions.RequestException as exc:
            raise HealthCheckError(f"Could not reach {url}: {exc}") from exc
        with response:
            if response.status_code != 200:
                raise HealthCheckError(
                    "Non-OK HTTP status suggests an issue with the Django or Nginx "
                    f"services (Code {response.status_code})"
                )
            try:
                payload = response.json()
            except ValueError as exc:
                raise HealthCheckError(f"{url} did not return JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise HealthCheckError(f"{url} returned an unexpected payload: {payload!r}")
        return payload


__all__ = [
    "HealthCheckError",
    "HealthIssue",
    "HealthReport",
    "HealthReporter",
    "HealthStage",
    "IssueKind",
]
