"""Tests for the two-stage health reporter."""
from __future__ import annotations

from typing import Any

import pytest
import requests

from gwctl.health import HealthCheckError, HealthReporter, HealthStage, IssueKind
from gwctl.profiles import DeploymentMode, ModeProfile
from gwctl.providers.compose import Unit

PROFILE = ModeProfile(
    mode=DeploymentMode.PRODUCTION,
    descriptor="production.yml",
    images=("gw_prod_a", "gw_prod_b", "gw_prod_c"),
    status_url="https://localhost:443/status/",
)


class FakeResponse:
    def __init__(self, status_code: int, payload: Any = None, *, invalid_json: bool = False) -> None:
        self.status_code = status_code
        self._payload = payload
        self._invalid_json = invalid_json
        self.closed = False

    def json(self) -> Any:
        if self._invalid_json:
            raise ValueError("Expecting value")
        return self._payload

    def __enter__(self) -> FakeResponse:
        return self

    def __exit__(self, *exc: object) -> None:
        self.closed = True


class FakeSession:
    def __init__(self, response: FakeResponse | Exception) -> None:
        self.response = response
        self.requests: list[tuple[str, dict[str, Any]]] = []

    def get(self, url: str, **kwargs: Any) -> FakeResponse:
        self.requests.append((url, kwargs))
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


def _unit(image: str) -> Unit:
    return Unit(id=image, image=image, status="Up", ports="", name=image)


def _reporter(images: list[str], response: FakeResponse | Exception | None = None) -> HealthReporter:
    session = FakeSession(response or FakeResponse(200, {}))
    return HealthReporter(
        list_units=lambda: [_unit(image) for image in images],
        profile=PROFILE,
        session=session,  # type: ignore[arg-type]
    )


def test_missing_container_is_reported_by_label() -> None:
    """Running {A, C} against expected {A, B, C} reports exactly B."""
    reporter = _reporter(["gw_prod_a", "gw_prod_c"])

    report = reporter.check()

    assert report.stage is HealthStage.CONTAINERS
    assert not report.healthy
    (issue,) = report.issues
    assert issue.kind is IssueKind.CONTAINER
    assert issue.subject == "B"
    assert issue.message == "Container is not running"
    assert reporter.session.requests == []  # type: ignore[attr-defined]


def test_no_containers_reports_all() -> None:
    (issue,) = _reporter([]).container_issues()

    assert issue.subject == "ALL"
    assert issue.to_dict() == {
        "type": "Container",
        "service": "ALL",
        "message": "No Ghostwriter containers are running",
    }


def test_service_stage_reports_unhealthy_services_sorted() -> None:
    response = FakeResponse(
        200,
        {"Redis": "working", "Queue": "unavailable", "Database": "timeout"},
    )
    reporter = _reporter(["gw_prod_a", "gw_prod_b", "gw_prod_c"], response)

    report = reporter.check()

    assert report.stage is HealthStage.SERVICES
    assert [(issue.subject, issue.message) for issue in report.issues] == [
        ("Database", "timeout"),
        ("Queue", "unavailable"),
    ]
    assert all(issue.kind is IssueKind.SERVICE for issue in report.issues)
    assert response.closed


def test_healthy_deployment() -> None:
    response = FakeResponse(200, {"Redis": "working", "Database": "working"})
    reporter = _reporter(["gw_prod_a", "gw_prod_b", "gw_prod_c", "unrelated"], response)

    report = reporter.check()

    assert report.healthy
    url, kwargs = reporter.session.requests[0]  # type: ignore[attr-defined]
    assert url == "https://localhost:443/status/"
    assert kwargs["headers"] == {"Accept": "application/json"}
    assert kwargs["verify"] is False
    assert kwargs["timeout"] == 2.0


def test_non_ok_status_is_an_error() -> None:
    reporter = _reporter(["gw_prod_a", "gw_prod_b", "gw_prod_c"], FakeResponse(502))

    with pytest.raises(HealthCheckError, match=r"Django or Nginx services \(Code 502\)"):
        reporter.check()


@pytest.mark.parametrize(
    "response",
    [
        FakeResponse(200, invalid_json=True),
        FakeResponse(200, ["working"]),
        requests.exceptions.ConnectionError("refused"),
    ],
)
def test_unusable_status_endpoint(response: FakeResponse | Exception) -> None:
    reporter = _reporter(["gw_prod_a", "gw_prod_b", "gw_prod_c"], response)

    with pytest.raises(HealthCheckError):
        reporter.service_issues()
