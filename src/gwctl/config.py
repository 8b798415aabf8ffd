"""Settings for gwctl itself.

These are not the deployment's ``.env`` values (see :mod:`gwctl.envstore`);
they tell gwctl where the installation lives, which compose descriptors and
binaries to use, and how long to wait for things. Later layers win:

1. built-in defaults;
2. the YAML file at ``/etc/gwctl/config.yml``, ``GWCTL_CONFIG_FILE`` or
   ``--config-file``;
3. ``GWCTL_*`` environment variables, where ``__`` separates section and key::

       export GWCTL_INSTALL_ROOT=/opt/ghostwriter
       export GWCTL_READINESS__MAX_ATTEMPTS=300

4. overrides passed by the caller.

Environment values are read as YAML scalars. The result is a tree of frozen
dataclasses rooted at :class:`AppConfig`.
"""
from __future__ import annotations

import copy
import os
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from pathlib import Path

import yaml

ENV_PREFIX = "GWCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class ComposeConfig:
    """Binaries and descriptor files used to drive the compose tool."""

    docker_bin: str = "docker"
    legacy_bin: str = "docker-compose"
    production_file: str = "production.yml"
    development_file: str = "local.yml"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "docker_bin": self.docker_bin,
            "legacy_bin": self.legacy_bin,
            "production_file": self.production_file,
            "development_file": self.development_file,
        }


@dataclass(frozen=True)
class ReadinessConfig:
    """Polling limits used while waiting for the application server."""

    max_attempts: int = 120
    interval: float = 1.0
    app_log_lines: int = 500
    db_log_lines: int = 100

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "max_attempts": self.max_attempts,
            "interval": self.interval,
            "app_log_lines": self.app_log_lines,
            "db_log_lines": self.db_log_lines,
        }


@dataclass(frozen=True)
class HTTPConfig:
    """Timeouts (seconds) for outbound HTTP requests."""

    status_timeout: float = 2.0
    release_timeout: float = 10.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "status_timeout": self.status_timeout,
            "release_timeout": self.release_timeout,
        }


@dataclass(frozen=True)
class ReleasesConfig:
    """Where release metadata is published."""

    api_url: str = "https://api.github.com"
    owner: str = "GhostManager"
    repository: str = "Ghostwriter"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "api_url": self.api_url,
            "owner": self.owner,
            "repository": self.repository,
        }


@dataclass(frozen=True)
class TLSConfig:
    """Self-signed certificate generation settings."""

    ssl_dir: str = "ssl"
    dh_key_size: int = 2048
    validity_days: int = 365

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "ssl_dir": self.ssl_dir,
            "dh_key_size": self.dh_key_size,
            "validity_days": self.validity_days,
        }


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration for the CLI."""

    config_file: Path
    install_root: Path
    env_file: Path
    logs_dir: Path
    compose: ComposeConfig
    readiness: ReadinessConfig
    http: HTTPConfig
    releases: ReleasesConfig
    tls: TLSConfig

    @property
    def ssl_dir(self) -> Path:
        """Directory holding the reverse proxy's TLS material."""
        return self.install_root / self.tls.ssl_dir

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "config_file": str(self.config_file),
            "install_root": str(self.install_root),
            "env_file": str(self.env_file),
            "logs_dir": str(self.logs_dir),
            "compose": self.compose.to_dict(),
            "readiness": self.readiness.to_dict(),
            "http": self.http.to_dict(),
            "releases": self.releases.to_dict(),
            "tls": self.tls.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/gwctl/config.yml",
    "install_root": ".",
    "env_file": ".env",
    "logs_dir": "/var/log/gwctl",
    "compose": ComposeConfig().to_dict(),
    "readiness": ReadinessConfig().to_dict(),
    "http": HTTPConfig().to_dict(),
    "releases": ReleasesConfig().to_dict(),
    "tls": TLSConfig().to_dict(),
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS)
ALLOWED_SECTION_KEYS: dict[str, set[str]] = {
    section: set(section_defaults) for section, section_defaults in (
        ("compose", ComposeConfig().to_dict()),
        ("readiness", ReadinessConfig().to_dict()),
        ("http", HTTPConfig().to_dict()),
        ("releases", ReleasesConfig().to_dict()),
        ("tls", TLSConfig().to_dict()),
    )
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Merge defaults, the YAML file, ``GWCTL_*`` variables and *overrides*."""
    environ = dict(os.environ) if env is None else dict(env)
    path = _config_path(config_file, environ)

    merged: dict[str, object] = copy.deepcopy(DEFAULTS)
    for layer in (_read_yaml(path), _build_env_overrides(environ), dict(overrides or {})):
        _deep_merge(merged, layer)
    merged["config_file"] = str(path)

    _validate_structure(merged)
    return _build_app_config(merged)


def _config_path(explicit: str | os.PathLike[str] | None, env: Mapping[str, str]) -> Path:
    chosen = explicit or env.get(CONFIG_ENV_VAR) or DEFAULTS["config_file"]
    return Path(chosen)  # type: ignore[arg-type]


def _read_yaml(path: Path) -> dict[str, object]:
    if not path.is_file():
        return {}
    try:
        document = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Could not parse {path}: {exc}") from exc
    if document is None:
        return {}
    if not isinstance(document, Mapping):
        raise ConfigError(f"{path} must hold a YAML mapping at the top level.")
    return _as_dict(document, str(path))


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        raise ConfigError(f"Unknown configuration keys: {', '.join(sorted(unknown_keys))}.")
    for section, allowed in ALLOWED_SECTION_KEYS.items():
        extra = set(_as_dict(raw.get(section), section)) - allowed
        if extra:
            raise ConfigError(
                f"Unknown {section} configuration keys: {', '.join(sorted(extra))}."
            )


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    config_file = _to_path(raw.get("config_file"))
    install_root = _to_path(raw.get("install_root")).resolve()
    env_file = install_root / _to_path(raw.get("env_file"))
    logs_dir = _to_path(raw.get("logs_dir"))

    compose_mapping = _as_dict(raw.get("compose"), "compose")
    compose = ComposeConfig(
        docker_bin=_expect_str(compose_mapping["docker_bin"], "compose.docker_bin"),
        legacy_bin=_expect_str(compose_mapping["legacy_bin"], "compose.legacy_bin"),
        production_file=_expect_str(
            compose_mapping["production_file"], "compose.production_file"
        ),
        development_file=_expect_str(
            compose_mapping["development_file"], "compose.development_file"
        ),
    )

    readiness_mapping = _as_dict(raw.get("readiness"), "readiness")
    defaults = ReadinessConfig()
    readiness = ReadinessConfig(
        max_attempts=_positive_int(
            readiness_mapping.get("max_attempts"),
            "readiness.max_attempts",
            default=defaults.max_attempts,
        ),
        interval=_positive_float(
            readiness_mapping.get("interval"), "readiness.interval", default=defaults.interval
        ),
        app_log_lines=_positive_int(
            readiness_mapping.get("app_log_lines"),
            "readiness.app_log_lines",
            default=defaults.app_log_lines,
        ),
        db_log_lines=_positive_int(
            readiness_mapping.get("db_log_lines"),
            "readiness.db_log_lines",
            default=defaults.db_log_lines,
        ),
    )

    http_mapping = _as_dict(raw.get("http"), "http")
    http = HTTPConfig(
        status_timeout=_positive_float(
            http_mapping.get("status_timeout"), "http.status_timeout", default=2.0
        ),
        release_timeout=_positive_float(
            http_mapping.get("release_timeout"), "http.release_timeout", default=10.0
        ),
    )

    releases_mapping = _as_dict(raw.get("releases"), "releases")
    releases = ReleasesConfig(
        api_url=_expect_str(releases_mapping["api_url"], "releases.api_url").rstrip("/"),
        owner=_expect_str(releases_mapping["owner"], "releases.owner"),
        repository=_expect_str(releases_mapping["repository"], "releases.repository"),
    )

    tls_mapping = _as_dict(raw.get("tls"), "tls")
    tls = TLSConfig(
        ssl_dir=_expect_str(tls_mapping["ssl_dir"], "tls.ssl_dir"),
        dh_key_size=_positive_int(
            tls_mapping.get("dh_key_size"), "tls.dh_key_size", default=2048
        ),
        validity_days=_positive_int(
            tls_mapping.get("validity_days"), "tls.validity_days", default=365
        ),
    )

    return AppConfig(
        config_file=config_file,
        install_root=install_root,
        env_file=env_file,
        logs_dir=logs_dir,
        compose=compose,
        readiness=readiness,
        http=http,
        releases=releases,
        tls=tls,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    """Turn ``GWCTL_SECTION__KEY=value`` variables into a nested mapping."""
    overrides: dict[str, object] = {}
    for name, raw in env.items():
        if name == CONFIG_ENV_VAR or not name.startswith(ENV_PREFIX):
            continue
        path = [part.lower() for part in name.removeprefix(ENV_PREFIX).split("__") if part]
        if path:
            _assign_nested(overrides, path, _parse_env_value(raw))
    return overrides


def _assign_nested(tree: dict[str, object], path: list[str], value: object) -> None:
    node = tree
    for part in path[:-1]:
        child = node.setdefault(part, {})
        if not isinstance(child, dict):
            raise ConfigError(
                f"Environment override {'.'.join(path)} clashes with the scalar {part!r}."
            )
        node = child
    node[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        current = target.get(key)
        if isinstance(current, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(current, _as_dict(value, key))
        else:
            target[key] = value


def _parse_env_value(raw: str) -> object:
    # YAML scalars give us ints, floats and booleans for free.
    try:
        return yaml.safe_load(raw.strip())
    except yaml.YAMLError:
        return raw.strip()


def _to_path(value: object) -> Path:
    if isinstance(value, (str, Path)):
        return Path(value).expanduser()
    raise ConfigError(f"Expected a filesystem path, got {value!r}.")


def _positive_number(
    value: object | None,
    label: str,
    *,
    default: int | float,
    kind: type[int] | type[float],
) -> int | float:
    if value is None:
        return kind(default)
    if isinstance(value, bool):
        raise ConfigError(f"{label} must be a number, not the boolean {value!r}.")
    if kind is int and isinstance(value, float):
        raise ConfigError(f"{label} must be a whole number. Got {value!r}.")
    if not isinstance(value, (int, float, str)):
        raise ConfigError(f"{label} must be a number. Got {type(value).__name__}.")
    try:
        number = kind(value)
    except ValueError as exc:
        raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    if number <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {number}.")
    return number


def _positive_int(value: object | None, label: str, *, default: int) -> int:
    return int(_positive_number(value, label, default=default, kind=int))


def _positive_float(value: object | None, label: str, *, default: float) -> float:
    return float(_positive_number(value, label, default=default, kind=float))


def _expect_str(value: object, key: str) -> str:
    if not isinstance(value, str):
        raise ConfigError(f"{key} must be a string. Got {value!r}.")
    return value


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"{label} must be a mapping. Got {type(value).__name__}.")
    bad_keys = [key for key in value if not isinstance(key, str)]
    if bad_keys:
        raise ConfigError(f"{label} has non-string keys: {bad_keys!r}.")
    return dict(value)


__all__ = [
    "AppConfig",
    "ComposeConfig",
    "ConfigError",
    "HTTPConfig",
    "ReadinessConfig",
    "ReleasesConfig",
    "TLSConfig",
    "load_config",
]
