"""Persisted ``.env`` key-value store consumed by the deployed services.

The store is the single source of truth for the deployment's settings. Keys
are case-insensitive (held lowercase in memory, written uppercase), every
mutation is written through to disk immediately, and the file is rewritten in
sorted key order so diffs stay readable.
"""
from __future__ import annotations

import secrets
import string
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

PASSWORD_LENGTH = 32
SAFE_ALPHABET = string.ascii_letters + string.digits
EXTENDED_ALPHABET = SAFE_ALPHABET + "!@#$%^&*()_-+=/?<>.,"

ALLOWED_HOSTS_KEY = "django_allowed_hosts"
TRUSTED_ORIGINS_KEY = "django_csrf_trusted_origins"

ALIASES: dict[str, str] = {
    "date_format": "django_date_format",
    "admin_password": "django_superuser_password",
    "hasura_password": "hasura_graphql_admin_secret",
}

PRODUCTION_PRESET: dict[str, object] = {
    "hasura_graphql_dev_mode": False,
    "django_secure_ssl_redirect": True,
    "django_settings_module": "config.settings.production",
}

DEVELOPMENT_PRESET: dict[str, object] = {
    "hasura_graphql_dev_mode": True,
    "django_secure_ssl_redirect": False,
    "django_settings_module": "config.settings.local",
}


class EnvironmentStoreError(RuntimeError):
    """Raised when the ``.env`` file cannot be read, written or queried."""


def generate_password(length: int = PASSWORD_LENGTH, *, safe: bool = False) -> str:
    """Return a random password.

    ``safe`` restricts the alphabet to letters and digits for values that end
    up inside URLs or connection strings.
    """
    alphabet = SAFE_ALPHABET if safe else EXTENDED_ALPHABET
    return "".join(secrets.choice(alphabet) for _ in range(length))


def build_defaults() -> dict[str, object]:
    """Return first-run defaults; secrets are freshly generated on each call."""
    return {
        "use_docker": "yes",
        "ipythondir": "/app/.ipython",
        # Django
        "django_account_allow_registration": False,
        "django_account_email_verification": "none",
        "django_admin_url": "admin/",
        ALLOWED_HOSTS_KEY: "localhost 127.0.0.1 django nginx host.docker.internal ghostwriter.local",
        "django_compress_enabled": True,
        TRUSTED_ORIGINS_KEY: "",
        "django_date_format": "d M Y",
        "django_host": "django",
        "django_jwt_secret_key": generate_password(),
        "django_mailgun_api_key": "",
        "django_mailgun_domain": "",
        "django_port": "8000",
        "django_qcluster_name": "soar",
        "django_secret_key": generate_password(),
        "django_secure_ssl_redirect": False,
        "django_settings_module": "config.settings.local",
        "django_social_account_allow_registration": False,
        "django_superuser_email": "admin@ghostwriter.local",
        "django_superuser_password": generate_password(safe=True),
        "django_superuser_username": "admin",
        "django_web_concurrency": 4,
        # PostgreSQL
        "postgres_host": "postgres",
        "postgres_port": 5432,
        "postgres_db": "ghostwriter",
        "postgres_user": "postgres",
        "postgres_password": generate_password(safe=True),
        # Redis
        "redis_host": "redis",
        "redis_port": 6379,
        # Nginx
        "nginx_host": "nginx",
        "nginx_port": 443,
        # Hasura
        "hasura_graphql_action_secret": generate_password(safe=True),
        "hasura_graphql_admin_secret": generate_password(safe=True),
        "hasura_graphql_dev_mode": True,
        "hasura_graphql_enable_console": False,
        "hasura_graphql_enabled_log_types": "startup, http-log, webhook-log, websocket-log, query-log",
        "hasura_graphql_enable_telemetry": False,
        "hasura_graphql_server_host": "graphql_engine",
        "hasura_graphql_insecure_skip_tls_verify": True,
        "hasura_graphql_log_level": "warn",
        "hasura_graphql_metadata_dir": "/metadata",
        "hasura_graphql_migrations_dir": "/migrations",
        "hasura_graphql_server_port": 8080,
        # Container health checks
        "healthcheck_disk_usage_max": 3,
        "healthcheck_interval": "300s",
        "healthcheck_mem_min": 100,
        "healthcheck_retries": 3,
        "healthcheck_start": "60s",
        "healthcheck_timeout": "30s",
    }


class DelimitedSet:
    """Ordered set of tokens stored as one space-delimited string."""

    __slots__ = ("_items",)

    def __init__(self, items: Iterable[str] = ()) -> None:
        self._items: list[str] = []
        for item in items:
            self.add(item)

    @classmethod
    def parse(cls, raw: str) -> DelimitedSet:
        return cls(raw.split())

    def add(self, token: str) -> bool:
        """Append *token*; return ``False`` when it was already present."""
        token = token.strip()
        if not token or token in self._items:
            return False
        self._items.append(token)
        return True

    def discard(self, token: str) -> bool:
        """Remove every exact match of *token*; return whether any existed."""
        token = token.strip()
        before = len(self._items)
        self._items = [item for item in self._items if item != token]
        return len(self._items) != before

    def __contains__(self, token: object) -> bool:
        return token in self._items

    def __iter__(self) -> Iterator[str]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __str__(self) -> str:
        return " ".join(self._items)

    def __repr__(self) -> str:
        return f"DelimitedSet({self._items!r})"


@dataclass(frozen=True, slots=True)
class ConfigEntry:
    """One displayed configuration key/value pair."""

    key: str
    value: str


def _coerce(value: object) -> object:
    if isinstance(value, str) and value.lower() in {"true", "false"}:
        return value.lower() == "true"
    return value


def _render(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _unquote(raw: str) -> str:
    value = raw.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
        return value[1:-1]
    return value


def _normalise_key(key: str) -> str:
    lowered = key.strip().lower()
    return ALIASES.get(lowered, lowered)


class EnvironmentStore:
    """Write-through view over the deployment's ``.env`` file."""

    def __init__(self, path: Path, values: Mapping[str, object] | None = None) -> None:
        self.path = Path(path)
        self._values: dict[str, object] = {}
        for key, value in (values or {}).items():
            self._values[_normalise_key(key)] = value

    @classmethod
    def load(
        cls,
        path: Path,
        *,
        defaults: Mapping[str, object] | None = None,
    ) -> EnvironmentStore:
        """Read *path* over the defaults and persist the merged result.

        A missing file is created, so the first run materialises every
        default (including generated secrets) on disk.
        """
        path = Path(path)
        store = cls(path, build_defaults() if defaults is None else defaults)
        try:
            if not path.exists():
                path.touch()
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise EnvironmentStoreError(f"Unable to read {path}: {exc}") from exc
        store._values.update(parse_env_text(text))
        store.save()
        return store

    def get(self, key: str) -> object | None:
        """Return the raw value for *key* (aliases honoured), or ``None``."""
        return self._values.get(_normalise_key(key))

    def get_string(self, key: str) -> str:
        """Return the string form of *key*, or an empty string."""
        value = self.get(key)
        return "" if value is None else _render(value)

    def get_many(self, keys: Iterable[str]) -> list[ConfigEntry]:
        """Return entries for *keys*; unknown or empty keys are an error."""
        entries: list[ConfigEntry] = []
        for key in keys:
            value = self.get_string(key)
            if not value:
                raise EnvironmentStoreError(f"Config variable `{key.lower()}` not found")
            entries.append(ConfigEntry(key=_normalise_key(key).upper(), value=value))
        return sorted(entries, key=lambda entry: entry.key)

    def get_all(self) -> list[ConfigEntry]:
        """Return every entry sorted by key."""
        return [
            ConfigEntry(key=key.upper(), value=_render(self._values[key]))
            for key in sorted(self._values, key=str.upper)
        ]

    def set(self, key: str, value: object) -> None:
        """Store *value* (``"true"``/``"false"`` become booleans) and persist."""
        self._values[_normalise_key(key)] = _coerce(value)
        self.save()

    def update(self, values: Mapping[str, object]) -> None:
        """Store several values with a single write."""
        for key, value in values.items():
            self._values[_normalise_key(key)] = _coerce(value)
        self.save()

    def set_production_mode(self) -> None:
        self.update(PRODUCTION_PRESET)

    def set_development_mode(self) -> None:
        self.update(DEVELOPMENT_PRESET)

    def allow_host(self, host: str) -> bool:
        """Add *host* to the allowed hosts; return ``False`` if already present."""
        return self._add_token(ALLOWED_HOSTS_KEY, host)

    def disallow_host(self, host: str) -> bool:
        """Remove *host* from the allowed hosts; absent hosts are ignored."""
        return self._discard_token(ALLOWED_HOSTS_KEY, host)

    def trust_origin(self, origin: str) -> bool:
        """Add *origin* to the trusted CSRF origins."""
        return self._add_token(TRUSTED_ORIGINS_KEY, origin)

    def distrust_origin(self, origin: str) -> bool:
        """Remove *origin* from the trusted CSRF origins."""
        return self._discard_token(TRUSTED_ORIGINS_KEY, origin)

    def tokens(self, key: str) -> DelimitedSet:
        return DelimitedSet.parse(self.get_string(key))

    @contextmanager
    def override(self, values: Mapping[str, object]) -> Iterator[EnvironmentStore]:
        """Apply *values* for the duration of the block, then restore."""
        previous = {_normalise_key(key): self.get(key) for key in values}
        self.update(values)
        try:
            yield self
        finally:
            for key, value in previous.items():
                if value is None:
                    self._values.pop(key, None)
                else:
                    self._values[key] = value
            self.save()

    def save(self) -> None:
        """Rewrite the ``.env`` file from the in-memory values."""
        lines = []
        for key in sorted(self._values, key=str.upper):
            rendered = _render(self._values[key])
            if rendered:
                lines.append(f"{key.upper()}='{rendered}'\n")
            else:
                lines.append(f"{key.upper()}=\n")
        try:
            self.path.write_text("".join(lines), encoding="utf-8")
        except OSError as exc:
            raise EnvironmentStoreError(f"Unable to write {self.path}: {exc}") from exc

    def _add_token(self, key: str, token: str) -> bool:
        tokens = self.tokens(key)
        if not tokens.add(token):
            return False
        self.set(key, str(tokens))
        return True

    def _discard_token(self, key: str, token: str) -> bool:
        tokens = self.tokens(key)
        removed = tokens.discard(token)
        self.set(key, str(tokens))
        return removed


def parse_env_text(text: str) -> dict[str, object]:
    """Parse ``KEY=value`` lines into lowercase keys with coerced values."""
    values: dict[str, object] = {}
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        key, sep, raw_value = stripped.partition("=")
        if not sep:
            raise EnvironmentStoreError(f"Malformed line in .env file: {line!r}")
        values[_normalise_key(key)] = _coerce(_unquote(raw_value))
    return values


__all__ = [
    "ALIASES",
    "ConfigEntry",
    "DelimitedSet",
    "EnvironmentStore",
    "EnvironmentStoreError",
    "build_defaults",
    "generate_password",
    "parse_env_text",
]
