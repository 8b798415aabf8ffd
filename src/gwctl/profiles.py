"""Deployment mode profiles (production vs. development)."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .config import AppConfig

PRODUCTION_IMAGES = (
    "ghostwriter_production_django",
    "ghostwriter_production_nginx",
    "ghostwriter_production_redis",
    "ghostwriter_production_postgres",
    "ghostwriter_production_graphql",
    "ghostwriter_production_queue",
)

DEVELOPMENT_IMAGES = (
    "ghostwriter_local_django",
    "ghostwriter_local_redis",
    "ghostwriter_local_postgres",
    "ghostwriter_local_graphql",
    "ghostwriter_local_queue",
)

KNOWN_IMAGES = frozenset(PRODUCTION_IMAGES + DEVELOPMENT_IMAGES)


class DeploymentMode(str, Enum):
    """Which compose descriptor and image set a command targets."""

    PRODUCTION = "production"
    DEVELOPMENT = "development"


@dataclass(frozen=True, slots=True)
class ModeProfile:
    """Everything that differs between the two deployment modes."""

    mode: DeploymentMode
    descriptor: str
    images: tuple[str, ...]
    status_url: str

    @property
    def is_production(self) -> bool:
        return self.mode is DeploymentMode.PRODUCTION


def image_label(image: str) -> str:
    """Return the short upper-case service label for *image*.

    ``ghostwriter_production_nginx`` becomes ``NGINX``.
    """
    return image.rsplit("_", 1)[-1].upper()


def profile_for(config: AppConfig, *, dev: bool) -> ModeProfile:
    """Build the profile for the requested mode."""
    if dev:
        return ModeProfile(
            mode=DeploymentMode.DEVELOPMENT,
            descriptor=config.compose.development_file,
            images=DEVELOPMENT_IMAGES,
            status_url="http://localhost:8000/status/",
        )
    return ModeProfile(
        mode=DeploymentMode.PRODUCTION,
        descriptor=config.compose.production_file,
        images=PRODUCTION_IMAGES,
        status_url="https://localhost:443/status/",
    )


__all__ = [
    "DEVELOPMENT_IMAGES",
    "DeploymentMode",
    "KNOWN_IMAGES",
    "ModeProfile",
    "PRODUCTION_IMAGES",
    "image_label",
    "profile_for",
]
