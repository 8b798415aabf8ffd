"""Provider interfaces for gwctl."""
from __future__ import annotations

from .compose import ComposeError, ComposeProvider, ComposeUnavailableError, Unit
from .runner import CommandError, ExecutableNotFoundError, ProcessRunner

__all__ = [
    "CommandError",
    "ComposeError",
    "ComposeProvider",
    "ComposeUnavailableError",
    "ExecutableNotFoundError",
    "ProcessRunner",
    "Unit",
]
