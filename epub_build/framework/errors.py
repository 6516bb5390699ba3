"""Build error taxonomy.

Task registration errors (`UnknownTaskError`, `DuplicateTaskError`,
`TaskCycleError`) come from `taskkit.errors` and are re-exported here so the
application has one import point for everything it may translate to an exit
code.
"""

from __future__ import annotations

from taskkit.errors import DuplicateTaskError, TaskCycleError, TaskGraphError, UnknownTaskError

__all__ = [
    "BuildError",
    "ConfigurationError",
    "DuplicateTaskError",
    "PackagingError",
    "PreviewError",
    "TaskCycleError",
    "TaskGraphError",
    "TransformError",
    "UnknownTaskError",
    "ValidationInvocationError",
]


class BuildError(Exception):
    pass


class ConfigurationError(BuildError, ValueError):
    """Malformed or missing config; raised before any task runs."""


class TransformError(BuildError):
    """A single file could not be transformed; fails only the owning stage."""

    def __init__(self, message: str, *, path: str | None = None, transform: str | None = None):
        self.path = path
        self.transform = transform
        prefix = ""
        if transform and path:
            prefix = f"[{transform}] {path}: "
        elif path:
            prefix = f"{path}: "
        super().__init__(prefix + message)


class PackagingError(BuildError):
    pass


class ValidationInvocationError(BuildError):
    """The external checker could not be spawned (its verdict is never an error)."""


class PreviewError(BuildError):
    """The preview server could not be started."""
