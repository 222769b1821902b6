"""
Error taxonomy for the Churn Vector Mod Manager.

Every failure the core reports is a ``ModManagerError``. The underlying
exception, when there is one, is chained with ``raise ... from exc`` and is
available as ``__cause__``.
"""

from __future__ import annotations

from pathlib import Path


class ModManagerError(Exception):
    """Base class. ``path`` is the offending file or directory, if known."""

    def __init__(self, message: str, path: str | Path | None = None):
        super().__init__(message)
        self.path = Path(path) if path is not None else None


class NotFoundError(ModManagerError):
    """A source, target or mod folder that must exist does not."""


class InvalidManifestError(ModManagerError):
    """The manifest is missing or cannot be parsed."""


class StateConflictError(ModManagerError):
    """Enable/disable requested but the mod is already in that state."""


class CollisionError(ModManagerError):
    """An install or pack target already exists."""


class SecurityViolationError(ModManagerError):
    """An archive entry would be written outside the mods folder."""


class ModIOError(ModManagerError):
    """A filesystem or archive operation failed."""


class InvalidArchiveError(ModIOError):
    """The data is not a readable zip archive."""
