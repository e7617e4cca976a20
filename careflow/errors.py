"""Exception hierarchy for the automation engine."""

from __future__ import annotations


class CareflowError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(CareflowError):
    """A workflow or step is missing or malformed."""


class PersistenceError(CareflowError):
    """Reading or writing workflow state failed."""


class DependencyError(CareflowError):
    """A step could not reach a collaborator or lacked required context."""


__all__ = [
    "CareflowError",
    "ConfigurationError",
    "PersistenceError",
    "DependencyError",
]
