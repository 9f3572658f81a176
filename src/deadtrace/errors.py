"""Exception hierarchy for deadtrace."""
from __future__ import annotations


class DeadTraceError(Exception):
    """Base class for all deadtrace errors."""


class ConfigError(DeadTraceError):
    """Invalid configuration file or persisted document."""


class AssemblyLoadError(DeadTraceError):
    """A module could not be opened or carries no .NET metadata."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot load assembly {path}: {reason}")


class TraceFormatError(DeadTraceError):
    """Trace content is malformed or in an unsupported format."""
