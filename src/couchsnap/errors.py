"""Exception hierarchy for snapshot runs."""

from __future__ import annotations


class SnapshotError(Exception):
    """Base class for errors that abort a snapshot run."""


class ConfigError(SnapshotError, ValueError):
    """Raised when the run configuration is missing or invalid."""


class FeedOpenError(SnapshotError):
    """Raised when the changes feed cannot be opened."""


class FeedError(SnapshotError):
    """Raised when the changes feed fails part-way through a traversal."""


class OutputOpenError(SnapshotError):
    """Raised when the temporary output file cannot be created."""


class CommitError(SnapshotError):
    """Raised when the output file or checkpoint cannot be committed."""


class OutputWriteError(SnapshotError):
    """Raised when a partially written line cannot be removed from the output."""
