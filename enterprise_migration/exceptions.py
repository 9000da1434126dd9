"""Exceptions raised by the migration engine."""

from typing import Optional


class MigrationError(Exception):
    """Base class for migration engine errors."""


class ConfigError(MigrationError):
    """Invalid migration options or datastore settings."""


class DatastoreError(MigrationError):
    """A datastore request failed.

    ``transient`` marks failures worth retrying (network errors, 5xx
    responses, lock timeouts) as opposed to rejected requests.
    """

    def __init__(self, message: str, transient: bool = True, code: Optional[str] = None):
        super().__init__(message)
        self.transient = transient
        self.code = code or ("TRANSIENT" if transient else "REJECTED")


class SnapshotError(MigrationError):
    """A snapshot could not be created or found."""


class RetryStateError(MigrationError):
    """Illegal transition on a retry queue item."""


class WorkflowError(MigrationError):
    """Unknown workflow execution or step."""


class DedupResolutionError(MigrationError):
    """A duplicate candidate was resolved twice or does not exist."""


class SyncStateError(MigrationError):
    """Unknown or inactive delta-sync configuration."""
