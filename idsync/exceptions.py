"""Exception hierarchy for the import pipeline."""

from typing import Optional


class SyncError(Exception):
    """Base class for all import pipeline errors."""


class ConfigurationError(SyncError):
    """A connection or application setting is missing or invalid."""


class AuthenticationError(SyncError):
    """The identity source rejected our credentials; aborts the whole run."""


class FetchError(SyncError):
    """Retrieving records from the source failed; aborts one resource pass."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RecordValidationError(SyncError):
    """A mapped record failed validation and is skipped."""

    def __init__(self, errors):
        self.errors = list(errors)
        super().__init__(", ".join(self.errors))


class PersistenceError(SyncError):
    """Writing a record to the identity store failed; the record is skipped."""


class TransformSyntaxError(SyncError):
    """A transform rule could not be parsed (configuration time only)."""


class ConnectionBusyError(SyncError):
    """Another live import holds the lease for this connection."""


class TaskStateError(SyncError):
    """An import task was asked to make an illegal state transition."""


class NotFoundError(SyncError):
    """A requested connection, task or identity does not exist."""


class MatchConflictError(SyncError):
    """A record's match keys point at different stored records; the record is skipped."""
