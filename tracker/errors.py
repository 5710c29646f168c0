from __future__ import annotations


class TrackerError(Exception):
    """Base class for failures scoped to a single user action."""


class AuthenticationError(TrackerError):
    pass


class NotFoundError(TrackerError):
    pass


class ConflictError(TrackerError):
    pass


class PhotoUploadError(TrackerError):
    """The photo could not be stored; nothing else was written."""


class StoreUnavailable(TrackerError):
    """The document store could not be reached."""


class WriteError(TrackerError):
    """A write failed and may be retried by the user."""
