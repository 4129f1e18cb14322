"""Exception hierarchy for the question tracker.

Row-level parse failures are not exceptions: they are collected as RowError
values in the batch report.
"""


class TrackerError(Exception):
    """Base class for all tracker errors."""


class InputError(TrackerError, ValueError):
    """Caller supplied invalid input; nothing was processed."""


class StorageError(TrackerError):
    """The underlying store failed while writing a batch."""


class NotFoundError(TrackerError, LookupError):
    """A referenced record does not exist."""


class PermissionDeniedError(TrackerError, PermissionError):
    """The caller is not allowed to perform the operation."""
