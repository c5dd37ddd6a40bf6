"""
Viewer error taxonomy.

None of these are fatal: callers catch them at the operation boundary and turn them
into a user-visible message, leaving the rest of the viewer running.
"""

from __future__ import annotations


class ViewerError(Exception):
    """Base class for recoverable viewer failures."""


class FetchFailure(ViewerError):
    """A dataset could not be fetched (network error or non-success status)."""


class InvalidKey(ViewerError):
    """An empty or placeholder namespace / feature id was passed to the checkin store."""


class InvalidFormat(ViewerError):
    """A payload (import file, persisted blob, dataset body) has the wrong shape."""


class PersistenceFailure(ViewerError):
    """Writing to the key-value store failed; in-memory state was kept."""
