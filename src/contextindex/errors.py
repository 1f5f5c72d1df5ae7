"""Error taxonomy for the indexing and query pipeline.

Every error carries a stable ``code`` string so the operations facade and the
CLI can report failures without matching on class names:

  invalid-argument   bad or missing caller input (never retried)
  permission-denied  decided by the external authorization layer
  not-found          unknown source id
  already-exists     registration conflict
  aborted            source is already being re-indexed
  unavailable        embedder / storage / fetch failure
  deadline-exceeded  indexing run cancelled or timed out
  internal           unexpected failure

Configuration errors (``contextindex.config.ConfigError``) are not part of this
hierarchy: they are fatal and never reported per request.
"""

from __future__ import annotations


class ContextIndexError(Exception):
    """Base class for all per-request errors raised by contextindex."""

    code: str = "internal"

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


# ---------------------------------------------------------------------------
# Caller errors
# ---------------------------------------------------------------------------


class InvalidArgument(ContextIndexError):
    code = "invalid-argument"


class InvalidQuery(InvalidArgument):
    """Raised for an empty or whitespace-only search query."""


class PermissionDenied(ContextIndexError):
    code = "permission-denied"


class NotFound(ContextIndexError):
    code = "not-found"


class SourceNotFound(NotFound):
    def __init__(self, source_id: str) -> None:
        super().__init__(f"Source '{source_id}' not found.")
        self.source_id = source_id


class Conflict(ContextIndexError):
    code = "already-exists"


class AlreadyIndexing(Conflict):
    """Raised when a re-index is requested for a source that is mid-run."""

    code = "aborted"

    def __init__(self, source_id: str) -> None:
        super().__init__(f"Source '{source_id}' is already being indexed.")
        self.source_id = source_id


# ---------------------------------------------------------------------------
# Upstream errors (embedding, storage, fetch)
# ---------------------------------------------------------------------------


class UpstreamUnavailable(ContextIndexError):
    code = "unavailable"


class EmbeddingUnavailable(UpstreamUnavailable):
    """The embedding provider failed (network, quota, rate limit)."""


class StorageUnavailable(UpstreamUnavailable):
    """The index store timed out or is busy (e.g. SQLite 'database is locked')."""


class FetchError(UpstreamUnavailable):
    """Raw source content could not be fetched (network, permission, missing file)."""


class IndexingCancelled(ContextIndexError):
    code = "deadline-exceeded"


class InternalError(ContextIndexError):
    code = "internal"
